# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Embedding client for the Voyage AI embeddings API.

Texts are sent in batches bounded both by item count and by an estimated
token budget; results are always returned in input order.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import httpx

from .analysis.chunking import count_tokens
from .config import (DEFAULT_BATCH_SIZE, DEFAULT_EMBEDDING_MODEL,
                     MAX_BATCH_SIZE, MODEL_DIMENSIONS, Config, get_config)
from .errors import EmbeddingError
from .models import IndexingProgress, ProgressCallback

logger = logging.getLogger(__name__)

VOYAGE_EMBEDDINGS_URL = "https://api.voyageai.com/v1/embeddings"
INPUT_TYPES = ("document", "query")
MAX_RETRY_AFTER_SECONDS = 60.0


def _retry_after_seconds(response: httpx.Response) -> float:
    raw = response.headers.get("Retry-After", "1")
    try:
        delay = float(raw)
    except ValueError:
        delay = 1.0
    return max(0.0, min(delay, MAX_RETRY_AFTER_SECONDS))


class EmbeddingClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_EMBEDDING_MODEL,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = 3,
        timeout: float = 60.0,
        max_batch_tokens: int = 120_000,
        dimension: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not api_key:
            raise EmbeddingError("No embeddings API key configured (set embeddings.api_key or VOYAGE_API_KEY)")
        self.model = model
        self.batch_size = max(1, min(int(batch_size), MAX_BATCH_SIZE))
        self.max_retries = max(0, int(max_retries))
        self.max_batch_tokens = max(1, int(max_batch_tokens))
        native = MODEL_DIMENSIONS.get(model)
        self.dimension = int(dimension or native or MODEL_DIMENSIONS[DEFAULT_EMBEDDING_MODEL])
        # Widths other than the model default are requested from the API
        self.output_dimension = self.dimension if native is not None and self.dimension != native else None
        self.on_progress = on_progress
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EmbeddingClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _emit(self, current: int, total: int, message: str) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(
                IndexingProgress(phase="embedding", current=current, total=total, message=message)
            )
        except Exception:
            logger.exception("Progress callback failed during embedding")

    def embed_query(self, text: str) -> list[float]:
        return self._embed_batch([text], "query")[0]

    def embed_all(self, texts: list[str], *, mode: str) -> list[list[float]]:
        """Embed ``texts`` in batches; ``mode`` is "document" or "query"."""
        if mode not in INPUT_TYPES:
            raise ValueError(f"mode must be one of {INPUT_TYPES}, got {mode!r}")
        if not texts:
            return []

        batches = self._create_batches(texts)
        results: list[Optional[list[float]]] = [None] * len(texts)
        processed = 0
        for batch_no, indices in enumerate(batches, start=1):
            self._emit(processed, len(texts), f"Embedding batch {batch_no}/{len(batches)}...")
            vectors = self._embed_batch([texts[i] for i in indices], mode)
            for i, vector in zip(indices, vectors):
                results[i] = vector
            processed += len(indices)
        self._emit(len(texts), len(texts), f"Embedded {len(texts)} chunks")
        return [vector for vector in results if vector is not None]

    def _create_batches(self, texts: list[str]) -> list[list[int]]:
        batches: list[list[int]] = []
        current: list[int] = []
        current_tokens = 0
        for i, text in enumerate(texts):
            tokens = count_tokens(text, self.model)
            if current and (
                len(current) >= self.batch_size or current_tokens + tokens > self.max_batch_tokens
            ):
                batches.append(current)
                current = []
                current_tokens = 0
            current.append(i)
            current_tokens += tokens
        if current:
            batches.append(current)
        return batches

    def _embed_batch(self, texts: list[str], input_type: str) -> list[list[float]]:
        payload = self._call_api(texts, input_type)
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or len(rows) != len(texts):
            got = len(rows) if isinstance(rows, list) else "no"
            raise EmbeddingError(f"Embedding response returned {got} vectors for {len(texts)} inputs")
        try:
            rows = sorted(rows, key=lambda row: int(row["index"]))
            return [[float(v) for v in row["embedding"]] for row in rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"Malformed embedding response: {exc}") from exc

    def _call_api(self, texts: list[str], input_type: str) -> dict:
        body: dict[str, Any] = {"input": texts, "model": self.model, "input_type": input_type}
        if self.output_dimension is not None:
            body["output_dimension"] = self.output_dimension
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = self._client.post(VOYAGE_EMBEDDINGS_URL, json=body)
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self.max_retries:
                    delay = float(2**attempt)
                    logger.warning(
                        "Embedding request failed (%s), retrying in %.0fs (%s/%s)",
                        exc,
                        delay,
                        attempt + 1,
                        self.max_retries,
                    )
                    self._sleep(delay)
                continue

            if response.is_success:
                try:
                    return response.json()
                except ValueError as exc:
                    raise EmbeddingError(
                        f"Embedding response is not valid JSON: {exc}",
                        status_code=response.status_code,
                        body=response.text,
                    ) from exc

            if response.status_code == 429 and attempt < self.max_retries:
                delay = _retry_after_seconds(response)
                logger.warning("Embedding API rate limited, retrying in %.1fs", delay)
                self._sleep(delay)
                continue

            raise EmbeddingError(
                f"Voyage API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        raise EmbeddingError(f"Embedding request failed after {self.max_retries + 1} attempts: {last_error}")


def create_embedding_client(
    config: Optional[Config] = None,
    *,
    model: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> EmbeddingClient:
    """Build an EmbeddingClient from configuration."""
    cfg = config or get_config()
    if cfg.embeddings_provider != "voyage":
        raise EmbeddingError(f"Unsupported embeddings provider: {cfg.embeddings_provider}")
    model = model or cfg.embeddings_model
    # The configured dimension belongs to the configured model only
    dimension = cfg.embeddings_dimension if model == cfg.embeddings_model else None
    return EmbeddingClient(
        api_key=cfg.embeddings_api_key or "",
        model=model,
        batch_size=cfg.embeddings_batch_size,
        max_retries=cfg.embeddings_max_retries,
        timeout=cfg.embeddings_timeout,
        max_batch_tokens=cfg.embeddings_max_batch_tokens,
        dimension=dimension,
        transport=transport,
        on_progress=on_progress,
    )
