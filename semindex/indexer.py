# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Incremental semantic indexing of a source-code project.

Pipeline: scan -> reconcile against stored hashes -> drop rows of removed
files -> chunk new/changed files -> embed (document mode) -> upsert rows by
file -> persist metadata. Search embeds the query (query mode) and runs a
cosine similarity search over the project's vector table.
"""

import hashlib
import logging
import shutil
import threading
from pathlib import Path
from time import perf_counter
from typing import Any, Iterable, Optional, Protocol

import numpy as np

from .analysis.chunking import Chunker, ParserRegistry
from .config import MODEL_DIMENSIONS, Config, get_config
from .embeddings import EmbeddingClient, create_embedding_client
from .models import (CodeChunk, IndexingProgress, IndexResult, IndexStats,
                     ParsedChunk, ProgressCallback, ScannedFile, SearchResult)
from .scanner import FileScanner
from .storage.metadata import (METADATA_FILENAME, MetadataStore, hash_bytes,
                               get_project_id)
from .storage.vector import VectorStore

logger = logging.getLogger(__name__)

LANCEDB_DIRNAME = "lancedb"


class Embedder(Protocol):
    model: str
    dimension: int

    def embed_all(self, texts: list[str], *, mode: str) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


# One lock per project id so concurrent index() calls in this process serialise
_project_locks: dict[str, threading.RLock] = {}
_project_locks_guard = threading.Lock()


def _project_lock(project_id: str) -> threading.RLock:
    with _project_locks_guard:
        lock = _project_locks.get(project_id)
        if lock is None:
            lock = threading.RLock()
            _project_locks[project_id] = lock
        return lock


def get_index_dir(project_path: Path | str, data_dir: Optional[Path | str] = None) -> Path:
    """Directory holding a project's metadata.json and LanceDB database."""
    base = Path(data_dir).expanduser() if data_dir is not None else get_config().index_path
    return base / "indexes" / get_project_id(project_path)


def index_exists(project_path: Path | str, data_dir: Optional[Path | str] = None) -> bool:
    return (get_index_dir(project_path, data_dir) / METADATA_FILENAME).exists()


def chunk_id(relative_path: str, start_line: int, end_line: int, file_hash: str) -> str:
    key = f"{relative_path}:{start_line}:{end_line}:{file_hash}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def normalize_vectors(vectors: list[list[float]]) -> list[list[float]]:
    """L2-normalise each row; zero rows are left as-is."""
    if not vectors:
        return []
    arr = np.asarray(vectors, dtype="float32")
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (arr / norms).tolist()


class CodebaseIndexer:
    """Builds, updates and queries the vector index of one project."""

    def __init__(
        self,
        project_path: Path | str,
        *,
        embedder: Optional[Embedder] = None,
        config: Optional[Config] = None,
        model: Optional[str] = None,
        exclude_patterns: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        force_reindex: bool = False,
        chunker: Optional[Chunker] = None,
    ):
        self.project_path = Path(project_path).expanduser().resolve()
        self.config = config or get_config()
        self.project_id = get_project_id(self.project_path)
        self.index_dir = get_index_dir(self.project_path, self.config.index_path)
        self.lancedb_dir = self.index_dir / LANCEDB_DIRNAME
        self.exclude_patterns = list(exclude_patterns or [])
        self.on_progress = on_progress
        self.force_reindex = force_reindex

        self._embedder = embedder
        self._client: Optional[EmbeddingClient] = None
        if embedder is not None:
            if model and model != embedder.model:
                logger.warning(
                    "Requested model %s differs from embedder model %s; using the embedder's",
                    model,
                    embedder.model,
                )
            self.model = embedder.model
        else:
            self.model = model or self.config.embeddings_model

        self.chunker = chunker or Chunker(
            ParserRegistry(),
            min_chars=self.config.chunk_min_chars,
            max_chars=self.config.chunk_max_chars,
            max_depth=self.config.chunk_max_depth,
        )

    # ------------------------------------------------------------------
    # helpers

    @property
    def embedding_dimension(self) -> int:
        if self._embedder is not None:
            return int(self._embedder.dimension)
        if self.model == self.config.embeddings_model:
            return self.config.embeddings_dimension
        return MODEL_DIMENSIONS.get(self.model, self.config.embeddings_dimension)

    def _get_embedder(self) -> Embedder:
        if self._embedder is None:
            self._client = create_embedding_client(
                self.config, model=self.model, on_progress=self._emit
            )
            self._embedder = self._client
        return self._embedder

    def close(self) -> None:
        """Release the embedding client if this indexer created it."""
        if self._client is not None:
            self._client.close()
            self._embedder = None
            self._client = None

    def __enter__(self) -> "CodebaseIndexer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _emit(self, progress: IndexingProgress) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(progress)
        except Exception:
            logger.exception("Progress callback raised during %s phase", progress.phase)

    def _new_scanner(self) -> FileScanner:
        return FileScanner(
            self.project_path,
            exclude_patterns=self.exclude_patterns,
            config_ignore_patterns=self.config.index_ignore_patterns,
            max_file_size=self.config.index_max_file_size,
            on_progress=self._emit,
        )

    def _parse_files(
        self, files: list[ScannedFile]
    ) -> tuple[list[tuple[ScannedFile, str, list[ParsedChunk]]], int]:
        """Read, hash and chunk each file. Unreadable files are dropped."""
        parsed: list[tuple[ScannedFile, str, list[ParsedChunk]]] = []
        chunk_total = 0
        total = len(files)
        self._emit(IndexingProgress(phase="parsing", current=0, total=total, message=f"Parsing {total} files..."))
        for i, scanned in enumerate(files):
            self._emit(
                IndexingProgress(
                    phase="parsing", current=i, total=total, current_file=scanned.relative_path
                )
            )
            try:
                data = scanned.absolute_path.read_bytes()
            except OSError as exc:
                logger.warning("Failed to read %s, skipping: %s", scanned.relative_path, exc)
                continue
            # Hash the bytes we chunk so ids always match the indexed content
            file_hash = hash_bytes(data)
            text = data.decode("utf-8", errors="replace")
            try:
                chunks = self.chunker.parse(text, scanned.language)
            except Exception:
                logger.exception("Failed to chunk %s", scanned.relative_path)
                chunks = []
            parsed.append((scanned, file_hash, chunks))
            chunk_total += len(chunks)

        self._emit(
            IndexingProgress(
                phase="parsing",
                current=total,
                total=total,
                message=f"Extracted {chunk_total} chunks from {total} files",
            )
        )
        return parsed, chunk_total

    # ------------------------------------------------------------------
    # public API

    def index(self) -> IndexResult:
        """Bring the project index up to date with the filesystem. Never raises."""
        with _project_lock(self.project_id):
            return self._index_locked()

    def _index_locked(self) -> IndexResult:
        started = perf_counter()
        files_scanned = files_indexed = files_skipped = files_removed = total_chunks = 0
        store = VectorStore(self.lancedb_dir)

        def _result(success: bool, error: Optional[str] = None) -> IndexResult:
            return IndexResult(
                success=success,
                files_scanned=files_scanned,
                files_indexed=files_indexed,
                files_skipped=files_skipped,
                files_removed=files_removed,
                total_chunks=total_chunks,
                duration_ms=int((perf_counter() - started) * 1000),
                error=error,
            )

        try:
            self._emit(IndexingProgress(phase="initializing", message="Initializing indexer..."))

            scan = self._new_scanner().scan()
            files_scanned = len(scan.files)
            for skipped in scan.skipped:
                logger.debug("Scan skipped %s: %s", skipped.path, skipped.reason)

            metadata_store = MetadataStore(self.index_dir, on_progress=self._emit)
            metadata = metadata_store.load()
            if self.force_reindex or (metadata is not None and metadata.embedding_model != self.model):
                if metadata is not None and not self.force_reindex:
                    logger.info(
                        "Embedding model changed (%s -> %s); rebuilding index for %s",
                        metadata.embedding_model,
                        self.model,
                        self.project_path,
                    )
                metadata = None
            if metadata is None:
                # No usable prior state: rows without metadata cannot be reconciled
                store.drop_table()
                metadata_store.create(self.project_path, self.model, self.embedding_dimension)

            reconcile = metadata_store.check_files(scan.files)
            files_skipped = len(reconcile.to_skip)
            files_removed = len(reconcile.to_delete)

            if reconcile.to_delete:
                self._emit(
                    IndexingProgress(
                        phase="cleaning",
                        current=0,
                        total=files_removed,
                        message=f"Removing {files_removed} deleted files...",
                    )
                )
                store.delete_files_chunks(reconcile.to_delete)
                for path in reconcile.to_delete:
                    metadata_store.remove_file(path)
                metadata_store.update_counts()
                metadata_store.save()
                self._emit(
                    IndexingProgress(
                        phase="cleaning",
                        current=files_removed,
                        total=files_removed,
                        message=f"Removed {files_removed} deleted files",
                    )
                )

            if reconcile.to_index:
                parsed, chunk_total = self._parse_files(reconcile.to_index)

                code_chunks: list[CodeChunk] = []
                if chunk_total:
                    texts = [chunk.code for _, _, chunks in parsed for chunk in chunks]
                    self._emit(
                        IndexingProgress(
                            phase="embedding",
                            current=0,
                            total=len(texts),
                            message=f"Embedding {len(texts)} chunks...",
                        )
                    )
                    vectors = self._get_embedder().embed_all(texts, mode="document")
                    vectors = normalize_vectors(vectors)
                    if len(vectors) != len(texts):
                        raise RuntimeError(
                            f"Embedder returned {len(vectors)} vectors for {len(texts)} chunks"
                        )

                    vector_iter = iter(vectors)
                    for scanned, file_hash, chunks in parsed:
                        for chunk in chunks:
                            code_chunks.append(
                                CodeChunk(
                                    id=chunk_id(
                                        scanned.relative_path,
                                        chunk.start_line,
                                        chunk.end_line,
                                        file_hash,
                                    ),
                                    file_path=scanned.relative_path,
                                    code=chunk.code,
                                    start_line=chunk.start_line,
                                    end_line=chunk.end_line,
                                    file_hash=file_hash,
                                    chunk_type=chunk.chunk_type,
                                    language=scanned.language,
                                    symbol_name=chunk.symbol_name or "",
                                    vector=next(vector_iter),
                                )
                            )

                    self._emit(
                        IndexingProgress(
                            phase="storing",
                            current=0,
                            total=len(code_chunks),
                            message=f"Storing {len(code_chunks)} chunks...",
                        )
                    )
                    store.upsert_chunks(code_chunks, on_progress=self._emit)

                # Changed files that no longer produce chunks keep no stale rows
                empty = [scanned.relative_path for scanned, _, chunks in parsed if not chunks]
                if empty:
                    store.delete_files_chunks(empty)

                for scanned, file_hash, chunks in parsed:
                    metadata_store.update_file(
                        scanned.relative_path, file_hash, len(chunks), scanned.language
                    )
                files_indexed = len(parsed)
                metadata_store.update_counts()
                metadata_store.save()

            total_chunks = store.count_rows()
            metadata_store.update_counts(total_chunks=total_chunks)
            metadata_store.save()

            self._emit(
                IndexingProgress(
                    phase="done",
                    current=files_indexed,
                    total=files_indexed,
                    message=f"Indexed {files_indexed} files with {total_chunks} chunks",
                )
            )
            logger.info(
                "Indexed %s: scanned=%s indexed=%s skipped=%s removed=%s chunks=%s",
                self.project_path,
                files_scanned,
                files_indexed,
                files_skipped,
                files_removed,
                total_chunks,
            )
            return _result(True)
        except Exception as exc:
            logger.exception("Indexing failed for %s", self.project_path)
            self._emit(IndexingProgress(phase="error", error=str(exc)))
            return _result(False, str(exc))
        finally:
            store.close()

    def has_index(self) -> bool:
        return (self.index_dir / METADATA_FILENAME).exists()

    def search(
        self,
        query: str,
        limit: int = 10,
        language: Optional[str] = None,
        chunk_type: Optional[str] = None,
        file_pattern: Optional[str] = None,
        min_score: Optional[float] = None,
    ) -> list[SearchResult]:
        """Semantic search over the project's chunks; [] when there is no index."""
        if not self.has_index():
            return []
        try:
            query_vector = normalize_vectors([self._get_embedder().embed_query(query)])[0]
            store = VectorStore(self.lancedb_dir)
            try:
                return store.search(
                    query_vector,
                    limit=limit,
                    language=language,
                    chunk_type=chunk_type,
                    file_pattern=file_pattern,
                    min_score=min_score,
                )
            finally:
                store.close()
        except Exception:
            logger.exception("Search failed for %s", self.project_path)
            return []

    def get_stats(self) -> IndexStats:
        if not self.has_index():
            return IndexStats(exists=False)
        try:
            metadata = MetadataStore(self.index_dir).load()
            store = VectorStore(self.lancedb_dir)
            try:
                chunk_count = store.count_rows()
                size_bytes = store.size_on_disk()
            finally:
                store.close()
            return IndexStats(
                exists=True,
                total_files=metadata.total_files if metadata else 0,
                total_chunks=chunk_count,
                embedding_model=metadata.embedding_model if metadata else None,
                last_updated=metadata.updated_at if metadata else None,
                size_bytes=size_bytes,
            )
        except Exception:
            logger.exception("Failed to read index stats for %s", self.project_path)
            return IndexStats(exists=False)

    def delete_index(self) -> None:
        with _project_lock(self.project_id):
            if self.index_dir.exists():
                shutil.rmtree(self.index_dir, ignore_errors=True)
                logger.info("Deleted index for %s at %s", self.project_path, self.index_dir)


def index_codebase(project_path: Path | str, **kwargs: Any) -> IndexResult:
    """Create a CodebaseIndexer and run indexing."""
    with CodebaseIndexer(project_path, **kwargs) as indexer:
        return indexer.index()


def search_codebase(
    project_path: Path | str,
    query: str,
    *,
    embedder: Optional[Embedder] = None,
    config: Optional[Config] = None,
    model: Optional[str] = None,
    limit: int = 10,
    language: Optional[str] = None,
    chunk_type: Optional[str] = None,
    file_pattern: Optional[str] = None,
    min_score: Optional[float] = None,
) -> list[SearchResult]:
    with CodebaseIndexer(project_path, embedder=embedder, config=config, model=model) as indexer:
        return indexer.search(
            query,
            limit=limit,
            language=language,
            chunk_type=chunk_type,
            file_pattern=file_pattern,
            min_score=min_score,
        )


def get_index_stats(project_path: Path | str, config: Optional[Config] = None) -> IndexStats:
    with CodebaseIndexer(project_path, config=config) as indexer:
        return indexer.get_stats()
