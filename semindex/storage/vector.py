# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Vector store wrapper around an embedded LanceDB database.

One database per project, one ``code_chunks`` table per database. The table
is created lazily from the first batch of chunks so that its vector width
always matches the embedding model that produced them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterable, Optional

import lancedb
import pyarrow as pa

from ..errors import StorageError
from ..models import (CodeChunk, IndexingProgress, ProgressCallback,
                      SearchResult)
from ..schema import TABLE_NAME, get_code_chunk_model

logger = logging.getLogger(__name__)

WRITE_BATCH_SIZE = 1000


def sql_quote(value: str) -> str:
    """Quote a string literal for a LanceDB filter expression."""
    return "'" + str(value).replace("'", "''") + "'"


def _vector_dimension(table: Any) -> Optional[int]:
    try:
        field = table.schema.field("vector")
    except (KeyError, AttributeError):
        return None
    if isinstance(field.type, pa.FixedSizeListType):
        return int(field.type.list_size)
    return None


class VectorStore:
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.dimension: Optional[int] = None
        self._db: Any = None
        self._table: Any = None

    def connect(self) -> None:
        """Open the database and, if present, the chunk table. Safe to call twice."""
        if self._db is not None:
            return
        try:
            self.db_path.mkdir(parents=True, exist_ok=True)
            self._db = lancedb.connect(str(self.db_path))
            if TABLE_NAME in set(self._db.table_names()):
                self._table = self._db.open_table(TABLE_NAME)
                self.dimension = _vector_dimension(self._table)
        except Exception as exc:
            self._db = None
            self._table = None
            raise StorageError(f"Failed to open vector store at {self.db_path}: {exc}") from exc

    def _require_db(self) -> Any:
        if self._db is None:
            self.connect()
        return self._db

    def has_table(self) -> bool:
        self._require_db()
        return self._table is not None

    def _create_table(self, first: CodeChunk) -> None:
        dimension = len(first.vector)
        model = get_code_chunk_model(dimension)
        try:
            self._table = self._require_db().create_table(TABLE_NAME, schema=model, mode="create")
        except Exception as exc:
            raise StorageError(f"Failed to create table {TABLE_NAME}: {exc}") from exc
        self.dimension = dimension
        logger.info("Created vector table %s (dim=%s) at %s", TABLE_NAME, dimension, self.db_path)

    def upsert_chunks(
        self,
        chunks: list[CodeChunk],
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Replace all rows of every file present in ``chunks`` with the given chunks."""
        if not chunks:
            return
        self._require_db()
        if self._table is None:
            self._create_table(chunks[0])

        for chunk in chunks:
            if self.dimension is not None and len(chunk.vector) != self.dimension:
                raise StorageError(
                    f"Vector for chunk {chunk.id} has dimension {len(chunk.vector)}, "
                    f"table expects {self.dimension}"
                )

        file_paths = list(dict.fromkeys(chunk.file_path for chunk in chunks))
        self.delete_files_chunks(file_paths)

        total = len(chunks)
        for start in range(0, total, WRITE_BATCH_SIZE):
            batch = chunks[start : start + WRITE_BATCH_SIZE]
            try:
                self._table.add([chunk.to_record() for chunk in batch])
            except Exception as exc:
                raise StorageError(f"Failed to add {len(batch)} rows: {exc}") from exc
            if on_progress is not None:
                on_progress(
                    IndexingProgress(
                        phase="storing",
                        current=min(start + len(batch), total),
                        total=total,
                        message=f"Stored {min(start + len(batch), total)}/{total} chunks",
                    )
                )

    def delete_files_chunks(self, file_paths: Iterable[str]) -> None:
        self._require_db()
        if self._table is None:
            return
        for file_path in file_paths:
            where = f"file_path = {sql_quote(file_path)}"
            try:
                self._table.delete(where)
            except Exception as exc:
                raise StorageError(f"Failed to delete rows ({where}): {exc}") from exc

    def search(
        self,
        vector: list[float],
        limit: int = 10,
        language: Optional[str] = None,
        chunk_type: Optional[str] = None,
        file_pattern: Optional[str] = None,
        min_score: Optional[float] = None,
    ) -> list[SearchResult]:
        self._require_db()
        if self._table is None or limit <= 0:
            return []

        filters = []
        if language:
            filters.append(f"language = {sql_quote(language)}")
        if chunk_type:
            filters.append(f"chunk_type = {sql_quote(chunk_type)}")
        if file_pattern:
            filters.append(f"file_path LIKE {sql_quote('%' + file_pattern + '%')}")

        try:
            query = self._table.search(list(vector)).distance_type("cosine")
            if filters:
                query = query.where(" AND ".join(filters), prefilter=True)
            rows = query.limit(int(limit)).to_list()
        except Exception as exc:
            raise StorageError(f"Vector search failed: {exc}") from exc

        results: list[SearchResult] = []
        for row in rows:
            distance = float(row.get("_distance", 0.0))
            score = 1.0 - distance
            if min_score is not None and score < min_score:
                continue
            results.append(SearchResult(chunk=CodeChunk.from_record(row), score=score, distance=distance))
        return results

    def count_rows(self) -> int:
        self._require_db()
        if self._table is None:
            return 0
        try:
            return int(self._table.count_rows())
        except Exception as exc:
            raise StorageError(f"Failed to count rows in {TABLE_NAME}: {exc}") from exc

    def size_on_disk(self) -> int:
        total = 0
        if not self.db_path.exists():
            return 0
        for root, _dirs, files in os.walk(self.db_path):
            for name in files:
                try:
                    total += (Path(root) / name).stat().st_size
                except OSError:
                    continue
        return total

    def drop_table(self) -> None:
        db = self._require_db()
        try:
            if TABLE_NAME in set(db.table_names()):
                db.drop_table(TABLE_NAME)
        except Exception as exc:
            raise StorageError(f"Failed to drop table {TABLE_NAME}: {exc}") from exc
        self._table = None
        self.dimension = None

    def close(self) -> None:
        self._table = None
        self._db = None
