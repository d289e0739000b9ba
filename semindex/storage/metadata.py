# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Per-project index metadata stored as ``metadata.json``.

Tracks the content hash of every indexed file so that a rerun only
re-processes files that are new or changed, and can find files that were
removed from disk since the last run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..errors import MetadataCorruptionError
from ..models import IndexingProgress, ProgressCallback, ScannedFile

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
SCHEMA_VERSION = 1
HASH_PROGRESS_EVERY = 100


def now_ms() -> int:
    return int(time.time() * 1000)


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_file_content(path: Path) -> str:
    """SHA-256 hex digest of a file's raw bytes."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1 << 16), b""):
            h.update(block)
    return h.hexdigest()


def get_project_id(project_path: Path | str) -> str:
    """Stable 16-hex id derived from the resolved absolute project path."""
    resolved = str(Path(project_path).expanduser().resolve())
    return hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:16]


@dataclass
class FileMetadata:
    path: str
    hash: str
    chunk_count: int
    language: str
    last_indexed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "hash": self.hash,
            "chunkCount": self.chunk_count,
            "language": self.language,
            "lastIndexed": self.last_indexed,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict[str, Any]) -> "FileMetadata":
        return cls(
            path=path,
            hash=str(data["hash"]),
            chunk_count=int(data.get("chunkCount", 0)),
            language=str(data.get("language", "unknown")),
            last_indexed=int(data.get("lastIndexed", 0)),
        )


@dataclass
class ProjectMetadata:
    project_id: str
    project_path: str
    embedding_model: str
    embedding_dimension: int
    created_at: int
    updated_at: int
    total_files: int = 0
    total_chunks: int = 0
    schema_version: int = SCHEMA_VERSION
    files: dict[str, FileMetadata] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "projectPath": self.project_path,
            "embeddingModel": self.embedding_model,
            "embeddingDimension": self.embedding_dimension,
            "totalFiles": self.total_files,
            "totalChunks": self.total_chunks,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "schemaVersion": self.schema_version,
            "files": {path: meta.to_dict() for path, meta in sorted(self.files.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectMetadata":
        files = data.get("files") or {}
        if not isinstance(files, dict):
            raise ValueError("'files' must be an object")
        return cls(
            project_id=str(data["projectId"]),
            project_path=str(data["projectPath"]),
            embedding_model=str(data["embeddingModel"]),
            embedding_dimension=int(data["embeddingDimension"]),
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", 0)),
            total_files=int(data.get("totalFiles", 0)),
            total_chunks=int(data.get("totalChunks", 0)),
            schema_version=int(data.get("schemaVersion", 0)),
            files={path: FileMetadata.from_dict(path, meta) for path, meta in files.items()},
        )


@dataclass
class ReconcileResult:
    """Classification of scanned files against the stored metadata."""

    to_index: list[ScannedFile] = field(default_factory=list)
    to_skip: list[ScannedFile] = field(default_factory=list)
    to_delete: list[str] = field(default_factory=list)
    # relative path -> hash computed during the check (missing if unreadable)
    hashes: dict[str, str] = field(default_factory=dict)


class MetadataStore:
    def __init__(self, index_dir: Path, on_progress: Optional[ProgressCallback] = None):
        self.index_dir = Path(index_dir)
        self.path = self.index_dir / METADATA_FILENAME
        self.on_progress = on_progress
        self.metadata: Optional[ProjectMetadata] = None

    def read(self) -> Optional[ProjectMetadata]:
        """Parse the metadata file.

        Returns None if there is no file; raises MetadataCorruptionError if the
        file exists but cannot be used.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise MetadataCorruptionError(f"Cannot read {self.path}: {exc}") from exc

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("top-level value must be an object")
            metadata = ProjectMetadata.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            raise MetadataCorruptionError(f"Invalid metadata in {self.path}: {exc}") from exc

        if metadata.schema_version != SCHEMA_VERSION:
            raise MetadataCorruptionError(
                f"Unsupported metadata schema version {metadata.schema_version} "
                f"(expected {SCHEMA_VERSION})"
            )
        return metadata

    def load(self) -> Optional[ProjectMetadata]:
        """Load metadata, treating a corrupt file as if there were no prior index."""
        try:
            self.metadata = self.read()
        except MetadataCorruptionError as exc:
            logger.warning("Ignoring unusable index metadata, full rebuild required: %s", exc)
            self.metadata = None
        return self.metadata

    def create(self, project_path: Path | str, model: str, dimension: int) -> ProjectMetadata:
        now = now_ms()
        self.metadata = ProjectMetadata(
            project_id=get_project_id(project_path),
            project_path=str(Path(project_path).resolve()),
            embedding_model=model,
            embedding_dimension=int(dimension),
            created_at=now,
            updated_at=now,
        )
        return self.metadata

    def save(self) -> None:
        """Write metadata atomically (temp file in the same directory, then rename)."""
        if self.metadata is None:
            return
        self.index_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.metadata.to_dict(), indent=2)
        fd, tmp_name = tempfile.mkstemp(prefix=".metadata-", suffix=".tmp", dir=self.index_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def update_file(self, path: str, file_hash: str, chunk_count: int, language: str) -> None:
        if self.metadata is None:
            return
        self.metadata.files[path] = FileMetadata(
            path=path,
            hash=file_hash,
            chunk_count=int(chunk_count),
            language=language,
            last_indexed=now_ms(),
        )

    def remove_file(self, path: str) -> None:
        if self.metadata is None:
            return
        self.metadata.files.pop(path, None)

    def update_counts(self, total_files: Optional[int] = None, total_chunks: Optional[int] = None) -> None:
        """Refresh aggregate counts; defaults are derived from the file table."""
        if self.metadata is None:
            return
        files = self.metadata.files
        self.metadata.total_files = len(files) if total_files is None else int(total_files)
        self.metadata.total_chunks = (
            sum(meta.chunk_count for meta in files.values())
            if total_chunks is None
            else int(total_chunks)
        )
        self.metadata.updated_at = now_ms()

    def _emit(self, current: int, total: int, current_file: Optional[str] = None, message: Optional[str] = None) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(
                IndexingProgress(
                    phase="hashing",
                    current=current,
                    total=total,
                    current_file=current_file,
                    message=message,
                )
            )
        except Exception:
            logger.exception("Progress callback failed during hashing")

    def check_files(self, files: list[ScannedFile]) -> ReconcileResult:
        """Split scanned files into to_index / to_skip and find deleted paths."""
        result = ReconcileResult()
        stored = self.metadata.files if self.metadata is not None else {}
        total = len(files)
        self._emit(0, total, message="Computing file hashes...")

        seen: set[str] = set()
        for i, scanned in enumerate(files):
            seen.add(scanned.relative_path)
            try:
                current_hash = hash_file_content(scanned.absolute_path)
            except OSError as exc:
                logger.debug("Cannot hash %s, treating as changed: %s", scanned.relative_path, exc)
                result.to_index.append(scanned)
            else:
                result.hashes[scanned.relative_path] = current_hash
                previous = stored.get(scanned.relative_path)
                if previous is not None and previous.hash == current_hash:
                    result.to_skip.append(scanned)
                else:
                    result.to_index.append(scanned)

            if (i + 1) % HASH_PROGRESS_EVERY == 0 or i == total - 1:
                self._emit(i + 1, total, current_file=scanned.relative_path)

        result.to_delete = [path for path in stored if path not in seen]
        return result
