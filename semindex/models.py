# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Data models shared by the scanner, chunker, store and indexer."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

# Phases of a single index() run, in order
PHASES = (
    "initializing",
    "scanning",
    "hashing",
    "parsing",
    "embedding",
    "storing",
    "cleaning",
    "done",
    "error",
)

CHUNK_TYPES = (
    "function",
    "class",
    "method",
    "struct",
    "interface",
    "type",
    "enum",
    "trait",
    "impl",
    "module",
    "block",
    "file",
)


@dataclass
class ScannedFile:
    """A file discovered by the scanner; recomputed on every run."""

    absolute_path: Path
    relative_path: str  # always "/"-separated
    language: str
    size_bytes: int


@dataclass
class SkippedPath:
    """A path the scanner could not (or would not) include."""

    path: str
    reason: str


@dataclass
class ScanResult:
    files: list[ScannedFile] = field(default_factory=list)
    skipped: list[SkippedPath] = field(default_factory=list)


@dataclass
class ParsedChunk:
    """A code region produced by the chunker, not yet embedded."""

    code: str
    start_line: int  # 1-based, inclusive
    end_line: int
    chunk_type: str
    symbol_name: str | None = None


@dataclass
class CodeChunk:
    """A chunk row as stored in the vector table."""

    id: str
    file_path: str
    code: str
    start_line: int
    end_line: int
    file_hash: str
    chunk_type: str
    language: str
    symbol_name: str
    vector: list[float]

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "code": self.code,
            "start_line": int(self.start_line),
            "end_line": int(self.end_line),
            "file_hash": self.file_hash,
            "chunk_type": self.chunk_type,
            "language": self.language,
            "symbol_name": self.symbol_name or "",
            "vector": [float(v) for v in self.vector],
        }

    @classmethod
    def from_record(cls, row: dict) -> "CodeChunk":
        vector = row.get("vector")
        if vector is not None and hasattr(vector, "tolist"):
            vector = vector.tolist()
        return cls(
            id=str(row.get("id", "")),
            file_path=str(row.get("file_path", "")),
            code=str(row.get("code", "")),
            start_line=int(row.get("start_line", 0)),
            end_line=int(row.get("end_line", 0)),
            file_hash=str(row.get("file_hash", "")),
            chunk_type=str(row.get("chunk_type", "block")),
            language=str(row.get("language", "unknown")),
            symbol_name=str(row.get("symbol_name") or ""),
            vector=list(vector or []),
        )


@dataclass
class SearchResult:
    """Represents a search result."""

    chunk: CodeChunk
    score: float
    distance: float


@dataclass
class IndexingProgress:
    phase: str
    current: int = 0
    total: int = 0
    current_file: str | None = None
    message: str | None = None
    error: str | None = None


ProgressCallback = Callable[[IndexingProgress], None]


@dataclass
class IndexResult:
    """Outcome of a single index() run."""

    success: bool
    files_scanned: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    files_removed: int = 0
    total_chunks: int = 0
    duration_ms: int = 0
    error: str | None = None


@dataclass
class IndexStats:
    exists: bool
    total_files: int = 0
    total_chunks: int = 0
    embedding_model: str | None = None
    last_updated: int | None = None
    size_bytes: int | None = None
