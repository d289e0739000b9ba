# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Incremental semantic indexing and search for source-code projects."""

from .errors import (EmbeddingError, MetadataCorruptionError, SemindexError,
                     StorageError)
from .indexer import (CodebaseIndexer, get_index_dir, get_index_stats,
                      index_codebase, index_exists, search_codebase)
from .models import (CodeChunk, IndexingProgress, IndexResult, IndexStats,
                     SearchResult)

__all__ = [
    "CodeChunk",
    "CodebaseIndexer",
    "EmbeddingError",
    "IndexResult",
    "IndexStats",
    "IndexingProgress",
    "MetadataCorruptionError",
    "SearchResult",
    "SemindexError",
    "StorageError",
    "get_index_dir",
    "get_index_stats",
    "index_codebase",
    "index_exists",
    "search_codebase",
]
