# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Exception types raised by the indexing pipeline."""

from __future__ import annotations


class SemindexError(Exception):
    """Base class for all semindex errors."""


class EmbeddingError(SemindexError):
    """The embedding provider rejected a request (auth, unknown model, bad response)."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StorageError(SemindexError):
    """A vector store operation failed."""


class MetadataCorruptionError(SemindexError):
    """The persisted project metadata could not be read or parsed."""
