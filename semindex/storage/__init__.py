"""Persistent stores: per-project metadata and the LanceDB chunk table."""

from .metadata import MetadataStore, ProjectMetadata, ReconcileResult
from .vector import VectorStore

__all__ = ["MetadataStore", "ProjectMetadata", "ReconcileResult", "VectorStore"]
