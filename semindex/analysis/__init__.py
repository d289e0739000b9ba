"""Pure analysis helpers for chunking and language classification."""

from .chunking import (CHUNK_NODE_TYPES, NODE_TO_CHUNK_TYPE, Chunker,
                       ParserRegistry, count_tokens, extract_symbol_name)
from .languages import (AST_SUPPORTED_LANGUAGES, EXT_LANGUAGE_MAP,
                        language_for_extension, language_for_path)

__all__ = [
    "AST_SUPPORTED_LANGUAGES",
    "CHUNK_NODE_TYPES",
    "Chunker",
    "EXT_LANGUAGE_MAP",
    "NODE_TO_CHUNK_TYPE",
    "ParserRegistry",
    "count_tokens",
    "extract_symbol_name",
    "language_for_extension",
    "language_for_path",
]
