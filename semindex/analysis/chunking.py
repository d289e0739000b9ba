# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Structural (tree-sitter) and line-based chunking of source files."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import tiktoken
from tree_sitter_language_pack import get_parser

from ..config import (DEFAULT_MAX_CHUNK_CHARS, DEFAULT_MAX_TREE_DEPTH,
                      DEFAULT_MIN_CHUNK_CHARS)
from ..models import ParsedChunk

logger = logging.getLogger(__name__)

# Node kinds that start a chunk, per language
CHUNK_NODE_TYPES: dict[str, frozenset[str]] = {
    "typescript": frozenset(
        {
            "function_declaration",
            "class_declaration",
            "method_definition",
            "arrow_function",
            "function_expression",
            "interface_declaration",
            "type_alias_declaration",
            "export_statement",
        }
    ),
    "javascript": frozenset(
        {
            "function_declaration",
            "class_declaration",
            "method_definition",
            "arrow_function",
            "function_expression",
            "export_statement",
        }
    ),
    "python": frozenset(
        {"function_definition", "class_definition", "async_function_definition"}
    ),
    "go": frozenset({"function_declaration", "method_declaration", "type_declaration"}),
    "rust": frozenset(
        {"function_item", "impl_item", "struct_item", "enum_item", "trait_item", "mod_item"}
    ),
    "c": frozenset({"function_definition", "struct_specifier", "enum_specifier"}),
    "cpp": frozenset(
        {"function_definition", "class_specifier", "struct_specifier", "namespace_definition"}
    ),
    "java": frozenset(
        {
            "method_declaration",
            "class_declaration",
            "interface_declaration",
            "constructor_declaration",
        }
    ),
    "ruby": frozenset({"method", "class", "module", "singleton_method"}),
    "bash": frozenset({"function_definition"}),
}

NODE_TO_CHUNK_TYPE: dict[str, str] = {
    # Functions
    "function_declaration": "function",
    "function_definition": "function",
    "async_function_definition": "function",
    "function_item": "function",
    "arrow_function": "function",
    "function_expression": "function",
    # Methods
    "method_declaration": "method",
    "method_definition": "method",
    "method": "method",
    "singleton_method": "method",
    "constructor_declaration": "method",
    # Classes
    "class_declaration": "class",
    "class_definition": "class",
    "class_specifier": "class",
    "class": "class",
    # Structs
    "struct_item": "struct",
    "struct_specifier": "struct",
    "interface_declaration": "interface",
    "type_alias_declaration": "type",
    "type_declaration": "type",
    "enum_item": "enum",
    "enum_specifier": "enum",
    "trait_item": "trait",
    "impl_item": "impl",
    # Modules / namespaces
    "mod_item": "module",
    "module": "module",
    "namespace_definition": "module",
    "export_statement": "block",
}

# tree-sitter-language-pack grammar names, where they differ from ours
GRAMMAR_NAMES: dict[str, str] = {}

SYMBOL_NAME_FIELDS = ("name", "identifier")
SYMBOL_NODE_TYPES = frozenset(
    {"identifier", "property_identifier", "type_identifier", "constant"}
)


def count_tokens(s: str, embed_model: str | None = None) -> int:
    """Count tokens for a string using tiktoken, falling back to a word count."""
    try:
        try:
            enc = tiktoken.encoding_for_model(embed_model or "")
        except KeyError:
            enc = tiktoken.get_encoding("cl100k_base")
        return len(enc.encode(s, disallowed_special=()))
    except Exception:
        # Encoding files are fetched on first use; stay usable offline
        logger.debug("tiktoken unavailable, using whitespace token estimate", exc_info=True)
    return max(1, len(s.split()))


def _node_text(node: Any, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def extract_symbol_name(node: Any, source: bytes) -> Optional[str]:
    """Best-effort name of a declaration node."""
    for field_name in SYMBOL_NAME_FIELDS:
        name_node = node.child_by_field_name(field_name)
        if name_node is not None:
            return _node_text(name_node, source)
    for child in node.named_children:
        if child.type in SYMBOL_NODE_TYPES:
            return _node_text(child, source)
    return None


class ParserRegistry:
    """Lazily loads and caches one tree-sitter parser per language.

    A language whose grammar cannot be loaded is remembered as unsupported,
    so ``get`` returns ``None`` for it without retrying.
    """

    def __init__(self, loader: Callable[[str], Any] = get_parser):
        self._loader = loader
        self._parsers: dict[str, Any] = {}

    def get(self, language: str) -> Any | None:
        if language in self._parsers:
            return self._parsers[language]

        parser = None
        if language in CHUNK_NODE_TYPES:
            grammar = GRAMMAR_NAMES.get(language, language)
            try:
                parser = self._loader(grammar)
            except Exception as exc:
                logger.debug("Parser not available for %s: %s", language, exc)
                parser = None
        self._parsers[language] = parser
        return parser

    def is_supported(self, language: str) -> bool:
        return self.get(language) is not None


class _Pending:
    """An oversized boundary node awaiting its inner chunks."""

    __slots__ = ("parent", "slot", "emitted", "code", "start_line", "end_line", "symbol_name")

    def __init__(self, parent, slot, code, start_line, end_line, symbol_name):
        self.parent = parent
        self.slot = slot
        self.emitted = 0
        self.code = code
        self.start_line = start_line
        self.end_line = end_line
        self.symbol_name = symbol_name


def _count_emitted(pending: Optional[_Pending]) -> None:
    while pending is not None:
        pending.emitted += 1
        pending = pending.parent


class Chunker:
    """Splits file content into ParsedChunks.

    Uses syntax-tree boundaries when a grammar is available for the language
    and falls back to size-bounded line blocks otherwise.
    """

    def __init__(
        self,
        registry: Optional[ParserRegistry] = None,
        *,
        min_chars: int = DEFAULT_MIN_CHUNK_CHARS,
        max_chars: int = DEFAULT_MAX_CHUNK_CHARS,
        max_depth: int = DEFAULT_MAX_TREE_DEPTH,
    ):
        if min_chars < 0 or max_chars <= 0 or min_chars > max_chars:
            raise ValueError(f"invalid chunk bounds min={min_chars} max={max_chars}")
        self.registry = registry or ParserRegistry()
        self.min_chars = min_chars
        self.max_chars = max_chars
        self.max_depth = max_depth

    def parse(self, content: str, language: str) -> list[ParsedChunk]:
        node_types = CHUNK_NODE_TYPES.get(language)
        if not node_types:
            return self.line_chunks(content)

        parser = self.registry.get(language)
        if parser is None:
            return self.line_chunks(content)

        try:
            source = content.encode("utf-8")
            tree = parser.parse(source)
            chunks = self._walk(tree.root_node, node_types, source, language)
        except Exception:
            logger.warning(
                "Syntax parsing failed for %s content, using line chunks",
                language,
                exc_info=True,
            )
            return self.line_chunks(content)

        if not chunks:
            return self.line_chunks(content)
        return chunks

    def _walk(
        self, root: Any, node_types: frozenset[str], source: bytes, language: str
    ) -> list[ParsedChunk]:
        # Pre-order walk; slots keep emitted chunks in source order and
        # reserve a position for each oversized node's fallback.
        slots: list[Optional[ParsedChunk]] = []
        pendings: list[_Pending] = []
        depth_warned = False

        stack: list[tuple[Any, int, Optional[_Pending]]] = [(root, 0, None)]
        while stack:
            node, depth, owner = stack.pop()
            descend_owner = owner

            if node.type in node_types:
                code = _node_text(node, source)
                if len(code) < self.min_chars:
                    continue
                start_line = node.start_point[0] + 1
                end_line = node.end_point[0] + 1
                symbol_name = extract_symbol_name(node, source)
                if len(code) <= self.max_chars:
                    slots.append(
                        ParsedChunk(
                            code=code,
                            start_line=start_line,
                            end_line=end_line,
                            chunk_type=NODE_TO_CHUNK_TYPE.get(node.type, "block"),
                            symbol_name=symbol_name,
                        )
                    )
                    _count_emitted(owner)
                    continue
                pending = _Pending(owner, len(slots), code, start_line, end_line, symbol_name)
                slots.append(None)
                pendings.append(pending)
                descend_owner = pending

            if depth >= self.max_depth:
                if not depth_warned:
                    logger.warning(
                        "Syntax tree for %s content exceeds depth %s; deeper nodes skipped",
                        language,
                        self.max_depth,
                    )
                    depth_warned = True
                continue

            for child in reversed(node.named_children):
                stack.append((child, depth + 1, descend_owner))

        # Inner pendings were created after their ancestors
        for pending in reversed(pendings):
            if pending.emitted:
                continue
            slots[pending.slot] = ParsedChunk(
                code=pending.code[: self.max_chars],
                start_line=pending.start_line,
                end_line=pending.end_line,
                chunk_type="file",
                symbol_name=pending.symbol_name,
            )
            _count_emitted(pending.parent)

        return [chunk for chunk in slots if chunk is not None]

    def line_chunks(self, content: str) -> list[ParsedChunk]:
        """Size-bounded line blocks for content without usable structure."""
        if not content.strip():
            return []

        lines = content.split("\n")
        chunks: list[ParsedChunk] = []
        current: list[str] = []
        current_size = 0
        start_line = 1

        def flush() -> None:
            if not current:
                return
            code = "\n".join(current)
            if len(code) >= self.min_chars:
                chunks.append(
                    ParsedChunk(
                        code=code,
                        start_line=start_line,
                        end_line=start_line + len(current) - 1,
                        chunk_type="block",
                    )
                )

        for line_no, line in enumerate(lines, start=1):
            if len(line) > self.max_chars:
                flush()
                # One region per line span, truncated like an oversized node
                chunks.append(
                    ParsedChunk(
                        code=line[: self.max_chars],
                        start_line=line_no,
                        end_line=line_no,
                        chunk_type="file",
                    )
                )
                current = []
                current_size = 0
                start_line = line_no + 1
                continue

            line_size = len(line) + 1
            if current and current_size + line_size > self.max_chars:
                flush()
                current = [line]
                current_size = line_size
                start_line = line_no
            else:
                current.append(line)
                current_size += line_size
        flush()

        if not chunks:
            chunks.append(
                ParsedChunk(
                    code=content[: self.max_chars],
                    start_line=1,
                    end_line=len(lines),
                    chunk_type="file",
                )
            )
        return chunks
