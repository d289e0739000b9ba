# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Language detection helpers for indexable files."""

from __future__ import annotations

from pathlib import PurePosixPath

EXT_LANGUAGE_MAP = {
    # JavaScript / TypeScript
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    # Python
    ".py": "python",
    ".pyi": "python",
    ".pyw": "python",
    ".go": "go",
    ".rs": "rust",
    # C / C++
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".hxx": "cpp",
    ".hh": "cpp",
    ".java": "java",
    # Ruby
    ".rb": "ruby",
    ".rake": "ruby",
    ".gemspec": "ruby",
    # Shell
    ".sh": "bash",
    ".bash": "bash",
    ".zsh": "bash",
    # Docs / config / markup (line-based chunking only)
    ".md": "markdown",
    ".mdx": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".scss": "css",
    ".less": "css",
}

INDEXABLE_EXTENSIONS = frozenset(EXT_LANGUAGE_MAP)

# Languages with a tree-sitter grammar and a configured set of boundary nodes
AST_SUPPORTED_LANGUAGES = (
    "typescript",
    "javascript",
    "python",
    "go",
    "rust",
    "c",
    "cpp",
    "java",
    "ruby",
    "bash",
)


def language_for_extension(ext: str) -> str | None:
    """Return the language for a file extension (with leading dot), if indexable."""
    return EXT_LANGUAGE_MAP.get(ext.lower())


def language_for_path(path: str) -> str | None:
    """Return the language for a file path, or None when it is not indexable."""
    return language_for_extension(PurePosixPath(path.replace("\\", "/")).suffix)
