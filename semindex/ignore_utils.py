# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Gitignore-style path matching shared by the scanner and the indexer."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

IGNORE_FILE_NAMES = (".gitignore", ".semindexignore")

DEFAULT_EXCLUDE_PATTERNS = [
    # Dependencies
    "node_modules",
    "vendor",
    "bower_components",
    "jspm_packages",
    # Build outputs
    "dist",
    "build",
    "out",
    "target",
    ".next",
    ".nuxt",
    ".output",
    ".vercel",
    ".netlify",
    # Caches
    ".cache",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".tox",
    ".nox",
    # VCS
    ".git",
    ".svn",
    ".hg",
    # IDE / OS
    ".idea",
    ".vscode",
    ".vs",
    "*.swp",
    "*.swo",
    ".DS_Store",
    "Thumbs.db",
    # Logs and coverage
    "logs",
    "*.log",
    "coverage",
    ".nyc_output",
    "htmlcov",
    # Lockfiles
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "Gemfile.lock",
    "poetry.lock",
    "Cargo.lock",
    "go.sum",
    # Generated / minified
    "*.min.js",
    "*.min.css",
    "*.map",
    "*.d.ts",
    # Binaries and media
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.ico",
    "*.svg",
    "*.woff",
    "*.woff2",
    "*.ttf",
    "*.eot",
    "*.mp3",
    "*.mp4",
    "*.wav",
    "*.pdf",
    "*.zip",
    "*.tar",
    "*.gz",
    # Databases
    "*.sqlite",
    "*.db",
    # Secrets
    ".env",
    ".env.*",
    "*.pem",
    "*.key",
]

# Project housekeeping files that carry no searchable code
EXCLUDED_FILENAMES = frozenset(
    {
        ".gitignore",
        ".gitattributes",
        ".npmrc",
        ".yarnrc",
        ".editorconfig",
        ".prettierrc",
        ".eslintrc",
        ".eslintignore",
        ".prettierignore",
        "tsconfig.json",
        "jsconfig.json",
        "package.json",
        "package-lock.json",
        "pnpm-lock.yaml",
        "yarn.lock",
        "Cargo.toml",
        "go.mod",
        "go.sum",
        "Gemfile",
        "Makefile",
        "Dockerfile",
        "docker-compose.yml",
        "LICENSE",
        "CHANGELOG.md",
        "CONTRIBUTING.md",
        "CODE_OF_CONDUCT.md",
    }
)


def glob_to_regex(glob: str) -> re.Pattern[str]:
    """Compile a gitignore-style glob to a case-insensitive path regex.

    The pattern matches a whole path segment run anywhere in a ``/``-separated
    relative path, so ``build`` matches ``build``, ``src/build`` and
    ``build/out.js``.
    """
    body = (
        glob.replace(".", r"\.")
        .replace("**", "\0")
        .replace("*", "[^/]*")
        .replace("?", "[^/]")
        .replace("\0", ".*")
    )
    return re.compile(f"(^|/){body}($|/)", re.IGNORECASE)


class IgnoreMatcher:
    """Ordered list of ignore rules where the last matching rule wins."""

    def __init__(self, patterns: Iterable[str] | None = None):
        self._rules: list[tuple[re.Pattern[str], bool]] = []
        if patterns:
            self.add_patterns(patterns)

    def __len__(self) -> int:
        return len(self._rules)

    def add_pattern(self, pattern: str) -> None:
        line = pattern.strip()
        if not line or line.startswith("#"):
            return
        negated = line.startswith("!")
        if negated:
            line = line[1:].strip()
            if not line:
                return
        self._rules.append((glob_to_regex(line), negated))

    def add_patterns(self, patterns: Iterable[str]) -> None:
        for pattern in patterns:
            self.add_pattern(pattern)

    def is_ignored(self, relative_path: str) -> bool:
        path = relative_path.replace("\\", "/").strip("/")
        ignored = False
        for regex, negated in self._rules:
            if regex.search(path):
                ignored = not negated
        return ignored


def load_ignore_file(path: Path) -> list[str]:
    """Read raw pattern lines from an ignore file; missing or unreadable files yield []."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    except OSError:
        logger.debug("Failed to read ignore file %s", path, exc_info=True)
        return []
    return text.splitlines()


def load_gitignore(repo_root: Path) -> list[str]:
    """Collect patterns from the root-level ignore files of a project."""
    patterns: list[str] = []
    for name in IGNORE_FILE_NAMES:
        patterns.extend(load_ignore_file(repo_root / name))
    return patterns


def build_matcher(
    repo_root: Path,
    *,
    config_ignore_patterns: Iterable[str] | None = None,
    extra_patterns: Iterable[str] | None = None,
) -> IgnoreMatcher:
    """Assemble the matcher for a project.

    Order: built-in defaults, configured patterns, caller patterns, then the
    project's own ignore files (so a ``!pattern`` there can re-include a
    default exclusion).
    """
    matcher = IgnoreMatcher(DEFAULT_EXCLUDE_PATTERNS)
    if config_ignore_patterns:
        matcher.add_patterns(config_ignore_patterns)
    if extra_patterns:
        matcher.add_patterns(extra_patterns)
    matcher.add_patterns(load_gitignore(repo_root))
    return matcher
