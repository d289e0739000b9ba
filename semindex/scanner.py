# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Project file discovery.

Walks a project tree, prunes ignored directories before descending and
returns the indexable files in a deterministic order.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from .analysis.languages import language_for_path
from .config import DEFAULT_MAX_FILE_SIZE
from .ignore_utils import EXCLUDED_FILENAMES, IgnoreMatcher, build_matcher
from .models import (IndexingProgress, ProgressCallback, ScanResult,
                     ScannedFile, SkippedPath)

logger = logging.getLogger(__name__)


class FileScanner:
    """Scans a directory for indexable code files."""

    def __init__(
        self,
        project_path: Path | str,
        *,
        exclude_patterns: Optional[Iterable[str]] = None,
        config_ignore_patterns: Optional[Iterable[str]] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.project_path = Path(project_path).resolve()
        self.max_file_size = max_file_size
        self.on_progress = on_progress
        self._exclude_patterns = list(exclude_patterns or [])
        self._config_ignore_patterns = list(config_ignore_patterns or [])
        self._matcher: IgnoreMatcher | None = None

    @property
    def matcher(self) -> IgnoreMatcher:
        # Ignore files are read lazily so a rescan picks up edits to them
        if self._matcher is None:
            self._matcher = build_matcher(
                self.project_path,
                config_ignore_patterns=self._config_ignore_patterns,
                extra_patterns=self._exclude_patterns,
            )
        return self._matcher

    def _emit(self, current: int, total: int, message: str) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(
                IndexingProgress(phase="scanning", current=current, total=total, message=message)
            )
        except Exception:
            logger.exception("Progress callback failed during scan")

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.project_path).as_posix()

    def scan(self) -> ScanResult:
        """Discover indexable files under the project root."""
        self._matcher = None
        result = ScanResult()
        self._emit(0, 0, "Discovering files...")

        pending = [self.project_path]
        while pending:
            directory = pending.pop()
            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except OSError as exc:
                logger.debug("Cannot read directory %s: %s", directory, exc)
                result.skipped.append(
                    SkippedPath(path=self._relative(Path(directory)) or ".", reason=str(exc))
                )
                continue

            for entry in entries:
                full_path = Path(entry.path)
                rel = self._relative(full_path)
                if self.matcher.is_ignored(rel):
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        pending.append(full_path)
                        continue
                    if not entry.is_file():
                        continue
                    language = language_for_path(entry.name)
                    if language is None or entry.name in EXCLUDED_FILENAMES:
                        continue
                    size = entry.stat().st_size
                except OSError as exc:
                    logger.debug("Cannot stat %s: %s", full_path, exc)
                    result.skipped.append(SkippedPath(path=rel, reason=str(exc)))
                    continue

                if size > self.max_file_size:
                    result.skipped.append(
                        SkippedPath(
                            path=rel,
                            reason=f"file size {size} exceeds limit {self.max_file_size}",
                        )
                    )
                    continue

                result.files.append(
                    ScannedFile(
                        absolute_path=full_path,
                        relative_path=rel,
                        language=language,
                        size_bytes=size,
                    )
                )

        result.files.sort(key=lambda f: f.relative_path)
        logger.info(
            "Scan summary for %s: included=%s skipped=%s",
            self.project_path,
            len(result.files),
            len(result.skipped),
        )
        self._emit(len(result.files), len(result.files), f"Found {len(result.files)} files")
        return result

    def should_index_file(self, file_path: Path | str) -> bool:
        """Quick check whether a single file would be picked up by scan()."""
        path = Path(file_path)
        if path.is_absolute():
            try:
                rel = path.resolve().relative_to(self.project_path).as_posix()
            except ValueError:
                return False
        else:
            rel = path.as_posix()

        if self.matcher.is_ignored(rel):
            return False
        if language_for_path(rel) is None:
            return False
        return path.name not in EXCLUDED_FILENAMES


def scan_project(
    project_path: Path | str,
    exclude_patterns: Optional[Iterable[str]] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> ScanResult:
    """Convenience wrapper: scan a project with default options."""
    return FileScanner(
        project_path, exclude_patterns=exclude_patterns, max_file_size=max_file_size
    ).scan()
