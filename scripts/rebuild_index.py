#!/usr/bin/env python3
#
# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Script to delete and rebuild the semantic index of one or more projects.

Usage:
    python scripts/rebuild_index.py [PROJECT_PATH ...]

With no arguments the current directory is rebuilt. For each project this
script:
1. Deletes the project's index directory (metadata and vector table)
2. Re-indexes every file from scratch
3. Prints the resulting index statistics
"""

import logging
import sys
from pathlib import Path

from semindex.config import get_config, setup_logging
from semindex.indexer import CodebaseIndexer
from semindex.models import IndexingProgress

logger = logging.getLogger(__name__)


def _log_progress(progress: IndexingProgress) -> None:
    if progress.error:
        logger.error("[%s] %s", progress.phase, progress.error)
    elif progress.message:
        logger.info("[%s] %s", progress.phase, progress.message)


def rebuild_project_index(project_path: Path) -> bool:
    """Drop and rebuild the index for a single project; returns success."""
    with CodebaseIndexer(project_path, force_reindex=True, on_progress=_log_progress) as indexer:
        logger.info("Index directory: %s", indexer.index_dir)
        indexer.delete_index()

        result = indexer.index()
        if not result.success:
            logger.error("Rebuild failed for %s: %s", project_path, result.error)
            return False

        print(
            f"  Indexed {result.files_indexed}/{result.files_scanned} files, "
            f"{result.total_chunks} chunks in {result.duration_ms} ms"
        )
        stats = indexer.get_stats()
    print(f"  Model: {stats.embedding_model}  Size on disk: {stats.size_bytes or 0} bytes")
    return True


def main(argv: list[str] | None = None) -> int:
    """Main execution."""
    args = sys.argv[1:] if argv is None else argv
    setup_logging(get_config())

    print("=" * 80)
    print("SEMINDEX - REBUILD INDEX")
    print("=" * 80)
    print()

    projects = [Path(arg).expanduser() for arg in args] or [Path.cwd()]
    failures = 0
    for step, project in enumerate(projects, start=1):
        print("=" * 80)
        print(f"STEP {step}: REBUILDING {project}")
        print("=" * 80)
        if not project.is_dir():
            logger.warning("Project path does not exist or is not a directory: %s", project)
            failures += 1
            continue
        try:
            if not rebuild_project_index(project):
                failures += 1
        except Exception:
            logger.exception("Unexpected error rebuilding %s", project)
            failures += 1
        print()

    if failures:
        print(f"Completed with {failures} failure(s)")
        return 1
    print("All indexes rebuilt")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
