import os

import pytest

from semindex.analysis.languages import language_for_path
from semindex.scanner import FileScanner, scan_project


def test_scan_finds_indexable_files_sorted(test_repo_path):
    result = FileScanner(test_repo_path).scan()
    paths = [f.relative_path for f in result.files]

    assert paths == ["lib/helper.go", "main.py", "utils.ts"]
    assert paths == sorted(paths)
    by_path = {f.relative_path: f for f in result.files}
    assert by_path["main.py"].language == "python"
    assert by_path["utils.ts"].language == "typescript"
    assert by_path["lib/helper.go"].language == "go"
    assert by_path["main.py"].size_bytes == (test_repo_path / "main.py").stat().st_size
    assert by_path["main.py"].absolute_path == test_repo_path.resolve() / "main.py"


def test_scan_excludes_defaults_filenames_and_unknown_extensions(test_repo_path):
    (test_repo_path / "image.png").write_bytes(b"\x89PNG")
    (test_repo_path / "notes.xyz").write_text("unknown extension")
    (test_repo_path / "Makefile.md").write_text("# not the Makefile")

    paths = {f.relative_path for f in scan_project(test_repo_path).files}

    assert "node_modules/pkg/index.js" not in paths
    assert "package.json" not in paths
    assert "app.log" not in paths
    assert "image.png" not in paths
    assert "notes.xyz" not in paths
    assert "Makefile.md" in paths


def test_scan_respects_project_ignore_files(test_repo_path):
    (test_repo_path / ".gitignore").write_text("lib\n")
    (test_repo_path / ".semindexignore").write_text("*.ts\n")

    paths = [f.relative_path for f in FileScanner(test_repo_path).scan().files]

    assert paths == ["main.py"]


def test_scan_caller_and_config_patterns(test_repo_path):
    scanner = FileScanner(
        test_repo_path,
        exclude_patterns=["main.py"],
        config_ignore_patterns=["lib"],
    )
    paths = [f.relative_path for f in scanner.scan().files]
    assert paths == ["utils.ts"]


def test_oversized_files_reported_as_skipped(test_repo_path):
    (test_repo_path / "big.py").write_text("x = 1\n" * 100)

    result = FileScanner(test_repo_path, max_file_size=200).scan()

    assert "big.py" not in {f.relative_path for f in result.files}
    skipped = {s.path: s.reason for s in result.skipped}
    assert "big.py" in skipped
    assert "exceeds" in skipped["big.py"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinked_directories_not_followed(test_repo_path):
    try:
        os.symlink(test_repo_path / "lib", test_repo_path / "lib_link", target_is_directory=True)
        os.symlink(test_repo_path, test_repo_path / "lib" / "loop", target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")

    paths = [f.relative_path for f in FileScanner(test_repo_path).scan().files]
    assert paths == ["lib/helper.go", "main.py", "utils.ts"]


def test_scan_progress_events(test_repo_path):
    events = []
    FileScanner(test_repo_path, on_progress=events.append).scan()

    assert [e.phase for e in events] == ["scanning", "scanning"]
    assert events[-1].current == events[-1].total == 3


def test_scan_progress_callback_errors_are_contained(test_repo_path):
    def broken(_progress):
        raise RuntimeError("boom")

    result = FileScanner(test_repo_path, on_progress=broken).scan()
    assert len(result.files) == 3


def test_should_index_file(test_repo_path):
    scanner = FileScanner(test_repo_path)
    assert scanner.should_index_file("src/app.py")
    assert scanner.should_index_file(test_repo_path / "main.py")
    assert not scanner.should_index_file("node_modules/x/index.js")
    assert not scanner.should_index_file("package.json")
    assert not scanner.should_index_file("README.rst")


def test_language_for_path():
    assert language_for_path("a/b/c.TSX") == "typescript"
    assert language_for_path("x.rake") == "ruby"
    assert language_for_path("x.zsh") == "bash"
    assert language_for_path("noext") is None
