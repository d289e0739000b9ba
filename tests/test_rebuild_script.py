import functools

from scripts import rebuild_index
from semindex.indexer import CodebaseIndexer


def test_rebuild_script_reindexes_projects(test_repo_path, test_config, dummy_embedder, monkeypatch, capsys):
    monkeypatch.setattr(
        rebuild_index, "CodebaseIndexer", functools.partial(CodebaseIndexer, embedder=dummy_embedder)
    )
    monkeypatch.setattr(rebuild_index, "setup_logging", lambda cfg: None)

    assert rebuild_index.main([str(test_repo_path)]) == 0
    # a second rebuild starts from scratch again
    assert rebuild_index.main([str(test_repo_path)]) == 0

    out = capsys.readouterr().out
    assert "Indexed 3/3 files" in out
    assert "All indexes rebuilt" in out


def test_rebuild_script_reports_missing_project(tmp_path, test_config, monkeypatch, capsys):
    monkeypatch.setattr(rebuild_index, "setup_logging", lambda cfg: None)

    assert rebuild_index.main([str(tmp_path / "missing")]) == 1
    assert "1 failure" in capsys.readouterr().out
