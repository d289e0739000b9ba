# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Pytest configuration and shared fixtures for semindex tests.
"""

import hashlib
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pytest
from numpy.random import default_rng

import semindex.config as semindex_config


class DummyEmbedder:
    """Deterministic embedder: the vector of a text depends only on its content."""

    def __init__(self, dimension: int = 32, model: str = "test-model"):
        self.dimension = dimension
        self.model = model
        self.calls: list[tuple[str, int]] = []
        self.fail_with: Exception | None = None

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        # Use int from digest to seed a local RNG; avoid global np.random state
        rng = default_rng(int.from_bytes(digest[:8], "big", signed=False))
        vec = rng.standard_normal(self.dimension).astype("float32")
        return (vec / (np.linalg.norm(vec) + 1e-8)).tolist()

    def embed_all(self, texts, *, mode):
        if mode not in ("document", "query"):
            raise ValueError(mode)
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append((mode, len(texts)))
        return [self._vector(t) for t in texts]

    def embed_query(self, text):
        return self.embed_all([text], mode="query")[0]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def data_dir(temp_dir):
    """Shared data directory under which per-project indexes are created."""
    path = temp_dir / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def test_config(data_dir, temp_dir, monkeypatch):
    """Config pointing at a temporary data dir, installed as the global config."""
    monkeypatch.delenv("VOYAGE_API_KEY", raising=False)
    cfg = semindex_config.Config(temp_dir / "missing-config.json")
    cfg.config_data["index"] = {"path": str(data_dir), "ignore_patterns": []}
    cfg.config_data["embeddings"] = {"provider": "voyage", "model": "voyage-code-3"}
    monkeypatch.setattr(semindex_config, "_config", cfg)
    return cfg


@pytest.fixture
def dummy_embedder():
    return DummyEmbedder()


@pytest.fixture
def test_repo_path(temp_dir):
    """Create a temporary project with sample files."""
    repo_path = temp_dir / "test_repo"
    repo_path.mkdir(parents=True, exist_ok=True)

    (repo_path / "main.py").write_text('''
def hello_world():
    """Say hello to the world."""
    print("Hello, World!")


class Calculator:
    """Simple calculator class."""

    def add(self, a, b):
        """Add two numbers."""
        return a + b

    def subtract(self, a, b):
        """Subtract b from a."""
        return a - b


if __name__ == "__main__":
    hello_world()
''')

    (repo_path / "utils.ts").write_text('''
export function processData(data: string[]): string[] {
  const result: string[] = [];
  for (const item of data) {
    result.push(item.trim());
  }
  return result;
}

export function validateInput(value: string): boolean {
  if (!value) {
    throw new Error("Value cannot be empty");
  }
  return true;
}
''')

    subdir = repo_path / "lib"
    subdir.mkdir()
    (subdir / "helper.go").write_text('''
package lib

import "strings"

// FormatOutput upper-cases text for display.
func FormatOutput(text string) string {
	return strings.ToUpper(text)
}
''')

    # Excluded by default rules
    (repo_path / "node_modules" / "pkg").mkdir(parents=True)
    (repo_path / "node_modules" / "pkg" / "index.js").write_text("module.exports = function () { return 42; };\n")
    (repo_path / "package.json").write_text('{"name": "sample", "version": "1.0.0"}\n')
    (repo_path / "app.log").write_text("log line that should never be indexed\n")

    yield repo_path
