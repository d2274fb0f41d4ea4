"""Tests for secgate.core.paths — repo root resolver."""

from __future__ import annotations

from pathlib import Path

import pytest

from secgate.core.errors import RepoRootNotFound
from secgate.core.paths import find_repo_root


@pytest.mark.parametrize("marker", [".git", "Jenkinsfile", "pyproject.toml", "package.json"])
def test_finds_root_by_marker(tmp_path: Path, marker: str) -> None:
    (tmp_path / marker).touch()
    assert find_repo_root(tmp_path) == tmp_path.resolve()


def test_finds_root_from_nested_dir(tmp_path: Path) -> None:
    """Running from app/src/ still resolves to the repository root."""
    (tmp_path / ".git").mkdir()
    nested = tmp_path / "app" / "src"
    nested.mkdir(parents=True)
    assert find_repo_root(nested) == tmp_path.resolve()


def test_nearest_marker_wins(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    app = tmp_path / "app"
    app.mkdir()
    (app / "package.json").write_text("{}")
    assert find_repo_root(app) == app.resolve()


def test_defaults_to_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "Jenkinsfile").touch()
    monkeypatch.chdir(tmp_path)
    assert find_repo_root() == tmp_path.resolve()


def test_raises_when_no_marker(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    start = tmp_path / "nowhere"
    start.mkdir()
    monkeypatch.setattr("secgate.core.paths._MARKERS", ("__no_such_marker__",))
    with pytest.raises(RepoRootNotFound):
        find_repo_root(start)
