"""Tests for the Git-backed history log."""

import shutil
import subprocess
from pathlib import Path

import pytest

from dotmatrix.core.repository import DEFAULT_USER_NAME, GitRepository

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def test_init_is_idempotent(tmp_path: Path) -> None:
    """Test that init creates a repository once."""
    repo = GitRepository(tmp_path / "data")
    assert not repo.exists()
    repo.init()
    assert repo.exists()
    head = (repo.path / ".git" / "HEAD").read_text()
    repo.init()
    assert (repo.path / ".git" / "HEAD").read_text() == head


def test_init_sets_identity_when_missing(tmp_path: Path, isolated_git: Path) -> None:
    """Test that a local identity is configured when git has none."""
    isolated_git.write_text("")
    repo = GitRepository(tmp_path / "data")
    repo.init()
    name = subprocess.run(
        ["git", "config", "--local", "user.name"],
        cwd=repo.path,
        capture_output=True,
        text=True,
        check=True,
    ).stdout.strip()
    assert name == DEFAULT_USER_NAME


def test_commit_and_log(tmp_path: Path) -> None:
    """Test committing and reading history newest first."""
    repo = GitRepository(tmp_path / "data")
    repo.init()
    assert repo.log() == []

    (repo.path / "index.json").write_text('{"files": {}}')
    repo.commit("First backup")
    (repo.path / "index.json").write_text('{"files": {"/a": {}}}')
    repo.commit("Second backup | with separators")

    commits = repo.log()
    assert [c.message for c in commits] == ["Second backup | with separators", "First backup"]
    assert commits[0].id.startswith(commits[0].short_id)
    assert len(repo.log(limit=1)) == 1


def test_commit_without_changes(tmp_path: Path) -> None:
    """Test that committing an unchanged tree is not an error."""
    repo = GitRepository(tmp_path / "data")
    repo.init()
    (repo.path / "file").write_text("x")
    repo.commit("one")
    repo.commit("two")
    assert len(repo.log()) == 1


def test_commit_initializes_repository(tmp_path: Path) -> None:
    """Test that committing into a plain directory creates the repository."""
    data = tmp_path / "data"
    data.mkdir()
    (data / "file").write_text("x")
    repo = GitRepository(data)
    repo.commit("first")
    assert repo.exists()
    assert len(repo.log()) == 1


def test_show(tmp_path: Path) -> None:
    """Test reading a file as it was in an earlier commit."""
    repo = GitRepository(tmp_path / "data")
    repo.init()
    (repo.path / "index.json").write_bytes(b"version one")
    repo.commit("one")
    (repo.path / "index.json").write_bytes(b"version two")
    repo.commit("two")

    first = repo.log()[-1]
    assert repo.show(first.id, "index.json") == b"version one"
    assert repo.show(first.short_id, "index.json") == b"version one"

    with pytest.raises(RuntimeError):
        repo.show(first.id, "missing.json")
