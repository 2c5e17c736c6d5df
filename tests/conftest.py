"""Test configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence

import pytest

from dotmatrix.core.config import CONFIG_FILENAME, Config
from dotmatrix.core.context import INDEX_FILENAME, Context
from dotmatrix.core.repository import Commit


class FakeHistory:
    """In-memory history log that snapshots the index on every commit."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.commits: List[Commit] = []
        self.snapshots: Dict[str, bytes] = {}

    def init(self) -> None:
        pass

    def commit(self, message: str) -> None:
        commit_id = f"c{len(self.commits) + 1:039d}"
        index_path = self.data_dir / INDEX_FILENAME
        self.snapshots[commit_id] = index_path.read_bytes() if index_path.exists() else b""
        self.commits.append(
            Commit(id=commit_id, short_id=commit_id[:7], message=message, timestamp="")
        )

    def log(self, limit: int = 20) -> List[Commit]:
        return list(reversed(self.commits))[:limit]

    def show(self, commit_id: str, path: str) -> bytes:
        if path != INDEX_FILENAME or commit_id not in self.snapshots:
            raise RuntimeError(f"Git command failed: bad object {commit_id}:{path}")
        return self.snapshots[commit_id]


@pytest.fixture(autouse=True)
def isolated_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point git at a throwaway global config with a test identity."""
    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text(
        "[user]\n\tname = Test User\n\temail = test@example.com\n"
        "[init]\n\tdefaultBranch = main\n"
    )
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    return gitconfig


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a fake home directory and make ``~`` expand to it."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def dotfiles(home: Path) -> Dict[str, Path]:
    """Create a handful of dotfiles in the fake home directory."""
    files = {
        "bashrc": home / ".bashrc",
        "zshrc": home / ".zshrc",
        "gitconfig": home / ".gitconfig",
        "init_vim": home / ".config" / "nvim" / "init.vim",
        "plugins": home / ".config" / "nvim" / "lua" / "plugins.lua",
    }
    files["init_vim"].parent.mkdir(parents=True)
    files["plugins"].parent.mkdir(parents=True)
    files["bashrc"].write_text("export PATH=$PATH:~/bin\n")
    files["zshrc"].write_text("setopt autocd\n")
    files["gitconfig"].write_text("[user]\n\tname = Test User\n")
    files["init_vim"].write_text("set number\n")
    files["plugins"].write_text("return {}\n")
    (home / ".config" / "nvim" / "debug.log").write_text("noise\n")
    return files


@pytest.fixture
def make_context(tmp_path: Path, home: Path) -> Callable[..., Context]:
    """Build a context with its data directory and safety backups under tmp_path."""

    def _make(tracked_files: Sequence[Any] = (), **overrides: Any) -> Context:
        config = Config()
        config_data: Dict[str, Any] = {
            "data_dir": str(tmp_path / "data"),
            "tracked_files": list(tracked_files),
            "safety_backup_dir": str(tmp_path / "safety"),
        }
        config_data.update(overrides)
        config.load_from_dict(config_data)
        config_path = tmp_path / "config" / CONFIG_FILENAME
        config.save(config_path)
        return Context(config, config_path)

    return _make


@pytest.fixture
def history(tmp_path: Path) -> FakeHistory:
    return FakeHistory(tmp_path / "data")
