"""Test CLI commands."""

import json
import shutil
from pathlib import Path
from typing import Dict, List

import pytest
import yaml
from click.testing import CliRunner, Result

from dotmatrix.cli import cli
from dotmatrix.core.context import INDEX_FILENAME
from dotmatrix.core.repository import GitRepository

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture
def cli_runner() -> CliRunner:
    """Return a CLI runner."""
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    return tmp_path / "config"


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def invoke(cli_runner: CliRunner, config_dir: Path, home: Path):
    """Run the CLI against the test config directory."""

    def _invoke(args: List[str], input: str = None) -> Result:
        return cli_runner.invoke(cli, ["--config-dir", str(config_dir), *args], input=input)

    return _invoke


@pytest.fixture
def initialized(invoke, data_dir: Path, dotfiles: Dict[str, Path]):
    """Initialize dotmatrix and track a few dotfiles."""
    assert invoke(["init", "--data-dir", str(data_dir)]).exit_code == 0
    assert invoke(["add", "~/.bashrc", "~/.zshrc"]).exit_code == 0
    assert invoke(["add", "~/.config/**", "--mode", "archive"]).exit_code == 0
    return invoke


def test_init(invoke, config_dir: Path, data_dir: Path) -> None:
    """Test init command."""
    result = invoke(["init", "--data-dir", str(data_dir)])
    assert result.exit_code == 0
    assert "Created config" in result.output
    assert (config_dir / "config.yaml").exists()
    assert json.loads((data_dir / INDEX_FILENAME).read_text()) == {"files": {}}
    assert (data_dir / "storage").is_dir()
    assert (data_dir / "archives").is_dir()
    assert (data_dir / ".git").is_dir()

    result = invoke(["init"])
    assert result.exit_code == 0
    assert "already exists" in result.output


def test_command_before_init(invoke) -> None:
    """Test that commands ask for init first."""
    result = invoke(["status"])
    assert result.exit_code == 1
    assert "dotmatrix init" in result.output


def test_corrupt_config_is_fatal(invoke, config_dir: Path) -> None:
    """Test that an unparsable config stops the command."""
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text("tracked_files: [unclosed")
    result = invoke(["list"])
    assert result.exit_code == 1
    assert "Could not load config" in result.output


def test_add_and_remove(initialized, config_dir: Path) -> None:
    """Test tracking and untracking patterns."""
    config = yaml.safe_load((config_dir / "config.yaml").read_text())
    assert "~/.bashrc" in config["tracked_files"]
    assert config["tracked_files"][-1] == {"path": "~/.config/**", "mode": "archive"}

    result = initialized(["add", "~/.bashrc"])
    assert "Already tracked" in result.output

    result = initialized(["remove", "~/.zshrc", "~/.nope"])
    assert result.exit_code == 0
    assert "No longer tracking" in result.output
    assert "Not tracked" in result.output
    config = yaml.safe_load((config_dir / "config.yaml").read_text())
    assert "~/.zshrc" not in config["tracked_files"]


def test_add_warns_about_expanded_globs(initialized) -> None:
    """Test the warning for many arguments."""
    result = initialized(["add", *[f"~/file{i}" for i in range(11)]])
    assert result.exit_code == 0
    assert "Warning: 11 patterns given" in result.output


def test_list(initialized) -> None:
    """Test list command."""
    result = initialized(["list"])
    assert result.exit_code == 0
    assert "Tracked patterns" in result.output
    assert "archive" in result.output
    assert "**/*.log" in result.output


def test_backup_status_and_log(initialized, dotfiles: Dict[str, Path], data_dir: Path) -> None:
    """Test a backup followed by status and history."""
    result = initialized(["backup", "-m", "First backup"])
    assert result.exit_code == 0, result.output
    assert "Backup summary" in result.output
    assert "Backup recorded in history" in result.output

    index = json.loads((data_dir / INDEX_FILENAME).read_text())
    assert str(dotfiles["bashrc"]) in index["files"]
    assert str(dotfiles["init_vim"]) in index["files"]

    dotfiles["zshrc"].write_text("changed\n")
    result = initialized(["status", "--json"])
    assert result.exit_code == 0
    status = json.loads(result.output)
    assert status["modified"] == [str(dotfiles["zshrc"])]
    assert status["summary"]["unchanged"] == 4

    result = initialized(["status", "--all"])
    assert result.exit_code == 0
    assert "1 modified, 0 new, 0 deleted, 4 unchanged" in result.output

    result = initialized(["log"])
    assert result.exit_code == 0
    assert "First backup" in result.output


def test_scan_removes_orphans(initialized, dotfiles: Dict[str, Path], data_dir: Path) -> None:
    """Test orphan cleanup after untracking a pattern."""
    assert initialized(["backup"]).exit_code == 0
    assert initialized(["remove", "~/.zshrc"]).exit_code == 0

    result = initialized(["scan"], input="n\n")
    assert result.exit_code == 0
    assert "1 orphaned index entries" in result.output
    index = json.loads((data_dir / INDEX_FILENAME).read_text())
    assert str(dotfiles["zshrc"]) in index["files"]

    result = initialized(["scan", "--yes"])
    assert result.exit_code == 0
    assert "Removed 1 orphaned entries" in result.output
    index = json.loads((data_dir / INDEX_FILENAME).read_text())
    assert str(dotfiles["zshrc"]) not in index["files"]


def test_restore(initialized, dotfiles: Dict[str, Path], home: Path) -> None:
    """Test restore command."""
    assert initialized(["backup"]).exit_code == 0
    dotfiles["bashrc"].write_text("broken\n")
    dotfiles["init_vim"].unlink()

    result = initialized(["restore", "--dry-run"])
    assert result.exit_code == 0
    assert "Dry run complete" in result.output
    assert dotfiles["bashrc"].read_text() == "broken\n"

    result = initialized(["restore"], input="n\n")
    assert result.exit_code == 1
    assert dotfiles["bashrc"].read_text() == "broken\n"

    result = initialized(["restore", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Restored: 2, errors: 0" in result.output
    assert dotfiles["bashrc"].read_text() == "export PATH=$PATH:~/bin\n"
    assert dotfiles["init_vim"].read_text() == "set number\n"
    assert (home / ".dotmatrix-restore-backups").is_dir()


def test_restore_remap_and_extract(
    initialized, dotfiles: Dict[str, Path], home: Path, tmp_path: Path
) -> None:
    """Test restoring into another location."""
    assert initialized(["backup"]).exit_code == 0
    out = tmp_path / "out"

    result = initialized(
        [
            "restore",
            "--yes",
            "--file",
            ".bashrc",
            "--remap",
            f"{home}=/restored",
            "--extract-to",
            str(out),
        ]
    )
    assert result.exit_code == 0, result.output
    assert (out / "restored" / ".bashrc").read_text() == "export PATH=$PATH:~/bin\n"


def test_restore_bad_remap(initialized) -> None:
    """Test that a malformed remap is rejected."""
    result = initialized(["restore", "--remap", "/only-one-side"])
    assert result.exit_code == 2
    assert "--remap" in result.output


def test_show_and_restore_from_commit(
    initialized, dotfiles: Dict[str, Path], data_dir: Path
) -> None:
    """Test browsing an older commit and restoring a file from it."""
    assert initialized(["backup", "-m", "first"]).exit_code == 0
    dotfiles["bashrc"].write_text("second version\n")
    assert initialized(["backup", "-m", "second"]).exit_code == 0

    first = GitRepository(data_dir).log()[-1]

    result = initialized(["show", first.short_id])
    assert result.exit_code == 0, result.output
    assert "first" in result.output
    assert "differs" in result.output
    assert "same" in result.output

    result = initialized(["show", first.short_id, "--restore", ".bashrc"], input="n\n")
    assert result.exit_code == 1
    assert dotfiles["bashrc"].read_text() == "second version\n"

    result = initialized(["show", first.short_id, "--restore", ".bashrc", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Restored: 1, errors: 0" in result.output
    assert dotfiles["bashrc"].read_text() == "export PATH=$PATH:~/bin\n"

    result = initialized(["show", "0000000"])
    assert result.exit_code == 1
    assert "not found" in result.output
