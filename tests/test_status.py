"""Tests for drift detection."""

import os
from pathlib import Path
from typing import Callable, Dict

from rich.console import Console

from dotmatrix.core.backup import BackupManager
from dotmatrix.core.context import Context
from dotmatrix.core.index import Index
from dotmatrix.core.scanner import scan_patterns
from dotmatrix.core.status import FileStatus, compute_status, find_orphans, remove_orphans


def _status(context: Context, quick: bool = False):
    config = context.config
    patterns = config.pattern_strings()
    files = scan_patterns(patterns, config.exclude).files
    index = Index.load(context.index_path)
    return compute_status(files, index, patterns, config.exclude, quick=quick)


def _backup(context: Context, history) -> None:
    BackupManager(context, Console(quiet=True), history).backup()


def test_everything_new_before_first_backup(
    make_context: Callable[..., Context], dotfiles: Dict[str, Path]
) -> None:
    """Test that files without index entries are new."""
    report = _status(make_context(["~/.bashrc", "~/.zshrc"]))
    assert [e.status for e in report.entries] == [FileStatus.NEW, FileStatus.NEW]
    assert report.has_changes


def test_status_classification(
    make_context: Callable[..., Context], home: Path, dotfiles: Dict[str, Path], history
) -> None:
    """Test each status against a backed-up baseline."""
    context = make_context(["~/.bashrc", "~/.zshrc", "~/.config/**"])
    _backup(context, history)

    dotfiles["bashrc"].write_text("changed\n")
    dotfiles["plugins"].unlink()
    new_file = home / ".config" / "nvim" / "after.vim"
    new_file.write_text("set ts=2\n")

    report = _status(context)

    by_path = {e.path: e.status for e in report.entries}
    assert by_path == {
        dotfiles["bashrc"]: FileStatus.MODIFIED,
        dotfiles["zshrc"]: FileStatus.UNCHANGED,
        dotfiles["init_vim"]: FileStatus.UNCHANGED,
        dotfiles["plugins"]: FileStatus.DELETED,
        new_file: FileStatus.NEW,
    }
    assert [e.path for e in report.entries] == sorted(by_path)
    assert report.orphaned == []


def test_status_does_not_touch_index(
    make_context: Callable[..., Context], dotfiles: Dict[str, Path], history
) -> None:
    """Test that computing status leaves the index file alone."""
    context = make_context(["~/.bashrc"])
    _backup(context, history)
    before = context.index_path.read_bytes()
    dotfiles["bashrc"].write_text("changed\n")
    _status(context)
    assert context.index_path.read_bytes() == before


def test_untracked_entries_are_orphaned(
    make_context: Callable[..., Context], dotfiles: Dict[str, Path], history
) -> None:
    """Test that index entries of removed patterns are reported separately."""
    context = make_context(["~/.bashrc", "~/.zshrc"])
    _backup(context, history)
    context.config.remove_pattern("~/.zshrc")

    report = _status(context)

    assert [e.path for e in report.entries] == [dotfiles["bashrc"]]
    assert report.orphaned == [dotfiles["zshrc"]]
    assert report.to_dict()["summary"]["orphaned"] == 1


def test_quick_mode_misses_same_size_same_mtime_edit(
    make_context: Callable[..., Context], dotfiles: Dict[str, Path], history
) -> None:
    """Test the documented limitation of the size and mtime comparison."""
    context = make_context(["~/.zshrc"])
    path = dotfiles["zshrc"]
    os.utime(path, (1600000000, 1600000000))
    _backup(context, history)

    path.write_text("setopt AUTOCD\n")
    os.utime(path, (1600000000, 1600000000))

    assert _status(context, quick=True).entries[0].status == FileStatus.UNCHANGED
    assert _status(context).entries[0].status == FileStatus.MODIFIED


def test_quick_mode_sees_mtime_change(
    make_context: Callable[..., Context], dotfiles: Dict[str, Path], history
) -> None:
    """Test that quick mode reports a touched file."""
    context = make_context(["~/.zshrc"])
    os.utime(dotfiles["zshrc"], (1600000000, 1600000000))
    _backup(context, history)
    os.utime(dotfiles["zshrc"], (1700000000, 1700000000))

    report = _status(context, quick=True)
    assert report.quick
    assert report.entries[0].status == FileStatus.MODIFIED


def test_to_dict(make_context: Callable[..., Context], dotfiles: Dict[str, Path], history) -> None:
    """Test the machine-readable report."""
    context = make_context(["~/.bashrc", "~/.zshrc"])
    _backup(context, history)
    dotfiles["zshrc"].write_text("changed\n")

    data = _status(context).to_dict()

    assert data["modified"] == [str(dotfiles["zshrc"])]
    assert data["new"] == []
    assert data["deleted"] == []
    assert data["unchanged_count"] == 1
    assert data["summary"] == {
        "modified": 1,
        "new": 0,
        "deleted": 0,
        "unchanged": 1,
        "orphaned": 0,
        "total": 2,
    }


def test_remove_orphans(
    make_context: Callable[..., Context], dotfiles: Dict[str, Path], history
) -> None:
    """Test that orphan cleanup drops index entries only."""
    context = make_context(["~/.bashrc", "~/.zshrc"])
    _backup(context, history)
    context.config.remove_pattern("~/.bashrc")

    index = Index.load(context.index_path)
    orphans = find_orphans(index, context.config.pattern_strings(), context.config.exclude)
    assert orphans == [dotfiles["bashrc"]]
    entry = index.get_file(dotfiles["bashrc"])
    assert entry is not None

    assert remove_orphans(index, orphans) == 1
    assert dotfiles["bashrc"] not in index
    assert dotfiles["bashrc"].exists()
    assert (context.storage_path / entry.hash[:2] / entry.hash).exists()
