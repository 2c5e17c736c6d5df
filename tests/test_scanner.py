"""Tests for tracked pattern scanning."""

from pathlib import Path
from typing import Dict

from dotmatrix.core.scanner import (
    expand_path,
    is_excluded,
    path_matches_pattern,
    scan_pattern,
    scan_patterns,
)


def test_expand_path(home: Path) -> None:
    """Test tilde expansion."""
    assert expand_path("~/.bashrc") == home / ".bashrc"
    assert expand_path("/etc/hosts") == Path("/etc/hosts")


def test_literal_file(dotfiles: Dict[str, Path]) -> None:
    """Test that a literal path yields itself."""
    assert scan_pattern("~/.bashrc", []) == [dotfiles["bashrc"]]


def test_directory_pattern_finds_nested_files(home: Path, dotfiles: Dict[str, Path]) -> None:
    """Test that dir/** matches every file below the directory."""
    result = scan_patterns(["~/.config/**"], ["**/*.log"])
    assert result.errors == []
    assert result.files == sorted([dotfiles["init_vim"], dotfiles["plugins"]])


def test_hidden_files_match_globs(home: Path, dotfiles: Dict[str, Path]) -> None:
    """Test that wildcards match dotfiles."""
    result = scan_patterns(["~/*"], [])
    assert dotfiles["bashrc"] in result.files
    assert dotfiles["zshrc"] in result.files
    # Directories are never returned
    assert home / ".config" not in result.files


def test_errors_are_collected(home: Path, dotfiles: Dict[str, Path]) -> None:
    """Test that bad patterns are reported without hiding the others."""
    result = scan_patterns(["~/.missingrc", "~/.config", "~/.bashrc"], [])
    assert result.files == [dotfiles["bashrc"]]
    assert len(result.errors) == 2
    assert "File not found" in result.errors[0]
    assert "/**" in result.errors[1]


def test_overlapping_patterns_are_deduplicated(dotfiles: Dict[str, Path]) -> None:
    """Test that a file matched twice is listed once."""
    result = scan_patterns(["~/.config/**", "~/.config/nvim/init.vim"], ["**/*.log"])
    assert result.files.count(dotfiles["init_vim"]) == 1
    assert result.files == sorted(result.files)


def test_exclude_and_match(home: Path) -> None:
    """Test exclude globs and pattern matching."""
    assert is_excluded(home / "a" / "b.log", ["**/*.log"])
    assert not is_excluded(home / "a" / "b.txt", ["**/*.log"])
    assert path_matches_pattern(home / ".config" / "nvim" / "init.vim", "~/.config/**")
    assert not path_matches_pattern(home / ".bashrc", "~/.config/**")
