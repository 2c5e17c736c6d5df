"""File discovery for tracked patterns.

Turns the configured tracked patterns into a concrete, sorted list of
absolute file paths. Problems with individual patterns (a missing literal
path, a directory given without ``/**``) are collected instead of raised so
one bad entry never hides the rest of the tracked files.
"""

from __future__ import annotations

import fnmatch
import glob
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

logger = logging.getLogger(__name__)

GLOB_CHARS = ("*", "?", "[")


@dataclass
class ScanResult:
    """Files matched by a set of patterns plus per-pattern errors."""

    files: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def expand_path(path: str) -> Path:
    """Expand a leading ``~`` to the home directory."""
    if path == "~" or path.startswith("~/"):
        return Path(path).expanduser()
    return Path(path)


def _absolute_pattern(pattern: str) -> str:
    expanded = str(expand_path(pattern))
    if not os.path.isabs(expanded):
        expanded = os.path.join(os.getcwd(), expanded)
    return expanded


def has_glob(pattern: str) -> bool:
    return any(c in pattern for c in GLOB_CHARS)


def is_excluded(path: Path, exclude_patterns: Sequence[str]) -> bool:
    """Check if a path matches any exclude glob."""
    path_str = str(path)
    for pattern in exclude_patterns:
        expanded = str(expand_path(pattern))
        if fnmatch.fnmatchcase(path_str, expanded):
            return True
    return False


def path_matches_pattern(path: Path, pattern: str) -> bool:
    """Check if a file path is covered by a tracked pattern."""
    return fnmatch.fnmatchcase(str(path), _absolute_pattern(pattern))


def scan_pattern(pattern: str, exclude_patterns: Sequence[str]) -> List[Path]:
    """Return the files matching a single tracked pattern.

    Raises:
        ValueError: If a literal path does not exist or names a directory.
    """
    pattern_str = _absolute_pattern(pattern)

    # "dir/**" only matches directories in glob; widen it to the files inside
    if pattern_str.endswith("/**"):
        pattern_str += "/*"

    if not has_glob(pattern_str):
        path = Path(pattern_str)
        if path.is_dir():
            raise ValueError(
                f"Path is a directory: {path}. Use '{path}/**' to track directory contents."
            )
        if not path.exists():
            raise ValueError(f"File not found: {path}")
        if is_excluded(path, exclude_patterns):
            return []
        return [path]

    files = []
    for match in glob.glob(pattern_str, recursive=True, include_hidden=True):
        path = Path(os.path.abspath(match))
        if path.is_file() and not is_excluded(path, exclude_patterns):
            files.append(path)
    return files


def scan_patterns(patterns: Sequence[str], exclude_patterns: Sequence[str]) -> ScanResult:
    """Scan multiple patterns and return all matching files, sorted and deduplicated."""
    result = ScanResult()
    found = set()

    for pattern in patterns:
        logger.debug("Scanning pattern: %s", pattern)
        try:
            files = scan_pattern(pattern, exclude_patterns)
        except (ValueError, OSError) as e:
            logger.debug("  Error: %s", e)
            result.errors.append(f"Pattern '{pattern}': {e}")
            continue
        logger.debug("  Found %d files", len(files))
        found.update(files)

    result.files = sorted(found)
    return result
