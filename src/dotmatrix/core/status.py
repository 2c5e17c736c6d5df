"""Drift detection between the filesystem and the index."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .index import Index
from .scanner import is_excluded, path_matches_pattern
from .store import hash_file

logger = logging.getLogger(__name__)


class FileStatus(str, enum.Enum):
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    NEW = "new"
    DELETED = "deleted"

    @property
    def symbol(self) -> str:
        return {"unchanged": "✓", "modified": "M", "new": "+", "deleted": "-"}[self.value]


@dataclass
class StatusEntry:
    path: Path
    status: FileStatus
    current_size: Optional[int] = None
    backup_size: Optional[int] = None


@dataclass
class StatusReport:
    """Classification of every tracked file, sorted by path.

    Index entries that no longer match any tracked pattern are not
    classified; they are listed in ``orphaned``.
    """

    entries: List[StatusEntry] = field(default_factory=list)
    orphaned: List[Path] = field(default_factory=list)
    quick: bool = False

    def with_status(self, status: FileStatus) -> List[StatusEntry]:
        return [e for e in self.entries if e.status == status]

    @property
    def modified(self) -> List[StatusEntry]:
        return self.with_status(FileStatus.MODIFIED)

    @property
    def new(self) -> List[StatusEntry]:
        return self.with_status(FileStatus.NEW)

    @property
    def deleted(self) -> List[StatusEntry]:
        return self.with_status(FileStatus.DELETED)

    @property
    def unchanged(self) -> List[StatusEntry]:
        return self.with_status(FileStatus.UNCHANGED)

    @property
    def has_changes(self) -> bool:
        return any(e.status != FileStatus.UNCHANGED for e in self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modified": [str(e.path) for e in self.modified],
            "new": [str(e.path) for e in self.new],
            "deleted": [str(e.path) for e in self.deleted],
            "orphaned": [str(p) for p in self.orphaned],
            "unchanged_count": len(self.unchanged),
            "summary": {
                "modified": len(self.modified),
                "new": len(self.new),
                "deleted": len(self.deleted),
                "unchanged": len(self.unchanged),
                "orphaned": len(self.orphaned),
                "total": len(self.entries),
            },
        }


def is_tracked(path: Path, patterns: Sequence[str], excludes: Sequence[str]) -> bool:
    """Whether ``path`` is still covered by the tracked patterns."""
    if is_excluded(path, excludes):
        return False
    return any(path_matches_pattern(path, p) for p in patterns)


def find_orphans(index: Index, patterns: Sequence[str], excludes: Sequence[str]) -> List[Path]:
    """Index paths that no tracked pattern matches any more, sorted."""
    return sorted(p for p in index.files if not is_tracked(p, patterns, excludes))


def remove_orphans(index: Index, paths: Iterable[Path]) -> int:
    """Drop index entries. Files on disk and stored blobs are left alone."""
    removed = 0
    for path in paths:
        if index.remove_file(path) is not None:
            removed += 1
    logger.info("Removed %d orphaned index entries", removed)
    return removed


def _is_modified(path: Path, size: int, mtime: int, backup_hash: str,
                 backup_size: int, backup_mtime: int, quick: bool) -> bool:
    if quick:
        return (size, mtime) != (backup_size, backup_mtime)
    try:
        return hash_file(path) != backup_hash
    except OSError as e:
        logger.warning("Could not hash %s: %s", path, e)
        return True


def compute_status(
    files: Sequence[Path],
    index: Index,
    patterns: Sequence[str],
    excludes: Sequence[str],
    quick: bool = False,
) -> StatusReport:
    """Classify tracked files against the index.

    Args:
        files: Files currently matched by the tracked patterns.
        index: Index from the last backup. It is not modified.
        patterns: Tracked patterns, used to tell deleted files from orphans.
        excludes: Exclude globs.
        quick: Compare (size, mtime) instead of content hashes. Faster, but a
            change that keeps both size and mtime goes unnoticed.
    """
    report = StatusReport(quick=quick)
    current: Set[Path] = set(files)

    for path in files:
        entry = index.get_file(path)
        try:
            stat = os.stat(path)
        except FileNotFoundError:
            if entry is not None:
                report.entries.append(
                    StatusEntry(path, FileStatus.DELETED, backup_size=entry.size)
                )
            continue
        except OSError as e:
            logger.warning("Could not stat %s: %s", path, e)
            if entry is not None:
                report.entries.append(
                    StatusEntry(path, FileStatus.MODIFIED, backup_size=entry.size)
                )
            else:
                report.entries.append(StatusEntry(path, FileStatus.NEW))
            continue

        if entry is None:
            report.entries.append(StatusEntry(path, FileStatus.NEW, current_size=stat.st_size))
            continue

        modified = _is_modified(
            path, stat.st_size, int(stat.st_mtime), entry.hash, entry.size,
            entry.last_modified, quick,
        )
        report.entries.append(
            StatusEntry(
                path,
                FileStatus.MODIFIED if modified else FileStatus.UNCHANGED,
                current_size=stat.st_size,
                backup_size=entry.size,
            )
        )

    for path, entry in index.files.items():
        if path in current:
            continue
        if is_tracked(path, patterns, excludes):
            report.entries.append(StatusEntry(path, FileStatus.DELETED, backup_size=entry.size))
        else:
            report.orphaned.append(path)

    report.entries.sort(key=lambda e: e.path)
    report.orphaned.sort()
    return report
