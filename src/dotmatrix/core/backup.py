"""Backup functionality for tracked dotfiles.

This module backs up the files matched by the configured tracked patterns.
Each file is backed up in one of two modes:

- incremental: the content goes into the content-addressed store, so an
  unchanged or duplicated file costs nothing after the first backup;
- archive: the file is appended to a compressed tarball created for this
  invocation.

Either way the file's fingerprint is recorded in the index, and a whole
backup invocation ends in exactly one history commit.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from rich.console import Console

from .archive import ArchiveWriter
from .config import BackupMode
from .context import Context
from .index import FileEntry, Index, scan_file
from .repository import GitRepository, HistoryLog
from .scanner import scan_patterns
from .store import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class BackupResult:
    """Counts for one backup run.

    ``new``, ``updated`` and ``unchanged`` compare each file with its previous
    index entry. ``copied`` and ``deduplicated`` only say whether the store
    needed a new blob.
    """

    new: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    copied: int = 0
    deduplicated: int = 0
    archived: int = 0
    archive_path: Optional[Path] = None
    failures: List[Tuple[Path, str]] = field(default_factory=list)
    pattern_errors: List[str] = field(default_factory=list)
    committed: bool = False
    commit_error: Optional[str] = None

    @property
    def total(self) -> int:
        return self.new + self.updated + self.unchanged

    def merge(self, other: "BackupResult") -> "BackupResult":
        self.new += other.new
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.errors += other.errors
        self.copied += other.copied
        self.deduplicated += other.deduplicated
        self.archived += other.archived
        self.archive_path = other.archive_path or self.archive_path
        self.failures.extend(other.failures)
        return self

    def record(self, previous: Optional[FileEntry], entry: FileEntry) -> str:
        if previous is None:
            self.new += 1
            return "new"
        if previous.hash != entry.hash:
            self.updated += 1
            return "updated"
        self.unchanged += 1
        return "unchanged"

    def fail(self, path: Path, error: Exception) -> None:
        self.errors += 1
        self.failures.append((path, str(error)))


class BackupManager:
    """Runs backups for a data directory.

    Attributes:
        context (Context): Configuration and resolved paths
        console (Console): Rich console for output formatting
        store (ContentStore): Blob store for incremental files
        history (HistoryLog): Backend receiving one commit per backup
    """

    def __init__(
        self,
        context: Context,
        console: Optional[Console] = None,
        history: Optional[HistoryLog] = None,
    ):
        """Initialize the backup manager.

        Args:
            context (Context): Configuration and resolved paths
            console (Optional[Console]): Rich console for output. If None, creates
                                      a new console.
            history (Optional[HistoryLog]): History backend. If None, a Git
                                      repository in the data directory is used.
        """
        self.context = context
        self.console = console or Console()
        self.store = ContentStore(context.storage_path)
        self.history: HistoryLog = history or GitRepository(context.data_dir)

    def partition(self, files: Sequence[Path]) -> Tuple[List[Path], List[Path]]:
        """Split files into (incremental, archive) by their effective mode."""
        incremental: List[Path] = []
        archive: List[Path] = []
        for path in files:
            if self.context.config.mode_for_file(path) == BackupMode.ARCHIVE:
                archive.append(path)
            else:
                incremental.append(path)
        return incremental, archive

    def backup_incremental(self, files: Sequence[Path], index: Index) -> BackupResult:
        """Store files in the content store and upsert their index entries.

        The index is saved once all files have been processed.
        """
        result = BackupResult()
        for path in files:
            try:
                mtime = int(os.stat(path).st_mtime)
                blob = self.store.put_file(path)
            except OSError as e:
                logger.error("Error backing up %s: %s", path, e)
                self.console.print(f"[red]Error backing up {path}: {e}")
                result.fail(path, e)
                continue

            entry = FileEntry(path=path, hash=blob.hash, size=blob.size, last_modified=mtime)
            outcome = result.record(index.get_file(path), entry)
            index.add_file(entry)

            if blob.copied:
                result.copied += 1
            else:
                result.deduplicated += 1

            if outcome == "unchanged":
                self.console.print(f"[dim]Unchanged: {path}")
            elif blob.copied:
                self.console.print(f"[green]Backed up ({outcome}): {path}")
            else:
                self.console.print(f"[green]Backed up ({outcome}, deduplicated): {path}")

        index.save(self.context.index_path)
        return result

    def backup_archive(self, files: Sequence[Path], index: Index) -> BackupResult:
        """Append files to a new compressed archive and record their fingerprints.

        The index is saved once the archive is complete.
        """
        result = BackupResult()
        writer = ArchiveWriter(self.context.archives_path)
        self.console.print(f"[bold]Creating archive: {writer.output_path.name}")
        writer.open(total=len(files))

        try:
            for path in files:
                try:
                    entry = scan_file(path)
                    writer.add(path)
                except OSError as e:
                    logger.error("Error archiving %s: %s", path, e)
                    self.console.print(f"[red]Error archiving {path}: {e}")
                    result.fail(path, e)
                    continue

                outcome = result.record(index.get_file(path), entry)
                index.add_file(entry)
                result.archived += 1
                self.console.print(f"[green]Archived ({outcome}): {path}")
        except BaseException:
            writer.abort()
            raise

        if result.archived == 0:
            writer.abort()
            self.console.print("[yellow]No files could be archived, archive discarded")
        else:
            result.archive_path = writer.close()
            size = result.archive_path.stat().st_size
            self.console.print(f"[green]Archive saved to {result.archive_path} ({format_size(size)})")

        index.save(self.context.index_path)
        return result

    def backup(self, message: Optional[str] = None) -> BackupResult:
        """Back up every file matched by the tracked patterns.

        Incremental files are processed first, then archive files; the
        outcome of both phases is merged and a single history commit is made.

        Args:
            message (Optional[str]): Commit message. Defaults to a summary.

        Returns:
            BackupResult: Merged counts of both phases.

        Raises:
            IndexFormatError: If the existing index cannot be parsed.
        """
        config = self.context.config
        scan = scan_patterns(config.pattern_strings(), config.exclude)
        for error in scan.errors:
            logger.warning(error)
            self.console.print(f"[yellow]Warning: {error}")

        result = BackupResult(pattern_errors=list(scan.errors))
        if not scan.files:
            self.console.print("[yellow]No files found matching tracked patterns")
            return result

        index = Index.load(self.context.index_path)
        incremental, archive = self.partition(scan.files)
        self.console.print(
            f"[bold]Found {len(scan.files)} files to back up "
            f"({len(incremental)} incremental, {len(archive)} archive)"
        )

        if incremental:
            result.merge(self.backup_incremental(incremental, index))
        if archive:
            result.merge(self.backup_archive(archive, index))

        if config.git_enabled:
            self._commit(result, message)

        return result

    def _commit(self, result: BackupResult, message: Optional[str]) -> None:
        msg = message or (
            f"Backup: {result.total} files "
            f"({result.new} new, {result.updated} updated, {result.unchanged} unchanged)"
        )
        try:
            self.history.commit(msg)
            result.committed = True
        except RuntimeError as e:
            # The backup itself is already on disk
            logger.warning("History commit failed: %s", e)
            self.console.print(f"[yellow]Warning: history commit failed: {e}")
            result.commit_error = str(e)


def format_size(size: int) -> str:
    """Format a byte count for display."""
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"
