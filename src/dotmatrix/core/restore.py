"""Restore functionality for dotmatrix.

Restoring works from an index snapshot, either the current index or one read
back from a past history commit. For each recorded file a destination is
resolved (optionally remapped to another prefix and/or re-rooted under an
extraction directory), compared with what is on disk, and, after
confirmation and a safety copy of anything about to be overwritten, replaced
with the backed-up content.
"""

from __future__ import annotations

import difflib
import enum
import logging
import shutil
import stat
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set, Tuple

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .archive import find_in_archives
from .backup import format_size
from .context import INDEX_FILENAME, Context
from .index import FileEntry, Index
from .repository import Commit, GitRepository, HistoryLog
from .store import ContentStore, hash_file

logger = logging.getLogger(__name__)

Remap = Tuple[str, str]
PromptFn = Callable[[str, List[str], str], str]
ConfirmFn = Callable[[str], bool]


def parse_remap(value: str) -> Remap:
    """Parse a ``FROM=TO`` remap option.

    Raises:
        ValueError: If the value is not of the form ``FROM=TO``.
    """
    source, sep, target = value.partition("=")
    if not sep or not source or not target:
        raise ValueError(f"Invalid remap '{value}'. Use: /old/path=/new/path")
    return source, target


def resolve_destination(
    path: Path,
    remap: Optional[Remap] = None,
    extract_to: Optional[Path] = None,
) -> Path:
    """Compute where a recorded file is restored to.

    The remap replaces a leading run of whole path components once; the
    extraction root then re-roots the result under ``extract_to``.

    Example:
        ``/home/alice/.bashrc`` with remap ``(/home/alice, /home/bob)`` and
        ``extract_to=/tmp/out`` resolves to ``/tmp/out/home/bob/.bashrc``.
    """
    path_str = str(path)
    if remap is not None:
        source, target = remap
        prefix = source.rstrip("/")
        if path_str == (prefix or "/"):
            path_str = target
        elif path_str.startswith(prefix + "/"):
            path_str = target.rstrip("/") + "/" + path_str[len(prefix) + 1 :]

    if extract_to is not None:
        return Path(extract_to) / path_str.lstrip("/\\")
    return Path(path_str)


@dataclass
class FileComparison:
    """A recorded file next to the current state of its destination."""

    path: Path
    dest_path: Path
    backup_hash: str
    backup_size: int
    backup_mtime: int
    current_exists: bool = False
    current_size: Optional[int] = None
    current_mtime: Optional[int] = None
    current_hash: Optional[str] = None
    read_error: Optional[str] = None

    @property
    def is_identical(self) -> bool:
        return self.current_hash is not None and self.current_hash == self.backup_hash

    @property
    def current_is_newer(self) -> bool:
        """The destination was modified after the backup was taken."""
        return self.current_mtime is not None and self.current_mtime > self.backup_mtime


@dataclass
class RestorePlan:
    comparisons: List[FileComparison] = field(default_factory=list)

    @property
    def to_restore(self) -> List[FileComparison]:
        return [c for c in self.comparisons if not c.is_identical]

    @property
    def conflicts(self) -> List[FileComparison]:
        return [c for c in self.to_restore if c.current_is_newer]


@dataclass
class RestoreResult:
    restored: int = 0
    errors: int = 0
    identical: int = 0
    failures: List[Tuple[Path, str]] = field(default_factory=list)
    safety_backup: Optional[Path] = None
    cancelled: bool = False
    dry_run: bool = False


class RestoreManager:
    """Restores files from the content store and archives."""

    def __init__(
        self,
        context: Context,
        console: Optional[Console] = None,
        history: Optional[HistoryLog] = None,
        prompt: Optional[PromptFn] = None,
        confirm: Optional[ConfirmFn] = None,
    ) -> None:
        """Initialize restore manager.

        Args:
            context: Configuration and resolved paths.
            console: Rich console for output.
            history: History backend used to read past indexes.
            prompt: Asks a question with fixed choices and returns the answer.
            confirm: Asks a yes/no question.
        """
        self.context = context
        self.console = console or Console()
        self.store = ContentStore(context.storage_path)
        self.history: HistoryLog = history or GitRepository(context.data_dir)
        self.prompt: PromptFn = prompt or self._ask
        self.confirm: ConfirmFn = confirm or self._ask_yes_no

    def _ask(self, question: str, choices: List[str], default: str) -> str:
        return Prompt.ask(question, choices=choices, default=default, console=self.console)

    def _ask_yes_no(self, question: str) -> bool:
        return Confirm.ask(question, default=False, console=self.console)

    def load_snapshot(self, commit: Optional[str] = None) -> Index:
        """Return the current index, or the index recorded in ``commit``.

        Raises:
            RuntimeError: If the history backend cannot produce the snapshot.
            IndexFormatError: If the snapshot is not a valid index.
        """
        if commit is None:
            return Index.load(self.context.index_path)
        logger.debug("Loading index from commit %s", commit)
        return Index.from_json(self.history.show(commit, INDEX_FILENAME))

    def compare(self, entry: FileEntry, dest_path: Path) -> FileComparison:
        """Compare a recorded entry with what is at ``dest_path`` now.

        A destination that cannot be inspected is recorded in ``read_error``
        and fails on its own when the plan is executed.
        """
        comp = FileComparison(
            path=entry.path,
            dest_path=dest_path,
            backup_hash=entry.hash,
            backup_size=entry.size,
            backup_mtime=entry.last_modified,
        )
        try:
            st = dest_path.stat()
            if not stat.S_ISREG(st.st_mode):
                return comp
            comp.current_hash = hash_file(dest_path)
        except (FileNotFoundError, NotADirectoryError):
            return comp
        except OSError as e:
            logger.warning("Could not read %s: %s", dest_path, e)
            comp.read_error = str(e)
            return comp
        comp.current_exists = True
        comp.current_size = st.st_size
        comp.current_mtime = int(st.st_mtime)
        return comp

    def plan(
        self,
        index: Index,
        files: Optional[Sequence[str]] = None,
        remap: Optional[Remap] = None,
        extract_to: Optional[Path] = None,
    ) -> RestorePlan:
        """Resolve destinations and compare them with the recorded entries.

        Args:
            index: Index snapshot to restore from.
            files: Optional substrings; only recorded paths containing one of
                them are restored.
            remap: Optional ``(from, to)`` path prefix rewrite.
            extract_to: Optional directory to re-root every destination under.
        """
        plan = RestorePlan()
        for entry in index.entries():
            if files and not any(f in str(entry.path) for f in files):
                continue
            dest = resolve_destination(entry.path, remap, extract_to)
            plan.comparisons.append(self.compare(entry, dest))
        return plan

    def backup_content(self, comp: FileComparison) -> Optional[bytes]:
        """Backed-up bytes for a file, from the store or else the archives."""
        if self.store.exists(comp.backup_hash):
            return self.store.read(comp.backup_hash)
        return find_in_archives(self.context.archives_path, comp.path, comp.backup_hash)

    def diff(self, comp: FileComparison) -> str:
        """Unified diff from the current destination to the backed-up content."""
        backup = self.backup_content(comp)
        if backup is None:
            return "(backup file not found in storage)"
        if comp.read_error is not None:
            return f"(cannot read current file: {comp.read_error})"
        if not comp.current_exists:
            return "(current file does not exist - will be created)"
        current = comp.dest_path.read_bytes()
        if current == backup:
            return "(files are identical)"
        if b"\0" in current or b"\0" in backup:
            return "Binary files differ"
        lines = difflib.unified_diff(
            current.decode(errors="replace").splitlines(keepends=True),
            backup.decode(errors="replace").splitlines(keepends=True),
            fromfile=f"{comp.dest_path} (current)",
            tofile=f"{comp.path} (backup)",
        )
        return "".join(lines)

    def show_diffs(self, comparisons: Sequence[FileComparison]) -> None:
        for comp in comparisons:
            self.console.print(f"[bold]{comp.dest_path}:")
            try:
                self.console.print(self.diff(comp), markup=False, highlight=False)
            except OSError as e:
                self.console.print(f"[red]Could not diff {comp.dest_path}: {e}")

    def create_safety_backup(self, comparisons: Sequence[FileComparison]) -> Optional[Path]:
        """Copy every existing destination aside before it is overwritten.

        Returns:
            The timestamped directory holding the copies, or None if none of
            the destinations exists.

        Raises:
            OSError: If any copy fails.
        """
        existing = [c for c in comparisons if c.current_exists]
        if not existing:
            return None

        root = self.context.safety_backup_root
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup_dir = root / stamp
        counter = 1
        while backup_dir.exists():
            backup_dir = root / f"{stamp}-{counter}"
            counter += 1
        backup_dir.mkdir(parents=True)

        for comp in existing:
            dest = backup_dir / str(comp.dest_path).lstrip("/\\")
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(comp.dest_path, dest)
        logger.info("Safety backup of %d files in %s", len(existing), backup_dir)
        return backup_dir

    def display_plan(self, plan: RestorePlan) -> None:
        table = Table(title="Files to restore")
        table.add_column("File", style="cyan")
        table.add_column("Current", style="yellow")
        table.add_column("Backup", style="green")
        table.add_column("Note")

        for comp in plan.to_restore:
            name = str(comp.path)
            if comp.dest_path != comp.path:
                name += f"\n→ {comp.dest_path}"
            if comp.current_exists:
                current = (
                    f"{format_time(comp.current_mtime)}  "
                    f"({format_size(comp.current_size or 0)})"
                )
            elif comp.read_error is not None:
                current = "(unreadable)"
            else:
                current = "(does not exist)"
            backup = f"{format_time(comp.backup_mtime)}  ({format_size(comp.backup_size)})"
            if comp.current_is_newer:
                note = "[red][NEWER] current file is newer than backup"
            elif comp.read_error is not None:
                note = "[red]current file cannot be read"
            elif not comp.current_exists:
                note = "will create new file"
            else:
                note = ""
            table.add_row(name, current, backup, note)

        self.console.print(table)
        self.console.print(f"Files to restore: {len(plan.to_restore)}")
        if plan.conflicts:
            self.console.print(
                f"[yellow]{len(plan.conflicts)} file(s) where current is NEWER than backup"
            )

    def _ask_to_proceed(self, plan: RestorePlan) -> bool:
        count = len(plan.to_restore)
        answer = self.prompt(f"Restore {count} files? (d shows diffs)", ["y", "n", "d"], "n")
        if answer == "d":
            self.show_diffs(plan.to_restore)
            return self.confirm(f"Restore {count} files?")
        return answer == "y"

    def _restore_file(self, comp: FileComparison) -> None:
        """Copy one file back into place.

        Raises:
            FileNotFoundError: If the backed-up content cannot be found.
            OSError: If the destination cannot be read or written.
        """
        if comp.read_error is not None:
            raise OSError(f"Cannot read current file: {comp.read_error}")
        comp.dest_path.parent.mkdir(parents=True, exist_ok=True)
        blob = self.store.location_of(comp.backup_hash)
        if blob.is_file():
            shutil.copyfile(blob, comp.dest_path)
            return
        content = find_in_archives(self.context.archives_path, comp.path, comp.backup_hash)
        if content is None:
            raise FileNotFoundError("Backup file not found in storage")
        comp.dest_path.write_bytes(content)

    def execute(
        self,
        plan: RestorePlan,
        dry_run: bool = False,
        assume_yes: bool = False,
        show_diff: bool = False,
    ) -> RestoreResult:
        """Carry out a restore plan.

        Args:
            plan: Plan from :meth:`plan`.
            dry_run: Show what would be restored and stop.
            assume_yes: Skip the restore confirmation. A failed safety backup
                still asks before continuing.
            show_diff: Show diffs for every file before asking.
        """
        to_restore = plan.to_restore
        result = RestoreResult(identical=len(plan.comparisons) - len(to_restore))

        if not to_restore:
            self.console.print("[green]All files already match backup (nothing to restore).")
            return result

        self.display_plan(plan)
        if show_diff:
            self.show_diffs(to_restore)

        if dry_run:
            result.dry_run = True
            self.console.print("Dry run complete. No files were modified.")
            return result

        if not assume_yes and not self._ask_to_proceed(plan):
            result.cancelled = True
            self.console.print("[yellow]Restore cancelled.")
            return result

        try:
            result.safety_backup = self.create_safety_backup(to_restore)
        except OSError as e:
            logger.warning("Failed to create safety backup: %s", e)
            self.console.print(f"[yellow]Failed to create safety backup: {e}")
            if not self.confirm("Continue anyway?"):
                result.cancelled = True
                self.console.print("[yellow]Restore cancelled.")
                return result
        if result.safety_backup:
            self.console.print(f"Current files backed up to: {result.safety_backup}")

        for comp in to_restore:
            try:
                self._restore_file(comp)
            except OSError as e:
                logger.error("Error restoring %s: %s", comp.dest_path, e)
                self.console.print(f"[red]Error restoring {comp.dest_path}: {e}")
                if isinstance(e, PermissionError):
                    self.console.print("  Try running with elevated permissions for system files")
                result.errors += 1
                result.failures.append((comp.dest_path, str(e)))
                continue
            result.restored += 1
            self.console.print(f"[green]Restored: {comp.dest_path}")

        logger.info("Restored %d files (%d errors)", result.restored, result.errors)
        return result

    def restore(
        self,
        commit: Optional[str] = None,
        files: Optional[Sequence[str]] = None,
        remap: Optional[Remap] = None,
        extract_to: Optional[Path] = None,
        dry_run: bool = False,
        assume_yes: bool = False,
        show_diff: bool = False,
    ) -> RestoreResult:
        """Load a snapshot, resolve destinations and restore.

        Example:
            ```python
            manager = RestoreManager(context)
            result = manager.restore(
                commit="3f2a1c9",
                files=[".bashrc"],
                remap=("/home/alice", "/home/bob"),
                assume_yes=True,
            )
            ```
        """
        index = self.load_snapshot(commit)
        if not len(index):
            self.console.print("[yellow]No files in backup index.")
            return RestoreResult()
        plan = self.plan(index, files=files, remap=remap, extract_to=extract_to)
        if not plan.comparisons:
            self.console.print("[yellow]No matching files found in backup.")
            return RestoreResult()
        return self.execute(plan, dry_run=dry_run, assume_yes=assume_yes, show_diff=show_diff)


class RestoreView(enum.Enum):
    COMMITS = "commits"
    FILES = "files"


@dataclass
class RestoreFile:
    """A file recorded in a past commit and how it relates to the local copy."""

    path: Path
    hash: str
    size: int
    exists_locally: bool
    local_differs: bool


class RestoreBrowser:
    """Two-step restore selection: pick a commit, then pick files from it.

    In ``COMMITS`` the history is listed; selecting a commit loads that
    commit's index and moves to ``FILES``. Going back clears the loaded files
    and the selection.
    """

    def __init__(self, manager: RestoreManager, limit: int = 20) -> None:
        self.manager = manager
        self.limit = limit
        self.view = RestoreView.COMMITS
        self.commits: List[Commit] = []
        self.files: List[RestoreFile] = []
        self.selected: Set[int] = set()
        self.selected_commit: Optional[int] = None
        self.snapshot: Optional[Index] = None

    def load_commits(self) -> List[Commit]:
        self.commits = self.manager.history.log(self.limit)
        return self.commits

    def select_commit(self, position: int) -> List[RestoreFile]:
        """Load the index of ``commits[position]`` and switch to the file view.

        Raises:
            ValueError: If not in the commit view.
            IndexError: If ``position`` is out of range.
        """
        if self.view != RestoreView.COMMITS:
            raise ValueError("A commit is already selected")
        commit = self.commits[position]
        self.snapshot = self.manager.load_snapshot(commit.id)
        self.selected_commit = position
        self._load_files(self.snapshot)
        self.selected.clear()
        self.view = RestoreView.FILES
        return self.files

    def back_to_commits(self) -> None:
        self.view = RestoreView.COMMITS
        self.selected_commit = None
        self.snapshot = None
        self.files.clear()
        self.selected.clear()

    def toggle_select(self, position: int) -> None:
        if self.view != RestoreView.FILES:
            raise ValueError("No commit selected")
        if not 0 <= position < len(self.files):
            raise IndexError(position)
        if position in self.selected:
            self.selected.remove(position)
        else:
            self.selected.add(position)

    def _load_files(self, snapshot: Index) -> None:
        self.files = []
        for entry in snapshot.entries():
            comp = self.manager.compare(entry, entry.path)
            self.files.append(
                RestoreFile(
                    path=entry.path,
                    hash=entry.hash,
                    size=entry.size,
                    exists_locally=comp.current_exists,
                    local_differs=not comp.is_identical,
                )
            )

    def restore_selected(
        self,
        remap: Optional[Remap] = None,
        extract_to: Optional[Path] = None,
        dry_run: bool = False,
        assume_yes: bool = False,
    ) -> RestoreResult:
        """Restore the selected files of the loaded commit.

        The selection goes through the same plan and execute steps as a
        regular restore: the confirmation prompt (unless ``assume_yes``),
        the ``[NEWER]`` marks and the safety backup. A cancelled restore
        keeps the selection.
        """
        if self.view != RestoreView.FILES or self.snapshot is None:
            raise ValueError("No commit selected")
        if not self.selected:
            return RestoreResult()

        subset = Index()
        for position in sorted(self.selected):
            entry = self.snapshot.get_file(self.files[position].path)
            if entry is not None:
                subset.add_file(entry)

        plan = self.manager.plan(subset, remap=remap, extract_to=extract_to)
        result = self.manager.execute(plan, dry_run=dry_run, assume_yes=assume_yes)
        if not result.cancelled and not result.dry_run:
            self.selected.clear()
            self._load_files(self.snapshot)
        return result



def format_time(timestamp: Optional[int]) -> str:
    if timestamp is None:
        return "unknown"
    try:
        return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")
    except (OverflowError, OSError, ValueError):
        return "unknown"
