"""Command line interface for dotmatrix."""

import json
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .core.backup import BackupManager, format_size
from .core.commands import add_patterns, clean_orphans, initialize, remove_patterns, scan
from .core.config import BackupMode, ConfigError
from .core.context import Context
from .core.index import Index, IndexFormatError
from .core.logging import console as err_console
from .core.logging import setup_logging
from .core.restore import RestoreBrowser, RestoreManager, parse_remap
from .core.scanner import scan_patterns
from .core.status import FileStatus, compute_status

console = Console()

# More arguments than this usually means the shell expanded a glob
MANY_ARGS_WARNING = 10


def _load_context(ctx: click.Context) -> Context:
    try:
        return Context.load(ctx.obj.get("config_dir"))
    except FileNotFoundError as e:
        raise click.ClickException(f"{e}. Run 'dotmatrix init' first.")
    except (ConfigError, OSError) as e:
        raise click.ClickException(f"Could not load config: {e}")


def _click_prompt(question: str, choices: List[str], default: str) -> str:
    return click.prompt(question, type=click.Choice(choices), default=default)


def _click_confirm(question: str) -> bool:
    return click.confirm(question, default=False)


@click.group()
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    envvar="DOTMATRIX_CONFIG_DIR",
    help="Directory holding config.yaml (defaults to the platform config directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on the console")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write debug logging to this file",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Optional[Path], verbose: bool, log_file: Optional[Path]) -> None:
    """Dotfile backup and versioning tool.

    dotmatrix keeps copies of your configuration files (dotfiles) in a data
    directory. File contents are stored once per distinct content, every
    backup is recorded as a commit in a Git repository, and any recorded
    version can be restored, also to another machine or home directory.

    Main commands:

      init      Create the configuration and data directory
      add       Track files or glob patterns
      backup    Back up all tracked files
      status    Show what changed since the last backup
      restore   Restore files from the last or an earlier backup
      log       List backup history

    Run 'dotmatrix COMMAND --help' for more information on a specific command.
    """
    setup_logging(debug=verbose, log_file=str(log_file) if log_file else None)
    ctx.ensure_object(dict)
    ctx.obj["config_dir"] = config_dir


@cli.command()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Where to keep the index, stored files and history (only used for a new config)",
)
@click.pass_context
def init(ctx: click.Context, data_dir: Optional[Path]) -> None:
    """Initialize dotmatrix.

    Creates a default configuration file if one doesn't exist, then sets up
    the data directory: an empty index, the storage and archives directories
    and the history repository. Running it again is harmless.

    Examples:

      # Initialize with the default data directory
      dotmatrix init

      # Keep backups somewhere else
      dotmatrix init --data-dir ~/Dropbox/dotmatrix
    """
    try:
        context, created = initialize(ctx.obj.get("config_dir"), data_dir)
    except (ConfigError, OSError, RuntimeError) as e:
        raise click.ClickException(str(e))

    if created:
        console.print(f"[green]Created config: {escape(str(context.config_path))}")
    else:
        console.print(f"Config already exists: {escape(str(context.config_path))}")
    console.print(f"Data directory: {escape(str(context.data_dir))}")


@cli.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in BackupMode]),
    help="Backup mode for these patterns (defaults to the configured backup_mode)",
)
@click.pass_context
def add(ctx: click.Context, patterns: Tuple[str, ...], mode: Optional[str]) -> None:
    """Track files or glob patterns.

    PATTERNS are file paths or globs. Quote globs so the shell does not
    expand them; '**' matches across directories and 'dir/**' tracks
    everything below a directory.

    Examples:

      dotmatrix add ~/.bashrc ~/.gitconfig

      dotmatrix add '~/.config/nvim/**'

      dotmatrix add '~/.config/fish/**' --mode archive
    """
    if len(patterns) > MANY_ARGS_WARNING:
        console.print(
            f"[yellow]Warning: {len(patterns)} patterns given. "
            "If the shell expanded a glob, quote it to track the pattern instead."
        )

    context = _load_context(ctx)
    try:
        added, skipped = add_patterns(
            context, patterns, BackupMode.parse(mode) if mode else None
        )
    except OSError as e:
        raise click.ClickException(f"Could not save config: {e}")

    for pattern in added:
        console.print(f"[green]Tracking: {escape(pattern)}")
    for pattern in skipped:
        console.print(f"[yellow]Already tracked: {escape(pattern)}")


@cli.command()
@click.argument("patterns", nargs=-1, required=True)
@click.pass_context
def remove(ctx: click.Context, patterns: Tuple[str, ...]) -> None:
    """Stop tracking patterns.

    Files already backed up stay in the index until cleaned up with
    'dotmatrix scan'.
    """
    context = _load_context(ctx)
    try:
        removed, missing = remove_patterns(context, patterns)
    except OSError as e:
        raise click.ClickException(f"Could not save config: {e}")

    for pattern in removed:
        console.print(f"[green]No longer tracking: {escape(pattern)}")
    for pattern in missing:
        console.print(f"[yellow]Not tracked: {escape(pattern)}")


@cli.command(name="list")
@click.pass_context
def list_patterns(ctx: click.Context) -> None:
    """List tracked patterns and exclusions."""
    context = _load_context(ctx)
    config = context.config

    if not config.tracked_files:
        console.print("[yellow]No patterns tracked. Use 'dotmatrix add' to track files.")
    else:
        table = Table(title="Tracked patterns")
        table.add_column("#", style="dim")
        table.add_column("Pattern", style="cyan")
        table.add_column("Mode", style="green")
        for i, pattern in enumerate(config.tracked_files, 1):
            mode = config.mode_for_pattern(pattern).value
            if pattern.mode is None:
                mode += " (default)"
            table.add_row(str(i), escape(pattern.path), mode)
        console.print(table)

    if config.exclude:
        console.print("[bold]Excluded:")
        for pattern in config.exclude:
            console.print(f"  {escape(pattern)}", soft_wrap=True)


@cli.command(name="scan")
@click.option("--yes", "-y", is_flag=True, help="Remove orphaned index entries without asking")
@click.pass_context
def scan_command(ctx: click.Context, yes: bool) -> None:
    """Scan tracked patterns and compare with the last backup.

    Shows which files are new or changed since the last backup. Index
    entries for files that are no longer tracked (orphans) can be removed;
    the stored file contents are kept.
    """
    context = _load_context(ctx)
    try:
        report = scan(context)
    except IndexFormatError as e:
        raise click.ClickException(str(e))

    for error in report.scan.errors:
        console.print(f"[yellow]Warning: {escape(error)}", soft_wrap=True)

    status = report.status
    console.print(f"[bold]Found {len(report.scan.files)} tracked files")
    for entry in status.new:
        console.print(f"  [green]new[/]        {escape(str(entry.path))}", soft_wrap=True)
    for entry in status.modified:
        console.print(f"  [yellow]updated[/]    {escape(str(entry.path))}", soft_wrap=True)
    console.print(
        f"{len(status.new)} new, {len(status.modified)} updated, "
        f"{len(status.unchanged)} unchanged"
    )

    if not report.orphans:
        return

    console.print(f"[yellow]{len(report.orphans)} orphaned index entries (no longer tracked):")
    for path in report.orphans:
        console.print(f"  {escape(str(path))}", soft_wrap=True)
    if yes or click.confirm("Remove them from the index?", default=False):
        removed = clean_orphans(context, report.orphans)
        console.print(f"[green]Removed {removed} orphaned entries")


@cli.command()
@click.option("--message", "-m", help="Commit message (defaults to a summary of the backup)")
@click.pass_context
def backup(ctx: click.Context, message: Optional[str]) -> None:
    """Back up all tracked files.

    Each file is stored according to its backup mode: incremental files go
    into the content store (unchanged content is never stored twice) and
    archive files into a new compressed archive. The run is recorded as one
    commit in the history.

    Examples:

      dotmatrix backup

      dotmatrix backup -m "Before switching shells"
    """
    context = _load_context(ctx)
    manager = BackupManager(context, console)
    try:
        result = manager.backup(message)
    except IndexFormatError as e:
        raise click.ClickException(str(e))

    if result.total == 0 and result.errors == 0:
        return

    table = Table(title="Backup summary")
    table.add_column("", style="cyan")
    table.add_column("Files", justify="right")
    table.add_row("New", str(result.new))
    table.add_row("Updated", str(result.updated))
    table.add_row("Unchanged", str(result.unchanged))
    table.add_row("Stored", str(result.copied))
    table.add_row("Deduplicated", str(result.deduplicated))
    table.add_row("Archived", str(result.archived))
    table.add_row("Errors", f"[red]{result.errors}" if result.errors else "0")
    console.print(table)

    if result.archive_path:
        console.print(
            f"Archive: {escape(result.archive_path.name)} "
            f"({format_size(result.archive_path.stat().st_size)})"
        )
    if result.committed:
        console.print("[green]Backup recorded in history")

    if result.errors:
        ctx.exit(1)


@cli.command()
@click.option("--all", "-a", "show_all", is_flag=True, help="Also list unchanged files")
@click.option("--quick", "-q", is_flag=True, help="Compare size and mtime instead of content")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def status(ctx: click.Context, show_all: bool, quick: bool, as_json: bool) -> None:
    """Show what changed since the last backup.

    Files are reported as modified (M), new (+) or deleted (-). Index entries
    whose pattern is no longer tracked are listed as orphaned.

    By default file contents are hashed. --quick only compares size and
    modification time, which is faster but misses an edit that keeps both.
    """
    context = _load_context(ctx)
    config = context.config
    patterns = config.pattern_strings()

    scan_result = scan_patterns(patterns, config.exclude)
    for error in scan_result.errors:
        err_console.print(f"[yellow]Warning: {escape(error)}", soft_wrap=True)
    try:
        index = Index.load(context.index_path)
    except IndexFormatError as e:
        raise click.ClickException(str(e))
    report = compute_status(scan_result.files, index, patterns, config.exclude, quick=quick)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    if quick:
        console.print("[dim]Quick mode: comparing size and modification time only")

    for entry in report.entries:
        if entry.status == FileStatus.UNCHANGED and not show_all:
            continue
        style = {
            FileStatus.MODIFIED: "yellow",
            FileStatus.NEW: "green",
            FileStatus.DELETED: "red",
            FileStatus.UNCHANGED: "dim",
        }[entry.status]
        console.print(
            f"  [{style}]{entry.status.symbol}[/]  {escape(str(entry.path))}", soft_wrap=True
        )

    if report.orphaned:
        console.print("[yellow]Orphaned index entries (no longer tracked):")
        for path in report.orphaned:
            console.print(f"  ?  {escape(str(path))}", soft_wrap=True)

    if not report.has_changes and not report.orphaned:
        console.print("[green]Everything up to date")
    console.print(
        f"{len(report.modified)} modified, {len(report.new)} new, "
        f"{len(report.deleted)} deleted, {len(report.unchanged)} unchanged"
    )


@cli.command()
@click.option("--commit", "-c", help="Restore from this history commit instead of the last backup")
@click.option("--dry-run", is_flag=True, help="Show what would be restored without changing files")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option("--diff", "show_diff", is_flag=True, help="Show diffs before restoring")
@click.option(
    "--file",
    "-f",
    "files",
    multiple=True,
    help="Only restore files whose path contains this text (repeatable)",
)
@click.option(
    "--extract-to",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Restore under this directory instead of the original locations",
)
@click.option("--remap", help="Rewrite a path prefix, e.g. /home/alice=/home/bob")
@click.pass_context
def restore(
    ctx: click.Context,
    commit: Optional[str],
    dry_run: bool,
    yes: bool,
    show_diff: bool,
    files: Tuple[str, ...],
    extract_to: Optional[Path],
    remap: Optional[str],
) -> None:
    """Restore files from a backup.

    Files that differ from the backup are listed (files changed after the
    backup are marked [NEWER]) and, after confirmation, the current versions
    are copied to a safety backup directory before being replaced.

    Examples:

      # Restore everything from the last backup
      dotmatrix restore

      # Preview restoring one file from an earlier backup
      dotmatrix restore --commit 3f2a1c9 --file .zshrc --dry-run

      # Restore another user's dotfiles into your home directory
      dotmatrix restore --remap /home/alice=/home/bob

      # Extract everything into a scratch directory
      dotmatrix restore --extract-to /tmp/dotfiles-check --yes
    """
    remap_pair = None
    if remap:
        try:
            remap_pair = parse_remap(remap)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--remap")

    context = _load_context(ctx)
    manager = RestoreManager(
        context, console, prompt=_click_prompt, confirm=_click_confirm
    )
    try:
        result = manager.restore(
            commit=commit,
            files=list(files) or None,
            remap=remap_pair,
            extract_to=extract_to,
            dry_run=dry_run,
            assume_yes=yes,
            show_diff=show_diff,
        )
    except (IndexFormatError, RuntimeError) as e:
        raise click.ClickException(f"Could not load backup index: {e}")

    if result.cancelled:
        raise click.Abort()
    if result.restored or result.errors:
        console.print(f"Restored: {result.restored}, errors: {result.errors}")
    if result.errors:
        ctx.exit(1)


@cli.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Number of commits to show")
@click.pass_context
def log(ctx: click.Context, limit: int) -> None:
    """List backup history, newest first."""
    context = _load_context(ctx)
    manager = RestoreManager(context, console)
    try:
        commits = manager.history.log(limit)
    except RuntimeError as e:
        raise click.ClickException(str(e))

    if not commits:
        console.print("[yellow]No backups in history yet.")
        return

    table = Table(title="Backup history")
    table.add_column("Commit", style="cyan", no_wrap=True)
    table.add_column("Date", style="green")
    table.add_column("Message")
    for commit in commits:
        table.add_row(commit.short_id, commit.timestamp, escape(commit.message))
    console.print(table)


@cli.command()
@click.argument("commit")
@click.option(
    "--restore",
    "-r",
    "restore_files",
    multiple=True,
    help="Restore files from this commit whose path contains this text (repeatable)",
)
@click.option("--limit", "-n", default=100, show_default=True, help="How far back to look")
@click.option("--yes", "-y", is_flag=True, help="Restore without asking for confirmation")
@click.pass_context
def show(
    ctx: click.Context, commit: str, restore_files: Tuple[str, ...], limit: int, yes: bool
) -> None:
    """Show the files recorded in a history commit.

    COMMIT is a commit id (or its prefix) as printed by 'dotmatrix log'.
    Each file is compared with the local copy. With --restore, matching
    files are restored after confirmation (skipped with --yes) and a safety
    backup of the current versions.
    """
    context = _load_context(ctx)
    manager = RestoreManager(context, console, prompt=_click_prompt, confirm=_click_confirm)
    browser = RestoreBrowser(manager, limit=limit)
    try:
        commits = browser.load_commits()
        position = next(
            (i for i, c in enumerate(commits) if c.id.startswith(commit) or c.short_id == commit),
            None,
        )
        if position is None:
            raise click.ClickException(f"Commit {commit} not found in the last {limit} commits")
        restore_candidates = browser.select_commit(position)
    except (IndexFormatError, RuntimeError) as e:
        raise click.ClickException(str(e))

    selected = commits[position]
    console.print(f"[bold]{selected.short_id}[/] {selected.timestamp} {escape(selected.message)}")
    for item in restore_candidates:
        if not item.exists_locally:
            state = "[red]missing"
        elif item.local_differs:
            state = "[yellow]differs"
        else:
            state = "[green]same"
        console.print(
            f"  {state}[/]  {escape(str(item.path))} ({format_size(item.size)})", soft_wrap=True
        )

    if not restore_files:
        return
    for i, item in enumerate(restore_candidates):
        if any(text in str(item.path) for text in restore_files):
            browser.toggle_select(i)
    if not browser.selected:
        console.print("[yellow]No matching files in this commit.")
        return
    result = browser.restore_selected(assume_yes=yes)
    if result.cancelled:
        raise click.Abort()
    console.print(f"Restored: {result.restored}, errors: {result.errors}")
    if result.errors:
        ctx.exit(1)


def main() -> None:
    """Entry point for the dotmatrix CLI."""
    cli()


if __name__ == "__main__":
    main()
