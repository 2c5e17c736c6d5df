"""Command functionality for dotmatrix.

Small operations behind the CLI that touch configuration and the index
directly rather than going through one of the managers.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .config import CONFIG_FILENAME, BackupMode, Config
from .context import Context, default_config_dir
from .index import Index
from .repository import GitRepository
from .scanner import ScanResult, scan_patterns
from .status import StatusReport, compute_status, find_orphans, remove_orphans

logger = logging.getLogger(__name__)


def initialize(
    config_dir: Optional[Path] = None, data_dir: Optional[Path] = None
) -> Tuple[Context, bool]:
    """Create the configuration and the data directory layout.

    An existing configuration is left untouched. The data directory gets an
    empty index, the storage and archives directories and, when enabled, the
    history repository.

    Returns:
        The context and whether a new configuration file was written.
    """
    config_path = (config_dir or default_config_dir()) / CONFIG_FILENAME
    created = False
    if config_path.exists():
        config = Config.load(config_path)
    else:
        config = Config()
        if data_dir is not None:
            config.data_dir = str(data_dir)
        config.save(config_path)
        created = True
        logger.info("Created config at %s", config_path)

    context = Context(config, config_path)
    context.storage_path.mkdir(parents=True, exist_ok=True)
    context.archives_path.mkdir(parents=True, exist_ok=True)
    if not context.index_path.exists():
        Index().save(context.index_path)

    if config.git_enabled:
        GitRepository(context.data_dir).init()
    return context, created


def add_patterns(
    context: Context, patterns: Sequence[str], mode: Optional[BackupMode] = None
) -> Tuple[List[str], List[str]]:
    """Track patterns and save the configuration.

    Returns:
        (added, already tracked)
    """
    added, skipped = [], []
    for pattern in patterns:
        if context.config.add_pattern(pattern, mode):
            added.append(pattern)
        else:
            skipped.append(pattern)
    if added:
        context.config.save(context.config_path)
    return added, skipped


def remove_patterns(context: Context, patterns: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Untrack patterns and save the configuration.

    Index entries of files that were only covered by these patterns become
    orphans; they are cleaned up by :func:`clean_orphans`.

    Returns:
        (removed, not tracked)
    """
    removed, missing = [], []
    for pattern in patterns:
        if context.config.remove_pattern(pattern):
            removed.append(pattern)
        else:
            missing.append(pattern)
    if removed:
        context.config.save(context.config_path)
    return removed, missing


@dataclass
class ScanReport:
    """Tracked files found on disk compared with the index."""

    scan: ScanResult
    status: StatusReport
    orphans: List[Path] = field(default_factory=list)


def scan(context: Context) -> ScanReport:
    """Scan tracked patterns and compare the files found with the index."""
    config = context.config
    patterns = config.pattern_strings()
    result = scan_patterns(patterns, config.exclude)
    index = Index.load(context.index_path)
    status = compute_status(result.files, index, patterns, config.exclude)
    return ScanReport(
        scan=result,
        status=status,
        orphans=find_orphans(index, patterns, config.exclude),
    )


def clean_orphans(context: Context, orphans: Sequence[Path]) -> int:
    """Remove orphaned entries from the index and save it."""
    index = Index.load(context.index_path)
    removed = remove_orphans(index, orphans)
    if removed:
        index.save(context.index_path)
    return removed
