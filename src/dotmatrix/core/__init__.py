"""Core functionality for dotmatrix."""

from .backup import BackupManager, BackupResult
from .config import BackupMode, Config, ConfigError, TrackedPattern
from .context import Context
from .index import FileEntry, Index, IndexFormatError
from .repository import Commit, GitRepository, HistoryLog
from .restore import RestoreBrowser, RestoreManager, RestoreView
from .status import FileStatus, StatusReport, compute_status
from .store import ContentStore

__all__ = [
    "BackupManager",
    "BackupMode",
    "BackupResult",
    "Commit",
    "Config",
    "ConfigError",
    "ContentStore",
    "Context",
    "FileEntry",
    "FileStatus",
    "GitRepository",
    "HistoryLog",
    "Index",
    "IndexFormatError",
    "RestoreBrowser",
    "RestoreManager",
    "RestoreView",
    "StatusReport",
    "TrackedPattern",
    "compute_status",
]
