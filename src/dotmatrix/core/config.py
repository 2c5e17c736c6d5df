"""Configuration management for dotmatrix."""

from __future__ import annotations

import copy
import enum
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .scanner import expand_path, path_matches_pattern

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"


class ConfigError(ValueError):
    """Raised when a configuration document is malformed."""


class BackupMode(str, enum.Enum):
    """How a tracked file is stored."""

    INCREMENTAL = "incremental"
    ARCHIVE = "archive"

    @classmethod
    def parse(cls, value: Union[str, "BackupMode"]) -> "BackupMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigError(
                f"Unknown backup mode '{value}' (expected 'incremental' or 'archive')"
            ) from None


class TrackedPattern:
    """A glob or literal path registered for backup, with an optional mode override."""

    def __init__(self, path: str, mode: Optional[BackupMode] = None) -> None:
        self.path = path
        self.mode = mode

    @classmethod
    def from_raw(cls, raw: Any) -> "TrackedPattern":
        """Build a pattern from its YAML form: a string or a ``{path, mode}`` mapping."""
        if isinstance(raw, str):
            return cls(raw)
        if isinstance(raw, dict):
            if "path" not in raw or not isinstance(raw["path"], str):
                raise ConfigError(f"Tracked pattern {raw!r} must have a string 'path'")
            mode = raw.get("mode")
            return cls(raw["path"], BackupMode.parse(mode) if mode is not None else None)
        raise ConfigError(f"Tracked pattern {raw!r} must be a string or a mapping")

    def to_raw(self) -> Union[str, Dict[str, str]]:
        if self.mode is None:
            return self.path
        return {"path": self.path, "mode": self.mode.value}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TrackedPattern):
            return NotImplemented
        return self.path == other.path and self.mode == other.mode

    def __str__(self) -> str:
        if self.mode is None:
            return self.path
        return f"{self.path} ({self.mode.value})"

    def __repr__(self) -> str:
        return f"TrackedPattern({self.path!r}, {self.mode!r})"


DEFAULT_CONFIG: Dict[str, Any] = {
    "data_dir": None,
    "git_enabled": True,
    "backup_mode": "incremental",
    "tracked_files": [
        "~/.bashrc",
        "~/.zshrc",
        "~/.gitconfig",
    ],
    "exclude": [
        "**/*.log",
        "**/.DS_Store",
        "**/node_modules/**",
    ],
    "safety_backup_dir": "~/.dotmatrix-restore-backups",
}


class Config:
    """Configuration class for dotmatrix.

    Holds the ordered tracked patterns, the exclude globs, the process-wide
    default backup mode and the locations the engines work in. Values start
    from :data:`DEFAULT_CONFIG` and are overridden by whatever a YAML file or
    dictionary provides.
    """

    def __init__(self) -> None:
        self.data_dir: Optional[str] = None
        self.git_enabled: bool = True
        self.backup_mode: BackupMode = BackupMode.INCREMENTAL
        self.tracked_files: List[TrackedPattern] = []
        self.exclude: List[str] = []
        self.safety_backup_dir: str = DEFAULT_CONFIG["safety_backup_dir"]
        self._merge_config(copy.deepcopy(DEFAULT_CONFIG))

    @classmethod
    def load(cls, config_file: Path) -> "Config":
        """Load configuration from a YAML file.

        Raises:
            ConfigError: If the file cannot be parsed or holds invalid values.
            OSError: If the file cannot be read.
        """
        config = cls()
        with open(config_file, "r", encoding="utf-8") as f:
            try:
                user_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Error parsing config file {config_file}: {e}") from e
        if user_config is not None:
            config._merge_config(user_config)
        logger.debug("Loaded config from %s", config_file)
        return config

    def save(self, config_file: Path) -> None:
        """Write the whole configuration to ``config_file``.

        The document is written to a temporary file next to the target and
        renamed over it, so an interrupted save leaves the old file intact.
        """
        config_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=config_file.parent, prefix=".config-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            os.replace(tmp_name, config_file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved config to %s", config_file)

    def _merge_config(self, config: Dict[str, Any]) -> None:
        """Merge configuration with current configuration."""
        if not isinstance(config, dict):
            raise ConfigError("Configuration must be a dictionary")

        if "data_dir" in config:
            if config["data_dir"] is not None and not isinstance(config["data_dir"], str):
                raise ConfigError("data_dir must be a string")
            self.data_dir = config["data_dir"]

        if "git_enabled" in config:
            if not isinstance(config["git_enabled"], bool):
                raise ConfigError("git_enabled must be a boolean")
            self.git_enabled = config["git_enabled"]

        if "backup_mode" in config:
            self.backup_mode = BackupMode.parse(config["backup_mode"])

        if "tracked_files" in config:
            if not isinstance(config["tracked_files"], list):
                raise ConfigError("tracked_files must be a list")
            self.tracked_files = [TrackedPattern.from_raw(p) for p in config["tracked_files"]]

        if "exclude" in config:
            if not isinstance(config["exclude"], list):
                raise ConfigError("exclude must be a list")
            for pattern in config["exclude"]:
                if not isinstance(pattern, str):
                    raise ConfigError(f"exclude pattern {pattern!r} must be a string")
            self.exclude = list(config["exclude"])

        if "safety_backup_dir" in config:
            if not isinstance(config["safety_backup_dir"], str):
                raise ConfigError("safety_backup_dir must be a string")
            self.safety_backup_dir = config["safety_backup_dir"]

    def load_from_dict(self, config_data: Dict[str, Any]) -> None:
        """Load configuration from a dictionary.

        Example:
            ```python
            config = Config()
            config.load_from_dict({
                "tracked_files": ["~/.bashrc", {"path": "~/.config/nvim/**", "mode": "archive"}],
                "exclude": ["**/*.log"],
            })
            ```
        """
        self._merge_config(config_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_dir": self.data_dir,
            "git_enabled": self.git_enabled,
            "backup_mode": self.backup_mode.value,
            "tracked_files": [p.to_raw() for p in self.tracked_files],
            "exclude": list(self.exclude),
            "safety_backup_dir": self.safety_backup_dir,
        }

    def validate(self) -> List[str]:
        """Validate configuration."""
        errors = []

        seen = set()
        for pattern in self.tracked_files:
            if not pattern.path.strip():
                errors.append("tracked pattern must not be empty")
            elif pattern.path in seen:
                errors.append(f"tracked pattern {pattern.path} is listed more than once")
            seen.add(pattern.path)

        for pattern in self.exclude:
            if not pattern.strip():
                errors.append("exclude pattern must not be empty")

        return errors

    def pattern_strings(self) -> List[str]:
        return [p.path for p in self.tracked_files]

    def add_pattern(self, path: str, mode: Optional[BackupMode] = None) -> bool:
        """Track ``path``. Returns False if it is already tracked."""
        if any(p.path == path for p in self.tracked_files):
            return False
        self.tracked_files.append(TrackedPattern(path, mode))
        return True

    def remove_pattern(self, path: str) -> bool:
        """Stop tracking ``path``. Returns False if it was not tracked."""
        for i, pattern in enumerate(self.tracked_files):
            if pattern.path == path:
                del self.tracked_files[i]
                return True
        return False

    def mode_for_pattern(self, pattern: TrackedPattern) -> BackupMode:
        return pattern.mode or self.backup_mode

    def mode_for_file(self, path: Path) -> BackupMode:
        """Return the effective backup mode for ``path``.

        Patterns are checked from last to first so that a later pattern
        overrides an earlier one matching the same file.
        """
        for pattern in reversed(self.tracked_files):
            if path_matches_pattern(path, pattern.path):
                return self.mode_for_pattern(pattern)
        return self.backup_mode

    def resolved_data_dir(self) -> Optional[Path]:
        """Custom data directory with ``~`` expanded, or None for the default."""
        if self.data_dir:
            return expand_path(self.data_dir)
        return None
