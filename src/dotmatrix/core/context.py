"""Locations the engines operate on.

A :class:`Context` is built once per command from the loaded configuration
and handed to every manager, so nothing below the CLI looks up home or data
directories on its own.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .config import CONFIG_FILENAME, Config
from .scanner import expand_path

APP_NAME = "dotmatrix"
INDEX_FILENAME = "index.json"


def default_config_dir() -> Path:
    return Path(click.get_app_dir(APP_NAME))


def default_data_dir() -> Path:
    return Path("~/.local/share").expanduser() / APP_NAME


class Context:
    """Resolved paths plus the configuration they were derived from.

    Attributes:
        config (Config): Loaded configuration
        config_path (Path): Configuration file
        data_dir (Path): Directory holding the index, storage and archives;
            this is also the History Log working tree
    """

    def __init__(self, config: Config, config_path: Path, data_dir: Optional[Path] = None):
        self.config = config
        self.config_path = Path(config_path)
        self.data_dir = Path(data_dir or config.resolved_data_dir() or default_data_dir())

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> "Context":
        """Load the configuration found in ``config_dir``.

        Raises:
            FileNotFoundError: If no configuration file exists yet.
            ConfigError: If the configuration file is malformed.
        """
        config_path = (config_dir or default_config_dir()) / CONFIG_FILENAME
        if not config_path.exists():
            raise FileNotFoundError(f"No config file found at {config_path}")
        return cls(Config.load(config_path), config_path)

    @property
    def index_path(self) -> Path:
        return self.data_dir / INDEX_FILENAME

    @property
    def storage_path(self) -> Path:
        return self.data_dir / "storage"

    @property
    def archives_path(self) -> Path:
        return self.data_dir / "archives"

    @property
    def safety_backup_root(self) -> Path:
        return expand_path(self.config.safety_backup_dir)

    def __repr__(self) -> str:
        return f"Context(config_path={self.config_path}, data_dir={self.data_dir})"
