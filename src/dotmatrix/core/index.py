"""Path to fingerprint index.

The index records, for every tracked absolute path, the hash, size and
modification time seen at the last backup. It is persisted as a single JSON
document that is rewritten in full on every save.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .store import hash_file

logger = logging.getLogger(__name__)


class IndexFormatError(ValueError):
    """Raised when an index document cannot be parsed."""


@dataclass
class FileEntry:
    """Fingerprint of one file at backup time."""

    path: Path
    hash: str
    size: int
    last_modified: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "hash": self.hash,
            "last_modified": self.last_modified,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "FileEntry":
        """Build the entry stored under ``key``; the key is the path."""
        if "path" in data and data["path"] != key:
            raise IndexFormatError(f"Index entry for {key} records path {data['path']!r}")
        try:
            return cls(
                path=Path(key),
                hash=str(data["hash"]),
                size=int(data["size"]),
                last_modified=int(data["last_modified"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise IndexFormatError(f"Invalid index entry for {key}: {e}") from e


def file_mtime(path: Path) -> int:
    return int(os.stat(path).st_mtime)


def scan_file(path: Path) -> FileEntry:
    """Fingerprint a file on disk (streaming hash, size and mtime).

    Raises:
        OSError: If the file cannot be stat'ed or read.
    """
    stat = os.stat(path)
    return FileEntry(
        path=Path(path),
        hash=hash_file(path),
        size=stat.st_size,
        last_modified=int(stat.st_mtime),
    )


class Index:
    """Mapping from absolute path to :class:`FileEntry`."""

    def __init__(self, files: Optional[Dict[Path, FileEntry]] = None) -> None:
        self.files: Dict[Path, FileEntry] = dict(files or {})

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(self.files.values())

    def add_file(self, entry: FileEntry) -> None:
        self.files[Path(entry.path)] = entry

    def remove_file(self, path: Path) -> Optional[FileEntry]:
        return self.files.pop(Path(path), None)

    def get_file(self, path: Path) -> Optional[FileEntry]:
        return self.files.get(Path(path))

    def entries(self) -> List[FileEntry]:
        """Entries sorted by path."""
        return [self.files[p] for p in sorted(self.files)]

    def to_json(self) -> str:
        data = {"files": {str(p): e.to_dict() for p, e in sorted(self.files.items())}}
        return json.dumps(data, indent=2)

    @classmethod
    def from_json(cls, content: Union[str, bytes]) -> "Index":
        """Parse an index document.

        Raises:
            IndexFormatError: If the document is not a valid index.
        """
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise IndexFormatError(f"Index is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("files"), dict):
            raise IndexFormatError("Index must be an object with a 'files' mapping")
        index = cls()
        for key, value in data["files"].items():
            if not isinstance(value, dict):
                raise IndexFormatError(f"Invalid index entry for {key}")
            index.files[Path(key)] = FileEntry.from_dict(key, value)
        return index

    @classmethod
    def load(cls, path: Path) -> "Index":
        """Load the index at ``path``; a missing file yields an empty index."""
        if not path.exists():
            logger.debug("No index at %s, starting empty", path)
            return cls()
        index = cls.from_json(path.read_text(encoding="utf-8"))
        logger.debug("Loaded %d index entries from %s", len(index), path)
        return index

    def save(self, path: Path) -> None:
        """Rewrite the whole index at ``path`` via a temporary file and rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".index-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.to_json())
                f.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved %d index entries to %s", len(self), path)
