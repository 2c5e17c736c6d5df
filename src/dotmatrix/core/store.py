"""Content-addressed blob storage.

Blobs are keyed by the SHA-256 of their bytes and laid out as
``<root>/<hash[0:2]>/<hash>``. A blob is written once; storing content that
is already present is a no-op, which is what deduplicates identical files
across paths and across backups. Nothing is ever deleted from the store.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Tuple

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def iter_chunks(f: BinaryIO) -> Iterator[bytes]:
    while True:
        chunk = f.read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


def hash_file(path: Path) -> str:
    """Calculate the SHA-256 hex digest of a file, reading it in chunks."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter_chunks(f):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass
class StoredBlob:
    """Outcome of storing one file.

    ``copied`` is False when a blob with the same hash was already present
    and the new bytes were discarded.
    """

    hash: str
    size: int
    copied: bool


class ContentStore:
    """Sharded, write-once blob store rooted at ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def location_of(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    def exists(self, digest: str) -> bool:
        return self.location_of(digest).is_file()

    def read(self, digest: str) -> bytes:
        return self.location_of(digest).read_bytes()

    def put(self, data: bytes) -> str:
        """Store ``data`` and return its hash."""
        digest = hash_bytes(data)
        if self.exists(digest):
            return digest
        fd, tmp_name = self._temp_file()
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            self._commit(tmp_name, digest)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return digest

    def put_file(self, path: Path) -> StoredBlob:
        """Stream ``path`` into the store, hashing while copying.

        The bytes land in a temporary file inside the store first and are only
        moved under their hash if no blob with that hash exists yet.

        Raises:
            OSError: If the source cannot be read or the store cannot be written.
        """
        hasher = hashlib.sha256()
        size = 0
        fd, tmp_name = self._temp_file()
        try:
            with open(path, "rb") as src, os.fdopen(fd, "wb") as tmp:
                for chunk in iter_chunks(src):
                    hasher.update(chunk)
                    tmp.write(chunk)
                    size += len(chunk)
            digest = hasher.hexdigest()
            if self.exists(digest):
                Path(tmp_name).unlink()
                logger.debug("Deduplicated %s (%s)", path, digest[:12])
                return StoredBlob(digest, size, copied=False)
            self._commit(tmp_name, digest)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Stored %s as %s", path, digest[:12])
        return StoredBlob(digest, size, copied=True)

    def _temp_file(self) -> Tuple[int, str]:
        self.root.mkdir(parents=True, exist_ok=True)
        return tempfile.mkstemp(dir=self.root, prefix=".incoming-")

    def _commit(self, tmp_name: str, digest: str) -> None:
        target = self.location_of(digest)
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(tmp_name, target)
