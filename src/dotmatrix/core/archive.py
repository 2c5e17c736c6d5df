"""
Compressed point-in-time archives.

Archive-mode files are written into one ``backup-<timestamp>.tar.gz`` per
backup invocation. Members are named by the file's absolute path without its
leading separator, so the original location can be rebuilt on restore. A
``latest.tar.gz`` pointer always names the newest archive.
"""

import hashlib
import logging
import os
import shutil
import tarfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from rich.progress import Progress, TaskID

from .store import iter_chunks

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "backup-"
ARCHIVE_SUFFIX = ".tar.gz"
LATEST_NAME = "latest" + ARCHIVE_SUFFIX
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"


def member_name(path: Path) -> str:
    """Archive member name for an absolute file path."""
    return str(path).lstrip("/\\")


class ArchiveWriter:
    """Writes one timestamped tarball into the archives directory."""

    def __init__(self, archives_dir: Path, timestamp: Optional[datetime] = None):
        """
        Initialize the writer.

        Args:
            archives_dir: Directory holding all archives
            timestamp: Time used to name the archive; defaults to now
        """
        self.archives_dir = Path(archives_dir)
        stamp = (timestamp or datetime.now()).strftime(TIMESTAMP_FORMAT)
        self.output_path = self._unique_path(f"{ARCHIVE_PREFIX}{stamp}")
        self._tar: Optional[tarfile.TarFile] = None
        self._task_id: Optional[TaskID] = None
        self._progress: Optional[Progress] = None

    def _unique_path(self, stem: str) -> Path:
        path = self.archives_dir / f"{stem}{ARCHIVE_SUFFIX}"
        counter = 1
        while path.exists():
            path = self.archives_dir / f"{stem}-{counter}{ARCHIVE_SUFFIX}"
            counter += 1
        return path

    def open(self, total: int = 0, progress: Optional[Progress] = None) -> None:
        """
        Create the archive file.

        Args:
            total: Number of files that will be added, for progress tracking
            progress: Optional Progress instance for progress tracking
        """
        self.archives_dir.mkdir(parents=True, exist_ok=True)
        self._tar = tarfile.open(self.output_path, "w:gz")
        self._progress = progress
        if progress:
            self._task_id = progress.add_task(
                f"Creating archive: {self.output_path.name}", total=total
            )

    def add(self, path: Path) -> None:
        """
        Append one file.

        Raises:
            OSError: If the file cannot be read. Nothing is written for it.
        """
        if self._tar is None:
            raise ValueError("Archive is not open")
        try:
            self._tar.add(str(path), arcname=member_name(path), recursive=False)
        finally:
            if self._progress and self._task_id is not None:
                self._progress.advance(self._task_id)

    def close(self) -> Path:
        """Finish the archive and point ``latest`` at it."""
        if self._tar is not None:
            self._tar.close()
            self._tar = None
        update_latest(self.archives_dir, self.output_path)
        return self.output_path

    def abort(self) -> None:
        """Close and delete a partially written archive."""
        if self._tar is not None:
            try:
                self._tar.close()
            finally:
                self._tar = None
        if self.output_path.exists():
            self.output_path.unlink()


def update_latest(archives_dir: Path, archive_path: Path) -> None:
    """Replace the ``latest`` pointer so it names ``archive_path``.

    A relative symlink is used; where symlinks are unavailable the archive is
    copied instead.
    """
    latest = archives_dir / LATEST_NAME
    if latest.is_symlink() or latest.exists():
        latest.unlink()
    try:
        os.symlink(archive_path.name, latest)
    except (OSError, NotImplementedError):
        shutil.copy2(archive_path, latest)
    logger.debug("Latest archive is now %s", archive_path.name)


def _archive_sort_key(path: Path) -> Tuple[str, int]:
    # backup-<timestamp>[-N].tar.gz; N orders archives made within one second
    stem = path.name[len(ARCHIVE_PREFIX) : -len(ARCHIVE_SUFFIX)]
    stamp_len = len(datetime(2000, 1, 1).strftime(TIMESTAMP_FORMAT))
    stamp, counter = stem[:stamp_len], stem[stamp_len + 1 :]
    return stamp, int(counter) if counter.isdigit() else 0


def list_archives(archives_dir: Path) -> List[Path]:
    """Archives in ``archives_dir``, newest first. The ``latest`` pointer is skipped."""
    if not archives_dir.exists():
        return []
    archives = [
        p
        for p in archives_dir.iterdir()
        if p.name.startswith(ARCHIVE_PREFIX) and p.name.endswith(ARCHIVE_SUFFIX)
    ]
    archives.sort(key=_archive_sort_key, reverse=True)
    return archives


def find_in_archives(archives_dir: Path, path: Path, digest: str) -> Optional[bytes]:
    """Return the archived content of ``path`` whose SHA-256 equals ``digest``.

    Archives are searched newest first. Unreadable archives are logged and
    skipped.
    """
    name = member_name(path)
    for archive in list_archives(archives_dir):
        try:
            with tarfile.open(archive, "r:gz") as tar:
                try:
                    member = tar.getmember(name)
                except KeyError:
                    continue
                f = tar.extractfile(member)
                if f is None:
                    continue
                with f:
                    hasher = hashlib.sha256()
                    chunks = []
                    for chunk in iter_chunks(f):
                        hasher.update(chunk)
                        chunks.append(chunk)
                if hasher.hexdigest() == digest:
                    logger.debug("Found %s in %s", path, archive.name)
                    return b"".join(chunks)
        except (OSError, tarfile.TarError) as e:
            logger.warning("Could not read archive %s: %s", archive, e)
    return None
