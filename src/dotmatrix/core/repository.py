"""History log backed by a Git repository in the data directory."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Union, cast

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "dotmatrix"
DEFAULT_USER_EMAIL = "dotmatrix@localhost"

# Unit separator; commit subjects may contain any printable character
_FIELD_SEP = "\x1f"


@dataclass
class Commit:
    """One entry of the history log."""

    id: str
    short_id: str
    message: str
    timestamp: str


class HistoryLog(Protocol):
    """Operations the engines need from a history backend."""

    def init(self) -> None:
        ...

    def commit(self, message: str) -> None:
        ...

    def log(self, limit: int = 20) -> List[Commit]:
        ...

    def show(self, commit_id: str, path: str) -> bytes:
        ...


class GitRepository:
    """Represents the Git repository that versions the data directory.

    Every backup invocation becomes one commit holding the index, the blob
    store and the archives as they were at that point, so any past index can
    be read back with :meth:`show` without checking out a working tree.

    Attributes:
        path (Path): Path to the Git repository.
    """

    def __init__(self, path: Path):
        """Initialize repository."""
        self.path = Path(path).resolve()

    def __str__(self) -> str:
        """Return string representation."""
        return f"GitRepository({self.path})"

    def __repr__(self) -> str:
        """Return string representation."""
        return self.__str__()

    def exists(self) -> bool:
        """Check if repository exists and is a Git repository."""
        return (self.path / ".git").exists()

    def _run_git(self, *args: str, text: bool = True) -> Union[str, bytes]:
        """Run a Git command and return its output."""
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=text,
                check=True,
            )
        except FileNotFoundError:
            raise RuntimeError("Git command failed: git executable not found")
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else e.stderr
            stdout = e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else e.stdout
            if stderr and stderr.strip():
                raise RuntimeError(f"Git command failed: {stderr.strip()}")
            if stdout and stdout.strip():
                raise RuntimeError(f"Git command failed: {stdout.strip()}")
            raise RuntimeError("Git command failed with no output")
        if text:
            return result.stdout.strip()
        return result.stdout

    def _config_value(self, key: str) -> Optional[str]:
        try:
            value = self._run_git("config", "--get", key)
        except RuntimeError:
            return None
        return str(value) or None

    def init(self, user_name: Optional[str] = None, user_email: Optional[str] = None) -> None:
        """Initialize the repository if it does not exist yet.

        Calling this on an existing repository does nothing. When no identity
        is configured (locally or globally) a local one is set so that
        commits can be created.

        Raises:
            RuntimeError: If Git operations fail during initialization.
        """
        if self.exists():
            logger.debug("Git repository already exists at %s", self.path)
            return

        self.path.mkdir(parents=True, exist_ok=True)
        self._run_git("init")
        logger.info("Initialized git repository in %s", self.path)

        if user_name or not self._config_value("user.name"):
            self._run_git("config", "user.name", user_name or DEFAULT_USER_NAME)
        if user_email or not self._config_value("user.email"):
            self._run_git("config", "user.email", user_email or DEFAULT_USER_EMAIL)

    def commit(self, message: str) -> None:
        """Stage the whole data directory and commit it.

        Raises:
            RuntimeError: If Git operation fails for reasons other than
                        nothing to commit.

        Note:
            If there are no changes to commit, this method will return silently
            instead of raising an error.
        """
        if not self.exists():
            self.init()
        self._run_git("add", "-A")
        try:
            self._run_git("commit", "-m", message)
        except RuntimeError as e:
            if "nothing to commit" in str(e) or "nothing added to commit" in str(e):
                logger.info("Nothing new to commit")
                return
            raise
        logger.info("Committed: %s", message)

    def log(self, limit: int = 20) -> List[Commit]:
        """Return up to ``limit`` commits, newest first.

        An empty or missing repository has no history and yields an empty list.
        """
        if not self.exists():
            return []
        fmt = _FIELD_SEP.join(["%H", "%h", "%cI", "%s"])
        try:
            output = self._run_git("log", f"--pretty=format:{fmt}", f"-n{limit}")
        except RuntimeError as e:
            if "does not have any commits" in str(e):
                return []
            raise

        commits = []
        for line in str(output).splitlines():
            parts = line.split(_FIELD_SEP, 3)
            if len(parts) == 4:
                commits.append(
                    Commit(id=parts[0], short_id=parts[1], timestamp=parts[2], message=parts[3])
                )
        return commits

    def show(self, commit_id: str, path: str) -> bytes:
        """Return the content of ``path`` as recorded in ``commit_id``.

        Raises:
            RuntimeError: If the commit or path does not exist.
        """
        return cast(bytes, self._run_git("show", f"{commit_id}:{path}", text=False))
