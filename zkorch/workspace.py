"""
Filesystem side effects of zkorch steps.

The orchestrator and backends never touch artifact files directly; they
go through a Workspace. LocalWorkspace performs the operations,
DryRunWorkspace reports them and keeps writes in memory so that a dry
run leaves the project untouched while following the same code path.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional

from zkorch.errors import MissingFilesError, ZkorchError
from zkorch.paths import ensure_required_files
from zkorch.utils import Reporter


logger = logging.getLogger(__name__)


@contextmanager
def _os_errors(action: str):
    try:
        yield
    except OSError as e:
        raise ZkorchError(f"Failed to {action}: {e}") from e


class Workspace(ABC):
    """Abstract base class for filesystem access."""

    @abstractmethod
    def exists(self, path: Path) -> bool:
        pass

    @abstractmethod
    def require(self, paths: Iterable[Path]) -> None:
        """
        Check that all paths exist.

        Raises:
            MissingFilesError: Listing every missing path
        """
        pass

    @abstractmethod
    def ensure_dir(self, path: Path) -> None:
        pass

    @abstractmethod
    def remove_tree(self, path: Path) -> bool:
        """Remove a directory tree. Returns False if it did not exist."""
        pass

    @abstractmethod
    def remove_file(self, path: Path) -> bool:
        pass

    @abstractmethod
    def move(self, source: Path, dest: Path) -> None:
        pass

    @abstractmethod
    def write_text(self, path: Path, text: str) -> None:
        pass

    @abstractmethod
    def read_text(self, path: Path) -> Optional[str]:
        """File contents, or None if the file does not exist."""
        pass


class LocalWorkspace(Workspace):
    """
    Reads and writes the real filesystem.

    OSErrors are raised as ZkorchError so that a failed file operation is
    reported against its step like a failed command.
    """

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def require(self, paths: Iterable[Path]) -> None:
        ensure_required_files(paths)

    def ensure_dir(self, path: Path) -> None:
        with _os_errors(f"create directory {path}"):
            Path(path).mkdir(parents=True, exist_ok=True)

    def remove_tree(self, path: Path) -> bool:
        path = Path(path)
        if not path.exists():
            return False
        with _os_errors(f"remove {path}"):
            shutil.rmtree(path)
        logger.debug(f"Removed {path}")
        return True

    def remove_file(self, path: Path) -> bool:
        path = Path(path)
        if not path.exists():
            return False
        with _os_errors(f"remove {path}"):
            path.unlink()
        return True

    def move(self, source: Path, dest: Path) -> None:
        source, dest = Path(source), Path(dest)
        if not source.exists():
            raise MissingFilesError([source])
        with _os_errors(f"move {source} to {dest}"):
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.is_dir():
                shutil.rmtree(dest)
            shutil.move(str(source), str(dest))
        logger.debug(f"Moved {source} -> {dest}")

    def write_text(self, path: Path, text: str) -> None:
        path = Path(path)
        with _os_errors(f"write {path}"):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)

    def read_text(self, path: Path) -> Optional[str]:
        path = Path(path)
        if not path.is_file():
            return None
        with _os_errors(f"read {path}"):
            return path.read_text()


class DryRunWorkspace(Workspace):
    """
    Reports filesystem changes without making them.

    Reads fall through to disk. Writes are kept in memory and removals
    hide the on-disk file for the rest of the invocation.
    """

    def __init__(self, reporter: Optional[Reporter] = None):
        self.reporter = reporter
        self.written: dict[Path, str] = {}
        self.removed: set[Path] = set()

    def _say(self, message: str) -> None:
        logger.debug(message, extra={"event": "workspace.dry_run"})
        if self.reporter:
            self.reporter.plain(message)

    def _hidden(self, path: Path) -> bool:
        return path in self.removed or any(parent in self.removed for parent in path.parents)

    def exists(self, path: Path) -> bool:
        path = Path(path)
        if path in self.written:
            return True
        if self._hidden(path):
            return False
        return path.exists()

    def require(self, paths: Iterable[Path]) -> None:
        missing = [str(p) for p in paths if not self.exists(p)]
        if missing:
            self._say(f"Would require (not present yet): {', '.join(missing)}")

    def ensure_dir(self, path: Path) -> None:
        if not Path(path).exists():
            self._say(f"Would create directory: {path}")

    def remove_tree(self, path: Path) -> bool:
        path = Path(path)
        existed = self.exists(path)
        self._say(f"Would run: rm -rf {path}")
        self.removed.add(path)
        for written in list(self.written):
            if written == path or path in written.parents:
                del self.written[written]
        return existed

    def remove_file(self, path: Path) -> bool:
        path = Path(path)
        existed = self.exists(path)
        if existed:
            self._say(f"Would remove: {path}")
        self.written.pop(path, None)
        self.removed.add(path)
        return existed

    def move(self, source: Path, dest: Path) -> None:
        self._say(f"Would move: {source} -> {dest}")

    def write_text(self, path: Path, text: str) -> None:
        path = Path(path)
        self._say(f"Would write: {path}")
        self.written[path] = text
        self.removed.discard(path)

    def read_text(self, path: Path) -> Optional[str]:
        path = Path(path)
        if path in self.written:
            return self.written[path]
        if self._hidden(path) or not path.is_file():
            return None
        return path.read_text()
