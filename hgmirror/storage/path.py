"""
Storage locations holding mirrors.

A StorePath is a file or directory on some node's storage. The sync engine
navigates and mutates node storage only through this interface, so stores
living on other machines can be plugged in next to LocalPath.
"""

import shutil
from abc import ABCMeta, abstractmethod
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from filelock import BaseFileLock, FileLock

COPY_BUFSIZE = 1024 * 1024


class StorePath(metaclass=ABCMeta):
    """A path on a node's storage."""

    @property
    @abstractmethod
    def remote(self) -> str:
        """The path as understood on its own node, e.g. to run hg in."""

    @abstractmethod
    def child(self, name: str) -> "StorePath":
        pass

    @abstractmethod
    def is_dir(self) -> bool:
        pass

    @abstractmethod
    def exists(self) -> bool:
        pass

    @abstractmethod
    def mkdirs(self) -> None:
        """Create this directory and any missing parents."""

    @abstractmethod
    def delete(self) -> None:
        """Delete this file. Deleting a missing file is not an error."""

    @abstractmethod
    def open_read(self) -> BinaryIO:
        pass

    @abstractmethod
    def write_from(self, stream: BinaryIO) -> None:
        """Replace this file's content with everything read from ``stream``."""

    def listdir(self) -> List[str]:
        """Names of the entries of this directory."""
        raise NotImplementedError(f"{type(self).__name__} cannot list directories")

    def copy_to(self, target: "StorePath") -> None:
        """Copy this file to ``target``, which may live on another store."""
        with self.open_read() as stream:
            target.write_from(stream)

    def interprocess_lock(self, name: str) -> Optional[BaseFileLock]:
        """
        A lock file named ``name`` in this directory, shared with other
        processes, or None for stores that cannot offer one.
        """
        return None

    def __str__(self):
        return self.remote


class LocalPath(StorePath):
    """StorePath on the local filesystem."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def __repr__(self):
        return f"LocalPath({str(self.path)!r})"

    def __eq__(self, other):
        return isinstance(other, LocalPath) and self.path == other.path

    def __hash__(self):
        return hash(self.path)

    @property
    def remote(self) -> str:
        return str(self.path)

    def child(self, name: str) -> "LocalPath":
        return LocalPath(self.path / name)

    def is_dir(self) -> bool:
        return self.path.is_dir()

    def exists(self) -> bool:
        return self.path.exists()

    def mkdirs(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)

    def listdir(self) -> List[str]:
        return sorted(p.name for p in self.path.iterdir())

    def open_read(self) -> BinaryIO:
        return open(self.path, "rb")

    def write_from(self, stream: BinaryIO) -> None:
        with open(self.path, "wb") as f:
            shutil.copyfileobj(stream, f, COPY_BUFSIZE)

    def copy_to(self, target: StorePath) -> None:
        if isinstance(target, LocalPath):
            shutil.copyfile(self.path, target.path)
        else:
            super().copy_to(target)

    def interprocess_lock(self, name: str) -> FileLock:
        self.mkdirs()
        return FileLock(self.path / name)
