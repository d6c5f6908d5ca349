from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from hgmirror.storage import StorePath


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a synchronization: a ready mirror path, or a logged failure message."""

    path: Optional["StorePath"] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.path is not None

    @classmethod
    def done(cls, path: "StorePath") -> "SyncResult":
        return cls(path=path)

    @classmethod
    def failed(cls, message: str) -> "SyncResult":
        return cls(message=message)
