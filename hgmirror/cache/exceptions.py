"""
Exception classes for the mirror cache.

Expected synchronization failures (a failing hg command) are reported through
SyncResult, not raised.
"""


class MirrorCacheError(Exception):
    """Base exception for all mirror-cache errors."""

    pass


class LockCancelledError(MirrorCacheError):
    """Raised when a wait for a cache lock is cancelled before the lock was granted."""

    def __init__(self, lock_name: str):
        self.lock_name = lock_name
        super().__init__(f"Cancelled while waiting for lock {lock_name}")


class ClusterParseError(MirrorCacheError):
    """Raised when a cluster definition file cannot be loaded."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Invalid cluster definition {path}: {message}")
