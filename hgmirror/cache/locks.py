"""
Fair, cancellable locks guarding the master mirror and the node mirrors.

Every Cache owns one master lock and a LockTable of node locks. Locks are
granted in arrival order, and a waiter can be cancelled through a
threading.Event without ever having held the lock.
"""

import threading
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator, List, Optional

from .exceptions import LockCancelledError

# How often a cancellable waiter re-checks its cancel event
CANCEL_POLL_INTERVAL = 0.05


class FairLock:
    """
    First-requested, first-granted mutual exclusion.

    Not reentrant: a thread acquiring a lock it already holds deadlocks.

    Usage:
        lock = FairLock("hgcache/ABC-repo")
        with lock.hold(cancel=event):
            ...
    """

    def __init__(self, name: str):
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._waiters: Deque[object] = deque()
        self._owner: Optional[int] = None

    def __repr__(self):
        state = "locked" if self.locked() else "unlocked"
        return f"<FairLock {self.name} {state}, {self.queue_length()} waiting>"

    def locked(self) -> bool:
        return self._owner is not None

    def queue_length(self) -> int:
        with self._cond:
            return len(self._waiters)

    def acquire(self, cancel: Optional[threading.Event] = None) -> None:
        """
        Block until the lock is granted to this thread.

        Args:
            cancel: Optional event; setting it while waiting aborts the wait.

        Raises:
            LockCancelledError: If ``cancel`` was set before the lock was granted.
        """
        ticket = object()
        with self._cond:
            self._waiters.append(ticket)
            try:
                while self._owner is not None or self._waiters[0] is not ticket:
                    if cancel is not None and cancel.is_set():
                        raise LockCancelledError(self.name)
                    self._cond.wait(
                        CANCEL_POLL_INTERVAL if cancel is not None else None
                    )
            except BaseException:
                self._waiters.remove(ticket)
                # the next waiter may now be at the head of the queue
                self._cond.notify_all()
                raise
            self._waiters.popleft()
            self._owner = threading.get_ident()

    def release(self) -> None:
        with self._cond:
            if self._owner is None:
                raise RuntimeError(f"Cannot release unlocked lock {self.name}")
            self._owner = None
            self._cond.notify_all()

    @contextmanager
    def hold(self, cancel: Optional[threading.Event] = None) -> Iterator["FairLock"]:
        self.acquire(cancel)
        try:
            yield self
        finally:
            self.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()


class LockTable:
    """
    Lazily created FairLocks, one per key.

    The internal mutex only guards creation of a missing lock; the returned
    lock is used without holding it.
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self._locks: Dict[str, FairLock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> FairLock:
        lock = self._locks.get(key)
        if lock is not None:
            return lock
        with self._guard:
            if key not in self._locks:
                self._locks[key] = FairLock(f"{self.prefix}{key}")
            return self._locks[key]

    def keys(self) -> List[str]:
        with self._guard:
            return sorted(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def __len__(self) -> int:
        return len(self._locks)
