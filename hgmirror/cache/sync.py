"""
Synchronization of the master mirror and the node mirrors of a Cache.

The master mirror is cloned or pulled from the remote under the cache's
master lock. The lock is released before any node work starts. A node mirror
is then brought up to date from the master mirror under that node's lock,
transferring only the changesets the node lacks as a bundle:

    master: hg pull | hg clone --noupdate <remote> hgcache/<hash>
    master: hg bundle --base <node heads> xfer-<node>.hg   (or --all)
    node:   hg init hgcache/<hash>                          (first time only)
    copy    xfer-<node>.hg -> node:hgcache/<hash>/xfer.hg
    node:   hg unbundle xfer.hg

Several nodes of one cache can be synchronized in parallel. Requests for the
same node are served one at a time in arrival order.

Master mirror reads during node synchronization (heads, bundle) happen
without the master lock, so they may overlap a pull started by another
request; hg reads tolerate a concurrent pull.
"""

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, List, Optional, Union

from filelock import Timeout

from hgmirror.constants import MASTER_BUNDLE_TEMPLATE, NODE_BUNDLE_NAME
from hgmirror.hg import NO_HEADS_EXIT_CODE, HgOperation, parse_heads
from hgmirror.storage import StorePath

from .exceptions import LockCancelledError
from .locks import CANCEL_POLL_INTERVAL
from .registry import Cache
from .result import SyncResult

if TYPE_CHECKING:
    from hgmirror.cluster import Node

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, logging.LoggerAdapter]


class MirrorSynchronizer:
    """
    Materializes up-to-date mirrors of a Cache on cluster nodes.

    Args:
        master: The coordinating node holding the authoritative mirror
        poll_timeout: Time limit in seconds for hg operations of polling
            requests; None disables the limit
        interprocess_locking: Also hold a lock file next to the mirror while
            updating it, so other processes on the same storage are excluded
    """

    def __init__(
        self,
        master: "Node",
        poll_timeout: Optional[float] = None,
        interprocess_locking: bool = False,
    ):
        self.master = master
        self.poll_timeout = poll_timeout
        self.interprocess_locking = interprocess_locking

    def is_master(self, node: "Node") -> bool:
        return node is self.master or node.name == self.master.name

    def repository_cache(
        self,
        cache: Cache,
        node: "Node",
        from_polling: bool = False,
        cancel: Optional[threading.Event] = None,
        log: Optional[Log] = None,
    ) -> SyncResult:
        """
        Return a mirror of ``cache`` on ``node``, updated to the remote's tip.

        Args:
            cache: The repository to mirror
            node: The node that needs the mirror
            from_polling: The request comes from a polling check rather than
                a build; hg operations then run under ``poll_timeout``
            cancel: Setting this event aborts a pending lock wait
            log: Sink for progress and error messages

        Returns:
            SyncResult carrying the mirror path on ``node``, or the message of
            the failure, which was already logged.

        Raises:
            LockCancelledError: If ``cancel`` was set while waiting for a lock
            OSError: If copying a bundle or creating a directory failed
        """
        log = log or logger
        timeout = self.poll_timeout if from_polling else None

        # Always update the master mirror first.
        master_lock = cache.master_lock
        if master_lock.locked():
            log.info(
                f"Waiting for master lock on hgcache/{cache.hash} {master_lock!r}..."
            )
        master_lock.acquire(cancel)
        try:
            log.info("Acquired master cache lock.")
            with self._interprocess_lock(self.master, cache, cancel, log):
                result = self._update_master(cache, timeout, log)
        finally:
            master_lock.release()
            log.info("Master cache lock released.")

        if not result.ok or self.is_master(node):
            return result
        master_cache = result.path

        # Different nodes may update their mirrors in parallel, so each
        # node has its own lock.
        node_lock = cache.node_lock(node.name)
        if node_lock.locked():
            log.info(
                f"Waiting for node cache lock in {node.name} "
                f"on hgcache/{cache.hash} {node_lock!r}..."
            )
        node_lock.acquire(cancel)
        try:
            log.info(f"Acquired node cache lock for node {node.name}.")
            with self._interprocess_lock(node, cache, cancel, log):
                return self._update_node(cache, node, master_cache, timeout, log)
        finally:
            node_lock.release()
            log.info(f"Node cache lock released for node {node.name}.")

    @contextmanager
    def _interprocess_lock(
        self,
        node: "Node",
        cache: Cache,
        cancel: Optional[threading.Event],
        log: Log,
    ) -> Iterator[None]:
        """
        Hold the lock file of ``cache`` in ``node``'s hgcache directory.

        The file lock is polled so that ``cancel`` is honoured while another
        process holds it.

        Raises:
            LockCancelledError: If ``cancel`` was set while waiting
        """
        lock = None
        if self.interprocess_locking:
            lock = node.caches_dir().interprocess_lock(f".{cache.hash}.lock")
        if lock is None:
            yield
            return

        waiting = False
        while True:
            try:
                lock.acquire(timeout=CANCEL_POLL_INTERVAL)
                break
            except Timeout:
                if not waiting:
                    log.info(
                        f"Waiting for lock file {lock.lock_file} in {node.name}..."
                    )
                    waiting = True
                if cancel is not None and cancel.is_set():
                    raise LockCancelledError(str(lock.lock_file))
        if waiting:
            log.info(f"Acquired lock file {lock.lock_file} in {node.name}.")
        try:
            yield
        finally:
            lock.release()

    def _update_master(
        self, cache: Cache, timeout: Optional[float], log: Log
    ) -> SyncResult:
        master_caches = self.master.caches_dir()
        master_cache = master_caches.child(cache.hash)
        hg = self.master.runner

        if master_cache.is_dir():
            pulled = hg.run(
                HgOperation.PULL, master_cache.remote, timeout=timeout, log=log
            )
            if not pulled.ok:
                return _failed(log, f"Failed to update {master_cache}")
        else:
            master_caches.mkdirs()
            cloned = hg.run(
                HgOperation.CLONE,
                master_caches.remote,
                (cache.remote, master_cache.remote),
                timeout=timeout,
                log=log,
            )
            if not cloned.ok:
                return _failed(log, f"Failed to clone {cache.remote}")
        return SyncResult.done(master_cache)

    def _update_node(
        self,
        cache: Cache,
        node: "Node",
        master_cache: StorePath,
        timeout: Optional[float],
        log: Log,
    ) -> SyncResult:
        local_cache = node.mirror(cache.hash)

        # Bundle names on the master are per node, several nodes may be
        # pulling from the same master mirror at once.
        bundle_file_name = MASTER_BUNDLE_TEMPLATE.format(node=node.name)
        master_transfer = master_cache.child(bundle_file_name)
        local_transfer = local_cache.child(NODE_BUNDLE_NAME)

        result: Optional[SyncResult] = None
        try:
            result = self._transfer(
                node, master_cache, local_cache, bundle_file_name, timeout, log
            )
            return result
        finally:
            _delete_transient(log, result, [master_transfer, local_transfer])

    def _transfer(
        self,
        node: "Node",
        master_cache: StorePath,
        local_cache: StorePath,
        bundle_file_name: str,
        timeout: Optional[float],
        log: Log,
    ) -> SyncResult:
        local_caches = node.caches_dir()
        master_transfer = master_cache.child(bundle_file_name)
        local_transfer = local_cache.child(NODE_BUNDLE_NAME)
        master_hg = self.master.runner
        node_hg = node.runner

        if local_cache.is_dir():
            # Need to transfer just newly available changesets.
            master_heads = master_hg.run(
                HgOperation.HEADS, master_cache.remote, timeout=timeout, log=log
            )
            if not master_heads.ok:
                return _failed(log, f"Failed to read heads of {master_cache}")
            local_heads = node_hg.run(
                HgOperation.HEADS, local_cache.remote, timeout=timeout, log=log
            )
            if not local_heads.ok and local_heads.exit_code != NO_HEADS_EXIT_CODE:
                return _failed(log, f"Failed to read heads of {local_cache}")

            bases = parse_heads(local_heads.output) if local_heads.ok else set()
            if not bases:
                # Left empty by an interrupted first transfer.
                bundled = master_hg.run(
                    HgOperation.BUNDLE_ALL,
                    master_cache.remote,
                    (bundle_file_name,),
                    timeout=timeout,
                    log=log,
                )
                if not bundled.ok:
                    return _failed(log, "Failed to bundle repo")
            elif bases == parse_heads(master_heads.output):
                log.info("Local cache is up to date.")
            else:
                # Node heads missing from the master are ancestors of newer
                # master heads. Using them as bases may still bundle a few
                # changesets the node has; unbundle skips those.
                bundled = master_hg.run(
                    HgOperation.BUNDLE,
                    master_cache.remote,
                    (bundle_file_name, *sorted(bases)),
                    timeout=timeout,
                    log=log,
                )
                if not bundled.ok:
                    return _failed(log, "Failed to send outgoing changes")
        else:
            # Need to transfer the entire repository.
            bundled = master_hg.run(
                HgOperation.BUNDLE_ALL,
                master_cache.remote,
                (bundle_file_name,),
                timeout=timeout,
                log=log,
            )
            if not bundled.ok:
                return _failed(log, "Failed to bundle repo")
            local_caches.mkdirs()
            created = node_hg.run(
                HgOperation.INIT,
                local_caches.remote,
                (local_cache.remote,),
                timeout=timeout,
                log=log,
            )
            if not created.ok:
                return _failed(log, "Failed to create local cache")

        if master_transfer.exists():
            master_transfer.copy_to(local_transfer)
            applied = node_hg.run(
                HgOperation.UNBUNDLE,
                local_cache.remote,
                (NODE_BUNDLE_NAME,),
                timeout=timeout,
                log=log,
            )
            if not applied.ok:
                return _failed(log, f"Failed to unbundle {local_transfer}")
        return SyncResult.done(local_cache)


def _failed(log: Log, message: str) -> SyncResult:
    log.error(message)
    return SyncResult.failed(message)


def _delete_transient(
    log: Log, result: Optional[SyncResult], paths: List[StorePath]
) -> None:
    """
    Delete transfer bundles. A deletion error is re-raised only when the
    synchronization had otherwise succeeded, so it never hides a failure.
    """
    errors = []
    for path in paths:
        try:
            path.delete()
        except OSError as e:
            log.warning(f"Failed to delete {path}: {e}")
            errors.append(e)
    if errors and result is not None and result.ok:
        raise errors[0]
