import threading
from typing import Dict, List

from .hashing import hash_source
from .locks import FairLock, LockTable


class Cache:
    """
    A remote Mercurial repository cached in the cluster.

    One mirror is kept on the master, and every node that needs the
    repository gets its own mirror fed from the master one. Instances are
    obtained through CacheRegistry.get_or_create (or Cache.from_url), which
    guarantees a single Cache per identifier.

    Attributes:
        remote: The remote source repository that this cache mirrors.
        hash: Identifier of ``remote``, also the mirror directory name.
        master_lock: Serializes updates of the master mirror.
    """

    def __init__(self, remote: str, hash: str):
        self.remote = remote
        self.hash = hash
        self.master_lock = FairLock(f"hgcache/{hash}")
        self._node_locks = LockTable(prefix=f"hgcache/{hash}@")

    def __repr__(self):
        return f"Cache({self.remote!r}, {self.hash!r})"

    def node_lock(self, node_name: str) -> FairLock:
        """Lock serializing updates of this cache's mirror on ``node_name``."""
        return self._node_locks.get(node_name)

    def known_nodes(self) -> List[str]:
        return self._node_locks.keys()

    @classmethod
    def from_url(cls, remote: str) -> "Cache":
        return default_registry.get_or_create(remote)


class CacheRegistry:
    """
    Process-wide mapping of cache identifier to Cache.

    Entries are never removed: a long-lived process keeps one Cache per
    distinct repository it has seen.
    """

    def __init__(self):
        self._caches: Dict[str, Cache] = {}
        self._guard = threading.Lock()

    def get_or_create(self, remote: str) -> Cache:
        h = hash_source(remote)
        cache = self._caches.get(h)
        if cache is not None:
            return cache
        with self._guard:
            cache = self._caches.get(h)
            if cache is None:
                cache = self._caches[h] = Cache(remote, h)
            return cache

    def caches(self) -> List[Cache]:
        with self._guard:
            return list(self._caches.values())

    def __contains__(self, remote: str) -> bool:
        return hash_source(remote) in self._caches

    def __len__(self) -> int:
        return len(self._caches)


default_registry = CacheRegistry()
