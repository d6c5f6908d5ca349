"""
Two-tier Mercurial mirror cache.

One mirror of every remote repository lives on the master, under
``<master root>/hgcache/<identifier>``. Each node that builds from the
repository keeps its own mirror under ``<node root>/hgcache/<identifier>``,
fed with incremental bundles from the master mirror instead of the remote.

Usage:
    cache = Cache.from_url("https://hg.example.com/project")
    synchronizer = MirrorSynchronizer(cluster.master, poll_timeout=600)
    result = synchronizer.repository_cache(cache, cluster.get("builder-1"))
    if result.ok:
        print(result.path)
"""

from .exceptions import ClusterParseError, LockCancelledError, MirrorCacheError
from .hashing import hash_source
from .locks import FairLock, LockTable
from .registry import Cache, CacheRegistry, default_registry
from .result import SyncResult
from .sync import MirrorSynchronizer

__all__ = [
    "Cache",
    "CacheRegistry",
    "ClusterParseError",
    "FairLock",
    "LockCancelledError",
    "LockTable",
    "MirrorCacheError",
    "MirrorSynchronizer",
    "SyncResult",
    "default_registry",
    "hash_source",
]
