from dataclasses import dataclass, field
from typing import Dict

from hgmirror.constants import CACHE_DIR_NAME
from hgmirror.hg import ProcessRunner
from hgmirror.storage import StorePath


@dataclass
class Node:
    """A machine of the build cluster: its name, storage root and hg runner."""

    name: str
    root: StorePath
    runner: ProcessRunner

    def caches_dir(self) -> StorePath:
        return self.root.child(CACHE_DIR_NAME)

    def mirror(self, cache_hash: str) -> StorePath:
        return self.caches_dir().child(cache_hash)


@dataclass
class Cluster:
    master: Node
    nodes: Dict[str, Node] = field(default_factory=dict)

    def get(self, name: str) -> Node:
        """
        Raises:
            KeyError: If no node is called ``name``
        """
        if name == self.master.name:
            return self.master
        return self.nodes[name]

    def names(self):
        return [self.master.name] + sorted(self.nodes)
