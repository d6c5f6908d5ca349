from .model import ClusterSpec, MasterSpec, NodeSpec
from .node import Cluster, Node

__all__ = ["Cluster", "ClusterSpec", "MasterSpec", "Node", "NodeSpec"]
