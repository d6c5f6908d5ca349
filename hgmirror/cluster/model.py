"""
Cluster definition files.

Example:

    master:
      root: /var/lib/hgmirror
    nodes:
      - name: builder-1
        root: /mnt/builder-1
      - name: builder-2
        root: /mnt/builder-2
        hg: /opt/mercurial/bin/hg
"""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from hgmirror.cache.exceptions import ClusterParseError
from hgmirror.constants import DEFAULT_HG_EXECUTABLE, MASTER_NODE_NAME
from hgmirror.hg import HgRunner
from hgmirror.storage import LocalPath

from .node import Cluster, Node

UNSAFE_NAME_CHARS = ("/", "\\", ":")


class NodeSpec(BaseModel):
    name: str = Field(..., description="Node name, also used in bundle file names")
    root: Path = Field(..., description="Storage root of the node")
    hg: Optional[str] = Field(None, description="hg executable on this node")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Node name must not be empty")
        if v.startswith(".") or any(c in v for c in UNSAFE_NAME_CHARS):
            raise ValueError(f"Node name {v!r} is not safe as part of a file name")
        return v

    def build(self, default_hg: str = DEFAULT_HG_EXECUTABLE) -> Node:
        return Node(
            name=self.name,
            root=LocalPath(self.root.expanduser()),
            runner=HgRunner(self.hg or default_hg),
        )


class MasterSpec(NodeSpec):
    name: str = Field(MASTER_NODE_NAME, description="Name of the master node")


class ClusterSpec(BaseModel):
    master: MasterSpec
    nodes: List[NodeSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_names(self):
        seen = {self.master.name}
        for node in self.nodes:
            if node.name in seen:
                raise ValueError(f"Duplicate node name: {node.name}")
            seen.add(node.name)
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusterSpec":
        """
        Raises:
            ClusterParseError: If the file cannot be read, parsed or validated
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ClusterParseError(str(path), str(e)) from e

        if not isinstance(data, dict):
            raise ClusterParseError(str(path), "expected a mapping at top level")

        try:
            return cls(**data)
        except ValidationError as e:
            messages = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ClusterParseError(str(path), messages) from e

    def build(self, default_hg: str = DEFAULT_HG_EXECUTABLE) -> Cluster:
        return Cluster(
            master=self.master.build(default_hg),
            nodes={n.name: n.build(default_hg) for n in self.nodes},
        )
