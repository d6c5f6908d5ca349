"""CLI commands to inspect the mirror cache"""

import sys
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from hgmirror.cache import ClusterParseError, hash_source
from hgmirror.cli.sync import load_cluster
from hgmirror.cli.utils.logging import logger
from hgmirror.cluster import Node
from hgmirror.constants import NODE_BUNDLE_NAME


@click.command(name="hash")
@click.argument("remote")
def hash_command(remote):
    """Print the cache identifier (directory name) of REMOTE."""
    click.echo(hash_source(remote))


def describe_mirrors(node: Node) -> List[dict]:
    """
    List the mirrors found in a node's hgcache directory.

    Returns:
        List of dictionaries with:
        - node: node name
        - identifier: mirror directory name
        - repository: True if the directory holds an hg repository
        - stale_bundles: transfer bundles left behind by an interrupted sync
    """
    caches_dir = node.caches_dir()
    if not caches_dir.is_dir():
        return []

    mirrors = []
    for name in caches_dir.listdir():
        mirror = caches_dir.child(name)
        if name.startswith(".") or not mirror.is_dir():
            continue
        bundles = [
            entry
            for entry in mirror.listdir()
            if entry == NODE_BUNDLE_NAME
            or (entry.startswith("xfer-") and entry.endswith(".hg"))
        ]
        mirrors.append(
            {
                "node": node.name,
                "identifier": name,
                "repository": mirror.child(".hg").is_dir(),
                "stale_bundles": bundles,
            }
        )
    return mirrors


@click.command(name="describe")
@click.option(
    "-c",
    "--cluster",
    "cluster_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Cluster definition YAML. Without it only the master is inspected.",
)
@click.option(
    "--remote",
    default=None,
    help="Only show the mirrors of this repository URL.",
)
def describe(cluster_file: Optional[str], remote: Optional[str]):
    """Show the mirrors present on the master and the cluster nodes."""
    try:
        cluster = load_cluster(cluster_file)
    except ClusterParseError as e:
        logger.error(str(e))
        sys.exit(1)

    wanted = hash_source(remote) if remote else None
    nodes = [cluster.master] + [cluster.nodes[n] for n in sorted(cluster.nodes)]

    rows = []
    for node in nodes:
        for mirror in describe_mirrors(node):
            if wanted is None or mirror["identifier"] == wanted:
                rows.append(mirror)

    if not rows:
        logger.info("No mirrors found")
        return

    table = Table(title="hgcache mirrors")
    table.add_column("Node")
    table.add_column("Identifier")
    table.add_column("Repository")
    table.add_column("Stale bundles")
    for row in rows:
        table.add_row(
            row["node"],
            row["identifier"],
            "yes" if row["repository"] else "no",
            ", ".join(row["stale_bundles"]) or "-",
        )
    Console(width=200).print(table)
