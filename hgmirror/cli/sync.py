"""cli command to update mirrors of a remote repository on cluster nodes"""

import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

import click

from hgmirror.cache import (
    Cache,
    ClusterParseError,
    LockCancelledError,
    MirrorSynchronizer,
    SyncResult,
)
from hgmirror.cli.utils.logging import logger
from hgmirror.cluster import Cluster, ClusterSpec, MasterSpec, Node
from hgmirror.config import (
    get_hg_executable,
    get_interprocess_locking,
    get_master_root,
    get_poll_timeout,
    parse_timeout,
)


class NodeLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the node it concerns."""

    def process(self, msg, kwargs):
        return f"[{self.extra['node']}] {msg}", kwargs


def load_cluster(cluster_file: Optional[str]) -> Cluster:
    """
    Build the cluster from a definition file, or a master-only cluster rooted
    at the configured storage root.
    """
    hg = get_hg_executable()
    if cluster_file is None:
        return Cluster(master=MasterSpec(root=get_master_root()).build(hg))
    return ClusterSpec.from_yaml(Path(cluster_file)).build(hg)


def sync_nodes(
    synchronizer: MirrorSynchronizer,
    cache: Cache,
    nodes: List[Node],
    from_polling: bool = False,
    jobs: int = 4,
    cancel: Optional[threading.Event] = None,
) -> List[Tuple[Node, SyncResult]]:
    """Synchronize ``cache`` on every node, ``jobs`` nodes at a time."""

    def _one(node: Node) -> SyncResult:
        log = NodeLogAdapter(logger, {"node": node.name})
        try:
            return synchronizer.repository_cache(
                cache, node, from_polling=from_polling, cancel=cancel, log=log
            )
        except (LockCancelledError, OSError) as e:
            log.error(str(e))
            return SyncResult.failed(str(e))

    executor = ThreadPoolExecutor(max_workers=max(1, jobs))
    try:
        futures = [executor.submit(_one, node) for node in nodes]
        return [(node, f.result()) for node, f in zip(nodes, futures)]
    except KeyboardInterrupt:
        # pending lock waits give up, running hg commands finish
        if cancel is not None:
            cancel.set()
        raise
    finally:
        executor.shutdown(wait=True, cancel_futures=True)


@click.command(name="sync")
@click.argument("remote")
@click.option(
    "-c",
    "--cluster",
    "cluster_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Cluster definition YAML. Without it only the master mirror is updated.",
)
@click.option(
    "-n",
    "--node",
    "node_names",
    multiple=True,
    help="Node to synchronize (repeatable). Default: every node of the cluster.",
)
@click.option(
    "--polling",
    is_flag=True,
    default=False,
    help="Treat this as a polling check: hg operations run under the poll timeout.",
)
@click.option(
    "--poll-timeout",
    type=str,
    default=None,
    help="A `human friendly` time limit for hg operations when polling. Example: 90s, 10m",
)
@click.option(
    "-j",
    "--jobs",
    type=int,
    default=4,
    help="Number of nodes synchronized in parallel. Default is 4.",
)
def sync(remote, cluster_file, node_names, polling, poll_timeout, jobs):
    """Update the mirrors of REMOTE on the master and the selected nodes."""
    try:
        timeout = (
            parse_timeout(poll_timeout) if poll_timeout else get_poll_timeout()
        )
        interprocess_locking = get_interprocess_locking()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        cluster = load_cluster(cluster_file)
    except ClusterParseError as e:
        logger.error(str(e))
        sys.exit(1)

    if node_names:
        try:
            nodes = [cluster.get(name) for name in node_names]
        except KeyError as e:
            raise click.UsageError(f"Unknown node: {e.args[0]}")
    elif cluster.nodes:
        nodes = [cluster.nodes[name] for name in sorted(cluster.nodes)]
    else:
        nodes = [cluster.master]

    cache = Cache.from_url(remote)
    logger.info(f"Synchronizing {remote} as hgcache/{cache.hash}")
    synchronizer = MirrorSynchronizer(
        cluster.master,
        poll_timeout=timeout,
        interprocess_locking=interprocess_locking,
    )

    results = sync_nodes(
        synchronizer,
        cache,
        nodes,
        from_polling=polling,
        jobs=jobs,
        cancel=threading.Event(),
    )

    failed = [node.name for node, result in results if not result.ok]
    for node, result in results:
        if result.ok:
            click.echo(f"{node.name}\t{result.path}")

    if failed:
        logger.error(
            f"Failed to synchronize {len(failed)} node(s): {', '.join(failed)}"
        )
        sys.exit(1)
