"""Tests for the hgmirror command line."""

import logging
import threading
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from hgmirror.cache import Cache, LockCancelledError, MirrorSynchronizer, hash_source
from hgmirror.cli.cache import describe_mirrors
from hgmirror.cli.main import cli
from hgmirror.cli.sync import load_cluster, sync_nodes
from hgmirror.cluster import Cluster
from hgmirror.config import ConfigAccessor, get_interprocess_locking
from hgmirror.hg import HgOperation

from conftest import REMOTE


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cluster(master, node_factory):
    return Cluster(
        master=master, nodes={n: node_factory(n) for n in ("builder-1", "builder-2")}
    )


@pytest.fixture
def use_cluster(monkeypatch):
    """Make the CLI commands operate on the given in-process cluster."""

    def _use(c: Cluster):
        loader = MagicMock(return_value=c)
        monkeypatch.setattr("hgmirror.cli.sync.load_cluster", loader)
        monkeypatch.setattr("hgmirror.cli.cache.load_cluster", loader)
        return loader

    return _use


@pytest.fixture(autouse=True)
def no_lock_files(monkeypatch):
    monkeypatch.setattr("hgmirror.cli.sync.get_interprocess_locking", lambda: False)


@pytest.mark.short
class TestMain:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "hgmirror" in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("sync", "describe", "hash"):
            assert command in result.output

    def test_hash(self, runner):
        result = runner.invoke(cli, ["hash", "https://example.com/repo/"])
        assert result.exit_code == 0
        assert result.output == hash_source("https://example.com/repo/") + "\n"


@pytest.mark.short
class TestSync:
    def test_master_only(self, runner, master, use_cluster):
        use_cluster(Cluster(master=master))

        result = runner.invoke(cli, ["sync", REMOTE])

        assert result.exit_code == 0, result.output
        expected = master.mirror(hash_source(REMOTE))
        assert f"master\t{expected}" in result.output
        assert expected.is_dir()

    def test_all_nodes_by_default(self, runner, cluster, use_cluster):
        use_cluster(cluster)

        result = runner.invoke(cli, ["sync", REMOTE, "-j", "2"])

        assert result.exit_code == 0, result.output
        for name in ("builder-1", "builder-2"):
            path = cluster.nodes[name].mirror(hash_source(REMOTE))
            assert f"{name}\t{path}" in result.output
            assert path.is_dir()

    def test_selected_node(self, runner, cluster, use_cluster):
        use_cluster(cluster)

        result = runner.invoke(cli, ["sync", REMOTE, "-n", "builder-2"])

        assert result.exit_code == 0, result.output
        assert "builder-2\t" in result.output
        assert "builder-1\t" not in result.output

    def test_unknown_node(self, runner, cluster, use_cluster):
        use_cluster(cluster)

        result = runner.invoke(cli, ["sync", REMOTE, "-n", "builder-9"])

        assert result.exit_code == 2
        assert "Unknown node: builder-9" in result.output

    def test_failure_exit_code(self, runner, cluster, use_cluster, fake_hg, caplog):
        use_cluster(cluster)
        fake_hg.failing.add(HgOperation.CLONE)

        with caplog.at_level(logging.INFO, logger="hgmirror"):
            result = runner.invoke(cli, ["sync", REMOTE])

        assert result.exit_code == 1
        assert "Failed to synchronize 2 node(s): builder-1, builder-2" in caplog.text

    def test_polling_uses_poll_timeout(self, runner, cluster, use_cluster, fake_hg):
        use_cluster(cluster)

        result = runner.invoke(
            cli, ["sync", REMOTE, "--polling", "--poll-timeout", "45s"]
        )

        assert result.exit_code == 0, result.output
        assert {c.timeout for c in fake_hg.calls} == {45.0}

    def test_build_has_no_timeout(self, runner, cluster, use_cluster, fake_hg):
        use_cluster(cluster)

        result = runner.invoke(cli, ["sync", REMOTE, "--poll-timeout", "45s"])

        assert result.exit_code == 0, result.output
        assert {c.timeout for c in fake_hg.calls} == {None}

    def test_invalid_poll_timeout(self, runner, cluster, use_cluster, caplog):
        use_cluster(cluster)

        result = runner.invoke(cli, ["sync", REMOTE, "--poll-timeout", "whenever"])

        assert result.exit_code == 1
        assert "Invalid timeout value: whenever" in caplog.text

    def test_invalid_interprocess_locking(
        self, runner, cluster, use_cluster, monkeypatch, tmp_path, caplog
    ):
        use_cluster(cluster)
        cfg = tmp_path / "hgmirror.cfg"
        cfg.write_text("[locks]\ninterprocess = maybe\n")
        monkeypatch.setattr("hgmirror.config.config", ConfigAccessor(cfg))
        monkeypatch.setattr(
            "hgmirror.cli.sync.get_interprocess_locking", get_interprocess_locking
        )

        result = runner.invoke(cli, ["sync", REMOTE])

        assert result.exit_code == 1
        assert "Invalid value for locks.interprocess: maybe" in caplog.text

    def test_invalid_cluster_file(self, runner, tmp_path, caplog):
        cluster_file = tmp_path / "cluster.yaml"
        cluster_file.write_text("nodes: []\n")

        result = runner.invoke(cli, ["sync", REMOTE, "-c", str(cluster_file)])

        assert result.exit_code == 1
        assert "Invalid cluster definition" in caplog.text


@pytest.mark.short
class TestSyncNodes:
    def test_results_in_node_order(self, synchronizer, node_factory):
        nodes = [node_factory(n) for n in ("c", "a", "b")]
        cache = Cache(REMOTE, hash_source(REMOTE))

        results = sync_nodes(synchronizer, cache, nodes, jobs=3)

        assert [node.name for node, _ in results] == ["c", "a", "b"]
        assert all(result.ok for _, result in results)

    @pytest.mark.parametrize(
        "error", [OSError("disk full"), LockCancelledError("hgcache/X")]
    )
    def test_errors_become_failed_results(self, master, node_factory, error):
        synchronizer = MirrorSynchronizer(master)
        cache = Cache(REMOTE, hash_source(REMOTE))

        with patch.object(synchronizer, "repository_cache", side_effect=error):
            results = sync_nodes(synchronizer, cache, [node_factory("a")])

        [(_, result)] = results
        assert not result.ok
        assert result.message == str(error)

    def test_cancel_event_is_passed(self, master, node_factory):
        synchronizer = MirrorSynchronizer(master)
        cache = Cache(REMOTE, hash_source(REMOTE))
        cancel = threading.Event()

        with patch.object(synchronizer, "repository_cache") as repository_cache:
            sync_nodes(synchronizer, cache, [node_factory("a")], cancel=cancel)

        assert repository_cache.call_args.kwargs["cancel"] is cancel


@pytest.mark.short
class TestLoadCluster:
    def test_without_file_uses_configured_root(self, tmp_path, monkeypatch):
        monkeypatch.setattr("hgmirror.cli.sync.get_master_root", lambda: tmp_path)
        monkeypatch.setattr("hgmirror.cli.sync.get_hg_executable", lambda: "hg-test")

        cluster = load_cluster(None)

        assert cluster.master.name == "master"
        assert cluster.master.caches_dir().remote == str(tmp_path / "hgcache")
        assert cluster.master.runner.executable == "hg-test"
        assert cluster.nodes == {}

    def test_from_file(self, tmp_path):
        cluster_file = tmp_path / "cluster.yaml"
        cluster_file.write_text(
            "master:\n  root: /srv/m\nnodes:\n  - name: a\n    root: /srv/a\n"
        )

        cluster = load_cluster(str(cluster_file))

        assert cluster.names() == ["master", "a"]


@pytest.mark.short
class TestDescribe:
    @pytest.fixture
    def populated(self, cluster):
        identifier = hash_source(REMOTE)
        master_mirror = cluster.master.mirror(identifier).path
        (master_mirror / ".hg").mkdir(parents=True)
        (master_mirror / "xfer-builder-1.hg").write_bytes(b"")
        node_mirror = cluster.nodes["builder-1"].mirror(identifier).path
        (node_mirror / ".hg").mkdir(parents=True)
        (node_mirror.parent / f".{identifier}.lock").write_text("")
        return identifier

    def test_describe_mirrors(self, cluster, populated):
        mirrors = describe_mirrors(cluster.master)

        assert mirrors == [
            {
                "node": "master",
                "identifier": populated,
                "repository": True,
                "stale_bundles": ["xfer-builder-1.hg"],
            }
        ]

    def test_lock_files_are_skipped(self, cluster, populated):
        mirrors = describe_mirrors(cluster.nodes["builder-1"])
        assert [m["identifier"] for m in mirrors] == [populated]

    def test_node_without_hgcache(self, cluster):
        assert describe_mirrors(cluster.nodes["builder-2"]) == []

    def test_describe_command(self, runner, cluster, use_cluster, populated):
        use_cluster(cluster)

        result = runner.invoke(cli, ["describe"])

        assert result.exit_code == 0, result.output
        assert populated in result.output
        assert "builder-1" in result.output
        assert "xfer-builder-1.hg" in result.output

    def test_describe_filtered_by_remote(self, runner, cluster, use_cluster, caplog):
        use_cluster(cluster)

        result = runner.invoke(cli, ["describe", "--remote", "https://other/repo"])

        assert result.exit_code == 0
        assert "No mirrors found" in caplog.text
