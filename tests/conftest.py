import io
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from hgmirror.cache import CacheRegistry, MirrorSynchronizer
from hgmirror.cluster import Node
from hgmirror.hg import HgOperation, ProcessResult, ProcessRunner
from hgmirror.storage import LocalPath


@pytest.fixture
def capture_logs():
    """Fixture to capture log output during tests."""
    log_stream = io.StringIO()
    handler = logging.StreamHandler(log_stream)
    logger = logging.getLogger("hgmirror")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield log_stream

    logger.removeHandler(handler)
    log_stream.close()


@dataclass(frozen=True)
class Call:
    operation: HgOperation
    cwd: str
    args: Tuple[str, ...]
    timeout: Optional[float]


class FakeHg(ProcessRunner):
    """
    Simulates hg repositories on the local filesystem.

    A repository is a directory with a .hg/ child; its head set is kept in
    memory. Bundles are real files listing the heads they carry.
    """

    def __init__(self, remotes: Optional[Dict[str, Set[str]]] = None):
        self.remotes: Dict[str, Set[str]] = remotes or {}
        self.repos: Dict[str, Set[str]] = {}
        self.sources: Dict[str, str] = {}
        self.calls: List[Call] = []
        self.failing: Set[HgOperation] = set()
        self.timing_out: Set[HgOperation] = set()
        self.hooks: Dict[HgOperation, Callable[[str, Tuple[str, ...]], None]] = {}
        self._lock = threading.Lock()

    def ops(self) -> List[HgOperation]:
        return [c.operation for c in self.calls]

    def calls_in(self, directory) -> List[HgOperation]:
        return [c.operation for c in self.calls if Path(c.cwd) == Path(directory)]

    def run(self, operation, cwd, args=(), timeout=None, log=None):
        args = tuple(args)
        with self._lock:
            self.calls.append(Call(operation, cwd, args, timeout))
        if operation in self.hooks:
            self.hooks[operation](cwd, args)
        if operation in self.timing_out:
            return ProcessResult(-1, "", timed_out=True)
        if operation in self.failing:
            return ProcessResult(255, "abort: simulated failure")

        with self._lock:
            return self._apply(operation, cwd, args)

    def _apply(self, operation, cwd, args) -> ProcessResult:
        if operation == HgOperation.CLONE:
            source, dest = args
            self._create(dest)
            self.repos[dest] = set(self.remotes[source])
            self.sources[dest] = source
        elif operation == HgOperation.PULL:
            self.repos[cwd] = set(self.remotes[self.sources[cwd]])
        elif operation == HgOperation.HEADS:
            heads = sorted(self.repos[cwd])
            if not heads:
                # like hg, an empty repository has no heads to show
                return ProcessResult(1, "")
            return ProcessResult(0, "".join(f"{h}\n" for h in heads))
        elif operation in (HgOperation.BUNDLE, HgOperation.BUNDLE_ALL):
            bundle = Path(cwd) / args[0]
            bundle.write_text("\n".join(sorted(self.repos[cwd])))
        elif operation == HgOperation.INIT:
            (dest,) = args
            self._create(dest)
            self.repos[dest] = set()
        elif operation == HgOperation.UNBUNDLE:
            bundle = Path(cwd) / args[0]
            self.repos[cwd] = set(bundle.read_text().split())
        return ProcessResult(0, "")

    @staticmethod
    def _create(dest: str) -> None:
        (Path(dest) / ".hg").mkdir(parents=True)


REMOTE = "https://hg.example.com/project"


@pytest.fixture
def fake_hg():
    return FakeHg(remotes={REMOTE: {"a1"}})


@pytest.fixture
def master(tmp_path, fake_hg):
    return Node("master", LocalPath(tmp_path / "master"), fake_hg)


@pytest.fixture
def node_factory(tmp_path, fake_hg):
    def _make(name: str) -> Node:
        return Node(name, LocalPath(tmp_path / name), fake_hg)

    return _make


@pytest.fixture
def synchronizer(master):
    return MirrorSynchronizer(master, poll_timeout=30.0)


@pytest.fixture
def registry():
    return CacheRegistry()
