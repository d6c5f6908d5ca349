"""
Running Mercurial commands against a mirror.

The sync engine only talks to a ProcessRunner, so tests (or a remote agent)
can stand in for the local hg binary. Arguments per operation:

    clone       (source, dest)
    pull        ()
    heads       ()
    bundle      (bundle_file, *base_heads)
    bundleAll   (bundle_file,)
    unbundle    (bundle_file,)
    init        (dest,)
"""

import logging
import os
import signal
import subprocess
import threading
from abc import ABCMeta, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import IO, List, Optional, Sequence, Set, Union

from hgmirror.constants import DEFAULT_HG_EXECUTABLE

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, logging.LoggerAdapter]

# Exit code reported for a process that timed out or could not be started
FAILED_TO_RUN = -1

# hg heads exits with 1 when the repository has no heads, i.e. is empty
NO_HEADS_EXIT_CODE = 1

# Seconds to wait for remaining output once hg has exited
OUTPUT_DRAIN_TIMEOUT = 5


class HgOperation(str, Enum):
    CLONE = "clone"
    PULL = "pull"
    HEADS = "heads"
    BUNDLE = "bundle"
    BUNDLE_ALL = "bundleAll"
    UNBUNDLE = "unbundle"
    INIT = "init"


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    output: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner(metaclass=ABCMeta):
    """Executes a Mercurial operation in a working directory."""

    @abstractmethod
    def run(
        self,
        operation: HgOperation,
        cwd: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        log: Optional[Log] = None,
    ) -> ProcessResult:
        """
        Run ``operation`` in ``cwd``.

        Args:
            operation: The operation to run
            cwd: Working directory, as understood on the runner's node
            args: Operation specific arguments (see module docstring)
            timeout: Time limit in seconds, None for no limit
            log: Sink for the command's output

        Returns:
            The process result. A timeout is a failed result, not an exception.
        """


def parse_heads(output: str) -> Set[str]:
    """Head changeset ids from ``hg heads --template "{node}\\n"`` output."""
    return {line.strip() for line in output.splitlines() if line.strip()}


class HgRunner(ProcessRunner):
    """ProcessRunner driving a local ``hg`` executable."""

    def __init__(self, executable: str = DEFAULT_HG_EXECUTABLE):
        self.executable = executable

    def command(self, operation: HgOperation, args: Sequence[str] = ()) -> List[str]:
        hg = [self.executable]
        if operation == HgOperation.CLONE:
            source, dest = args
            return hg + ["clone", "--noupdate", source, dest]
        if operation == HgOperation.PULL:
            return hg + ["pull"]
        if operation == HgOperation.HEADS:
            return hg + ["heads", "--template", "{node}\\n"]
        if operation == HgOperation.BUNDLE:
            bundle_file, *bases = args
            command = hg + ["bundle"]
            for head in bases:
                command.extend(["--base", head])
            return command + [bundle_file]
        if operation == HgOperation.BUNDLE_ALL:
            (bundle_file,) = args
            return hg + ["bundle", "--all", bundle_file]
        if operation == HgOperation.UNBUNDLE:
            (bundle_file,) = args
            return hg + ["unbundle", bundle_file]
        if operation == HgOperation.INIT:
            (dest,) = args
            return hg + ["init", dest]
        raise ValueError(f"Unsupported hg operation: {operation}")

    def run(
        self,
        operation: HgOperation,
        cwd: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        log: Optional[Log] = None,
    ) -> ProcessResult:
        log = log or logger
        command = self.command(operation, args)
        log.debug(f"$ {' '.join(command)} (in {cwd})")

        env = dict(os.environ, HGPLAIN="1")
        try:
            # own process group, so a timeout takes down hg and its children
            process = subprocess.Popen(
                command,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            log.error(f"Failed to run {self.executable}: {e}")
            return ProcessResult(FAILED_TO_RUN, str(e))

        # heads output is data, not progress
        streamed = operation != HgOperation.HEADS
        lines: List[str] = []
        reader = threading.Thread(
            target=_read_output,
            args=(process.stdout, lines, log if streamed else None),
            daemon=True,
        )
        reader.start()

        timed_out = False
        try:
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                log.error(
                    f"hg {operation.value} timed out after {timeout}s. "
                    "Terminating process and all children..."
                )
                timed_out = True
                _kill_process_group(process, signal.SIGTERM)
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    log.warning("Process did not terminate gracefully, forcing kill...")
                    _kill_process_group(process, signal.SIGKILL)
                    process.wait()
        finally:
            if process.poll() is None:
                _kill_process_group(process, signal.SIGKILL)
                process.wait()
            # a detached grandchild may keep the pipe open
            reader.join(timeout=OUTPUT_DRAIN_TIMEOUT)

        output = "".join(lines)
        if timed_out:
            return ProcessResult(FAILED_TO_RUN, output, timed_out=True)
        if not streamed and process.returncode != 0:
            _emit(log, output)
        return ProcessResult(process.returncode, output)


def _read_output(stream: IO[str], lines: List[str], log: Optional[Log]) -> None:
    """Collect ``stream`` into ``lines``, logging each line as it arrives."""
    with stream:
        for line in stream:
            lines.append(line)
            if log is not None:
                log.info(line.rstrip("\n"))


def _emit(log: Log, output: str) -> None:
    for line in output.splitlines():
        log.info(line)


def _kill_process_group(process: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(os.getpgid(process.pid), sig)
    except (ProcessLookupError, OSError):
        pass
