"""Runners for action subprocesses.

The executor never calls subprocess directly. It hands each action command to
a ProcessRunner, which decides where the child's stdout and stderr end up, and
tests substitute a runner that records commands instead of running them.
"""

import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from threading import Thread
from typing import Any, Callable

from maketree.logging import Logger

__all__ = [
    "ProcessRunner",
    "ProcessRunnerFactory",
    "PassthroughProcessRunner",
    "SilentProcessRunner",
    "StdoutOnlyProcessRunner",
    "StderrOnlyProcessRunner",
    "TaskOutputTypes",
    "make_process_runner",
    "stream_output",
]

# Seconds to wait for a copying thread after its process has exited
STREAM_JOIN_TIMEOUT = 1.0


class TaskOutputTypes(Enum):
    """Which action output streams reach the invoking terminal."""

    ALL = "all"
    NONE = "none"
    OUT = "out"
    ERR = "err"


class ProcessRunner(ABC):
    """Runs a single action command."""

    @abstractmethod
    def run(self, *args: Any, **kwargs: Any) -> subprocess.CompletedProcess[Any]:
        """
        Run a command, taking the same arguments as subprocess.run().

        Raises:
            subprocess.CalledProcessError: If check=True and the command exits non-zero
            subprocess.TimeoutExpired: If the command outlives its timeout
        """
        ...


ProcessRunnerFactory = Callable[[TaskOutputTypes, Logger], ProcessRunner]


class PassthroughProcessRunner(ProcessRunner):
    """The child writes straight to the terminal's stdout and stderr."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger

    def run(self, *args: Any, **kwargs: Any) -> subprocess.CompletedProcess[Any]:
        return subprocess.run(*args, **kwargs)


class SilentProcessRunner(ProcessRunner):
    """All child output is discarded."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger

    def run(self, *args: Any, **kwargs: Any) -> subprocess.CompletedProcess[Any]:
        kwargs.update(stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return subprocess.run(*args, **kwargs)


def stream_output(pipe: Any, target: Any) -> None:
    """
    Copy lines from pipe to target until the pipe is exhausted.

    A pipe closed while it is being read (because its process was killed)
    ends the copy without an error.
    """
    if not pipe:
        return
    try:
        for line in pipe:
            target.write(line)
            target.flush()
    except (OSError, ValueError):
        return


class _StreamingProcessRunner(ProcessRunner):
    """
    Forwards one of the child's streams line by line and discards the other.

    The child writes into a pipe which a helper thread copies to our own
    stream, so output shows up while the action runs. Output is not captured:
    the returned CompletedProcess has stdout and stderr set to None.
    """

    stream_name = "stdout"

    def __init__(self, logger: Logger) -> None:
        self._logger = logger

    def run(self, *args: Any, **kwargs: Any) -> subprocess.CompletedProcess[Any]:
        check = kwargs.pop("check", False)
        timeout = kwargs.pop("timeout", None)
        # Popen has no capture_output
        kwargs.pop("capture_output", None)

        forward_stdout = self.stream_name == "stdout"
        kwargs.update(
            stdout=subprocess.PIPE if forward_stdout else subprocess.DEVNULL,
            stderr=subprocess.DEVNULL if forward_stdout else subprocess.PIPE,
            text=True,
            bufsize=1,
        )
        target = sys.stdout if forward_stdout else sys.stderr

        process = subprocess.Popen(*args, **kwargs)
        pipe = process.stdout if forward_stdout else process.stderr
        copier = Thread(
            target=stream_output,
            args=(pipe, target),
            name=f"{self.stream_name}-streamer",
        )
        copier.start()

        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            pipe.close()
            copier.join(timeout=STREAM_JOIN_TIMEOUT)
            raise

        copier.join(timeout=STREAM_JOIN_TIMEOUT)
        if copier.is_alive():
            self._logger.warn(
                f"Still copying {self.stream_name} after {STREAM_JOIN_TIMEOUT:g}s, continuing"
            )
        pipe.close()

        cmd = args[0] if args else kwargs.get("args", [])
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd)
        return subprocess.CompletedProcess(args=cmd, returncode=returncode)


class StdoutOnlyProcessRunner(_StreamingProcessRunner):
    """Shows the child's stdout; stderr is discarded."""

    stream_name = "stdout"


class StderrOnlyProcessRunner(_StreamingProcessRunner):
    """Shows the child's stderr; stdout is discarded."""

    stream_name = "stderr"


_RUNNERS: dict[TaskOutputTypes, type[ProcessRunner]] = {
    TaskOutputTypes.ALL: PassthroughProcessRunner,
    TaskOutputTypes.NONE: SilentProcessRunner,
    TaskOutputTypes.OUT: StdoutOnlyProcessRunner,
    TaskOutputTypes.ERR: StderrOnlyProcessRunner,
}


def make_process_runner(output_type: TaskOutputTypes, logger: Logger) -> ProcessRunner:
    """
    Create the runner for an output setting.

    Raises:
        ValueError: If output_type is not a TaskOutputTypes member
    """
    try:
        runner_class = _RUNNERS[output_type]
    except KeyError:
        raise ValueError(f"Invalid TaskOutputTypes: {output_type}") from None
    return runner_class(logger)
