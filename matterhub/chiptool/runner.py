"""
One-shot chip-tool invocations.

Runs the tool to completion (or until a timeout), capturing stdout and
stderr separately. Failures are reported in the result rather than raised so
callers can still look at whatever output was produced.
"""

import asyncio
import contextlib
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# How long to wait for the pipes to drain after the process is gone
_DRAIN_TIMEOUT = 5.0
_TERMINATE_GRACE = 2.0


class ToolError(Exception):
    """Base exception for chip-tool invocation failures."""
    pass


class ToolSpawnError(ToolError):
    """The tool could not be started."""
    pass


class ToolExitError(ToolError):
    """The tool exited with a non-zero status."""

    def __init__(self, returncode: int):
        self.returncode = returncode
        super().__init__(f"exit status {returncode}")


class ToolTimeoutError(ToolError):
    """The tool was killed after exceeding its time budget."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"timed out after {timeout:g}s")


@dataclass
class RunResult:
    """Captured output of one invocation."""
    argv: List[str]
    stdout: str
    stderr: str
    returncode: Optional[int]
    error: Optional[ToolError] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, ToolTimeoutError)

    @property
    def combined_output(self) -> str:
        return f"Stdout:\n{self.stdout}\nStderr:\n{self.stderr}"


async def _drain(stream: Optional[asyncio.StreamReader], chunks: List[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        chunks.append(chunk)


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


async def kill_process(proc: asyncio.subprocess.Process, graceful: bool = False) -> None:
    """
    Stop a tool process and reap it.

    The tool is started in its own session, so the whole process group is
    signalled. With ``graceful`` a SIGTERM is tried before SIGKILL.
    """
    if proc.returncode is not None:
        return

    def _signal(sig: int) -> None:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            try:
                os.killpg(proc.pid, sig)
            except (AttributeError, OSError):
                proc.send_signal(sig)

    if graceful:
        _signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE)
            return
        except asyncio.TimeoutError:
            pass

    _signal(signal.SIGKILL)
    await proc.wait()


class ProcessRunner:
    """
    Executes chip-tool once and collects its output.

    Example:
        runner = ProcessRunner("chip-tool")
        result = await runner.run(["onoff", "on", "7", "1"], timeout=30)
        if result.ok:
            ...
    """

    def __init__(self, tool_path: str = "chip-tool"):
        self.tool_path = tool_path

    async def run(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
    ) -> RunResult:
        """
        Run the tool with ``args``.

        Args:
            args: Arguments after the tool path
            timeout: Seconds before the process is killed; None waits forever

        Returns:
            RunResult whose ``error`` is None only on exit status 0
        """
        argv = [self.tool_path, *args]
        started = time.monotonic()
        logger.debug(f"Running: {' '.join(argv)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.tool_path}: {e}")
            return RunResult(
                argv=argv,
                stdout="",
                stderr=str(e),
                returncode=None,
                error=ToolSpawnError(f"failed to start {self.tool_path}: {e}"),
            )

        out_chunks: List[bytes] = []
        err_chunks: List[bytes] = []
        readers = [
            asyncio.create_task(_drain(proc.stdout, out_chunks)),
            asyncio.create_task(_drain(proc.stderr, err_chunks)),
        ]

        error: Optional[ToolError] = None
        try:
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{' '.join(argv)} timed out after {timeout}s, killing")
                error = ToolTimeoutError(timeout)
                await kill_process(proc)

            # Grandchildren can hold the pipes open after the tool exits
            _, pending = await asyncio.wait(readers, timeout=_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
        finally:
            if proc.returncode is None:
                # Cancelled while waiting: never leave the tool running
                await kill_process(proc)
            for task in readers:
                if not task.done():
                    task.cancel()

        if error is None and proc.returncode != 0:
            error = ToolExitError(proc.returncode)

        result = RunResult(
            argv=argv,
            stdout=_decode(out_chunks),
            stderr=_decode(err_chunks),
            returncode=proc.returncode,
            error=error,
            duration=time.monotonic() - started,
        )
        logger.debug(
            f"{' '.join(argv)} finished in {result.duration:.2f}s "
            f"(returncode={result.returncode}, error={error})"
        )
        return result

    async def check(self) -> RunResult:
        """Run ``<tool> --version`` to see whether the tool is usable."""
        return await self.run(["--version"], timeout=10.0)
