"""
Long-running chip-tool invocations.

Used for subscriptions: the tool keeps running and printing reports until it
exits on its own. Output is exposed as two independent line streams.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Sequence

from .runner import ToolSpawnError, kill_process

logger = logging.getLogger(__name__)

# Report blocks can carry long octet strings
_LINE_LIMIT = 1024 * 1024


class ToolStream:
    """
    A started chip-tool process with line-oriented access to its output.

    Each of ``stdout_lines()`` and ``stderr_lines()`` should be consumed by
    its own task; a slow consumer only ever backs up the OS pipe.
    """

    def __init__(self, argv: List[str], proc: asyncio.subprocess.Process):
        self.argv = argv
        self._proc = proc
        self._terminated = False

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    @property
    def running(self) -> bool:
        return self._proc.returncode is None

    async def _lines(self, stream: Optional[asyncio.StreamReader]) -> AsyncIterator[str]:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the buffer limit; skip what is buffered
                logger.warning(f"[{self.pid}] Overlong output line dropped")
                continue
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def stdout_lines(self) -> AsyncIterator[str]:
        return self._lines(self._proc.stdout)

    def stderr_lines(self) -> AsyncIterator[str]:
        return self._lines(self._proc.stderr)

    async def wait(self) -> int:
        """Block until the process exits; returns its exit status."""
        return await self._proc.wait()

    async def terminate(self) -> None:
        """Stop the process (SIGTERM, then SIGKILL) and reap it."""
        if self._terminated or not self.running:
            return
        self._terminated = True
        logger.info(f"Terminating stream process {self.pid}: {' '.join(self.argv)}")
        await kill_process(self._proc, graceful=True)


class StreamSubscriber:
    """Starts chip-tool processes whose output is consumed incrementally."""

    def __init__(self, tool_path: str = "chip-tool"):
        self.tool_path = tool_path

    async def start(self, args: Sequence[str]) -> ToolStream:
        """
        Start the tool with ``args``.

        Raises:
            ToolSpawnError: If the process could not be started
        """
        argv = [self.tool_path, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_LINE_LIMIT,
                start_new_session=True,
            )
        except OSError as e:
            raise ToolSpawnError(f"failed to start {self.tool_path}: {e}") from e

        logger.info(f"Started stream process {proc.pid}: {' '.join(argv)}")
        return ToolStream(argv, proc)
