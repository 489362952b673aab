"""
Shared fakes for matterhub tests.
"""

import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

import pytest

from matterhub.chiptool.runner import RunResult, ToolError, ToolExitError
from matterhub.chiptool.stream import StreamSubscriber, ToolStream
from matterhub.hub.session import Session


class FakeRunner:
    """
    ProcessRunner stand-in.

    Responses are matched on the leading arguments; every call is recorded.
    Unmatched calls exit 0 with no output.
    """

    def __init__(self, tool_path: str = "chip-tool"):
        self.tool_path = tool_path
        self.calls: List[List[str]] = []
        self._responses: List[tuple] = []

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        error: Optional[ToolError] = None,
    ) -> "FakeRunner":
        self._responses.append((tuple(prefix), stdout, stderr, returncode, error))
        return self

    async def run(self, args: Sequence[str], timeout: Optional[float] = None) -> RunResult:
        args = list(args)
        self.calls.append(args)
        # Let other tasks interleave as they would around a real subprocess
        await asyncio.sleep(0)

        stdout, stderr, returncode, error = "", "", 0, None
        for prefix, out, err, code, exc in self._responses:
            if tuple(args[:len(prefix)]) == prefix:
                stdout, stderr, returncode, error = out, err, code, exc
                break

        if error is None and returncode != 0:
            error = ToolExitError(returncode)
        return RunResult(
            argv=[self.tool_path, *args],
            stdout=stdout,
            stderr=stderr,
            returncode=returncode,
            error=error,
        )

    async def check(self) -> RunResult:
        return await self.run(["--version"])


class ScriptSubscriber:
    """StreamSubscriber that runs a Python snippet instead of chip-tool."""

    def __init__(self, script: str):
        self.script = script
        self.calls: List[List[str]] = []
        self.streams: List[ToolStream] = []
        self._real = StreamSubscriber(sys.executable)

    async def start(self, args: Sequence[str]) -> ToolStream:
        self.calls.append(list(args))
        stream = await self._real.start(["-c", self.script])
        self.streams.append(stream)
        return stream


class FakeConnection:
    """In-memory WebSocket: feed inbound frames, inspect what was sent."""

    def __init__(self, fail_sends: bool = False):
        self.accepted = False
        self.closed = False
        self.fail_sends = fail_sends
        self.sent: List[str] = []
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, text: str) -> None:
        self._incoming.put_nowait({"type": "websocket.receive", "text": text})

    def feed_bytes(self, data: bytes) -> None:
        self._incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self, code: int = 1000) -> None:
        self._incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    async def accept(self) -> None:
        self.accepted = True

    async def receive(self) -> Dict[str, Any]:
        return await self._incoming.get()

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise RuntimeError("send after close")
        if self.fail_sends:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        if not self.closed:
            self.closed = True
            self.disconnect(code)

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == event_type]

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]


async def exchange(dispatcher, *envelopes: Any) -> FakeConnection:
    """Run envelopes through a real session and return everything it sent."""
    connection = FakeConnection()
    session = Session(connection, dispatcher, ping_interval=3600)
    session.start_writer()
    for envelope in envelopes:
        dispatcher.handle_envelope(session, envelope)
    await asyncio.wait_for(session.wait_idle(), timeout=10)
    await session.close()
    await session.wait_closed()
    return connection


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def run_exchange():
    return exchange
