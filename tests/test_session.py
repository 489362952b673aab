"""
Tests for client sessions and the session registry.
"""

import asyncio
import json
import sys

import pytest

from matterhub.chiptool.stream import StreamSubscriber
from matterhub.config import SessionConfig
from matterhub.hub.dispatcher import CommandDispatcher
from matterhub.hub.messages import CommandResponse, DiscoveryLog, GenericError
from matterhub.hub.registry import SessionRegistry
from matterhub.hub.session import Session

from conftest import FakeConnection, FakeRunner


def make_dispatcher(runner=None) -> CommandDispatcher:
    return CommandDispatcher(runner or FakeRunner(), StreamSubscriber(sys.executable))


async def finish(session: Session) -> None:
    await asyncio.wait_for(session.wait_idle(), timeout=10)
    await session.close()
    await session.wait_closed()


class TestSessionOutbound:
    """Tests for the outbound queue and writer."""

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        session.start_writer()

        for i in range(5):
            assert session.send(DiscoveryLog(f"line {i}"))
        await finish(session)

        assert [m["payload"] for m in connection.messages] == [f"line {i}" for i in range(5)]
        assert connection.closed

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self):
        """Producers return immediately even when nobody drains the queue."""
        session = Session(FakeConnection(), make_dispatcher(), queue_size=3)

        results = [session.send(DiscoveryLog(str(i))) for i in range(10)]

        assert results == [True, True, True] + [False] * 7
        assert session.dropped == 7

    @pytest.mark.asyncio
    async def test_closed_session_drops(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        session.start_writer()
        await finish(session)

        assert not session.send(CommandResponse(success=True, node_id="7"))
        assert connection.messages == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        session.start_writer()
        await session.close()
        await session.close()
        await session.wait_closed()

        assert session.closed
        assert connection.closed

    @pytest.mark.asyncio
    async def test_write_failure_ends_session(self):
        connection = FakeConnection(fail_sends=True)
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        session.start_writer()
        session.send(DiscoveryLog("x"))
        await session.wait_closed()

        assert session.closed
        assert connection.closed

    @pytest.mark.asyncio
    async def test_ping(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=0.05)
        session.start_writer()
        await asyncio.sleep(0.3)
        await finish(session)

        pings = connection.of_type("ping")
        assert pings
        assert isinstance(pings[0]["data"], str)
        assert "payload" not in pings[0]

    @pytest.mark.asyncio
    async def test_send_log(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        session.start_writer()
        session.send_log("commissioning_log", "pairing...")
        await finish(session)

        assert connection.messages == [{"type": "commissioning_log", "payload": "pairing..."}]


class TestSessionInbound:
    """Tests for the reader duty."""

    @pytest.mark.asyncio
    async def test_invalid_json_keeps_session(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        connection.feed("{not json")
        connection.feed(json.dumps({"type": "bogus"}))
        connection.feed(json.dumps(["not", "an", "object"]))
        connection.disconnect()

        await asyncio.wait_for(session.run(), timeout=10)
        await finish(session)

        errors = connection.of_type("error")
        assert len(errors) == 3
        assert "Invalid message format" in errors[0]["payload"]["message"]
        assert errors[1]["payload"]["message"] == "Unknown command type received: bogus"

    @pytest.mark.asyncio
    async def test_oversized_frame(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600, max_message_size=64)
        connection.feed(json.dumps({"type": "discover_devices", "payload": {"pad": "x" * 100}}))
        connection.disconnect()

        await asyncio.wait_for(session.run(), timeout=10)
        await finish(session)

        assert connection.types() == ["error"]

    @pytest.mark.asyncio
    async def test_binary_frame_keeps_session(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        connection.feed_bytes(b'{"type": "bogus"}')
        connection.feed(json.dumps({"type": "bogus"}))
        connection.disconnect()

        await asyncio.wait_for(session.run(), timeout=10)
        await finish(session)

        errors = connection.of_type("error")
        assert errors[0]["payload"]["message"] == "Invalid message format: expected a text frame"
        assert errors[1]["payload"]["message"] == "Unknown command type received: bogus"

    @pytest.mark.asyncio
    async def test_frame_size_counts_bytes(self):
        """Multi-byte characters count by their UTF-8 length."""
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600, max_message_size=64)
        session.start_writer()

        frame = json.dumps({"type": "bogus", "p": "\u00e9" * 20}, ensure_ascii=False)
        assert len(frame) <= 64 < len(frame.encode("utf-8"))
        session.handle_frame(frame)
        await finish(session)

        assert connection.messages == [
            {"type": "error", "payload": {"message": "Message too large (limit 64 bytes)"}},
        ]

    @pytest.mark.asyncio
    async def test_intents_run_as_tracked_tasks(self):
        runner = FakeRunner()
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(runner), ping_interval=3600, session_id="s1")
        session.start_writer()

        task_id = session.handle_frame(json.dumps({
            "type": "device_command",
            "payload": {"nodeId": 7, "cluster": "Identify", "command": "Identify"},
        }))

        assert task_id == "s1:1"
        assert session.pending_tasks == ["s1:1"]
        await finish(session)
        assert session.pending_tasks == []
        assert connection.of_type("command_response")[0]["payload"]["success"] is True

    @pytest.mark.asyncio
    async def test_task_failure_becomes_error_event(self):
        connection = FakeConnection()
        session = Session(connection, make_dispatcher(), ping_interval=3600)
        session.start_writer()

        async def boom():
            raise RuntimeError("kaboom")

        session.spawn(boom(), label="boom")
        await finish(session)

        errors = connection.of_type("error")
        assert len(errors) == 1
        assert "kaboom" in errors[0]["payload"]["message"]

    @pytest.mark.asyncio
    async def test_close_terminates_subscriptions(self):
        """No subscription process outlives its session."""
        session = Session(FakeConnection(), make_dispatcher(), ping_interval=3600)
        session.start_writer()
        stream = await StreamSubscriber(sys.executable).start(["-c", "import time; time.sleep(30)"])
        session.track_subscription("sub-7-1-OnOff-OnOff", stream)

        await session.close()
        await session.wait_closed()

        assert not stream.running
        assert session.subscriptions == []


class TestSessionRegistry:
    """Tests for session admission and removal."""

    @pytest.mark.asyncio
    async def test_admit_and_remove(self):
        registry = SessionRegistry(make_dispatcher(), SessionConfig(queue_size=8))
        first = FakeConnection()
        second = FakeConnection()

        s1 = await registry.admit(first)
        s2 = await registry.admit(second)

        assert first.accepted and second.accepted
        assert registry.count == 2
        assert s1.id != s2.id
        assert s1.queue_size == 8

        await registry.remove(s1)
        await registry.remove(s1)
        assert registry.count == 1
        assert s1.closed
        assert registry.sessions() == [s2]

    @pytest.mark.asyncio
    async def test_sessions_is_a_snapshot(self):
        registry = SessionRegistry(make_dispatcher())
        await registry.admit(FakeConnection())

        snapshot = registry.sessions()
        snapshot.clear()

        assert registry.count == 1

    @pytest.mark.asyncio
    async def test_no_cross_session_leakage(self):
        registry = SessionRegistry(make_dispatcher())
        a, b = FakeConnection(), FakeConnection()
        s1 = await registry.admit(a)
        s2 = await registry.admit(b)
        s1.start_writer()
        s2.start_writer()

        s1.send(GenericError("for a"))
        await registry.close_all()
        await s1.wait_closed()
        await s2.wait_closed()

        assert a.types() == ["error"]
        assert b.messages == []
        assert registry.count == 0
