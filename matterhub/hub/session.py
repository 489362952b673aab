"""
Client sessions.

A session owns one client connection and runs two duties:

- reader: parses inbound frames and hands each envelope to the dispatcher,
  which runs it as its own task (intents from one client may complete out
  of order)
- writer: drains the outbound queue onto the connection in FIFO order, with
  a keepalive probe on a fixed interval

Producers never block: ``send()`` drops the event when the queue is full or
the session is closed.
"""

import asyncio
import contextlib
import itertools
import json
import logging
import uuid
from typing import TYPE_CHECKING, Any, Awaitable, Dict, List, Optional, Protocol

from .messages import GenericError, LogEvent, OutboundEvent, ping_message

if TYPE_CHECKING:
    from ..chiptool.stream import ToolStream
    from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """What a session needs from the transport (a FastAPI WebSocket fits)."""

    async def accept(self) -> None: ...

    async def receive(self) -> Dict[str, Any]: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


# Queued after the last event; tells the writer to send a close frame
_CLOSE = object()


class Session:
    """
    One connected client.

    Example:
        session = Session(websocket, dispatcher)
        try:
            await session.run()
        finally:
            await session.close()
    """

    def __init__(
        self,
        connection: Connection,
        dispatcher: "CommandDispatcher",
        queue_size: int = 256,
        ping_interval: float = 54.0,
        max_message_size: int = 10 * 1024,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or uuid.uuid4().hex[:12]
        self.connection = connection
        self.dispatcher = dispatcher
        self.queue_size = queue_size
        self.ping_interval = ping_interval
        self.max_message_size = max_message_size

        # Capacity is enforced in send() so the close marker always fits
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._write_lock = asyncio.Lock()
        self._writer_task: Optional[asyncio.Task] = None
        self._seq = itertools.count(1)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._subscriptions: Dict[str, "ToolStream"] = {}
        self.dropped = 0

    def __repr__(self) -> str:
        return f"<Session {self.id}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_tasks(self) -> List[str]:
        return list(self._tasks)

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    # ============ Outbound ============

    def send(self, event: OutboundEvent) -> bool:
        """Queue an event for the client. Never blocks; returns False if dropped."""
        if self._closed:
            self.dropped += 1
            logger.debug(f"Session {self.id} closed, dropping {event.event_type}")
            return False
        if self._queue.qsize() >= self.queue_size:
            self.dropped += 1
            logger.warning(f"Session {self.id} send queue full, dropping {event.event_type}")
            return False
        self._queue.put_nowait(event)
        return True

    def send_log(self, category: str, text: str) -> bool:
        return self.send(LogEvent(text=text, category=category))

    # ============ Tasks and subscriptions ============

    def spawn(self, coro: Awaitable[Any], label: str = "task") -> str:
        """
        Run ``coro`` as a tracked task for this session.

        Returns the task id (``<session id>:<sequence>``). Tasks are not
        cancelled when the session closes; their late events are dropped.
        """
        task_id = f"{self.id}:{next(self._seq)}"
        task = asyncio.create_task(self._guard(coro, label), name=f"{label}-{task_id}")
        self._tasks[task_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(task_id, None))
        return task_id

    async def _guard(self, coro: Awaitable[Any], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Session {self.id}: {label} failed")
            self.send(GenericError(f"Internal error while handling {label}: {e}"))

    async def wait_idle(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def track_subscription(self, key: str, stream: "ToolStream") -> Optional["ToolStream"]:
        """Remember a running subscription; returns the one it replaces, if any."""
        previous = self._subscriptions.get(key)
        self._subscriptions[key] = stream
        return previous

    def release_subscription(self, key: str, stream: "ToolStream") -> None:
        if self._subscriptions.get(key) is stream:
            del self._subscriptions[key]

    # ============ Duties ============

    def start_writer(self) -> None:
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._write_loop(), name=f"writer-{self.id}")

    async def run(self) -> None:
        """Reader duty. Returns when the client goes away or the transport fails."""
        self.start_writer()
        while True:
            try:
                message = await self.connection.receive()
            except Exception as e:
                logger.info(f"Session {self.id} read error: {e}")
                return

            if message["type"] == "websocket.disconnect":
                logger.info(f"Session {self.id} disconnected (code={message.get('code')})")
                return

            text = message.get("text")
            if text is None:
                logger.warning(f"Session {self.id} sent a binary frame")
                self.send(GenericError("Invalid message format: expected a text frame"))
                continue
            self.handle_frame(text)

    def handle_frame(self, text: str) -> Optional[str]:
        """Decode one inbound frame and dispatch it. Returns the task id, if any."""
        size = len(text.encode("utf-8"))
        if size > self.max_message_size:
            logger.warning(f"Session {self.id} sent an oversized frame ({size} bytes)")
            self.send(GenericError(f"Message too large (limit {self.max_message_size} bytes)"))
            return None

        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Session {self.id} sent invalid JSON: {e}")
            self.send(GenericError(f"Invalid message format: {e}"))
            return None

        return self.dispatcher.handle_envelope(self, envelope)

    async def _write_loop(self) -> None:
        ping_task = asyncio.create_task(self._ping_loop(), name=f"ping-{self.id}")
        try:
            while True:
                event = await self._queue.get()
                if event is _CLOSE:
                    await self._close_transport()
                    return

                try:
                    text = json.dumps(event.to_message(), default=str)
                except (TypeError, ValueError) as e:
                    logger.error(f"Session {self.id} could not encode {event.event_type}: {e}")
                    continue

                try:
                    async with self._write_lock:
                        await self.connection.send_text(text)
                except Exception as e:
                    logger.info(f"Session {self.id} write failed: {e}")
                    await self._close_transport()
                    return
        finally:
            self._closed = True
            ping_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ping_task

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                async with self._write_lock:
                    await self.connection.send_text(json.dumps(ping_message()))
            except Exception as e:
                logger.info(f"Session {self.id} keepalive failed: {e}")
                await self._close_transport()
                return

    async def _close_transport(self) -> None:
        # Unblocks the reader if the client is still connected
        try:
            async with self._write_lock:
                await self.connection.close()
        except Exception as e:
            logger.debug(f"Session {self.id} close frame not sent: {e}")

    # ============ Teardown ============

    async def close(self) -> None:
        """
        Close the outbound queue and stop this session's subscriptions.

        Idempotent. The writer sends a close frame once it reaches the end
        of the queue.
        """
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)

        subscriptions = list(self._subscriptions.items())
        self._subscriptions.clear()
        for key, stream in subscriptions:
            try:
                await stream.terminate()
            except Exception as e:
                logger.warning(f"Session {self.id}: failed to stop subscription {key}: {e}")

    async def wait_closed(self, timeout: Optional[float] = 10.0) -> None:
        """Wait for the writer to finish draining."""
        if self._writer_task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._writer_task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session {self.id} writer did not finish, cancelling")
            self._writer_task.cancel()
