"""
Session registry: the set of live client sessions.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..config import SessionConfig
from .dispatcher import CommandDispatcher
from .session import Connection, Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Admits and removes sessions. The underlying map never leaves this object."""

    def __init__(self, dispatcher: CommandDispatcher, config: Optional[SessionConfig] = None):
        self.dispatcher = dispatcher
        self.config = config or SessionConfig()
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return len(self._sessions)

    def sessions(self) -> List[Session]:
        """Snapshot of the live sessions."""
        return list(self._sessions.values())

    async def admit(self, connection: Connection) -> Session:
        """Accept a connection and register a session for it."""
        await connection.accept()
        session = Session(
            connection,
            self.dispatcher,
            queue_size=self.config.queue_size,
            ping_interval=self.config.ping_interval,
            max_message_size=self.config.max_message_size,
        )
        async with self._lock:
            self._sessions[session.id] = session
        logger.info(f"Client connected: session {session.id}, total: {self.count}")
        return session

    async def remove(self, session: Session) -> None:
        """Unregister and close a session. Safe to call more than once."""
        async with self._lock:
            removed = self._sessions.pop(session.id, None)
        if removed is None:
            return
        await session.close()
        logger.info(f"Client disconnected: session {session.id}, total: {self.count}")

    async def close_all(self) -> None:
        for session in self.sessions():
            await self.remove(session)
