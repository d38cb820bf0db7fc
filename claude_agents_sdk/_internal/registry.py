"""Registry of live sessions.

Each session registers itself while running so that shutdown can be scoped:
cancelling one session never touches another, and ``cancel_all`` reaches
every session still alive in the process.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from claude_agents_sdk.utils.log import get_logger

if TYPE_CHECKING:
    from claude_agents_sdk._internal.query import Query

logger = get_logger(__name__)


class SessionRegistry:
    """Maps local session ids to running queries."""

    def __init__(self) -> None:
        self._sessions: dict[str, Query] = {}
        # Sessions may live on event loops in different threads
        self._lock = threading.Lock()

    def register(self, query: Query) -> None:
        session_id = query.session.session_id
        with self._lock:
            if session_id in self._sessions and self._sessions[session_id] is not query:
                raise ValueError(f"Session already registered: {session_id}")
            self._sessions[session_id] = query
        logger.debug("[registry] Registered session", extra={"session_id": session_id})

    def unregister(self, query: Query) -> None:
        session_id = query.session.session_id
        with self._lock:
            if self._sessions.get(session_id) is query:
                del self._sessions[session_id]
        logger.debug("[registry] Unregistered session", extra={"session_id": session_id})

    def get(self, session_id: str) -> Query | None:
        with self._lock:
            return self._sessions.get(session_id)

    def active(self) -> list[Query]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    async def cancel_all(self) -> int:
        """Cancel every registered session. Returns how many were cancelled."""
        sessions = self.active()
        for query in sessions:
            await query.cancel()
        if sessions:
            logger.info("[registry] Cancelled sessions", extra={"count": len(sessions)})
        return len(sessions)


_default_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _default_registry


__all__ = ["SessionRegistry", "get_registry"]
