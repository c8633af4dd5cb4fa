"""
Session Store.

Per-caller conversational state with a fixed time-to-live.

A session is created on a caller's first interaction and refreshed on each
update. Handlers record the command in progress and the last message id so
that follow-up text and "retry" buttons can resume where the caller left
off. Sessions older than the TTL (24 hours by default) are replaced with a
fresh one on next access and removed by sweep() from the BotServer cleanup
tick.

Usage:
    sessions = SessionStore(ttl=timedelta(hours=24))

    async with sessions.open(caller_id) as session:
        session.current_command = "settings"
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from modules.backend.core.keyed_store import KeyedStore
from modules.backend.core.logging import get_logger
from modules.backend.core.utils import utc_now

logger = get_logger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=24)


@dataclass
class Session:
    """Conversation state for one caller."""

    caller_id: int
    created_at: datetime
    expires_at: datetime
    last_activity: datetime
    current_command: str | None = None
    last_message_id: int | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionStore:
    """KeyedStore-backed session map with explicit eviction."""

    def __init__(
        self,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._sessions: KeyedStore[int, Session] = KeyedStore("sessions")

    def _new_session(self, caller_id: int, now: datetime) -> Session:
        return Session(
            caller_id=caller_id,
            created_at=now,
            expires_at=now + self._ttl,
            last_activity=now,
        )

    @asynccontextmanager
    async def open(self, caller_id: int) -> AsyncIterator[Session]:
        """
        Load (or create) the caller's session and hold its lock while in use.

        Expired sessions are discarded and replaced; the activity timestamp
        is refreshed on every open.
        """
        async with self._sessions.locked(caller_id):
            now = self._clock()
            session = self._sessions.get(caller_id)
            if session is None or session.is_expired(now):
                if session is not None:
                    logger.debug("Session expired, starting new one", extra={"caller_id": caller_id})
                session = self._new_session(caller_id, now)
                self._sessions.set(caller_id, session)
            session.last_activity = now
            yield session

    def get(self, caller_id: int) -> Session | None:
        """Return a live session without creating one."""
        session = self._sessions.get(caller_id)
        if session is None or session.is_expired(self._clock()):
            return None
        return session

    async def end(self, caller_id: int) -> None:
        """Drop the caller's session immediately."""
        async with self._sessions.locked(caller_id):
            self._sessions.pop(caller_id)

    async def sweep(self) -> int:
        """Evict expired sessions."""
        now = self._clock()
        return await self._sessions.sweep(lambda _key, session: session.is_expired(now))

    def active_count(self) -> int:
        now = self._clock()
        return sum(1 for _, session in self._sessions.items() if not session.is_expired(now))
