"""SessionStore — in-memory keyed store of :class:`SessionState`.

The store is an ordinary object injected into the orchestrator (the server
builds one per application in its lifespan); there is no module-level
singleton.

Concurrency model:

- a ``threading.Lock`` guards the id -> entry map, so the sweep may run
  from any thread or task;
- each entry carries an ``asyncio.Lock``; :meth:`SessionStore.acquire`
  holds it for the whole processing of one message, which serialises
  messages of the same session while distinct sessions proceed in
  parallel;
- :meth:`sweep` never removes an entry whose lock is held, and
  :meth:`delete` shares the same idempotent removal path.  A waiter that
  wakes up on an entry removed in the meantime retries on a fresh entry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable

from rdv_assistant.constants import SESSION_TTL_MINUTES
from rdv_assistant.models.session import SessionState, utc_now

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("state", "lock", "removed")

    def __init__(self, state: SessionState) -> None:
        self.state = state
        self.lock = asyncio.Lock()
        self.removed = False


class SessionStore:
    """Concurrency-safe map of session id to mutable session state.

    Args:
        ttl: inactivity window after which :meth:`sweep` evicts a session
        clock: returns the current aware UTC datetime; injectable for tests
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=SESSION_TTL_MINUTES),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.ttl = ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _entry(self, session_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                now = self._clock()
                entry = _Entry(SessionState(session_id=session_id, created_at=now, updated_at=now))
                self._entries[session_id] = entry
                logger.debug("Created session %s", session_id)
            return entry

    def get_or_create(self, session_id: str) -> SessionState:
        """Return the state for *session_id*, creating it on first contact.

        The caller must hold :meth:`acquire` before mutating the result.
        """
        return self._entry(session_id).state

    def get(self, session_id: str) -> SessionState | None:
        with self._lock:
            entry = self._entries.get(session_id)
            return entry.state if entry is not None else None

    @asynccontextmanager
    async def acquire(self, session_id: str) -> AsyncIterator[SessionState]:
        """Exclusive access to one session for the duration of the block.

        Usage::

            async with store.acquire(session_id) as state:
                ...  # mutate state

        ``updated_at`` is stamped on exit, which is what the TTL sweep
        measures inactivity from.
        """
        while True:
            entry = self._entry(session_id)
            await entry.lock.acquire()
            if not entry.removed:
                break
            # Evicted or reset while we waited; start over on a fresh entry
            entry.lock.release()

        try:
            yield entry.state
        finally:
            entry.state.updated_at = self._clock()
            entry.lock.release()

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def _remove(self, session_id: str) -> bool:
        """Shared removal path.  Caller holds ``self._lock``."""
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return False
        entry.removed = True
        return True

    def delete(self, session_id: str) -> bool:
        """Explicit reset.  Idempotent: returns False if nothing was removed."""
        with self._lock:
            removed = self._remove(session_id)
        if removed:
            logger.info("Session %s reset", session_id)
        return removed

    def sweep(self, now: datetime | None = None) -> int:
        """Evict sessions idle for longer than the TTL.

        Sessions currently being processed are skipped even if stale.

        Returns:
            The number of sessions removed.
        """
        now = now or self._clock()
        cutoff = now - self.ttl
        with self._lock:
            expired = [
                sid
                for sid, entry in self._entries.items()
                if entry.state.updated_at < cutoff and not entry.lock.locked()
            ]
            for sid in expired:
                self._remove(sid)
        if expired:
            logger.info("Swept %d idle session(s)", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._entries
