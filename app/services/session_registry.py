"""
In-process registry of live taking sessions, one per (user, assignment).

Sessions hold timers, so they have to be found again by later requests and
closed when the application shuts down. Completed sessions have no timers
left and are rebuilt from storage on demand, so they are evicted rather than
kept around. Nothing is shared between processes.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from app.core.clock import system_clock
from app.schemas.assignments import Assignment
from app.services.submission_lifecycle import SessionStatus, SubmissionSession
from app.services.submission_store import SubmissionStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, clock=system_clock, **session_options):
        self.clock = clock
        self.session_options = session_options
        self._sessions: Dict[Tuple[str, str], SubmissionSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self):
        return len(self._sessions)

    def peek(self, user_id: str, assignment_id: str) -> Optional[SubmissionSession]:
        return self._sessions.get((user_id, assignment_id))

    async def get(self, user_id: str, assignment: Assignment, store: SubmissionStore) -> SubmissionSession:
        """Return the live session for the pair, loading it from storage the first time."""
        key = (user_id, assignment.id)
        async with self._lock:
            await self._evict_completed(keep=key)
            session = self._sessions.get(key)
            if session is None:
                session = SubmissionSession(
                    assignment, user_id, store, self.clock, **self.session_options
                )
                await session.load()
                self._sessions[key] = session
                logger.debug("Opened session %s", session.key)
            elif session.assignment.updated_at != assignment.updated_at:
                session.replace_assignment(assignment)
        return session

    async def refresh_assignment(self, assignment: Assignment) -> None:
        """Push a re-saved assignment into every live session taking it."""
        async with self._lock:
            sessions = [s for key, s in self._sessions.items() if key[1] == assignment.id]
            for session in sessions:
                session.replace_assignment(assignment)

    async def discard(self, user_id: str, assignment_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop((user_id, assignment_id), None)
        if session is not None:
            await session.close()

    async def discard_assignment(self, assignment_id: str) -> None:
        """Close every session of an assignment, e.g. after it was deleted."""
        async with self._lock:
            keys = [key for key in self._sessions if key[1] == assignment_id]
            sessions = [self._sessions.pop(key) for key in keys]
        for session in sessions:
            await session.close()

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
        if sessions:
            logger.info("Closed %d taking session(s)", len(sessions))

    async def _evict_completed(self, keep: Tuple[str, str]) -> None:
        # the requested pair is reused as is
        done = [
            key for key, session in self._sessions.items()
            if key != keep
            and session.status is SessionStatus.completed
            and not session.submit_in_flight
        ]
        for key in done:
            session = self._sessions.pop(key)
            await session.close()
            logger.debug("Evicted completed session %s", session.key)


registry = SessionRegistry()


def get_session_registry() -> SessionRegistry:
    return registry
