"""
Booking store.

The booking subsystem is an external collaborator: the signaling core only
needs `get_participants` and `get_status`. InMemoryBookingStore is a
process-local implementation with the booking transitions of the platform
(teacher accepts/declines/completes, either side schedules or cancels) so
the service can run standalone.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from .errors import Forbidden, InvalidPayload, InvalidState, NotFound
from .models import TERMINAL_STATUSES, BookingStatus, CallSession, Participants, utcnow

logger = logging.getLogger("skillswap.bookings")

StatusListener = Callable[[CallSession], Awaitable[None]]

DEFAULT_DURATION_MINUTES = 60
LIST_LIMIT = 50

TEACHER_ACTIONS = ("accept", "decline", "complete")

# Statuses each action may start from; terminal statuses allow nothing
ALLOWED_FROM = {
    "accept": frozenset({BookingStatus.PENDING}),
    "decline": frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED, BookingStatus.SCHEDULED}),
    "complete": frozenset({BookingStatus.ACCEPTED, BookingStatus.SCHEDULED}),
    "schedule": frozenset({BookingStatus.ACCEPTED, BookingStatus.SCHEDULED}),
    "cancel": frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED, BookingStatus.SCHEDULED}),
}


def parse_scheduled_for(value: Any) -> Optional[datetime]:
    """
    Parse a requested schedule time.

    Accepts ISO-8601 strings and epoch milliseconds. Anything unparseable
    is ignored rather than rejected.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value) if value > 0 else None


class BookingStore(ABC):
    """Interface the signaling core consumes from the booking subsystem."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[CallSession]:
        """Return the session, or None if it does not exist."""
        pass

    async def get_participants(self, session_id: str) -> Participants:
        """
        Raises:
            NotFound: if the session does not exist
        """
        session = await self.get(session_id)
        if session is None:
            raise NotFound("Session not found")
        return session.participants

    async def get_status(self, session_id: str) -> BookingStatus:
        session = await self.get(session_id)
        if session is None:
            raise NotFound("Session not found")
        return session.status


class InMemoryBookingStore(BookingStore):
    """Process-local booking store."""

    def __init__(self):
        self._sessions: Dict[str, CallSession] = {}
        self._listeners: List[StatusListener] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: StatusListener) -> None:
        """Register a coroutine called after every status transition."""
        self._listeners.append(listener)

    async def _notify(self, session: CallSession) -> None:
        for listener in self._listeners:
            try:
                await listener(session)
            except Exception as e:
                logger.error(f"Status listener failed for session {session.id}: {e}")

    async def get(self, session_id: str) -> Optional[CallSession]:
        return self._sessions.get(session_id)

    def add(self, session: CallSession) -> CallSession:
        """Insert a session as-is (seed data, tests)."""
        self._sessions[session.id] = session
        return session

    async def create(
        self,
        learner_id: str,
        teacher_id: str,
        skill_id: str,
        skill_title: str = "",
        learner_message: str = "",
        scheduled_for: Any = None,
        duration: Any = None,
    ) -> CallSession:
        """Create a pending booking requested by a learner."""
        if not learner_id:
            raise InvalidPayload("Missing learner")
        if not skill_id or not teacher_id:
            raise InvalidPayload("Missing required fields: skillId, teacherId")
        if teacher_id == learner_id:
            raise InvalidPayload("Cannot book a session with yourself")

        session = CallSession(
            id=str(uuid4()),
            teacher_id=teacher_id,
            learner_id=learner_id,
            skill_id=skill_id,
            skill_title=skill_title or "",
            learner_message=learner_message or "",
            scheduled_for=parse_scheduled_for(scheduled_for),
            duration=_positive_int(duration) or DEFAULT_DURATION_MINUTES,
        )
        async with self._lock:
            self._sessions[session.id] = session
        logger.info(f"Session requested: {session.id} ({learner_id} -> {teacher_id})")
        return session

    async def list_for(self, user_id: str, limit: int = LIST_LIMIT) -> List[CallSession]:
        """Sessions where the user is teacher or learner, newest first."""
        sessions = [
            s for s in self._sessions.values()
            if user_id in (s.teacher_id, s.learner_id)
        ]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions[:limit]

    async def apply_action(
        self,
        session_id: str,
        caller_id: str,
        action: str,
        scheduled_for: Any = None,
        duration: Any = None,
    ) -> CallSession:
        """
        Apply a booking transition.

        Args:
            session_id: Booking id
            caller_id: Authenticated caller
            action: accept, decline, complete, schedule or cancel
            scheduled_for: New time for `schedule`
            duration: New duration in minutes for `schedule`

        Raises:
            NotFound: unknown session
            Forbidden: caller is not a participant, or not the teacher for
                accept/decline/complete
            InvalidPayload: unknown action
            InvalidState: the booking cannot make this transition from its
                current status (finished bookings never change again)
        """
        if action not in ALLOWED_FROM:
            raise InvalidPayload("Invalid action")

        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound("Session not found")

            is_teacher = session.teacher_id == caller_id
            is_learner = session.learner_id == caller_id
            if not is_teacher and not is_learner:
                raise Forbidden("Unauthorized")

            if action in TEACHER_ACTIONS and not is_teacher:
                raise Forbidden(f"Only teacher can {action}")

            if session.status not in ALLOWED_FROM[action]:
                if session.status in TERMINAL_STATUSES:
                    raise InvalidState(f"Session is {session.status.value}")
                raise InvalidState(f"Cannot {action} a {session.status.value} session")

            now = utcnow()
            if action in TEACHER_ACTIONS:
                if action == "accept":
                    session.status = BookingStatus.ACCEPTED
                    session.accepted_at = now
                elif action == "decline":
                    session.status = BookingStatus.DECLINED
                    session.declined_at = now
                else:
                    session.status = BookingStatus.COMPLETED
                    session.completed_at = now
            elif action == "schedule":
                when = parse_scheduled_for(scheduled_for)
                if when:
                    session.scheduled_for = when
                minutes = _positive_int(duration)
                if minutes:
                    session.duration = minutes
                session.status = BookingStatus.SCHEDULED
            elif action == "cancel":
                session.status = BookingStatus.CANCELLED
                session.cancelled_at = now

            session.updated_at = now

        logger.info(f"Session {session_id} -> {session.status.value} by {caller_id}")
        await self._notify(session)
        return session

    def load_file(self, path: str) -> int:
        """
        Load seed bookings from a JSON list.

        Each entry needs `id`, `teacher_id` and `learner_id`; `status`
        defaults to pending.

        Returns:
            Number of sessions loaded
        """
        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)

        if not isinstance(entries, list):
            raise ValueError(f"Bookings file must contain a JSON list: {path}")

        count = 0
        for entry in entries:
            try:
                session = CallSession(
                    id=str(entry["id"]),
                    teacher_id=str(entry["teacher_id"]),
                    learner_id=str(entry["learner_id"]),
                    status=BookingStatus(entry.get("status", "pending")),
                    skill_id=entry.get("skill_id"),
                    skill_title=entry.get("skill_title", ""),
                    scheduled_for=parse_scheduled_for(entry.get("scheduled_for")),
                    duration=_positive_int(entry.get("duration")) or DEFAULT_DURATION_MINUTES,
                )
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed booking entry {entry!r}: {e}")
                continue
            self.add(session)
            count += 1

        logger.info(f"Loaded {count} bookings from {path}")
        return count

    @property
    def count(self) -> int:
        return len(self._sessions)
