"""
Signaling data model.

A SignalingRoom is the shared mailbox for one booked session: at most one
live offer, at most one live answer, and one append-only candidate list per
role. CallSession is the booking record owned by the booking store.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidPayload


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat().replace("+00:00", "Z") if value else None


class Role(Enum):
    """Which side of the handshake a participant plays."""
    OFFER = "offer"
    ANSWER = "answer"

    @property
    def other(self) -> "Role":
        return Role.ANSWER if self is Role.OFFER else Role.OFFER

    @classmethod
    def parse(cls, value: Any) -> "Role":
        try:
            return cls(value)
        except ValueError:
            raise InvalidPayload(f"Unknown role: {value!r}")


class RoomStatus(Enum):
    """Signaling room status."""
    OPEN = "open"
    ANSWERED = "answered"
    ENDED = "ended"


class BookingStatus(Enum):
    """Booking lifecycle status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    SCHEDULED = "scheduled"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


SIGNALABLE_STATUSES = frozenset({BookingStatus.ACCEPTED, BookingStatus.SCHEDULED})
TERMINAL_STATUSES = frozenset(
    {BookingStatus.DECLINED, BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)


@dataclass(frozen=True)
class SessionDescription:
    """One half of the offer/answer exchange."""
    type: str
    sdp: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, data: Any, expected_type: str) -> "SessionDescription":
        """
        Validate and build a description from a request payload.

        Raises:
            InvalidPayload: if the type does not match or the sdp is empty
        """
        if not isinstance(data, dict):
            raise InvalidPayload(f"Invalid {expected_type}")
        sdp = data.get("sdp")
        if data.get("type") != expected_type or not isinstance(sdp, str) or not sdp.strip():
            raise InvalidPayload(f"Invalid {expected_type}")
        return cls(type=expected_type, sdp=sdp)


def candidate_key(candidate: Dict[str, Any]) -> str:
    """Canonical serialized form used to deduplicate candidates."""
    return json.dumps(candidate, sort_keys=True, separators=(",", ":"))


def validate_candidate(candidate: Any) -> Dict[str, Any]:
    """Candidates are opaque, but must be non-empty JSON objects."""
    if not isinstance(candidate, dict) or not candidate:
        raise InvalidPayload("Missing candidate or role")
    return candidate


@dataclass(frozen=True)
class Participants:
    """The two parties of a booked session."""
    teacher_id: str
    learner_id: str

    def includes(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and user_id in (self.teacher_id, self.learner_id)


@dataclass
class SignalingRoom:
    """Per-session signaling mailbox."""

    session_id: str
    status: RoomStatus = RoomStatus.OPEN
    offered_by: Optional[str] = None
    answered_by: Optional[str] = None
    offer: Optional[SessionDescription] = None
    answer: Optional[SessionDescription] = None
    offer_candidates: List[Dict[str, Any]] = field(default_factory=list)
    answer_candidates: List[Dict[str, Any]] = field(default_factory=list)
    revision: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def has_live_offer(self) -> bool:
        """An offer exists that nobody has answered and the call is not over."""
        return (
            self.status == RoomStatus.OPEN
            and self.offer is not None
            and self.answer is None
        )

    def candidates_for(self, role: Role) -> List[Dict[str, Any]]:
        return self.offer_candidates if role is Role.OFFER else self.answer_candidates

    def touch(self) -> None:
        self.revision += 1
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Wire form, camelCase like the browser client expects."""
        return {
            "id": self.session_id,
            "sessionId": self.session_id,
            "status": self.status.value,
            "offeredBy": self.offered_by,
            "answeredBy": self.answered_by,
            "offer": self.offer.to_dict() if self.offer else None,
            "answer": self.answer.to_dict() if self.answer else None,
            "offerCandidates": list(self.offer_candidates),
            "answerCandidates": list(self.answer_candidates),
            "revision": self.revision,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalingRoom":
        """
        Parse the wire form received by the client.

        Candidate entries that are not objects are dropped; a description
        with the wrong type is treated as absent.
        """
        def _description(value: Any, expected: str) -> Optional[SessionDescription]:
            try:
                return SessionDescription.from_dict(value, expected)
            except InvalidPayload:
                return None

        def _candidates(value: Any) -> List[Dict[str, Any]]:
            if not isinstance(value, list):
                return []
            return [c for c in value if isinstance(c, dict) and c]

        try:
            status = RoomStatus(data.get("status", RoomStatus.OPEN.value))
        except ValueError:
            raise InvalidPayload(f"Unknown room status: {data.get('status')!r}")

        session_id = data.get("sessionId") or data.get("id")
        if not session_id:
            raise InvalidPayload("Room without session id")

        return cls(
            session_id=session_id,
            status=status,
            offered_by=data.get("offeredBy"),
            answered_by=data.get("answeredBy"),
            offer=_description(data.get("offer"), "offer"),
            answer=_description(data.get("answer"), "answer"),
            offer_candidates=_candidates(data.get("offerCandidates")),
            answer_candidates=_candidates(data.get("answerCandidates")),
            revision=int(data.get("revision") or 0),
        )


@dataclass
class CallSession:
    """A booking between a teacher and a learner."""

    id: str
    teacher_id: str
    learner_id: str
    status: BookingStatus = BookingStatus.PENDING
    skill_id: Optional[str] = None
    skill_title: str = ""
    learner_message: str = ""
    scheduled_for: Optional[datetime] = None
    duration: int = 60
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def participants(self) -> Participants:
        return Participants(teacher_id=self.teacher_id, learner_id=self.learner_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "learner_id": self.learner_id,
            "status": self.status.value,
            "skill_id": self.skill_id,
            "skill_title": self.skill_title,
            "learner_message": self.learner_message,
            "scheduled_for": _iso(self.scheduled_for),
            "duration": self.duration,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "accepted_at": _iso(self.accepted_at),
            "declined_at": _iso(self.declined_at),
            "completed_at": _iso(self.completed_at),
            "cancelled_at": _iso(self.cancelled_at),
        }
