"""Signaling core: data model, authorization, lifecycle and mailbox."""
from .errors import (
    SignalingError,
    Unauthenticated,
    Forbidden,
    NotFound,
    InvalidPayload,
    InvalidState,
    MediaUnavailable,
    RemoteDescriptionPending,
)
from .models import (
    Role,
    RoomStatus,
    BookingStatus,
    SessionDescription,
    SignalingRoom,
    CallSession,
    Participants,
)
from .bookings import BookingStore, InMemoryBookingStore
from .authorization import SessionAuthorizationGate
from .lifecycle import SessionLifecycleBridge
from .mailbox import SignalingMailbox
from .task_registry import TaskRegistry

__all__ = [
    "SignalingError",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "InvalidPayload",
    "InvalidState",
    "MediaUnavailable",
    "RemoteDescriptionPending",
    "Role",
    "RoomStatus",
    "BookingStatus",
    "SessionDescription",
    "SignalingRoom",
    "CallSession",
    "Participants",
    "BookingStore",
    "InMemoryBookingStore",
    "SessionAuthorizationGate",
    "SessionLifecycleBridge",
    "SignalingMailbox",
    "TaskRegistry",
]
