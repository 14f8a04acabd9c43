"""
Session lifecycle bridge.

Maps booking status onto signaling permission and reacts to booking
transitions: when a booking is completed, declined or cancelled its
signaling room is expired and post-call hooks run (recordings, certificates
and similar bookkeeping live in other services).
"""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from .authorization import SessionAuthorizationGate
from .bookings import BookingStore
from .errors import InvalidState, SignalingError
from .models import (
    SIGNALABLE_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    CallSession,
    Participants,
)

if TYPE_CHECKING:
    from .mailbox import SignalingMailbox

logger = logging.getLogger("skillswap.lifecycle")

CompletionHook = Callable[[CallSession], Awaitable[None]]


class SessionLifecycleBridge:
    """Decides who may signal and when."""

    def __init__(
        self,
        bookings: BookingStore,
        require_accepted: bool = True,
        gate: Optional[SessionAuthorizationGate] = None,
    ):
        """
        Args:
            bookings: Booking store consulted for participants and status
            require_accepted: Refuse signaling unless the booking is
                accepted (or scheduled). False keeps the lenient
                participant-only rule.
            gate: Authorization gate (built from `bookings` if omitted)
        """
        self.bookings = bookings
        self.require_accepted = require_accepted
        self.gate = gate or SessionAuthorizationGate(bookings)
        self._mailbox: Optional["SignalingMailbox"] = None
        self._completion_hooks: List[CompletionHook] = []

    def attach_mailbox(self, mailbox: "SignalingMailbox") -> None:
        self._mailbox = mailbox

    def add_completion_hook(self, hook: CompletionHook) -> None:
        """Register post-call bookkeeping run when a booking completes."""
        self._completion_hooks.append(hook)

    async def require_participant(self, session_id: str, caller_id: Optional[str]) -> Participants:
        return await self.gate.authorize(caller_id, session_id)

    async def require_signalable(self, session_id: str, caller_id: Optional[str]) -> Participants:
        """
        Authorize the caller and, when configured, check the booking status.

        Raises:
            InvalidState: booking is not accepted/scheduled
        """
        participants = await self.gate.authorize(caller_id, session_id)
        if self.require_accepted:
            status = await self.bookings.get_status(session_id)
            if status not in SIGNALABLE_STATUSES:
                raise InvalidState(f"Session is {status.value}, calls are not allowed")
        return participants

    async def can_signal(self, session_id: str, caller_id: Optional[str]) -> bool:
        try:
            await self.require_signalable(session_id, caller_id)
        except SignalingError:
            return False
        return True

    async def on_status_changed(self, session: CallSession) -> None:
        """Booking store listener."""
        if session.status not in TERMINAL_STATUSES:
            return

        if self._mailbox is not None:
            await self._mailbox.expire_room(session.id)

        if session.status == BookingStatus.COMPLETED:
            for hook in self._completion_hooks:
                try:
                    await hook(session)
                except Exception as e:
                    logger.error(f"Completion hook failed for session {session.id}: {e}")
