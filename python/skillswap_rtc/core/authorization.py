"""Session authorization gate: only the two booked participants may signal."""

import logging
from typing import Optional

from .bookings import BookingStore
from .errors import Forbidden, Unauthenticated
from .models import Participants

logger = logging.getLogger("skillswap.authorization")


class SessionAuthorizationGate:
    """Confirms a caller is the teacher or the learner of a session."""

    def __init__(self, bookings: BookingStore):
        self.bookings = bookings

    async def authorize(self, caller_id: Optional[str], session_id: str) -> Participants:
        """
        Resolve the session participants for an authorized caller.

        Raises:
            Unauthenticated: no caller identity
            NotFound: the session does not exist
            Forbidden: the caller is not a participant
        """
        if not caller_id:
            raise Unauthenticated("Authentication required")

        participants = await self.bookings.get_participants(session_id)

        if not participants.includes(caller_id):
            logger.warning(f"Caller {caller_id} denied for session {session_id}")
            raise Forbidden("Unauthorized")

        return participants
