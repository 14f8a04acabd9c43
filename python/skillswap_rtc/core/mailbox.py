"""
Signaling Mailbox Store.

One SignalingRoom per booked session, shared by exactly two participants.
Mutations for a session run under a per-session lock so a re-offer (clear
answer, set offer) is never observed half-applied. Every mutation bumps the
room revision and pushes a snapshot to subscribers.

Candidates are buffered unconditionally: they may arrive before either
description (trickle ICE), and the two roles append to disjoint lists.
"""

import asyncio
import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

from ..metrics import get_metrics
from .errors import InvalidState, NotFound
from .lifecycle import SessionLifecycleBridge
from .models import (
    Role,
    RoomStatus,
    SessionDescription,
    SignalingRoom,
    utcnow,
    validate_candidate,
)

logger = logging.getLogger("skillswap.mailbox")


class SignalingMailbox:
    """In-process mailbox store keyed by session id."""

    def __init__(
        self,
        lifecycle: SessionLifecycleBridge,
        reset_candidates_on_offer: bool = True,
        subscriber_queue_maxsize: int = 64,
    ):
        """
        Initialize the mailbox.

        Args:
            lifecycle: Gate consulted before every operation
            reset_candidates_on_offer: Clear both candidate lists when a new
                offer replaces an earlier negotiation
            subscriber_queue_maxsize: Per-subscriber snapshot backlog
                (oldest snapshot dropped when full)
        """
        self.lifecycle = lifecycle
        self.reset_candidates_on_offer = reset_candidates_on_offer
        self.subscriber_queue_maxsize = subscriber_queue_maxsize

        self._rooms: Dict[str, SignalingRoom] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        self._metrics = get_metrics()

        lifecycle.attach_mailbox(self)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_room(self, session_id: str, caller_id: Optional[str]) -> Optional[SignalingRoom]:
        """
        Read the room.

        Returns:
            A copy of the room, or None if nobody has called yet
        """
        await self.lifecycle.require_participant(session_id, caller_id)
        room = self._rooms.get(session_id)
        return copy.deepcopy(room) if room else None

    async def post_offer(self, session_id: str, caller_id: str, offer: Any) -> SignalingRoom:
        """
        Publish an offer, creating the room or restarting negotiation in place.

        Raises:
            InvalidPayload: offer type is not "offer" or sdp is empty
        """
        await self.lifecycle.require_signalable(session_id, caller_id)
        description = SessionDescription.from_dict(offer, "offer")

        async with self._lock_for(session_id):
            room = self._rooms.get(session_id)
            if room is None:
                room = SignalingRoom(session_id=session_id)
                self._rooms[session_id] = room
                self._metrics.room_opened()
                logger.info(f"[{session_id}] Room created by {caller_id}")
            elif room.status == RoomStatus.ENDED:
                # A new call after hangup starts from a clean mailbox
                room.offer_candidates = []
                room.answer_candidates = []
                room.ended_at = None
                self._metrics.room_opened()
                logger.info(f"[{session_id}] New call in ended room by {caller_id}")
            else:
                if self.reset_candidates_on_offer:
                    room.offer_candidates = []
                    room.answer_candidates = []
                logger.info(f"[{session_id}] Renegotiation offer by {caller_id}")

            room.status = RoomStatus.OPEN
            room.offer = description
            room.offered_by = caller_id
            room.answer = None
            room.answered_by = None
            room.touch()
            snapshot = room.to_dict()

        self._publish(session_id, snapshot)
        return copy.deepcopy(room)

    async def post_answer(self, session_id: str, caller_id: str, answer: Any) -> SignalingRoom:
        """
        Publish an answer to the live offer.

        Raises:
            NotFound: no room
            InvalidPayload: answer type is not "answer" or sdp is empty
            InvalidState: room is not open or has no offer
        """
        await self.lifecycle.require_signalable(session_id, caller_id)
        description = SessionDescription.from_dict(answer, "answer")

        async with self._lock_for(session_id):
            room = self._rooms.get(session_id)
            if room is None:
                raise NotFound("Room not found")
            if room.status != RoomStatus.OPEN or room.offer is None:
                raise InvalidState(f"No open offer to answer (room is {room.status.value})")
            if room.offered_by == caller_id:
                raise InvalidState("Cannot answer your own offer")

            room.answer = description
            room.answered_by = caller_id
            room.status = RoomStatus.ANSWERED
            room.touch()
            snapshot = room.to_dict()

        logger.info(f"[{session_id}] Answer posted by {caller_id}")
        self._publish(session_id, snapshot)
        return copy.deepcopy(room)

    async def add_candidate(
        self,
        session_id: str,
        caller_id: str,
        role: Any,
        candidate: Any,
    ) -> SignalingRoom:
        """
        Append an ICE candidate to the list of the given role.

        Raises:
            NotFound: no room
            InvalidPayload: unknown role or empty candidate
        """
        await self.lifecycle.require_signalable(session_id, caller_id)
        parsed_role = role if isinstance(role, Role) else Role.parse(role)
        candidate = validate_candidate(candidate)

        async with self._lock_for(session_id):
            room = self._rooms.get(session_id)
            if room is None:
                raise NotFound("Room not found")

            room.candidates_for(parsed_role).append(copy.deepcopy(candidate))
            room.touch()
            snapshot = room.to_dict()

        self._metrics.candidate_added(parsed_role.value)
        logger.debug(f"[{session_id}] {parsed_role.value} candidate from {caller_id}")
        self._publish(session_id, snapshot)
        return copy.deepcopy(room)

    async def end_room(self, session_id: str, caller_id: str) -> Optional[SignalingRoom]:
        """Mark the room ended. No-op when there is no room."""
        await self.lifecycle.require_participant(session_id, caller_id)

        async with self._lock_for(session_id):
            room = self._rooms.get(session_id)
            if room is None:
                return None
            if room.status == RoomStatus.ENDED:
                return copy.deepcopy(room)

            room.status = RoomStatus.ENDED
            room.ended_at = utcnow()
            room.touch()
            snapshot = room.to_dict()

        self._metrics.room_closed("ended")
        logger.info(f"[{session_id}] Room ended by {caller_id}")
        self._publish(session_id, snapshot)
        return copy.deepcopy(room)

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    async def expire_room(self, session_id: str) -> bool:
        """
        Delete a room regardless of state (booking finished).

        Returns:
            True if a room was removed
        """
        async with self._lock_for(session_id):
            room = self._rooms.pop(session_id, None)

        self._locks.pop(session_id, None)
        if room is None:
            return False

        if room.status != RoomStatus.ENDED:
            self._metrics.room_closed("expired")
        logger.info(f"[{session_id}] Room expired")
        self._publish(session_id, None)
        return True

    async def sweep_ended_rooms(self, ttl: float, now: Optional[datetime] = None) -> int:
        """
        Remove rooms that have been ended for longer than `ttl` seconds.

        Returns:
            Number of rooms removed
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=ttl)
        stale = [
            session_id
            for session_id, room in self._rooms.items()
            if room.status == RoomStatus.ENDED and room.ended_at and room.ended_at <= cutoff
        ]

        removed = 0
        for session_id in stale:
            if await self.expire_room(session_id):
                removed += 1

        if removed:
            logger.info(f"Swept {removed} ended rooms")
        return removed

    async def run_sweeper(self, interval: float, ttl: float) -> None:
        """Periodic sweep loop; runs until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_ended_rooms(ttl)
            except Exception as e:
                logger.error(f"Room sweep failed: {e}")

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, session_id: str) -> asyncio.Queue:
        """
        Subscribe to room snapshots for a session.

        The caller must already be authorized. The queue is seeded with the
        current snapshot (None if there is no room yet).
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.subscriber_queue_maxsize)
        self._subscribers.setdefault(session_id, set()).add(queue)
        room = self._rooms.get(session_id)
        queue.put_nowait(room.to_dict() if room else None)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(session_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(session_id, None)

    def _publish(self, session_id: str, snapshot: Optional[Dict[str, Any]]) -> None:
        for queue in list(self._subscribers.get(session_id, ())):
            try:
                queue.put_nowait(snapshot)
            except asyncio.QueueFull:
                # Snapshots are full state, so only the newest matters
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                queue.put_nowait(snapshot)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def subscriber_count(self) -> int:
        return sum(len(q) for q in self._subscribers.values())

    def get_stats(self) -> dict:
        statuses: Dict[str, int] = {}
        for room in self._rooms.values():
            statuses[room.status.value] = statuses.get(room.status.value, 0) + 1
        return {
            "rooms": self.room_count,
            "by_status": statuses,
            "subscribers": self.subscriber_count,
        }
