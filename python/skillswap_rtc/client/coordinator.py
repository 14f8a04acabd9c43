"""
Negotiation Coordinator.

Runs one participant's side of a call over the signaling mailbox:

1. Acquire local media.
2. Probe the room and pick a role: answer a live unanswered offer,
   otherwise publish a new offer. An ended room always starts a new
   negotiation.
3. Send local ICE candidates, in generation order, once our description
   is published.
4. Watch the room (push subscription, or polling every `poll_interval`
   seconds) and apply the remote answer once and every unseen remote
   candidate. Candidates that cannot be applied yet stay pending and are
   retried on the next tick.
5. On hangup stop watching, tell the mailbox, and release media and the
   connection even if the mailbox cannot be reached.

Two participants pressing "call" within the same poll window can both see
no live offer and both offer; the later offer wins. Calls are started by
people, so this glare window is accepted rather than arbitrated.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from ..core.errors import InvalidPayload, MediaUnavailable, RemoteDescriptionPending, SignalingError
from ..core.models import Role, RoomStatus, SessionDescription, SignalingRoom, candidate_key
from ..core.task_registry import TaskRegistry
from ..metrics import get_metrics
from .peer import PeerConnection
from .signaling_client import SignalingTransport

logger = logging.getLogger("skillswap.coordinator")

_PUSH_CLOSED = object()


class CallState(Enum):
    """Local call states."""
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring_media"
    ROLE_PROBING = "role_probing"
    OFFERING = "offering"
    ANSWERING = "answering"
    POLLING = "polling"
    CONNECTED = "connected"
    ENDED = "ended"


def choose_role(room: Optional[SignalingRoom]) -> Role:
    """Answer a live unanswered offer; offer in every other case."""
    if room is not None and room.has_live_offer:
        return Role.ANSWER
    return Role.OFFER


class NegotiationCoordinator:
    """Drives one peer connection through the mailbox handshake."""

    def __init__(
        self,
        session_id: str,
        transport: SignalingTransport,
        peer: PeerConnection,
        poll_interval: float = 1.5,
        use_push: bool = False,
        end_timeout: float = 5.0,
        on_state: Optional[Callable[[CallState], None]] = None,
        on_transport_state: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            session_id: Booked session to call in
            transport: Mailbox client authenticated as the local participant
            peer: Local peer connection
            poll_interval: Seconds between room polls (and retry ticks in push mode)
            use_push: Prefer the push subscription, falling back to polling
            end_timeout: Upper bound on the hangup notification
            on_state: Called on every local state change
            on_transport_state: Called with raw peer connection states
                ("connecting", "connected", "failed", ...)
        """
        self.session_id = session_id
        self.transport = transport
        self.peer = peer
        self.poll_interval = poll_interval
        self.use_push = use_push
        self.end_timeout = end_timeout
        self.on_state = on_state
        self.on_transport_state = on_transport_state

        self.state = CallState.IDLE
        self.role: Optional[Role] = None
        self.remote_ended = False

        self._tasks = TaskRegistry(f"call:{session_id}")
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._published = asyncio.Event()
        self._connected = asyncio.Event()
        self._ended = asyncio.Event()

        self._posted_offer: Optional[SessionDescription] = None
        self._answer_applied = False
        self._applied: Set[str] = set()
        self._rejected: Set[str] = set()
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._started_at: Optional[float] = None
        self._metrics = get_metrics()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _set_state(self, state: CallState) -> None:
        if self.state == state:
            return
        logger.info(f"[{self.session_id}] {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state is not None:
            self.on_state(state)

    @property
    def applied_candidates(self) -> Set[str]:
        return set(self._applied)

    @property
    def pending_candidates(self) -> Set[str]:
        return set(self._pending)

    @property
    def is_active(self) -> bool:
        return self.state not in (CallState.IDLE, CallState.ENDED)

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait until the transport reports connected (False on timeout or end)."""
        connected = asyncio.ensure_future(self._connected.wait())
        ended = asyncio.ensure_future(self._ended.wait())
        try:
            await asyncio.wait({connected, ended}, timeout=timeout,
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            connected.cancel()
            ended.cancel()
        return self._connected.is_set()

    async def wait_ended(self) -> None:
        await self._ended.wait()

    # ------------------------------------------------------------------
    # Call start
    # ------------------------------------------------------------------

    async def start(self) -> Role:
        """
        Start the call.

        Returns:
            The role this participant took

        Raises:
            MediaUnavailable: local capture failed (terminal, not retried)
            SignalingError: the mailbox refused the probe or our description
        """
        if self.state != CallState.IDLE:
            raise RuntimeError(f"Call already {self.state.value}")

        self._started_at = time.monotonic()
        self.peer.on_ice_candidate = self._on_local_candidate
        self.peer.on_connection_state = self._on_connection_state

        self._set_state(CallState.ACQUIRING_MEDIA)
        try:
            await self.peer.acquire_media()
        except MediaUnavailable:
            logger.warning(f"[{self.session_id}] Camera/microphone unavailable")
            self._metrics.call_finished("none", "media_unavailable")
            await self._teardown()
            raise

        try:
            self._set_state(CallState.ROLE_PROBING)
            room = await self.transport.get_room(self.session_id)
            self.role = choose_role(room)

            self._tasks.register("candidate_sender", self._send_candidates())

            if self.role is Role.ANSWER:
                await self._answer(room)
            else:
                await self._offer(room)
        except asyncio.CancelledError:
            await self._teardown()
            raise
        except Exception as e:
            logger.error(f"[{self.session_id}] Call setup failed: {e}")
            self._metrics.call_finished(self.role.value if self.role else "none", "failed")
            await self._teardown()
            raise

        if self.state == CallState.ENDED:
            # Hung up while the description was in flight
            return self.role

        self._published.set()
        if self.state != CallState.CONNECTED:
            self._set_state(CallState.POLLING)

        if self.role is Role.ANSWER and room is not None:
            await self._apply_room(room)

        watcher = self._watch_push() if self.use_push else self._poll_loop()
        self._tasks.register("room_watcher", watcher)
        return self.role

    async def _offer(self, room: Optional[SignalingRoom]) -> None:
        if room is not None and room.status == RoomStatus.ENDED:
            logger.info(f"[{self.session_id}] Previous call ended, starting a new negotiation")

        self._set_state(CallState.OFFERING)
        offer = await self.peer.create_offer()
        await self.peer.set_local_description(offer)
        self._posted_offer = self.peer.local_description or offer
        if self.state == CallState.ENDED:
            logger.info(f"[{self.session_id}] Hung up before the offer was sent")
            return
        await self.transport.post_offer(self.session_id, self._posted_offer)
        logger.info(f"[{self.session_id}] Offer sent, waiting for answer")

    async def _answer(self, room: SignalingRoom) -> None:
        self._set_state(CallState.ANSWERING)
        await self.peer.set_remote_description(room.offer)
        answer = await self.peer.create_answer()
        await self.peer.set_local_description(answer)
        if self.state == CallState.ENDED:
            logger.info(f"[{self.session_id}] Hung up before the answer was sent")
            return
        await self.transport.post_answer(self.session_id, self.peer.local_description or answer)
        logger.info(f"[{self.session_id}] Answer sent")

    # ------------------------------------------------------------------
    # Local candidates
    # ------------------------------------------------------------------

    def _on_local_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.state == CallState.ENDED:
            return
        self._outbox.put_nowait(candidate)

    async def _send_candidates(self) -> None:
        """Send local candidates in generation order once our description is out."""
        await self._published.wait()
        while True:
            candidate = await self._outbox.get()
            while True:
                try:
                    await self.transport.add_candidate(self.session_id, self.role, candidate)
                    break
                except SignalingError as e:
                    if e.status < 500:
                        logger.warning(f"[{self.session_id}] Candidate rejected: {e}")
                        break
                    logger.debug(f"[{self.session_id}] Candidate send failed, retrying: {e}")
                except Exception as e:
                    logger.debug(f"[{self.session_id}] Candidate send failed, retrying: {e}")
                await asyncio.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # Remote updates
    # ------------------------------------------------------------------

    def _on_connection_state(self, state: str) -> None:
        if self.on_transport_state is not None:
            self.on_transport_state(state)

        if state == "connected" and self.state not in (CallState.CONNECTED, CallState.ENDED):
            self._set_state(CallState.CONNECTED)
            self._connected.set()
            if self._started_at is not None:
                self._metrics.call_connected(
                    self.role.value if self.role else "none",
                    time.monotonic() - self._started_at,
                )
        elif state == "failed":
            logger.warning(f"[{self.session_id}] Transport failed")

    async def _apply_room(self, room: Optional[SignalingRoom]) -> None:
        """Apply whatever the room holds that we have not applied yet."""
        if room is None or self.role is None or self.state == CallState.ENDED:
            return

        if room.status == RoomStatus.ENDED and not self.remote_ended:
            self.remote_ended = True
            logger.info(f"[{self.session_id}] Room ended by the other side")

        if (
            self.role is Role.OFFER
            and room.answer is not None
            and not self._answer_applied
            and self.peer.signaling_state == "have-local-offer"
        ):
            if self._posted_offer is not None and room.offer != self._posted_offer:
                logger.warning(f"[{self.session_id}] Our offer was superseded, ignoring answer")
            else:
                await self.peer.set_remote_description(room.answer)
                self._answer_applied = True
                logger.info(f"[{self.session_id}] Remote answer applied")

        for candidate in room.candidates_for(self.role.other):
            key = candidate_key(candidate)
            if key in self._applied or key in self._rejected:
                continue
            self._pending.setdefault(key, candidate)

        await self._flush_pending()

    async def _flush_pending(self) -> None:
        for key, candidate in list(self._pending.items()):
            try:
                await self.peer.add_ice_candidate(candidate)
            except RemoteDescriptionPending:
                continue
            except InvalidPayload as e:
                logger.debug(f"[{self.session_id}] Dropping malformed candidate: {e}")
                self._pending.pop(key, None)
                self._rejected.add(key)
                continue
            except Exception as e:
                logger.debug(f"[{self.session_id}] Candidate not applied yet: {e}")
                continue
            self._pending.pop(key, None)
            self._applied.add(key)

    async def _poll_once(self) -> None:
        try:
            room = await self.transport.get_room(self.session_id)
            await self._apply_room(room)
        except Exception as e:
            self._metrics.poll_error()
            logger.debug(f"[{self.session_id}] Poll error ignored: {e}")

    async def _poll_loop(self) -> None:
        while True:
            await self._poll_once()
            await asyncio.sleep(self.poll_interval)

    async def _watch_push(self) -> None:
        """
        Apply pushed snapshots; retry pending candidates between pushes.
        Falls back to polling when the subscription fails or closes.
        """
        snapshots: asyncio.Queue = asyncio.Queue()

        async def pump():
            try:
                async for room in self.transport.subscribe(self.session_id):
                    snapshots.put_nowait(room)
            except NotImplementedError:
                logger.debug(f"[{self.session_id}] Transport has no push support")
            except Exception as e:
                logger.info(f"[{self.session_id}] Push subscription lost: {e}")
            finally:
                snapshots.put_nowait(_PUSH_CLOSED)

        self._tasks.register("push_pump", pump())

        while True:
            try:
                room = await asyncio.wait_for(snapshots.get(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                await self._retry_pending()
                continue

            if room is _PUSH_CLOSED:
                break
            try:
                await self._apply_room(room)
            except Exception as e:
                self._metrics.poll_error()
                logger.debug(f"[{self.session_id}] Push update ignored: {e}")

        logger.info(f"[{self.session_id}] Falling back to polling")
        await self._poll_loop()

    async def _retry_pending(self) -> None:
        if not self._pending:
            return
        try:
            await self._flush_pending()
        except Exception as e:
            logger.debug(f"[{self.session_id}] Retry tick failed: {e}")

    # ------------------------------------------------------------------
    # Hangup
    # ------------------------------------------------------------------

    async def hangup(self) -> None:
        """
        End the call locally and notify the mailbox.

        Local teardown happens even when the notification fails.
        """
        if self.state == CallState.ENDED:
            return

        self._tasks.cancel_all()
        role = self.role.value if self.role else "none"
        try:
            if self.role is not None:
                await asyncio.wait_for(
                    self.transport.end_room(self.session_id), timeout=self.end_timeout
                )
        except Exception as e:
            logger.warning(f"[{self.session_id}] Could not notify hangup: {e}")
        finally:
            await self._teardown()
            self._metrics.call_finished(role, "hangup")

    async def _teardown(self) -> None:
        self._tasks.cancel_all()
        self.peer.on_ice_candidate = None
        self.peer.on_connection_state = None
        try:
            await self.peer.close()
        except Exception as e:
            logger.warning(f"[{self.session_id}] Error closing peer connection: {e}")

        self._pending.clear()
        self._applied.clear()
        self._rejected.clear()
        self._set_state(CallState.ENDED)
        self._ended.set()
