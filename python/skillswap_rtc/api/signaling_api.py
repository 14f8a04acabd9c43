"""
Signaling REST API.

Endpoints used by the call client (browser or `skillswap_rtc.client`):

    GET  /api/webrtc?sessionId=...      -> {"room": {...} | null}
    POST /api/webrtc                    -> {"success": true}
         body: {"action": "create-offer" | "create-answer" | "add-candidate" | "end",
                "sessionId": ..., "offer" | "answer" | "role" + "candidate": ...}
    GET  /api/webrtc/ws?sessionId=...   WebSocket push of room snapshots

Booking endpoints backed by the in-memory store:

    GET  /api/sessions                  -> {"sessions": [...]}
    POST /api/sessions                  -> {"success": true, "sessionId": ...}
    PUT  /api/sessions                  -> {"success": true, "session": {...}}

Health probes:

    GET  /health/live
    GET  /health/ready
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from aiohttp import WSMsgType, web

from ..config import SignalingConfig
from ..core.bookings import InMemoryBookingStore
from ..core.errors import InvalidPayload, SignalingError
from ..core.lifecycle import SessionLifecycleBridge
from ..core.mailbox import SignalingMailbox
from ..core.task_registry import TaskRegistry
from ..metrics import get_metrics
from .auth import CallerAuth

logger = logging.getLogger("skillswap.api")

SIGNAL_ACTIONS = ("create-offer", "create-answer", "add-candidate", "end")


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map signaling errors onto JSON error responses."""
    try:
        return await handler(request)
    except SignalingError as e:
        return web.json_response(e.to_dict(), status=e.status)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"{request.method} {request.path} error: {e}", exc_info=e)
        return web.json_response({"error": "Internal server error"}, status=500)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidPayload("Invalid JSON payload")
    if not isinstance(data, dict):
        raise InvalidPayload("Invalid request body")
    return data


class SignalingAPI:
    """
    HTTP front of the signaling mailbox and booking store.

    The mailbox is the only shared mutable state; every handler resolves
    the caller from the bearer token and lets the mailbox enforce who may
    touch which room.
    """

    def __init__(
        self,
        mailbox: SignalingMailbox,
        bookings: InMemoryBookingStore,
        auth: CallerAuth,
        host: str = "127.0.0.1",
        port: int = 8090,
        sweep_interval: float = 60.0,
        ended_room_ttl: float = 600.0,
    ):
        self.mailbox = mailbox
        self.bookings = bookings
        self.auth = auth
        self.host = host
        self.port = port
        self.sweep_interval = sweep_interval
        self.ended_room_ttl = ended_room_ttl

        self._tasks = TaskRegistry("api")
        self._runner: Optional[web.AppRunner] = None
        self._started = False
        self._metrics = get_metrics()

    @classmethod
    def from_config(cls, config: SignalingConfig) -> "SignalingAPI":
        """Wire booking store, lifecycle bridge, mailbox and auth from config."""
        bookings = InMemoryBookingStore()
        if config.bookings_path:
            bookings.load_file(config.bookings_path)

        lifecycle = SessionLifecycleBridge(bookings, require_accepted=config.require_accepted)
        bookings.add_listener(lifecycle.on_status_changed)

        mailbox = SignalingMailbox(
            lifecycle,
            reset_candidates_on_offer=config.reset_candidates_on_offer,
            subscriber_queue_maxsize=config.subscriber_queue_maxsize,
        )
        auth = CallerAuth(
            config.auth_secret,
            algorithm=config.auth_algorithm,
            token_ttl_hours=config.token_ttl_hours,
        )
        return cls(
            mailbox,
            bookings,
            auth,
            host=config.host,
            port=config.port,
            sweep_interval=config.sweep_interval,
            ended_room_ttl=config.ended_room_ttl,
        )

    # ------------------------------------------------------------------
    # Signaling
    # ------------------------------------------------------------------

    async def get_room(self, request: web.Request) -> web.Response:
        """
        GET /api/webrtc?sessionId=...

        Returns {"room": null} when nobody has called yet.
        """
        caller_id = self.auth.caller_from_request(request)
        session_id = request.query.get("sessionId")
        if not session_id:
            raise InvalidPayload("sessionId required")

        room = await self.mailbox.get_room(session_id, caller_id)
        return web.json_response({"room": room.to_dict() if room else None})

    async def post_signal(self, request: web.Request) -> web.Response:
        """
        POST /api/webrtc

        Body: {"action": ..., "sessionId": ..., payload fields}
        """
        caller_id = self.auth.caller_from_request(request)
        body = await _read_json(request)

        action = body.get("action")
        session_id = body.get("sessionId")
        if not action or not session_id:
            raise InvalidPayload("Missing required fields: action, sessionId")
        if not isinstance(action, str) or not isinstance(session_id, str):
            raise InvalidPayload("action and sessionId must be strings")
        if action not in SIGNAL_ACTIONS:
            raise InvalidPayload("Unknown action")

        started = time.perf_counter()
        outcome = "ok"
        try:
            if action == "create-offer":
                await self.mailbox.post_offer(session_id, caller_id, body.get("offer"))
            elif action == "create-answer":
                await self.mailbox.post_answer(session_id, caller_id, body.get("answer"))
            elif action == "add-candidate":
                role = body.get("role")
                candidate = body.get("candidate")
                if not role or not candidate:
                    raise InvalidPayload("Missing candidate or role")
                await self.mailbox.add_candidate(session_id, caller_id, role, candidate)
            else:
                await self.mailbox.end_room(session_id, caller_id)
        except SignalingError as e:
            outcome = e.code
            raise
        finally:
            self._metrics.request_handled(action, outcome, time.perf_counter() - started)

        return web.json_response({"success": True})

    async def room_updates(self, request: web.Request) -> web.StreamResponse:
        """
        GET /api/webrtc/ws?sessionId=...

        Pushes {"type": "room", "room": {...} | null} frames: the current
        state on connect, then one frame per mutation.
        """
        caller_id = self.auth.caller_from_request(request)
        session_id = request.query.get("sessionId")
        if not session_id:
            raise InvalidPayload("sessionId required")

        # Authorize before upgrading so failures are plain HTTP errors
        await self.mailbox.lifecycle.require_participant(session_id, caller_id)

        ws = web.WebSocketResponse(heartbeat=20.0)
        await ws.prepare(request)

        queue = self.mailbox.subscribe(session_id)
        self._metrics.subscriber_change(1)
        logger.debug(f"[{session_id}] Push subscriber connected: {caller_id}")

        receiver = asyncio.ensure_future(self._drain_client(ws))
        try:
            while not ws.closed:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    break
                await ws.send_json({"type": "room", "room": getter.result()})
        except ConnectionResetError:
            logger.debug(f"[{session_id}] Push subscriber went away: {caller_id}")
        finally:
            receiver.cancel()
            self.mailbox.unsubscribe(session_id, queue)
            self._metrics.subscriber_change(-1)
            await ws.close()

        return ws

    @staticmethod
    async def _drain_client(ws: web.WebSocketResponse) -> None:
        """Consume client frames until the socket closes; content is ignored."""
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                break

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    async def list_sessions(self, request: web.Request) -> web.Response:
        """GET /api/sessions"""
        caller_id = self.auth.caller_from_request(request)
        sessions = await self.bookings.list_for(caller_id)
        return web.json_response({"sessions": [s.to_dict() for s in sessions]})

    async def create_session(self, request: web.Request) -> web.Response:
        """
        POST /api/sessions

        Body: {"skillId", "teacherId", "skillTitle"?, "learnerMessage"?,
               "scheduledFor"?, "duration"?}
        """
        caller_id = self.auth.caller_from_request(request)
        body = await _read_json(request)

        session = await self.bookings.create(
            learner_id=caller_id,
            teacher_id=body.get("teacherId"),
            skill_id=body.get("skillId"),
            skill_title=body.get("skillTitle") or "",
            learner_message=body.get("learnerMessage") or "",
            scheduled_for=body.get("scheduledFor"),
            duration=body.get("duration"),
        )
        return web.json_response({
            "success": True,
            "sessionId": session.id,
            "session": session.to_dict(),
        })

    async def update_session(self, request: web.Request) -> web.Response:
        """
        PUT /api/sessions

        Body: {"sessionId", "action": accept|decline|complete|schedule|cancel,
               "scheduledFor"?, "duration"?}
        """
        caller_id = self.auth.caller_from_request(request)
        body = await _read_json(request)

        session_id = body.get("sessionId")
        action = body.get("action")
        if not session_id or not action:
            raise InvalidPayload("Missing required fields: sessionId, action")
        if not isinstance(session_id, str) or not isinstance(action, str):
            raise InvalidPayload("sessionId and action must be strings")

        session = await self.bookings.apply_action(
            session_id,
            caller_id,
            action,
            scheduled_for=body.get("scheduledFor"),
            duration=body.get("duration"),
        )
        return web.json_response({"success": True, "session": session.to_dict()})

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def live(self, request: web.Request) -> web.Response:
        return web.Response(text="OK", status=200)

    async def ready(self, request: web.Request) -> web.Response:
        components = {
            "mailbox": True,
            "bookings": True,
            "sweeper": self._tasks.is_running("room_sweeper") or not self._started,
        }
        healthy = all(components.values())
        return web.json_response(
            {
                "status": "healthy" if healthy else "unhealthy",
                "components": components,
                "rooms": self.mailbox.get_stats(),
                "bookings": self.bookings.count,
            },
            status=200 if healthy else 503,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        """Create the aiohttp application (also used directly by tests)."""
        app = web.Application(middlewares=[error_middleware])
        app.router.add_get("/api/webrtc", self.get_room)
        app.router.add_post("/api/webrtc", self.post_signal)
        app.router.add_get("/api/webrtc/ws", self.room_updates)
        app.router.add_get("/api/sessions", self.list_sessions)
        app.router.add_post("/api/sessions", self.create_session)
        app.router.add_put("/api/sessions", self.update_session)
        app.router.add_get("/health/live", self.live)
        app.router.add_get("/health/ready", self.ready)
        return app

    async def start(self) -> None:
        """Start the API server and the room sweeper."""
        if self._started:
            return

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        self._tasks.register(
            "room_sweeper",
            self.mailbox.run_sweeper(self.sweep_interval, self.ended_room_ttl),
        )

        self._started = True
        logger.info(f"Signaling API started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the API server."""
        await self._tasks.shutdown()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._started = False
        logger.info("Signaling API stopped")
