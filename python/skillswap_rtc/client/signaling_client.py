"""
Signaling client.

SignalingTransport is what the negotiation coordinator needs from the
mailbox. HttpSignalingClient implements it against the REST API with
aiohttp and offers a WebSocket push subscription through `websockets`.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

import aiohttp
import websockets

from ..core.errors import InvalidPayload, error_for_status
from ..core.models import Role, SessionDescription, SignalingRoom

logger = logging.getLogger("skillswap.client")


class SignalingTransport(ABC):
    """Mailbox operations as seen by one authenticated participant."""

    @abstractmethod
    async def get_room(self, session_id: str) -> Optional[SignalingRoom]:
        pass

    @abstractmethod
    async def post_offer(self, session_id: str, offer: SessionDescription) -> None:
        pass

    @abstractmethod
    async def post_answer(self, session_id: str, answer: SessionDescription) -> None:
        pass

    @abstractmethod
    async def add_candidate(self, session_id: str, role: Role, candidate: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def end_room(self, session_id: str) -> None:
        pass

    def subscribe(self, session_id: str) -> AsyncIterator[Optional[SignalingRoom]]:
        """
        Yield room snapshots as they change.

        Transports without push support raise NotImplementedError; the
        coordinator then polls.
        """
        raise NotImplementedError("push subscription not supported")

    async def close(self) -> None:
        pass


class HttpSignalingClient(SignalingTransport):
    """REST + WebSocket client for the signaling API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        ws_url: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: HTTP root of the signaling service
            token: Caller JWT sent as a bearer token
            ws_url: WebSocket root (derived from base_url when omitted)
            timeout: Per-request timeout in seconds
            session: Existing aiohttp session to reuse (not closed by us)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        if ws_url is None:
            if self.base_url.startswith("https://"):
                ws_url = "wss://" + self.base_url[len("https://"):]
            elif self.base_url.startswith("http://"):
                ws_url = "ws://" + self.base_url[len("http://"):]
            else:
                ws_url = self.base_url
        self.ws_url = ws_url.rstrip("/")
        self.timeout = timeout

        self._session = session
        self._owns_session = session is None

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        session = self._get_session()
        async with session.request(
            method, f"{self.base_url}{path}", headers=self._headers, **kwargs
        ) as resp:
            try:
                data = await resp.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError):
                data = None

            if resp.status >= 400:
                message = data.get("error", "") if isinstance(data, dict) else ""
                raise error_for_status(resp.status, message or resp.reason or "")

            if not isinstance(data, dict):
                raise InvalidPayload(f"Unexpected response from {path}")
            return data

    async def _signal(self, session_id: str, action: str, **payload: Any) -> None:
        body = {"action": action, "sessionId": session_id}
        body.update(payload)
        await self._request("POST", "/api/webrtc", json=body)

    async def get_room(self, session_id: str) -> Optional[SignalingRoom]:
        data = await self._request("GET", "/api/webrtc", params={"sessionId": session_id})
        room = data.get("room")
        if room is None:
            return None
        return SignalingRoom.from_dict(room)

    async def post_offer(self, session_id: str, offer: SessionDescription) -> None:
        await self._signal(session_id, "create-offer", offer=offer.to_dict())

    async def post_answer(self, session_id: str, answer: SessionDescription) -> None:
        await self._signal(session_id, "create-answer", answer=answer.to_dict())

    async def add_candidate(self, session_id: str, role: Role, candidate: Dict[str, Any]) -> None:
        await self._signal(session_id, "add-candidate", role=role.value, candidate=candidate)

    async def end_room(self, session_id: str) -> None:
        await self._signal(session_id, "end")

    async def subscribe(self, session_id: str) -> AsyncIterator[Optional[SignalingRoom]]:
        """
        Stream room snapshots over the push WebSocket.

        Malformed frames are skipped. Returns when the server closes the
        socket; connection errors propagate to the caller.
        """
        url = f"{self.ws_url}/api/webrtc/ws?sessionId={quote(session_id)}"
        async with websockets.connect(
            url,
            additional_headers=self._headers,
            ping_interval=20.0,
            ping_timeout=10.0,
        ) as ws:
            logger.debug(f"[{session_id}] Push subscription open")
            async for raw in ws:
                try:
                    message = json.loads(raw)
                    if message.get("type") != "room":
                        continue
                    room = message.get("room")
                    yield SignalingRoom.from_dict(room) if room else None
                except (json.JSONDecodeError, AttributeError, InvalidPayload) as e:
                    logger.debug(f"[{session_id}] Dropped malformed push frame: {e}")

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
