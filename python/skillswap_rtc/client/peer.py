"""
Peer connection abstraction.

The coordinator drives a PeerConnection without knowing the media stack.
AiortcPeerConnection is the production implementation on top of aiortc:
local capture through MediaPlayer, remote tracks drained into a
MediaBlackhole (or a MediaRecorder when a recording path is given).
"""

import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..core.errors import InvalidPayload, MediaUnavailable, RemoteDescriptionPending
from ..core.models import SessionDescription

logger = logging.getLogger("skillswap.peer")

CandidateCallback = Callable[[Dict[str, Any]], None]
StateCallback = Callable[[str], None]


class PeerConnection(ABC):
    """What the negotiation coordinator needs from a WebRTC peer."""

    def __init__(self):
        self.on_ice_candidate: Optional[CandidateCallback] = None
        self.on_connection_state: Optional[StateCallback] = None

    def _emit_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.on_ice_candidate is not None:
            self.on_ice_candidate(candidate)

    def _emit_state(self, state: str) -> None:
        if self.on_connection_state is not None:
            self.on_connection_state(state)

    @abstractmethod
    async def acquire_media(self) -> None:
        """
        Capture local audio and video and attach the tracks.

        Raises:
            MediaUnavailable: capture denied or unsupported
        """
        pass

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        pass

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        pass

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        pass

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        pass

    @abstractmethod
    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        """
        Apply a remote candidate.

        Raises:
            RemoteDescriptionPending: remote description not set yet
            InvalidPayload: the candidate cannot be parsed
        """
        pass

    @property
    @abstractmethod
    def signaling_state(self) -> str:
        pass

    @property
    def local_description(self) -> Optional[SessionDescription]:
        """Local description after ICE gathering, if the stack exposes it."""
        return None

    @abstractmethod
    async def close(self) -> None:
        """Stop local tracks and close the connection."""
        pass


def default_capture_devices() -> List[Dict[str, Any]]:
    """
    Platform defaults for MediaPlayer capture.

    Returns:
        List of MediaPlayer kwargs (file, format, options)
    """
    if sys.platform.startswith("linux"):
        return [
            {"file": "/dev/video0", "format": "v4l2",
             "options": {"video_size": "1280x720", "framerate": "30"}},
            {"file": "default", "format": "pulse", "options": {}},
        ]
    if sys.platform == "darwin":
        return [
            {"file": "default:default", "format": "avfoundation",
             "options": {"video_size": "1280x720", "framerate": "30"}},
        ]
    return []


class AiortcPeerConnection(PeerConnection):
    """aiortc-backed peer connection."""

    def __init__(
        self,
        stun_urls: List[str],
        capture_devices: Optional[List[Dict[str, Any]]] = None,
        record_to: Optional[str] = None,
    ):
        """
        Initialize the peer.

        Args:
            stun_urls: STUN servers used for ICE gathering
            capture_devices: MediaPlayer kwargs per capture source
                (platform defaults when omitted)
            record_to: File path to record remote media into
        """
        super().__init__()
        self.stun_urls = list(stun_urls)
        self.capture_devices = (
            capture_devices if capture_devices is not None else default_capture_devices()
        )
        self.record_to = record_to

        self._pc = RTCPeerConnection(
            configuration=RTCConfiguration(iceServers=[RTCIceServer(urls=self.stun_urls)])
        )
        self._players: List[MediaPlayer] = []
        self._sink = MediaRecorder(record_to) if record_to else MediaBlackhole()
        self._sink_started = False
        self._emitted: set = set()

        @self._pc.on("connectionstatechange")
        async def on_connectionstatechange():
            logger.info(f"Connection state: {self._pc.connectionState}")
            self._emit_state(self._pc.connectionState)

        @self._pc.on("track")
        def on_track(track):
            logger.info(f"Remote {track.kind} track received")
            self._sink.addTrack(track)

    async def acquire_media(self) -> None:
        if not self.capture_devices:
            raise MediaUnavailable(f"No capture devices known for platform {sys.platform}")

        tracks = []
        for device in self.capture_devices:
            try:
                player = MediaPlayer(
                    device["file"],
                    format=device.get("format"),
                    options=device.get("options") or {},
                )
            except Exception as e:
                for opened in self._players:
                    self._stop_player(opened)
                self._players.clear()
                raise MediaUnavailable(f"Cannot open {device['file']}: {e}")
            self._players.append(player)
            tracks.extend(t for t in (player.audio, player.video) if t is not None)

        if not tracks:
            raise MediaUnavailable("Capture devices produced no audio or video track")

        for track in tracks:
            self._pc.addTrack(track)
        logger.info(f"Local media attached: {', '.join(t.kind for t in tracks)}")

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        # aiortc gathers all candidates here; hand them out afterwards
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        self._emit_local_candidates()

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        if not self._sink_started:
            await self._sink.start()
            self._sink_started = True

    def _emit_local_candidates(self) -> None:
        for index, transceiver in enumerate(self._pc.getTransceivers()):
            dtls = transceiver.sender.transport
            if dtls is None:
                continue
            gatherer = dtls.transport.iceGatherer
            for candidate in gatherer.getLocalCandidates():
                record = {
                    "candidate": "candidate:" + candidate_to_sdp(candidate),
                    "sdpMid": transceiver.mid,
                    "sdpMLineIndex": index,
                }
                key = (record["candidate"], record["sdpMid"])
                if key in self._emitted:
                    continue
                self._emitted.add(key)
                self._emit_candidate(record)

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self._pc.remoteDescription is None:
            raise RemoteDescriptionPending()

        text = candidate.get("candidate")
        if not text:
            # End-of-candidates marker
            return
        if text.startswith("candidate:"):
            text = text[len("candidate:"):]

        try:
            ice = candidate_from_sdp(text)
        except Exception as e:
            raise InvalidPayload(f"Malformed candidate: {e}")
        ice.sdpMid = candidate.get("sdpMid")
        ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
        if ice.sdpMid is None and ice.sdpMLineIndex is None:
            raise InvalidPayload("Candidate has neither sdpMid nor sdpMLineIndex")

        await self._pc.addIceCandidate(ice)

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def local_description(self) -> Optional[SessionDescription]:
        desc = self._pc.localDescription
        if desc is None:
            return None
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    @staticmethod
    def _stop_player(player: MediaPlayer) -> None:
        for track in (player.audio, player.video):
            if track is not None:
                track.stop()

    async def close(self) -> None:
        for player in self._players:
            self._stop_player(player)
        self._players.clear()

        if self._sink_started:
            await self._sink.stop()
            self._sink_started = False

        await self._pc.close()
        logger.info("Peer connection closed")
