"""Call client: signaling transport, peer adapter and negotiation coordinator."""
from .signaling_client import SignalingTransport, HttpSignalingClient
from .peer import PeerConnection, AiortcPeerConnection, default_capture_devices
from .coordinator import CallState, NegotiationCoordinator, choose_role

__all__ = [
    "SignalingTransport",
    "HttpSignalingClient",
    "PeerConnection",
    "AiortcPeerConnection",
    "default_capture_devices",
    "CallState",
    "NegotiationCoordinator",
    "choose_role",
]
