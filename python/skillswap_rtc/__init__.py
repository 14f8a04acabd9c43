"""
SkillSwap RTC - call signaling for booked skill-exchange sessions.

Two participants of an accepted booking negotiate a WebRTC call through a
shared per-session mailbox:
- Signaling mailbox (offer, answer, ICE candidates per role)
- Booking-aware authorization and lifecycle gate
- REST + WebSocket push API (aiohttp)
- Negotiation client that picks offerer/answerer from mailbox state (aiortc)

Usage:
    python -m skillswap_rtc serve
    python -m skillswap_rtc call --session <id> --token <jwt>

Environment Variables:
    SKILLSWAP_AUTH_SECRET - JWT signing secret
    SKILLSWAP_PORT - API port (default: 8090)
    SKILLSWAP_SERVER_URL - Signaling server used by `call`
    SKILLSWAP_REQUIRE_ACCEPTED - Gate signaling on booking status
"""

__version__ = "1.0.0"

from .config import SignalingConfig, get_config
from .core import SignalingMailbox, SessionLifecycleBridge, SignalingRoom

__all__ = [
    "SignalingConfig",
    "get_config",
    "SignalingMailbox",
    "SessionLifecycleBridge",
    "SignalingRoom",
]
