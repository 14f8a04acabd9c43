"""
Signaling service configuration with environment variable support.

Environment Variables:
    SKILLSWAP_HOST - API bind host (default: 127.0.0.1)
    SKILLSWAP_PORT - API port (default: 8090)
    SKILLSWAP_AUTH_SECRET - JWT signing secret for caller identity
    SKILLSWAP_REQUIRE_ACCEPTED - Only allow signaling for accepted bookings (true/false)
    SKILLSWAP_RESET_CANDIDATES_ON_OFFER - Clear candidate lists on re-offer (true/false)
    SKILLSWAP_ENDED_ROOM_TTL - Seconds an ended room is kept before sweeping
    SKILLSWAP_POLL_INTERVAL - Client poll interval in seconds (default: 1.5)
    SKILLSWAP_STUN_URLS - Comma-separated STUN server URLs
    SKILLSWAP_BOOKINGS_PATH - Optional JSON file with seed bookings
    SKILLSWAP_METRICS_PORT - Prometheus exporter port (disabled when unset)
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_STUN_URLS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _split_urls(value: str) -> List[str]:
    """Split comma-separated URL list and strip whitespace."""
    urls = []
    for raw in value.split(","):
        url = raw.strip()
        if url and not url.startswith("#"):
            urls.append(url)
    return urls


def _get_stun_urls_from_env() -> List[str]:
    value = os.getenv("SKILLSWAP_STUN_URLS")
    if not value:
        return list(DEFAULT_STUN_URLS)
    return _split_urls(value)


def _get_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return None
    return int(value)


@dataclass
class SignalingConfig:
    """Signaling service and client configuration."""

    # API server
    host: str = field(default_factory=lambda: os.getenv("SKILLSWAP_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("SKILLSWAP_PORT", "8090")))

    # Caller identity
    auth_secret: str = field(
        default_factory=lambda: os.getenv("SKILLSWAP_AUTH_SECRET", "")
    )
    auth_algorithm: str = field(
        default_factory=lambda: os.getenv("SKILLSWAP_AUTH_ALGORITHM", "HS256")
    )
    token_ttl_hours: float = field(
        default_factory=lambda: float(os.getenv("SKILLSWAP_TOKEN_TTL_HOURS", "12.0"))
    )

    # Mailbox policy
    require_accepted: bool = field(
        default_factory=lambda: _env_flag("SKILLSWAP_REQUIRE_ACCEPTED", "true")
    )
    reset_candidates_on_offer: bool = field(
        default_factory=lambda: _env_flag("SKILLSWAP_RESET_CANDIDATES_ON_OFFER", "true")
    )
    ended_room_ttl: float = field(
        default_factory=lambda: float(os.getenv("SKILLSWAP_ENDED_ROOM_TTL", "600"))
    )
    sweep_interval: float = field(
        default_factory=lambda: float(os.getenv("SKILLSWAP_SWEEP_INTERVAL", "60"))
    )
    subscriber_queue_maxsize: int = field(
        default_factory=lambda: int(os.getenv("SKILLSWAP_SUBSCRIBER_QUEUE_MAXSIZE", "64"))
    )

    # Booking seed data
    bookings_path: Optional[str] = field(
        default_factory=lambda: os.getenv("SKILLSWAP_BOOKINGS_PATH") or None
    )

    # Client / coordinator
    server_url: str = field(
        default_factory=lambda: os.getenv("SKILLSWAP_SERVER_URL", "http://127.0.0.1:8090")
    )
    poll_interval: float = field(
        default_factory=lambda: float(os.getenv("SKILLSWAP_POLL_INTERVAL", "1.5"))
    )
    use_push: bool = field(default_factory=lambda: _env_flag("SKILLSWAP_USE_PUSH", "true"))
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("SKILLSWAP_REQUEST_TIMEOUT", "10.0"))
    )
    stun_urls: List[str] = field(default_factory=_get_stun_urls_from_env)

    # Metrics
    metrics_port: Optional[int] = field(
        default_factory=lambda: _get_optional_int("SKILLSWAP_METRICS_PORT")
    )

    # Debug
    debug: bool = field(default_factory=lambda: _env_flag("SKILLSWAP_DEBUG", "false"))

    def __post_init__(self):
        """Validate values after initialization."""
        import logging

        logger = logging.getLogger("skillswap.config")

        if self.poll_interval <= 0:
            raise ValueError("SKILLSWAP_POLL_INTERVAL must be positive")

        if not self.stun_urls:
            logger.warning("No STUN servers configured, falling back to defaults")
            self.stun_urls = list(DEFAULT_STUN_URLS)

        if not self.auth_secret:
            logger.warning(
                "No auth secret configured. Set SKILLSWAP_AUTH_SECRET to accept callers."
            )


# Singleton config instance
_config: Optional[SignalingConfig] = None


def get_config() -> SignalingConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = SignalingConfig()
    return _config


def reset_config():
    """Reset the global config (useful for testing)."""
    global _config
    _config = None
