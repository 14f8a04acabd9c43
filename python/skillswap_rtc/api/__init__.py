"""HTTP/WebSocket API module."""
from .auth import CallerAuth
from .signaling_api import SignalingAPI, error_middleware

__all__ = ["CallerAuth", "SignalingAPI", "error_middleware"]
