"""Error taxonomy shared by the mailbox API and the call client."""

from typing import Dict, Type


class SignalingError(Exception):
    """Base class for signaling failures that map onto an HTTP status."""

    status: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class Unauthenticated(SignalingError):
    """No caller identity was presented, or the token is invalid."""

    status = 401
    code = "unauthenticated"


class Forbidden(SignalingError):
    """Caller is not a participant of the session."""

    status = 403
    code = "forbidden"


class NotFound(SignalingError):
    """Session or signaling room does not exist."""

    status = 404
    code = "not_found"


class InvalidPayload(SignalingError):
    """Malformed offer, answer, candidate or request body."""

    status = 400
    code = "invalid_payload"


class InvalidState(SignalingError):
    """Operation not allowed in the current room or booking state."""

    status = 409
    code = "invalid_state"


class MediaUnavailable(SignalingError):
    """Local camera/microphone capture was denied or is unsupported."""

    status = 424
    code = "media_unavailable"


class RemoteDescriptionPending(Exception):
    """A remote candidate arrived before the remote description was set."""


_BY_STATUS: Dict[int, Type[SignalingError]] = {
    cls.status: cls
    for cls in (Unauthenticated, Forbidden, NotFound, InvalidPayload, InvalidState)
}


def error_for_status(status: int, message: str = "") -> SignalingError:
    """Rebuild the error class for an HTTP status received by the client."""
    cls = _BY_STATUS.get(status, SignalingError)
    error = cls(message)
    if cls is SignalingError:
        error.status = status
    return error
