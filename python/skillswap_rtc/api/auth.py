"""
Caller identity for the signaling API.

Callers present an HS256 JWT whose `sub` claim is their user id, either as
`Authorization: Bearer <token>` or, for browser WebSocket upgrades that
cannot set headers, as a `token` query parameter.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from aiohttp import web

from ..core.errors import Unauthenticated

logger = logging.getLogger("skillswap.auth")


class CallerAuth:
    """Issues and verifies caller tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        token_ttl_hours: float = 12.0,
    ):
        """
        Args:
            secret_key: Shared secret for JWT signing
            algorithm: JWT algorithm (default: HS256)
            token_ttl_hours: Lifetime of issued tokens
        """
        if not secret_key:
            raise ValueError("CallerAuth requires a non-empty secret key")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_ttl = timedelta(hours=token_ttl_hours)

    def issue_token(self, user_id: str, extra_claims: Optional[Dict] = None) -> str:
        """
        Issue a token for a user.

        Args:
            user_id: Becomes the `sub` claim
            extra_claims: Additional claims to include

        Returns:
            Encoded JWT
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            "nbf": now,
            "exp": now + self.token_ttl,
        }
        if extra_claims:
            payload.update(extra_claims)

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> str:
        """
        Verify a token and return the caller id.

        Raises:
            Unauthenticated: expired, malformed or unsigned token
        """
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            raise Unauthenticated("Invalid token")

        caller_id = claims.get("sub")
        if not caller_id or not isinstance(caller_id, str):
            raise Unauthenticated("Token has no subject")
        return caller_id

    def caller_from_request(self, request: web.Request) -> str:
        """
        Resolve the caller of an HTTP or WebSocket request.

        Raises:
            Unauthenticated: no token, or the token is invalid
        """
        header = request.headers.get("Authorization", "")
        token = None
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
        if not token:
            token = request.query.get("token")
        if not token:
            raise Unauthenticated("Authentication required")
        return self.verify_token(token)

    @staticmethod
    def auth_headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
