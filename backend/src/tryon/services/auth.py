"""Session verification against the external auth provider.

The gateway does not issue or store sessions. It forwards the caller's
credentials (session cookie and/or bearer token) to the auth provider's
get-session endpoint and trusts the user it answers with.

Contract:
    GET {BETTER_AUTH_URL}/api/auth/get-session
    200 {"session": {...}, "user": {"id": ..., ...}}  → authenticated
    200 null / non-200                                 → anonymous
"""

from dataclasses import dataclass
from typing import Any, Mapping

import httpx
import structlog

from tryon.core.config import Settings

logger = structlog.get_logger()

GET_SESSION_PATH = "/api/auth/get-session"
FORWARDED_HEADERS = ("cookie", "authorization")


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user as reported by the auth provider."""

    id: str
    email: str | None = None
    name: str | None = None
    is_anonymous: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AuthUser":
        return cls(
            id=str(payload["id"]),
            email=payload.get("email"),
            name=payload.get("name"),
            is_anonymous=bool(payload.get("isAnonymous", False)),
        )


class SessionVerifier:
    """Resolves request credentials into an AuthUser via the auth provider."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionVerifier":
        return cls(
            base_url=settings.better_auth_url,
            timeout=settings.auth_session_timeout_seconds,
        )

    async def get_user(self, headers: Mapping[str, str]) -> AuthUser | None:
        """Return the session's user, or None when there is no valid session.

        Provider outages are logged and treated as "no session" so callers
        answer 401 instead of 500.
        """
        forwarded = {name: headers[name] for name in FORWARDED_HEADERS if headers.get(name)}
        if not forwarded:
            return None

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(GET_SESSION_PATH, headers=forwarded)
        except httpx.HTTPError as e:
            logger.warning(
                "auth.session_check_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if response.status_code != 200:
            logger.info("auth.session_rejected", status_code=response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("auth.session_invalid_json")
            return None

        user = payload.get("user") if isinstance(payload, dict) else None
        if not isinstance(user, dict) or not user.get("id"):
            return None

        return AuthUser.from_payload(user)
