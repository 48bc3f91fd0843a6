"""FastAPI dependencies shared by the v1 routes.

This module provides reusable FastAPI dependencies for:
- Access to process-wide objects stored on app.state during lifespan
- Session checks against the auth provider
- Client identification and the general-purpose rate limit
"""

from fastapi import Depends, Request, Response

from tryon.core.config import Settings
from tryon.core.state import GatewayState
from tryon.services.auth import AuthUser, SessionVerifier
from tryon.services.generation import GenerationService
from tryon.services.rate_limit import get_client_identifier


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_gateway_state(request: Request) -> GatewayState:
    """Get the in-memory gateway state container from app state."""
    return request.app.state.gateway


def get_generation_service(request: Request) -> GenerationService:
    """Get the generation service from app state."""
    return request.app.state.generation_service


async def get_current_user(request: Request) -> AuthUser | None:
    """Resolve the caller's session, or None when unauthenticated.

    Routes decide how to reject anonymous callers so each can word its own
    401 message.

    Example:
        >>> @router.get("/me")
        >>> async def me(user: AuthUser | None = Depends(get_current_user)):
        ...     if user is None:
        ...         raise UnauthorizedError()
    """
    verifier: SessionVerifier = request.app.state.session_verifier
    return await verifier.get_user(request.headers)


def get_client_key(request: Request, user: AuthUser | None) -> str:
    """Rate-limit/ownership key for this request."""
    return get_client_identifier(user.id if user else None, request.headers)


async def general_rate_limit(
    request: Request,
    response: Response,
    state: GatewayState = Depends(get_gateway_state),
) -> None:
    """Apply the general-purpose limiter and expose X-RateLimit-* headers.

    Raises:
        RateLimitExceeded: 429 with Retry-After once the window is used up
    """
    limiter = state.general_rate_limiter
    client_key = get_client_identifier(None, request.headers)
    limiter.check(client_key)

    snapshot = limiter.snapshot(client_key)
    if snapshot is not None:
        response.headers["X-RateLimit-Limit"] = str(snapshot.limit)
        response.headers["X-RateLimit-Remaining"] = str(snapshot.remaining)
        response.headers["X-RateLimit-Reset"] = snapshot.reset_at_iso
