# This project was developed with assistance from AI tools.
"""
JWT authentication for Supabase Auth sessions.

Validates the caller's Supabase access token (HS256, signed with the
project JWT secret) and exposes the caller as a FastAPI dependency. The
token is read from the ``Authorization: Bearer`` header first, then from
the ``sb-<ref>-auth-token`` session cookie set by the browser client.

Set AUTH_DISABLED=true to bypass validation (tests / local dev without Supabase).
"""

import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from pydantic import ValidationError

from ..core.auth import extract_cookie_token, normalize_email, supabase_project_ref
from ..core.config import settings
from ..schemas.auth import TokenPayload, UserContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------

def _extract_token(request: Request) -> str | None:
    """Extract the access token from the Authorization header or session cookie."""
    auth = request.headers.get("Authorization")
    if auth and auth.startswith("Bearer "):
        return auth[7:]
    return extract_cookie_token(request.cookies, supabase_project_ref(settings.SUPABASE_URL))


def _decode_token(token: str) -> TokenPayload:
    """Validate and decode a Supabase access token."""
    payload = jwt.decode(
        token,
        settings.SUPABASE_JWT_SECRET,
        algorithms=["HS256"],
        audience=settings.SUPABASE_JWT_AUDIENCE,
    )
    return TokenPayload(**payload)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

async def get_current_user(request: Request) -> UserContext:
    """FastAPI dependency: validate the Supabase session and return UserContext.

    Every failure (missing, expired, malformed, email-less token) becomes a
    401 so callers get a typed ``unauthorized`` response.
    """
    if settings.AUTH_DISABLED:
        return UserContext(user_id="dev-user", email=normalize_email(settings.DEV_USER_EMAIL))

    token = _extract_token(request)
    if not token:
        raise _unauthorized("Missing authentication token")

    try:
        payload = _decode_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except (jwt.InvalidTokenError, ValidationError) as exc:
        logger.info("Rejected access token: %s", exc)
        raise _unauthorized("Invalid token") from exc

    email = normalize_email(payload.email)
    if not email:
        logger.warning("Access token for user %s carries no email claim", payload.sub)
        raise _unauthorized("Token has no email claim")

    return UserContext(user_id=payload.sub, email=email)


# Type alias for use in route signatures
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
