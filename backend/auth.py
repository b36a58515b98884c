"""
Authentication for the runbook hub.

JWT issuance and verification. Clients send the token as a Bearer header
(sync clients) or a session cookie (browsers).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt
from fastapi import Cookie, Header, HTTPException, WebSocket, status

from backend import config


def create_jwt(user_id: str) -> str:
    """
    Create a JWT for a user session.

    Args:
        user_id: User id to encode in the token

    Returns:
        Signed JWT string
    """
    expires_at = datetime.now(UTC) + timedelta(hours=config.settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(user_id),
        "exp": expires_at,
        "iat": datetime.now(UTC),
    }
    return jwt.encode(payload, config.settings.JWT_SECRET, algorithm=config.settings.JWT_ALGORITHM)


def decode_jwt(token: str) -> dict:
    """
    Decode and verify a JWT.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, config.settings.JWT_SECRET, algorithms=[config.settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please sign in again.",
        ) from e
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token. Please sign in again.",
        ) from e


def _user_id_from_token(token: str) -> str:
    user_id = decode_jwt(token).get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token. Please sign in again.",
        )
    return user_id


async def get_current_user_id(
    session: Annotated[str | None, Cookie()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """
    FastAPI dependency to get the current authenticated user id.

    Tries the Bearer header first (sync clients), then the session cookie.
    """
    if authorization and authorization.startswith("Bearer "):
        return _user_id_from_token(authorization.removeprefix("Bearer "))

    if session:
        return _user_id_from_token(session)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated. Please sign in.",
    )


def user_id_from_websocket(websocket: WebSocket) -> str | None:
    """
    Extract the user id from a WebSocket handshake.

    Looks at the Authorization header, then a ?token= query parameter, then
    the session cookie. Returns None when no valid token is present.
    """
    authorization = websocket.headers.get("authorization", "")
    token = authorization.removeprefix("Bearer ") if authorization.startswith("Bearer ") else None
    token = token or websocket.query_params.get("token") or websocket.cookies.get("session")
    if not token:
        return None

    try:
        payload = jwt.decode(token, config.settings.JWT_SECRET, algorithms=[config.settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    return payload.get("sub") or None
