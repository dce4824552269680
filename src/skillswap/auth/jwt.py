"""Bearer token handling.

Tokens are issued by the identity service; this core only verifies them and
reads the identity claims (``sub``, ``email``, ``first_name``, ``last_name``).
``create_access_token`` exists for tooling and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from skillswap.config import get_settings


@dataclass(frozen=True)
class Identity:
    """An already-authenticated user attached to a request or connection."""

    user_id: int
    email: str = ""
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.email or f"user-{self.user_id}"


def create_access_token(identity: Identity, *, expires_in: timedelta | None = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(identity.user_id),
        "email": identity.email,
        "first_name": identity.first_name,
        "last_name": identity.last_name,
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=settings.jwt_access_token_expire_minutes)),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> Identity:
    """Decode an access token into an ``Identity``.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or not an access token.
    """
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
        options={"require": ["sub", "exp", "iss"]},
    )
    if payload.get("type") != "access":
        msg = "Expected an access token"
        raise jwt.InvalidTokenError(msg)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        msg = "Token subject is not a user id"
        raise jwt.InvalidTokenError(msg) from exc
    return Identity(
        user_id=user_id,
        email=payload.get("email") or "",
        first_name=payload.get("first_name") or "",
        last_name=payload.get("last_name") or "",
    )
