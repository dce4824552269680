"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from skillswap.auth.jwt import Identity, verify_token

_bearer = HTTPBearer()


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> Identity:
    """Verify the bearer token and return the caller's identity (401 on failure)."""
    try:
        return verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
