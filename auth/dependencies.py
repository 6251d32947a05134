"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

require_user_id() is the request gate. It reads "Authorization: Bearer <jwt>",
verifies the token locally (signature + expiry, no DB, no network) and puts
the user id on request.state.user_id for downstream handlers.

Two distinct 401 answers:
  no_credential      -- the Authorization header is missing or blank.
  invalid_credential -- a header is present but is not a valid bearer token
                        (wrong scheme, malformed, bad signature, expired).
Which of malformed / bad signature / expired applied is logged, not returned.

get_current_user() builds on require_user_id() for handlers that need the full
profile. It is the only helper here that touches storage.

Layer rule: auth/dependencies.py may import from fastapi (for HTTPException
and Request) because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request

from auth.models import User
from auth.tokens import decode_access_token

logger = logging.getLogger("connect.auth")

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers=_BEARER_CHALLENGE,
    )


def require_user_id(request: Request) -> int:
    """Require a valid bearer token. Returns the token's user id.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user_id: int = Depends(require_user_id)): ...
    """
    header = request.headers.get("Authorization", "").strip()
    if not header:
        raise _unauthorized("no_credential", "Authentication required.")

    scheme, _, token = header.partition(" ")
    token = token.strip()
    client = request.client.host if request.client else "unknown"
    if scheme.lower() != "bearer" or not token:
        logger.info("Rejected Authorization header from %s: not a bearer token", client)
        raise _unauthorized("invalid_credential", "Invalid or expired credential.")

    check = decode_access_token(token)
    if not check.valid:
        logger.info("Rejected bearer token from %s: %s", client, check.failure.value if check.failure else "unknown")
        raise _unauthorized("invalid_credential", "Invalid or expired credential.")

    request.state.user_id = check.user_id
    return check.user_id


def get_current_user(request: Request, user_id: int = Depends(require_user_id)) -> User:
    """Resolve the authenticated user's profile.

    A token for a user that no longer exists is treated exactly like a bad
    token -- the caller learns nothing about account state.
    """
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        logger.info("Bearer token for unknown user id %s", user_id)
        raise _unauthorized("invalid_credential", "Invalid or expired credential.")
    return user
