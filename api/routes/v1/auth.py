"""
api/routes/v1/auth.py -- Registration, login and identity REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create account; 201 with user + bearer token
  POST /api/v1/auth/login     -- password login; 200 with user + bearer token
  POST /api/v1/auth/logout    -- advisory; the client discards its token
  GET  /api/v1/auth/me        -- current user profile (requires bearer token)

Security:
  Login and register both consult the LoginAttemptGovernor first. A locked-out
      address gets 429 with Retry-After before any bcrypt work is done.
  authenticate_user() provides timing equalization -- use it, never inline.
  Wrong username and wrong password return the same "bad_credentials" error.
  Duplicate usernames return 409 -- there is nothing to hide, the register
      form would reveal it anyway.
  Cache-Control: no-store on every response that carries a token.
  Handlers are plain `def` so FastAPI runs bcrypt in its threadpool instead of
      blocking the event loop for every other request.
"""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.governor import LoginAttemptGovernor
from auth.models import User
from auth.passwords import authenticate_user, hash_password
from auth.store import UserStore
from auth.tokens import create_access_token
from core.config import get_settings

logger = logging.getLogger("connect.api")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/register: public, governed by address + slowapi volume limit
# - POST /api/v1/auth/login:    public, governed by address
# - POST /api/v1/auth/logout:   public -- discarding a token needs no prior auth
# - GET  /api/v1/auth/me:       requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)  # must be BELOW @router so the route calls the limited wrapper
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and return it with a freshly issued token.

    The pre-check on username is only for a fast 409. The UNIQUE constraint is
    the real guard: two concurrent registrations that both pass the pre-check
    end with one IntegrityError, which also maps to 409.
    """
    user_store: UserStore = request.app.state.user_store
    governor: LoginAttemptGovernor = request.app.state.login_governor

    decision = governor.check_allowed(get_remote_address(request))
    if not decision.allowed:
        return _rate_limited(decision.retry_after)

    if user_store.get_by_username(body.username) is not None:
        return _conflict()

    new_user = User(
        username=body.username,
        hashed_password=hash_password(body.password),
        display_name=body.display_name or body.username,
        bio=body.bio,
        profile_image=body.profile_image,
        cover_image=body.cover_image,
        is_creator=body.is_creator,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError:
        return _conflict()

    created = user_store.get_by_id(user_id)
    if created is None:
        raise RuntimeError(f"user {user_id} not found after insert")
    logger.info("Registered user id=%s username=%s", created.id, created.username)
    return _token_response(created, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return user + bearer token.

    Order matters:
      1. Governor reserve -- checks the address and counts this attempt in one
         step, so a locked-out address never reaches bcrypt and parallel
         requests cannot slip past the limit while an earlier one is hashing.
      2. authenticate_user() -- constant-cost whether or not the user exists.
      3. Success clears the address. A failure is already counted.
    """
    user_store: UserStore = request.app.state.user_store
    governor: LoginAttemptGovernor = request.app.state.login_governor
    address = get_remote_address(request)

    decision = governor.reserve(address)
    if not decision.allowed:
        logger.info("Login refused for %s: locked out for %.0fs", address, decision.retry_after)
        return _rate_limited(decision.retry_after)

    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(
                error=ErrorDetail(code="bad_credentials", message="Invalid username or password.")
            ).model_dump(exclude_none=True),
            headers={"WWW-Authenticate": "Bearer"},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    governor.record_attempt(address, succeeded=True)
    return _token_response(user, status_code=200)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Acknowledge logout.

    Tokens are not revoked server-side. The client must drop its token; it
    remains technically valid until it expires.
    """
    return MessageResponse(message="Logged out. Discard your access token.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the profile of the currently authenticated user."""
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_response(user: User, status_code: int) -> JSONResponse:
    token = create_access_token(user.id)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            user=UserResponse.from_user(user),
            access_token=token,
            expires_in=_settings.token_expire_seconds,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _rate_limited(retry_after: float) -> JSONResponse:
    seconds = max(1, math.ceil(retry_after))
    return JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many failed attempts from this address. Try again later.",
                retry_after=seconds,
            )
        ).model_dump(exclude_none=True),
        headers={"Retry-After": str(seconds)},
    )


def _conflict() -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(
            error=ErrorDetail(code="conflict", message="Username already taken.")
        ).model_dump(exclude_none=True),
    )
