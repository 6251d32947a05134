"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond derived flags).
Stores, the governor and routes do the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass
class User:
    """A registered member of the network.

    hashed_password is the bcrypt credential. It is never serialized into an
    API response -- api/models.py UserResponse has no field for it.
    """

    username: str
    hashed_password: str
    display_name: str
    id: int | None = None
    bio: str | None = None
    profile_image: str | None = None
    cover_image: str | None = None
    is_creator: bool = False
    is_verified: bool = False
    created_at: str | None = None


class TokenFailure(str, Enum):
    """Why a bearer token was rejected. Logged server-side, never returned to clients."""

    malformed = "malformed"
    bad_signature = "bad_signature"
    expired = "expired"


@dataclass(frozen=True)
class TokenCheck:
    """Result of decode_access_token(): a user id, or the reason there is none."""

    user_id: int | None = None
    failure: TokenFailure | None = None

    @property
    def valid(self) -> bool:
        return self.failure is None and self.user_id is not None


@dataclass
class AttemptRecord:
    """Consecutive failed logins from one client address.

    last_attempt is a Unix timestamp (seconds). The record is created on the
    first failure, cleared on success, and swept once the lockout window has
    passed since last_attempt.
    """

    count: int
    last_attempt: float


@dataclass(frozen=True)
class GovernorDecision:
    """Answer from LoginAttemptGovernor.check_allowed().

    retry_after is the number of seconds until the address may try again;
    it is 0.0 when allowed is True.
    """

    allowed: bool
    retry_after: float = 0.0
