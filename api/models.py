"""
API request and response models for Connect REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

UserResponse deliberately has no password field, so a credential can never be
serialized by accident.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Only the username is trimmed. The password is hashed and compared exactly
    as submitted, surrounding whitespace included.
    """

    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6, max_length=128)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value):
        """Trim the username only. Runs before the length check."""
        return value.strip() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    display_name falls back to the username when omitted. Profile image URLs
    are stored as given; the media service that serves them is out of scope.
    Text fields are trimmed; the password is kept verbatim, as in LoginRequest.
    """

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=500)
    profile_image: Optional[str] = Field(default=None, max_length=2048)
    cover_image: Optional[str] = Field(default=None, max_length=2048)
    is_creator: bool = False

    @field_validator("username", "display_name", "bio", "profile_image", "cover_image", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def default_display_name(self) -> "RegisterRequest":
        if self.display_name is None:
            self.display_name = self.username
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public profile of a user. Never carries the credential."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    display_name: str
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    cover_image: Optional[str] = None
    is_creator: bool
    is_verified: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build a UserResponse from the auth User dataclass."""
        return cls(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            bio=user.bio,
            profile_image=user.profile_image,
            cover_image=user.cover_image,
            is_creator=user.is_creator,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
        )


class AuthResponse(BaseModel):
    """Response for a successful register or login: the identity plus a bearer token."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int


class MessageResponse(BaseModel):
    """Plain acknowledgement body."""

    model_config = ConfigDict(frozen=True)

    message: str


class FieldError(BaseModel):
    """One failed field in a validation error."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str | list[FieldError]] = None
    retry_after: Optional[int] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
