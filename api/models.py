"""
API request and response models for the helpdesk auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailRequest(BaseModel):
    email: EmailStr

    # Only the email is trimmed. Passwords are taken byte for byte.
    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, value):
        return value.strip() if isinstance(value, str) else value


class LoginRequest(_EmailRequest):
    # No policy checks here: legacy accounts may hold passwords the current
    # policy would reject. The upper bound only caps PBKDF2 input size.
    password: str = Field(min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class PasswordStrengthRequest(BaseModel):
    password: str = Field(max_length=1024)


class UserCreate(_EmailRequest):
    """Request body for POST /api/v1/auth/users (admin only).

    Omit password to have the server generate a temporary one; it is
    returned once in the response and never again.
    """

    name: str = Field(default="", max_length=255)
    role: Role = Role.USUARIO
    password: Optional[str] = Field(default=None, min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never includes the digest or the refresh token."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.id, email=user.email, name=user.name, role=getattr(user.role, "value", user.role), is_active=user.is_active)


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(TokenPairResponse):
    user: UserResponse


class UserCreatedResponse(BaseModel):
    user: UserResponse
    temporary_password: Optional[str] = None


class PasswordStrengthResponse(BaseModel):
    valid: bool
    score: int
    errors: list[str]
    suggestions: list[str]


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses: {"error": "<message>"}."""

    model_config = ConfigDict(frozen=True)

    error: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
