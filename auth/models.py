"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, services and
routes do the work; these classes only own the shape.

Layer rule: no imports from api/, core/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Union


class Role(str, Enum):
    """Helpdesk roles as stored in the user record and the `regra` claim."""

    ADMIN = "ADMIN"
    TECNICO = "TECNICO"
    USUARIO = "USUARIO"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class User:
    """The relational user record the security core consumes.

    hashed_password holds a PasswordDigest (current pbkdf2_sha512$ format or
    legacy salt:hash). refresh_token is the single active refresh token; a
    new login or refresh overwrites it, logout clears it.
    """

    email: str
    role: str
    id: str | None = None
    name: str = ""
    hashed_password: str | None = None
    refresh_token: str | None = None
    is_active: bool = True
    deleted_at: str | None = None
    created_at: str | None = None


# ---------------------------------------------------------------------------
# Token claims -- tagged union over {Access, Refresh}
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _BaseClaims:
    subject_id: str
    role: str
    jti: str | None
    issued_at: datetime
    expires_at: datetime
    issuer: str
    audience: str
    email: str | None = None


@dataclass(frozen=True)
class AccessClaims(_BaseClaims):
    token_type: Literal[TokenType.ACCESS] = field(default=TokenType.ACCESS, init=False)


@dataclass(frozen=True)
class RefreshClaims(_BaseClaims):
    token_type: Literal[TokenType.REFRESH] = field(default=TokenType.REFRESH, init=False)


TokenClaims = Union[AccessClaims, RefreshClaims]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThrottleStatus:
    locked: bool
    attempts: int
    remaining: int


@dataclass
class PasswordStrength:
    """Outcome of PasswordHasher.score_strength(). score is 0 (very weak) to 4."""

    valid: bool
    score: int
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LoginResult:
    user: User
    tokens: TokenPair
