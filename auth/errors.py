"""
auth/errors.py -- Exception taxonomy for the security core.

Two channels:
  ConfigurationError is fatal. It is raised once, at startup, and must stop
  the process from serving traffic.

  Everything else is a per-request failure. Each family maps to exactly one
  HTTP status in api/main.py, and each instance carries the user-facing
  message that ends up in the {"error": "<message>"} body.

Layer rule: no imports from api/, core/ or cache/.
"""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Weak, missing or duplicate signing secrets. Fatal at startup."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting


# ---------------------------------------------------------------------------
# Validation (400)
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Recoverable input problem. Surfaced as HTTP 400."""

    message = "invalid input"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidPasswordError(ValidationError):
    message = "password must be a non-empty string"


class InvalidHashError(ValidationError):
    message = "password hash must be a non-empty string"


class PasswordTooShortError(ValidationError):
    message = "password too short: minimum of 8 characters"


class PasswordTooLongError(ValidationError):
    message = "password too long: maximum of 128 characters"


class PasswordLengthOutOfRangeError(ValidationError):
    message = "password length must be between 8 and 128"


class WeakPasswordError(ValidationError):
    """Password policy rejected the password. Carries the individual reasons."""

    message = "password does not meet the strength policy"

    def __init__(self, errors: list[str] | None = None) -> None:
        super().__init__()
        self.errors = errors or []


# ---------------------------------------------------------------------------
# Authentication (401)
# ---------------------------------------------------------------------------


class AuthenticationError(Exception):
    """Credentials or token rejected. Always HTTP 401."""

    message = "unauthorized"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class TokenMissingError(AuthenticationError):
    message = "token not provided"


class TokenInvalidError(AuthenticationError):
    # One message for signature, shape and type-mismatch failures alike.
    message = "token invalid"


class TokenExpiredError(AuthenticationError):
    message = "token expired"


class TokenRevokedError(AuthenticationError):
    message = "token revoked"


class RevocationUnavailableError(AuthenticationError):
    # Blacklist unreachable with fail-open disabled; the token cannot be trusted.
    message = "token revocation status unavailable"


class InvalidCredentialsError(AuthenticationError):
    message = "invalid credentials"

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__()
        self.attempts_remaining = attempts_remaining


class AccountInactiveError(AuthenticationError):
    message = "account inactive"


# ---------------------------------------------------------------------------
# Authorization (403) and throttling (429)
# ---------------------------------------------------------------------------


class AuthorizationError(Exception):
    """Authenticated but not allowed. HTTP 403."""

    message = "access denied"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class LoginLockedError(Exception):
    """Too many failed logins for one identity inside the lockout window."""

    message = "too many login attempts"

    def __init__(self, retry_after: int) -> None:
        super().__init__(self.message)
        self.retry_after = retry_after
