"""
auth/tokens.py -- JWT issuance and verification with access/refresh separation.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets, so a refresh token can never pass access
       verification even if the type claim were forged. The type claim is
       still checked on top of that.

  Errors: verify() raises TokenExpiredError for an expired token and
       TokenInvalidError for every other jose failure, including a type
       mismatch. Callers can tell "log in again" from "bad token" but never
       learn which check rejected a bad token. Exceptions that are not jose
       errors propagate untouched -- they signal a defect, not a bad token.

  Secrets: validate_secrets() is the startup gate. Each secret must be at
       least 32 characters and the two must differ. A failure raises
       ConfigurationError and the lifespan refuses to start.

Wire claims: id, regra (role), type, jti, email, iat, exp, iss, aud.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import ConfigurationError, TokenExpiredError, TokenInvalidError
from auth.models import AccessClaims, RefreshClaims, TokenClaims, TokenPair, TokenType, User
from core.config import Settings

logger = logging.getLogger("helpdesk.auth.tokens")

_ALGORITHM = "HS256"
_MIN_SECRET_LENGTH = 32
_BEARER_RE = re.compile(r"^bearer$", re.IGNORECASE)

_CLAIM_CLASSES: dict[TokenType, type[AccessClaims] | type[RefreshClaims]] = {
    TokenType.ACCESS: AccessClaims,
    TokenType.REFRESH: RefreshClaims,
}


def extract_bearer(header: str | None = None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` value, else None.

    The scheme is case-insensitive and may be followed by any run of
    whitespace. Anything other than exactly two whitespace-separated parts
    is rejected, which also rules out tokens with embedded whitespace.
    """
    if not header or not isinstance(header, str):
        return None
    parts = header.strip().split()
    if len(parts) != 2 or not _BEARER_RE.match(parts[0]):
        return None
    return parts[1]


def decode_unverified(token: str) -> dict[str, Any] | None:
    """Read the claims without checking signature or expiry. None on any failure."""
    try:
        claims = jwt.get_unverified_claims(token)
    except Exception:
        return None
    return claims if isinstance(claims, dict) else None


class TokenService:
    """Issues and verifies signed access/refresh tokens for one Settings instance."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    # ------------------------------------------------------------------
    # Startup check
    # ------------------------------------------------------------------

    def validate_secrets(self) -> None:
        """Raise ConfigurationError unless both secrets are strong and distinct."""
        for name, value in (
            ("JWT_SECRET", self._settings.jwt_secret),
            ("JWT_REFRESH_SECRET", self._settings.jwt_refresh_secret),
        ):
            if not value:
                raise ConfigurationError(f"{name} is not defined.", setting=name)
            if len(value) < _MIN_SECRET_LENGTH:
                raise ConfigurationError(
                    f"{name} must be at least {_MIN_SECRET_LENGTH} characters.",
                    setting=name,
                )
        if self._settings.jwt_secret == self._settings.jwt_refresh_secret:
            raise ConfigurationError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        logger.info("JWT secrets validated")

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _secret_for(self, token_type: TokenType) -> str:
        if token_type is TokenType.REFRESH:
            return self._settings.jwt_refresh_secret
        return self._settings.jwt_secret

    def _ttl_for(self, token_type: TokenType) -> int:
        if token_type is TokenType.REFRESH:
            return self._settings.refresh_ttl_seconds
        return self._settings.access_ttl_seconds

    def issue(self, user: User, token_type: TokenType | str = TokenType.ACCESS) -> str:
        """Encode a signed token of the given type for user."""
        token_type = TokenType(token_type)
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "id": user.id,
            "regra": getattr(user.role, "value", user.role),
            "type": token_type.value,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + timedelta(seconds=self._ttl_for(token_type)),
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
        }
        if user.email:
            payload["email"] = user.email
        return jwt.encode(payload, self._secret_for(token_type), algorithm=_ALGORITHM)

    def issue_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.issue(user, TokenType.ACCESS),
            refresh_token=self.issue(user, TokenType.REFRESH),
            expires_in=self._settings.access_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_type: TokenType | str = TokenType.ACCESS) -> TokenClaims:
        """Verify signature, issuer, audience, expiry and type; return typed claims.

        Raises:
            TokenExpiredError: the token is otherwise well-formed but expired.
            TokenInvalidError: any other jose failure or a type mismatch.
        """
        expected_type = TokenType(expected_type)
        try:
            payload = jwt.decode(
                token,
                self._secret_for(expected_type),
                algorithms=[_ALGORITHM],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise TokenInvalidError() from exc

        if payload.get("type") != expected_type.value:
            raise TokenInvalidError()
        return self._to_claims(payload, expected_type)

    @staticmethod
    def _to_claims(payload: dict[str, Any], token_type: TokenType) -> TokenClaims:
        if any(payload.get(name) is None for name in ("id", "regra", "iat", "exp")):
            raise TokenInvalidError()
        return _CLAIM_CLASSES[token_type](
            subject_id=str(payload["id"]),
            role=str(payload["regra"]),
            jti=payload.get("jti"),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            issuer=payload.get("iss"),
            audience=payload.get("aud"),
            email=payload.get("email"),
        )

    # ------------------------------------------------------------------
    # Unverified helpers
    # ------------------------------------------------------------------

    def decode(self, token: str) -> dict[str, Any] | None:
        return decode_unverified(token)

    def is_expired(self, token: str) -> bool:
        """True if the token cannot be decoded, has no exp, or exp is in the past."""
        payload = decode_unverified(token)
        if payload is None:
            return True
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return True
        return exp < datetime.now(timezone.utc).timestamp()

    @staticmethod
    def extract_bearer(header: str | None = None) -> str | None:
        return extract_bearer(header)
