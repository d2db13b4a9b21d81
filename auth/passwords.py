"""
auth/passwords.py -- Password digests, rehash detection, generation and scoring.

Digest formats:
  current  pbkdf2_sha512$<iterations>$<saltHex>$<keyHex>
           PBKDF2-HMAC-SHA512, 16-byte salt, 64-byte derived key. The iteration
           count travels with the digest so older digests keep verifying after
           the target is raised.
  legacy   <saltHex>:<keyHex>
           Same KDF at a fixed 100 000 iterations. Always flagged by
           needs_rehash() so the login path can migrate it.

  In both formats the salt fed to PBKDF2 is the hex text itself (its ASCII
  bytes), not the decoded 16 bytes. Existing digests were produced that way.

verify() never raises for a present-but-malformed digest: parsing and
derivation errors are logged and reported as a mismatch. Comparison uses
hmac.compare_digest so response time does not leak how many bytes matched.

Derivation at 600 000 iterations costs tens of milliseconds of CPU. Async
callers use hash_async() / verify_async(), which move the work to Starlette's
threadpool instead of blocking the event loop.

Layer rule: no imports from api/, core/ or cache/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets

from starlette.concurrency import run_in_threadpool

from auth.errors import (
    InvalidHashError,
    InvalidPasswordError,
    PasswordLengthOutOfRangeError,
    PasswordTooLongError,
    PasswordTooShortError,
)
from auth.models import PasswordStrength

logger = logging.getLogger("helpdesk.auth.passwords")

ALGORITHM_TAG = "pbkdf2_sha512"
TARGET_ITERATIONS = 600_000
LEGACY_ITERATIONS = 100_000
SALT_BYTES = 16
KEY_BYTES = 64

MIN_LENGTH = 8
MAX_LENGTH = 128
RECOMMENDED_LENGTH = 12

_UPPER = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_LOWER = "abcdefghijklmnopqrstuvwxyz"
_DIGITS = "0123456789"
_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
_ALPHABET = _UPPER + _LOWER + _DIGITS + _SYMBOLS

_SYMBOL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{}|;:,.<>?]")
_WEAK_PATTERNS = (
    re.compile(r"^123456"),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"qwerty", re.IGNORECASE),
    re.compile(r"abc123", re.IGNORECASE),
    re.compile(r"^(.)\1+$"),
)


class _MalformedDigest(ValueError):
    pass


def _derive(password: str, salt_hex: str, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha512", password.encode("utf-8"), salt_hex.encode("utf-8"), iterations, KEY_BYTES)


def _constant_time_match(derived: bytes, stored_hex: str) -> bool:
    derived_hex = derived.hex()
    if len(derived_hex) != len(stored_hex):
        # Burn a same-length comparison so a short digest is not answered faster.
        hmac.compare_digest(derived_hex, "a" * len(derived_hex))
        return False
    try:
        stored = bytes.fromhex(stored_hex)
    except ValueError:
        return hmac.compare_digest(derived_hex, stored_hex)
    return hmac.compare_digest(derived, stored)


class PasswordHasher:
    """Derives and verifies PasswordDigests. Stateless apart from the iteration target."""

    def __init__(self, iterations: int = TARGET_ITERATIONS) -> None:
        self.iterations = iterations

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def hash(self, password: str) -> str:
        """Return a fresh current-format digest. Each call draws a new salt."""
        if not password or not isinstance(password, str):
            raise InvalidPasswordError()
        if len(password) < MIN_LENGTH:
            raise PasswordTooShortError()
        if len(password) > MAX_LENGTH:
            raise PasswordTooLongError()

        salt_hex = secrets.token_hex(SALT_BYTES)
        key_hex = _derive(password, salt_hex, self.iterations).hex()
        return f"{ALGORITHM_TAG}${self.iterations}${salt_hex}${key_hex}"

    def verify(self, password: str, digest: str) -> bool:
        """Return True if password matches digest.

        Raises InvalidPasswordError / InvalidHashError only when an argument is
        missing or not a string. Every other problem yields False.
        """
        if not password or not isinstance(password, str):
            raise InvalidPasswordError()
        if not digest or not isinstance(digest, str):
            raise InvalidHashError()

        try:
            if digest.startswith(f"{ALGORITHM_TAG}$"):
                return self._verify_current(password, digest)
            if ":" in digest:
                return self._verify_legacy(password, digest)
            raise _MalformedDigest("unrecognized digest format")
        except Exception as exc:
            logger.warning("Password verification failed on a malformed digest: %s", exc)
            return False

    def _verify_current(self, password: str, digest: str) -> bool:
        parts = digest.split("$")
        if len(parts) != 4:
            raise _MalformedDigest("pbkdf2 digest must have 4 fields")
        tag, iterations_text, salt_hex, key_hex = parts
        if tag != ALGORITHM_TAG:
            raise _MalformedDigest(f"unsupported algorithm {tag!r}")
        if not iterations_text.isdigit() or int(iterations_text) < 1:
            raise _MalformedDigest("invalid iteration count")
        return _constant_time_match(_derive(password, salt_hex, int(iterations_text)), key_hex)

    def _verify_legacy(self, password: str, digest: str) -> bool:
        parts = digest.split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise _MalformedDigest("legacy digest must be salt:hash")
        salt_hex, key_hex = parts
        return _constant_time_match(_derive(password, salt_hex, LEGACY_ITERATIONS), key_hex)

    def needs_rehash(self, digest: str | None) -> bool:
        """True when digest is legacy or weaker than the current target.

        Unrecognized strings return False; callers gate migration on a
        successful verify() first.
        """
        if not digest or not isinstance(digest, str):
            return True
        is_current = digest.startswith(f"{ALGORITHM_TAG}$")
        if ":" in digest and not is_current:
            return True
        if is_current:
            parts = digest.split("$")
            if len(parts) != 4:
                return True
            if parts[1].isdigit() and int(parts[1]) < self.iterations:
                return True
        return False

    async def hash_async(self, password: str) -> str:
        return await run_in_threadpool(self.hash, password)

    async def verify_async(self, password: str, digest: str) -> bool:
        return await run_in_threadpool(self.verify, password, digest)

    # ------------------------------------------------------------------
    # Generation and policy
    # ------------------------------------------------------------------

    @staticmethod
    def generate_secure_password(length: int = 16) -> str:
        """Random password with at least one upper, lower, digit and symbol."""
        if length < MIN_LENGTH or length > MAX_LENGTH:
            raise PasswordLengthOutOfRangeError()

        chars = [
            secrets.choice(_UPPER),
            secrets.choice(_LOWER),
            secrets.choice(_DIGITS),
            secrets.choice(_SYMBOLS),
        ]
        chars.extend(secrets.choice(_ALPHABET) for _ in range(length - len(chars)))

        # Fisher-Yates driven by the CSPRNG.
        for i in range(len(chars) - 1, 0, -1):
            j = secrets.randbelow(i + 1)
            chars[i], chars[j] = chars[j], chars[i]
        return "".join(chars)

    @staticmethod
    def score_strength(password: str) -> PasswordStrength:
        errors: list[str] = []
        suggestions: list[str] = []
        score = 0

        length = len(password)
        if length < MIN_LENGTH:
            errors.append(f"password must have at least {MIN_LENGTH} characters")
        elif length < RECOMMENDED_LENGTH:
            score += 1
            suggestions.append(f"consider using {RECOMMENDED_LENGTH}+ characters for more security")
        elif length < 16:
            score += 2
        else:
            score += 3

        has_upper = re.search(r"[A-Z]", password) is not None
        has_lower = re.search(r"[a-z]", password) is not None
        has_digit = re.search(r"[0-9]", password) is not None
        has_symbol = _SYMBOL_RE.search(password) is not None

        if not has_upper:
            errors.append("password must contain uppercase letters")
        if not has_lower:
            errors.append("password must contain lowercase letters")
        if not has_digit:
            errors.append("password must contain digits")
        if not has_symbol:
            suggestions.append("add special characters for more security")

        if all((has_upper, has_lower, has_digit, has_symbol)):
            score += 1

        if any(pattern.search(password) for pattern in _WEAK_PATTERNS):
            errors.append("password contains common insecure patterns")
            score = max(0, score - 2)

        return PasswordStrength(
            valid=not errors and score >= 2,
            score=min(4, score),
            errors=errors,
            suggestions=suggestions,
        )
