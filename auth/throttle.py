"""
auth/throttle.py -- Per-identity failed-login counter with lockout.

Key: login:attempts:<normalized email>. Every failure rewrites the counter
with the full lockout TTL (sliding window), so an attacker who keeps trying
keeps the account locked. A successful login writes "0" with a 1 second TTL,
which reads the same as a deleted key.

The get-then-set increment is not atomic. Concurrent failures for the same
identity can overshoot the limit by a few attempts; the limit is advisory.
If the cache is down the throttle degrades to "no lockout" and logs it.

Layer rule: no imports from api/. cache/ provides the CacheStore capability.
"""

from __future__ import annotations

import logging

from auth.models import ThrottleStatus
from cache.store import CacheStore, CacheUnavailableError

logger = logging.getLogger("helpdesk.auth.throttle")

KEY_PREFIX = "login:attempts:"
MAX_ATTEMPTS = 5
LOCKOUT_SECONDS = 15 * 60
_RESET_TTL = 1


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


class LoginThrottle:
    def __init__(
        self,
        cache: CacheStore,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        lockout_seconds: int = LOCKOUT_SECONDS,
    ) -> None:
        self._cache = cache
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds

    def _key(self, identity: str) -> str:
        return f"{KEY_PREFIX}{normalize_identity(identity)}"

    async def _attempts(self, identity: str) -> int:
        try:
            raw = await self._cache.get(self._key(identity))
        except CacheUnavailableError as exc:
            logger.warning("Cache unavailable reading login attempts: %s", exc)
            return 0
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.warning("Discarding non-integer login counter for %s", identity)
            return 0

    async def check(self, identity: str) -> ThrottleStatus:
        attempts = await self._attempts(identity)
        return ThrottleStatus(
            locked=attempts >= self.max_attempts,
            attempts=attempts,
            remaining=max(0, self.max_attempts - attempts),
        )

    async def record_failure(self, identity: str) -> ThrottleStatus:
        attempts = await self._attempts(identity) + 1
        try:
            await self._cache.set(self._key(identity), str(attempts), ttl=self.lockout_seconds)
        except CacheUnavailableError as exc:
            logger.warning("Cache unavailable recording login failure: %s", exc)
        if attempts >= self.max_attempts:
            logger.warning("Login locked for %s after %d failed attempts", normalize_identity(identity), attempts)
        return ThrottleStatus(
            locked=attempts >= self.max_attempts,
            attempts=attempts,
            remaining=max(0, self.max_attempts - attempts),
        )

    async def reset(self, identity: str) -> None:
        try:
            await self._cache.set(self._key(identity), "0", ttl=_RESET_TTL)
        except CacheUnavailableError as exc:
            logger.warning("Cache unavailable resetting login attempts: %s", exc)
