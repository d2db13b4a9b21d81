"""
auth/revocation.py -- Cache-backed blacklist of revoked token identifiers.

An entry under jwt:blacklist:<jti> means "reject this token whatever its
signature says". Each entry lives exactly as long as the token it blocks
(TTL = exp - now at revocation time), so the blacklist cleans itself up and
needs no delete path.

Outage policy: if the cache cannot be reached during is_revoked(), the store
fails OPEN by default (logs a warning, reports "not revoked"). Availability
of every authenticated route is judged worth more than strict revocation
during a cache outage; set REVOCATION_FAIL_OPEN=false to fail closed, in
which case CacheUnavailableError propagates and the request is rejected.

Layer rule: no imports from api/. cache/ provides the CacheStore capability.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from cache.store import CacheStore, CacheUnavailableError

logger = logging.getLogger("helpdesk.auth.revocation")

KEY_PREFIX = "jwt:blacklist:"
_MARKER = "revoked"


def _key(jti: str) -> str:
    return f"{KEY_PREFIX}{jti}"


class RevocationStore:
    def __init__(self, cache: CacheStore, *, fail_open: bool = True) -> None:
        self._cache = cache
        self.fail_open = fail_open

    async def revoke(self, jti: str, ttl_seconds: int) -> bool:
        """Blacklist jti for ttl_seconds. Returns False when nothing was written.

        A non-positive TTL means the token has already expired; there is
        nothing left to block.
        """
        if ttl_seconds <= 0:
            return False
        await self._cache.set(_key(jti), _MARKER, ttl=int(ttl_seconds))
        logger.info("Token %s revoked for %ds", jti, ttl_seconds)
        return True

    async def revoke_claims(self, claims: dict[str, Any] | None) -> bool:
        """Revoke a token from its (unverified) payload using its remaining lifetime."""
        if not claims or not claims.get("jti") or not isinstance(claims.get("exp"), (int, float)):
            return False
        ttl = int(claims["exp"] - time.time())
        return await self.revoke(claims["jti"], ttl)

    async def is_revoked(self, jti: str | None) -> bool:
        if not jti:
            return False
        try:
            return await self._cache.get(_key(jti)) is not None
        except CacheUnavailableError:
            if not self.fail_open:
                raise
            logger.warning("Cache unavailable during revocation check for %s; failing open", jti)
            return False
