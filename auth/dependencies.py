"""
auth/dependencies.py -- AuthGate and the FastAPI Depends() helpers built on it.

Per request:
  NoToken --extract_bearer--> TokenPresent --verify(access)--> Verified
          --is_revoked?--> Authenticated | Rejected

  no/malformed Authorization header  -> TokenMissingError  "token not provided"
  bad signature/shape/type           -> TokenInvalidError  "token invalid"
  expired                            -> TokenExpiredError  "token expired"
  jti on the blacklist               -> TokenRevokedError  "token revoked"
  blacklist down with fail-open off  -> RevocationUnavailableError

On success the verified AccessClaims become request.state.principal.

authorize() is the second stage: no principal -> AuthenticationError
"unauthorized" (401); role not allowed -> AuthorizationError "access denied"
(403). api/main.py turns both families into {"error": "<message>"} bodies.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request

from auth.errors import (
    AuthenticationError,
    AuthorizationError,
    RevocationUnavailableError,
    TokenMissingError,
    TokenRevokedError,
)
from auth.models import AccessClaims, Role, TokenType
from auth.revocation import RevocationStore
from auth.tokens import TokenService, extract_bearer
from cache.store import CacheUnavailableError

logger = logging.getLogger("helpdesk.auth.gate")


class AuthGate:
    def __init__(self, tokens: TokenService, revocation: RevocationStore) -> None:
        self.tokens = tokens
        self.revocation = revocation

    async def authenticate(self, authorization: str | None) -> AccessClaims:
        token = extract_bearer(authorization)
        if token is None:
            raise TokenMissingError()

        claims = self.tokens.verify(token, TokenType.ACCESS)

        try:
            revoked = await self.revocation.is_revoked(claims.jti)
        except CacheUnavailableError as exc:
            logger.warning("Rejected token %s for user %s: blacklist unavailable (%s)", claims.jti, claims.subject_id, exc)
            raise RevocationUnavailableError() from exc

        if revoked:
            logger.info("Rejected revoked token %s for user %s", claims.jti, claims.subject_id)
            raise TokenRevokedError()
        return claims

    @staticmethod
    def authorize(principal: AccessClaims | None, allowed_roles: tuple[str, ...]) -> AccessClaims:
        if principal is None:
            raise AuthenticationError("unauthorized")
        if principal.role not in allowed_roles:
            logger.info("User %s with role %s denied (needs one of %s)", principal.subject_id, principal.role, allowed_roles)
            raise AuthorizationError("access denied")
        return principal


async def get_current_principal(request: Request) -> AccessClaims:
    """Require a valid, unrevoked access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: AccessClaims = Depends(get_current_principal)): ...
    """
    gate: AuthGate = request.app.state.auth_gate
    principal = await gate.authenticate(request.headers.get("Authorization"))
    request.state.principal = principal
    return principal


def require_roles(*roles: Role | str) -> Callable[[Request], Awaitable[AccessClaims]]:
    """Build a dependency that authenticates and then checks the role.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(principal: AccessClaims = Depends(require_roles(Role.ADMIN))): ...
    """
    allowed = tuple(str(getattr(role, "value", role)) for role in roles)

    async def dependency(request: Request) -> AccessClaims:
        principal = getattr(request.state, "principal", None)
        if principal is None:
            principal = await get_current_principal(request)
        return AuthGate.authorize(principal, allowed)

    return dependency
