"""
auth/service.py -- Login, refresh and logout flows over the security core.

  login    LoginThrottle.check -> UserStore lookup -> PasswordHasher.verify
           -> (rehash if needed) -> TokenService.issue_pair
           -> persist refresh token -> LoginThrottle.reset
  refresh  TokenService.verify(refresh) -> stored-token comparison
           -> issue_pair -> overwrite stored refresh token (rotation)
  logout   clear stored refresh token -> TokenService.decode
           -> RevocationStore.revoke_claims (best effort on cache outage)

Unknown emails still pay for one PBKDF2 derivation against a dummy digest,
so response time does not reveal whether an account exists. Unknown email
and wrong password both count against the throttle and return the same
InvalidCredentialsError.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountInactiveError,
    InvalidCredentialsError,
    LoginLockedError,
    TokenInvalidError,
    ValidationError,
    WeakPasswordError,
)
from auth.models import AccessClaims, LoginResult, Role, TokenPair, TokenType, User
from auth.passwords import PasswordHasher
from auth.revocation import RevocationStore
from auth.store import UserStore
from auth.throttle import LoginThrottle
from auth.tokens import TokenService
from cache.store import CacheUnavailableError

logger = logging.getLogger("helpdesk.auth.service")

_DUMMY_PASSWORD = "helpdesk_timing_dummy"


class AuthService:
    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        revocation: RevocationStore,
        throttle: LoginThrottle,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.revocation = revocation
        self.throttle = throttle
        self._dummy_digest: str | None = None

    async def _timing_dummy(self) -> str:
        if self._dummy_digest is None:
            self._dummy_digest = await self.hasher.hash_async(_DUMMY_PASSWORD)
        return self._dummy_digest

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate email/password and issue a fresh token pair.

        Raises:
            LoginLockedError: the identity is locked out, even if the password is right.
            InvalidCredentialsError: unknown email or wrong password.
            AccountInactiveError: right password, deactivated or deleted account.
        """
        status = await self.throttle.check(email)
        if status.locked:
            logger.warning("Rejected login for locked identity %s", email.strip().lower())
            raise LoginLockedError(retry_after=self.throttle.lockout_seconds)

        user = self.store.get_by_email(email)
        if user is None or not user.hashed_password:
            await self.hasher.verify_async(password, await self._timing_dummy())
            failure = await self.throttle.record_failure(email)
            raise InvalidCredentialsError(attempts_remaining=failure.remaining)

        if not await self.hasher.verify_async(password, user.hashed_password):
            failure = await self.throttle.record_failure(email)
            raise InvalidCredentialsError(attempts_remaining=failure.remaining)

        if not user.is_active or user.deleted_at:
            raise AccountInactiveError()

        if self.hasher.needs_rehash(user.hashed_password):
            await self._rehash(user, password)

        tokens = self._rotate(user)
        await self.throttle.reset(email)
        logger.info("User %s logged in", user.id)
        return LoginResult(user=user, tokens=tokens)

    async def _rehash(self, user: User, password: str) -> None:
        try:
            digest = await self.hasher.hash_async(password)
        except ValidationError as exc:
            # Legacy passwords may predate the length policy; keep the old digest.
            logger.warning("Skipping rehash for user %s: %s", user.id, exc)
            return
        self.store.update_password_hash(user.id, digest)
        user.hashed_password = digest
        logger.info("Migrated password digest for user %s", user.id)

    def _rotate(self, user: User) -> TokenPair:
        tokens = self.tokens.issue_pair(user)
        self.store.set_refresh_token(user.id, tokens.refresh_token)
        user.refresh_token = tokens.refresh_token
        return tokens

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange the user's current refresh token for a new pair.

        A refresh token that is no longer the stored one (superseded by a
        newer login or refresh, or cleared by logout) is rejected as invalid.
        """
        claims = self.tokens.verify(refresh_token, TokenType.REFRESH)
        user = self.store.get_by_id(claims.subject_id)
        if (
            user is None
            or not user.refresh_token
            or not hmac.compare_digest(user.refresh_token, refresh_token)
            or not user.is_active
            or user.deleted_at
        ):
            raise TokenInvalidError()
        return self._rotate(user)

    async def logout(self, access_token: str, principal: AccessClaims) -> None:
        """Clear the stored refresh token, then blacklist the access token.

        The refresh token is cleared first so a cache outage cannot leave the
        session renewable. If the blacklist write then fails, the logout still
        succeeds: the access token stays usable until its own exp.
        """
        self.store.clear_refresh_token(principal.subject_id)
        payload = self.tokens.decode(access_token)
        try:
            await self.revocation.revoke_claims(payload)
        except CacheUnavailableError as exc:
            logger.warning(
                "Logout for user %s could not blacklist token %s: %s", principal.subject_id, principal.jti, exc
            )
        logger.info("User %s logged out", principal.subject_id)

    # ------------------------------------------------------------------
    # Account creation
    # ------------------------------------------------------------------

    async def create_user(
        self,
        email: str,
        role: Role | str,
        name: str = "",
        password: str | None = None,
    ) -> tuple[User, str | None]:
        """Create a user. Returns (user, generated_password).

        When password is None a secure temporary password is generated and
        returned exactly once; otherwise it must pass the strength policy.
        """
        generated: str | None = None
        if password is None:
            generated = password = self.hasher.generate_secure_password()
        else:
            strength = self.hasher.score_strength(password)
            if not strength.valid:
                raise WeakPasswordError(strength.errors)

        user = User(
            email=email,
            name=name,
            role=getattr(role, "value", role),
            hashed_password=await self.hasher.hash_async(password),
        )
        try:
            user.id = self.store.create_user(user)
        except IntegrityError as exc:
            raise ValidationError("email already registered") from exc
        user.email = email.strip().lower()
        logger.info("Created user %s with role %s", user.id, user.role)
        return user, generated
