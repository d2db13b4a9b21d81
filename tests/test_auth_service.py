"""
tests/test_auth_service.py -- AuthService login, refresh, logout and user creation.

Covers:
  - Successful login returns tokens whose claims carry the user id and role
  - Legacy digests are migrated to the current format on login
  - Unknown email and wrong password are indistinguishable and counted
  - Lockout after five failures, even with the correct password
  - Inactive and deleted accounts
  - Refresh rotation and logout revocation, including a blacklist outage
  - User creation with generated and with rejected passwords
"""

from __future__ import annotations

import hashlib

import pytest

from auth.errors import (
    AccountInactiveError,
    InvalidCredentialsError,
    LoginLockedError,
    TokenInvalidError,
    ValidationError,
    WeakPasswordError,
)
from auth.models import Role, TokenType, User
from auth.passwords import LEGACY_ITERATIONS, PasswordHasher
from auth.revocation import RevocationStore
from auth.service import AuthService
from auth.store import UserStore
from auth.throttle import LoginThrottle
from auth.tokens import TokenService
from cache.store import MemoryCacheStore
from tests.conftest import BrokenCache, make_user

PASSWORD = "Sup0rt3!Helpdesk"


@pytest.fixture
def service(
    user_store: UserStore,
    hasher: PasswordHasher,
    token_service: TokenService,
    cache: MemoryCacheStore,
) -> AuthService:
    return AuthService(user_store, hasher, token_service, RevocationStore(cache), LoginThrottle(cache))


def _legacy_digest(password: str) -> str:
    salt_hex = "a1b2c3d4e5f60718293a4b5c6d7e8f90"
    key = hashlib.pbkdf2_hmac("sha512", password.encode(), salt_hex.encode(), LEGACY_ITERATIONS, 64)
    return f"{salt_hex}:{key.hex()}"


class TestLogin:
    async def test_success(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        user = make_user(user_store, hasher, "ana@example.com", PASSWORD, Role.TECNICO)
        result = await service.login("ana@example.com", PASSWORD)

        claims = service.tokens.verify(result.tokens.access_token)
        assert claims.subject_id == user.id
        assert claims.role == "TECNICO"
        assert result.user.email == "ana@example.com"
        assert user_store.get_by_id(user.id).refresh_token == result.tokens.refresh_token

    async def test_email_case_insensitive(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "ana@example.com", PASSWORD)
        result = await service.login("ANA@Example.com", PASSWORD)
        assert result.user.email == "ana@example.com"

    async def test_legacy_digest_migrated(self, service: AuthService, user_store: UserStore) -> None:
        user = User(email="old@example.com", role=Role.USUARIO.value, hashed_password=_legacy_digest(PASSWORD))
        user_id = user_store.create_user(user)

        await service.login("old@example.com", PASSWORD)

        stored = user_store.get_by_id(user_id).hashed_password
        assert stored.startswith("pbkdf2_sha512$")
        assert service.hasher.verify(PASSWORD, stored)
        assert service.hasher.needs_rehash(stored) is False

    async def test_wrong_password_counts_down(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "ana@example.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError) as exc_info:
            await service.login("ana@example.com", "Wrong!Passw0rd")
        assert exc_info.value.attempts_remaining == 4
        assert exc_info.value.message == "invalid credentials"

    async def test_unknown_email_same_error(self, service: AuthService) -> None:
        with pytest.raises(InvalidCredentialsError) as exc_info:
            await service.login("ghost@example.com", PASSWORD)
        assert exc_info.value.attempts_remaining == 4
        assert exc_info.value.message == "invalid credentials"

    async def test_lockout_blocks_correct_password(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "ana@example.com", PASSWORD)
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await service.login("ana@example.com", "Wrong!Passw0rd")

        with pytest.raises(LoginLockedError) as exc_info:
            await service.login("ana@example.com", PASSWORD)
        assert exc_info.value.retry_after == 900

    async def test_success_resets_counter(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "ana@example.com", PASSWORD)
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                await service.login("ana@example.com", "Wrong!Passw0rd")
        await service.login("ana@example.com", PASSWORD)

        status = await service.throttle.check("ana@example.com")
        assert status.attempts == 0

    async def test_inactive_account(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "off@example.com", PASSWORD, is_active=False)
        with pytest.raises(AccountInactiveError):
            await service.login("off@example.com", PASSWORD)

    async def test_deleted_account(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "del@example.com", PASSWORD, deleted_at="2024-01-01T00:00:00+00:00")
        with pytest.raises(AccountInactiveError):
            await service.login("del@example.com", PASSWORD)


class TestRefreshAndLogout:
    async def test_refresh_rotates(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "ana@example.com", PASSWORD)
        first = (await service.login("ana@example.com", PASSWORD)).tokens

        second = await service.refresh(first.refresh_token)
        assert second.refresh_token != first.refresh_token
        assert service.tokens.verify(second.refresh_token, TokenType.REFRESH)

        with pytest.raises(TokenInvalidError):
            await service.refresh(first.refresh_token)

    async def test_access_token_cannot_refresh(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        make_user(user_store, hasher, "ana@example.com", PASSWORD)
        tokens = (await service.login("ana@example.com", PASSWORD)).tokens
        with pytest.raises(TokenInvalidError):
            await service.refresh(tokens.access_token)

    async def test_logout_revokes_and_clears(self, service: AuthService, user_store: UserStore, hasher: PasswordHasher) -> None:
        user = make_user(user_store, hasher, "ana@example.com", PASSWORD)
        tokens = (await service.login("ana@example.com", PASSWORD)).tokens
        principal = service.tokens.verify(tokens.access_token)

        await service.logout(tokens.access_token, principal)

        assert await service.revocation.is_revoked(principal.jti) is True
        assert user_store.get_by_id(user.id).refresh_token is None
        with pytest.raises(TokenInvalidError):
            await service.refresh(tokens.refresh_token)

    async def test_logout_clears_refresh_token_when_blacklist_is_down(
        self, service: AuthService, user_store: UserStore, hasher: PasswordHasher
    ) -> None:
        user = make_user(user_store, hasher, "ana@example.com", PASSWORD)
        tokens = (await service.login("ana@example.com", PASSWORD)).tokens
        principal = service.tokens.verify(tokens.access_token)
        service.revocation = RevocationStore(BrokenCache(), fail_open=False)

        await service.logout(tokens.access_token, principal)

        assert user_store.get_by_id(user.id).refresh_token is None
        with pytest.raises(TokenInvalidError):
            await service.refresh(tokens.refresh_token)


class TestCreateUser:
    async def test_generated_password(self, service: AuthService, user_store: UserStore) -> None:
        user, generated = await service.create_user("New@Example.com", Role.TECNICO, name="New")
        assert generated is not None and len(generated) == 16
        assert user.email == "new@example.com"
        stored = user_store.get_by_id(user.id)
        assert stored.role == "TECNICO"
        assert service.hasher.verify(generated, stored.hashed_password)

    async def test_explicit_password(self, service: AuthService) -> None:
        user, generated = await service.create_user("x@example.com", "USUARIO", password=PASSWORD)
        assert generated is None
        assert (await service.login("x@example.com", PASSWORD)).user.id == user.id

    async def test_weak_password_rejected(self, service: AuthService) -> None:
        with pytest.raises(WeakPasswordError) as exc_info:
            await service.create_user("x@example.com", Role.USUARIO, password="password1")
        assert "password contains common insecure patterns" in exc_info.value.errors

    async def test_duplicate_email(self, service: AuthService) -> None:
        await service.create_user("dup@example.com", Role.USUARIO)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_user("DUP@example.com", Role.USUARIO)
        assert exc_info.value.message == "email already registered"
