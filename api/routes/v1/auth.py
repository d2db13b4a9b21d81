"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login               -- email/password login; returns token pair
  POST /api/v1/auth/refresh-token       -- exchange refresh token for a new pair
  POST /api/v1/auth/logout              -- revoke access token, clear refresh token
  GET  /api/v1/auth/me                  -- current user profile (requires auth)
  POST /api/v1/auth/password-strength   -- score a candidate password (public)
  POST /api/v1/auth/users               -- create user (ADMIN only)

Security:
  POST /login is rate-limited per IP (slowapi) and per email (LoginThrottle).
  Unknown email and wrong password return the same body.
  Cache-Control: no-store on every response that carries tokens.
  Token failures are raised as auth.errors exceptions and rendered by the
  handlers in api/main.py, so every route reports them identically.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    RefreshRequest,
    TokenPairResponse,
    UserCreate,
    UserCreatedResponse,
    UserResponse,
)
from auth.dependencies import get_current_principal, require_roles
from auth.errors import AccountInactiveError, InvalidCredentialsError, LoginLockedError
from auth.models import AccessClaims, Role
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import extract_bearer

# Auth policy:
# - POST /api/v1/auth/login:             public
# - POST /api/v1/auth/refresh-token:     public -- the refresh token is the credential
# - POST /api/v1/auth/password-strength: public -- sign-up forms call it
# - POST /api/v1/auth/logout:            requires auth (get_current_principal)
# - GET  /api/v1/auth/me:                requires auth (get_current_principal)
# - POST /api/v1/auth/users:             requires ADMIN (require_roles)
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return an access/refresh pair.

    401 bodies carry attempts_remaining so the client can warn before the
    lockout; 429 carries locked_until once the identity is locked.
    """
    service: AuthService = request.app.state.auth_service
    try:
        result = await service.login(body.email, body.password)
    except LoginLockedError as exc:
        locked_until = datetime.now(timezone.utc) + timedelta(seconds=exc.retry_after)
        resp = JSONResponse(
            status_code=429,
            content={
                "error": exc.message,
                "attempts_remaining": 0,
                "locked_until": locked_until.isoformat(),
            },
        )
        resp.headers["Retry-After"] = str(exc.retry_after)
        return _no_store(resp)
    except InvalidCredentialsError as exc:
        return _no_store(
            JSONResponse(
                status_code=401,
                content={"error": exc.message, "attempts_remaining": exc.attempts_remaining},
            )
        )
    except AccountInactiveError as exc:
        return _no_store(JSONResponse(status_code=401, content={"error": exc.message}))

    return _no_store(
        JSONResponse(
            status_code=200,
            content=LoginResponse(
                access_token=result.tokens.access_token,
                refresh_token=result.tokens.refresh_token,
                expires_in=result.tokens.expires_in,
                user=UserResponse.from_user(result.user),
            ).model_dump(),
        )
    )


@router.post("/auth/refresh-token", response_model=TokenPairResponse)
async def refresh_token(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate the refresh token. The previous refresh token stops working."""
    service: AuthService = request.app.state.auth_service
    pair = await service.refresh(body.refresh_token)
    return _no_store(
        JSONResponse(
            content=TokenPairResponse(
                access_token=pair.access_token,
                refresh_token=pair.refresh_token,
                expires_in=pair.expires_in,
            ).model_dump()
        )
    )


@router.post("/auth/password-strength", response_model=PasswordStrengthResponse)
async def password_strength(request: Request, body: PasswordStrengthRequest) -> PasswordStrengthResponse:
    service: AuthService = request.app.state.auth_service
    strength = service.hasher.score_strength(body.password)
    return PasswordStrengthResponse(
        valid=strength.valid,
        score=strength.score,
        errors=strength.errors,
        suggestions=strength.suggestions,
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, principal: AccessClaims = Depends(get_current_principal)) -> MessageResponse:
    """Clear the refresh token and blacklist the presented access token."""
    service: AuthService = request.app.state.auth_service
    token = extract_bearer(request.headers.get("Authorization"))
    await service.logout(token, principal)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=UserResponse)
async def me(request: Request, principal: AccessClaims = Depends(get_current_principal)) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.subject_id)
    if user is None:
        return JSONResponse(status_code=404, content={"error": "user not found"})
    return JSONResponse(content=UserResponse.from_user(user).model_dump())


@router.post("/auth/users", response_model=UserCreatedResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    principal: AccessClaims = Depends(require_roles(Role.ADMIN)),
) -> UserCreatedResponse:
    """Create a user. Without a password, a temporary one is generated and shown once."""
    service: AuthService = request.app.state.auth_service
    user, generated = await service.create_user(
        email=body.email,
        role=body.role,
        name=body.name,
        password=body.password,
    )
    return UserCreatedResponse(user=UserResponse.from_user(user), temporary_password=generated)
