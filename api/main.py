"""
api/main.py -- FastAPI application entry point for the helpdesk auth API.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (secret validation, cache and user store init,
purge task) and shutdown (cancel purge task, close cache and DB) symmetrically.
A ConfigurationError during startup aborts the process before any request
is served.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.dependencies import AuthGate
from auth.errors import (
    AuthenticationError,
    AuthorizationError,
    ValidationError,
    WeakPasswordError,
)
from auth.passwords import PasswordHasher
from auth.revocation import RevocationStore
from auth.service import AuthService
from auth.store import UserStore
from auth.throttle import LoginThrottle
from auth.tokens import TokenService
from cache.store import CacheStore, CacheUnavailableError, MemoryCacheStore, RedisCacheStore
from core.config import Settings, get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("helpdesk.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired entries from the in-process cache every 5 minutes.

    Only started for MemoryCacheStore; Redis expires keys on its own.
    CancelledError from task.cancel() during shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(5 * 60)
        removed = app.state.cache.purge_expired()
        if removed:
            logger.debug("Purged %d expired cache entries", removed)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    cache: CacheStore,
    user_store: UserStore,
    hasher: PasswordHasher | None = None,
) -> None:
    """Build the security core on top of a cache and a user store.

    Everything lands on app.state; routes and dependencies read it from
    request.app.state. Shared by the real lifespan and the test lifespan.
    """
    tokens = TokenService(settings)
    tokens.validate_secrets()

    hasher = hasher or PasswordHasher()
    revocation = RevocationStore(cache, fail_open=settings.revocation_fail_open)
    throttle = LoginThrottle(
        cache,
        max_attempts=settings.login_max_attempts,
        lockout_seconds=settings.login_lockout_seconds,
    )

    app.state.settings = settings
    app.state.cache = cache
    app.state.user_store = user_store
    app.state.token_service = tokens
    app.state.hasher = hasher
    app.state.revocation = revocation
    app.state.throttle = throttle
    app.state.auth_gate = AuthGate(tokens, revocation)
    app.state.auth_service = AuthService(user_store, hasher, tokens, revocation, throttle)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Cache and user store.
      2. wire_services() -- validates the JWT secrets; on ConfigurationError
         both stores are closed again and startup aborts.
      3. Purge task last -- references app.state.cache.
    """
    settings = get_settings()
    logger.info("Helpdesk auth API starting up")

    if settings.redis_url:
        cache: CacheStore = RedisCacheStore(settings.redis_url)
        logger.info("Cache initialized (redis)")
    else:
        cache = MemoryCacheStore()
        logger.warning("REDIS_URL not set -- using in-process cache; revocations are per-worker")

    user_store = UserStore(settings.database_url)
    try:
        wire_services(app, settings, cache, user_store)
    except Exception:
        await cache.close()
        user_store.close()
        raise
    logger.info("Auth initialized (issuer=%s, audience=%s)", settings.jwt_issuer, settings.jwt_audience)

    app.state.purge_task = None
    if isinstance(cache, MemoryCacheStore):
        app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    # Shutdown
    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
    await app.state.cache.close()
    app.state.user_store.close()
    logger.info("Helpdesk auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Helpdesk Auth API",
    description="Credential hashing, JWT sessions, revocation and login throttling for the helpdesk.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them: CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the {"error": "<message>"} envelope. Extra keys are
# added only where a client needs them (password policy reasons).
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    content = ErrorResponse(error=message).model_dump()
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    if isinstance(exc, WeakPasswordError):
        return _error(400, exc.message, errors=exc.errors)
    return _error(400, exc.message)


@app.exception_handler(AuthenticationError)
async def authentication_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    response = _error(401, exc.message)
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(AuthorizationError)
async def authorization_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    return _error(403, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when the per-IP slowapi limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "too many requests")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body or query params fail validation."""
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return _error(422, "request validation failed", fields=fields)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged only, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and cache reachability."""
    cache: CacheStore = request.app.state.cache
    try:
        cache_ok = await cache.ping()
    except CacheUnavailableError as exc:
        logger.warning("Health check: cache unreachable: %s", exc)
        cache_ok = False
    return HealthResponse(
        status="healthy" if cache_ok else "degraded",
        version=API_VERSION,
        components={"cache": "ok" if cache_ok else "unavailable"},
    )
