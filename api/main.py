"""
api/main.py -- FastAPI application entry point for the Inkwell auth service.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one access-log line per request, with its request ID
  2. security_headers   -- nosniff, frame denial, referrer policy, X-Request-ID
  3. TrustedHost        -- rejects Host headers outside ALLOWED_HOSTS
  4. CORSMiddleware     -- adds CORS headers for allowed browser origins and
                           exposes the X-Rate-Limit-* headers to scripts

Rate limiting and bearer auth are NOT middleware. They are FastAPI
dependencies declared on the router (api/limiter.enforce_rate_limit,
auth/dependencies.get_current_claims) so their order is visible in code.

Lifespan builds every component from one Settings instance and stores it on
app.state, starts the refresh-token purge task, and tears both down
symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import RateLimiter, policies_from_settings
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, InternalError, RateLimitExceeded
from auth.passwords import PasswordHasher
from auth.refresh_store import RefreshTokenStore
from auth.service import AuthService
from auth.store import UserStore
from auth.token_service import TokenService
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("inkwell.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_app_state(app: FastAPI, settings: Settings) -> None:
    """Build every component from settings and attach it to app.state.

    Nothing below reads configuration on its own; this is the one place
    where Settings fans out into constructor arguments.
    """
    user_store = UserStore(db_url=settings.database_url, timeout_seconds=settings.store_timeout_seconds)
    refresh_store = RefreshTokenStore(
        settings.database_url,
        secret_key=settings.secret_key,
        ttl_seconds=settings.refresh_token_ttl_seconds,
        timeout_seconds=settings.store_timeout_seconds,
    )
    codec = TokenCodec(
        settings.secret_key,
        ttl_seconds=settings.access_token_ttl_seconds,
        leeway_seconds=settings.token_leeway_seconds,
    )
    token_service = TokenService(codec, refresh_store, user_store)

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.refresh_store = refresh_store
    app.state.token_service = token_service
    app.state.auth_service = AuthService(user_store, PasswordHasher(rounds=settings.bcrypt_rounds), token_service)
    if settings.rate_limit_enabled:
        app.state.rate_limiter = RateLimiter(
            policies_from_settings(settings),
            max_buckets=settings.rate_limit_max_buckets,
        )
    else:
        app.state.rate_limiter = None
        logger.warning("Rate limiting is DISABLED (RATE_LIMIT_ENABLED=false)")


def close_app_state(app: FastAPI) -> None:
    app.state.refresh_store.close()
    app.state.user_store.close()


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh tokens every interval_seconds.

    The purge itself is blocking SQL, so it runs in a worker thread. A failed
    pass is already logged by TokenService; the loop just tries again next
    interval. CancelledError from shutdown propagates out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.token_service.purge_expired)
        except InternalError:
            continue
        if removed:
            logger.info("Purged %d expired refresh token(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: wire components, then start the purge task. Shutdown: reverse."""
    settings = get_settings()
    logger.info("Inkwell auth API starting up (debug=%s)", settings.debug)
    wire_app_state(app, settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    close_app_state(app)
    logger.info("Inkwell auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Inkwell Auth API",
    description="Account registration, login, and access/refresh token lifecycle for Inkwell.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware wrap the app, so the last one
# registered sees the request first: log_requests -> security_headers ->
# TrustedHost -> CORS -> routes.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Rate-Limit-Remaining", "X-Rate-Limit-Reset", "Retry-After", "X-Request-ID"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
# Client-supplied IDs are echoed only if they are short and header-safe.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


@app.middleware("http")
async def security_headers(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", "")
    if not _REQUEST_ID_RE.match(request_id):
        request_id = secrets.token_hex(8)
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        response.headers.get("X-Request-ID", "-"),
    )
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves as {"error": {code, message, detail?}} whatever the status.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError subclass with its own status and code.

    429s additionally carry the bucket state so clients know when to retry.
    """
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, RateLimitExceeded):
        response.headers["X-Rate-Limit-Remaining"] = str(exc.remaining)
        response.headers["X-Rate-Limit-Reset"] = str(exc.reset_after)
        response.headers["Retry-After"] = str(exc.reset_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a readable summary when the body or query fails validation."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error_response(400, "ERR_VALIDATION_FAILED", "Request validation failed.", "; ".join(parts))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for routing-level errors (404 unknown path, 405 wrong method)."""
    return _error_response(exc.status_code, f"ERR_HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, InternalError.code, InternalError.message)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in the auth router) so it is never rate
# limited -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and a database round-trip check."""
    components = {"app": "ok", "database": "ok"}
    try:
        request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database ping failed")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
