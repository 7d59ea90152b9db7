"""
api/main.py -- FastAPI application entry point for CourseGate.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps the last-added
middleware around everything added before it):
  1. log_requests       -- one access-log line per request with latency
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter
  3. CORSMiddleware     -- credentials-enabled CORS for the configured frontends

Lifespan builds every shared handle exactly once and hangs it on app.state:
  settings, user_store, session_cache, token_codec, mailer, credentials.
Nothing else in the codebase constructs them, so tests replace the lifespan
and inject fakes.

Error envelope: every failure, whatever raised it, leaves as
    {"success": false, "message": ..., "stack": ...}
with stack populated only outside production.
"""

from __future__ import annotations

import logging
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.service import CredentialService
from auth.store import connect_with_retry
from auth.tokens import TokenCodec
from cache.store import MemorySessionCache, RedisSessionCache
from core.config import Settings, get_settings
from mail.sender import SmtpMailer

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("coursegate.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def _build_session_cache(settings: Settings):
    if settings.redis_url:
        cache = RedisSessionCache.from_url(
            settings.redis_url,
            default_ttl=settings.refresh_token_ttl_seconds,
            timeout_seconds=settings.redis_timeout_seconds,
        )
        if not cache.ping():
            logger.warning("Redis unreachable at startup -- session cache will degrade to directory reads")
        return cache
    if settings.is_production:
        # Per-process entries: with several workers, a delete or role change
        # only evicts the snapshot in the worker that handled it.
        logger.warning(
            "REDIS_URL not set in production -- in-process session cache is only safe with a single worker"
        )
    else:
        logger.info("REDIS_URL not set -- using in-process session cache")
    return MemorySessionCache(default_ttl=settings.refresh_token_ttl_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared handles on startup; close them on shutdown.

    Startup order matters:
      1. User directory first, with the startup-only retry loop. If it never
         comes up the process exits rather than serving 503s forever.
      2. Session cache -- best effort, startup continues without Redis.
      3. Codec, mailer, and the credential service that ties them together.
    """
    settings = get_settings()
    logger.info("CourseGate API starting up (environment=%s)", settings.environment)
    app.state.settings = settings
    app.state.user_store = connect_with_retry(
        settings.database_url,
        timeout_seconds=settings.db_timeout_seconds,
        attempts=settings.db_connect_retries,
        backoff_seconds=settings.db_retry_backoff_seconds,
    )
    logger.info("User directory connected")
    app.state.session_cache = _build_session_cache(settings)
    app.state.token_codec = TokenCodec(settings)
    app.state.mailer = SmtpMailer(settings)
    app.state.credentials = CredentialService(
        app.state.user_store,
        app.state.session_cache,
        app.state.token_codec,
        app.state.mailer,
    )

    yield

    app.state.session_cache.close()
    app.state.user_store.close()
    logger.info("CourseGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CourseGate API",
    description="Authentication and session service for the course catalog.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the ErrorResponse envelope so clients parse errors
# uniformly. The stack field is development-only.
# ---------------------------------------------------------------------------


def _settings_for(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _error(request: Request, status_code: int, message: str, exc: BaseException | None = None) -> JSONResponse:
    stack = None
    if exc is not None and not _settings_for(request).is_production:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, stack=stack).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any domain error with its own status and client-safe message."""
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(request, exc.status_code, exc.message, exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429. Retry-After tells clients how long to wait."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(request, 429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are client errors: 400 with the first problem spelled out."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request.")
    else:
        message = "Invalid request."
    return _error(request, 400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback always goes to the log; it reaches the response body only
    outside production.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(request, 500, "Internal server error.", exc)


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return liveness plus directory and cache reachability."""
    state = request.app.state
    components = {
        "app": "ok",
        "database": "ok" if state.user_store.ping() else "error",
        "cache": "ok" if state.session_cache.ping() else "degraded",
    }
    return HealthResponse(version=__version__, components=components)
