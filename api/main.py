"""
api/main.py -- FastAPI application entry point for Shelfnote.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. SessionMiddleware     -- authlib OAuth state between redirect and callback

Lifespan handles startup (library store, identity adapter, session manager,
OAuth registry, session purge task) and shutdown symmetrically.

There is no process-wide "current user". app.state only holds the shared
stores; the user for a request comes from the authorization gate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.books import router as books_router
from auth.dependencies import get_current_user
from auth.errors import ProviderError
from auth.models import User
from auth.oauth import oauth as oauth_client
from auth.sessions import SessionManager
from auth.store import IdentityStore
from core.config import get_settings
from library.store import LibraryStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("shelfnote.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired session rows every hour.

    Expired sessions already fail to resolve; this only keeps the table small.
    CancelledError from task.cancel() at shutdown unwinds out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(60 * 60)
        try:
            removed = app.state.sessions.purge_expired()
        except SQLAlchemyError:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the server lifetime.

    Startup order matters: the identity adapter wraps the library store, and
    the session manager resolves users through the identity adapter.
    """
    logger.info("Shelfnote starting up")
    app.state.library = LibraryStore()
    app.state.identities = IdentityStore(app.state.library)
    app.state.sessions = SessionManager(app.state.identities)
    app.state.oauth = oauth_client
    logger.info("Stores initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.sessions.close()
    app.state.library.close()
    logger.info("Shelfnote shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Shelfnote API",
    description="Personal book tracking.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by session-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(SlowAPIMiddleware)

# Required by authlib to keep the OAuth state value between the
# authorization redirect and the callback. Not used for login sessions, and
# its cookie name must differ from SESSION_COOKIE.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="oauth_state",
    https_only=_settings.secure_cookies,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


_QUIET_PATHS = frozenset({"/api/v1/health"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One line per request. Path only: query strings may carry ?next= targets."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    level = logging.DEBUG if request.url.path in _QUIET_PATHS else logging.INFO
    client = request.client.host if request.client else "-"
    logger.log(
        level, "%s %s -> %d (%.1fms) from %s", request.method, request.url.path, response.status_code, elapsed_ms, client
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(books_router, prefix="/api/v1", tags=["Books"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires a session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Shelfnote API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires a session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Shelfnote API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"error": {"code", "message", "detail"?}}.
# ---------------------------------------------------------------------------


def _error_json(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "?")
    return _error_json(
        429, "rate_limited", "Too many attempts. Slow down.", str(exc), headers={"Retry-After": str(retry_after)}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_json(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routes raise HTTPException(detail={"code", "message"}); that dict becomes the error field."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_json(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    """A store or identity provider failed. Logged, answered with a generic 500, never retried."""
    logger.error("Provider failure on %s %s: %s", request.method, request.url.path, exc)
    return _error_json(500, "provider_failure", "A backing service failed. Please try again later.")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Traceback to the log only; the client gets a fixed message.
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_json(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers."""
    database = "ok"
    try:
        with request.app.state.library.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
