"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login      -- local password login; sets session cookie
  POST /api/v1/auth/register   -- create a local account and log it in
  POST /api/v1/auth/logout     -- destroy the session; clear cookie
  GET  /api/v1/auth/me         -- current user info (requires session)
  GET  /api/v1/auth/providers  -- list enabled OAuth providers (public)

Outcome mapping (every AuthOutcome variant is handled):
  Authenticated       -> 200/201 with a new session token
  NotFound            -> 401 "not_found"
  InvalidCredentials  -> 401 "bad_credentials"
  DuplicateUsername   -> 409 "username_taken"
  ProviderFailure     -> 500 "provider_failure" (logged, never retried)

Security:
  POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that carries a session token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import LoginRequest, MeResponse, OAuthProviderInfo, RegisterRequest, SessionResponse
from auth.dependencies import get_current_user, session_token_from_request
from auth.errors import DuplicateUsernameError
from auth.models import (
    Authenticated,
    AuthOutcome,
    InvalidCredentials,
    LocalCredentials,
    NotFound,
    ProviderFailure,
    User,
)
from auth.oauth import get_enabled_providers
from auth.sessions import SessionManager
from auth.strategies import LocalStrategy, register_local
from auth.tokens import FEDERATED_ONLY_HASH, clear_session_cookie, set_session_cookie
from core.config import get_settings

logger = logging.getLogger("shelfnote.api")

# Auth policy:
# - POST /api/v1/auth/login:      public
# - POST /api/v1/auth/register:   public (when self-registration is enabled)
# - POST /api/v1/auth/logout:     public -- destroying an unknown session is a no-op
# - GET  /api/v1/auth/providers:  public
# - GET  /api/v1/auth/me:         requires session (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=SessionResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie."""
    strategy = LocalStrategy(request.app.state.identities)
    outcome = strategy.prove_identity(LocalCredentials(body.username, body.password))
    return _session_response(request, outcome, status_code=200)


@limiter.limit(LOGIN_RATE_LIMIT)
@router.post("/auth/register", response_model=SessionResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a local account and return a session for it."""
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    try:
        outcome = register_local(request.app.state.identities, body.name, body.username, body.password)
    except DuplicateUsernameError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "username_taken", "message": "That username is already taken."},
        ) from exc
    return _session_response(request, outcome, status_code=201)


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Destroy the current session (if any) and clear the cookie."""
    sessions: SessionManager = request.app.state.sessions
    sessions.destroy(session_token_from_request(request))
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the session's user."""
    return MeResponse(
        user_id=current_user.id,
        name=current_user.name,
        username=current_user.username,
        federated=current_user.hashed_password == FEDERATED_ONLY_HASH,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_response(request: Request, outcome: AuthOutcome, status_code: int) -> JSONResponse:
    """Turn an AuthOutcome into the HTTP answer, creating a session on success."""
    if isinstance(outcome, Authenticated):
        sessions: SessionManager = request.app.state.sessions
        session, token = sessions.login(outcome.user)
        resp = JSONResponse(
            status_code=status_code,
            content=SessionResponse(
                session_token=token,
                expires_at=session.expires_at,
                username=outcome.user.username,
            ).model_dump(),
        )
        set_session_cookie(resp, token)
    elif isinstance(outcome, NotFound):
        resp = _error(401, "not_found", "No account with that username.")
    elif isinstance(outcome, InvalidCredentials):
        resp = _error(401, "bad_credentials", "Invalid username or password.")
    elif isinstance(outcome, ProviderFailure):
        logger.error("Login failed with provider failure: %s", outcome.detail)
        resp = _error(500, "provider_failure", "Login failed. Please try again later.")
    else:
        raise TypeError(f"Unhandled auth outcome: {outcome!r}")
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})
