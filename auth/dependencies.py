"""
auth/dependencies.py -- Authorization gate and FastAPI Depends() helpers.

authorize() is the single decision point for every protected route:

  Allowed(user)  the token resolves to a live session AND, for owner-scoped
                 routes, the session's username equals the requested owner.
  Denied(reason) "unauthenticated" (no live session) or "forbidden" (live
                 session, wrong owner).

Resource-scoped routes (a specific book by id) call authorize() without an
owner: a live session is enough there, and whether the book belongs to the
user is the resource store's concern.

The resolved User is only ever returned to the caller. Nothing is stored on
module or app state, so concurrent requests for different users cannot see
each other's identity.

Token sources, in priority order:
  1. "session" cookie -- set by the web UI and API login.
  2. Authorization: Bearer <token> -- API clients.

Layer rule: no imports from web/ or library/. This module may import from
fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from auth.models import Allowed, AuthDecision, Denied, User
from auth.sessions import SessionManager
from auth.tokens import SESSION_COOKIE


def authorize(sessions: SessionManager, token: Optional[str], owner_username: Optional[str] = None) -> AuthDecision:
    """Decide whether token may access a route, optionally scoped to an owner."""
    user = sessions.resolve(token)
    if user is None:
        return Denied("unauthenticated")
    if owner_username is not None and user.username != owner_username:
        return Denied("forbidden")
    return Allowed(user)


def session_token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def authorize_request(request: Request, owner_username: Optional[str] = None) -> AuthDecision:
    """Run the gate for the current request using the app's session manager."""
    sessions: SessionManager = request.app.state.sessions
    return authorize(sessions, session_token_from_request(request), owner_username)


def try_get_current_user(request: Request) -> Optional[User]:
    """Return the session's User, or None. Never raises."""
    decision = authorize_request(request)
    return decision.user if isinstance(decision, Allowed) else None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if there is no live session.

    Use as a FastAPI dependency:
        @router.get("/books/{book_id}")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise _denied_exception(Denied("unauthenticated"))
    return user


def require_owner(request: Request, username: str) -> User:
    """Require a live session whose username matches the {username} path param.

    Raises HTTP 401 without a session and HTTP 403 for another user's session.

    Use as a FastAPI dependency on routes with a {username} path parameter:
        @router.get("/users/{username}/books")
        async def route(user: User = Depends(require_owner)): ...
    """
    decision = authorize_request(request, username)
    if isinstance(decision, Denied):
        raise _denied_exception(decision)
    return decision.user


def _denied_exception(decision: Denied) -> HTTPException:
    if decision.reason == "forbidden":
        return HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You do not have access to this shelf."},
        )
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
    )
