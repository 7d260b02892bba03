"""
web/routes.py -- Jinja2 template routes for the Shelfnote web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same library store, identity adapter, session manager) but return
HTML and redirects instead of JSON.

Every protected handler calls the authorization gate first and returns the
login redirect on Denied before the library store is touched.

Route registration order matters: GET /login/oauth/{provider} and
GET /login/callback/{provider} are registered before GET /login.

Routes:
  GET  /                                -- redirect to own shelf or /login
  GET  /login/oauth/{provider}          -- OAuth redirect to provider
  GET  /login/callback/{provider}       -- OAuth callback (federated login)
  GET  /login                           -- login form
  GET  /signup                          -- signup form
  POST /auth                            -- local password login
  POST /register                        -- create account, log in
  POST /logout, GET /logout             -- destroy session, redirect /login
  GET  /home/{username}                 -- shelf              (owner-scoped)
  GET  /new/{username}                  -- new book form      (owner-scoped)
  POST /add/{username}                  -- create book        (owner-scoped)
  POST /edit/{username}                 -- save edited book   (owner-scoped)
  POST /delete/{username}/{book_id}     -- remove book        (owner-scoped)
  GET  /books/{username}/{book_id}      -- book detail        (session required)
  GET  /edit/{username}/{book_id}       -- edit form          (session required)
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from auth.dependencies import authorize_request, session_token_from_request, try_get_current_user
from auth.errors import DuplicateUsernameError, ProviderError
from auth.models import (
    Authenticated,
    AuthOutcome,
    Denied,
    InvalidCredentials,
    LocalCredentials,
    NotFound,
    ProviderFailure,
)
from auth.oauth import get_enabled_providers, get_external_profile
from auth.sessions import SessionManager
from auth.strategies import FederatedStrategy, LocalStrategy, register_local
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings
from library.models import Book
from library.store import LibraryStore

logger = logging.getLogger("shelfnote.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist for ?error= on /login. The raw query param never reaches a
# template; only these messages do.
_ERROR_MESSAGES: dict[str, str] = {
    "oauth_failed": "Sign-in with the provider failed. Please try again.",
    "expired": "Your session has ended. Please log in again.",
}


def _safe_next(next_url: Optional[str]) -> Optional[str]:
    """Accept only server-local paths as post-login targets.

    "/x" is fine; "https://evil", "//evil" and "/\\evil" are rejected.
    Browsers read a backslash after the leading slash as a second slash.
    """
    if next_url and next_url.startswith("/") and next_url[1:2] not in ("/", "\\"):
        return next_url
    return None


def _login_redirect(request: Request) -> RedirectResponse:
    """Where every Denied decision ends up: the login page, never an error page."""
    return RedirectResponse(f"/login?next={quote(request.url.path)}", status_code=302)


def _error_page(request: Request, status: int, error: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request, "error.html", {"status": status, "error": error}, status_code=status
    )


def _start_session(request: Request, outcome: AuthOutcome, failure_message: str) -> Response:
    """Map an AuthOutcome onto the web response, creating a session on success."""
    if isinstance(outcome, Authenticated):
        sessions: SessionManager = request.app.state.sessions
        try:
            _session, token = sessions.login(outcome.user)
        except ProviderError as exc:
            logger.error("Could not create session for %r: %s", outcome.user.username, exc)
            return _error_page(request, 500, failure_message)
        target = _safe_next(request.query_params.get("next")) or f"/home/{quote(outcome.user.username)}"
        resp = RedirectResponse(target, status_code=302)
        set_session_cookie(resp, token)
        resp.headers["Cache-Control"] = "no-store"
        return resp
    if isinstance(outcome, NotFound):
        return templates.TemplateResponse(
            request, "not_found.html", {"username": outcome.username}, status_code=404
        )
    if isinstance(outcome, InvalidCredentials):
        return _error_page(request, 401, "Invalid credentials")
    if isinstance(outcome, ProviderFailure):
        logger.error("%s: %s", failure_message, outcome.detail)
        return _error_page(request, 500, failure_message)
    raise TypeError(f"Unhandled auth outcome: {outcome!r}")


# ---------------------------------------------------------------------------
# Form helpers
# ---------------------------------------------------------------------------


def _parse_rating(raw: Optional[str]) -> Optional[int]:
    """Blank means no rating. Anything else must be an integer 0-10."""
    if raw is None or not raw.strip():
        return None
    value = int(raw.strip())
    if not 0 <= value <= 10:
        raise ValueError(f"rating out of range: {value}")
    return value


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ---------------------------------------------------------------------------
# Auth routes -- OAuth first, then /login
# ---------------------------------------------------------------------------


@router.get("/login/oauth/{provider}", response_class=HTMLResponse)
async def oauth_redirect(request: Request, provider: str) -> Response:
    """Send the browser to the provider's authorization page.

    Only enabled provider names are accepted.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/login/callback/{provider}", response_class=HTMLResponse, name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> Response:
    """Finish the code exchange and log in through FederatedStrategy.

    Flow:
      1. Exchange the authorization code (authlib checks state).
      2. Extract a verified email and display name.
      3. FederatedStrategy finds or provisions the local user.
      4. Create the session, set the cookie, redirect to the shelf.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    try:
        profile = await get_external_profile(client, provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected for %r: %s", provider, exc)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    outcome = FederatedStrategy(request.app.state.identities).prove_identity(profile)
    return _start_session(request, outcome, "Login failed")


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    user = try_get_current_user(request)
    if user is None:
        return RedirectResponse("/login", status_code=302)
    return RedirectResponse(f"/home/{quote(user.username)}", status_code=302)


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page with username/password form and provider buttons."""
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": _ERROR_MESSAGES.get(request.query_params.get("error", "")),
            "providers": get_enabled_providers(),
            "next": _safe_next(request.query_params.get("next")),
            "registration_enabled": get_settings().self_registration_enabled,
        },
    )


@router.get("/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> HTMLResponse:
    if not get_settings().self_registration_enabled:
        return _error_page(request, 403, "Registration is closed")
    return templates.TemplateResponse(request, "signup.html", {})


@router.post("/auth", response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
) -> Response:
    """Handle the username/password login form."""
    outcome = LocalStrategy(request.app.state.identities).prove_identity(LocalCredentials(username, password))
    return _start_session(request, outcome, "Login failed")


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    name: str = Form(...),
    username: str = Form(...),
    password: str = Form(...),
) -> Response:
    """Create a local account and log it in."""
    if not get_settings().self_registration_enabled:
        return _error_page(request, 403, "Registration is closed")
    if not name.strip() or not username or any(c.isspace() for c in username):
        return templates.TemplateResponse(
            request,
            "signup.html",
            {"error_msg": "Name and a username without spaces are required.", "name": name, "username": username},
            status_code=400,
        )
    try:
        outcome = register_local(request.app.state.identities, name.strip(), username, password)
    except DuplicateUsernameError:
        return templates.TemplateResponse(
            request,
            "signup.html",
            {"error_msg": f"The username {username!r} is already taken.", "name": name},
            status_code=409,
        )
    return _start_session(request, outcome, "Registration failed")


@router.api_route("/logout", methods=["GET", "POST"])
def logout(request: Request) -> Response:
    """Destroy the session and redirect to the login page."""
    sessions: SessionManager = request.app.state.sessions
    try:
        sessions.destroy(session_token_from_request(request))
    except ProviderError as exc:
        logger.error("Logout could not delete the session row: %s", exc)
        return _error_page(request, 500, "Logout failed")
    resp = RedirectResponse("/login", status_code=302)
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Shelf routes -- owner-scoped
# ---------------------------------------------------------------------------


@router.get("/home/{username}", response_class=HTMLResponse)
def home(request: Request, username: str) -> Response:
    decision = authorize_request(request, username)
    if isinstance(decision, Denied):
        return _login_redirect(request)

    library: LibraryStore = request.app.state.library
    books = library.find_books_by_username(decision.user.username)
    return templates.TemplateResponse(request, "index.html", {"user": decision.user, "books": books})


@router.get("/new/{username}", response_class=HTMLResponse)
def new_book_form(request: Request, username: str) -> Response:
    decision = authorize_request(request, username)
    if isinstance(decision, Denied):
        return _login_redirect(request)
    return templates.TemplateResponse(request, "new.html", {"user": decision.user, "book": None, "edit": False})


@router.post("/add/{username}", response_class=HTMLResponse)
def add_book(
    request: Request,
    username: str,
    title: str = Form(...),
    author: str = Form(""),
    isbn: Optional[str] = Form(None),
    rating: Optional[str] = Form(None),
    summary: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    review: Optional[str] = Form(None),
) -> Response:
    decision = authorize_request(request, username)
    if isinstance(decision, Denied):
        return _login_redirect(request)
    user = decision.user

    try:
        parsed_rating = _parse_rating(rating)
    except ValueError:
        return _error_page(request, 400, "Rating must be a whole number from 0 to 10")
    if not title.strip():
        return _error_page(request, 400, "Title is required")

    library: LibraryStore = request.app.state.library
    library.insert_book(
        Book(
            user_id=user.id,
            title=title.strip(),
            author=author.strip(),
            isbn=_blank_to_none(isbn),
            rating=parsed_rating,
            summary=_blank_to_none(summary),
            notes=_blank_to_none(notes),
            review=_blank_to_none(review),
        )
    )
    return RedirectResponse(f"/home/{quote(user.username)}", status_code=302)


@router.post("/edit/{username}", response_class=HTMLResponse)
def edit_book(
    request: Request,
    username: str,
    book_id: int = Form(...),
    title: str = Form(...),
    author: str = Form(""),
    isbn: Optional[str] = Form(None),
    rating: Optional[str] = Form(None),
    summary: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    review: Optional[str] = Form(None),
) -> Response:
    decision = authorize_request(request, username)
    if isinstance(decision, Denied):
        return _login_redirect(request)
    user = decision.user

    library: LibraryStore = request.app.state.library
    book = library.get_book(book_id)
    if book is None or book.user_id != user.id:
        return _error_page(request, 404, "Book not found")
    try:
        parsed_rating = _parse_rating(rating)
    except ValueError:
        return _error_page(request, 400, "Rating must be a whole number from 0 to 10")
    if not title.strip():
        return _error_page(request, 400, "Title is required")

    library.update_book(
        book_id,
        title=title.strip(),
        author=author.strip(),
        isbn=_blank_to_none(isbn),
        rating=parsed_rating,
        summary=_blank_to_none(summary),
        notes=_blank_to_none(notes),
        review=_blank_to_none(review),
    )
    return RedirectResponse(f"/home/{quote(user.username)}", status_code=302)


@router.post("/delete/{username}/{book_id}", response_class=HTMLResponse)
def delete_book(request: Request, username: str, book_id: int) -> Response:
    decision = authorize_request(request, username)
    if isinstance(decision, Denied):
        return _login_redirect(request)
    user = decision.user

    library: LibraryStore = request.app.state.library
    book = library.get_book(book_id)
    if book is None or book.user_id != user.id:
        return _error_page(request, 404, "Book not found")
    library.delete_book(book_id)
    return RedirectResponse(f"/home/{quote(user.username)}", status_code=302)


# ---------------------------------------------------------------------------
# Book routes -- session required, no owner check
# ---------------------------------------------------------------------------


@router.get("/books/{username}/{book_id}", response_class=HTMLResponse)
def book_detail(request: Request, username: str, book_id: int) -> Response:
    decision = authorize_request(request)
    if isinstance(decision, Denied):
        return _login_redirect(request)

    library: LibraryStore = request.app.state.library
    book = library.get_book(book_id)
    if book is None:
        return _error_page(request, 404, "Book not found")
    return templates.TemplateResponse(
        request, "book.html", {"user": decision.user, "book": book, "username": username}
    )


@router.get("/edit/{username}/{book_id}", response_class=HTMLResponse)
def edit_book_form(request: Request, username: str, book_id: int) -> Response:
    decision = authorize_request(request)
    if isinstance(decision, Denied):
        return _login_redirect(request)

    library: LibraryStore = request.app.state.library
    book = library.get_book(book_id)
    if book is None:
        return _error_page(request, 404, "Book not found")
    return templates.TemplateResponse(request, "new.html", {"user": decision.user, "book": book, "edit": True})
