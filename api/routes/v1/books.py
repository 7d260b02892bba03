"""
api/routes/v1/books.py -- Book shelf REST endpoints.

Routes:
  GET    /api/v1/users/{username}/books  -- list a shelf     (owner-scoped)
  POST   /api/v1/users/{username}/books  -- add a book       (owner-scoped)
  GET    /api/v1/books/{book_id}         -- one book         (session required)
  PUT    /api/v1/books/{book_id}         -- edit a book      (session required)
  DELETE /api/v1/books/{book_id}         -- remove a book    (session required)

Owner-scoped routes depend on require_owner, which runs the authorization
gate before the handler body -- the library store is never queried for a
denied request. Book-by-id routes only need a live session; PUT and DELETE
additionally refuse books on someone else's shelf (404, so ids of other
users' books are not confirmed).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import BookCreate, BookResponse, BookUpdate
from auth.dependencies import get_current_user, require_owner
from auth.models import User
from library.models import Book
from library.store import LibraryStore

# Auth policy:
# - GET/POST   /api/v1/users/{username}/books:  require_owner
# - GET        /api/v1/books/{book_id}:         get_current_user
# - PUT/DELETE /api/v1/books/{book_id}:         get_current_user + shelf check
router = APIRouter()


@router.get("/users/{username}/books", response_model=list[BookResponse])
def list_books(request: Request, username: str, user: User = Depends(require_owner)) -> list[BookResponse]:
    """Return every book on the user's own shelf, newest first."""
    library: LibraryStore = request.app.state.library
    return [_book_to_response(b) for b in library.find_books_by_username(user.username)]


@router.post("/users/{username}/books", response_model=BookResponse, status_code=201)
def add_book(
    request: Request,
    username: str,
    body: BookCreate,
    user: User = Depends(require_owner),
) -> BookResponse:
    """Add a book to the user's own shelf."""
    library: LibraryStore = request.app.state.library
    book_id = library.insert_book(Book(user_id=user.id, **body.model_dump()))
    return _book_to_response(_fetch(library, book_id))


@router.get("/books/{book_id}", response_model=BookResponse)
def get_book(request: Request, book_id: int, user: User = Depends(get_current_user)) -> BookResponse:
    library: LibraryStore = request.app.state.library
    return _book_to_response(_fetch(library, book_id))


@router.put("/books/{book_id}", response_model=BookResponse)
def update_book(
    request: Request,
    book_id: int,
    body: BookUpdate,
    user: User = Depends(get_current_user),
) -> BookResponse:
    """Update the given fields of a book on the caller's shelf."""
    library: LibraryStore = request.app.state.library
    _fetch_own(library, book_id, user)
    library.update_book(book_id, **body.model_dump(exclude_unset=True))
    return _book_to_response(_fetch(library, book_id))


@router.delete("/books/{book_id}", status_code=204)
def delete_book(request: Request, book_id: int, user: User = Depends(get_current_user)) -> Response:
    library: LibraryStore = request.app.state.library
    _fetch_own(library, book_id, user)
    library.delete_book(book_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fetch(library: LibraryStore, book_id: int) -> Book:
    book = library.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Book not found."})
    return book


def _fetch_own(library: LibraryStore, book_id: int, user: User) -> Book:
    book = _fetch(library, book_id)
    if book.user_id != user.id:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Book not found."})
    return book


def _book_to_response(book: Book) -> BookResponse:
    return BookResponse(
        id=book.id,
        user_id=book.user_id,
        title=book.title,
        author=book.author,
        isbn=book.isbn,
        rating=book.rating,
        summary=book.summary,
        notes=book.notes,
        review=book.review,
        created_at=book.created_at,
    )
