"""
library/store.py -- SQLAlchemy-backed resource store for Shelfnote.

Uses SQLAlchemy Core (not ORM) so the dataclasses in library/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. LibraryStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

User rows are returned as plain mappings rather than auth dataclasses: the
auth layer owns its own User shape and maps these rows through
auth.store.IdentityStore. library/ never imports auth/.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = LibraryStore()                                # SQLite default
    store = LibraryStore("postgresql://user:pw@host/db")  # PostgreSQL
    user_id = store.insert_user("Ann", "ann", hashed)
    store.insert_book(Book(user_id=user_id, title="Dune"))
    books = store.find_books_by_username("ann")
    store.close()
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from library.models import Book

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("username", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash or federated-only sentinel
    Column("created_at", String(32), nullable=False),
)

_books = Table(
    "books",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("author", String(255), nullable=False, server_default=""),
    Column("isbn", String(20)),
    Column("rating", Integer),
    Column("summary", Text),
    Column("notes", Text),
    Column("review", Text),
    Column("created_at", String(32), nullable=False),
)

_BOOK_FIELDS = ("title", "author", "isbn", "rating", "summary", "notes", "review")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Build an engine with the SQLite pragmas and thread settings applied."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class LibraryStore:
    """Repository for users and their books."""

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user_by_username(self, username: str) -> Optional[Mapping[str, Any]]:
        """Return the user row for an exact (case-sensitive) username, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return row._mapping if row is not None else None

    def find_user_by_id(self, user_id: int) -> Optional[Mapping[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return row._mapping if row is not None else None

    def insert_user(self, name: str, username: str, password: str) -> int:
        """Insert a user and return the generated id.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(name=name, username=username, password=password, created_at=_now_iso())
            )
            conn.commit()
            return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def find_books_by_username(self, username: str) -> list[Book]:
        """Return every book owned by username, newest first."""
        query = (
            select(_books)
            .join(_users, _users.c.id == _books.c.user_id)
            .where(_users.c.username == username)
            .order_by(_books.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_book(r) for r in rows]

    def get_book(self, book_id: int) -> Optional[Book]:
        with self.engine.connect() as conn:
            row = conn.execute(_books.select().where(_books.c.id == book_id)).fetchone()
        return _row_to_book(row) if row is not None else None

    def insert_book(self, book: Book) -> int:
        """Insert a book and return its assigned id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _books.insert().values(
                    user_id=book.user_id,
                    created_at=_now_iso(),
                    **{f: getattr(book, f) for f in _BOOK_FIELDS},
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_book(self, book_id: int, **fields) -> bool:
        """Update mutable book fields. Returns False if book_id was not found.

        Unknown field names raise ValueError rather than reaching SQL.
        """
        unknown = set(fields) - set(_BOOK_FIELDS)
        if unknown:
            raise ValueError(f"Unknown book fields: {unknown!r}")
        if not fields:
            return self.get_book(book_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_books.update().where(_books.c.id == book_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_book(self, book_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_books.delete().where(_books.c.id == book_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_book(row) -> Book:
    return Book(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        author=row.author or "",
        isbn=row.isbn,
        rating=row.rating,
        summary=row.summary,
        notes=row.notes,
        review=row.review,
        created_at=row.created_at,
    )
