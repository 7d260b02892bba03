"""
auth/store.py -- Identity store adapter over the resource store.

Pattern: Adapter + Data Mapper. IdentityStore narrows the resource store
(library.store.LibraryStore in production) down to the two user operations
the auth core needs, and maps its rows and driver errors into auth types:

  row missing            -> NotFoundError
  UNIQUE(username) hit   -> DuplicateUsernameError
  any other SQLAlchemy   -> ProviderError

No caching: every call round-trips to the resource store, so a session
resolution always sees the current user record.

Layer rule: no imports from api/, web/, or library/. The resource store is
described structurally by ResourceStore below.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateUsernameError, NotFoundError, ProviderError
from auth.models import User


class ResourceStore(Protocol):
    """The slice of the resource store the auth core relies on."""

    def find_user_by_username(self, username: str) -> Optional[Mapping[str, Any]]: ...

    def find_user_by_id(self, user_id: int) -> Optional[Mapping[str, Any]]: ...

    def insert_user(self, name: str, username: str, password: str) -> int: ...


class IdentityStore:
    """User lookup and creation on top of a ResourceStore.

    Usage:
        identities = IdentityStore(LibraryStore())
        user = identities.create("Ann", "ann", hash_password("pw123"))
        same = identities.find_by_username("ann")
    """

    def __init__(self, resources: ResourceStore) -> None:
        self._resources = resources

    def find_by_username(self, username: str) -> User:
        """Exact, case-sensitive lookup. Raises NotFoundError if absent."""
        try:
            row = self._resources.find_user_by_username(username)
        except SQLAlchemyError as exc:
            raise ProviderError(f"user lookup failed: {exc.__class__.__name__}") from exc
        if row is None:
            raise NotFoundError(username)
        return _row_to_user(row)

    def get_by_id(self, user_id: int) -> User:
        try:
            row = self._resources.find_user_by_id(user_id)
        except SQLAlchemyError as exc:
            raise ProviderError(f"user lookup failed: {exc.__class__.__name__}") from exc
        if row is None:
            raise NotFoundError(str(user_id))
        return _row_to_user(row)

    def create(self, name: str, username: str, hashed_password: str) -> User:
        """Insert a new user and return it with its assigned id.

        Raises DuplicateUsernameError when the username is already taken.
        """
        try:
            user_id = self._resources.insert_user(name, username, hashed_password)
        except IntegrityError as exc:
            raise DuplicateUsernameError(username) from exc
        except SQLAlchemyError as exc:
            raise ProviderError(f"user insert failed: {exc.__class__.__name__}") from exc
        return self.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        username=row["username"],
        hashed_password=row["password"],
        created_at=row.get("created_at"),
    )
