"""
tests/test_identity_store.py -- Unit tests for auth/store.py IdentityStore.

Covers:
  - create() returns the stored user with its assigned id
  - find_by_username() is exact and case-sensitive; absent -> NotFoundError
  - duplicate usernames raise DuplicateUsernameError
  - driver failures surface as ProviderError, not raw SQLAlchemy errors
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import DuplicateUsernameError, NotFoundError, ProviderError
from auth.store import IdentityStore


def test_create_then_find(stores) -> None:
    created = stores.identities.create("Ann", "ann", "hash")
    assert created.id is not None
    assert created.created_at

    found = stores.identities.find_by_username("ann")
    assert found == created
    assert stores.identities.get_by_id(created.id) == created


def test_find_missing_raises_not_found(stores) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        stores.identities.find_by_username("ghost")
    assert exc_info.value.username == "ghost"


def test_get_by_id_missing_raises_not_found(stores) -> None:
    with pytest.raises(NotFoundError):
        stores.identities.get_by_id(9999)


def test_lookup_is_case_sensitive(stores) -> None:
    stores.identities.create("Ann", "ann", "hash")
    with pytest.raises(NotFoundError):
        stores.identities.find_by_username("Ann")
    with pytest.raises(NotFoundError):
        stores.identities.find_by_username(" ann")


def test_duplicate_username_raises(stores) -> None:
    stores.identities.create("Ann", "ann", "hash")
    with pytest.raises(DuplicateUsernameError) as exc_info:
        stores.identities.create("Other Ann", "ann", "hash2")
    assert exc_info.value.username == "ann"


def test_case_variants_are_distinct_accounts(stores) -> None:
    lower = stores.identities.create("Ann", "ann", "hash")
    upper = stores.identities.create("Ann", "Ann", "hash")
    assert lower.id != upper.id


def test_driver_failure_becomes_provider_error() -> None:
    resources = MagicMock()
    resources.find_user_by_username.side_effect = OperationalError("SELECT", {}, Exception("db down"))
    resources.insert_user.side_effect = OperationalError("INSERT", {}, Exception("db down"))
    identities = IdentityStore(resources)

    with pytest.raises(ProviderError):
        identities.find_by_username("ann")
    with pytest.raises(ProviderError):
        identities.create("Ann", "ann", "hash")
