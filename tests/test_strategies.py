"""
tests/test_strategies.py -- Unit tests for auth/strategies.py.

Covers:
  - register -> local login round trip (the Ann scenario)
  - LocalStrategy: NotFound, InvalidCredentials, Authenticated, ProviderFailure
  - FederatedStrategy: first login provisions exactly one user, later logins
    reuse it, never NotFound / InvalidCredentials, duplicate-insert race
  - federated-only accounts cannot log in with a password
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from auth.errors import DuplicateUsernameError, NotFoundError, ProviderError
from auth.models import (
    Authenticated,
    ExternalProfile,
    InvalidCredentials,
    LocalCredentials,
    NotFound,
    ProviderFailure,
    User,
)
from auth.strategies import FederatedStrategy, LocalStrategy, derive_username, register_local
from auth.tokens import FEDERATED_ONLY_HASH


class TestLocalStrategy:
    def test_ann_scenario(self, stores) -> None:
        registered = register_local(stores.identities, "Ann", "ann", "pw123")
        assert isinstance(registered, Authenticated)
        ann = registered.user
        assert ann.username == "ann"
        assert ann.name == "Ann"
        assert ann.hashed_password != "pw123"

        strategy = LocalStrategy(stores.identities)
        ok = strategy.prove_identity(LocalCredentials("ann", "pw123"))
        assert ok == Authenticated(ann)

        assert strategy.prove_identity(LocalCredentials("ann", "wrong")) == InvalidCredentials("ann")
        assert strategy.prove_identity(LocalCredentials("ghost", "x")) == NotFound("ghost")

    def test_username_is_not_normalized(self, stores) -> None:
        register_local(stores.identities, "Ann", "ann", "pw123")
        strategy = LocalStrategy(stores.identities)
        assert strategy.prove_identity(LocalCredentials("Ann", "pw123")) == NotFound("Ann")

    def test_register_duplicate_raises(self, stores) -> None:
        register_local(stores.identities, "Ann", "ann", "pw123")
        with pytest.raises(DuplicateUsernameError):
            register_local(stores.identities, "Ann Again", "ann", "other")

    def test_federated_only_account_rejects_passwords(self, stores) -> None:
        stores.identities.create("Jane", "jane", FEDERATED_ONLY_HASH)
        strategy = LocalStrategy(stores.identities)
        assert strategy.prove_identity(LocalCredentials("jane", "")) == InvalidCredentials("jane")
        assert strategy.prove_identity(LocalCredentials("jane", FEDERATED_ONLY_HASH)) == InvalidCredentials("jane")

    def test_store_failure_is_provider_failure(self) -> None:
        identities = MagicMock()
        identities.find_by_username.side_effect = ProviderError("db down")
        outcome = LocalStrategy(identities).prove_identity(LocalCredentials("ann", "pw123"))
        assert isinstance(outcome, ProviderFailure)
        assert "db down" in outcome.detail


class TestFederatedStrategy:
    def test_first_login_provisions_then_reuses(self, stores) -> None:
        strategy = FederatedStrategy(stores.identities)
        profile = ExternalProfile(email="jane@x.com", display_name="Jane Doe")

        first = strategy.prove_identity(profile)
        assert isinstance(first, Authenticated)
        assert first.user.username == "jane"
        assert first.user.name == "Jane Doe"
        assert first.user.hashed_password == FEDERATED_ONLY_HASH

        second = strategy.prove_identity(profile)
        assert second == Authenticated(first.user)

        # Exactly one row, matching the first login
        assert stores.library.find_user_by_username("jane")["id"] == first.user.id

    def test_existing_local_user_is_trusted_as_is(self, stores) -> None:
        local = register_local(stores.identities, "Jane Local", "jane", "pw123").user
        outcome = FederatedStrategy(stores.identities).prove_identity(
            ExternalProfile(email="jane@elsewhere.org", display_name="Someone Else")
        )
        assert outcome == Authenticated(local)

    def test_blank_display_name_falls_back_to_username(self, stores) -> None:
        outcome = FederatedStrategy(stores.identities).prove_identity(ExternalProfile("sam@x.com", "  "))
        assert isinstance(outcome, Authenticated)
        assert outcome.user.name == "sam"

    def test_email_without_local_part_is_provider_failure(self, stores) -> None:
        outcome = FederatedStrategy(stores.identities).prove_identity(ExternalProfile("@x.com", "Nobody"))
        assert isinstance(outcome, ProviderFailure)

    def test_duplicate_insert_race_returns_existing_user(self) -> None:
        winner = User(id=7, name="Jane", username="jane", hashed_password=FEDERATED_ONLY_HASH)
        identities = MagicMock()
        identities.find_by_username.side_effect = [NotFoundError("jane"), winner]
        identities.create.side_effect = DuplicateUsernameError("jane")

        outcome = FederatedStrategy(identities).prove_identity(ExternalProfile("jane@x.com", "Jane"))
        assert outcome == Authenticated(winner)
        assert identities.find_by_username.call_count == 2

    def test_store_failure_is_provider_failure(self) -> None:
        identities = MagicMock()
        identities.find_by_username.side_effect = NotFoundError("jane")
        identities.create.side_effect = ProviderError("insert failed")
        outcome = FederatedStrategy(identities).prove_identity(ExternalProfile("jane@x.com", "Jane"))
        assert isinstance(outcome, ProviderFailure)


@pytest.mark.parametrize(
    ("email", "expected"),
    [("jane@x.com", "jane"), ("Jane.Doe@x.com", "Jane.Doe"), ("a@b@c", "a"), ("plain", "plain"), ("@x.com", "")],
)
def test_derive_username(email: str, expected: str) -> None:
    assert derive_username(email) == expected
