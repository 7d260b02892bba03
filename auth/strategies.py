"""
auth/strategies.py -- Identity proof strategies.

Pattern: Strategy. Both variants implement AuthStrategy.prove_identity() and
return exactly one AuthOutcome per attempt:

  LocalStrategy      username + password checked against the bcrypt hash.
  FederatedStrategy  OAuth profile (already exchanged and verified by the
                     provider); looks up or provisions the local record.

Outcome policy:
  NotFound / InvalidCredentials are terminal user-facing answers and are never
  retried. ProviderFailure means the store itself failed; it is logged here
  and surfaced by the route layer as a generic server error.

Usernames are matched exactly. No case folding or trimming is applied to
either the local username or the one derived from a federated email.

Layer rule: no imports from api/, web/, or library/.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from auth.errors import DuplicateUsernameError, NotFoundError, ProviderError
from auth.models import (
    Authenticated,
    AuthOutcome,
    ExternalProfile,
    InvalidCredentials,
    LocalCredentials,
    NotFound,
    ProviderFailure,
)
from auth.store import IdentityStore
from auth.tokens import FEDERATED_ONLY_HASH, burn_password_check, hash_password, verify_password

logger = logging.getLogger("shelfnote.auth")

P = TypeVar("P")


class AuthStrategy(ABC, Generic[P]):
    """One way of proving who a caller is."""

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    @abstractmethod
    def prove_identity(self, proof: P) -> AuthOutcome:
        """Return exactly one AuthOutcome for the given proof material."""


class LocalStrategy(AuthStrategy[LocalCredentials]):
    """Username and password login."""

    def prove_identity(self, proof: LocalCredentials) -> AuthOutcome:
        try:
            user = self.store.find_by_username(proof.username)
        except NotFoundError:
            # Equalize timing with the wrong-password branch
            burn_password_check(proof.password)
            logger.info("Local login for unknown username %r", proof.username)
            return NotFound(proof.username)
        except ProviderError as exc:
            logger.error("Local login lookup failed for %r: %s", proof.username, exc)
            return ProviderFailure(str(exc))

        if not verify_password(proof.password, user.hashed_password):
            logger.info("Local login rejected for %r: bad password", proof.username)
            return InvalidCredentials(proof.username)
        return Authenticated(user)


class FederatedStrategy(AuthStrategy[ExternalProfile]):
    """OAuth login. Trusts the provider profile as-is.

    The local username is the email local-part (everything before the first
    "@"). A first login provisions the account with FEDERATED_ONLY_HASH.
    """

    def prove_identity(self, proof: ExternalProfile) -> AuthOutcome:
        username = derive_username(proof.email)
        if not username:
            logger.error("Federated login rejected: unusable email %r", proof.email)
            return ProviderFailure("identity provider returned an email without a local part")

        try:
            return Authenticated(self.store.find_by_username(username))
        except NotFoundError:
            pass
        except ProviderError as exc:
            logger.error("Federated login lookup failed for %r: %s", username, exc)
            return ProviderFailure(str(exc))

        name = proof.display_name.strip() or username
        try:
            user = self.store.create(name, username, FEDERATED_ONLY_HASH)
        except DuplicateUsernameError:
            # A concurrent first login for the same email won the insert.
            return self._lookup_after_race(username)
        except ProviderError as exc:
            logger.error("Federated provisioning failed for %r: %s", username, exc)
            return ProviderFailure(str(exc))
        logger.info("Provisioned federated user %r (id=%s)", username, user.id)
        return Authenticated(user)

    def _lookup_after_race(self, username: str) -> AuthOutcome:
        try:
            return Authenticated(self.store.find_by_username(username))
        except (NotFoundError, ProviderError) as exc:
            logger.error("Federated re-lookup after duplicate insert failed for %r: %s", username, exc)
            return ProviderFailure(str(exc))


def derive_username(email: str) -> str:
    """Return the part of email before the first "@" (the whole string if none)."""
    return email.split("@", 1)[0]


def register_local(store: IdentityStore, name: str, username: str, password: str) -> AuthOutcome:
    """Create a local account and return Authenticated(new_user).

    Raises DuplicateUsernameError when the username is taken so callers can
    show a distinct "username taken" message. Store failures come back as
    ProviderFailure like every other proof attempt.
    """
    hashed = hash_password(password)
    try:
        user = store.create(name, username, hashed)
    except ProviderError as exc:
        logger.error("Registration failed for %r: %s", username, exc)
        return ProviderFailure(str(exc))
    logger.info("Registered local user %r (id=%s)", username, user.id)
    return Authenticated(user)
