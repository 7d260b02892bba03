"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, strategies and
routes do the work; these classes only own the shape.

Layer rule: no imports from api/, web/, core/, or library/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass
class User:
    """A persisted Shelfnote identity.

    hashed_password holds either a bcrypt hash or FEDERATED_ONLY_HASH for
    accounts provisioned by an OAuth login (they have no local password).
    """

    name: str
    username: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Session:
    """Server-side record binding a session token to a user.

    user_id is a weak reference: resolution re-reads the User through the
    identity store instead of trusting a cached copy.
    """

    token_id: str
    user_id: int
    created_at: str
    expires_at: str


# ---------------------------------------------------------------------------
# Proof material
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalCredentials:
    username: str
    password: str


@dataclass(frozen=True)
class ExternalProfile:
    """Profile handed over by an OAuth provider after a completed code exchange."""

    email: str
    display_name: str


# ---------------------------------------------------------------------------
# AuthOutcome -- exactly one per proof attempt
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Authenticated:
    user: User


@dataclass(frozen=True)
class NotFound:
    username: str


@dataclass(frozen=True)
class InvalidCredentials:
    username: str


@dataclass(frozen=True)
class ProviderFailure:
    detail: str


AuthOutcome = Union[Authenticated, NotFound, InvalidCredentials, ProviderFailure]


# ---------------------------------------------------------------------------
# Authorization decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Allowed:
    user: User


@dataclass(frozen=True)
class Denied:
    reason: str  # "unauthenticated" or "forbidden"


AuthDecision = Union[Allowed, Denied]
