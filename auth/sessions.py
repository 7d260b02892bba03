"""
auth/sessions.py -- Session manager: create, resolve, serialize, destroy.

A session has two halves:

  Server side: one row in the sessions table (token_id, user_id, created_at,
      expires_at). The row is the source of truth for revocation -- logout
      deletes it, and a token whose row is gone no longer resolves.

  Client side: a signed JWT (auth.tokens.encode_session_token) carrying the
      row id, the serialized identity, the absolute expiry and a format
      version. It travels in the "session" cookie or a Bearer header.

Expiry is fixed at creation (Settings.session_expire_seconds, 24h by
default) and enforced twice: by the JWT exp claim and by expires_at on the
row. There is no sliding renewal.

resolve() fails closed. Missing, malformed, tampered, expired, revoked or
undeserializable tokens and store errors all resolve to None -- it never
raises to the caller.

Layer rule: no imports from api/, web/, or library/. Import from core/ is
allowed.
"""

from __future__ import annotations

import json
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import NotFoundError, ProviderError
from auth.models import Session, User
from auth.store import IdentityStore
from auth.tokens import decode_session_token, encode_session_token
from core.config import get_settings

logger = logging.getLogger("shelfnote.auth")

# Format version of the serialized identity blob.
IDENTITY_VERSION = 1

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_id", String(64), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Owns every Session. No other component writes the sessions table.

    Usage:
        sessions = SessionManager(identities)
        session, token = sessions.login(user)   # after Authenticated(user)
        user = sessions.resolve(token)          # User or None
        sessions.destroy(token)                 # logout, idempotent
    """

    def __init__(
        self,
        identities: IdentityStore,
        db_url: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = get_settings()
        db_url = db_url or settings.database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self.identities = identities
        self.lifetime = timedelta(seconds=settings.session_expire_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, user: User) -> Session:
        """Persist a fresh session for an already authenticated user.

        Every call makes a new, independent session; a user may hold several
        at once (one per browser).
        """
        now = self._clock()
        session = Session(
            token_id=secrets.token_urlsafe(32),
            user_id=user.id,
            created_at=now.isoformat(),
            expires_at=(now + self.lifetime).isoformat(),
        )
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _sessions.insert().values(
                        token_id=session.token_id,
                        user_id=session.user_id,
                        created_at=session.created_at,
                        expires_at=session.expires_at,
                    )
                )
                conn.commit()
        except SQLAlchemyError as exc:
            raise ProviderError(f"session insert failed: {exc.__class__.__name__}") from exc
        return session

    def encode(self, session: Session, user: User) -> str:
        """Return the opaque token the client presents for this session."""
        return encode_session_token(
            session.token_id,
            self.serialize(user),
            datetime.fromisoformat(session.expires_at),
        )

    def login(self, user: User) -> tuple[Session, str]:
        """Create a session and its token in one step."""
        session = self.create(user)
        return session, self.encode(session, user)

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    def resolve(self, token: Optional[str]) -> Optional[User]:
        """Return the User bound to token, or None if it is not a live session."""
        if not token:
            return None
        payload = decode_session_token(token)
        if payload is None:
            return None

        try:
            with self.engine.connect() as conn:
                row = conn.execute(_sessions.select().where(_sessions.c.token_id == payload["sid"])).fetchone()
        except SQLAlchemyError:
            logger.exception("Session lookup failed")
            return None
        if row is None:
            return None
        if datetime.fromisoformat(row.expires_at) < self._clock():
            return None

        user = self.deserialize(payload["usr"])
        if user is None or user.id != row.user_id:
            return None
        return user

    # ------------------------------------------------------------------
    # Identity serialization
    # ------------------------------------------------------------------

    def serialize(self, user: User) -> str:
        """Encode the identity attached to a session.

        Compact, key-sorted JSON so the same user always serializes to the
        same bytes.
        """
        return json.dumps(
            {"v": IDENTITY_VERSION, "id": user.id, "username": user.username},
            separators=(",", ":"),
            sort_keys=True,
        )

    def deserialize(self, blob: str) -> Optional[User]:
        """Turn a serialized identity back into the current User, or None.

        The User is re-read from the identity store, so a renamed or missing
        account no longer deserializes.
        """
        try:
            data = json.loads(blob)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict) or data.get("v") != IDENTITY_VERSION:
            return None
        user_id, username = data.get("id"), data.get("username")
        if not isinstance(user_id, int) or not isinstance(username, str):
            return None

        try:
            user = self.identities.get_by_id(user_id)
        except NotFoundError:
            return None
        except ProviderError as exc:
            logger.error("Identity lookup failed during session resolution: %s", exc)
            return None
        if user.username != username:
            return None
        return user

    # ------------------------------------------------------------------
    # Destroy / housekeeping
    # ------------------------------------------------------------------

    def destroy(self, token: Optional[str]) -> None:
        """Delete the session behind token. Unknown or invalid tokens are a no-op."""
        if not token:
            return
        payload = decode_session_token(token, verify_exp=False)
        if payload is None:
            return
        try:
            with self.engine.connect() as conn:
                conn.execute(_sessions.delete().where(_sessions.c.token_id == payload["sid"]))
                conn.commit()
        except SQLAlchemyError as exc:
            raise ProviderError(f"session delete failed: {exc.__class__.__name__}") from exc

    def purge_expired(self) -> int:
        """Delete every expired session row. Returns the number removed."""
        now = self._clock().isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < now))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
