"""
tests/test_sessions.py -- Unit tests for auth/sessions.py SessionManager.

Covers:
  - a fresh token resolves to the bound user until expires_at
  - destroyed, expired, tampered, foreign-key and wrong-version tokens
    resolve to None without raising
  - destroy() is idempotent
  - concurrent sessions for one user are independent
  - serialize/deserialize round-trips byte-for-byte and fails closed
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import TOKEN_VERSION
from core.config import get_settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def utc_clock(moment: datetime):
    return lambda: moment


@pytest.fixture
def ann(stores):
    return stores.identities.create("Ann", "ann", "hash")


class TestResolve:
    def test_fresh_token_resolves_to_user(self, stores, ann) -> None:
        _session, token = stores.sessions.login(ann)
        assert stores.sessions.resolve(token) == ann

    def test_expiry_is_24h_after_creation(self, stores, ann) -> None:
        session = stores.sessions.create(ann)
        created = datetime.fromisoformat(session.created_at)
        expires = datetime.fromisoformat(session.expires_at)
        assert expires - created == timedelta(seconds=get_settings().session_expire_seconds)
        assert get_settings().session_expire_seconds == 24 * 60 * 60

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_missing_or_malformed_token(self, stores, token) -> None:
        assert stores.sessions.resolve(token) is None

    def test_token_past_expiry_resolves_to_none(self, stores, ann) -> None:
        _session, token = stores.sessions.login(ann)
        later = stores.session_manager(utc_clock(now_utc() + timedelta(hours=25)))
        assert later.resolve(token) is None
        # Still live for a clock inside the window
        assert stores.sessions.resolve(token) == ann

    def test_token_resolves_at_exactly_expires_at(self, stores, ann) -> None:
        session = stores.sessions.create(ann)
        token = stores.sessions.encode(session, ann)
        deadline = datetime.fromisoformat(session.expires_at)
        assert stores.session_manager(utc_clock(deadline)).resolve(token) == ann

    def test_token_expires_one_microsecond_after_expires_at(self, stores, ann) -> None:
        session = stores.sessions.create(ann)
        token = stores.sessions.encode(session, ann)
        just_after = datetime.fromisoformat(session.expires_at) + timedelta(microseconds=1)
        assert stores.session_manager(utc_clock(just_after)).resolve(token) is None

    def test_token_issued_in_the_past_has_expired(self, stores, ann) -> None:
        past = stores.session_manager(utc_clock(now_utc() - timedelta(hours=25)))
        _session, token = past.login(ann)
        assert stores.sessions.resolve(token) is None

    def test_rejected_token_is_logged(self, stores, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger="shelfnote.auth"):
            assert stores.sessions.resolve("garbage") is None
        assert "Session token rejected" in caplog.text

    def test_tampered_token(self, stores, ann) -> None:
        _session, token = stores.sessions.login(ann)
        header, payload, signature = token.split(".")
        flipped = signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")
        assert stores.sessions.resolve(f"{header}.{payload}.{flipped}") is None

    def test_token_signed_with_other_key(self, stores, ann) -> None:
        session = stores.sessions.create(ann)
        forged = jwt.encode(
            {
                "sid": session.token_id,
                "usr": stores.sessions.serialize(ann),
                "exp": datetime.fromisoformat(session.expires_at),
                "v": TOKEN_VERSION,
            },
            "x" * 64,
            algorithm="HS256",
        )
        assert stores.sessions.resolve(forged) is None

    def test_unknown_token_version(self, stores, ann) -> None:
        session = stores.sessions.create(ann)
        token = jwt.encode(
            {
                "sid": session.token_id,
                "usr": stores.sessions.serialize(ann),
                "exp": datetime.fromisoformat(session.expires_at),
                "v": TOKEN_VERSION + 1,
            },
            get_settings().secret_key,
            algorithm="HS256",
        )
        assert stores.sessions.resolve(token) is None

    def test_user_removed_behind_session(self, stores, ann) -> None:
        _session, token = stores.sessions.login(ann)
        with stores.library.engine.connect() as conn:
            conn.exec_driver_sql("DELETE FROM users WHERE id = ?", (ann.id,))
            conn.commit()
        assert stores.sessions.resolve(token) is None


class TestDestroy:
    def test_destroyed_token_no_longer_resolves(self, stores, ann) -> None:
        _session, token = stores.sessions.login(ann)
        stores.sessions.destroy(token)
        assert stores.sessions.resolve(token) is None

    def test_destroy_is_idempotent(self, stores, ann) -> None:
        _session, token = stores.sessions.login(ann)
        stores.sessions.destroy(token)
        stores.sessions.destroy(token)
        stores.sessions.destroy("garbage")
        stores.sessions.destroy(None)

    def test_sessions_for_one_user_are_independent(self, stores, ann) -> None:
        _s1, laptop = stores.sessions.login(ann)
        _s2, phone = stores.sessions.login(ann)
        assert laptop != phone

        stores.sessions.destroy(laptop)
        assert stores.sessions.resolve(laptop) is None
        assert stores.sessions.resolve(phone) == ann

    def test_destroy_works_on_expired_cookie(self, stores, ann) -> None:
        past = stores.session_manager(utc_clock(now_utc() - timedelta(hours=25)))
        _session, token = past.login(ann)
        stores.sessions.destroy(token)
        assert stores.sessions.purge_expired() == 0

    def test_purge_expired(self, stores, ann) -> None:
        past = stores.session_manager(utc_clock(now_utc() - timedelta(hours=25)))
        past.login(ann)
        past.login(ann)
        _live, token = stores.sessions.login(ann)
        assert stores.sessions.purge_expired() == 2
        assert stores.sessions.resolve(token) == ann

    def test_purge_keeps_session_at_its_deadline(self, stores, ann) -> None:
        session = stores.sessions.create(ann)
        deadline = datetime.fromisoformat(session.expires_at)
        assert stores.session_manager(utc_clock(deadline)).purge_expired() == 0
        just_after = deadline + timedelta(microseconds=1)
        assert stores.session_manager(utc_clock(just_after)).purge_expired() == 1


class TestSerialization:
    def test_round_trip_is_byte_for_byte(self, stores, ann) -> None:
        blob = stores.sessions.serialize(ann)
        user = stores.sessions.deserialize(blob)
        assert user == ann
        assert stores.sessions.serialize(user) == blob

    @pytest.mark.parametrize(
        "blob",
        [
            "",
            "not json",
            "[]",
            '{"v":2,"id":1,"username":"ann"}',
            '{"v":1,"id":"1","username":"ann"}',
            '{"v":1,"username":"ann"}',
        ],
    )
    def test_bad_blobs_deserialize_to_none(self, stores, ann, blob: str) -> None:
        assert stores.sessions.deserialize(blob) is None

    def test_renamed_identity_does_not_deserialize(self, stores, ann) -> None:
        blob = stores.sessions.serialize(ann).replace('"ann"', '"bob"')
        assert stores.sessions.deserialize(blob) is None
