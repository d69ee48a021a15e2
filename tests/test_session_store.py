"""Tests for the session store."""

import time

import pytest

from authsession.environment import MemoryStorageArea
from authsession.service.session_store import SessionStore
from authsession.storage.adapter import KeyValueStorageAdapter, NullStorageAdapter
from authsession.storage.models import Session


@pytest.fixture
def area():
    return MemoryStorageArea()


@pytest.fixture
def store(area):
    return SessionStore(KeyValueStorageAdapter(area, "rauth_"))


class TestSaveAndLoad:
    """Tests for persisting and reading the session pair."""

    def test_save_writes_five_records(self, store, area, live_session, user):
        store.save(live_session, user)

        assert sorted(area.keys()) == [
            "rauth_access_token",
            "rauth_expires_at",
            "rauth_refresh_token",
            "rauth_session",
            "rauth_user",
        ]

    def test_load_returns_saved_pair(self, store, live_session, user):
        store.save(live_session, user)

        loaded = store.load()

        assert loaded == (live_session, user)
        assert store.access_token() == live_session.access_token
        assert store.refresh_token() == "refresh_1"
        assert store.session_id() == "sess_1"
        assert store.user() == user

    def test_load_absent_when_user_missing(self, store, area, live_session, user):
        store.save(live_session, user)
        area.remove_item("rauth_user")
        assert store.load() is None

    def test_load_absent_when_session_undecodable(self, store, area, live_session, user):
        store.save(live_session, user)
        area.set_item("rauth_session", '{"userId": "user_1"}')
        assert store.load() is None

    @pytest.mark.parametrize("record", ['{"id": "s", "expiresAt": 1e999}', "[" * 100_000])
    def test_load_absent_when_session_record_hostile(self, store, area, live_session, user, record):
        store.save(live_session, user)
        area.set_item("rauth_session", record)
        assert store.load() is None

    def test_expired_session_is_cleared_on_read(self, store, area, live_session, user):
        live_session.expires_at = int(time.time() * 1000) - 1
        store.save(live_session, user)

        assert store.load() is None
        assert area.keys() == []

    def test_expiry_boundary_uses_injected_clock(self, area, live_session, user):
        live_session.expires_at = 5_000
        store = SessionStore(KeyValueStorageAdapter(area, "rauth_"), clock=lambda: 5_000)
        store.save(live_session, user)
        assert store.load() is None

    def test_clear_is_idempotent(self, store, live_session, user):
        store.save(live_session, user)
        store.clear()
        store.clear()
        assert store.load() is None
        assert store.access_token() is None

    def test_null_storage_never_fails(self, live_session, user):
        store = SessionStore(NullStorageAdapter())
        store.save(live_session, user)
        assert store.load() is None
        store.clear()


class TestUpdateTokens:
    """Tests for token rotation after a renewal."""

    def test_rotates_tokens_and_embedded_session(self, store, live_session, user):
        store.save(live_session, user)
        later = live_session.expires_at + 60_000

        store.update_tokens("access_2", "refresh_2", later)

        session, _ = store.load()
        assert store.access_token() == "access_2"
        assert store.refresh_token() == "refresh_2"
        assert session.access_token == "access_2"
        assert session.refresh_token == "refresh_2"
        assert session.expires_at == later

    def test_never_lowers_expiry(self, store, area, live_session, user):
        store.save(live_session, user)
        original = live_session.expires_at

        store.update_tokens("access_2", "refresh_2", original - 10_000)

        session, _ = store.load()
        assert session.expires_at == original
        assert area.get_item("rauth_expires_at") == str(original)
        assert session.access_token == "access_2"

    def test_without_expiry_keeps_existing(self, store, live_session, user):
        store.save(live_session, user)
        store.update_tokens("access_2", "refresh_2")
        session, _ = store.load()
        assert session.expires_at == live_session.expires_at


class TestSessionModel:
    """Tests for the camelCase record format."""

    def test_session_record_is_camel_case(self, live_session):
        data = live_session.to_dict()
        assert data["userId"] == "user_1"
        assert data["expiresAt"] == live_session.expires_at
        assert Session.from_dict(data) == live_session
