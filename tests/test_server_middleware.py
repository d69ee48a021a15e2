"""Tests for cookie-based server accessors and the route guard middleware."""

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from authsession.config import Settings
from authsession.server.actions import (
    clear_session_cookie_headers,
    get_current_user_action,
    get_session_action,
    is_authenticated,
    session_cookie_headers,
    validate_session_action,
)
from authsession.server.middleware import (
    AuthGuardMiddleware,
    AuthGuardOptions,
    is_path_match,
    matches_any_pattern,
)


def cookie_header_for(settings, session, user):
    """Turn Set-Cookie values into the Cookie header a browser would send back."""
    return "; ".join(header.split(";", 1)[0] for header in session_cookie_headers(settings, session, user))


def build_app(options=None):
    app = FastAPI()
    app.add_middleware(AuthGuardMiddleware, options=options)

    @app.get("/{path:path}")
    async def catch_all(path: str):
        return {"path": "/" + path}

    return app


class TestPathMatching:
    """Tests for is_path_match and matches_any_pattern."""

    @pytest.mark.parametrize(
        "path, pattern, expected",
        [
            ("/dashboard", "/dashboard", True),
            ("/dashboard/", "/dashboard", True),
            ("/dashboard", "/dashboard/", True),
            ("/dashboard/settings", "/dashboard/*", True),
            ("/dashboard", "/dashboard/*", True),
            ("/dashboards", "/dashboard/*", False),
            ("/dashboard/settings", "/dashboard", False),
            ("/about", "/dashboard", False),
            ("/", "/", True),
        ],
    )
    def test_is_path_match(self, path, pattern, expected):
        assert is_path_match(path, pattern) is expected

    def test_matches_any_pattern(self):
        assert matches_any_pattern("/profile", ["/dashboard/*", "/profile"])
        assert not matches_any_pattern("/public", ["/dashboard/*", "/profile"])


class TestServerActions:
    """Tests for reading sessions out of a Cookie header."""

    def test_round_trip_through_set_cookie(self, settings, live_session, user):
        header = cookie_header_for(settings, live_session, user)

        assert get_session_action(header) == live_session
        assert get_current_user_action(header) == user
        assert is_authenticated(header) is True
        assert validate_session_action(header, "sess_1") is True
        assert validate_session_action(header, "other") is False

    def test_expired_cookie_session(self, settings, live_session, user):
        live_session.expires_at = int(time.time() * 1000) - 1
        header = cookie_header_for(settings, live_session, user)

        assert get_session_action(header) is None
        assert get_current_user_action(header) is None
        assert is_authenticated(header) is False

    def test_missing_and_corrupt_cookies(self):
        assert get_session_action(None) is None
        assert get_session_action("rauth_session=%7Bbroken") is None
        assert get_session_action('rauth_session=""') is None

    @pytest.mark.parametrize(
        "value",
        ["%7B%22id%22%3A%22s%22%2C%22expiresAt%22%3A1e999%7D", "%5B" * 100_000],
    )
    def test_hostile_cookie_session_is_ignored(self, value):
        header = f"rauth_session={value}"
        assert get_session_action(header) is None
        assert is_authenticated(header) is False

    def test_custom_prefix(self, live_session, user):
        configured = Settings(api_key="pk_test_abcdefghijkl", app_id="app", storage_prefix="myapp_")
        header = cookie_header_for(configured, live_session, user)
        assert is_authenticated(header, prefix="myapp_") is True
        assert is_authenticated(header) is False

    def test_production_forces_secure(self, settings, live_session, user):
        configured = settings.model_copy(update={"app_env": "production"})
        headers = session_cookie_headers(configured, live_session, user)
        assert all("; Secure" in header for header in headers)
        assert all("; Secure" not in header for header in session_cookie_headers(settings, live_session, user))

    def test_clear_headers_expire_every_record(self, settings):
        headers = clear_session_cookie_headers(settings)
        assert len(headers) == 5
        assert all("Max-Age=0" in header for header in headers)


class TestAuthGuardMiddleware:
    """Tests for redirect behavior."""

    def test_public_path_passes(self):
        client = TestClient(build_app())
        response = client.get("/", follow_redirects=False)
        assert response.status_code == 200

    def test_unprotected_path_passes_without_require_auth(self):
        client = TestClient(build_app())
        response = client.get("/about", follow_redirects=False)
        assert response.status_code == 200

    def test_protected_path_redirects_with_return_url(self):
        client = TestClient(build_app())

        response = client.get("/dashboard/?tab=billing", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/login?redirect=%2Fdashboard%2F%3Ftab%3Dbilling"

    def test_authenticated_request_passes(self, settings, live_session, user):
        client = TestClient(build_app())
        cookie = cookie_header_for(settings, live_session, user)

        response = client.get("/dashboard", headers={"cookie": cookie}, follow_redirects=False)

        assert response.status_code == 200
        assert response.json() == {"path": "/dashboard"}

    def test_require_auth_protects_everything_but_public(self):
        options = AuthGuardOptions(require_auth=True, public_paths=["/", "/signin"], login_path="/signin")
        client = TestClient(build_app(options))

        assert client.get("/reports", follow_redirects=False).status_code == 307
        assert client.get("/signin", follow_redirects=False).status_code == 200

    def test_login_path_never_redirects(self):
        options = AuthGuardOptions(require_auth=True, public_paths=[], login_path="/login")
        client = TestClient(build_app(options))

        assert client.get("/login", follow_redirects=False).status_code == 200

    def test_internal_error_fails_open(self, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("cookie parser bug")

        monkeypatch.setattr("authsession.server.middleware.is_authenticated", broken)
        client = TestClient(build_app())

        assert client.get("/dashboard", follow_redirects=False).status_code == 200
