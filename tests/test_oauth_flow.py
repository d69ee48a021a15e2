"""Tests for the OAuth flow controller."""

import base64
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authsession.environment import ClientEnvironment, NullEnvironment
from authsession.service.api_client import ApiClient
from authsession.service.errors import (
    ApiError,
    ConfigurationError,
    CsrfValidationError,
    OAuthProviderError,
    ValidationError,
)
from authsession.service.oauth import FlowState, OAuthFlowController, is_callback
from authsession.service.session_store import SessionStore
from authsession.storage.adapter import create_storage_adapter


class Backend:
    """Records exchange calls and answers with a canned login payload."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def __call__(self, request):
        self.calls.append(request)
        return self.response


def build_controller(settings, environment, backend):
    store = SessionStore(create_storage_adapter(settings, environment))
    client = ApiClient(settings, store, transport=httpx.MockTransport(backend))
    return OAuthFlowController(settings, environment, store, client), store


@pytest.fixture
def navigations():
    return []


@pytest.fixture
def client_env(navigations):
    return ClientEnvironment(origin="https://app.example.com", navigator=navigations.append)


@pytest.fixture
def login_backend(live_session, user):
    return Backend(httpx.Response(200, json={"user": user.to_dict(), "session": live_session.to_dict()}))


class TestInitiate:
    """Tests for redirect-out."""

    @pytest.mark.asyncio
    async def test_authorize_url_and_navigation(self, settings, client_env, navigations, login_backend):
        controller, _ = build_controller(settings, client_env, login_backend)

        url = controller.initiate("github")

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
            "https://auth.example.com/api/v1/oauth/authorize"
        )
        assert query["provider"] == ["github"]
        assert query["app_id"] == ["app_123"]
        assert query["redirect_uri"] == ["https://app.example.com/auth/callback"]
        assert query["state"][0]
        assert navigations == [url]
        assert controller.state is FlowState.AWAITING_REDIRECT
        assert login_backend.calls == []

    @pytest.mark.asyncio
    async def test_disabled_provider_rejected(self, settings, client_env, navigations, login_backend):
        configured = settings.model_copy(update={"providers": ["google"]})
        controller, _ = build_controller(configured, client_env, login_backend)

        with pytest.raises(ValidationError):
            controller.initiate("github")

        assert navigations == []
        assert controller.state is FlowState.IDLE

    @pytest.mark.asyncio
    async def test_callback_url_from_origin(self, settings, client_env, login_backend):
        configured = settings.model_copy(update={"redirect_url": None})
        controller, _ = build_controller(configured, client_env, login_backend)

        assert controller.callback_url() == "https://app.example.com/auth/callback"
        assert controller.callback_url("done") == "https://app.example.com/done"

    @pytest.mark.asyncio
    async def test_callback_url_requires_origin_or_setting(self, settings, login_backend):
        configured = settings.model_copy(update={"redirect_url": None})
        controller, _ = build_controller(configured, NullEnvironment(), login_backend)

        with pytest.raises(ConfigurationError):
            controller.callback_url()


class TestCompleteFromCallback:
    """Tests for redirect-back handling."""

    @pytest.mark.asyncio
    async def test_code_exchange_persists_session(self, settings, client_env, login_backend, live_session, user):
        controller, store = build_controller(settings, client_env, login_backend)
        state = controller.csrf.generate()

        result = await controller.complete_from_callback({"code": "c1", "state": state})

        assert result.session == live_session
        assert store.load() == (live_session, user)
        assert controller.state is FlowState.AUTHENTICATED
        assert len(login_backend.calls) == 1
        assert login_backend.calls[0].url.path == "/api/v1/oauth/callback"
        assert controller.csrf.validate(state) is False

    @pytest.mark.asyncio
    async def test_provider_error_uses_description(self, settings, client_env, login_backend):
        controller, store = build_controller(settings, client_env, login_backend)

        with pytest.raises(OAuthProviderError) as excinfo:
            await controller.complete_from_callback(
                {"error": "access_denied", "error_description": "User cancelled"}
            )

        assert str(excinfo.value) == "OAuth error: User cancelled"
        assert store.load() is None
        assert controller.state is FlowState.FAILED
        assert login_backend.calls == []

    @pytest.mark.asyncio
    async def test_provider_error_without_description(self, settings, client_env, login_backend):
        controller, _ = build_controller(settings, client_env, login_backend)
        with pytest.raises(OAuthProviderError, match="OAuth error: access_denied"):
            await controller.complete_from_callback({"error": "access_denied"})

    @pytest.mark.asyncio
    async def test_mismatched_state_blocks_exchange(self, settings, client_env, login_backend):
        controller, store = build_controller(settings, client_env, login_backend)
        controller.csrf.generate()

        with pytest.raises(CsrfValidationError, match="Invalid state parameter"):
            await controller.complete_from_callback({"code": "c1", "state": "forged"})

        assert login_backend.calls == []
        assert store.load() is None
        assert controller.state is FlowState.FAILED

    @pytest.mark.asyncio
    async def test_replayed_state_is_rejected(self, settings, client_env, login_backend):
        controller, _ = build_controller(settings, client_env, login_backend)
        state = controller.csrf.generate()
        await controller.complete_from_callback({"code": "c1", "state": state})

        with pytest.raises(CsrfValidationError):
            await controller.complete_from_callback({"code": "c2", "state": state})

        assert len(login_backend.calls) == 1

    @pytest.mark.asyncio
    async def test_absent_state_is_tolerated(self, settings, client_env, login_backend):
        controller, store = build_controller(settings, client_env, login_backend)

        await controller.complete_from_callback({"code": "c1"})

        assert store.load() is not None

    @pytest.mark.asyncio
    async def test_empty_state_is_treated_as_absent(self, settings, client_env, login_backend):
        controller, store = build_controller(settings, client_env, login_backend)

        await controller.complete_from_callback({"code": "c1", "state": ""})

        assert store.load() is not None
        assert len(login_backend.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_code_and_token(self, settings, client_env, login_backend):
        controller, _ = build_controller(settings, client_env, login_backend)
        with pytest.raises(OAuthProviderError, match="Missing authorization code or token in callback"):
            await controller.complete_from_callback({"state": "x"})

    @pytest.mark.asyncio
    async def test_failed_exchange_leaves_no_session(self, settings, client_env):
        backend = Backend(httpx.Response(400, json={"message": "bad code", "code": "ERR_AUTH_ERROR"}))
        controller, store = build_controller(settings, client_env, backend)
        state = controller.csrf.generate()

        with pytest.raises(ApiError) as excinfo:
            await controller.complete_from_callback({"code": "c1", "state": state})

        assert excinfo.value.error_code == "ERR_AUTH_ERROR"
        assert store.load() is None
        assert store.access_token() is None
        assert controller.state is FlowState.FAILED

    @pytest.mark.asyncio
    async def test_direct_token_builds_session_without_exchange(
        self, settings, client_env, login_backend, make_token
    ):
        controller, store = build_controller(settings, client_env, login_backend)
        token = make_token(
            expires_in=3600,
            user_id="user_42",
            session_id="sess_42",
            email="grace@example.com",
            name="Grace",
            provider="github",
        )

        result = await controller.complete_from_callback({"token": token})

        assert login_backend.calls == []
        assert result.user.id == "user_42"
        assert result.user.email_verified is True
        assert result.session.id == "sess_42"
        assert result.session.refresh_token == ""
        assert result.session.provider == "github"
        assert store.access_token() == token
        assert controller.state is FlowState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_direct_token_user_is_timestamped(self, settings, client_env, login_backend, make_token):
        controller, _ = build_controller(settings, client_env, login_backend)

        result = await controller.complete_from_callback({"token": make_token(sub="user_ts")})

        assert result.user.created_at is not None
        assert result.user.updated_at == result.user.created_at
        stamped = datetime.fromisoformat(result.user.created_at)
        assert stamped.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_direct_token_falls_back_to_subject(self, settings, client_env, login_backend, make_token):
        controller, _ = build_controller(settings, client_env, login_backend)
        result = await controller.complete_from_callback({"token": make_token(sub="user_sub")})
        assert result.user.id == "user_sub"
        assert result.session.provider == "google"

    @pytest.mark.asyncio
    async def test_undecodable_direct_token(self, settings, client_env, login_backend):
        controller, store = build_controller(settings, client_env, login_backend)
        with pytest.raises(OAuthProviderError):
            await controller.complete_from_callback({"token": "not.a-token"})
        assert store.load() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [b'{"sub": "user_1", "exp": 1e999}', b'{"sub": "user_1", "exp": NaN}', b"[" * 100_000],
    )
    async def test_hostile_direct_token_is_rejected(self, settings, client_env, login_backend, payload):
        controller, store = build_controller(settings, client_env, login_backend)
        segment = base64.urlsafe_b64encode(payload).decode().rstrip("=")

        with pytest.raises(OAuthProviderError):
            await controller.complete_from_callback({"token": f"h.{segment}.s"})

        assert store.load() is None
        assert controller.state is FlowState.FAILED
        assert login_backend.calls == []


class TestIsCallback:
    def test_detects_callback_params(self):
        assert is_callback({"code": "c"})
        assert is_callback({"error": "access_denied"})
        assert is_callback({"token": "t"})
        assert not is_callback({"state": "s"})
        assert not is_callback(None)
