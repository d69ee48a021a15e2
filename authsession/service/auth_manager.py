from __future__ import annotations

import inspect
from typing import Any, Callable, Mapping, Optional, Tuple

import httpx

from authsession.config import Settings
from authsession.environment import Environment
from authsession.logging import get_logger, sanitize_error_message
from authsession.service.api_client import ApiClient
from authsession.service.claims import claim, expiration_instant, is_expired
from authsession.service.errors import AuthSessionError
from authsession.service.oauth import OAuthFlowController, is_callback
from authsession.service.refresh import RefreshScheduler
from authsession.service.session_store import SessionStore
from authsession.storage.adapter import create_storage_adapter
from authsession.storage.models import AuthState, LoginResult, RefreshResult, Session, User

logger = get_logger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

InitialSession = Optional[Tuple[Session, User]]


class AuthManager:
    """Single source of truth for the caller's authentication state.

    Wires storage, the OAuth flow, the API client and the refresh scheduler
    together and turns their failures into ``AuthState.error`` plus the
    ``on_error`` callback instead of exceptions.
    """

    def __init__(
        self,
        settings: Settings,
        environment: Environment,
        *,
        initial_session: InitialSession | _Unset = UNSET,
        on_login_success: Optional[Callable[[LoginResult], Any]] = None,
        on_logout: Optional[Callable[[], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.environment = environment
        self.initial_session = initial_session
        self.on_login_success = on_login_success
        self.on_logout = on_logout
        self.on_error = on_error

        self.session_store = SessionStore(create_storage_adapter(settings, environment))
        self.api_client = ApiClient(settings, self.session_store, transport=transport)
        self.oauth = OAuthFlowController(settings, environment, self.session_store, self.api_client)
        self.scheduler = RefreshScheduler(
            self.session_store,
            self.api_client,
            interval_seconds=settings.refresh_interval_seconds,
            auto_refresh=settings.auto_refresh,
            on_refresh_success=self._on_refresh_success,
            on_refresh_error=self._on_refresh_error,
            refresh_threshold_ms=settings.refresh_threshold_ms,
        )
        self.state = AuthState()

    async def __aenter__(self) -> "AuthManager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def is_authenticated(self) -> bool:
        session = self.state.session
        return bool(
            self.state.is_authenticated
            and self.state.user is not None
            and session is not None
            and not session.is_expired()
        )

    def _set_authenticated(self, session: Session, user: User) -> None:
        self.state = AuthState(is_authenticated=True, user=user, session=session, loading=False)

    def _set_unauthenticated(self, error: Optional[str] = None) -> None:
        self.state = AuthState(loading=False, error=error)

    async def _call(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error("auth_callback_failed", error=str(exc), error_type=type(exc).__name__)

    async def _fail(self, exc: Exception, *, keep_session: bool = False) -> None:
        message = sanitize_error_message(str(exc))
        logger.warning("auth_error", error=message, error_type=type(exc).__name__)
        if keep_session:
            self.state.error = message
            self.state.loading = False
        else:
            self._set_unauthenticated(message)
        await self._call(self.on_error, exc)

    async def initialize(self, callback_params: Optional[Mapping[str, str]] = None) -> AuthState:
        self.state = AuthState(loading=True)

        if self.initial_session is not UNSET:
            if self.initial_session is None or self.initial_session[0].is_expired():
                self._set_unauthenticated()
            else:
                session, user = self.initial_session
                self._set_authenticated(session, user)
            return self.state

        try:
            if is_callback(callback_params):
                result = await self.oauth.complete_from_callback(callback_params or {})
                self._set_authenticated(result.session, result.user)
                await self._call(self.on_login_success, result)
                return self.state

            loaded = self.session_store.load()
            if loaded is not None:
                self._set_authenticated(*loaded)
                return self.state

            token = self.session_store.access_token()
            if token and not is_expired(token):
                await self._restore_from_token(token)
                return self.state
        except AuthSessionError as exc:
            await self._fail(exc)
            return self.state

        self._set_unauthenticated()
        return self.state

    async def _restore_from_token(self, token: str) -> None:
        user = await self.api_client.get_current_user()
        session = Session(
            id=str(claim(token, "session_id") or ""),
            user_id=user.id,
            access_token=token,
            refresh_token=self.session_store.refresh_token() or "",
            expires_at=expiration_instant(token) or 0,
            provider=str(claim(token, "provider") or "google"),
        )
        self.session_store.save(session, user)
        self._set_authenticated(session, user)
        logger.info("session_restored_from_token", user_id=user.id)

    async def login(self, provider: str) -> Optional[str]:
        try:
            return self.oauth.initiate(provider)
        except AuthSessionError as exc:
            await self._fail(exc, keep_session=True)
            return None

    async def logout(self) -> None:
        session_id = self.session_store.session_id()
        if session_id and self.session_store.access_token():
            try:
                await self.api_client.delete_session(session_id)
            except AuthSessionError as exc:
                logger.warning("logout_backend_failed", session_id=session_id, error=str(exc))
        self.session_store.clear()
        self.oauth.csrf.clear()
        self._set_unauthenticated()
        logger.info("logged_out")
        await self._call(self.on_logout)
        if self.settings.logout_redirect_url and self.environment.is_client:
            self.environment.navigate(self.settings.logout_redirect_url)

    async def refresh_session(self) -> bool:
        ok = await self.scheduler.refresh()
        if ok:
            self._reload()
        return ok

    def _reload(self) -> None:
        loaded = self.session_store.load()
        if loaded is None:
            self._set_unauthenticated(self.state.error)
        else:
            self._set_authenticated(*loaded)

    def _on_refresh_success(self, result: RefreshResult) -> None:
        if self.state.is_authenticated:
            self._reload()

    async def _on_refresh_error(self, exc: Exception) -> None:
        await self._fail(exc, keep_session=True)

    async def start(self) -> None:
        await self.scheduler.start()

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.api_client.aclose()


__all__ = ["AuthManager", "UNSET"]
