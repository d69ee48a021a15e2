from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urlencode

from authsession.config import Settings
from authsession.environment import Environment
from authsession.logging import get_logger, set_correlation_id
from authsession.service.api_client import API_PREFIX, ApiClient
from authsession.service.claims import decode_claims, expiration_instant
from authsession.service.csrf import CsrfStateGuard
from authsession.service.errors import (
    ConfigurationError,
    CsrfValidationError,
    OAuthProviderError,
    ValidationError,
)
from authsession.service.session_store import SessionStore
from authsession.storage.models import LoginResult, Session, User

logger = get_logger(__name__)

DEFAULT_CALLBACK_PATH = "/auth/callback"
CALLBACK_PARAMS = ("code", "token", "error")


class FlowState(str, Enum):
    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGE_IN_FLIGHT = "exchange_in_flight"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


def is_callback(params: Optional[Mapping[str, str]]) -> bool:
    return bool(params) and any(params.get(name) for name in CALLBACK_PARAMS)


class OAuthFlowController:
    """Drives one OAuth round trip from redirect-out to a stored session."""

    def __init__(
        self,
        settings: Settings,
        environment: Environment,
        session_store: SessionStore,
        api_client: ApiClient,
        *,
        csrf_guard: Optional[CsrfStateGuard] = None,
    ) -> None:
        self.settings = settings
        self.environment = environment
        self.session_store = session_store
        self.api_client = api_client
        self.csrf = csrf_guard or CsrfStateGuard(environment)
        self.state = FlowState.IDLE

    def callback_url(self, path: str = DEFAULT_CALLBACK_PATH) -> str:
        if path == DEFAULT_CALLBACK_PATH and self.settings.redirect_url:
            return self.settings.redirect_url
        origin = self.environment.origin
        if not origin:
            raise ConfigurationError(
                "Cannot derive a callback URL: set redirect_url or provide a client origin"
            )
        if not path.startswith("/"):
            path = "/" + path
        return f"{origin}{path}"

    def initiate(self, provider: str) -> str:
        if provider not in self.settings.providers:
            raise ValidationError(
                f"Provider '{provider}' is not enabled. "
                f"Enabled providers: {', '.join(self.settings.providers)}",
                detail={"provider": provider},
            )
        flow_id = set_correlation_id()
        state = self.csrf.generate()
        query = urlencode(
            {
                "provider": provider,
                "app_id": self.settings.app_id,
                "redirect_uri": self.callback_url(),
                "state": state,
            }
        )
        url = f"{self.settings.base_url}{API_PREFIX}/oauth/authorize?{query}"
        self.state = FlowState.AWAITING_REDIRECT
        logger.info("oauth_flow_initiated", provider=provider, flow_id=flow_id)
        self.environment.navigate(url)
        return url

    async def complete_from_callback(self, params: Mapping[str, str]) -> LoginResult:
        try:
            result = await self._complete(params)
        except Exception:
            self.state = FlowState.FAILED
            raise
        self.session_store.save(result.session, result.user)
        self.state = FlowState.AUTHENTICATED
        logger.info("oauth_flow_completed", session_id=result.session.id, user_id=result.user.id)
        return result

    async def _complete(self, params: Mapping[str, str]) -> LoginResult:
        error = params.get("error")
        if error:
            description = params.get("error_description") or error
            logger.warning("oauth_provider_error", error=error)
            raise OAuthProviderError(f"OAuth error: {description}", detail={"error": error})

        token = params.get("token")
        if token:
            return self._from_direct_token(token)

        code = params.get("code")
        if not code:
            raise OAuthProviderError("Missing authorization code or token in callback")

        received_state = params.get("state")
        if received_state and not self.csrf.validate(received_state):
            raise CsrfValidationError("CSRF validation failed: Invalid state parameter")
        if not received_state:
            logger.warning("oauth_callback_without_state")

        self.state = FlowState.EXCHANGE_IN_FLIGHT
        return await self.api_client.exchange_code(code, self.callback_url())

    def _from_direct_token(self, token: str) -> LoginResult:
        # No state travels with a direct token, so CSRF protection is reduced here
        logger.warning("oauth_direct_token_unverified_state")
        claims = decode_claims(token)
        if claims is None:
            raise OAuthProviderError("Invalid token received in callback")
        user_id = claims.get("user_id") or claims.subject
        expires_at = expiration_instant(token)
        if not user_id or expires_at is None:
            raise OAuthProviderError("Token is missing required claims")

        stamped = datetime.now(timezone.utc).isoformat()
        user = User(
            id=str(user_id),
            email=str(claims.get("email") or ""),
            name=claims.get("name"),
            avatar=claims.get("avatar"),
            email_verified=True,
            created_at=stamped,
            updated_at=stamped,
        )
        session = Session(
            id=str(claims.get("session_id") or ""),
            user_id=user.id,
            access_token=token,
            refresh_token="",
            expires_at=expires_at,
            provider=str(claims.get("provider") or "google"),
        )
        return LoginResult(
            user=user,
            session=session,
            access_token=token,
            refresh_token="",
            expires_at=expires_at,
        )


__all__ = ["CALLBACK_PARAMS", "DEFAULT_CALLBACK_PATH", "FlowState", "OAuthFlowController", "is_callback"]
