from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from authsession.config import Settings
from authsession.logging import get_correlation_id, get_logger, sanitize_error_message
from authsession.service.errors import ApiError, NetworkError
from authsession.service.session_store import SessionStore
from authsession.storage.models import LoginResult, RefreshResult, User

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


class ApiClient:
    """Signed HTTP calls to the auth backend.

    Every request carries ``X-API-Key``; authenticated requests also carry the
    stored access token as a bearer credential.
    """

    def __init__(
        self,
        settings: Settings,
        session_store: SessionStore,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.session_store = session_store
        self._client = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            follow_redirects=False,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_url(self, endpoint: str) -> str:
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.settings.base_url}{API_PREFIX}{endpoint}"

    def auth_headers(self) -> Dict[str, str]:
        token = self.session_store.access_token()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def _headers(self, requires_auth: bool) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-API-Key": self.settings.api_key or "",
        }
        cid = get_correlation_id()
        if cid:
            headers["X-Correlation-ID"] = cid
        if requires_auth:
            headers.update(self.auth_headers())
        return headers

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ApiError:
        fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
        try:
            body = response.json()
        except (ValueError, RecursionError):
            body = None
        if not isinstance(body, dict):
            return ApiError(fallback, http_status=response.status_code)
        return ApiError(
            str(body.get("message") or fallback),
            code=str(body.get("code") or "ERR_NETWORK_ERROR"),
            http_status=response.status_code,
            details=body.get("details") if isinstance(body.get("details"), dict) else None,
        )

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        requires_auth: bool = True,
    ) -> Any:
        url = self.build_url(endpoint)
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers(requires_auth),
                json=body,
            )
        except httpx.HTTPError as exc:
            message = sanitize_error_message(str(exc) or type(exc).__name__)
            logger.error("api_request_failed", method=method, endpoint=endpoint, error=message)
            raise NetworkError(message) from exc

        if not response.is_success:
            error = self._error_from_response(response)
            logger.warning(
                "api_request_rejected",
                method=method,
                endpoint=endpoint,
                http_status=response.status_code,
                error_code=error.code,
            )
            raise error

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except (ValueError, RecursionError) as exc:
            raise ApiError(
                "Invalid JSON in response body",
                code="ERR_NETWORK_ERROR",
                http_status=response.status_code,
            ) from exc

    @staticmethod
    def _parse(model: Any, payload: Any, what: str) -> Any:
        try:
            return model.from_dict(payload)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ApiError(
                f"Malformed {what} payload: {exc}",
                code="ERR_VALIDATION_ERROR",
                http_status=200,
            ) from exc

    async def exchange_code(self, code: str, redirect_uri: str) -> LoginResult:
        payload = await self.request(
            "/oauth/callback",
            "POST",
            {"code": code, "redirect_uri": redirect_uri},
            requires_auth=False,
        )
        return self._parse(LoginResult, payload, "login")

    async def get_current_user(self) -> User:
        payload = await self.request("/users/me", "GET")
        return self._parse(User, payload, "user")

    async def refresh_session(self, refresh_token: str) -> RefreshResult:
        payload = await self.request(
            "/sessions/refresh",
            "POST",
            {"refreshToken": refresh_token},
            requires_auth=False,
        )
        return self._parse(RefreshResult, payload, "refresh")

    async def delete_session(self, session_id: str) -> None:
        await self.request(f"/sessions/{quote(session_id, safe='')}", "DELETE")


__all__ = ["ApiClient", "API_PREFIX"]
