from __future__ import annotations

from typing import Optional


class AuthSessionError(Exception):
    """Base class for session and OAuth lifecycle errors.

    Each subclass carries a stable ``error_code`` shared with the backend's
    error envelope and the HTTP ``status_code`` it usually corresponds to:
    - ERR_INVALID_API_KEY (401)
    - ERR_INVALID_TOKEN (401)
    - ERR_SESSION_NOT_FOUND (404)
    - ERR_USER_NOT_FOUND (404)
    - ERR_PROVIDER_ERROR (400)
    - ERR_AUTH_ERROR (401)
    - ERR_VALIDATION_ERROR (400)
    - ERR_NETWORK_ERROR (0 when no response was received)
    """

    status_code: int = 400
    error_code: str = "ERR_AUTH_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class DecodeError(AuthSessionError):
    """A token or persisted record could not be decoded."""
    status_code = 401
    error_code = "ERR_INVALID_TOKEN"


class StorageError(AuthSessionError):
    """A storage backend rejected an operation; reported, never raised to callers."""
    status_code = 500
    error_code = "ERR_AUTH_ERROR"


class ConfigurationError(AuthSessionError):
    """Settings are missing or inconsistent."""
    status_code = 400
    error_code = "ERR_VALIDATION_ERROR"


class ValidationError(AuthSessionError):
    """Caller input was rejected before any network call."""
    status_code = 400
    error_code = "ERR_VALIDATION_ERROR"


class CsrfValidationError(AuthSessionError):
    """The callback ``state`` did not match the persisted nonce."""
    status_code = 403
    error_code = "ERR_AUTH_ERROR"


class OAuthProviderError(AuthSessionError):
    """The provider reported an error or the callback was incomplete."""
    status_code = 400
    error_code = "ERR_PROVIDER_ERROR"


class ApiError(AuthSessionError):
    """The backend answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "ERR_NETWORK_ERROR",
        http_status: int = 0,
        details: Optional[dict] = None,
    ) -> None:
        super().__init__(message, status_code=http_status, detail=details, error_code=code)

    @property
    def code(self) -> str:
        return self.error_code

    @property
    def http_status(self) -> int:
        return self.status_code

    @property
    def details(self) -> dict:
        return self.detail


class NetworkError(ApiError):
    """No response was received from the backend."""

    def __init__(self, message: str, *, details: Optional[dict] = None) -> None:
        super().__init__(message, code="ERR_NETWORK_ERROR", http_status=0, details=details)


__all__ = [
    "AuthSessionError",
    "DecodeError",
    "StorageError",
    "ConfigurationError",
    "ValidationError",
    "CsrfValidationError",
    "OAuthProviderError",
    "ApiError",
    "NetworkError",
]
