from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from authsession.config import DEFAULT_STORAGE_PREFIX
from authsession.logging import get_logger
from authsession.server.actions import is_authenticated

logger = get_logger(__name__)


def _normalize(path: str) -> str:
    return path[:-1] if path.endswith("/") and path != "/" else path


def is_path_match(path: str, pattern: str) -> bool:
    """Exact match after trailing-slash normalization; ``/x/*`` also covers ``/x``."""
    normalized_path = _normalize(path) or "/"
    normalized_pattern = _normalize(pattern) or "/"
    if normalized_path == normalized_pattern:
        return True
    if normalized_pattern.endswith("/*"):
        base = normalized_pattern[:-2]
        return normalized_path == base or normalized_path.startswith(base + "/")
    return False


def matches_any_pattern(path: str, patterns: Iterable[str]) -> bool:
    return any(is_path_match(path, pattern) for pattern in patterns)


@dataclass
class AuthGuardOptions:
    protected_paths: List[str] = field(default_factory=lambda: ["/dashboard", "/profile"])
    public_paths: List[str] = field(default_factory=lambda: ["/", "/login", "/api"])
    login_path: str = "/login"
    require_auth: bool = False
    prefix: str = DEFAULT_STORAGE_PREFIX


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Redirect unauthenticated requests for protected paths to the login page.

    The session is read from the request's cookies only; no backend call is
    made. Any internal failure lets the request through.
    """

    def __init__(self, app: ASGIApp, options: AuthGuardOptions | None = None) -> None:
        super().__init__(app)
        self.options = options or AuthGuardOptions()

    def _needs_auth(self, path: str) -> bool:
        if matches_any_pattern(path, self.options.public_paths):
            return False
        if self.options.require_auth:
            return True
        return matches_any_pattern(path, self.options.protected_paths)

    def _redirect_for(self, request: Request) -> Response | None:
        path = request.url.path
        if not self._needs_auth(path):
            return None
        if is_authenticated(request.headers.get("cookie"), self.options.prefix):
            return None
        if _normalize(path) == _normalize(self.options.login_path):
            return None
        target = path + (f"?{request.url.query}" if request.url.query else "")
        location = f"{self.options.login_path}?{urlencode({'redirect': target})}"
        logger.info("auth_guard_redirect", path=path, login_path=self.options.login_path)
        return RedirectResponse(location, status_code=307)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            redirect = self._redirect_for(request)
        except Exception as exc:
            logger.error("auth_guard_failed_open", path=request.url.path, error=str(exc))
            redirect = None
        if redirect is not None:
            return redirect
        return await call_next(request)


__all__ = ["AuthGuardMiddleware", "AuthGuardOptions", "is_path_match", "matches_any_pattern"]
