from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, Optional

from authsession.config import DEFAULT_REFRESH_INTERVAL_SECONDS
from authsession.logging import get_logger
from authsession.service.api_client import ApiClient
from authsession.service.claims import is_expired as token_is_expired
from authsession.service.claims import time_until_expiration as token_time_until_expiration
from authsession.service.errors import AuthSessionError
from authsession.service.session_store import SessionStore
from authsession.storage.models import RefreshResult

logger = get_logger(__name__)

SuccessCallback = Callable[[RefreshResult], Any]
ErrorCallback = Callable[[Exception], Any]


class RefreshScheduler:
    """Background renewal of the stored access token.

    ``start`` launches a task that checks immediately and then once per
    interval. Renewals for the same session join a single in-flight
    exchange, whether they come from the loop or from a manual call.
    """

    def __init__(
        self,
        session_store: SessionStore,
        api_client: ApiClient,
        *,
        interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        auto_refresh: bool = True,
        on_refresh_success: Optional[SuccessCallback] = None,
        on_refresh_error: Optional[ErrorCallback] = None,
        refresh_threshold_ms: Optional[int] = None,
    ) -> None:
        self.session_store = session_store
        self.api_client = api_client
        self.interval_seconds = interval_seconds
        self.auto_refresh = auto_refresh
        self.on_refresh_success = on_refresh_success
        self.on_refresh_error = on_refresh_error
        self.refresh_threshold_ms = refresh_threshold_ms
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Dict[str, asyncio.Future] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background refresh loop."""
        if not self.auto_refresh:
            logger.debug("refresh_scheduler_disabled")
            return
        if self._running:
            logger.warning("refresh_scheduler_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("refresh_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background refresh loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("refresh_scheduler_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except Exception as exc:
                logger.error(
                    "refresh_scheduler_loop_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            await asyncio.sleep(self.interval_seconds)

    def is_expired(self) -> bool:
        return token_is_expired(self.session_store.access_token())

    def time_until_expiration(self) -> Optional[int]:
        return token_time_until_expiration(self.session_store.access_token())

    def _needs_refresh(self, token: str) -> bool:
        if token_is_expired(token):
            return True
        if self.refresh_threshold_ms is None:
            return False
        remaining = token_time_until_expiration(token)
        return remaining is not None and remaining <= self.refresh_threshold_ms

    async def check(self) -> None:
        token = self.session_store.access_token()
        if not token:
            return
        if self._needs_refresh(token):
            logger.info("access_token_near_expiry")
            await self.refresh()

    async def refresh(self) -> bool:
        key = self.session_store.session_id() or ""
        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug("refresh_joined_in_flight")
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            ok = await self._refresh_once()
            future.set_result(ok)
            return ok
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so a future without joiners does not warn on GC
            future.exception()
            raise
        finally:
            self._in_flight.pop(key, None)

    async def _refresh_once(self) -> bool:
        refresh_token = self.session_store.refresh_token()
        if not refresh_token:
            logger.warning("refresh_token_missing")
            await self._notify(self.on_refresh_error, AuthSessionError("No refresh token available"))
            return False
        try:
            result = await self.api_client.refresh_session(refresh_token)
        except AuthSessionError as exc:
            logger.error("session_refresh_failed", error=str(exc), error_code=exc.error_code)
            await self._notify(self.on_refresh_error, exc)
            return False

        self.session_store.update_tokens(result.access_token, result.refresh_token, result.expires_at)
        logger.info("session_refreshed", expires_at=result.expires_at)
        await self._notify(self.on_refresh_success, result)
        return True

    async def _notify(self, callback: Optional[Callable[[Any], Any]], arg: Any) -> None:
        if callback is None:
            return
        try:
            outcome: Any = callback(arg)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error("refresh_callback_failed", error=str(exc), error_type=type(exc).__name__)


__all__ = ["RefreshScheduler"]
