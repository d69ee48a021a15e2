"""Prefixed JSON key/value storage over the backends an environment offers.

Every adapter swallows backend failures: a quota error or an unreachable
area turns the operation into a no-op, the failure is logged and handed to
the optional ``on_error`` diagnostic hook as a ``StorageError``.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional, Protocol

from authsession.config import Settings, StorageType
from authsession.environment import CookieJar, Environment, StorageArea
from authsession.logging import get_logger
from authsession.service.errors import StorageError
from authsession.storage.cookies import CookieOptions, build_cookie_string, read_cookie_record
from authsession.storage.errors import StorageQuotaExceeded

logger = get_logger(__name__)

ErrorHook = Callable[[StorageError], None]


class StorageAdapter(Protocol):
    prefix: str

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, options: Optional[CookieOptions] = None) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...


class _ReportingAdapter:
    def __init__(self, prefix: str, on_error: Optional[ErrorHook] = None) -> None:
        self.prefix = prefix
        self._on_error = on_error

    def _report(self, event: str, key: str, exc: Exception) -> None:
        logger.warning(event, key=key, backend=type(self).__name__, error=str(exc))
        if self._on_error is None:
            return
        error = StorageError(str(exc), detail={"key": key, "event": event})
        try:
            self._on_error(error)
        except Exception as hook_exc:
            logger.error("storage_error_hook_failed", error=str(hook_exc))

    def _serialize(self, key: str, value: Any) -> Optional[str]:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as exc:
            self._report("storage_serialize_failed", key, exc)
            return None


class KeyValueStorageAdapter(_ReportingAdapter):
    """Adapter over a durable or per-tab ``StorageArea``."""

    def __init__(
        self,
        area: StorageArea,
        prefix: str,
        *,
        on_error: Optional[ErrorHook] = None,
    ) -> None:
        super().__init__(prefix, on_error)
        self.area = area

    def get(self, key: str) -> Any:
        try:
            raw = self.area.get_item(self.prefix + key)
        except (OSError, ValueError) as exc:
            self._report("storage_get_failed", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (ValueError, RecursionError) as exc:
            self._report("storage_decode_failed", key, exc)
            return None

    def set(self, key: str, value: Any, options: Optional[CookieOptions] = None) -> None:
        serialized = self._serialize(key, value)
        if serialized is None:
            return
        try:
            self.area.set_item(self.prefix + key, serialized)
        except (StorageQuotaExceeded, OSError, ValueError) as exc:
            self._report("storage_set_failed", key, exc)

    def remove(self, key: str) -> None:
        try:
            self.area.remove_item(self.prefix + key)
        except (OSError, ValueError) as exc:
            self._report("storage_remove_failed", key, exc)

    def clear(self) -> None:
        try:
            keys = [k for k in self.area.keys() if k.startswith(self.prefix)]
        except (OSError, ValueError) as exc:
            self._report("storage_clear_failed", "*", exc)
            return
        for full_key in keys:
            self.remove(full_key[len(self.prefix) :])


class CookieStorageAdapter(_ReportingAdapter):
    """Adapter over a client ``CookieJar``.

    Per-write options are merged over the configured defaults; removal writes
    an empty value with ``max-age=0`` on the same path and domain.
    """

    def __init__(
        self,
        jar: CookieJar,
        prefix: str,
        *,
        defaults: Optional[CookieOptions] = None,
        on_error: Optional[ErrorHook] = None,
    ) -> None:
        super().__init__(prefix, on_error)
        self.jar = jar
        self.defaults = defaults or CookieOptions(path="/")

    def get(self, key: str) -> Any:
        return read_cookie_record(key, self.jar.read(), self.prefix)

    def set(self, key: str, value: Any, options: Optional[CookieOptions] = None) -> None:
        serialized = self._serialize(key, value)
        if serialized is None:
            return
        cookie = build_cookie_string(self.prefix + key, serialized, self.defaults.merged(options))
        try:
            self.jar.write(cookie)
        except ValueError as exc:
            self._report("storage_set_failed", key, exc)

    def remove(self, key: str) -> None:
        expired = CookieOptions(path=self.defaults.path, domain=self.defaults.domain, max_age=0)
        try:
            self.jar.write(build_cookie_string(self.prefix + key, "", expired))
        except ValueError as exc:
            self._report("storage_remove_failed", key, exc)

    def clear(self) -> None:
        for name in self.jar.names():
            if name.startswith(self.prefix):
                self.remove(name[len(self.prefix) :])


class NullStorageAdapter:
    """Stand-in used when no client storage is reachable."""

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix

    def get(self, key: str) -> Any:
        return None

    def set(self, key: str, value: Any, options: Optional[CookieOptions] = None) -> None:
        return None

    def remove(self, key: str) -> None:
        return None

    def clear(self) -> None:
        return None


def create_storage_adapter(
    settings: Settings,
    environment: Environment,
    *,
    storage_type: Optional[StorageType] = None,
    on_error: Optional[ErrorHook] = None,
) -> StorageAdapter:
    backend = StorageType(storage_type or settings.storage_type)
    prefix = settings.storage_prefix
    if not environment.is_client:
        return NullStorageAdapter(prefix)
    if backend is StorageType.COOKIE:
        jar = environment.cookie_jar()
        if jar is None:
            return NullStorageAdapter(prefix)
        return CookieStorageAdapter(
            jar, prefix, defaults=settings.cookie_options(), on_error=on_error
        )
    area = environment.durable_area() if backend is StorageType.DURABLE else environment.per_tab_area()
    if area is None:
        logger.info("storage_unavailable", backend=backend.value)
        return NullStorageAdapter(prefix)
    return KeyValueStorageAdapter(area, prefix, on_error=on_error)


__all__ = [
    "CookieStorageAdapter",
    "KeyValueStorageAdapter",
    "NullStorageAdapter",
    "StorageAdapter",
    "create_storage_adapter",
]
