"""Execution environments the session components run in.

A ``ClientEnvironment`` owns the storage areas, cookie jar and navigator of
one client context. A ``NullEnvironment`` stands in for a server-rendering
host where none of these exist. Components receive one of the two at
construction and never reach for ambient globals.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from authsession.config import Settings
from authsession.logging import get_logger
from authsession.storage.cookies import decode_component
from authsession.storage.errors import StorageQuotaExceeded

logger = get_logger(__name__)


class StorageArea(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class MemoryStorageArea:
    """Process-local string store with an optional byte quota."""

    def __init__(self, *, quota_bytes: Optional[int] = None) -> None:
        self._items: Dict[str, str] = {}
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()

    def _size_with(self, key: str, value: str) -> int:
        size = len(key) + len(value)
        for existing_key, existing_value in self._items.items():
            if existing_key != key:
                size += len(existing_key) + len(existing_value)
        return size

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            if self.quota_bytes is not None:
                size = self._size_with(key, value)
                if size > self.quota_bytes:
                    raise StorageQuotaExceeded(
                        "storage quota exceeded",
                        {"quota_bytes": self.quota_bytes, "requested_bytes": size},
                    )
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._items)


class FileStorageArea:
    """Durable string store kept as one JSON object on disk.

    Every operation re-reads the file so separate processes sharing the
    directory observe each other's writes. Writes go through a temp file and
    ``os.replace``.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".authsession_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._read())


class CookieJar:
    """Client cookie store that speaks cookie strings in both directions.

    ``write`` accepts one cookie assignment (``name=value; max-age=...``) and
    ``read`` returns every live cookie joined as a ``Cookie`` header.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._cookies: Dict[str, Tuple[str, Optional[float]]] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def write(self, cookie: str) -> None:
        parts = [part.strip() for part in cookie.split(";")]
        name, sep, value = parts[0].partition("=")
        if not sep or not name:
            raise ValueError(f"malformed cookie assignment: {cookie!r}")
        expires_at: Optional[float] = None
        for attribute in parts[1:]:
            attr_name, _, attr_value = attribute.partition("=")
            if attr_name.lower() == "max-age":
                max_age = int(attr_value)
                if max_age <= 0:
                    with self._lock:
                        self._cookies.pop(name, None)
                    return
                expires_at = self._clock() + max_age
        with self._lock:
            self._cookies[name] = (value, expires_at)

    def _live(self) -> Iterable[Tuple[str, str]]:
        now = self._clock()
        expired = [
            name
            for name, (_, expires_at) in self._cookies.items()
            if expires_at is not None and expires_at <= now
        ]
        for name in expired:
            self._cookies.pop(name, None)
        return [(name, value) for name, (value, _) in self._cookies.items()]

    def read(self) -> str:
        with self._lock:
            return "; ".join(f"{name}={value}" for name, value in self._live())

    def names(self) -> List[str]:
        """Decoded names of every live cookie."""
        with self._lock:
            names = []
            for name, _ in self._live():
                try:
                    names.append(decode_component(name))
                except UnicodeDecodeError:
                    continue
            return names


class Environment(Protocol):
    is_client: bool
    origin: Optional[str]

    def durable_area(self) -> Optional[StorageArea]: ...

    def per_tab_area(self) -> Optional[StorageArea]: ...

    def cookie_jar(self) -> Optional[CookieJar]: ...

    def navigate(self, url: str) -> None: ...


class ClientEnvironment:
    """A client context with reachable storage and a navigator."""

    is_client = True

    def __init__(
        self,
        *,
        durable: Optional[StorageArea] = None,
        per_tab: Optional[StorageArea] = None,
        cookies: Optional[CookieJar] = None,
        origin: Optional[str] = None,
        navigator: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._durable = durable if durable is not None else MemoryStorageArea()
        self._per_tab = per_tab if per_tab is not None else MemoryStorageArea()
        self._cookies = cookies if cookies is not None else CookieJar()
        self.origin = origin.rstrip("/") if origin else None
        self._navigator = navigator
        self.last_navigation: Optional[str] = None

    def durable_area(self) -> Optional[StorageArea]:
        return self._durable

    def per_tab_area(self) -> Optional[StorageArea]:
        return self._per_tab

    def cookie_jar(self) -> Optional[CookieJar]:
        return self._cookies

    def navigate(self, url: str) -> None:
        self.last_navigation = url
        logger.info("client_navigate", url=url.split("?", 1)[0])
        if self._navigator is not None:
            self._navigator(url)


class NullEnvironment:
    """Server-rendering host: no client storage, no navigation."""

    is_client = False
    origin: Optional[str] = None

    def durable_area(self) -> Optional[StorageArea]:
        return None

    def per_tab_area(self) -> Optional[StorageArea]:
        return None

    def cookie_jar(self) -> Optional[CookieJar]:
        return None

    def navigate(self, url: str) -> None:
        logger.debug("navigate_skipped_without_client", url=url.split("?", 1)[0])


def create_environment(
    settings: Settings,
    *,
    client: bool = True,
    origin: Optional[str] = None,
    navigator: Optional[Callable[[str], None]] = None,
) -> ClientEnvironment | NullEnvironment:
    """Pick the environment once, at construction time."""
    if not client:
        return NullEnvironment()
    durable: Optional[StorageArea] = None
    if settings.storage_dir:
        durable = FileStorageArea(Path(settings.storage_dir) / "session_store.json")
    return ClientEnvironment(durable=durable, origin=origin, navigator=navigator)


__all__ = [
    "ClientEnvironment",
    "CookieJar",
    "Environment",
    "FileStorageArea",
    "MemoryStorageArea",
    "NullEnvironment",
    "StorageArea",
    "create_environment",
]
