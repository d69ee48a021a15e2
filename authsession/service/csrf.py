from __future__ import annotations

import hmac
import random
import secrets
import string
import threading
import time
from typing import Optional

from authsession.environment import Environment
from authsession.logging import get_logger
from authsession.storage.adapter import KeyValueStorageAdapter, NullStorageAdapter, StorageAdapter

logger = get_logger(__name__)

STATE_KEY = "oauth_state"
_STATE_BYTES = 32
_FALLBACK_ALPHABET = string.ascii_letters + string.digits


class CsrfStateGuard:
    """One-time anti-CSRF nonce for a single pending OAuth flow.

    The nonce lives in the per-tab area so it never outlives the client
    context that started the flow. A successful ``validate`` consumes it.
    """

    def __init__(self, environment: Environment) -> None:
        area = environment.per_tab_area() if environment.is_client else None
        self.storage: StorageAdapter = (
            KeyValueStorageAdapter(area, "") if area is not None else NullStorageAdapter()
        )
        self.last_state_was_weak = False
        self._lock = threading.Lock()

    def _random_state(self) -> str:
        try:
            self.last_state_was_weak = False
            return secrets.token_urlsafe(_STATE_BYTES)
        except NotImplementedError as exc:
            # os.urandom has no entropy source on this platform
            self.last_state_was_weak = True
            logger.warning("csrf_state_weak_entropy", error=str(exc))
            weak = random.Random(time.time_ns())
            return "".join(weak.choice(_FALLBACK_ALPHABET) for _ in range(43))

    def generate(self) -> str:
        state = self._random_state()
        with self._lock:
            self.storage.set(STATE_KEY, state)
        return state

    def validate(self, received: Optional[str]) -> bool:
        if not received:
            logger.warning("csrf_state_missing_in_callback")
            return False
        with self._lock:
            stored = self.storage.get(STATE_KEY)
            if not isinstance(stored, str) or not stored:
                logger.warning("csrf_state_not_found")
                return False
            if not hmac.compare_digest(stored.encode(), received.encode()):
                logger.warning("csrf_state_mismatch")
                return False
            self.storage.remove(STATE_KEY)
        return True

    def clear(self) -> None:
        with self._lock:
            self.storage.remove(STATE_KEY)


__all__ = ["CsrfStateGuard", "STATE_KEY"]
