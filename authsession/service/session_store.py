from __future__ import annotations

from typing import Callable, Optional, Tuple

from authsession.logging import get_logger
from authsession.storage.adapter import StorageAdapter
from authsession.storage.models import Session, User, now_ms

logger = get_logger(__name__)

SESSION_KEY = "session"
USER_KEY = "user"
ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
EXPIRES_AT_KEY = "expires_at"

_ALL_KEYS = (SESSION_KEY, USER_KEY, ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY)


class SessionStore:
    """Persists the current ``(session, user)`` pair through a storage adapter.

    Expiry is checked on every read: a stored session whose ``expires_at`` has
    passed is cleared and reported as absent.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.storage = storage
        self._clock = clock

    def save(self, session: Session, user: User) -> None:
        self.storage.set(SESSION_KEY, session.to_dict())
        self.storage.set(USER_KEY, user.to_dict())
        self.storage.set(ACCESS_TOKEN_KEY, session.access_token)
        self.storage.set(REFRESH_TOKEN_KEY, session.refresh_token)
        self.storage.set(EXPIRES_AT_KEY, session.expires_at)
        logger.info("session_saved", session_id=session.id, user_id=user.id)

    def _read_session(self) -> Optional[Session]:
        raw = self.storage.get(SESSION_KEY)
        if raw is None:
            return None
        try:
            return Session.from_dict(raw)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("session_record_invalid", error=str(exc))
            return None

    def _read_user(self) -> Optional[User]:
        raw = self.storage.get(USER_KEY)
        if raw is None:
            return None
        try:
            return User.from_dict(raw)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("user_record_invalid", error=str(exc))
            return None

    def load(self) -> Optional[Tuple[Session, User]]:
        session = self._read_session()
        user = self._read_user()
        if session is None or user is None:
            return None
        if session.is_expired(self._clock()):
            logger.info("session_expired_on_read", session_id=session.id)
            self.clear()
            return None
        return session, user

    def clear(self) -> None:
        for key in _ALL_KEYS:
            self.storage.remove(key)

    def access_token(self) -> Optional[str]:
        token = self.storage.get(ACCESS_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def refresh_token(self) -> Optional[str]:
        token = self.storage.get(REFRESH_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def session_id(self) -> Optional[str]:
        session = self._read_session()
        return session.id if session else None

    def user(self) -> Optional[User]:
        return self._read_user()

    def update_tokens(
        self,
        access_token: str,
        refresh_token: str,
        expires_at: Optional[int] = None,
    ) -> None:
        """Rotate tokens after a renewal without ever moving expiry backwards."""
        stored_expiry = self.storage.get(EXPIRES_AT_KEY)
        current_expiry = stored_expiry if isinstance(stored_expiry, int) else None
        new_expiry = current_expiry
        if expires_at is not None:
            if current_expiry is not None and expires_at < current_expiry:
                logger.warning(
                    "session_expiry_decrease_ignored",
                    current_expires_at=current_expiry,
                    received_expires_at=expires_at,
                )
            else:
                new_expiry = expires_at

        self.storage.set(ACCESS_TOKEN_KEY, access_token)
        self.storage.set(REFRESH_TOKEN_KEY, refresh_token)
        if new_expiry is not None:
            self.storage.set(EXPIRES_AT_KEY, new_expiry)

        session = self._read_session()
        if session is not None:
            session.access_token = access_token
            session.refresh_token = refresh_token
            if new_expiry is not None and new_expiry > session.expires_at:
                session.expires_at = new_expiry
            self.storage.set(SESSION_KEY, session.to_dict())
        logger.info("session_tokens_rotated", expires_at=new_expiry)


__all__ = ["SessionStore"]
