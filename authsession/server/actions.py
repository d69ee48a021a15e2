"""Session accessors for request handlers that only see a ``Cookie`` header."""

from __future__ import annotations

import json
from typing import List, Optional

from authsession.config import DEFAULT_STORAGE_PREFIX, Settings
from authsession.logging import get_logger
from authsession.service.session_store import (
    ACCESS_TOKEN_KEY,
    EXPIRES_AT_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_KEY,
    USER_KEY,
)
from authsession.storage.cookies import CookieOptions, build_set_cookie, read_cookie_record
from authsession.storage.models import Session, User

logger = get_logger(__name__)


def get_session_from_cookies(
    cookie_header: Optional[str], prefix: str = DEFAULT_STORAGE_PREFIX
) -> Optional[Session]:
    raw = read_cookie_record(SESSION_KEY, cookie_header, prefix)
    if raw is None:
        return None
    try:
        session = Session.from_dict(raw)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.warning("cookie_session_invalid", error=str(exc))
        return None
    if session.is_expired():
        return None
    return session


def get_session_action(
    cookie_header: Optional[str], prefix: str = DEFAULT_STORAGE_PREFIX
) -> Optional[Session]:
    return get_session_from_cookies(cookie_header, prefix)


def get_current_user_action(
    cookie_header: Optional[str], prefix: str = DEFAULT_STORAGE_PREFIX
) -> Optional[User]:
    """The stored user, only while a live session accompanies it."""
    if get_session_from_cookies(cookie_header, prefix) is None:
        return None
    raw = read_cookie_record(USER_KEY, cookie_header, prefix)
    if raw is None:
        return None
    try:
        return User.from_dict(raw)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.warning("cookie_user_invalid", error=str(exc))
        return None


def validate_session_action(
    cookie_header: Optional[str],
    session_id: str,
    prefix: str = DEFAULT_STORAGE_PREFIX,
) -> bool:
    session = get_session_from_cookies(cookie_header, prefix)
    return session is not None and session.id == session_id


def is_authenticated(
    cookie_header: Optional[str], prefix: str = DEFAULT_STORAGE_PREFIX
) -> bool:
    return get_session_from_cookies(cookie_header, prefix) is not None


def session_cookie_headers(settings: Settings, session: Session, user: User) -> List[str]:
    """``Set-Cookie`` values that persist a session for later cookie reads.

    ``Secure`` is forced when the app runs in production.
    """
    options = settings.cookie_options()
    records = {
        SESSION_KEY: session.to_dict(),
        USER_KEY: user.to_dict(),
        ACCESS_TOKEN_KEY: session.access_token,
        REFRESH_TOKEN_KEY: session.refresh_token,
        EXPIRES_AT_KEY: session.expires_at,
    }
    return [
        build_set_cookie(
            settings.storage_prefix + key,
            json.dumps(value),
            options,
            force_secure=settings.is_production,
        )
        for key, value in records.items()
    ]


def clear_session_cookie_headers(settings: Settings) -> List[str]:
    options = CookieOptions(path=settings.cookie_path, domain=settings.cookie_domain, max_age=0)
    return [
        build_set_cookie(settings.storage_prefix + key, "", options, force_secure=settings.is_production)
        for key in (SESSION_KEY, USER_KEY, ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY)
    ]


__all__ = [
    "clear_session_cookie_headers",
    "get_current_user_action",
    "get_session_action",
    "get_session_from_cookies",
    "is_authenticated",
    "session_cookie_headers",
    "validate_session_action",
]
