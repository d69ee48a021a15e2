"""Cookie encoding shared by the client cookie backend and server accessors.

Keys and values are percent-encoded independently so JSON payloads with
``;``, ``=`` or spaces survive a round trip through a ``Cookie`` header.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote

from authsession.logging import get_logger

logger = get_logger(__name__)

# Same reserved set as the browser's encodeURIComponent
_COOKIE_SAFE_CHARS = "-_.!~*'()"


class SameSite(str, Enum):
    STRICT = "strict"
    LAX = "lax"
    NONE = "none"


@dataclass(frozen=True)
class CookieOptions:
    path: Optional[str] = None
    domain: Optional[str] = None
    secure: bool = False
    same_site: Optional[SameSite] = None
    max_age: Optional[int] = None
    http_only: bool = False

    def merged(self, overrides: Optional["CookieOptions"]) -> "CookieOptions":
        """Return these defaults with every explicitly set override applied."""
        if overrides is None:
            return self
        changes: Dict[str, Any] = {}
        for name in ("path", "domain", "same_site", "max_age"):
            value = getattr(overrides, name)
            if value is not None:
                changes[name] = value
        if overrides.secure:
            changes["secure"] = True
        if overrides.http_only:
            changes["http_only"] = True
        return replace(self, **changes)


def encode_component(value: str) -> str:
    return quote(value, safe=_COOKIE_SAFE_CHARS)


def decode_component(value: str) -> str:
    return unquote(value, errors="strict")


def build_cookie_string(name: str, value: str, options: CookieOptions) -> str:
    """Client-side cookie assignment string (``document.cookie`` style)."""
    cookie = f"{encode_component(name)}={encode_component(value)}"
    if options.max_age is not None:
        cookie += f"; max-age={options.max_age}"
    if options.path is not None:
        cookie += f"; path={options.path}"
    if options.domain is not None:
        cookie += f"; domain={options.domain}"
    if options.secure:
        cookie += "; secure"
    if options.same_site is not None:
        cookie += f"; samesite={SameSite(options.same_site).value}"
    return cookie


def build_set_cookie(
    name: str,
    value: str,
    options: CookieOptions,
    *,
    force_secure: bool = False,
) -> str:
    """Server-side ``Set-Cookie`` header value.

    ``force_secure`` is set by callers running in production so that a
    misconfigured ``secure=False`` cannot leak tokens over plain HTTP.
    """
    cookie = f"{encode_component(name)}={encode_component(value)}"
    if options.max_age is not None:
        cookie += f"; Max-Age={options.max_age}"
    if options.path is not None:
        cookie += f"; Path={options.path}"
    if options.domain is not None:
        cookie += f"; Domain={options.domain}"
    if options.secure or force_secure:
        cookie += "; Secure"
    if options.same_site is not None:
        cookie += f"; SameSite={SameSite(options.same_site).value.capitalize()}"
    if options.http_only:
        cookie += "; HttpOnly"
    return cookie


def parse_cookies(cookie_header: Optional[str]) -> Dict[str, str]:
    """Parse a ``Cookie`` header into decoded name/value pairs.

    Pairs without ``=``, with an empty name, or with undecodable
    percent-escapes are skipped.
    """
    cookies: Dict[str, str] = {}
    if not cookie_header:
        return cookies
    for pair in cookie_header.split(";"):
        pair = pair.strip()
        if not pair:
            continue
        name, sep, value = pair.partition("=")
        if not sep or not name:
            continue
        try:
            cookies[decode_component(name)] = decode_component(value)
        except UnicodeDecodeError:
            continue
    return cookies


def get_cookie_value(key: str, cookie_header: Optional[str], prefix: str) -> Optional[str]:
    """Raw decoded value of one prefixed cookie, or None."""
    if not cookie_header:
        return None
    return parse_cookies(cookie_header).get(f"{prefix}{key}")


def read_cookie_record(key: str, cookie_header: Optional[str], prefix: str) -> Any:
    """Read and JSON-decode one prefixed record from a ``Cookie`` header."""
    raw = get_cookie_value(key, cookie_header, prefix)
    if raw is None or raw in ("", '""'):
        return None
    try:
        return json.loads(raw)
    except (ValueError, RecursionError) as exc:
        logger.warning("cookie_record_decode_failed", key=key, error=str(exc))
        return None


__all__ = [
    "CookieOptions",
    "SameSite",
    "build_cookie_string",
    "build_set_cookie",
    "decode_component",
    "encode_component",
    "get_cookie_value",
    "parse_cookies",
    "read_cookie_record",
]
