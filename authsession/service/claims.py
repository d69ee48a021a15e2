"""Unverified reads of bearer-token payloads.

Nothing here checks a signature. The values are good enough to decide when
to renew a token or what to show in a UI, never to authorize anything, which
is why they come back wrapped in ``UnverifiedClaims`` rather than a dict.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from authsession.logging import get_logger

logger = get_logger(__name__)

# Tokens this close to expiry are treated as already expired
EXPIRY_LEAD_SECONDS = 60


@dataclass(frozen=True)
class UnverifiedClaims:
    subject: Optional[str]
    expires_at: Optional[int]
    issued_at: Optional[int]
    extra: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        if name == "sub":
            return self.subject if self.subject is not None else default
        if name == "exp":
            return self.expires_at if self.expires_at is not None else default
        if name == "iat":
            return self.issued_at if self.issued_at is not None else default
        return self.extra.get(name, default)


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _numeric(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def decode_claims(token: Optional[str]) -> Optional[UnverifiedClaims]:
    if not token or not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3 or not parts[1]:
        return None
    try:
        payload = json.loads(_decode_segment(parts[1]))
    except (binascii.Error, ValueError, RecursionError) as exc:
        logger.debug("token_claims_decode_failed", error=str(exc))
        return None
    if not isinstance(payload, dict):
        return None
    subject = payload.get("sub")
    extra = {k: v for k, v in payload.items() if k not in {"sub", "exp", "iat"}}
    return UnverifiedClaims(
        subject=str(subject) if subject is not None else None,
        expires_at=_numeric(payload.get("exp")),
        issued_at=_numeric(payload.get("iat")),
        extra=MappingProxyType(extra),
    )


def is_expired(token: Optional[str], now: Optional[float] = None) -> bool:
    """True when unreadable, missing ``exp``, or within the lead buffer of it."""
    claims = decode_claims(token)
    if claims is None or claims.expires_at is None:
        return True
    current = time.time() if now is None else now
    return claims.expires_at <= current + EXPIRY_LEAD_SECONDS


def expiration_instant(token: Optional[str]) -> Optional[int]:
    """Expiry in epoch milliseconds."""
    claims = decode_claims(token)
    if claims is None or claims.expires_at is None:
        return None
    return claims.expires_at * 1000


def subject(token: Optional[str]) -> Optional[str]:
    claims = decode_claims(token)
    return claims.subject if claims else None


def claim(token: Optional[str], name: str) -> Any:
    claims = decode_claims(token)
    return claims.get(name) if claims else None


def time_until_expiration(token: Optional[str], now_ms: Optional[int] = None) -> Optional[int]:
    expires_ms = expiration_instant(token)
    if expires_ms is None:
        return None
    current = int(time.time() * 1000) if now_ms is None else now_ms
    return max(0, expires_ms - current)


__all__ = [
    "EXPIRY_LEAD_SECONDS",
    "UnverifiedClaims",
    "claim",
    "decode_claims",
    "expiration_instant",
    "is_expired",
    "subject",
    "time_until_expiration",
]
