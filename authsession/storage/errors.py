from __future__ import annotations

from typing import Any, Dict, Optional


class StorageQuotaExceeded(Exception):
    """Raised by a storage area when a write would exceed its byte quota."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


__all__ = ["StorageQuotaExceeded"]
