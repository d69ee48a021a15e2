from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def _require(data: Dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None:
        raise ValueError(f"missing required field: {key}")
    return value


@dataclass
class User:
    id: str
    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    email_verified: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    metadata: Dict[str, Any] | None = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "emailVerified": self.email_verified,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.name is not None:
            data["name"] = self.name
        if self.avatar is not None:
            data["avatar"] = self.avatar
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        if not isinstance(data, dict):
            raise ValueError("user record must be an object")
        return cls(
            id=str(_require(data, "id")),
            email=str(data.get("email") or ""),
            name=data.get("name"),
            avatar=data.get("avatar"),
            email_verified=bool(data.get("emailVerified", False)),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            metadata=data.get("metadata"),
        )


@dataclass
class Session:
    id: str
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: int
    provider: str = "google"
    created_at: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def is_expired(self, now: Optional[int] = None) -> bool:
        current = now_ms() if now is None else now
        return self.expires_at <= current

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "provider": self.provider,
            "createdAt": self.created_at,
        }
        if self.ip_address is not None:
            data["ipAddress"] = self.ip_address
        if self.user_agent is not None:
            data["userAgent"] = self.user_agent
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        if not isinstance(data, dict):
            raise ValueError("session record must be an object")
        return cls(
            id=str(_require(data, "id")),
            user_id=str(data.get("userId") or ""),
            access_token=str(data.get("accessToken") or ""),
            refresh_token=str(data.get("refreshToken") or ""),
            expires_at=int(_require(data, "expiresAt")),
            provider=str(data.get("provider") or "google"),
            created_at=data.get("createdAt"),
            ip_address=data.get("ipAddress"),
            user_agent=data.get("userAgent"),
        )


@dataclass
class LoginResult:
    user: User
    session: Session
    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoginResult":
        if not isinstance(data, dict):
            raise ValueError("login payload must be an object")
        session = Session.from_dict(_require(data, "session"))
        return cls(
            user=User.from_dict(_require(data, "user")),
            session=session,
            access_token=str(data.get("accessToken") or session.access_token),
            refresh_token=str(data.get("refreshToken") or session.refresh_token),
            expires_at=int(data.get("expiresAt") or session.expires_at),
        )


@dataclass
class RefreshResult:
    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefreshResult":
        if not isinstance(data, dict):
            raise ValueError("refresh payload must be an object")
        return cls(
            access_token=str(_require(data, "accessToken")),
            refresh_token=str(_require(data, "refreshToken")),
            expires_at=int(_require(data, "expiresAt")),
        )


@dataclass
class AuthState:
    is_authenticated: bool = False
    user: Optional[User] = None
    session: Optional[Session] = None
    loading: bool = True
    error: Optional[str] = None
