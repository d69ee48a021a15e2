import asyncio
import base64
import inspect
import json
import os
import sys
import time
from pathlib import Path

# Keep test output readable and independent of the developer's .env
os.environ.setdefault("AUTHSESSION_LOG_JSON", "false")
os.environ.setdefault("AUTHSESSION_LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authsession.config import Settings  # noqa: E402
from authsession.environment import ClientEnvironment  # noqa: E402
from authsession.storage.models import Session, User  # noqa: E402


def _segment(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def build_token(**claims) -> str:
    """Unsigned three-segment token carrying ``claims``."""
    return f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(claims)}.c2lnbmF0dXJl"


@pytest.fixture
def make_token():
    def _make(expires_in: int | None = 3600, **claims) -> str:
        if expires_in is not None:
            claims.setdefault("exp", int(time.time()) + expires_in)
        claims.setdefault("sub", "user_1")
        return build_token(**claims)

    return _make


@pytest.fixture
def settings():
    return Settings(
        api_key="pk_live_abcdefghijklmnop",
        app_id="app_123",
        base_url="https://auth.example.com",
        redirect_url="https://app.example.com/auth/callback",
    )


@pytest.fixture
def environment():
    return ClientEnvironment(origin="https://app.example.com")


@pytest.fixture
def user():
    return User(id="user_1", email="ada@example.com", name="Ada", email_verified=True)


@pytest.fixture
def live_session(make_token):
    token = make_token(expires_in=3600, session_id="sess_1")
    return Session(
        id="sess_1",
        user_id="user_1",
        access_token=token,
        refresh_token="refresh_1",
        expires_at=int((time.time() + 3600) * 1000),
        provider="github",
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
