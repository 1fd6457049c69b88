import sys
from pathlib import Path
import uuid
import time

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import session as session_module
from app.main import create_app

# Import models so that they are registered in Base.metadata before create_all.
from app.models.user import User, UserRole  # noqa: F401
from app.models.quiz import Quiz  # noqa: F401
from app.models.attempt import QuizAttempt  # noqa: F401


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}
        self._hashes: dict[str, dict[str, str]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None):
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        self._data.pop(key, None)
        self._hashes.pop(key, None)
        return 1

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def hset(self, key: str, mapping: dict[str, str]):
        h = self._hashes.setdefault(key, {})
        added = sum(1 for k in mapping if k not in h)
        h.update({str(k): str(v) for k, v in mapping.items()})
        return added

    def hgetall(self, key: str):
        return dict(self._hashes.get(key, {}))

    def flushall(self):
        self._data.clear()
        self._hashes.clear()
        return True


# Configure test DB (SQLite in-memory) at import time so all tests importing
# app.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (rate limiting + runtime LLM config).
_mem_redis = _MemoryRedis()
import app.core.redis_client as redis_client_module

redis_client_module.get_redis = lambda: _mem_redis

import app.core.rate_limit as rate_limit_module
rate_limit_module.get_redis = lambda: _mem_redis

import app.services.llm_config as llm_config_module
llm_config_module.get_redis = lambda: _mem_redis

import app.routers.health as health_router_module
health_router_module.get_redis = lambda: _mem_redis
health_router_module.SessionLocal = session_module.SessionLocal


@pytest.fixture(scope="session")
def client():
    app = create_app()

    # Ensure app dependencies use our session factory.
    def _get_db_override():
        db = session_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[session_module.get_db] = _get_db_override
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


@pytest.fixture()
def memory_redis():
    return _mem_redis


@pytest.fixture(autouse=True)
def _reset_redis():
    # Rate-limit counters and the saved LLM config must not leak between tests.
    _mem_redis.flushall()
    yield


def _token_for(client, *, username: str, password: str) -> str:
    r = client.post(
        "/auth/token",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert r.status_code == 200
    return r.json()["access_token"]


@pytest.fixture()
def user_token(client, monkeypatch):
    from app.core.config import settings
    username = f"test_{uuid.uuid4().hex[:8]}"
    password = "testpass123"

    monkeypatch.setattr(settings, "allow_public_register", True)
    r = client.post("/auth/register", json={"name": username, "password": password})
    assert r.status_code == 200

    return _token_for(client, username=username, password=password)


@pytest.fixture()
def auth_headers(user_token):
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture()
def admin_headers(client):
    from app.routers.auth import hash_password

    username = f"admin_{uuid.uuid4().hex[:8]}"
    password = "adminpass123"
    with session_module.SessionLocal() as db:
        db.add(User(name=username, role=UserRole.admin, password_hash=hash_password(password)))
        db.commit()

    return {"Authorization": f"Bearer {_token_for(client, username=username, password=password)}"}
