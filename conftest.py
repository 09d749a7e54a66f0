"""
Shared test fixtures.

This module provides reusable fixtures for:
- Signing test Supabase access tokens (HS256) with a fixed test secret
- Expired / wrong-audience tokens for auth failure tests
- A fake async SQLAlchemy session factory for the cloud facade
- Resetting the process-wide in-memory stores between tests
"""

import time
from typing import Any, Dict, List, Optional

import jwt
import pytest

from common import storage
from common.constants import JWT_AUDIENCE

TEST_JWT_SECRET = "test-supabase-jwt-secret-with-enough-length"


@pytest.fixture(autouse=True)
def reset_memory_storage():
    """Each test starts with empty in-memory settings and no sequencers."""
    storage.device_storage.clear()
    storage.emergency_sequencers.clear()
    yield
    storage.device_storage.clear()
    storage.emergency_sequencers.clear()


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    return TEST_JWT_SECRET


@pytest.fixture
def create_access_token(jwt_secret):
    """
    Factory fixture to create Supabase-style access tokens.

    Returns:
        Function that creates tokens with custom claims
    """

    def _create_token(
        user_id: str = "test-user-123",
        email: str = "jane@example.com",
        expires_in: int = 3600,
        audience: str = JWT_AUDIENCE,
        **extra_claims,
    ) -> str:
        now = int(time.time())
        payload = {
            "sub": user_id,
            "email": email,
            "aud": audience,
            "role": "authenticated",
            "iat": now,
            "exp": now + expires_in,
            **extra_claims,
        }
        return jwt.encode(payload, jwt_secret, algorithm="HS256")

    return _create_token


@pytest.fixture
def auth_headers(create_access_token):
    """Factory returning an Authorization header for a user id."""

    def _headers(user_id: str = "test-user-123", **claims) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, **claims)}"}

    return _headers


# ----------------------------
# Fake async db session
# ----------------------------
class FakeScalarsResult:
    def __init__(self, items):
        self._items = list(items)

    def all(self):
        return list(self._items)


class FakeExecuteResult:
    """Mock result for session.execute(); supports scalars().all()."""

    def __init__(self, items):
        self._items = list(items)

    def scalars(self):
        return FakeScalarsResult(self._items)


class FakeSession:
    """
    Mock AsyncSession backed by a dict of rows keyed by (model, primary key).

    Supports:
      - session.add(obj)
      - await session.get(model, pk, with_for_update=...)
      - await session.execute(stmt)  (returns every row of the queried model)
      - await session.commit() / await session.rollback()
    """

    def __init__(self, db: "FakeDatabase"):
        self.db = db
        self.pending: List[Any] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def add(self, obj):
        self.pending.append(obj)

    async def get(self, model, pk, with_for_update=None):
        if self.db.get_raises:
            raise self.db.get_raises
        self.db.locked.append(bool(with_for_update))
        return self.db.rows.get((model, pk))

    async def execute(self, stmt):
        if self.db.execute_raises:
            raise self.db.execute_raises
        model = stmt.column_descriptions[0]["entity"]
        rows = [row for (m, _), row in self.db.rows.items() if m is model]
        rows.sort(key=lambda r: getattr(r, "timestamp", 0), reverse=True)
        return FakeExecuteResult(rows)

    async def commit(self):
        if self.db.commit_raises:
            raise self.db.commit_raises
        for obj in self.pending:
            pk = getattr(obj, "id", None) or getattr(obj, "user_id")
            self.db.rows[(type(obj), pk)] = obj
        self.pending = []
        self.db.commits += 1

    async def rollback(self):
        self.pending = []
        self.db.rollbacks += 1


class FakeDatabase:
    """Callable session factory standing in for libs.db.AsyncSessionLocal."""

    def __init__(self):
        self.rows: Dict[Any, Any] = {}
        self.locked: List[bool] = []
        self.commits = 0
        self.rollbacks = 0
        self.commit_raises: Optional[Exception] = None
        self.get_raises: Optional[Exception] = None
        self.execute_raises: Optional[Exception] = None

    def __call__(self):
        return FakeSession(self)

    def all(self, model) -> List[Any]:
        return [row for (m, _), row in self.rows.items() if m is model]


@pytest.fixture
def fake_db():
    return FakeDatabase()


class FakeObjectStorage:
    """Stands in for the Supabase storage API used by the cloud facade."""

    def __init__(self):
        self.raises: Optional[Exception] = None
        self.uploads: List[Dict[str, Any]] = []

    async def upload_object(self, bucket, path, data, content_type, upsert=False):
        if self.raises:
            raise self.raises
        self.uploads.append(
            {
                "bucket": bucket,
                "path": path,
                "data": data,
                "content_type": content_type,
                "upsert": upsert,
            }
        )

    async def get_public_url(self, bucket, path):
        return f"https://project.supabase.co/storage/v1/object/public/{bucket}/{path}"


@pytest.fixture
def object_storage():
    return FakeObjectStorage()
