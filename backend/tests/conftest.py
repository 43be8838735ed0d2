"""Pytest configuration and shared fixtures for backend tests."""

import os
import sys
from typing import Optional

import pytest
import pytest_asyncio

# Add parent directory to path for recipe_easy module discovery
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./recipe_easy_test.db")
os.environ.setdefault("PUBLIC_BASE_URL", "https://recipes.test")

import recipe_easy.models  # noqa: F401,E402
from recipe_easy.core.database import Base, build_engine, build_session_factory  # noqa: E402
from recipe_easy.services.r2_storage import R2StorageService, StoredObject  # noqa: E402


class InMemoryStorage(R2StorageService):
    """R2StorageService keeping objects in a dict instead of a bucket."""

    def __init__(self):
        super().__init__(bucket_name="test-images")
        self.objects: dict[str, StoredObject] = {}

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        self.objects[key] = StoredObject(
            key=key,
            body=body,
            content_type=content_type,
            metadata=dict(metadata or {}),
        )

    async def get_object(self, key: str) -> Optional[StoredObject]:
        return self.objects.get(key)

    async def head_object(self, key: str) -> bool:
        return key in self.objects

    async def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Provide a session factory bound to a fresh SQLite database file.

    Each concurrent caller in a test should open its own session from this
    factory, the way separate requests would.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = build_session_factory(engine)

    yield factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage() -> InMemoryStorage:
    """Provide an in-memory object store."""
    return InMemoryStorage()
