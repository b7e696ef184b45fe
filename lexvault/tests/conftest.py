"""
Shared fixtures for the LexVault test suite.

Tests run against a throwaway SQLite database (aiosqlite) created per test,
a blob directory under ``tmp_path``, and in-memory stand-ins for the Redis
cache and revocation stores.
"""

import asyncio
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from lexvault.config import Settings
from lexvault.context import CallerContext
from lexvault.db import create_engine, create_session_factory
from lexvault.dependencies import Services, assemble_services
from lexvault.models import Base, Jurisdiction, JurisdictionLevel, LegalSystem, User
from lexvault.stores.blob import LocalBlobStore

TEST_JWT_SECRET = "test-secret-0123456789abcdef0123456789"


class FakeCache:
    """Dict-backed cache that can be switched into an outage."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.available = True
        self.reads = 0

    def _check(self) -> None:
        if not self.available:
            raise ConnectionError("cache unavailable")

    async def get(self, key: str) -> bytes | None:
        self._check()
        self.reads += 1
        return self.data.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._check()
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self._check()
        self.data.pop(key, None)


class FakeRevocationStore:
    def __init__(self):
        self.revoked: dict[str, int] = {}

    async def is_revoked(self, jti: str) -> bool:
        return jti in self.revoked

    async def revoke(self, jti: str, ttl_seconds: int) -> None:
        self.revoked[jti] = max(1, ttl_seconds)

    async def revoke_if_absent(self, jti: str, ttl_seconds: int) -> bool:
        # Yield so concurrent callers genuinely interleave.
        await asyncio.sleep(0)
        if jti in self.revoked:
            return False
        self.revoked[jti] = max(1, ttl_seconds)
        return True


@pytest.fixture
def config(tmp_path) -> Settings:
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'lexvault.db'}",
        blob_storage_dir=tmp_path / "blobs",
        storage_timeout_seconds=5.0,
        jwt_secret=TEST_JWT_SECRET,
        bcrypt_rounds=4,
        max_file_size_mb=1,
        soft_delete_retention_days=30,
        worker_poll_interval_seconds=1,
        worker_max_attempts=3,
    )


@pytest_asyncio.fixture
async def session_factory(config):
    engine = create_engine(config)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def blob_store(config) -> LocalBlobStore:
    return LocalBlobStore(config.blob_storage_dir)


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def revocations() -> FakeRevocationStore:
    return FakeRevocationStore()


@pytest.fixture
def services(session_factory, blob_store, cache, revocations, config) -> Services:
    return assemble_services(session_factory, blob_store, cache, revocations, config=config)


@pytest_asyncio.fixture
async def jurisdiction_ids(session_factory) -> dict[str, UUID]:
    """A small valid hierarchy: Canada > (British Columbia > Vancouver, Ontario)."""
    canada = Jurisdiction(
        id=uuid4(),
        code="CA",
        name="Canada",
        level=JurisdictionLevel.FEDERAL,
        legal_system=LegalSystem.BIJURAL,
        geo_code="CA",
    )
    bc = Jurisdiction(
        id=uuid4(),
        code="BC",
        name="British Columbia",
        level=JurisdictionLevel.PROVINCIAL,
        legal_system=LegalSystem.COMMON_LAW,
        parent_id=canada.id,
        geo_code="CA-BC",
    )
    ontario = Jurisdiction(
        id=uuid4(),
        code="ON",
        name="Ontario",
        level=JurisdictionLevel.PROVINCIAL,
        legal_system=LegalSystem.COMMON_LAW,
        parent_id=canada.id,
        geo_code="CA-ON",
    )
    vancouver = Jurisdiction(
        id=uuid4(),
        code="BC-VANCOUVER",
        name="Vancouver",
        level=JurisdictionLevel.MUNICIPAL,
        legal_system=LegalSystem.COMMON_LAW,
        parent_id=bc.id,
    )
    async with session_factory() as session:
        session.add(canada)
        await session.flush()
        session.add_all([bc, ontario])
        await session.flush()
        session.add(vancouver)
        await session.commit()
    return {j.code: j.id for j in (canada, bc, ontario, vancouver)}


async def _create_user(session_factory, email: str) -> UUID:
    user = User(id=uuid4(), email=email, password_hash="unused", display_name=email.split("@")[0])
    async with session_factory() as session:
        session.add(user)
        await session.commit()
    return user.id


@pytest_asyncio.fixture
async def user_id(session_factory) -> UUID:
    return await _create_user(session_factory, "owner@example.com")


@pytest_asyncio.fixture
async def other_user_id(session_factory) -> UUID:
    return await _create_user(session_factory, "intruder@example.com")


@pytest.fixture
def ctx(user_id) -> CallerContext:
    return CallerContext(user_id=user_id, request_id="req-test", client_ip="203.0.113.7")


@pytest.fixture
def other_ctx(other_user_id) -> CallerContext:
    return CallerContext(user_id=other_user_id, request_id="req-other", client_ip="198.51.100.2")
