"""Service wiring shared by the API process and the worker process."""

from dataclasses import dataclass

import redis.asyncio as redis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from lexvault.config import Settings, settings
from lexvault.db import create_engine, create_session_factory
from lexvault.services.accounts import AccountService
from lexvault.services.audit import AuditService
from lexvault.services.documents import DocumentService
from lexvault.services.jurisdictions import JurisdictionService
from lexvault.services.tokens import TokenAuthority
from lexvault.stores.blob import BlobStore, LocalBlobStore
from lexvault.stores.cache import CacheStore, RedisCacheStore
from lexvault.stores.revocation import RedisRevocationStore, RevocationStore


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    blob_store: BlobStore
    audit: AuditService
    jurisdictions: JurisdictionService
    tokens: TokenAuthority
    documents: DocumentService
    accounts: AccountService
    engine: AsyncEngine | None = None
    redis_client: redis.Redis | None = None

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def assemble_services(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: BlobStore,
    cache: CacheStore | None,
    revocations: RevocationStore,
    config: Settings = settings,
) -> Services:
    """Wire the core services from already-built stores."""
    audit = AuditService(session_factory)
    jurisdictions = JurisdictionService(
        session_factory,
        cache=cache,
        cache_ttl_seconds=config.jurisdiction_cache_ttl_seconds,
        timeout_seconds=config.storage_timeout_seconds,
    )
    tokens = TokenAuthority(revocations, config=config, audit=audit)
    documents = DocumentService(session_factory, blob_store, jurisdictions, audit, config=config)
    accounts = AccountService(
        session_factory,
        tokens,
        audit,
        bcrypt_rounds=config.bcrypt_rounds,
        timeout_seconds=config.storage_timeout_seconds,
    )
    return Services(
        session_factory=session_factory,
        blob_store=blob_store,
        audit=audit,
        jurisdictions=jurisdictions,
        tokens=tokens,
        documents=documents,
        accounts=accounts,
    )


def build_services(config: Settings = settings) -> Services:
    """Build production stores (PostgreSQL, Redis, local blob directory) and wire services."""
    engine = create_engine(config)
    session_factory = create_session_factory(engine)
    redis_client = redis.from_url(config.redis_url, decode_responses=False)

    services = assemble_services(
        session_factory,
        LocalBlobStore(config.blob_storage_dir),
        RedisCacheStore(redis_client),
        RedisRevocationStore(redis_client),
        config=config,
    )
    services.engine = engine
    services.redis_client = redis_client
    return services


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the services attached at startup."""
    return request.app.state.services
