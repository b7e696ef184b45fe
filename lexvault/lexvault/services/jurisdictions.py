"""Jurisdiction hierarchy: cached tree, lookups and reference validation."""

import logging
from collections.abc import Iterable, Sequence
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from lexvault.config import settings
from lexvault.errors import ErrorKind, ServiceError, not_found
from lexvault.models import LEVEL_RANK, Jurisdiction, JurisdictionLevel
from lexvault.schemas import (
    JurisdictionDetail,
    JurisdictionNode,
    JurisdictionRef,
    JurisdictionSummary,
    JurisdictionTree,
    dedupe,
)
from lexvault.services.guard import guarded
from lexvault.stores.cache import CacheStore

logger = logging.getLogger(__name__)

TREE_CACHE_KEY = "jurisdictions:tree"


def _integrity_error(message: str, **context) -> ServiceError:
    logger.error(f"Jurisdiction data integrity violation: {message}")
    return ServiceError(ErrorKind.DATA_INTEGRITY, message, **context)


def build_tree(rows: Iterable[Jurisdiction]) -> JurisdictionTree:
    """
    Assemble the arena tree from a flat list of rows.

    First pass indexes every node by ID, second pass links children to their
    parents. A node whose parent is missing, or whose parent is not exactly one
    tier above it, is a data bug and fails loudly rather than becoming a root.
    """
    ordered = sorted(rows, key=lambda j: (LEVEL_RANK[j.level], j.name))
    nodes = {
        j.id: JurisdictionNode(
            id=j.id,
            code=j.code,
            name=j.name,
            level=j.level,
            legal_system=j.legal_system,
            geo_code=j.geo_code,
            population=j.population,
            parent_id=j.parent_id,
        )
        for j in ordered
    }

    root_ids: list[UUID] = []
    for node in nodes.values():
        if node.parent_id is None:
            if node.level is not JurisdictionLevel.FEDERAL:
                raise _integrity_error(
                    f"{node.level.value} jurisdiction {node.code} has no parent",
                    jurisdiction_code=node.code,
                )
            root_ids.append(node.id)
            continue

        parent = nodes.get(node.parent_id)
        if parent is None:
            raise _integrity_error(
                f"Jurisdiction {node.code} references missing parent {node.parent_id}",
                jurisdiction_code=node.code,
                missing_parent_id=str(node.parent_id),
            )
        if LEVEL_RANK[parent.level] != LEVEL_RANK[node.level] - 1:
            raise _integrity_error(
                f"Jurisdiction {node.code} ({node.level.value}) can not sit under "
                f"{parent.code} ({parent.level.value})",
                jurisdiction_code=node.code,
                parent_code=parent.code,
            )
        parent.children_ids.append(node.id)

    if len(root_ids) > 1:
        raise _integrity_error(f"Expected one federal root, found {len(root_ids)}")

    return JurisdictionTree(nodes=list(nodes.values()), root_ids=root_ids)


class JurisdictionService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheStore | None = None,
        cache_ttl_seconds: int = settings.jurisdiction_cache_ttl_seconds,
        timeout_seconds: float = settings.storage_timeout_seconds,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.timeout_seconds = timeout_seconds

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    async def get_tree(self) -> JurisdictionTree:
        """Return the full hierarchy, served from cache when possible."""
        tree = await self._read_cache()
        if tree is not None:
            logger.debug("Jurisdiction tree served from cache")
            return tree

        tree = await self.rebuild_tree()
        await self._write_cache(tree)
        return tree

    async def rebuild_tree(self) -> JurisdictionTree:
        rows = await guarded("Load jurisdictions", self._load_all(), self.timeout_seconds)
        return build_tree(rows)

    async def invalidate(self) -> None:
        """Drop the cached tree. There is no partial invalidation."""
        if self.cache is None:
            return
        try:
            await self.cache.delete(TREE_CACHE_KEY)
            logger.info("Jurisdiction tree cache invalidated")
        except Exception as e:
            logger.warning(f"Failed to invalidate jurisdiction tree cache: {e}")

    async def _load_all(self) -> Sequence[Jurisdiction]:
        async with self.session_factory() as session:
            result = await session.execute(select(Jurisdiction))
            return result.scalars().all()

    async def _read_cache(self) -> JurisdictionTree | None:
        if self.cache is None:
            return None
        try:
            raw = await self.cache.get(TREE_CACHE_KEY)
        except Exception as e:
            logger.warning(f"Failed to read jurisdiction tree from cache: {e}")
            return None
        if raw is None:
            return None
        try:
            return JurisdictionTree.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed cached jurisdiction tree: {e}")
            return None

    async def _write_cache(self, tree: JurisdictionTree) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(
                TREE_CACHE_KEY, tree.model_dump_json().encode(), self.cache_ttl_seconds
            )
            logger.debug("Jurisdiction tree cached")
        except Exception as e:
            logger.warning(f"Failed to cache jurisdiction tree: {e}")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_by_id(self, jurisdiction_id: UUID) -> JurisdictionDetail:
        jurisdiction = await guarded(
            "Load jurisdiction", self._load_one(jurisdiction_id), self.timeout_seconds
        )
        if jurisdiction is None:
            raise not_found("Jurisdiction")

        parent = jurisdiction.parent
        return JurisdictionDetail(
            id=jurisdiction.id,
            code=jurisdiction.code,
            name=jurisdiction.name,
            level=jurisdiction.level,
            legal_system=jurisdiction.legal_system,
            geo_code=jurisdiction.geo_code,
            population=jurisdiction.population,
            parent=(
                JurisdictionRef(id=parent.id, code=parent.code, name=parent.name)
                if parent is not None
                else None
            ),
            children=[
                JurisdictionSummary(id=c.id, code=c.code, name=c.name, level=c.level)
                for c in sorted(jurisdiction.children, key=lambda c: c.name)
            ],
        )

    async def _load_one(self, jurisdiction_id: UUID) -> Jurisdiction | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Jurisdiction)
                .where(Jurisdiction.id == jurisdiction_id)
                .options(selectinload(Jurisdiction.parent), selectinload(Jurisdiction.children))
            )
            return result.scalar_one_or_none()

    async def resolve_many(self, ids: Iterable[UUID]) -> list[JurisdictionSummary]:
        """
        Validate that every ID exists.

        All-or-nothing: any unknown ID fails the whole batch, and the error
        names every missing ID so the caller can fix the request in one go.
        """
        unique_ids = dedupe(list(ids))
        if not unique_ids:
            return []

        rows = await guarded(
            "Resolve jurisdictions", self._load_many(unique_ids), self.timeout_seconds
        )
        found = {j.id: j for j in rows}
        missing = [jid for jid in unique_ids if jid not in found]
        if missing:
            raise ServiceError(
                ErrorKind.INVALID_JURISDICTION_REFERENCE,
                "The following jurisdiction IDs were not found: "
                + ", ".join(str(m) for m in missing),
                missing_ids=[str(m) for m in missing],
            )

        return [
            JurisdictionSummary(
                id=found[jid].id, code=found[jid].code, name=found[jid].name, level=found[jid].level
            )
            for jid in unique_ids
        ]

    async def _load_many(self, ids: list[UUID]) -> Sequence[Jurisdiction]:
        async with self.session_factory() as session:
            result = await session.execute(select(Jurisdiction).where(Jurisdiction.id.in_(ids)))
            return result.scalars().all()
