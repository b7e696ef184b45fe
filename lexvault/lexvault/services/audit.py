"""Append-only audit trail.

Audit is a secondary guarantee: ``record`` never raises, so a broken audit
sink can not fail the operation being audited.
"""

import hashlib
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from ulid import ULID

from lexvault.models import AuditLog
from lexvault.schemas import AuditEntry

logger = logging.getLogger(__name__)


def hash_ip(ip: str) -> str:
    """SHA-256 of the client IP, so raw addresses are never stored."""
    return hashlib.sha256(ip.encode()).hexdigest()


class AuditService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, entry: AuditEntry) -> str | None:
        """
        Persist one audit record in its own transaction.

        Returns the record ID, or None if the write failed.
        """
        record = AuditLog(
            id=str(ULID()),
            actor_user_id=entry.actor_user_id,
            actor_ip_hash=hash_ip(entry.client_ip),
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            changes=(
                [change.model_dump(mode="json") for change in entry.changes]
                if entry.changes is not None
                else None
            ),
            request_id=entry.request_id,
            outcome=entry.outcome,
            failure_reason=entry.failure_reason,
        )
        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.commit()
        except Exception as e:
            logger.error(
                f"Failed to write audit record action={entry.action.value} "
                f"resource={entry.resource_type}:{entry.resource_id}: {e}"
            )
            return None

        logger.debug(
            f"Audit {entry.action.value} {entry.outcome.value} "
            f"resource={entry.resource_type}:{entry.resource_id}"
        )
        return record.id
