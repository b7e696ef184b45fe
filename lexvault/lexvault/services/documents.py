"""Document ingestion and lifecycle.

Lifecycle: uploading -> stored -> soft-deleted -> purged.

Blob bytes and relational metadata live in different stores, so an upload
writes the blob first and then the metadata in a single transaction. If the
metadata write fails the blob is deleted again. Deletion only marks the row;
the blob and row are removed by the purge worker once the retention window
has passed.
"""

import asyncio
import logging
import math
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, exists, func, or_, select, type_coerce, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from lexvault.config import Settings, settings
from lexvault.context import CallerContext
from lexvault.errors import ErrorKind, ServiceError, not_found
from lexvault.models import (
    FILE_KIND_MIME_TYPES,
    LEVEL_RANK,
    AuditAction,
    AuditOutcome,
    Document,
    DocumentJurisdiction,
    Job,
    JobStatus,
    JobType,
    Jurisdiction,
    utcnow,
)
from lexvault.schemas import (
    AuditChange,
    AuditEntry,
    DocumentListResponse,
    DocumentQuery,
    DocumentResponse,
    JurisdictionSummary,
    Pagination,
    UpdateRequest,
    UploadRequest,
)
from lexvault.services.audit import AuditService
from lexvault.services.files import (
    extract_text,
    generate_blob_key,
    sanitize_filename,
    validate_file_type,
)
from lexvault.services.guard import guarded
from lexvault.services.jurisdictions import JurisdictionService
from lexvault.stores.blob import BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "uploaded_at": Document.created_at,
    "title": Document.title,
    "file_size_bytes": Document.file_size_bytes,
    "updated_at": Document.updated_at,
}

UPDATABLE_FIELDS = ("title", "description", "tags")


@dataclass
class DocumentDownload:
    document_id: UUID
    filename: str
    content_type: str
    content_length: int
    chunks: AsyncIterator[bytes]


def _summaries(jurisdictions: Sequence[Jurisdiction | JurisdictionSummary]) -> list[JurisdictionSummary]:
    summaries = [
        JurisdictionSummary(id=j.id, code=j.code, name=j.name, level=j.level)
        for j in jurisdictions
    ]
    return sorted(summaries, key=lambda s: (LEVEL_RANK[s.level], s.name))


def _has_tag(dialect_name: str, tag: str):
    """Exact membership of ``tag`` in the document's tag array."""
    if dialect_name == "postgresql":
        return type_coerce(Document.tags, JSONB).contains([tag])
    elements = func.json_each(Document.tags).table_valued("value")
    return exists(select(1).select_from(elements).where(elements.c.value == tag))


def _to_response(
    document: Document, jurisdictions: Sequence[Jurisdiction | JurisdictionSummary] | None = None
) -> DocumentResponse:
    if jurisdictions is None:
        jurisdictions = [link.jurisdiction for link in document.jurisdiction_links]
    return DocumentResponse(
        id=document.id,
        owner_id=document.owner_id,
        title=document.title,
        description=document.description,
        tags=list(document.tags),
        file_kind=document.file_kind,
        file_size_bytes=document.file_size_bytes,
        original_filename=document.original_filename,
        jurisdictions=_summaries(jurisdictions),
        uploaded_at=document.created_at,
        updated_at=document.updated_at,
    )


class DocumentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        jurisdictions: JurisdictionService,
        audit: AuditService,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.jurisdictions = jurisdictions
        self.audit = audit
        self.clock = clock
        self.max_file_size_bytes = config.max_file_size_bytes
        self.max_jurisdictions = config.max_jurisdictions_per_document
        self.retention = timedelta(days=config.soft_delete_retention_days)
        self.timeout_seconds = config.storage_timeout_seconds
        self.purge_batch_size = config.purge_batch_size

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self, ctx: CallerContext, data: bytes, filename: str, request: UploadRequest
    ) -> DocumentResponse:
        """
        Validate, store and register a new document.

        Raises:
            ServiceError: FILE_TOO_LARGE, UNSUPPORTED_TYPE,
                INVALID_JURISDICTION_REFERENCE or STORAGE_UNAVAILABLE.
        """
        owner_id = ctx.require_user()

        if len(data) > self.max_file_size_bytes:
            raise ServiceError(
                ErrorKind.FILE_TOO_LARGE,
                f"File exceeds the maximum size of {self.max_file_size_bytes // (1024 * 1024)} MB",
                max_bytes=self.max_file_size_bytes,
                size_bytes=len(data),
            )
        if len(request.jurisdiction_ids) > self.max_jurisdictions:
            raise ServiceError(
                ErrorKind.VALIDATION,
                f"Maximum {self.max_jurisdictions} jurisdictions allowed",
            )

        original_filename = sanitize_filename(filename)
        file_kind, mime_type = validate_file_type(data, filename)
        jurisdictions = await self.jurisdictions.resolve_many(request.jurisdiction_ids)

        blob_key = generate_blob_key(owner_id, file_kind)
        await guarded(
            "Store blob", self.blob_store.put(blob_key, data, mime_type), self.timeout_seconds
        )

        persisted = False
        try:
            content_text = await asyncio.to_thread(extract_text, data, file_kind)

            now = self.clock()
            document = Document(
                id=uuid4(),
                owner_id=owner_id,
                title=request.title,
                description=request.description,
                tags=request.tags,
                file_kind=file_kind,
                file_size_bytes=len(data),
                original_filename=original_filename,
                content_text=content_text,
                blob_key=blob_key,
                created_at=now,
                updated_at=now,
            )
            await guarded(
                "Persist document",
                self._persist_document(document, [j.id for j in jurisdictions]),
                self.timeout_seconds,
            )
            persisted = True
        finally:
            # Also runs on cancellation, which is not an Exception.
            if not persisted:
                await asyncio.shield(self._discard_blob(blob_key))

        logger.info(
            f"Document {document.id} uploaded by {owner_id}: "
            f"{file_kind.value}, {len(data)} bytes, {len(jurisdictions)} jurisdictions"
        )
        await self._audit(
            ctx,
            AuditAction.DOCUMENT_UPLOAD,
            document.id,
            changes=[
                AuditChange(field="title", after=document.title),
                AuditChange(field="file_kind", after=file_kind.value),
                AuditChange(field="file_size_bytes", after=len(data)),
                AuditChange(field="jurisdiction_ids", after=[str(j.id) for j in jurisdictions]),
            ],
        )
        return _to_response(document, jurisdictions)

    async def _persist_document(self, document: Document, jurisdiction_ids: list[UUID]) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                document.jurisdiction_links = [
                    DocumentJurisdiction(jurisdiction_id=jid) for jid in jurisdiction_ids
                ]
                session.add(document)

    async def _discard_blob(self, blob_key: str) -> None:
        try:
            await asyncio.wait_for(self.blob_store.delete(blob_key), self.timeout_seconds)
            logger.info(f"Removed blob {blob_key} after failed metadata write")
        except Exception as e:
            logger.error(f"Failed to remove orphaned blob {blob_key}: {e!r}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, ctx: CallerContext, document_id: UUID) -> DocumentResponse:
        owner_id = ctx.require_user()
        document = await guarded(
            "Load document", self._load_owned(owner_id, document_id), self.timeout_seconds
        )
        if document is None:
            raise not_found("Document")
        return _to_response(document)

    async def _load_owned(self, owner_id: UUID, document_id: UUID) -> Document | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Document)
                .where(
                    Document.id == document_id,
                    Document.owner_id == owner_id,
                    Document.deleted_at.is_(None),
                )
                .options(
                    selectinload(Document.jurisdiction_links).selectinload(
                        DocumentJurisdiction.jurisdiction
                    )
                )
            )
            return result.scalar_one_or_none()

    async def list_documents(
        self, ctx: CallerContext, query: DocumentQuery
    ) -> DocumentListResponse:
        """List the caller's live documents with filtering, sorting and pagination."""
        owner_id = ctx.require_user()
        documents, total = await guarded(
            "List documents", self._query(owner_id, query), self.timeout_seconds
        )
        return DocumentListResponse(
            items=[_to_response(d) for d in documents],
            pagination=Pagination(
                page=query.page,
                page_size=query.page_size,
                total=total,
                total_pages=math.ceil(total / query.page_size),
            ),
        )

    def _conditions(
        self, owner_id: UUID, query: DocumentQuery, dialect_name: str
    ) -> list[Any]:
        conditions: list[Any] = [Document.owner_id == owner_id, Document.deleted_at.is_(None)]

        if query.search:
            term = query.search.strip()
            conditions.append(
                or_(
                    Document.title.icontains(term, autoescape=True),
                    Document.description.icontains(term, autoescape=True),
                    _has_tag(dialect_name, term),
                )
            )
        if query.file_kind is not None:
            conditions.append(Document.file_kind == query.file_kind)
        if query.jurisdiction_id is not None:
            conditions.append(
                Document.id.in_(
                    select(DocumentJurisdiction.document_id).where(
                        DocumentJurisdiction.jurisdiction_id == query.jurisdiction_id
                    )
                )
            )
        if query.jurisdiction_level is not None:
            conditions.append(
                Document.id.in_(
                    select(DocumentJurisdiction.document_id)
                    .join(Jurisdiction, Jurisdiction.id == DocumentJurisdiction.jurisdiction_id)
                    .where(Jurisdiction.level == query.jurisdiction_level)
                )
            )
        if query.date_from is not None:
            conditions.append(Document.created_at >= query.date_from)
        if query.date_to is not None:
            conditions.append(Document.created_at <= query.date_to)
        return conditions

    async def _query(
        self, owner_id: UUID, query: DocumentQuery
    ) -> tuple[Sequence[Document], int]:
        column = SORT_COLUMNS[query.sort_by]
        ordering = column.asc() if query.sort_order == "asc" else column.desc()

        async with self.session_factory() as session:
            conditions = self._conditions(owner_id, query, session.bind.dialect.name)
            total = await session.scalar(
                select(func.count()).select_from(Document).where(*conditions)
            )
            result = await session.execute(
                select(Document)
                .where(*conditions)
                .order_by(ordering, Document.id)
                .offset((query.page - 1) * query.page_size)
                .limit(query.page_size)
                .options(
                    selectinload(Document.jurisdiction_links).selectinload(
                        DocumentJurisdiction.jurisdiction
                    )
                )
            )
            return result.scalars().all(), total or 0

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(
        self, ctx: CallerContext, document_id: UUID, request: UpdateRequest
    ) -> DocumentResponse:
        """
        Apply a metadata edit.

        Only changed fields are written, so concurrent edits to different
        fields both survive and edits to the same field are last-writer-wins.
        A request that changes nothing writes nothing and is not audited.
        """
        owner_id = ctx.require_user()
        document = await guarded(
            "Load document", self._load_owned(owner_id, document_id), self.timeout_seconds
        )
        if document is None:
            raise not_found("Document")

        values: dict[str, Any] = {}
        changes: list[AuditChange] = []
        for field in UPDATABLE_FIELDS:
            new_value = getattr(request, field)
            if new_value is None:
                continue
            old_value = getattr(document, field)
            if new_value != old_value:
                values[field] = new_value
                changes.append(AuditChange(field=field, before=old_value, after=new_value))

        if not values:
            logger.debug(f"Update of document {document_id} changed nothing")
            return _to_response(document)

        values["updated_at"] = self.clock()
        updated = await guarded(
            "Update document",
            self._apply_update(owner_id, document_id, values),
            self.timeout_seconds,
        )
        if not updated:
            # Deleted between the read and the write.
            raise not_found("Document")

        for field, value in values.items():
            setattr(document, field, value)

        logger.info(f"Document {document_id} updated: {', '.join(c.field for c in changes)}")
        await self._audit(ctx, AuditAction.DOCUMENT_UPDATE, document_id, changes=changes)
        return _to_response(document)

    async def _apply_update(self, owner_id: UUID, document_id: UUID, values: dict[str, Any]) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Document)
                    .where(
                        Document.id == document_id,
                        Document.owner_id == owner_id,
                        Document.deleted_at.is_(None),
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount > 0

    # ------------------------------------------------------------------
    # Soft delete
    # ------------------------------------------------------------------

    async def delete(self, ctx: CallerContext, document_id: UUID) -> None:
        """Mark a document deleted and schedule its purge."""
        owner_id = ctx.require_user()
        now = self.clock()
        deleted = await guarded(
            "Delete document",
            self._soft_delete(owner_id, document_id, now),
            self.timeout_seconds,
        )
        if not deleted:
            raise not_found("Document")

        logger.info(f"Document {document_id} soft-deleted, purge after {now + self.retention}")
        await self._audit(
            ctx,
            AuditAction.DOCUMENT_DELETE,
            document_id,
            changes=[AuditChange(field="deleted_at", before=None, after=now.isoformat())],
        )

    async def _soft_delete(self, owner_id: UUID, document_id: UUID, now: datetime) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Document)
                    .where(
                        Document.id == document_id,
                        Document.owner_id == owner_id,
                        Document.deleted_at.is_(None),
                    )
                    .values(deleted_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return False
                session.add(
                    Job(
                        id=uuid4(),
                        job_type=JobType.PURGE_DOCUMENT,
                        document_id=document_id,
                        status=JobStatus.PENDING,
                        attempts=0,
                        run_after=now + self.retention,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return True

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download(self, ctx: CallerContext, document_id: UUID) -> DocumentDownload:
        """
        Open a document's bytes for streaming.

        The audit record covers authorization and the start of the transfer,
        not its completion.
        """
        owner_id = ctx.require_user()
        try:
            document = await guarded(
                "Load document", self._load_owned(owner_id, document_id), self.timeout_seconds
            )
            if document is None:
                raise not_found("Document")
            try:
                stream = await guarded(
                    "Open blob", self.blob_store.get(document.blob_key), self.timeout_seconds
                )
            except BlobNotFoundError as e:
                logger.error(f"Blob {document.blob_key} missing for live document {document_id}")
                raise not_found("Document") from e
        except ServiceError as e:
            reason = "not_found" if e.kind is ErrorKind.NOT_FOUND else "storage_unavailable"
            await self._audit(
                ctx,
                AuditAction.DOCUMENT_DOWNLOAD,
                document_id,
                outcome=AuditOutcome.FAILURE,
                failure_reason=reason,
            )
            raise

        await self._audit(ctx, AuditAction.DOCUMENT_DOWNLOAD, document_id)
        return DocumentDownload(
            document_id=document.id,
            filename=document.original_filename,
            content_type=FILE_KIND_MIME_TYPES[document.file_kind],
            content_length=stream.content_length,
            chunks=stream.chunks,
        )

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def purge_document(self, document_id: UUID, now: datetime | None = None) -> bool:
        """
        Permanently remove a soft-deleted document whose retention has expired.

        Returns True if the document was purged. Documents that are live again,
        not yet expired, or already gone are left alone.
        """
        cutoff = (now or self.clock()) - self.retention
        purged = await guarded(
            "Purge document", self._purge(document_id, cutoff), self.timeout_seconds
        )
        if purged is None:
            logger.debug(f"Document {document_id} not eligible for purge")
            return False

        logger.info(f"Purged document {document_id} (blob {purged.blob_key})")
        await self.audit.record(
            AuditEntry(
                action=AuditAction.DOCUMENT_PURGE,
                resource_type="document",
                resource_id=str(document_id),
                request_id=f"purge-{document_id}",
            )
        )
        return True

    async def _purge(self, document_id: UUID, cutoff: datetime) -> Document | None:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Document)
                    .where(
                        Document.id == document_id,
                        Document.deleted_at.is_not(None),
                        Document.deleted_at <= cutoff,
                    )
                    .with_for_update()
                )
                document = result.scalar_one_or_none()
                if document is None:
                    return None

                # Blob first: a failure here rolls back and leaves the row for retry.
                await self.blob_store.delete(document.blob_key)
                await session.execute(
                    delete(DocumentJurisdiction).where(
                        DocumentJurisdiction.document_id == document_id
                    )
                )
                await session.execute(
                    delete(Document)
                    .where(Document.id == document_id)
                    .execution_options(synchronize_session=False)
                )
                return document

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Sweep for expired soft-deleted documents and purge them. Returns the count."""
        now = now or self.clock()
        expired_ids = await guarded(
            "Find expired documents", self._expired_ids(now - self.retention), self.timeout_seconds
        )
        purged = 0
        for document_id in expired_ids:
            try:
                if await self.purge_document(document_id, now):
                    purged += 1
            except ServiceError as e:
                logger.warning(f"Purge of document {document_id} failed, will retry: {e.message}")
        if purged:
            logger.info(f"Purge sweep removed {purged} documents")
        return purged

    async def _expired_ids(self, cutoff: datetime) -> Sequence[UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Document.id)
                .where(Document.deleted_at.is_not(None), Document.deleted_at <= cutoff)
                .order_by(Document.deleted_at)
                .limit(self.purge_batch_size)
            )
            return result.scalars().all()

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def _audit(
        self,
        ctx: CallerContext,
        action: AuditAction,
        document_id: UUID,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        changes: list[AuditChange] | None = None,
        failure_reason: str | None = None,
    ) -> None:
        await self.audit.record(
            AuditEntry(
                action=action,
                resource_type="document",
                resource_id=str(document_id),
                request_id=ctx.request_id,
                client_ip=ctx.client_ip,
                actor_user_id=ctx.user_id,
                outcome=outcome,
                changes=changes,
                failure_reason=failure_reason,
            )
        )
