import logging

from sqlalchemy.ext.asyncio import AsyncSession

from lexvault.models import Job, JobType
from lexvault.services.documents import DocumentService
from lexvault.workers.base import BaseWorker

logger = logging.getLogger(__name__)


class PurgeWorker(BaseWorker):
    """Worker that hard-deletes soft-deleted documents once retention expires."""

    job_type = JobType.PURGE_DOCUMENT

    def __init__(self, documents: DocumentService, **kwargs):
        super().__init__(documents.session_factory, **kwargs)
        self.documents = documents

    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """
        Process a PURGE_DOCUMENT job.

        A document that is already gone or no longer eligible counts as done.
        Storage failures propagate so the job is retried.
        """
        purged = await self.documents.purge_document(job.document_id, now=self.clock())
        if not purged:
            logger.info(f"Document {job.document_id} needed no purge")

    async def idle(self) -> None:
        # Catch-all sweep for documents whose job was lost or exhausted.
        await self.documents.purge_expired(now=self.clock())
