import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexvault.config import Settings, settings
from lexvault.models import Job, JobStatus, JobType, utcnow

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """Base class for job workers."""

    job_type: JobType

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.max_attempts = config.worker_max_attempts
        self.poll_interval_seconds = config.worker_poll_interval_seconds
        self.clock = clock
        self.running = False

    @abstractmethod
    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """Process a single job. Implement in subclass."""

    async def idle(self) -> None:
        """Called when the queue is empty, before sleeping."""

    async def claim_job(self, session: AsyncSession) -> Job | None:
        """
        Claim the next due job using SELECT FOR UPDATE SKIP LOCKED.
        Returns the claimed job or None if no jobs are due.
        """
        now = self.clock()
        result = await session.execute(
            select(Job)
            .where(
                Job.status == JobStatus.PENDING,
                Job.job_type == self.job_type,
                Job.attempts < self.max_attempts,
                Job.run_after <= now,
            )
            .order_by(Job.run_after)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            await session.rollback()
            return None

        job.status = JobStatus.IN_PROGRESS
        job.attempts += 1
        job.updated_at = now
        await session.commit()
        return job

    async def mark_succeeded(self, session: AsyncSession, job: Job) -> None:
        """Mark a job as succeeded."""
        job.status = JobStatus.SUCCEEDED
        job.last_error = None
        job.updated_at = self.clock()
        await session.commit()
        logger.info(f"Job {job.id} succeeded")

    async def mark_failed(self, session: AsyncSession, job: Job, error: str) -> None:
        """Return a job to the queue with backoff, or fail it once attempts run out."""
        now = self.clock()
        job.last_error = error
        job.updated_at = now
        if job.attempts < self.max_attempts:
            job.status = JobStatus.PENDING
            job.run_after = now + timedelta(seconds=self.poll_interval_seconds * 2**job.attempts)
            logger.warning(f"Job {job.id} failed (attempt {job.attempts}), will retry: {error}")
        else:
            job.status = JobStatus.FAILED
            logger.error(f"Job {job.id} failed: {error}")
        await session.commit()

    async def run_once(self) -> bool:
        """
        Try to claim and process a single job.
        Returns True if a job was processed, False otherwise.
        """
        async with self.session_factory() as session:
            job = await self.claim_job(session)

            if not job:
                return False

            job_id = job.id
            logger.info(f"Processing job {job_id} (type={job.job_type.value}, attempt={job.attempts})")

            try:
                await self.process_job(session, job)
                await self.mark_succeeded(session, job)
                return True
            except Exception as e:
                logger.exception(f"Error processing job {job_id}: {e}")
                await session.rollback()
                job = await session.get(Job, job_id)
                await self.mark_failed(session, job, str(e))
                return True  # We did process (attempt) a job

    async def run(self) -> None:
        """Run the worker loop continuously."""
        self.running = True
        logger.info(f"Starting {self.__class__.__name__} worker")

        while self.running:
            try:
                processed = await self.run_once()

                if not processed:
                    await self.idle()
                    await asyncio.sleep(self.poll_interval_seconds)
            except Exception as e:
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(self.poll_interval_seconds)

    def stop(self) -> None:
        """Stop the worker loop."""
        self.running = False
        logger.info(f"Stopping {self.__class__.__name__} worker")
