"""Job submission, resume, cancellation and housekeeping."""
from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime, timedelta
from typing import Optional, Set

from .config import HarvesterSettings
from .errors import ResumeError
from .models import RESUMABLE_STATUSES, Job, JobStatus
from .processor import JobProcessor
from .store import JobStore
from .urls import category_from_url, validate_seed_url

LOGGER = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset({JobStatus.PROCESSING, JobStatus.PAUSED})
CANCEL_MESSAGE = "cancelled by user"


class HarvestService:
    """Front door for harvest jobs.

    ``submit`` and ``resume`` return as soon as the job record is written;
    processing runs as a detached asyncio task and its errors are logged,
    never raised to the caller. Call ``wait()`` to drain running jobs.
    """

    def __init__(
        self,
        store: JobStore,
        settings: Optional[HarvesterSettings] = None,
        *,
        processor: Optional[JobProcessor] = None,
    ) -> None:
        self.store = store
        self.settings = settings or HarvesterSettings()
        self.processor = processor or JobProcessor(store, self.settings)
        self._tasks: Set[asyncio.Task] = set()

    async def submit(
        self,
        url: str,
        *,
        discover_only: bool = False,
        deliver: bool = False,
        category: Optional[str] = None,
    ) -> Job:
        """Validate ``url``, create a pending job and start it.

        Raises
        ------
        ValidationError
            ``url`` is not an absolute http(s) URL; no job is created
        """
        seed = validate_seed_url(url)
        job = self.store.create_job(
            Job(
                source_url=seed,
                discover_only=discover_only,
                deliver=deliver,
                category_label=category or category_from_url(seed),
            )
        )
        LOGGER.info("Submitted job %s for %s", job.id, seed)
        self._start(job.id, resume=False)
        return job

    async def resume(self, job_id: str) -> Job:
        """Restart a paused or failed job that has progress to resume from.

        The job is claimed (moved to ``processing``) before this returns, so a
        second call for the same job raises ``ResumeError`` instead of starting
        another run. A job left in ``processing`` by a crashed process must be
        cancelled before it can be resumed.

        Raises
        ------
        JobNotFoundError
            Unknown job id
        ResumeError
            Job is not resumable
        """
        job = self.store.get_job(job_id)
        if not job.can_resume:
            raise ResumeError(f"Job {job_id} cannot be resumed")
        if job.status not in RESUMABLE_STATUSES:
            raise ResumeError(f"Job {job_id} is {job.status.value} and cannot be resumed")
        job = self.store.update_job(job_id, status=JobStatus.PROCESSING)
        LOGGER.info("Resuming job %s from %d processed product(s)", job_id, job.processed_products)
        self._start(job_id, resume=True)
        return job

    def cancel(self, job_id: str) -> Job:
        """Mark a processing or paused job as failed.

        A running loop notices at its next checkpoint.
        """
        job = self.store.get_job(job_id)
        if job.status not in CANCELLABLE_STATUSES:
            raise ResumeError(f"Job {job_id} is {job.status.value} and cannot be cancelled")
        job = self.store.update_job(
            job_id,
            status=JobStatus.FAILED,
            error_message=CANCEL_MESSAGE,
            completed_at=datetime.utcnow(),
        )
        LOGGER.info("Job %s cancelled", job_id)
        return job

    def status(self, job_id: str) -> Job:
        return self.store.get_job(job_id)

    def latest(self) -> Optional[Job]:
        return self.store.latest_job()

    def cleanup(self, older_than: timedelta = timedelta(hours=1)) -> int:
        """Delete working directories of completed/failed jobs finished before the cutoff.

        Returns
        -------
        int
            Number of directories removed
        """
        cutoff = datetime.utcnow() - older_than
        jobs = self.store.list_jobs(
            statuses=[JobStatus.COMPLETED, JobStatus.FAILED], completed_before=cutoff
        )
        removed = 0
        for job in jobs:
            job_dir = self.processor.job_dir(job.id)
            if job_dir.exists():
                shutil.rmtree(job_dir, ignore_errors=True)
                LOGGER.info("Removed working directory for job %s", job.id)
                removed += 1
        LOGGER.info("Cleanup removed %d of %d old job director(ies)", removed, len(jobs))
        return removed

    async def wait(self) -> None:
        """Wait for every detached job task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _start(self, job_id: str, *, resume: bool) -> asyncio.Task:
        task = asyncio.create_task(self._run(job_id, resume), name=f"harvest-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job_id: str, resume: bool) -> None:
        try:
            job = await self.processor.run(job_id, resume=resume)
        except Exception as exc:
            LOGGER.error("Job %s crashed: %s", job_id, exc, exc_info=True)
            return
        LOGGER.info("Job %s finished as %s", job_id, job.status.value)
