from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from search_orchestrator.config import Settings
from search_orchestrator.errors import JobTimeoutError
from search_orchestrator.jobs.search_job_service import SearchJobService
from search_orchestrator.models import SearchJob

logger = logging.getLogger(__name__)


class JobProcessor:
    """Background poller that runs pending search jobs one at a time."""

    def __init__(self, settings: Settings, service: SearchJobService) -> None:
        self.settings = settings
        self.service = service
        self.poll_interval = settings.job_poll_interval_seconds
        self.stale_after = timedelta(minutes=settings.stuck_job_minutes)
        self.job_timeout = settings.job_timeout_seconds
        self._processing_jobs: set[str] = set()
        self._busy = False
        self._task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[SearchJob | None]] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def processing_jobs(self) -> list[str]:
        return sorted(self._processing_jobs)

    @property
    def pending_submissions(self) -> int:
        return len(self._background)

    def start(self) -> None:
        if self.is_running:
            logger.info('Job processor already running')
            return
        logger.info('Starting job processor with interval %.1fs', self.poll_interval)
        self._task = asyncio.create_task(self._poll_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info('Stopped job processor')

    async def _poll_forever(self) -> None:
        while True:
            await self.process_next_job()
            await asyncio.sleep(self.poll_interval)

    async def process_next_job(self) -> SearchJob | None:
        if self._busy:
            logger.debug('Previous poll cycle still running, skipping')
            return None

        self._busy = True
        try:
            await self.recover_stuck_jobs()

            pending = await self.service.get_pending_jobs(1)
            if not pending:
                logger.debug('No pending jobs found')
                return None

            job = pending[0]
            if job.job_id in self._processing_jobs:
                logger.info('Job %s already being processed, skipping', job.job_id)
                return None

            try:
                return await self._run(job.job_id)
            except Exception as exc:
                # retry bookkeeping already happened inside the job service
                logger.error('Failed to process job %s: %s', job.job_id, exc)
                return None
        except Exception:
            logger.exception('Error in job poll cycle')
            return None
        finally:
            self._busy = False

    async def recover_stuck_jobs(self) -> list[str]:
        recovered = []
        try:
            stuck = await self.service.get_stuck_jobs(self.stale_after)
            for job in stuck:
                if job.job_id in self._processing_jobs:
                    continue
                logger.warning('Recovering stuck job %s (processing since %s)', job.job_id, job.started_at)
                if await self.service.reset_job_to_pending(job.job_id) is not None:
                    recovered.append(job.job_id)
        except Exception:
            logger.exception('Error recovering stuck jobs')
        return recovered

    async def process_job_immediately(self, job_id: str) -> SearchJob | None:
        """Run one job now, bypassing the poll interval. Errors propagate to the caller."""
        if job_id in self._processing_jobs:
            logger.info('Job %s already being processed', job_id)
            return None
        logger.info('Immediately processing job %s', job_id)
        return await self._run(job_id)

    def submit(self, job_id: str) -> asyncio.Task[SearchJob | None]:
        task = asyncio.create_task(self.process_job_immediately(job_id))
        self._background.add(task)
        task.add_done_callback(self._finish_background)
        return task

    def _finish_background(self, task: asyncio.Task[SearchJob | None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning('Immediate job execution failed: %s', exc)

    async def _run(self, job_id: str) -> SearchJob | None:
        self._processing_jobs.add(job_id)
        try:
            try:
                job = await asyncio.wait_for(self.service.execute_job(job_id), timeout=self.job_timeout)
            except asyncio.TimeoutError:
                error = JobTimeoutError(f'Job execution timeout after {self.job_timeout:.0f}s')
                await self.service.record_failure(job_id, error)
                raise error from None
            logger.info('Finished job %s', job_id)
            return job
        finally:
            self._processing_jobs.discard(job_id)
