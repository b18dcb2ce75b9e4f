from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from search_orchestrator.errors import InvalidJobStateError, JobNotFoundError
from search_orchestrator.jobs.store import CANCELLED_ERROR, JobStore
from search_orchestrator.models import (
    TERMINAL_STATUSES,
    Company,
    CompanyContactsResult,
    ContactSearchConfig,
    CreateJobParams,
    JobProgress,
    JobSource,
    JobStatus,
    SearchJob,
    SearchType,
)
from search_orchestrator.services.billing import billing_actions_for
from search_orchestrator.services.contact_service import ContactEnrichmentService
from search_orchestrator.services.progress import JobProgressSink, ProgressBroadcaster
from search_orchestrator.services.providers import BillingClient, CompanyFinder
from search_orchestrator.services.strategies import validate_search_config
from search_orchestrator.utils.clock import utcnow

logger = logging.getLogger(__name__)

STANDARD_STEPS = 5
CONTACT_ONLY_STEPS = 3


class SearchJobService:
    """Owns the search job state machine."""

    def __init__(
        self,
        store: JobStore,
        company_finder: CompanyFinder,
        contact_service: ContactEnrichmentService,
        billing: BillingClient,
        default_max_retries: int = 3,
        job_retention_days: int = 7,
        broadcaster: ProgressBroadcaster | None = None,
    ) -> None:
        self.store = store
        self.company_finder = company_finder
        self.contact_service = contact_service
        self.billing = billing
        self.default_max_retries = default_max_retries
        self.job_retention_days = job_retention_days
        self.broadcaster = broadcaster

    async def create_job(self, params: CreateJobParams) -> str:
        if params.contact_search_config is not None and params.search_type != SearchType.COMPANIES:
            validate_search_config(params.contact_search_config)

        max_retries = self.default_max_retries if params.max_retries is None else params.max_retries
        job = await self.store.create_job(params, max_retries=max_retries)
        logger.info('Created job %s for user %s (%s)', job.job_id, job.user_id, job.search_type.value)
        return job.job_id

    async def execute_job(self, job_id: str) -> SearchJob | None:
        """Run a pending job to completion."""
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        claimed = await self.store.transition_job(
            job_id,
            JobStatus.PENDING,
            status=JobStatus.PROCESSING,
            started_at=utcnow(),
            error=None,
            progress=JobProgress(phase='Starting search', completed=0, total=STANDARD_STEPS, message='Initializing search process'),
        )
        if claimed is None:
            logger.info('Job %s already %s, skipping', job_id, job.status.value)
            return None

        logger.info('Starting execution of job %s (attempt %d)', job_id, claimed.retry_count + 1)
        try:
            if claimed.search_type == SearchType.CONTACT_ONLY:
                return await self._execute_contact_only(claimed)
            return await self._execute_standard(claimed)
        except Exception as exc:
            logger.error('Error executing job %s: %s', job_id, exc)
            await self.record_failure(job_id, exc)
            raise

    async def _execute_standard(self, job: SearchJob) -> SearchJob:
        await self._update_progress(job.job_id, 'Finding companies', 1, STANDARD_STEPS, 'Searching for matching companies')
        companies = await self.company_finder.find_companies(job.query)
        logger.info('Found %d companies for job %s', len(companies), job.job_id)

        await self._update_progress(job.job_id, 'Saving companies', 2, STANDARD_STEPS, f'Processing {len(companies)} companies')
        saved_companies = []
        for company in companies:
            saved = await self.store.create_company(
                company.model_copy(update={'id': None, 'user_id': job.user_id, 'list_id': job.metadata.get('list_id')})
            )
            saved_companies.append(saved)

        contact_results: list[CompanyContactsResult] = []
        if job.search_type in (SearchType.CONTACTS, SearchType.EMAILS) and saved_companies:
            await self._update_progress(job.job_id, 'Finding contacts', 3, STANDARD_STEPS, 'Discovering key decision makers')
            contact_results = await self.contact_service.search_contacts(
                saved_companies,
                job.user_id,
                self._contact_config(job),
                job_id=job.job_id,
                progress=JobProgressSink(self.store, job.job_id, 'Finding contacts', 3, STANDARD_STEPS, self.broadcaster),
                resolve_emails=job.search_type == SearchType.EMAILS,
            )

        if saved_companies:
            await self._update_progress(job.job_id, 'Processing credits', 4, STANDARD_STEPS, 'Updating account credits')
            await self._charge(job)

        results = _build_results(saved_companies, contact_results)
        return await self._complete(job, results, 'Search completed successfully', STANDARD_STEPS)

    async def _execute_contact_only(self, job: SearchJob) -> SearchJob:
        company_ids = job.metadata.get('company_ids') or []
        if company_ids:
            companies = []
            for company_id in company_ids:
                company = await self.store.get_company(company_id, job.user_id)
                if company is not None:
                    companies.append(company)
        else:
            companies = await self.store.list_companies(job.user_id)

        logger.info('Contact-only job %s covers %d companies', job.job_id, len(companies))
        await self._update_progress(
            job.job_id, 'Finding contacts', 1, CONTACT_ONLY_STEPS, f'Searching contacts for {len(companies)} companies'
        )

        contact_results: list[CompanyContactsResult] = []
        if companies:
            contact_results = await self.contact_service.search_contacts(
                companies,
                job.user_id,
                self._contact_config(job),
                job_id=job.job_id,
                progress=JobProgressSink(self.store, job.job_id, 'Finding contacts', 1, CONTACT_ONLY_STEPS, self.broadcaster),
            )
            await self._update_progress(job.job_id, 'Processing credits', 2, CONTACT_ONLY_STEPS, 'Updating account credits')
            await self._charge(job)

        results = _build_results(companies, contact_results)
        results['search_type'] = SearchType.CONTACT_ONLY.value
        return await self._complete(job, results, f'Found {results["total_contacts"]} contacts', CONTACT_ONLY_STEPS)

    async def _complete(self, job: SearchJob, results: dict[str, Any], message: str, steps: int) -> SearchJob:
        completed = await self.store.transition_job(
            job.job_id,
            JobStatus.PROCESSING,
            status=JobStatus.COMPLETED,
            completed_at=utcnow(),
            results=results,
            result_count=len(results['companies']),
            progress=JobProgress(phase='Completed', completed=steps, total=steps, message=message),
        )
        if completed is None:
            # another worker reclaimed the job after a stuck-job reset
            logger.warning('Job %s left processing before it could be completed', job.job_id)
            return await self.store.get_job(job.job_id)

        logger.info(
            'Completed job %s with %d companies and %d contacts',
            job.job_id,
            results['total_companies'],
            results['total_contacts'],
        )
        self._publish(job.job_id, 'completed', {'result_count': completed.result_count})
        return completed

    async def record_failure(self, job_id: str, exc: BaseException) -> SearchJob | None:
        """Move a processing job to pending (retries left) or failed."""
        job = await self.store.get_job(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return job

        message = str(exc) or exc.__class__.__name__
        should_retry = job.retry_count < job.max_retries
        if should_retry:
            changes: dict[str, Any] = {'status': JobStatus.PENDING, 'retry_count': job.retry_count + 1}
        else:
            changes = {'status': JobStatus.FAILED, 'completed_at': utcnow()}

        updated = await self.store.transition_job(
            job_id,
            JobStatus.PROCESSING,
            error=message,
            progress=JobProgress(phase='Error', completed=0, total=1, message=message),
            **changes,
        )
        if updated is None:
            return await self.store.get_job(job_id)

        if should_retry:
            logger.info('Job %s will be retried (attempt %d/%d)', job_id, updated.retry_count, updated.max_retries)
            self._publish(job_id, 'retrying', {'retry_count': updated.retry_count, 'error': message})
        else:
            logger.warning('Job %s failed permanently: %s', job_id, message)
            self._publish(job_id, 'failed', {'error': message})
        return updated

    async def _charge(self, job: SearchJob) -> None:
        if job.source == JobSource.CRON:
            logger.info('Skipping billing for system job %s', job.job_id)
            return

        for action in billing_actions_for(job.search_type):
            try:
                result = await self.billing.deduct(job.user_id, action)
            except Exception:
                logger.exception('Billing %s failed for job %s', action, job.job_id)
                continue
            if not result.success:
                logger.warning('Billing %s rejected for job %s: %s', action, job.job_id, result.error)

    def _contact_config(self, job: SearchJob) -> ContactSearchConfig:
        return job.contact_search_config or self.contact_service.get_default_config()

    async def _update_progress(self, job_id: str, phase: str, completed: int, total: int, message: str) -> None:
        progress = JobProgress(phase=phase, completed=completed, total=total, message=message)
        await self.store.update_job(job_id, progress=progress)
        self._publish(job_id, 'progress', progress.model_dump())

    def _publish(self, job_id: str, event: str, data: dict[str, Any]) -> None:
        if self.broadcaster is not None:
            self.broadcaster.publish(job_id, event, data)

    async def get_job(self, job_id: str, user_id: int) -> SearchJob | None:
        job = await self.store.get_job(job_id)
        if job is not None and job.user_id != user_id:
            logger.warning('User %s tried to access job %s owned by user %s', user_id, job_id, job.user_id)
            return None
        return job

    async def list_jobs(self, user_id: int, limit: int = 10) -> list[SearchJob]:
        return await self.store.list_jobs(user_id, limit)

    async def get_pending_jobs(self, limit: int = 1) -> list[SearchJob]:
        return await self.store.get_pending_jobs(limit)

    async def get_stuck_jobs(self, stale_after: timedelta) -> list[SearchJob]:
        return await self.store.get_stuck_jobs(utcnow() - stale_after)

    async def reset_job_to_pending(self, job_id: str) -> SearchJob | None:
        reset = await self.store.transition_job(
            job_id,
            JobStatus.PROCESSING,
            status=JobStatus.PENDING,
            started_at=None,
            progress=JobProgress(phase='Recovering', completed=0, total=1, message='Job reset after stalling'),
        )
        if reset is not None:
            self._publish(job_id, 'retrying', {'retry_count': reset.retry_count, 'error': None})
        return reset

    async def cancel_job(self, job_id: str) -> SearchJob:
        job = await self._require(job_id)
        cancelled = await self.store.transition_job(
            job_id, JobStatus.PENDING, status=JobStatus.FAILED, error=CANCELLED_ERROR, completed_at=utcnow()
        )
        if cancelled is None:
            raise InvalidJobStateError(f'Cannot cancel job with status: {job.status.value}')
        logger.info('Cancelled job %s', job_id)
        self._publish(job_id, 'failed', {'error': CANCELLED_ERROR})
        return cancelled

    async def retry_job(self, job_id: str) -> SearchJob:
        job = await self._require(job_id)
        if job.status != JobStatus.FAILED:
            raise InvalidJobStateError(f'Only failed jobs can be retried (status: {job.status.value})')
        if job.retry_count >= job.max_retries:
            raise InvalidJobStateError(f'Job {job_id} has used all {job.max_retries} retries')

        attempt = job.retry_count + 1
        retried = await self.store.transition_job(
            job_id,
            JobStatus.FAILED,
            status=JobStatus.PENDING,
            retry_count=attempt,
            error=None,
            completed_at=None,
            progress=JobProgress(phase='Retrying', completed=0, total=1, message=f'Retrying attempt {attempt}'),
        )
        if retried is None:
            raise InvalidJobStateError(f'Job {job_id} changed state before it could be retried')
        logger.info('Job %s marked for retry (attempt %d)', job_id, attempt)
        return retried

    async def get_failed_jobs_for_retry(self) -> list[SearchJob]:
        return await self.store.get_failed_jobs_for_retry()

    async def retry_failed_jobs(self) -> list[str]:
        retried = []
        for job in await self.get_failed_jobs_for_retry():
            try:
                await self.retry_job(job.job_id)
            except InvalidJobStateError as exc:
                logger.info('Not retrying job %s: %s', job.job_id, exc)
                continue
            retried.append(job.job_id)
        logger.info('Re-queued %d failed jobs', len(retried))
        return retried

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        results: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> SearchJob:
        job = await self._require(job_id)
        if job.status in TERMINAL_STATUSES:
            raise InvalidJobStateError(f'Cannot change status of {job.status.value} job {job_id}; use retry instead')

        changes: dict[str, Any] = {'status': status, 'error': error}
        if results is not None:
            changes['results'] = results
            changes['result_count'] = len(results.get('companies', []))
        if status == JobStatus.PROCESSING:
            changes['started_at'] = utcnow()
        if status in TERMINAL_STATUSES:
            changes['completed_at'] = utcnow()

        updated = await self.store.transition_job(job_id, job.status, **changes)
        if updated is None:
            raise InvalidJobStateError(f'Job {job_id} changed state before its status could be updated')
        return updated

    async def cleanup_old_jobs(self, days_to_keep: int | None = None) -> int:
        days = self.job_retention_days if days_to_keep is None else days_to_keep
        return await self.delete_old_jobs(utcnow() - timedelta(days=days))

    async def delete_old_jobs(self, cutoff: datetime) -> int:
        deleted = await self.store.delete_jobs_before(cutoff)
        logger.info('Deleted %d jobs older than %s', deleted, cutoff.isoformat())
        return deleted

    async def _require(self, job_id: str) -> SearchJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job


def _build_results(companies: list[Company], contact_results: list[CompanyContactsResult]) -> dict[str, Any]:
    contacts = []
    for result in contact_results:
        for contact in result.contacts:
            contacts.append({**contact.model_dump(mode='json'), 'company_name': result.company_name})

    return {
        'companies': [company.model_dump(mode='json') for company in companies],
        'contacts': contacts,
        'total_companies': len(companies),
        'total_contacts': len(contacts),
        'total_emails': sum(1 for contact in contacts if contact.get('email')),
    }
