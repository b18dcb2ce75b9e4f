from __future__ import annotations

import asyncio
import itertools
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from search_orchestrator.models import Company, Contact, CreateJobParams, JobStatus, SearchJob
from search_orchestrator.utils.clock import utcnow

CANCELLED_ERROR = 'Job cancelled by user'


class JobStore(ABC):
    """Persistence collaborator for jobs, companies and contacts."""

    @abstractmethod
    async def create_job(self, params: CreateJobParams, max_retries: int) -> SearchJob: ...

    @abstractmethod
    async def get_job(self, job_id: str) -> SearchJob | None: ...

    @abstractmethod
    async def update_job(self, job_id: str, **changes: Any) -> SearchJob: ...

    @abstractmethod
    async def transition_job(self, job_id: str, expected: JobStatus, **changes: Any) -> SearchJob | None:
        """Apply ``changes`` only if the job is currently in ``expected`` status."""

    @abstractmethod
    async def list_jobs(self, user_id: int, limit: int) -> list[SearchJob]: ...

    @abstractmethod
    async def get_pending_jobs(self, limit: int) -> list[SearchJob]: ...

    @abstractmethod
    async def get_stuck_jobs(self, cutoff: datetime) -> list[SearchJob]: ...

    @abstractmethod
    async def get_failed_jobs_for_retry(self) -> list[SearchJob]: ...

    @abstractmethod
    async def delete_jobs_before(self, cutoff: datetime) -> int: ...

    @abstractmethod
    async def create_company(self, company: Company) -> Company: ...

    @abstractmethod
    async def get_company(self, company_id: int, user_id: int) -> Company | None: ...

    @abstractmethod
    async def list_companies(self, user_id: int) -> list[Company]: ...

    @abstractmethod
    async def create_contact(self, contact: Contact) -> Contact: ...

    @abstractmethod
    async def get_contact(self, contact_id: int) -> Contact | None: ...

    @abstractmethod
    async def update_contact(self, contact_id: int, **changes: Any) -> Contact: ...

    @abstractmethod
    async def list_contacts_by_company(self, company_id: int, user_id: int) -> list[Contact]: ...

    @abstractmethod
    async def list_contacts(self, user_id: int) -> list[Contact]: ...


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._jobs: dict[str, SearchJob] = {}
        self._companies: dict[int, Company] = {}
        self._contacts: dict[int, Contact] = {}
        self._job_ids = itertools.count(1)
        self._company_ids = itertools.count(1)
        self._contact_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def create_job(self, params: CreateJobParams, max_retries: int) -> SearchJob:
        job = SearchJob(
            id=next(self._job_ids),
            job_id=str(uuid.uuid4()),
            user_id=params.user_id,
            query=params.query,
            search_type=params.search_type,
            source=params.source,
            priority=params.priority,
            contact_search_config=params.contact_search_config,
            metadata=dict(params.metadata),
            max_retries=max_retries,
        )
        async with self._lock:
            self._jobs[job.job_id] = job
        return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> SearchJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def update_job(self, job_id: str, **changes: Any) -> SearchJob:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            return self._apply_job_changes(job, changes)

    async def transition_job(self, job_id: str, expected: JobStatus, **changes: Any) -> SearchJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != expected:
                return None
            return self._apply_job_changes(job, changes)

    def _apply_job_changes(self, job: SearchJob, changes: dict[str, Any]) -> SearchJob:
        updated = SearchJob.model_validate({**job.model_dump(), **changes, 'updated_at': utcnow()})
        self._jobs[job.job_id] = updated
        return updated.model_copy(deep=True)

    async def list_jobs(self, user_id: int, limit: int) -> list[SearchJob]:
        async with self._lock:
            jobs = [job for job in self._jobs.values() if job.user_id == user_id]
        jobs.sort(key=lambda job: (job.created_at, job.id), reverse=True)
        return [job.model_copy(deep=True) for job in jobs[:limit]]

    async def get_pending_jobs(self, limit: int) -> list[SearchJob]:
        async with self._lock:
            jobs = [job for job in self._jobs.values() if job.status == JobStatus.PENDING]
        jobs.sort(key=lambda job: (-job.priority, job.created_at, job.id))
        return [job.model_copy(deep=True) for job in jobs[:limit]]

    async def get_stuck_jobs(self, cutoff: datetime) -> list[SearchJob]:
        async with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.status == JobStatus.PROCESSING and (job.started_at is None or job.started_at < cutoff)
            ]

    async def get_failed_jobs_for_retry(self) -> list[SearchJob]:
        async with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.status == JobStatus.FAILED
                and job.retry_count < job.max_retries
                and job.error != CANCELLED_ERROR
            ]

    async def delete_jobs_before(self, cutoff: datetime) -> int:
        async with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in (JobStatus.COMPLETED, JobStatus.FAILED) and job.created_at < cutoff
            ]
            for job_id in stale:
                del self._jobs[job_id]
        return len(stale)

    async def create_company(self, company: Company) -> Company:
        async with self._lock:
            saved = company.model_copy(update={'id': next(self._company_ids)}, deep=True)
            self._companies[saved.id] = saved
        return saved.model_copy(deep=True)

    async def get_company(self, company_id: int, user_id: int) -> Company | None:
        async with self._lock:
            company = self._companies.get(company_id)
            if company is None or company.user_id != user_id:
                return None
            return company.model_copy(deep=True)

    async def list_companies(self, user_id: int) -> list[Company]:
        async with self._lock:
            return [c.model_copy(deep=True) for c in self._companies.values() if c.user_id == user_id]

    async def create_contact(self, contact: Contact) -> Contact:
        async with self._lock:
            saved = contact.model_copy(update={'id': next(self._contact_ids)}, deep=True)
            self._contacts[saved.id] = saved
        return saved.model_copy(deep=True)

    async def get_contact(self, contact_id: int) -> Contact | None:
        async with self._lock:
            contact = self._contacts.get(contact_id)
            return contact.model_copy(deep=True) if contact else None

    async def update_contact(self, contact_id: int, **changes: Any) -> Contact:
        async with self._lock:
            contact = self._contacts.get(contact_id)
            if contact is None:
                raise KeyError(contact_id)
            # never overwrite a known value with null
            kept = {key: value for key, value in changes.items() if value is not None}
            if 'completed_searches' in kept:
                kept['completed_searches'] = _union(contact.completed_searches, kept['completed_searches'])
            updated = contact.model_copy(update=kept, deep=True)
            self._contacts[contact_id] = updated
            return updated.model_copy(deep=True)

    async def list_contacts_by_company(self, company_id: int, user_id: int) -> list[Contact]:
        async with self._lock:
            return [
                c.model_copy(deep=True)
                for c in self._contacts.values()
                if c.company_id == company_id and c.user_id == user_id
            ]

    async def list_contacts(self, user_id: int) -> list[Contact]:
        async with self._lock:
            return [c.model_copy(deep=True) for c in self._contacts.values() if c.user_id == user_id]


def _union(existing: list[str], incoming: list[str]) -> list[str]:
    merged = list(existing)
    for tag in incoming:
        if tag not in merged:
            merged.append(tag)
    return merged
