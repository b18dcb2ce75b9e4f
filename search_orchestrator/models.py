from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from search_orchestrator.utils.clock import utcnow


class JobStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class SearchType(str, Enum):
    COMPANIES = 'companies'
    CONTACTS = 'contacts'
    EMAILS = 'emails'
    CONTACT_ONLY = 'contact-only'


class JobSource(str, Enum):
    FRONTEND = 'frontend'
    API = 'api'
    CRON = 'cron'


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobProgress(BaseModel):
    phase: str
    completed: int = 0
    total: int = 0
    message: str | None = None


class ContactSearchConfig(BaseModel):
    enable_core_leadership: bool = True
    enable_department_heads: bool = False
    enable_middle_management: bool = False
    enable_custom_search: bool = False
    custom_search_target: str | None = None
    enable_custom_search_2: bool = False
    custom_search_target_2: str | None = None

    @classmethod
    def merged_with_defaults(cls, overrides: dict[str, Any] | None = None) -> ContactSearchConfig:
        values = cls().model_dump()
        values.update({key: value for key, value in (overrides or {}).items() if value is not None})
        return cls(**values)


class SearchJob(BaseModel):
    id: int
    job_id: str
    user_id: int
    query: str
    search_type: SearchType = SearchType.COMPANIES
    source: JobSource = JobSource.FRONTEND
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    contact_search_config: ContactSearchConfig | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    progress: JobProgress | None = None
    results: dict[str, Any] | None = None
    result_count: int = 0
    retry_count: int = 0
    max_retries: int = 3
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class CreateJobParams(BaseModel):
    user_id: int
    query: str
    search_type: SearchType = SearchType.COMPANIES
    contact_search_config: ContactSearchConfig | None = None
    source: JobSource = JobSource.FRONTEND
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    max_retries: int | None = Field(default=None, ge=0)


class Company(BaseModel):
    id: int | None = None
    user_id: int | None = None
    list_id: int | None = None
    name: str
    website: str | None = None
    description: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Contact(BaseModel):
    id: int | None = None
    company_id: int | None = None
    user_id: int | None = None
    name: str
    role: str | None = None
    email: str | None = None
    probability: float = 0
    linkedin_url: str | None = None
    phone_number: str | None = None
    completed_searches: list[str] = Field(default_factory=list)
    last_validated: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class EmailLookup(BaseModel):
    email: str | None = None
    confidence: float = 0
    role: str | None = None


class EmailSearchResult(BaseModel):
    contact_id: int
    email: str | None = None
    source: str
    confidence: float = 0


class CompanyContactsResult(BaseModel):
    company_id: int
    company_name: str
    contacts: list[Contact] = Field(default_factory=list)
    email_results: list[EmailSearchResult] = Field(default_factory=list)
    searched_at: datetime = Field(default_factory=utcnow)


class BillingResult(BaseModel):
    success: bool
    new_balance: int = 0
    is_blocked: bool = False
    error: str | None = None


class UserSearchStats(BaseModel):
    total_searches: int
    contacts_found: int
    companies_searched: int
    last_search_date: datetime | None = None


class CreateJobRequest(BaseModel):
    user_id: int
    query: str = Field(min_length=1)
    search_type: SearchType = SearchType.COMPANIES
    contact_search_config: ContactSearchConfig | None = None
    source: JobSource = JobSource.FRONTEND
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    execute_now: bool = False


class CreateJobResponse(BaseModel):
    job_id: str
    status: JobStatus


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    search_type: SearchType
    query: str
    progress: JobProgress | None = None
    result_count: int = 0
    results: dict[str, Any] | None = None
    retry_count: int = 0
    max_retries: int = 3
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: SearchJob) -> JobStatusResponse:
        return cls(**job.model_dump(include=set(cls.model_fields)))
