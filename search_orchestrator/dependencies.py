from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends

from search_orchestrator.config import Settings, get_settings
from search_orchestrator.jobs.processor import JobProcessor
from search_orchestrator.jobs.search_job_service import SearchJobService
from search_orchestrator.jobs.store import InMemoryJobStore, JobStore
from search_orchestrator.services.billing import InMemoryCreditLedger
from search_orchestrator.services.contact_service import ContactEnrichmentService
from search_orchestrator.services.email_resolver import TieredEmailResolver
from search_orchestrator.services.http_providers import HttpCompanyFinder, HttpContactFinder, HttpEmailFinder
from search_orchestrator.services.progress import ProgressBroadcaster


@dataclass
class ServiceContainer:
    store: JobStore
    broadcaster: ProgressBroadcaster
    job_service: SearchJobService
    processor: JobProcessor


def build_container(settings: Settings, store: JobStore | None = None) -> ServiceContainer:
    store = store or InMemoryJobStore()
    broadcaster = ProgressBroadcaster()
    resolver = TieredEmailResolver(
        store,
        primary=HttpEmailFinder('primary_email', settings.primary_email_finder_url, settings),
        secondary=HttpEmailFinder('secondary_email', settings.secondary_email_finder_url, settings),
        tertiary=HttpEmailFinder('tertiary_email', settings.tertiary_email_finder_url, settings),
        max_contacts=settings.max_email_contacts,
        tier1_threshold=settings.tier1_email_threshold,
    )
    contact_service = ContactEnrichmentService(
        store,
        HttpContactFinder(settings),
        email_resolver=resolver,
        concurrency=settings.contact_batch_concurrency,
    )
    job_service = SearchJobService(
        store,
        HttpCompanyFinder(settings),
        contact_service,
        InMemoryCreditLedger(settings.starting_credit_balance),
        default_max_retries=settings.default_max_retries,
        job_retention_days=settings.job_retention_days,
        broadcaster=broadcaster,
    )
    return ServiceContainer(
        store=store,
        broadcaster=broadcaster,
        job_service=job_service,
        processor=JobProcessor(settings, job_service),
    )


@lru_cache
def get_container() -> ServiceContainer:
    return build_container(get_settings())


def get_job_service(container: ServiceContainer = Depends(get_container)) -> SearchJobService:
    return container.job_service


def get_job_processor(container: ServiceContainer = Depends(get_container)) -> JobProcessor:
    return container.processor


def get_broadcaster(container: ServiceContainer = Depends(get_container)) -> ProgressBroadcaster:
    return container.broadcaster
