from __future__ import annotations

import logging
from typing import Sequence

from search_orchestrator.jobs.batch import run_batch
from search_orchestrator.jobs.store import JobStore
from search_orchestrator.models import (
    Company,
    CompanyContactsResult,
    Contact,
    ContactSearchConfig,
    EmailSearchResult,
    UserSearchStats,
)
from search_orchestrator.services.email_resolver import TieredEmailResolver
from search_orchestrator.services.progress import NullProgressSink, ProgressSink
from search_orchestrator.services.providers import ContactFinder
from search_orchestrator.services.strategies import SearchStrategy, validate_search_config
from search_orchestrator.utils.clock import utcnow
from search_orchestrator.utils.validators import normalize_email, normalize_name

logger = logging.getLogger(__name__)

PROGRESS_PHASE = 'contact_discovery'


class ContactEnrichmentService:
    """Finds, de-duplicates and stores decision makers for a list of companies."""

    def __init__(
        self,
        store: JobStore,
        contact_finder: ContactFinder,
        email_resolver: TieredEmailResolver | None = None,
        concurrency: int = 3,
    ) -> None:
        self.store = store
        self.contact_finder = contact_finder
        self.email_resolver = email_resolver
        self.concurrency = concurrency

    @staticmethod
    def get_default_config() -> ContactSearchConfig:
        return ContactSearchConfig()

    @staticmethod
    def validate_search_config(config: ContactSearchConfig) -> list[SearchStrategy]:
        return validate_search_config(config)

    async def search_contacts(
        self,
        companies: Sequence[Company],
        user_id: int,
        config: ContactSearchConfig,
        job_id: str | None = None,
        progress: ProgressSink | None = None,
        resolve_emails: bool = False,
    ) -> list[CompanyContactsResult]:
        strategies = validate_search_config(config)
        sink = progress or NullProgressSink()
        if resolve_emails and self.email_resolver is None:
            raise ValueError('Email resolution requested but no email resolver is configured')

        logger.info(
            'Starting contact search for %d companies (%d at a time, strategies=%s)',
            len(companies),
            self.concurrency,
            [s.kind.value for s in strategies],
        )
        await sink.report(f'Starting batch search for {len(companies)} companies', PROGRESS_PHASE)

        async def worker(company: Company) -> CompanyContactsResult:
            result = await self._process_company(company, user_id, strategies, job_id, resolve_emails)
            await sink.report(f'Processed {company.name} - Found {len(result.contacts)} contacts', PROGRESS_PHASE)
            return result

        def on_error(company: Company, exc: Exception) -> CompanyContactsResult:
            logger.warning('Contact search failed for %s: %s', company.name, exc)
            return CompanyContactsResult(company_id=company.id, company_name=company.name)

        results = await run_batch(list(companies), worker, self.concurrency, on_error=on_error)
        logger.info('Completed contact search: %d companies processed', len(results))
        return results

    async def search_company_contacts(
        self,
        company: Company,
        user_id: int,
        config: ContactSearchConfig,
        job_id: str | None = None,
        resolve_emails: bool = False,
    ) -> CompanyContactsResult:
        results = await self.search_contacts([company], user_id, config, job_id, resolve_emails=resolve_emails)
        return results[0]

    async def _process_company(
        self,
        company: Company,
        user_id: int,
        strategies: list[SearchStrategy],
        job_id: str | None,
        resolve_emails: bool,
    ) -> CompanyContactsResult:
        query = f'{company.name} {company.website or ""}'.strip()
        candidates = await self.contact_finder.find_contacts(query, strategies)
        logger.info('Found %d contacts for %s', len(candidates), company.name)

        saved = await self.save_contacts(company, candidates, user_id, job_id)

        email_results: list[EmailSearchResult] = []
        if resolve_emails and saved:
            email_results = await self.email_resolver.resolve(saved, company)
            saved = await self._reload(saved)

        return CompanyContactsResult(
            company_id=company.id,
            company_name=company.name,
            contacts=saved,
            email_results=email_results,
        )

    async def save_contacts(
        self,
        company: Company,
        candidates: Sequence[Contact],
        user_id: int,
        job_id: str | None = None,
    ) -> list[Contact]:
        known = await self.store.list_contacts_by_company(company.id, user_id)
        saved: list[Contact] = []

        for candidate in candidates:
            match = _find_match(known, candidate)
            if match is not None:
                logger.debug('Updating existing contact %s at %s', match.name, company.name)
                contact = await self.store.update_contact(
                    match.id,
                    role=candidate.role,
                    email=candidate.email,
                    probability=candidate.probability or None,
                    linkedin_url=candidate.linkedin_url,
                    phone_number=candidate.phone_number,
                    completed_searches=[job_id] if job_id else None,
                    last_validated=utcnow(),
                )
                known = [contact if c.id == contact.id else c for c in known]
            else:
                logger.debug('Creating contact %s at %s', candidate.name, company.name)
                contact = await self.store.create_contact(
                    candidate.model_copy(
                        update={
                            'id': None,
                            'company_id': company.id,
                            'user_id': user_id,
                            'completed_searches': [job_id] if job_id else [],
                            'last_validated': utcnow(),
                        }
                    )
                )
                known.append(contact)

            if all(existing.id != contact.id for existing in saved):
                saved.append(contact)
            else:
                saved = [contact if c.id == contact.id else c for c in saved]

        return saved

    async def _reload(self, contacts: list[Contact]) -> list[Contact]:
        reloaded = []
        for contact in contacts:
            fresh = await self.store.get_contact(contact.id)
            reloaded.append(fresh or contact)
        return reloaded

    async def has_existing_contacts(self, company_ids: Sequence[int], user_id: int) -> dict[int, bool]:
        existing = {}
        for company_id in company_ids:
            contacts = await self.store.list_contacts_by_company(company_id, user_id)
            existing[company_id] = bool(contacts)
        return existing

    async def get_user_search_stats(self, user_id: int) -> UserSearchStats:
        contacts = await self.store.list_contacts(user_id)
        companies_with_contacts = {c.company_id for c in contacts if c.company_id is not None}
        latest = max((c.created_at for c in contacts), default=None)
        return UserSearchStats(
            total_searches=sum(1 for c in contacts if c.completed_searches),
            contacts_found=len(contacts),
            companies_searched=len(companies_with_contacts),
            last_search_date=latest,
        )


def _find_match(known: Sequence[Contact], candidate: Contact) -> Contact | None:
    email = normalize_email(candidate.email)
    if email:
        for contact in known:
            if normalize_email(contact.email) == email:
                return contact

    name = normalize_name(candidate.name)
    if name:
        for contact in known:
            if normalize_name(contact.name) == name:
                return contact
    return None
