"""Tiered email discovery for the top contacts of one company."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Iterable, Sequence

from search_orchestrator.jobs.store import JobStore
from search_orchestrator.models import Company, Contact, EmailSearchResult
from search_orchestrator.services.providers import EmailFinder
from search_orchestrator.utils.clock import utcnow
from search_orchestrator.utils.validators import is_valid_email

logger = logging.getLogger(__name__)

COMPREHENSIVE_SEARCH_TAG = 'comprehensive_search'
EXISTING_SOURCE = 'existing'
SKIPPED_SOURCE = 'skipped'
NOT_FOUND_SOURCE = 'none'

# zero-based rank slots each fallback provider is allowed to try
SECONDARY_SLOTS = (0, 2)
TERTIARY_SLOTS = (0, 1)


def rank_contacts(contacts: Sequence[Contact], limit: int) -> list[Contact]:
    # sorted() is stable, so equal probabilities keep discovery order
    return sorted(contacts, key=lambda contact: contact.probability, reverse=True)[:limit]


def provider_tag(provider: EmailFinder) -> str:
    return f'{provider.name}_search'


class TieredEmailResolver:
    def __init__(
        self,
        store: JobStore,
        primary: EmailFinder,
        secondary: EmailFinder,
        tertiary: EmailFinder,
        max_contacts: int = 3,
        tier1_threshold: int = 1,
        skip_searched: bool = True,
    ) -> None:
        self.store = store
        self.primary = primary
        self.secondary = secondary
        self.tertiary = tertiary
        self.max_contacts = max_contacts
        self.tier1_threshold = tier1_threshold
        self.skip_searched = skip_searched

    async def resolve(self, contacts: Sequence[Contact], company: Company) -> list[EmailSearchResult]:
        started = time.monotonic()
        ranked = rank_contacts(contacts, self.max_contacts)
        if not ranked:
            return []

        found: dict[int, EmailSearchResult] = {}
        skipped: set[int] = set()

        for contact in ranked:
            if is_valid_email(contact.email):
                found[contact.id] = EmailSearchResult(
                    contact_id=contact.id, email=contact.email, source=EXISTING_SOURCE, confidence=100
                )
            elif self.skip_searched and COMPREHENSIVE_SEARCH_TAG in contact.completed_searches:
                skipped.add(contact.id)

        logger.info('Tier 1 for %s: %s across %d contacts', company.name, self.primary.name, len(ranked))
        tier1 = await self._run_tier(
            self._attempt(self.primary, contact, company, found)
            for contact in ranked
            if contact.id not in found and contact.id not in skipped
        )
        new_in_tier1 = sum(1 for result in tier1 if result is not None)

        if new_in_tier1 >= self.tier1_threshold:
            logger.info('Skipping tier 2 for %s: %d new email(s) from tier 1', company.name, new_in_tier1)
        else:
            logger.info('Tier 2 for %s: %s + %s', company.name, self.secondary.name, self.tertiary.name)
            attempts = []
            for provider, slots in ((self.secondary, SECONDARY_SLOTS), (self.tertiary, TERTIARY_SLOTS)):
                for slot in slots:
                    if slot >= len(ranked):
                        continue
                    contact = ranked[slot]
                    if contact.id in found or contact.id in skipped:
                        continue
                    attempts.append(self._attempt(provider, contact, company, found))
            await self._run_tier(attempts)

        results = []
        for contact in ranked:
            if contact.id in found:
                results.append(found[contact.id])
                continue
            if contact.id in skipped:
                results.append(EmailSearchResult(contact_id=contact.id, source=SKIPPED_SOURCE))
                continue
            await self.store.update_contact(
                contact.id, completed_searches=[COMPREHENSIVE_SEARCH_TAG], last_validated=utcnow()
            )
            logger.info('Marked %s as comprehensively searched (no email found)', contact.name)
            results.append(EmailSearchResult(contact_id=contact.id, source=NOT_FOUND_SOURCE))

        new_emails = sum(1 for r in results if r.email and r.source != EXISTING_SOURCE)
        logger.info(
            'Email search for %s finished in %.2fs: %d new email(s) for %d contact(s)',
            company.name,
            time.monotonic() - started,
            new_emails,
            len(ranked),
        )
        return results

    async def _run_tier(self, attempts: Iterable[Awaitable[EmailSearchResult | None]]) -> list[EmailSearchResult | None]:
        outcomes = await asyncio.gather(*attempts, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    async def _attempt(
        self,
        provider: EmailFinder,
        contact: Contact,
        company: Company,
        found: dict[int, EmailSearchResult],
    ) -> EmailSearchResult | None:
        if contact.id in found:
            return None

        try:
            lookup = await provider.find_email(contact, company)
        except Exception as exc:
            logger.warning('%s failed for %s at %s: %s', provider.name, contact.name, company.name, exc)
            return None

        if not is_valid_email(lookup.email):
            logger.debug('%s found no email for %s', provider.name, contact.name)
            return None

        if contact.id in found:
            logger.debug('Discarding %s result for %s: email already found', provider.name, contact.name)
            return None

        result = EmailSearchResult(
            contact_id=contact.id,
            email=lookup.email,
            source=provider.name,
            confidence=lookup.confidence,
        )
        found[contact.id] = result
        await self.store.update_contact(
            contact.id,
            email=lookup.email,
            role=lookup.role,
            completed_searches=[provider_tag(provider)],
            last_validated=utcnow(),
        )
        logger.info('%s found email for %s: %s', provider.name, contact.name, lookup.email)
        return result
