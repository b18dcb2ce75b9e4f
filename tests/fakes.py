from __future__ import annotations

import asyncio

from search_orchestrator.models import BillingResult, Company, Contact, EmailLookup
from search_orchestrator.services.providers import BillingClient, CompanyFinder, ContactFinder, EmailFinder


class FakeCompanyFinder(CompanyFinder):
    name = 'fake_companies'

    def __init__(self, names: list[str] | None = None, error: Exception | None = None) -> None:
        self.names = names or []
        self.error = error
        self.queries: list[str] = []

    async def find_companies(self, query: str) -> list[Company]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return [Company(name=name, website=f'https://{name.lower().replace(" ", "")}.com') for name in self.names]


class FakeContactFinder(ContactFinder):
    name = 'fake_contacts'

    def __init__(self, contacts_by_company: dict[str, list[Contact]] | None = None, default: list[Contact] | None = None) -> None:
        self.contacts_by_company = contacts_by_company or {}
        self.default = default or []
        self.failing: set[str] = set()
        self.queries: list[str] = []

    async def find_contacts(self, query, strategies) -> list[Contact]:
        self.queries.append(query)
        if any(query.startswith(name) for name in self.failing):
            raise RuntimeError(f'contact provider down for {query}')
        company_name = next((name for name in self.contacts_by_company if query.startswith(name)), None)
        source = self.contacts_by_company[company_name] if company_name else self.default
        return [contact.model_copy(deep=True) for contact in source]


class FakeEmailFinder(EmailFinder):
    """Answers from a ``contact name -> email`` map and records every call."""

    def __init__(
        self,
        name: str,
        emails: dict[str, str] | None = None,
        failing: set[str] | None = None,
        delay: float = 0.0,
        confidence: float = 80,
    ) -> None:
        self.name = name
        self.emails = emails or {}
        self.failing = failing or set()
        self.delay = delay
        self.confidence = confidence
        self.calls: list[tuple[str, str]] = []

    async def find_email(self, contact: Contact, company: Company) -> EmailLookup:
        self.calls.append((contact.name, company.name))
        if self.delay:
            await asyncio.sleep(self.delay)
        if contact.name in self.failing:
            raise TimeoutError(f'{self.name} timed out')
        email = self.emails.get(contact.name)
        if email is None:
            return EmailLookup()
        return EmailLookup(email=email, confidence=self.confidence)

    @property
    def called_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeBilling(BillingClient):
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[int, str]] = []

    async def deduct(self, user_id: int, action: str) -> BillingResult:
        self.calls.append((user_id, action))
        if self.error is not None:
            raise self.error
        return BillingResult(success=True, new_balance=100)


def ranked_contacts(*names: str, probabilities: list[float] | None = None) -> list[Contact]:
    probabilities = probabilities or [90 - 10 * index for index in range(len(names))]
    return [
        Contact(name=name, role='Executive', probability=probability)
        for name, probability in zip(names, probabilities)
    ]
