from __future__ import annotations

from abc import ABC, abstractmethod

from search_orchestrator.models import BillingResult, Company, Contact, EmailLookup
from search_orchestrator.services.strategies import SearchStrategy


class CompanyFinder(ABC):
    name: str = 'company_finder'

    @abstractmethod
    async def find_companies(self, query: str) -> list[Company]:
        raise NotImplementedError


class ContactFinder(ABC):
    name: str = 'contact_finder'

    @abstractmethod
    async def find_contacts(self, query: str, strategies: list[SearchStrategy]) -> list[Contact]:
        """Return candidate decision makers, best match first."""
        raise NotImplementedError


class EmailFinder(ABC):
    name: str = 'email_finder'

    @abstractmethod
    async def find_email(self, contact: Contact, company: Company) -> EmailLookup:
        raise NotImplementedError


class BillingClient(ABC):
    @abstractmethod
    async def deduct(self, user_id: int, action: str) -> BillingResult:
        raise NotImplementedError
