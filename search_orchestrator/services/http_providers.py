"""Generic JSON webhook adapters for the search collaborators."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from search_orchestrator.config import Settings
from search_orchestrator.errors import ProviderError
from search_orchestrator.models import Company, Contact, EmailLookup
from search_orchestrator.services.providers import CompanyFinder, ContactFinder, EmailFinder
from search_orchestrator.services.rate_limiter import AsyncRateLimiter
from search_orchestrator.services.strategies import SearchStrategy
from search_orchestrator.utils.validators import is_valid_email

logger = logging.getLogger(__name__)


class JsonWebhookClient:
    def __init__(self, name: str, url: str | None, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.name = name
        self.url = url
        self.settings = settings
        self.rate_limiter = AsyncRateLimiter(name, settings.rate_limit_per_second)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def post(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.url:
            logger.debug('%s has no endpoint configured, skipping', self.name)
            return {}

        headers = {}
        if self.settings.provider_api_key:
            headers['Authorization'] = f'Bearer {self.settings.provider_api_key}'

        await self.rate_limiter.wait()
        try:
            if self._client is not None:
                response = await self._send(self._client, payload, headers)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, payload, headers)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            raise ProviderError(self.name, f'request failed: {exc}') from exc
        except ValueError as exc:
            raise ProviderError(self.name, 'response was not valid JSON') from exc

        if not isinstance(body, dict):
            raise ProviderError(self.name, 'response was not a JSON object')
        return body

    async def _send(self, client: httpx.AsyncClient, payload: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        return await client.post(
            self.url,
            json=payload,
            headers=headers,
            timeout=self.settings.request_timeout_seconds,
        )


class HttpCompanyFinder(CompanyFinder):
    name = 'company_webhook'

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.webhook = JsonWebhookClient(self.name, settings.company_finder_url, settings, client)

    async def find_companies(self, query: str) -> list[Company]:
        body = await self.webhook.post({'query': query})
        companies = []
        for entry in _entries(body, 'companies'):
            name = entry.get('name')
            if not isinstance(name, str) or not name.strip():
                continue
            companies.append(
                Company(name=name.strip(), website=_text(entry.get('website')), description=_text(entry.get('description')))
            )
        return companies


class HttpContactFinder(ContactFinder):
    name = 'contact_webhook'

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.webhook = JsonWebhookClient(self.name, settings.contact_finder_url, settings, client)

    async def find_contacts(self, query: str, strategies: list[SearchStrategy]) -> list[Contact]:
        body = await self.webhook.post(
            {
                'query': query,
                'strategies': [{'kind': s.kind.value, 'focus': s.focus} for s in strategies],
            }
        )
        contacts = []
        for entry in _entries(body, 'contacts'):
            name = entry.get('name')
            if not isinstance(name, str) or not name.strip():
                continue
            email = _text(entry.get('email'))
            contacts.append(
                Contact(
                    name=name.strip(),
                    role=_text(entry.get('role')),
                    email=email if is_valid_email(email) else None,
                    probability=_number(entry.get('probability')),
                    linkedin_url=_text(entry.get('linkedin_url')),
                    phone_number=_text(entry.get('phone_number')),
                )
            )
        return contacts


class HttpEmailFinder(EmailFinder):
    def __init__(self, name: str, url: str | None, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.name = name
        self.webhook = JsonWebhookClient(name, url, settings, client)

    async def find_email(self, contact: Contact, company: Company) -> EmailLookup:
        body = await self.webhook.post(
            {
                'name': contact.name,
                'role': contact.role,
                'company': company.name,
                'website': company.website,
            }
        )
        email = _text(body.get('email'))
        if not is_valid_email(email):
            return EmailLookup()
        return EmailLookup(email=email, confidence=_number(body.get('confidence')), role=_text(body.get('role')))


def _entries(body: dict[str, Any], key: str) -> list[dict[str, Any]]:
    entries = body.get(key, [])
    if not isinstance(entries, list):
        raise ProviderError(key, f'expected a list under {key!r}')
    return [entry for entry in entries if isinstance(entry, dict)]


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
