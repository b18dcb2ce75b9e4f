from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from search_orchestrator.models import BillingResult, SearchType
from search_orchestrator.services.providers import BillingClient

logger = logging.getLogger(__name__)

COMPANY_SEARCH = 'company_search'
CONTACT_DISCOVERY = 'contact_discovery'
EMAIL_SEARCH = 'email_search'

CREDIT_COSTS: dict[str, int] = {
    COMPANY_SEARCH: 10,
    CONTACT_DISCOVERY: 60,
    EMAIL_SEARCH: 160,
}

# one deduction per discovery phase the search type runs
BILLING_ACTIONS: dict[SearchType, tuple[str, ...]] = {
    SearchType.COMPANIES: (COMPANY_SEARCH,),
    SearchType.CONTACTS: (CONTACT_DISCOVERY,),
    SearchType.EMAILS: (CONTACT_DISCOVERY, EMAIL_SEARCH),
    SearchType.CONTACT_ONLY: (CONTACT_DISCOVERY,),
}


def billing_actions_for(search_type: SearchType) -> tuple[str, ...]:
    return BILLING_ACTIONS[search_type]


class InMemoryCreditLedger(BillingClient):
    def __init__(self, starting_balance: int = 1000) -> None:
        self.starting_balance = starting_balance
        self._balances: dict[int, int] = defaultdict(lambda: self.starting_balance)
        self._lock = asyncio.Lock()

    async def deduct(self, user_id: int, action: str) -> BillingResult:
        amount = CREDIT_COSTS.get(action)
        if amount is None:
            return BillingResult(success=False, error=f'Unknown billing action: {action}')

        async with self._lock:
            self._balances[user_id] -= amount
            balance = self._balances[user_id]

        logger.info('Deducted %d credits from user %s for %s (balance %d)', amount, user_id, action, balance)
        return BillingResult(success=True, new_balance=balance, is_blocked=balance < 0)

    async def balance(self, user_id: int) -> int:
        async with self._lock:
            return self._balances[user_id]
