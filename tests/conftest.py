import pytest
import pytest_asyncio

from search_orchestrator.jobs.store import InMemoryJobStore
from search_orchestrator.models import Company


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest_asyncio.fixture
async def company(store):
    return await store.create_company(Company(name='Acme Fintech', website='https://acme.io', user_id=1))
