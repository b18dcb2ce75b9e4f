from datetime import timedelta

import pytest

from search_orchestrator.jobs.store import InMemoryJobStore
from search_orchestrator.models import Company, Contact, CreateJobParams, JobStatus
from search_orchestrator.utils.clock import utcnow


async def new_job(store, user_id=1, priority=0):
    return await store.create_job(CreateJobParams(user_id=user_id, query='saas in austin', priority=priority), max_retries=3)


@pytest.mark.asyncio
async def test_transition_requires_expected_status(store):
    job = await new_job(store)

    claimed = await store.transition_job(job.job_id, JobStatus.PENDING, status=JobStatus.PROCESSING)
    again = await store.transition_job(job.job_id, JobStatus.PENDING, status=JobStatus.PROCESSING)

    assert claimed.status == JobStatus.PROCESSING
    assert claimed.updated_at >= job.updated_at
    assert again is None
    assert await store.transition_job('missing', JobStatus.PENDING, status=JobStatus.PROCESSING) is None


@pytest.mark.asyncio
async def test_returned_jobs_are_copies(store):
    job = await new_job(store)
    job.metadata['tampered'] = True

    assert (await store.get_job(job.job_id)).metadata == {}


@pytest.mark.asyncio
async def test_update_missing_job_raises(store):
    with pytest.raises(KeyError):
        await store.update_job('missing', priority=1)


@pytest.mark.asyncio
async def test_pending_jobs_order_by_priority_then_age(store):
    low = await new_job(store)
    high = await new_job(store, priority=2)
    low_later = await new_job(store)

    pending = await store.get_pending_jobs(10)

    assert [job.job_id for job in pending] == [high.job_id, low.job_id, low_later.job_id]
    assert len(await store.get_pending_jobs(1)) == 1


@pytest.mark.asyncio
async def test_list_jobs_is_per_user_newest_first(store):
    first = await new_job(store)
    await new_job(store, user_id=2)
    second = await new_job(store)

    jobs = await store.list_jobs(1, 10)

    assert [job.job_id for job in jobs] == [second.job_id, first.job_id]


@pytest.mark.asyncio
async def test_stuck_jobs_use_started_at_cutoff(store):
    old = await new_job(store)
    fresh = await new_job(store)
    await store.transition_job(
        old.job_id, JobStatus.PENDING, status=JobStatus.PROCESSING, started_at=utcnow() - timedelta(minutes=10)
    )
    await store.transition_job(fresh.job_id, JobStatus.PENDING, status=JobStatus.PROCESSING, started_at=utcnow())

    stuck = await store.get_stuck_jobs(utcnow() - timedelta(minutes=5))

    assert [job.job_id for job in stuck] == [old.job_id]


@pytest.mark.asyncio
async def test_update_contact_merges_tags_and_keeps_known_values(store, company):
    contact = await store.create_contact(
        Contact(name='Ann Lee', email='ann@acme.io', company_id=company.id, user_id=1, completed_searches=['job-1'])
    )

    updated = await store.update_contact(contact.id, email=None, role='CFO', completed_searches=['job-1', 'job-2'])

    assert updated.email == 'ann@acme.io'
    assert updated.role == 'CFO'
    assert updated.completed_searches == ['job-1', 'job-2']


@pytest.mark.asyncio
async def test_companies_are_scoped_to_user():
    store = InMemoryJobStore()
    company = await store.create_company(Company(name='Acme', user_id=1))

    assert await store.get_company(company.id, 2) is None
    assert (await store.get_company(company.id, 1)).name == 'Acme'
    assert await store.list_companies(2) == []
