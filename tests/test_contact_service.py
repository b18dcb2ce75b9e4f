import pytest

from search_orchestrator.errors import InvalidSearchConfigError
from search_orchestrator.models import Company, Contact, ContactSearchConfig
from search_orchestrator.services.contact_service import ContactEnrichmentService
from search_orchestrator.services.email_resolver import TieredEmailResolver
from tests.fakes import FakeContactFinder, FakeEmailFinder, ranked_contacts


class RecordingSink:
    def __init__(self):
        self.messages = []

    async def report(self, message, phase):
        self.messages.append((message, phase))


def default_config():
    return ContactSearchConfig()


@pytest.mark.asyncio
async def test_contacts_are_saved_with_job_tag(store, company):
    finder = FakeContactFinder(default=ranked_contacts('Ann Lee', 'Bob Stone'))
    service = ContactEnrichmentService(store, finder)

    results = await service.search_contacts([company], 1, default_config(), job_id='job-1')

    assert finder.queries == ['Acme Fintech https://acme.io']
    assert [c.name for c in results[0].contacts] == ['Ann Lee', 'Bob Stone']
    stored = await store.list_contacts_by_company(company.id, 1)
    assert len(stored) == 2
    assert all(c.completed_searches == ['job-1'] for c in stored)
    assert all(c.last_validated is not None for c in stored)


@pytest.mark.asyncio
async def test_rerun_updates_instead_of_duplicating(store, company):
    finder = FakeContactFinder(default=ranked_contacts('Ann Lee', 'Bob Stone'))
    service = ContactEnrichmentService(store, finder)

    await service.search_contacts([company], 1, default_config(), job_id='job-1')
    first = {c.name: c for c in await store.list_contacts_by_company(company.id, 1)}
    await service.search_contacts([company], 1, default_config(), job_id='job-2')
    second = {c.name: c for c in await store.list_contacts_by_company(company.id, 1)}

    assert len(second) == 2
    for name, contact in second.items():
        assert contact.id == first[name].id
        assert contact.completed_searches == ['job-1', 'job-2']
        assert contact.last_validated >= first[name].last_validated


@pytest.mark.asyncio
async def test_matching_prefers_email_then_name_case_insensitively(store, company):
    await store.create_contact(
        Contact(name='Ann Lee', email='Ann@Acme.io', company_id=company.id, user_id=1, role='CEO')
    )
    await store.create_contact(Contact(name='Bob Stone', company_id=company.id, user_id=1))
    finder = FakeContactFinder(
        default=[
            Contact(name='Annie Lee', email='ann@acme.io'),
            Contact(name='BOB  stone', role='CTO', email='bob@acme.io'),
        ]
    )
    service = ContactEnrichmentService(store, finder)

    await service.search_contacts([company], 1, default_config(), job_id='job-1')

    stored = {c.id: c for c in await store.list_contacts_by_company(company.id, 1)}
    assert len(stored) == 2
    ann, bob = stored[1], stored[2]
    assert ann.role == 'CEO'
    assert bob.email == 'bob@acme.io'
    assert bob.role == 'CTO'


@pytest.mark.asyncio
async def test_merge_never_clears_known_fields(store, company):
    await store.create_contact(
        Contact(name='Ann Lee', email='ann@acme.io', role='CEO', linkedin_url='https://li/ann', company_id=company.id, user_id=1)
    )
    finder = FakeContactFinder(default=[Contact(name='Ann Lee')])
    service = ContactEnrichmentService(store, finder)

    await service.search_contacts([company], 1, default_config(), job_id='job-9')

    (ann,) = await store.list_contacts_by_company(company.id, 1)
    assert ann.email == 'ann@acme.io'
    assert ann.role == 'CEO'
    assert ann.linkedin_url == 'https://li/ann'
    assert ann.completed_searches == ['job-9']


@pytest.mark.asyncio
async def test_one_failing_company_does_not_block_the_rest(store):
    companies = [
        await store.create_company(Company(name=name, user_id=1)) for name in ('Alpha', 'Beta', 'Gamma', 'Delta')
    ]
    finder = FakeContactFinder(default=ranked_contacts('Pat Doe'))
    finder.failing = {'Beta'}
    service = ContactEnrichmentService(store, finder, concurrency=3)

    results = await service.search_contacts(companies, 1, default_config())

    assert [r.company_name for r in results] == ['Alpha', 'Beta', 'Gamma', 'Delta']
    assert [len(r.contacts) for r in results] == [1, 0, 1, 1]


@pytest.mark.asyncio
async def test_progress_is_reported_per_company(store):
    companies = [await store.create_company(Company(name=name, user_id=1)) for name in ('Alpha', 'Beta')]
    sink = RecordingSink()
    service = ContactEnrichmentService(store, FakeContactFinder(default=ranked_contacts('Pat Doe')))

    await service.search_contacts(companies, 1, default_config(), progress=sink)

    messages = [message for message, _ in sink.messages]
    assert messages[0] == 'Starting batch search for 2 companies'
    assert sorted(messages[1:]) == ['Processed Alpha - Found 1 contacts', 'Processed Beta - Found 1 contacts']
    assert {phase for _, phase in sink.messages} == {'contact_discovery'}


@pytest.mark.asyncio
async def test_invalid_config_is_rejected_before_any_work(store, company):
    finder = FakeContactFinder(default=ranked_contacts('Ann Lee'))
    service = ContactEnrichmentService(store, finder)
    config = ContactSearchConfig(enable_core_leadership=False)

    with pytest.raises(InvalidSearchConfigError):
        await service.search_contacts([company], 1, config)

    assert finder.queries == []


@pytest.mark.asyncio
async def test_email_resolution_runs_inside_each_company(store, company):
    primary = FakeEmailFinder('primary', {'Ann Lee': 'ann@acme.io'})
    resolver = TieredEmailResolver(store, primary, FakeEmailFinder('secondary'), FakeEmailFinder('tertiary'))
    finder = FakeContactFinder(default=ranked_contacts('Ann Lee', 'Bob Stone'))
    service = ContactEnrichmentService(store, finder, email_resolver=resolver)

    (result,) = await service.search_contacts([company], 1, default_config(), job_id='job-1', resolve_emails=True)

    assert result.contacts[0].email == 'ann@acme.io'
    assert [r.email for r in result.email_results] == ['ann@acme.io', None]


@pytest.mark.asyncio
async def test_search_stats_and_existing_contacts(store, company):
    other = await store.create_company(Company(name='Quiet Co', user_id=1))
    service = ContactEnrichmentService(store, FakeContactFinder(default=ranked_contacts('Ann Lee')))

    result = await service.search_company_contacts(company, 1, default_config(), job_id='job-1')
    stats = await service.get_user_search_stats(1)
    existing = await service.has_existing_contacts([company.id, other.id], 1)

    assert result.company_name == 'Acme Fintech'
    assert stats.contacts_found == 1
    assert stats.total_searches == 1
    assert stats.companies_searched == 1
    assert existing == {company.id: True, other.id: False}
