# tests/database_implementations/test_universal_query.py
import pytest
import pytest_asyncio

from criteria_repository.base.exceptions import FieldNotFoundError, NullParamError
from criteria_repository.base.params import OrderType, QueryParams
from tests.models import Department, Person, ids


@pytest_asyncio.fixture
async def crowd_repo(repository_factory, logger):
    """Persons repository holding 25 people aged 20..44 (ids 100..124, inserted out of order)."""
    repo = repository_factory(Person)
    await repo.initialize(logger, create_schema_if_needed=True)
    for offset in reversed(range(25)):
        await repo.persist(
            Person(id=100 + offset, name=f"P{offset:02d}", age=20 + offset), logger
        )
    return repo


async def test_pagination_over_sorted_rows(crowd_repo, logger):
    found = await crowd_repo.universal_query(
        {}, QueryParams(sort_by="age", start=5, limit=10), logger
    )
    assert [p.age for p in found] == list(range(25, 35))


async def test_descending_order(crowd_repo, logger):
    found = await crowd_repo.universal_query(
        {}, QueryParams(sort_by="age", order_type=OrderType.DESC, limit=3), logger
    )
    assert [p.age for p in found] == [44, 43, 42]


async def test_order_type_without_sort_by_applies_no_ordering(crowd_repo, logger):
    unordered = await crowd_repo.universal_query({}, QueryParams(), logger)
    with_desc = await crowd_repo.universal_query(
        {}, QueryParams(order_type=OrderType.DESC), logger
    )
    assert ids(with_desc) == ids(unordered)
    assert len(with_desc) == 25


async def test_pagination_after_filter(crowd_repo, logger):
    found = await crowd_repo.universal_query(
        {"age": [str(a) for a in range(30, 45)]},
        QueryParams(sort_by="age", start=2, limit=4),
        logger,
    )
    assert [p.age for p in found] == [32, 33, 34, 35]


async def test_offset_without_limit(crowd_repo, logger):
    found = await crowd_repo.universal_query(
        {}, QueryParams(sort_by="age", start=20), logger
    )
    assert [p.age for p in found] == [40, 41, 42, 43, 44]


async def test_zero_limit(crowd_repo, logger):
    assert await crowd_repo.universal_query({}, QueryParams(limit=0), logger) == []


async def test_sort_by_text_field(person_repo, logger):
    found = await person_repo.universal_query(
        {"department.id": [5]},
        QueryParams(sort_by="name", order_type=OrderType.DESC),
        logger,
    )
    assert [p.name for p in found] == ["Frank", "Bob", "Alice"]


async def test_pagination_counts_distinct_roots(seeded_repositories, logger):
    departments = seeded_repositories.departments
    page = await departments.universal_query(
        {"people": [1]}, QueryParams(sort_by="id", limit=1), logger
    )
    assert [d.id for d in page] == [5]


async def test_sort_by_nullable_column(seeded_repositories, logger):
    found = await seeded_repositories.departments.universal_query(
        {}, QueryParams(sort_by="budget"), logger
    )
    # Missing budgets sort first ascending
    assert [d.id for d in found] == [5, 7, 2, 1]


async def test_invalid_params(person_repo, logger):
    with pytest.raises(NullParamError):
        await person_repo.universal_query({}, None, logger)
    with pytest.raises(FieldNotFoundError):
        await person_repo.universal_query({}, QueryParams(sort_by="salary"), logger)
    with pytest.raises(FieldNotFoundError):
        await person_repo.universal_query({}, QueryParams(sort_by="department"), logger)
    with pytest.raises(NullParamError):
        await person_repo.universal_query(None, QueryParams(), logger)


def test_query_params_reject_negative_values():
    with pytest.raises(ValueError):
        QueryParams(start=-1)
    with pytest.raises(ValueError):
        QueryParams(limit=-1)


async def test_departments_unaffected_by_person_pagination(seeded_repositories, logger):
    found = await seeded_repositories.departments.universal_query(
        {"name": ["Research"]}, QueryParams(start=0, limit=5), logger
    )
    assert found == [Department(id=5, name="Research")]
