# tests/conftest.py
import logging
from dataclasses import dataclass

import aiosqlite
import pytest
import pytest_asyncio

from criteria_repository.base.interfaces import CriteriaRepository
from criteria_repository.db_implementations.memory_repository import (
    MemoryRepository, MemoryStore)
from criteria_repository.db_implementations.sqlite_repository import \
    SqliteRepository
from tests.models import (DEPARTMENTS, PEOPLE, PROJECTS, SCHEMAS, TABLE_NAMES,
                          Department, Person, Project)

# --- List of available implementation keys ---
REPOSITORY_IMPLEMENTATIONS = ["memory", "sqlite"]


# --- Logger Fixture ---


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_repo_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


# SQLite Fixture (Function Scoped)
@pytest_asyncio.fixture(scope="function")
async def sqlite_memory_db_conn():
    """Provides an in-memory aiosqlite database connection for testing."""
    conn = None
    try:
        conn = await aiosqlite.connect(":memory:")
        conn.row_factory = aiosqlite.Row
        yield conn
    finally:
        if conn:
            await conn.close()


# --- Repository Factories (Function Scoped) ---


@pytest.fixture(scope="function")
def memory_repository_factory():
    """Factory for memory repositories sharing one store, so relations can join."""
    store = MemoryStore()

    def _create(entity_cls, schema=None):
        return MemoryRepository(
            entity_cls,
            schema=schema or SCHEMAS.get(entity_cls),
            table_name=TABLE_NAMES.get(entity_cls),
            store=store,
        )

    return _create


@pytest.fixture(scope="function")
def sqlite_repository_factory(sqlite_memory_db_conn):
    """Factory for creating SQLite repositories using an in-memory DB."""

    def _create(entity_cls, schema=None):
        table_name = TABLE_NAMES.get(entity_cls) or f"{entity_cls.__name__.lower()}s"
        return SqliteRepository(
            db_connection=sqlite_memory_db_conn,
            table_name=table_name,
            entity_type=entity_cls,
            schema=schema or SCHEMAS.get(entity_cls),
        )

    return _create


@pytest.fixture(params=REPOSITORY_IMPLEMENTATIONS)
def repository_factory(request):
    """Parametrized fixture to get the correct factory based on implementation key."""
    impl_key = request.param
    if impl_key == "memory":
        yield request.getfixturevalue("memory_repository_factory")
    elif impl_key == "sqlite":
        yield request.getfixturevalue("sqlite_repository_factory")
    else:
        raise ValueError(f"Unknown repository implementation key: {impl_key}")


@dataclass
class Repositories:
    departments: CriteriaRepository
    persons: CriteriaRepository
    projects: CriteriaRepository


@pytest_asyncio.fixture
async def initialized_repositories(repository_factory, logger) -> Repositories:
    """Repositories for every test entity, with their schema created."""
    repos = Repositories(
        departments=repository_factory(Department),
        persons=repository_factory(Person),
        projects=repository_factory(Project),
    )
    for repo in (repos.departments, repos.persons, repos.projects):
        try:
            await repo.initialize(logger, create_schema_if_needed=True)
        except Exception as e:
            logger.error(
                f"Failed to initialize repository type '{type(repo).__name__}' "
                f"during test setup: {e}",
                exc_info=True,
            )
            pytest.fail(
                f"Repository initialization failed for {type(repo).__name__}: {e}"
            )
    return repos


@pytest_asyncio.fixture
async def seeded_repositories(initialized_repositories, logger) -> Repositories:
    """Initialized repositories holding the shared seed data."""
    repos = initialized_repositories
    for department in DEPARTMENTS:
        await repos.departments.persist(department, logger)
    for person in PEOPLE:
        await repos.persons.persist(person, logger)
    for project in PROJECTS:
        await repos.projects.persist(project, logger)
    return repos


@pytest.fixture
def person_repo(seeded_repositories) -> CriteriaRepository:
    return seeded_repositories.persons