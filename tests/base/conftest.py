import pytest

from criteria_repository.base.criteria import CriteriaAssembler
from criteria_repository.base.query import (CriteriaQuery, QueryExpression,
                                            QueryFilter, QueryLogical,
                                            QueryOperator)
from criteria_repository.base.schema import EntitySchema
from tests.models import DEPARTMENT_SCHEMA, PERSON_SCHEMA


@pytest.fixture
def person_schema() -> EntitySchema:
    return PERSON_SCHEMA


@pytest.fixture
def department_schema() -> EntitySchema:
    return DEPARTMENT_SCHEMA


@pytest.fixture
def assembler(person_schema) -> CriteriaAssembler:
    return CriteriaAssembler(person_schema)


@pytest.fixture
def query(person_schema) -> CriteriaQuery:
    return CriteriaQuery(person_schema)


def flatten_conditions(expression: QueryExpression):
    """Returns the list of filters of a built expression (AND-combined or single)."""
    if expression is None:
        return []
    if isinstance(expression, QueryLogical):
        assert expression.operator == "and"
        return list(expression.conditions)
    assert isinstance(expression, QueryFilter)
    return [expression]


def assert_filter_present(expression, field_path, operator: QueryOperator, value):
    found = [
        f for f in flatten_conditions(expression)
        if f.field_path == field_path and f.operator == operator
    ]
    assert found, f"No {operator} filter on '{field_path}' in {expression!r}"
    assert found[0].value == value, (
        f"Filter on '{field_path}' has value {found[0].value!r}, expected {value!r}"
    )
