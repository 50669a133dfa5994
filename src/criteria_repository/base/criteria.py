# src/criteria_repository/base/criteria.py
"""
Translation of untyped filter criteria into typed predicates.

`CriteriaAssembler` walks a raw filter map (or a list of `FieldHolder`s),
resolves every field against the entity schema, coerces the raw values into
the declared kinds and records equality/membership predicates and join aliases
on a `CriteriaQuery`. Nothing is executed here: a failure on any field aborts
the request before the storage back end is reached.
"""

import logging
from collections.abc import Iterable as IterableABC
from typing import Any, Iterable, List, Mapping, Sequence

from .coercion import ValueCoercer
from .exceptions import MultiValueRelationError, NullParamError
from .params import FieldHolder, QueryParams
from .paths import FIELD_DELIMITER, classify
from .query import CriteriaQuery
from .schema import EntitySchema, Relation

log = logging.getLogger(__name__)


class PredicateBuilder:
    """Emits equality and membership predicates on a query."""

    def membership(self, query: CriteriaQuery, path: str, values: Sequence[Any]) -> bool:
        """
        Adds an "is one of" predicate. An empty value list adds nothing and
        leaves the field unfiltered. Returns whether a predicate was added.
        """
        if not values:
            log.debug(f"Empty value list for '{path}', field is not filtered.")
            return False
        query.add_membership(path, values)
        return True

    def equality(self, query: CriteriaQuery, path: str, value: Any) -> None:
        """Adds an equality predicate; None becomes the "is absent" test."""
        if value is None:
            query.add_exists(path, False)
        else:
            query.add_equal(path, value)


class RelationJoiner:
    """Joins a relation field and filters on the referenced identifier."""

    def __init__(self, coercer: ValueCoercer, predicates: PredicateBuilder):
        self.coercer = coercer
        self.predicates = predicates

    def join_and_filter(self, query: CriteriaQuery, relation_field: str, raw_value: Any) -> str:
        relation = self.coercer.schema.relation(relation_field)
        value = None if raw_value is None else self.coercer.coerce(raw_value, relation)
        alias = query.add_alias(relation_field)
        path = f"{alias}{FIELD_DELIMITER}{relation.identifier}"
        self.predicates.equality(query, path, value)
        return path


def _as_value_list(values: Any) -> List[Any]:
    if isinstance(values, (str, bytes)) or not isinstance(values, IterableABC):
        return [values]
    return list(values)


class CriteriaAssembler:
    """Assembles a CriteriaQuery from raw filter maps, holders and query params."""

    def __init__(self, schema: EntitySchema):
        self.schema = schema
        self.coercer = ValueCoercer(schema)
        self.predicates = PredicateBuilder()
        self.joiner = RelationJoiner(self.coercer, self.predicates)

    def new_query(self) -> CriteriaQuery:
        return CriteriaQuery(self.schema)

    # --- Map based filters (delimiter detection) ---

    def assemble_props(
        self, query: CriteriaQuery, props: Mapping[str, Iterable[Any]]
    ) -> CriteriaQuery:
        if props is None:
            raise NullParamError("props")
        for field_name, values in props.items():
            self.add_field_filter(query, field_name, values)
        return query

    def add_field_filter(self, query: CriteriaQuery, field_name: str, values: Iterable[Any]) -> None:
        path = classify(field_name)
        if values is None:
            raise NullParamError(field_name)
        value_list = _as_value_list(values)

        relation_field = path.root if path.is_relation else None
        if relation_field is None and isinstance(self.schema.field_kind(field_name), Relation):
            relation_field = field_name

        if relation_field is not None:
            if len(value_list) != 1:
                raise MultiValueRelationError(field_name, len(value_list))
            self.joiner.join_and_filter(query, relation_field, value_list[0])
            return

        kind = self.coercer.declared_kind(field_name)
        if not value_list:
            log.debug(f"No values supplied for '{field_name}', skipping.")
            return
        coerced = self.coercer.coerce_set(value_list, kind)
        self.predicates.membership(query, field_name, coerced)

    def apply_query_params(self, query: CriteriaQuery, params: QueryParams) -> CriteriaQuery:
        if params is None:
            raise NullParamError("queryParams")
        if params.sort_by is not None:
            query.add_order(params.sort_by, descending=params.descending)
        if params.start is not None:
            query.set_offset(params.start)
        if params.limit is not None:
            query.set_limit(params.limit)
        return query

    # --- Holder based filters (explicit relation flag) ---

    def assemble_holders(
        self, query: CriteriaQuery, holders: Iterable[FieldHolder]
    ) -> CriteriaQuery:
        if holders is None:
            raise NullParamError("fieldHolders")
        for holder in holders:
            if holder.field_name is None:
                raise NullParamError("fieldName")
            if holder.is_relation_id:
                self.joiner.join_and_filter(query, holder.field_name, holder.value)
                continue
            value = self.coercer.coerce_field(holder.field_name, holder.value)
            self.predicates.equality(query, holder.field_name, value)
        return query
