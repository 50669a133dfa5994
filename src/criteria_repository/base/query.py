# src/criteria_repository/base/query.py
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from .exceptions import FieldNotFoundError
from .paths import FIELD_DELIMITER
from .schema import EntitySchema, Relation

# --- Setup Logging ---
log = logging.getLogger(__name__)


# --- Query Operator Enum ---
class QueryOperator(Enum):
    """Enumeration of the filter operators emitted by the criteria engine."""

    EQ = "eq"
    IN = "in"
    # EXISTS False is the "is absent" (IS NULL) test
    EXISTS = "exists"


# --- Structured Query Expression Classes ---
@dataclass
class QueryExpression:
    """Base class for structured query filter expressions."""

    pass


@dataclass
class QueryFilter(QueryExpression):
    """Represents a single filter condition (field_path <operator> value)."""

    field_path: str
    operator: QueryOperator
    value: Any


@dataclass
class QueryLogical(QueryExpression):
    """Represents a logical combination (AND/OR) of expressions."""

    operator: Literal["and", "or"]
    conditions: List[QueryExpression] = field(default_factory=list)


@dataclass(frozen=True)
class QueryJoin:
    """A named join from the root entity to a related entity."""

    alias: str
    relation: Relation


# --- Query Options ---
@dataclass
class QueryOptions:
    """Back-end agnostic description of an assembled query."""

    expression: Optional[QueryExpression] = None
    joins: List[QueryJoin] = field(default_factory=list)
    sort_by: Optional[str] = None
    sort_desc: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None

    def __repr__(self) -> str:
        parts = []
        if self.expression:
            parts.append(f"expression={self.expression!r}")
        if self.joins:
            parts.append(f"joins={[j.alias for j in self.joins]!r}")
        if self.sort_by:
            parts.append(f"sort_by={self.sort_by!r}")
            parts.append(f"sort_desc={self.sort_desc!r}")
        if self.limit is not None:
            parts.append(f"limit={self.limit!r}")
        if self.offset is not None:
            parts.append(f"offset={self.offset!r}")
        return f"QueryOptions({', '.join(parts)})"

    def copy(self) -> "QueryOptions":
        """Creates a shallow copy of the QueryOptions."""
        return copy.copy(self)


# --- Query Handle ---
class CriteriaQuery:
    """
    Mutable query handle for one entity schema.

    Predicates accumulate and are combined with AND. Join aliases are
    idempotent per alias name. `build()` returns a `QueryOptions` snapshot that
    storage back ends execute.
    """

    def __init__(self, schema: EntitySchema):
        self.schema = schema
        self._conditions: List[QueryFilter] = []
        self._joins: Dict[str, QueryJoin] = {}
        self._options: Dict[str, Any] = {
            "sort_by": None,
            "sort_desc": False,
            "limit": None,
            "offset": None,
        }
        log.debug(f"New query for {schema.entity_name}")

    @property
    def conditions(self) -> Tuple[QueryFilter, ...]:
        return tuple(self._conditions)

    @property
    def aliases(self) -> Tuple[str, ...]:
        return tuple(self._joins)

    def _check_path(self, path: str) -> None:
        root, sep, _ = path.partition(FIELD_DELIMITER)
        if not sep:
            # Relation fields are only reachable through their join alias
            if isinstance(self.schema.field_kind(root), Relation):
                raise FieldNotFoundError(path, self.schema.entity_name)
        elif root not in self._joins:
            raise FieldNotFoundError(path, self.schema.entity_name)

    def add_equal(self, path: str, value: Any) -> "CriteriaQuery":
        self._check_path(path)
        self._add(QueryFilter(path, QueryOperator.EQ, value))
        return self

    def add_exists(self, path: str, exists: bool = True) -> "CriteriaQuery":
        self._check_path(path)
        self._add(QueryFilter(path, QueryOperator.EXISTS, exists))
        return self

    def add_membership(self, path: str, values: Iterable[Any]) -> "CriteriaQuery":
        self._check_path(path)
        self._add(QueryFilter(path, QueryOperator.IN, list(values)))
        return self

    def _add(self, condition: QueryFilter) -> None:
        log.debug(f"Adding filter condition: {condition!r}")
        self._conditions.append(condition)

    def add_alias(self, relation_field: str) -> str:
        """Introduces (or reuses) a join alias named after `relation_field`."""
        if relation_field in self._joins:
            log.debug(f"Reusing join alias '{relation_field}'")
            return relation_field
        relation = self.schema.relation(relation_field)
        self._joins[relation_field] = QueryJoin(alias=relation_field, relation=relation)
        log.debug(
            f"Added join alias '{relation_field}' -> {relation.target} "
            f"({relation.local_field} = {relation.remote_field})"
        )
        return relation_field

    def add_order(self, field_name: str, descending: bool = False) -> "CriteriaQuery":
        if isinstance(self.schema.field_kind(field_name), Relation):
            raise FieldNotFoundError(field_name, self.schema.entity_name)
        self._options["sort_by"] = field_name
        self._options["sort_desc"] = descending
        log.debug(f"Sort order set: field='{field_name}', descending={descending}")
        return self

    def set_limit(self, num: int) -> "CriteriaQuery":
        if not isinstance(num, int) or isinstance(num, bool) or num < 0:
            raise ValueError("Limit must be a non-negative integer.")
        self._options["limit"] = num
        log.debug(f"Query limit set to: {num}")
        return self

    def set_offset(self, num: int) -> "CriteriaQuery":
        if not isinstance(num, int) or isinstance(num, bool) or num < 0:
            raise ValueError("Offset must be a non-negative integer.")
        self._options["offset"] = num
        log.debug(f"Query offset set to: {num}")
        return self

    def build(self) -> QueryOptions:
        """Builds the final QueryOptions with all conditions combined by AND."""
        expression: Optional[QueryExpression] = None
        if len(self._conditions) == 1:
            expression = self._conditions[0]
        elif self._conditions:
            expression = QueryLogical(operator="and", conditions=list(self._conditions))

        options = QueryOptions(
            expression=expression,
            joins=list(self._joins.values()),
            sort_by=self._options["sort_by"],
            sort_desc=self._options["sort_desc"],
            limit=self._options["limit"],
            offset=self._options["offset"],
        )
        log.info(f"Built query options for {self.schema.entity_name}: {options!r}")
        return options
