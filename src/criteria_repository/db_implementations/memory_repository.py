# src/criteria_repository/db_implementations/memory_repository.py

import asyncio
import copy
import itertools
import logging
from logging import LoggerAdapter
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from criteria_repository.base.coercion import narrow_record
from criteria_repository.base.exceptions import (KeyAlreadyExistsException,
                                                 ObjectNotFoundException)
from criteria_repository.base.interfaces import CriteriaRepository
from criteria_repository.base.paths import FIELD_DELIMITER
from criteria_repository.base.query import (QueryExpression, QueryFilter,
                                            QueryJoin, QueryLogical,
                                            QueryOperator, QueryOptions)
from criteria_repository.base.schema import EntitySchema
from criteria_repository.base.utils import entity_to_record

T = TypeVar("T")

Record = Dict[str, Any]


class MemoryStore:
    """
    Named in-memory tables of records keyed by identifier.

    Repositories sharing one store can join each other's tables through
    their relations.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[Any, Record]] = {}

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def create_table(self, name: str) -> None:
        self._tables.setdefault(name, {})

    def table(self, name: str) -> Dict[Any, Record]:
        """Returns the table, creating it on first use."""
        return self._tables.setdefault(name, {})

    def rows(self, name: str) -> List[Record]:
        """Returns the records of a table in insertion order; unknown tables are empty."""
        return list(self._tables.get(name, {}).values())

    def clear(self) -> None:
        self._tables.clear()


class MemoryRepository(CriteriaRepository[T], Generic[T]):
    """
    In-memory repository implementation using Python dictionaries.

    Joins behave like SQL inner joins: a root entity is returned when at least
    one combination of its related rows satisfies the filter, and it is
    returned once no matter how many combinations match.
    """

    def __init__(
        self,
        entity_cls: Type[T],
        schema: Optional[EntitySchema] = None,
        table_name: Optional[str] = None,
        store: Optional[MemoryStore] = None,
    ):
        super().__init__(schema or EntitySchema.from_model(entity_cls))
        self._entity_cls = entity_cls
        self._table_name = table_name or entity_cls.__name__.lower()
        self._store = store if store is not None else MemoryStore()
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{entity_cls.__name__}]"
        )

    @property
    def entity_type(self) -> Type[T]:
        return self._entity_cls

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def store(self) -> MemoryStore:
        return self._store

    # --- Schema ---

    async def check_schema(self, logger: LoggerAdapter) -> bool:
        exists = self._store.has_table(self._table_name)
        if exists:
            logger.info(f"Schema check PASSED for '{self._table_name}'.")
        else:
            logger.warning(f"Schema check FAILED: Table '{self._table_name}' not found.")
        return exists

    async def create_schema(self, logger: LoggerAdapter) -> None:
        self._store.create_table(self._table_name)
        logger.info(f"Schema creation/verification complete for '{self._table_name}'.")

    # --- Storage ---

    async def persist(self, entity: T, logger: LoggerAdapter) -> None:
        self.validate_entity(entity)
        record = self._entity_to_dict(entity)
        entity_id = self._record_id(record)
        table = self._store.table(self._table_name)
        if entity_id in table:
            raise KeyAlreadyExistsException(
                f"{self._entity_cls.__name__} with ID {entity_id!r} already exists"
            )
        table[entity_id] = record
        logger.debug(f"Stored {self._entity_cls.__name__} with ID {entity_id!r}")

    async def save_or_update(self, entity: T, logger: LoggerAdapter) -> None:
        self.validate_entity(entity)
        record = self._entity_to_dict(entity)
        entity_id = self._record_id(record)
        self._store.table(self._table_name)[entity_id] = record
        logger.debug(f"Saved {self._entity_cls.__name__} with ID {entity_id!r}")

    async def delete(self, entity: T, logger: LoggerAdapter) -> None:
        self.validate_entity(entity)
        entity_id = self._record_id(self._entity_to_dict(entity))
        table = self._store.table(self._table_name)
        if entity_id not in table:
            raise ObjectNotFoundException(
                f"{self._entity_cls.__name__} with ID {entity_id!r} not found for deletion."
            )
        del table[entity_id]
        logger.debug(f"Deleted {self._entity_cls.__name__} with ID {entity_id!r}")

    # --- Query execution ---

    async def _execute(self, options: QueryOptions, logger: LoggerAdapter) -> List[T]:
        logger.debug(f"Executing {self._entity_cls.__name__} query: {options!r}")
        await asyncio.sleep(0)
        matched = [
            record
            for record in self._store.rows(self._table_name)
            if self._matches_any_join(record, options)
        ]
        matched = self._sort_records(matched, options)
        start = options.offset or 0
        end = start + options.limit if options.limit is not None else None
        page = matched[start:end]
        logger.debug(
            f"Matched {len(matched)} {self._entity_cls.__name__}(s), returning {len(page)}"
        )
        return [self._dict_to_entity(record) for record in page]

    def _related_rows(self, record: Record, join: QueryJoin) -> List[Record]:
        local_value = record.get(join.relation.local_field)
        if local_value is None:
            return []
        return [
            row
            for row in self._store.rows(join.relation.target)
            if row.get(join.relation.remote_field) == local_value
        ]

    def _matches_any_join(self, record: Record, options: QueryOptions) -> bool:
        related = [self._related_rows(record, join) for join in options.joins]
        aliases = [join.alias for join in options.joins]
        for combination in itertools.product(*related):
            joined = dict(zip(aliases, combination))
            if options.expression is None or self._matches_expression(
                record, joined, options.expression
            ):
                return True
        return False

    def _matches_expression(
        self, record: Record, joined: Dict[str, Record], expr: QueryExpression
    ) -> bool:
        if isinstance(expr, QueryLogical):
            results = (
                self._matches_expression(record, joined, sub) for sub in expr.conditions
            )
            return all(results) if expr.operator == "and" else any(results)
        if isinstance(expr, QueryFilter):
            value = self._get_field_value(record, joined, expr.field_path)
            return self._check_operator(expr.operator, value, expr.value)
        raise TypeError(f"Unknown QueryExpression type: {type(expr)}")

    @staticmethod
    def _get_field_value(record: Record, joined: Dict[str, Record], path: str) -> Any:
        alias, sep, field = path.partition(FIELD_DELIMITER)
        if not sep:
            return record.get(path)
        return joined[alias].get(field)

    @staticmethod
    def _check_operator(operator: QueryOperator, entity_value: Any, filter_value: Any) -> bool:
        # Missing values never compare equal, as with SQL NULL
        if operator == QueryOperator.EQ:
            return entity_value is not None and entity_value == filter_value
        elif operator == QueryOperator.IN:
            return entity_value is not None and entity_value in filter_value
        elif operator == QueryOperator.EXISTS:
            return (entity_value is not None) == filter_value
        raise ValueError(f"Unsupported operator: {operator}")

    def _sort_records(self, records: List[Record], options: QueryOptions) -> List[Record]:
        if not options.sort_by or not records:
            return records
        sort_field = options.sort_by
        # None sorts first ascending, like NULL in SQLite
        return sorted(
            records,
            key=lambda r: (r.get(sort_field) is not None, r.get(sort_field)),
            reverse=options.sort_desc,
        )

    # --- Conversion ---

    def _record_id(self, record: Record) -> Any:
        entity_id = record.get(self.id_field)
        if entity_id is None:
            raise ValueError(
                f"Entity of type {self._entity_cls.__name__} must have its ID "
                f"field '{self.id_field}' set."
            )
        return entity_id

    def _entity_to_dict(self, entity: T) -> Record:
        return copy.deepcopy(narrow_record(entity_to_record(entity), self.schema))

    def _dict_to_entity(self, record: Record) -> T:
        return self._entity_cls(**copy.deepcopy(record))
