# src/criteria_repository/db_implementations/sqlite_repository.py

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import is_dataclass
from datetime import date, datetime
from logging import LoggerAdapter
from typing import (Any, AsyncGenerator, Dict, Generic, List, Mapping,
                    Optional, Tuple, Type, TypeVar, get_origin)

# --- aiosqlite Driver Import ---
import aiosqlite

# --- Framework Imports ---
from criteria_repository.base.coercion import narrow_record
from criteria_repository.base.exceptions import (KeyAlreadyExistsException,
                                                 ObjectNotFoundException)
from criteria_repository.base.interfaces import CriteriaRepository
from criteria_repository.base.paths import FIELD_DELIMITER
from criteria_repository.base.query import (QueryExpression, QueryFilter,
                                            QueryLogical, QueryOperator,
                                            QueryOptions)
from criteria_repository.base.schema import (EntitySchema, FieldKind, Relation,
                                             model_type_hints)
from criteria_repository.base.utils import entity_to_record, unwrap_optional

# --- Type Variables ---
T = TypeVar("T")

# Alias of the root table in generated SELECTs; join aliases are relation field names
ROOT_ALIAS = "__root"

_COLUMN_TYPES = {
    FieldKind.INT16: "INTEGER",
    FieldKind.INT32: "INTEGER",
    FieldKind.INT64: "INTEGER",
    FieldKind.FLOAT32: "REAL",
    FieldKind.FLOAT64: "REAL",
    FieldKind.TEXT: "TEXT",
}


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _is_complex_type(hint: Any) -> bool:
    origin = get_origin(hint)
    if origin in (list, dict, set, tuple, Mapping):
        return True
    return isinstance(hint, type) and (
        issubclass(hint, (list, dict, set, tuple))
        or is_dataclass(hint)
        or hasattr(hint, "model_dump")
    )


class SqliteRepository(CriteriaRepository[T], Generic[T]):
    """
    SQLite repository implementation using aiosqlite.

    This repository expects an active `aiosqlite.Connection` to be provided
    during initialization; the caller owns its lifecycle and transaction
    boundaries (commit/rollback).

    Relation filters are executed as ``SELECT DISTINCT`` over INNER JOINs of
    the related tables (named by `Relation.target`), so every root row is
    returned once and LIMIT/OFFSET count distinct roots.

    Complex values (lists, dicts, nested models) are stored as JSON text,
    booleans as 0/1 and datetime/date values as ISO 8601 text.
    """

    # --- Initialization ---
    def __init__(
        self,
        db_connection: aiosqlite.Connection,
        table_name: str,
        entity_type: Type[T],
        schema: Optional[EntitySchema] = None,
    ):
        """
        Args:
            db_connection: An active aiosqlite.Connection object managed externally.
            table_name: The name of the database table.
            entity_type: The Python class representing the entity.
            schema: Field kinds and relations; derived from `entity_type` when omitted.
        """
        if not isinstance(db_connection, aiosqlite.Connection):
            raise TypeError(
                "db_connection must be an instance of aiosqlite.Connection"
            )
        super().__init__(schema or EntitySchema.from_model(entity_type))

        self._conn = db_connection
        # Ensure connection uses dict-like rows for convenience
        self._conn.row_factory = aiosqlite.Row

        self._table_name = table_name
        self._entity_type = entity_type
        self._hints = self._resolve_hints(entity_type)

        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{entity_type.__name__}]"
        )
        self._logger.info(
            f"Repository instance created for {entity_type.__name__} using table "
            f"'{table_name}' (ID Field: '{self.id_field}')."
        )

    @staticmethod
    def _resolve_hints(entity_type: Type[Any]) -> Dict[str, Any]:
        try:
            return model_type_hints(entity_type)
        except Exception as e:
            raise TypeError(
                f"Could not get type hints for {entity_type.__name__}: {e}"
            ) from e

    @property
    def entity_type(self) -> Type[T]:
        return self._entity_type

    @property
    def table_name(self) -> str:
        return self._table_name

    # --- Connection/Session Management ---
    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """
        Provides the externally managed connection within a context.
        Does NOT handle commit/rollback; expects the caller to manage it.
        """
        try:
            yield self._conn
        except Exception as e:
            self._logger.error(
                f"Error during repository operation within external transaction: {e}",
                exc_info=True,
            )
            raise

    # --- Schema ---

    def _columns(self) -> Dict[str, Any]:
        """Stored columns (scalar schema fields) mapped to their type hint."""
        return {
            name: self._hints.get(name, Any)
            for name, kind in self.schema.fields.items()
            if not isinstance(kind, Relation)
        }

    async def check_schema(self, logger: LoggerAdapter) -> bool:
        """Check if the table exists."""
        logger.info(f"Checking schema for '{self._table_name}'...")
        try:
            async with self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?;",
                (self._table_name,),
            ) as cursor:
                exists = await cursor.fetchone() is not None
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"checking schema for {self._table_name}")
        if exists:
            logger.info(f"Schema check PASSED for '{self._table_name}'.")
        else:
            logger.warning(
                f"Schema check FAILED: Table '{self._table_name}' not found."
            )
        return exists

    def _column_definition(self, name: str, hint: Any) -> str:
        actual_type, is_optional = unwrap_optional(hint)
        kind = self.schema.field_kind(name)
        if kind in _COLUMN_TYPES:
            col_type = _COLUMN_TYPES[kind]
        elif actual_type is bool:
            col_type = "INTEGER"
        elif actual_type is bytes:
            col_type = "BLOB"
        else:
            # datetime/date as ISO text, complex types as JSON text
            col_type = "TEXT"

        if name == self.id_field:
            return f"{_quote(name)} {col_type} PRIMARY KEY NOT NULL"
        if not is_optional and actual_type is not Any:
            col_type += " NOT NULL"
        return f"{_quote(name)} {col_type}"

    async def create_schema(self, logger: LoggerAdapter) -> None:
        """Explicitly create the table if it doesn't exist, inferring columns from the schema."""
        logger.info(f"Attempting to create schema (table '{self._table_name}')...")
        cols_def = [
            self._column_definition(name, hint)
            for name, hint in self._columns().items()
        ]
        create_sql = (
            f"CREATE TABLE IF NOT EXISTS {_quote(self._table_name)} "
            f"({', '.join(cols_def)})"
        )
        logger.debug(f"Schema creation SQL: {create_sql}")
        try:
            async with self._get_session() as conn:
                await conn.execute(create_sql)
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"creating schema for {self._table_name}")
        logger.info(f"Schema creation/verification complete for '{self._table_name}'.")

    # --- Storage ---

    async def persist(self, entity: T, logger: LoggerAdapter) -> None:
        """Insert a new row for the entity."""
        self.validate_entity(entity)
        db_data = self._serialize_entity(entity)
        entity_id = db_data[self.id_field]
        cols = ", ".join(_quote(k) for k in db_data)
        placeholders = ", ".join(["?"] * len(db_data))
        query = f"INSERT INTO {_quote(self._table_name)} ({cols}) VALUES ({placeholders})"
        logger.debug(f"Storing new {self._entity_type.__name__} with ID {entity_id!r}")
        try:
            async with self._get_session() as conn:
                await conn.execute(query, tuple(db_data.values()))
        except aiosqlite.IntegrityError as e:
            if (
                "UNIQUE constraint failed" in str(e)
                and f"{self._table_name}.{self.id_field}" in str(e)
            ):
                logger.warning(
                    f"Failed to store {self._entity_type.__name__}: ID {entity_id!r} "
                    f"already exists. Details: {e}"
                )
                raise KeyAlreadyExistsException(
                    f"Entity with ID '{entity_id}' already exists."
                ) from e
            self._handle_db_error(e, f"storing entity ID {entity_id}")
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"storing entity ID {entity_id}")
        logger.info(
            f"Stored new {self._entity_type.__name__} with ID {entity_id!r}. "
            f"(Commit handled externally)"
        )

    async def save_or_update(self, entity: T, logger: LoggerAdapter) -> None:
        """Insert or fully replace the row for the entity (using ON CONFLICT)."""
        self.validate_entity(entity)
        db_data = self._serialize_entity(entity)
        entity_id = db_data[self.id_field]
        cols = ", ".join(_quote(k) for k in db_data)
        placeholders = ", ".join(["?"] * len(db_data))
        updates = ", ".join(
            f"{_quote(k)} = excluded.{_quote(k)}" for k in db_data if k != self.id_field
        )
        query = (
            f"INSERT INTO {_quote(self._table_name)} ({cols}) VALUES ({placeholders}) "
            f"ON CONFLICT({_quote(self.id_field)}) "
        )
        query += f"DO UPDATE SET {updates}" if updates else "DO NOTHING"
        logger.debug(f"Upserting {self._entity_type.__name__} with ID {entity_id!r}")
        try:
            async with self._get_session() as conn:
                await conn.execute(query, tuple(db_data.values()))
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"upserting entity ID {entity_id}")
        logger.info(f"Upserted {self._entity_type.__name__} with ID {entity_id!r}.")

    async def delete(self, entity: T, logger: LoggerAdapter) -> None:
        """Delete the row with the entity's ID."""
        self.validate_entity(entity)
        entity_id = self._serialize_entity(entity)[self.id_field]
        query = f"DELETE FROM {_quote(self._table_name)} WHERE {_quote(self.id_field)} = ?"
        try:
            async with self._get_session() as conn:
                cursor = await conn.execute(query, (entity_id,))
                affected_count = cursor.rowcount
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"deleting entity ID {entity_id}")
        if affected_count == 0:
            raise ObjectNotFoundException(
                f"{self._entity_type.__name__} with ID '{entity_id}' not found for deletion."
            )
        logger.info(f"Deleted {self._entity_type.__name__} with ID {entity_id!r}.")

    # --- Query execution ---

    async def _execute(self, options: QueryOptions, logger: LoggerAdapter) -> List[T]:
        sql, params = self._build_select(options)
        logger.debug(f"Executing query: SQL='{sql}', Params={params}")
        try:
            async with self._get_session() as conn:
                async with conn.execute(sql, tuple(params)) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"querying {self._table_name}")
        return [self._deserialize_record(row) for row in rows]

    def _build_select(self, options: QueryOptions) -> Tuple[str, List[Any]]:
        root = _quote(ROOT_ALIAS)
        sql = f"SELECT DISTINCT {root}.* FROM {_quote(self._table_name)} AS {root}"
        for join in options.joins:
            relation = join.relation
            alias = _quote(join.alias)
            sql += (
                f" INNER JOIN {_quote(relation.target)} AS {alias}"
                f" ON {root}.{_quote(relation.local_field)} = {alias}.{_quote(relation.remote_field)}"
            )

        params: List[Any] = []
        if options.expression is not None:
            where, params = self._translate_expression_recursive(options.expression)
            if where and where != "1=1":
                sql += f" WHERE {where}"

        if options.sort_by:
            direction = "DESC" if options.sort_desc else "ASC"
            sql += f" ORDER BY {root}.{_quote(options.sort_by)} {direction}"

        if options.limit is not None or options.offset:
            # SQLite needs a LIMIT clause for OFFSET; -1 means unbounded
            sql += " LIMIT ?"
            params.append(options.limit if options.limit is not None else -1)
            if options.offset:
                sql += " OFFSET ?"
                params.append(options.offset)
        return sql, params

    @staticmethod
    def _column_ref(field_path: str) -> str:
        alias, sep, field = field_path.partition(FIELD_DELIMITER)
        if not sep:
            return f"{_quote(ROOT_ALIAS)}.{_quote(field_path)}"
        return f"{_quote(alias)}.{_quote(field)}"

    @staticmethod
    def _to_param(value: Any) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    def _translate_expression_recursive(
        self, expression: QueryExpression
    ) -> Tuple[str, List[Any]]:
        """Recursively translates QueryExpression nodes into SQLite WHERE clause + params."""
        if isinstance(expression, QueryFilter):
            column = self._column_ref(expression.field_path)
            op = expression.operator
            val = expression.value

            if op == QueryOperator.EXISTS:
                return f"{column} {'IS NOT NULL' if val else 'IS NULL'}", []
            elif op == QueryOperator.IN:
                if not isinstance(val, (list, tuple)):
                    raise ValueError(f"Value for {op} operator must be a list or tuple, got {type(val)}")
                if not val:
                    return "0=1", []
                placeholders = ", ".join(["?"] * len(val))
                return f"{column} IN ({placeholders})", [self._to_param(v) for v in val]
            elif op == QueryOperator.EQ:
                return f"{column} = ?", [self._to_param(val)]
            raise ValueError(f"Unsupported query operator for SQLite translation: {op}")

        elif isinstance(expression, QueryLogical):
            if not expression.conditions:
                return "1=1", []
            sql_fragments = []
            all_params: List[Any] = []
            for cond in expression.conditions:
                fragment, params = self._translate_expression_recursive(cond)
                sql_fragments.append(f"({fragment})")
                all_params.extend(params)
            return f" {expression.operator.upper()} ".join(sql_fragments), all_params
        else:
            raise TypeError(
                f"Unknown QueryExpression type encountered during translation: {type(expression)}"
            )

    # --- Conversion ---

    def _serialize_entity(self, entity: T) -> Dict[str, Any]:
        """Converts the entity object into a dictionary suitable for SQLite storage."""
        data = narrow_record(entity_to_record(entity), self.schema)
        columns = self._columns()
        serialized: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in columns:
                continue
            if value is None:
                serialized[key] = None
            elif isinstance(value, (dict, list, tuple, set)):
                serialized[key] = json.dumps(list(value) if isinstance(value, set) else value)
            else:
                serialized[key] = self._to_param(value)

        if serialized.get(self.id_field) is None:
            raise ValueError(
                f"Entity of type {self._entity_type.__name__} must have its ID "
                f"field '{self.id_field}' set."
            )
        return serialized

    def _deserialize_record(self, record_data: aiosqlite.Row) -> T:
        """Converts an aiosqlite.Row (dict-like) into an entity object T."""
        processed: Dict[str, Any] = {}
        for key, value in dict(record_data).items():
            actual_type, _ = unwrap_optional(self._hints.get(key, Any))
            if value is None:
                processed[key] = None
            elif isinstance(value, str) and _is_complex_type(actual_type):
                try:
                    processed[key] = json.loads(value)
                except json.JSONDecodeError:
                    self._logger.warning(
                        f"Failed to JSON decode TEXT field '{key}'. Falling back to raw string value."
                    )
                    processed[key] = value
            elif isinstance(value, int) and actual_type is bool:
                processed[key] = bool(value)
            elif isinstance(value, str) and actual_type is datetime:
                processed[key] = datetime.fromisoformat(value)
            elif isinstance(value, str) and actual_type is date:
                processed[key] = date.fromisoformat(value)
            else:
                processed[key] = value
        try:
            return self._entity_type(**processed)
        except Exception as e:
            self._logger.error(
                f"Failed to instantiate {self._entity_type.__name__} from DB data: {e}. "
                f"Data: {processed!r}",
                exc_info=True,
            )
            raise ValueError(
                f"Failed to create {self._entity_type.__name__} instance from record"
            ) from e

    def _handle_db_error(self, error: Exception, context: str = "") -> None:
        """Maps database errors to repository exceptions and raises them."""
        self._logger.error(f"Error during {context}: {error}", exc_info=True)

        if isinstance(error, aiosqlite.IntegrityError):
            raise ValueError(
                f"Database integrity constraint violated during {context}. Detail: {error}"
            ) from error
        elif isinstance(error, aiosqlite.OperationalError):
            if "no such table" in str(error):
                raise RuntimeError(
                    f"Table missing during {context}; call create_schema or "
                    f"initialize(create_schema_if_needed=True) first. Error: {error}"
                ) from error
            if "incomplete input" in str(error):
                raise ValueError(
                    f"Incomplete SQL input during {context}. This likely indicates a "
                    f"syntax error in the generated SQL query. Error: {error}"
                ) from error
            raise RuntimeError(
                f"Database operational error during {context}: {error}"
            ) from error
        elif isinstance(error, aiosqlite.NotSupportedError):
            raise NotImplementedError(
                f"Operation not supported by SQLite during {context}: {error}"
            ) from error
        elif isinstance(error, aiosqlite.ProgrammingError):
            raise ValueError(
                f"Database programming error during {context} (likely bad SQL or params): {error}"
            ) from error
        raise RuntimeError(f"An unexpected error occurred during {context}") from error
