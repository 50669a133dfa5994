# src/criteria_repository/base/interfaces.py

from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import Any, Generic, Iterable, List, Mapping, Optional, Type, TypeVar

from criteria_repository.base.coercion import coerce
from criteria_repository.base.criteria import CriteriaAssembler
from criteria_repository.base.exceptions import NullParamError
from criteria_repository.base.params import FieldHolder, QueryParams
from criteria_repository.base.query import QueryOptions
from criteria_repository.base.schema import EntitySchema

# Type variable for any entity
T = TypeVar("T")


class CriteriaRepository(Generic[T], ABC):
    """
    Base data-access component that turns untyped filter criteria into typed
    queries.

    Subclasses provide storage (`persist`, `save_or_update`, `delete`), schema
    set-up and `_execute`, which runs a built `QueryOptions` and returns root
    entities deduplicated before pagination. Criteria resolution, coercion and
    query assembly happen here, so any failure aborts the request before the
    storage back end is reached.
    """

    def __init__(self, schema: EntitySchema):
        """
        Args:
            schema: Field kinds and relations of the managed entity. Built once
                (see `EntitySchema.from_model`) and never mutated.
        """
        if not isinstance(schema, EntitySchema):
            raise TypeError("schema must be an instance of EntitySchema")
        self._schema = schema
        self._assembler = CriteriaAssembler(schema)

    @property
    @abstractmethod
    def entity_type(self) -> Type[T]:
        """The entity type this repository manages."""
        pass

    @property
    def schema(self) -> EntitySchema:
        return self._schema

    @property
    def id_field(self) -> str:
        return self._schema.identifier

    # --- Initialization and Schema Management ---

    async def initialize(
        self,
        logger: LoggerAdapter,
        create_schema_if_needed: bool = False,
    ) -> None:
        """
        Orchestrates optional, explicit repository setup.

        Call `check_schema` separately if you only want to verify existing
        structures without modifying them.
        """
        logger.info(
            f"Initializing repository setup for {self.entity_type.__name__} "
            f"(Create Schema: {create_schema_if_needed})"
        )
        if create_schema_if_needed:
            await self.create_schema(logger)
        logger.info(
            f"Repository explicit setup complete for {self.entity_type.__name__}."
        )

    @abstractmethod
    async def check_schema(self, logger: LoggerAdapter) -> bool:
        """
        Check if the storage structure for the entity exists. Non-destructive.

        Returns:
            True if the schema seems to exist, False otherwise.
        """
        pass

    @abstractmethod
    async def create_schema(self, logger: LoggerAdapter) -> None:
        """Create the storage structure for the entity if missing. Idempotent."""
        pass

    # --- Storage ---

    @abstractmethod
    async def persist(self, entity: T, logger: LoggerAdapter) -> None:
        """
        Store a new entity.

        Raises:
            ValueError: If the entity is not of the expected type.
            KeyAlreadyExistsException: If an entity with the same ID already exists.
        """
        pass

    @abstractmethod
    async def save_or_update(self, entity: T, logger: LoggerAdapter) -> None:
        """Insert the entity, or fully replace the stored one with the same ID."""
        pass

    @abstractmethod
    async def delete(self, entity: T, logger: LoggerAdapter) -> None:
        """
        Delete the stored entity with the same ID.

        Raises:
            ObjectNotFoundException: If no entity with that ID exists.
        """
        pass

    @abstractmethod
    async def _execute(self, options: QueryOptions, logger: LoggerAdapter) -> List[T]:
        """
        Run built query options and return the matching root entities.

        Join fan-out must never yield the same root twice, and duplicates are
        removed before offset/limit are applied.
        """
        pass

    # --- Queries ---

    async def get_all(self, logger: LoggerAdapter) -> List[T]:
        """Return every stored entity."""
        logger.debug(f"Getting all {self.entity_type.__name__}(s)")
        return await self._execute(QueryOptions(), logger)

    async def get_by_id(self, id: Any, logger: LoggerAdapter) -> Optional[T]:
        """
        Return the entity with the given identifier, or None.

        `id` may be raw text or any native number; it is coerced into the
        declared kind of the identifier field first.
        """
        if id is None:
            raise NullParamError("id")
        value = coerce(id, self._schema.identifier_kind)
        query = self._assembler.new_query()
        query.add_equal(self._schema.identifier, value).set_limit(1)
        logger.debug(f"Getting {self.entity_type.__name__} by ID {value!r}")
        found = await self._execute(query.build(), logger)
        return found[0] if found else None

    async def get_by_props(
        self, props: Mapping[str, Iterable[Any]], logger: LoggerAdapter
    ) -> List[T]:
        """
        Filter by a map of field name -> candidate values.

        Simple fields match any of their (coerced, deduplicated) values; an
        empty value list leaves the field unfiltered. A name such as
        ``"department.id"``, or a field declared as a relation, joins the
        related entity and must carry exactly one value. All fields combine
        with AND.
        """
        query = self._assembler.new_query()
        self._assembler.assemble_props(query, props)
        results = await self._execute(query.build(), logger)
        logger.info(
            f"get_by_props on {self.entity_type.__name__} returned {len(results)} result(s)"
        )
        return results

    async def get_by_fields(
        self, field_holders: Iterable[FieldHolder], logger: LoggerAdapter
    ) -> List[T]:
        """
        Filter by single-valued holders combined with AND.

        Relation handling is chosen by each holder's `is_relation_id` flag. An
        empty collection returns an empty list without querying.
        """
        if field_holders is None:
            raise NullParamError("fieldHolders")
        holders = list(field_holders)
        if not holders:
            logger.debug("No field holders supplied, returning empty result.")
            return []
        query = self._assembler.new_query()
        self._assembler.assemble_holders(query, holders)
        results = await self._execute(query.build(), logger)
        logger.info(
            f"get_by_fields on {self.entity_type.__name__} returned {len(results)} result(s)"
        )
        return results

    async def universal_query(
        self,
        props: Mapping[str, Iterable[Any]],
        query_params: QueryParams,
        logger: LoggerAdapter,
    ) -> List[T]:
        """
        `get_by_props` with ordering and pagination.

        Ordering is applied only when `query_params.sort_by` is set (ascending
        unless `order_type` is DESC). `start` and `limit` count distinct root
        entities.
        """
        if query_params is None:
            raise NullParamError("queryParams")
        query = self._assembler.new_query()
        self._assembler.assemble_props(query, props)
        self._assembler.apply_query_params(query, query_params)
        results = await self._execute(query.build(), logger)
        logger.info(
            f"universal_query on {self.entity_type.__name__} returned {len(results)} result(s)"
        )
        return results

    # --- Helper Methods ---

    def validate_entity(self, entity: T) -> None:
        """
        Basic validation that an entity instance is of the expected type.

        Raises:
            ValueError: If the entity is not an instance of `self.entity_type`.
        """
        if not isinstance(entity, self.entity_type):
            raise ValueError(
                f"Entity must be of type {self.entity_type.__name__}, "
                f"but received {type(entity).__name__}"
            )
