# src/criteria_repository/base/schema.py
"""
Static per-entity metadata.

An `EntitySchema` maps every filterable field name of an entity to its declared
kind: a `FieldKind` for scalar columns, or a `Relation` for a one-level
reference to another entity. Schemas are built once at start-up (explicitly or
from a model's type hints) and never mutated afterwards, so coercion becomes a
pure function of schema + raw value.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import (
    Annotated,
    Any,
    ClassVar,
    Dict,
    Iterator,
    Mapping,
    Optional,
    Type,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from .exceptions import FieldNotFoundError

log = logging.getLogger(__name__)


def _is_none_type(t: Optional[Type]) -> bool:
    return t is type(None)


class FieldKind(Enum):
    """Declared value kind of a scalar field."""

    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    TEXT = "text"
    # Anything the coercer does not know (bool, datetime, JSON...). Passes through.
    OTHER = "other"

    @property
    def is_integer(self) -> bool:
        return self in (FieldKind.INT16, FieldKind.INT32, FieldKind.INT64)

    @property
    def is_float(self) -> bool:
        return self in (FieldKind.FLOAT32, FieldKind.FLOAT64)

    @property
    def is_numeric(self) -> bool:
        return self.is_integer or self.is_float


@dataclass(frozen=True)
class Relation:
    """
    Declared kind of a relation field.

    The join links ``root.local_field`` to ``target.remote_field``; filters on
    the relation compare ``<alias>.<identifier>`` against a value coerced to
    ``identifier_kind``.

    Many-to-one (person.department):
        Relation(FieldKind.INT64, "departments", local_field="department_id")
    One-to-many (department.people):
        Relation(FieldKind.INT64, "persons", local_field="id",
                 remote_field="department_id")
    """

    identifier_kind: FieldKind
    target: str
    local_field: str
    remote_field: str = "id"
    identifier: str = "id"

    def __post_init__(self):
        if not isinstance(self.identifier_kind, FieldKind):
            raise TypeError(
                f"Relation identifier_kind must be a FieldKind, got {self.identifier_kind!r}"
            )


FieldType = Union[FieldKind, Relation]

_HINT_KINDS: Dict[Any, FieldKind] = {
    int: FieldKind.INT64,
    float: FieldKind.FLOAT64,
    str: FieldKind.TEXT,
}


def kind_from_hint(hint: Any) -> FieldKind:
    """
    Maps a type hint to a FieldKind.

    ``Optional[...]`` is unwrapped; ``Annotated[int, FieldKind.INT16]`` selects
    an explicit width. Unknown types map to ``FieldKind.OTHER``.
    """
    current = hint
    while True:
        origin = get_origin(current)
        args = get_args(current)
        if origin is Annotated:
            for meta in current.__metadata__:
                if isinstance(meta, FieldKind):
                    return meta
            current = args[0]
            continue
        if origin is Union:
            non_none = [a for a in args if not _is_none_type(a)]
            if len(non_none) == 1:
                current = non_none[0]
                continue
            return FieldKind.OTHER
        break
    return _HINT_KINDS.get(current, FieldKind.OTHER)


def model_type_hints(model: Type[Any], include_extras: bool = False) -> Dict[str, Any]:
    """
    Type hints of a model's fields.

    Pydantic models are read from `model_fields` (field metadata is re-attached
    as ``Annotated`` when `include_extras` is set); other classes go through
    `get_type_hints`.
    """
    model_fields = getattr(model, "model_fields", None)
    if model_fields is None:
        return get_type_hints(model, include_extras=include_extras)
    hints: Dict[str, Any] = {}
    for field_name, info in model_fields.items():
        hint = info.annotation
        if include_extras and info.metadata:
            hint = Annotated[(hint, *info.metadata)]
        hints[field_name] = hint
    return hints


class EntitySchema:
    """Immutable mapping of field name -> FieldKind | Relation for one entity."""

    __slots__ = ("_entity_name", "_fields", "_identifier")

    def __init__(
        self,
        entity_name: str,
        fields: Mapping[str, FieldType],
        identifier: str = "id",
    ):
        for name, kind in fields.items():
            if not isinstance(kind, (FieldKind, Relation)):
                raise TypeError(
                    f"Field '{name}' of {entity_name} must be a FieldKind or Relation, "
                    f"got {type(kind).__name__}"
                )
        if identifier not in fields:
            raise ValueError(
                f"Identifier field '{identifier}' is not declared in schema {entity_name}"
            )
        if isinstance(fields[identifier], Relation):
            raise ValueError(f"Identifier field '{identifier}' cannot be a relation")
        object.__setattr__(self, "_entity_name", entity_name)
        object.__setattr__(self, "_fields", MappingProxyType(dict(fields)))
        object.__setattr__(self, "_identifier", identifier)
        log.debug(f"Built schema for {entity_name}: {dict(fields)!r}")

    def __setattr__(self, name: str, value: Any):
        raise AttributeError("EntitySchema is immutable.")

    @property
    def entity_name(self) -> str:
        return self._entity_name

    @property
    def fields(self) -> Mapping[str, FieldType]:
        return self._fields

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def identifier_kind(self) -> FieldKind:
        return self._fields[self._identifier]

    def field_kind(self, field_name: str) -> FieldType:
        """Returns the declared kind of `field_name` or raises FieldNotFoundError."""
        try:
            return self._fields[field_name]
        except (KeyError, TypeError):
            raise FieldNotFoundError(field_name, self._entity_name) from None

    def relation(self, field_name: str) -> Relation:
        """Returns the Relation declared for `field_name`; scalar fields are not found."""
        kind = self.field_kind(field_name)
        if not isinstance(kind, Relation):
            raise FieldNotFoundError(field_name, self._entity_name)
        return kind

    def relations(self) -> Dict[str, Relation]:
        return {n: k for n, k in self._fields.items() if isinstance(k, Relation)}

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return (
            f"EntitySchema({self._entity_name!r}, identifier={self._identifier!r}, "
            f"fields={dict(self._fields)!r})"
        )

    @classmethod
    def from_model(
        cls,
        model: Type[Any],
        identifier: str = "id",
        relations: Optional[Mapping[str, Relation]] = None,
        name: Optional[str] = None,
    ) -> "EntitySchema":
        """
        Builds a schema from a model's type hints.

        For pydantic models only declared model fields are considered; for
        plain classes every public annotation is. `relations` adds relation
        fields (or overrides hinted ones).
        """
        entity_name = name or model.__name__
        try:
            hints = model_type_hints(model, include_extras=True)
        except Exception as e:
            raise TypeError(f"Could not get hints for {entity_name}: {e}") from e

        fields: Dict[str, FieldType] = {}
        for field_name, hint in hints.items():
            if field_name.startswith("_") or get_origin(hint) is ClassVar:
                continue
            fields[field_name] = kind_from_hint(hint)

        for field_name, relation in (relations or {}).items():
            fields[field_name] = relation

        return cls(entity_name, fields, identifier=identifier)
