from typing import Any


class ObjectNotFoundException(Exception):
    """Exception raised when an object with the specified identifier does not exist."""

    def __init__(self, message: str = "The requested object was not found."):
        super().__init__(message)


class KeyAlreadyExistsException(Exception):
    """Exception raised when trying to insert an entity that would violate a unique constraint."""

    def __init__(self, message: str = "An object with the same key already exists."):
        super().__init__(message)


# --- Criteria Errors ---
class CriteriaError(ValueError):
    """Base class for errors raised while turning raw criteria into predicates."""


class FieldNotFoundError(CriteriaError, AttributeError):
    """Error raised when a field name does not exist in the entity schema."""

    def __init__(self, field_name: str, entity_name: str = ""):
        self.field_name = field_name
        self.entity_name = entity_name
        where = f" in entity '{entity_name}'" if entity_name else ""
        super().__init__(f"Cannot find field name: '{field_name}'{where}")


class NumericParseError(CriteriaError, TypeError):
    """Error raised when a raw value cannot be coerced into a numeric field kind."""

    def __init__(self, raw_value: Any, target_kind: Any, reason: str = ""):
        self.raw_value = raw_value
        self.target_kind = target_kind
        kind_name = getattr(target_kind, "name", str(target_kind))
        msg = f"Cannot convert {raw_value!r} ({type(raw_value).__name__}) to {kind_name}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class MultiValueRelationError(CriteriaError):
    """Error raised when a relation filter does not carry exactly one value."""

    def __init__(self, field_name: str, count: int):
        self.field_name = field_name
        self.count = count
        super().__init__(
            f"For relation field '{field_name}' must be only one value, for create "
            f"join query (got {count})"
        )


class InvalidFieldPathError(CriteriaError):
    """Error raised when a field path is empty or malformed."""

    def __init__(self, field_name: Any):
        self.field_name = field_name
        super().__init__(f"Invalid field path: {field_name!r}")


class NullParamError(CriteriaError, TypeError):
    """Error raised when a required parameter is None."""

    def __init__(self, param_name: str):
        self.param_name = param_name
        super().__init__(f"Param '{param_name}' cannot be null")
