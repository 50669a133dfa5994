from dataclasses import asdict, is_dataclass
from typing import Any, Dict, Optional, Tuple, Union, get_args, get_origin

from pydantic import BaseModel


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert pydantic models, dataclasses, and special types to
    plain containers.

    Pydantic models are dumped by alias, dataclasses through `asdict`; dicts,
    lists, tuples and sets are processed item by item (sets become lists).
    Pydantic URL types become strings. Anything else is returned as-is.
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if isinstance(data, BaseModel):
        return prepare_for_storage(data.model_dump(by_alias=True))

    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, list):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, tuple):
        return tuple(prepare_for_storage(item) for item in data)

    if isinstance(data, set):
        return [prepare_for_storage(item) for item in data]

    if data.__class__.__module__ == "pydantic.networks":
        return str(data)

    return data


def entity_to_record(entity: Any) -> Dict[str, Any]:
    """Converts an entity into a flat dict of its public fields."""
    data = prepare_for_storage(entity)
    if not isinstance(data, dict):
        if hasattr(entity, "__dict__"):
            data = prepare_for_storage(dict(vars(entity)))
        else:
            raise TypeError(
                f"Cannot convert {type(entity).__name__} into a storage record"
            )
    return {k: v for k, v in data.items() if not k.startswith("_")}


def unwrap_optional(hint: Any) -> Tuple[Any, bool]:
    """Returns (inner type, is_optional) for ``Optional[X]``; other hints are unchanged."""
    if get_origin(hint) is Union:
        args = get_args(hint)
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) < len(args):
            inner: Optional[Any] = non_none[0] if len(non_none) == 1 else Union[tuple(non_none)]
            return inner, True
    return hint, False
