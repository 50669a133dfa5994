# src/criteria_repository/base/params.py
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class OrderType(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _check_non_negative(name: str, value: Optional[int]) -> None:
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError(f"'{name}' must be a non-negative integer, got {value!r}")


@dataclass
class QueryParams:
    """Ordering and pagination for `universal_query`."""

    sort_by: Optional[str] = None
    order_type: Optional[OrderType] = None
    start: Optional[int] = None
    limit: Optional[int] = None

    def __post_init__(self):
        _check_non_negative("start", self.start)
        _check_non_negative("limit", self.limit)

    @property
    def descending(self) -> bool:
        return self.order_type == OrderType.DESC


@dataclass
class FieldHolder:
    """
    A single-valued filter with an explicit relation flag.

    Unlike the map-based filters, relation handling is chosen by
    `is_relation_id` rather than by a delimiter in `field_name`.
    """

    field_name: str
    value: Any
    is_relation_id: bool = False
