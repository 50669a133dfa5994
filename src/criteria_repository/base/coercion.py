# src/criteria_repository/base/coercion.py
import logging
import math
import re
import struct
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Set

from .exceptions import NumericParseError
from .schema import EntitySchema, FieldKind, FieldType, Relation

# --- Setup Logging ---
log = logging.getLogger(__name__)

_INT_BITS: Dict[FieldKind, int] = {
    FieldKind.INT16: 16,
    FieldKind.INT32: 32,
    FieldKind.INT64: 64,
}

# Locale-invariant grammars: ASCII digits, '.' as decimal separator, no grouping.
_INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")
_FLOAT_TEXT = re.compile(
    r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|[+-]?(?:NaN|Infinity)"
)


def _wrap_to_width(value: int, bits: int) -> int:
    """Narrows an int to a signed two's-complement width."""
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _to_float32(value: float, raw: Any, kind: FieldKind) -> float:
    if math.isnan(value) or math.isinf(value):
        return value
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        raise NumericParseError(raw, kind, "out of range") from None


def _coerce_integer(raw: Any, kind: FieldKind) -> int:
    bits = _INT_BITS[kind]
    if isinstance(raw, bool):
        raise NumericParseError(raw, kind, "boolean is not numeric")
    if isinstance(raw, int):
        return _wrap_to_width(raw, bits)
    if isinstance(raw, (float, Decimal)):
        try:
            return _wrap_to_width(int(raw), bits)
        except (ValueError, OverflowError, InvalidOperation):
            raise NumericParseError(raw, kind, "not a finite number") from None
    if isinstance(raw, str):
        text = raw.strip()
        if not _INTEGER_TEXT.fullmatch(text):
            raise NumericParseError(raw, kind)
        value = int(text)
        low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        if not low <= value <= high:
            raise NumericParseError(raw, kind, "out of range")
        return value
    raise NumericParseError(raw, kind)


def _coerce_float(raw: Any, kind: FieldKind) -> float:
    if isinstance(raw, bool):
        raise NumericParseError(raw, kind, "boolean is not numeric")
    if isinstance(raw, (int, float, Decimal)):
        try:
            value = float(raw)
        except OverflowError:
            raise NumericParseError(raw, kind, "out of range") from None
    elif isinstance(raw, str):
        text = raw.strip()
        if not _FLOAT_TEXT.fullmatch(text):
            raise NumericParseError(raw, kind)
        value = float(text)
    else:
        raise NumericParseError(raw, kind)

    if kind is FieldKind.FLOAT32:
        return _to_float32(value, raw, kind)
    return value


def coerce(raw: Any, kind: FieldType) -> Any:
    """
    Converts a raw value into the typed value required by `kind`.

    Numeric kinds accept native numbers of any width (narrowed or widened) or
    their textual form. Text kinds turn native numbers into their textual form
    and pass anything else through; unrecognized kinds pass the value through
    unchanged. Relations coerce into their identifier kind.

    Raises:
        NumericParseError: If a numeric kind receives an unparsable or
            non-numeric value.
    """
    if isinstance(kind, Relation):
        kind = kind.identifier_kind
    if kind.is_integer:
        return _coerce_integer(raw, kind)
    if kind.is_float:
        return _coerce_float(raw, kind)
    if kind is FieldKind.TEXT and _is_native_number(raw):
        return str(raw)
    return raw


def _is_native_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def coerce_set(raw_values: Iterable[Any], kind: FieldType) -> List[Any]:
    """Coerces every value, then drops duplicates (first occurrence kept)."""
    result: List[Any] = []
    seen: Set[Any] = set()
    for raw in raw_values:
        value = coerce(raw, kind)
        try:
            if value in seen:
                continue
            seen.add(value)
        except TypeError:
            # Unhashable pass-through values
            if value in result:
                continue
        result.append(value)
    return result


def narrow_record(record: Dict[str, Any], schema: EntitySchema) -> Dict[str, Any]:
    """
    Rounds the FLOAT32 fields of a storage record to single precision.

    Filter values for those fields are rounded the same way, so stored and
    queried values compare equal.
    """
    narrowed = dict(record)
    for field_name, value in record.items():
        if (
            field_name in schema
            and schema.fields[field_name] is FieldKind.FLOAT32
            and isinstance(value, float)
        ):
            narrowed[field_name] = _to_float32(value, value, FieldKind.FLOAT32)
    return narrowed


class ValueCoercer:
    """Coerces raw filter values against the declared kinds of one entity schema."""

    def __init__(self, schema: EntitySchema):
        self.schema = schema

    def declared_kind(self, field_name: str) -> FieldType:
        return self.schema.field_kind(field_name)

    def coerce(self, raw: Any, kind: FieldType) -> Any:
        value = coerce(raw, kind)
        log.debug(f"Coerced {raw!r} -> {value!r} ({_kind_name(kind)})")
        return value

    def coerce_set(self, raw_values: Iterable[Any], kind: FieldType) -> List[Any]:
        return coerce_set(raw_values, kind)

    def coerce_field(self, field_name: str, raw: Any) -> Any:
        """Coerces `raw` against the declared kind of `field_name`; None is kept."""
        kind = self.declared_kind(field_name)
        if raw is None:
            return None
        return self.coerce(raw, kind)


def _kind_name(kind: FieldType) -> str:
    if isinstance(kind, Relation):
        return f"Relation({kind.identifier_kind.name})"
    return kind.name
