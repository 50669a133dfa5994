# tests/base/coercion/test_value_coercion.py

import math
from decimal import Decimal

import pytest

from criteria_repository.base.coercion import (ValueCoercer, coerce, coerce_set,
                                               narrow_record)
from criteria_repository.base.exceptions import (FieldNotFoundError,
                                                 NumericParseError)
from criteria_repository.base.schema import EntitySchema, FieldKind, Relation

INTEGER_KINDS = [FieldKind.INT16, FieldKind.INT32, FieldKind.INT64]


# --- Integer kinds ---


@pytest.mark.parametrize("kind", INTEGER_KINDS)
@pytest.mark.parametrize("value", [0, 1, -1, 30, -32768, 32767])
def test_text_and_native_integers_agree(kind, value):
    assert coerce(str(value), kind) == coerce(value, kind) == value


@pytest.mark.parametrize(
    "kind, value",
    [
        (FieldKind.INT32, 2**31 - 1),
        (FieldKind.INT32, -(2**31)),
        (FieldKind.INT64, 2**63 - 1),
        (FieldKind.INT64, -(2**63)),
    ],
)
def test_text_and_native_agree_at_width_bounds(kind, value):
    assert coerce(str(value), kind) == coerce(value, kind) == value


def test_text_with_whitespace_and_sign():
    assert coerce("  42 ", FieldKind.INT32) == 42
    assert coerce("+7", FieldKind.INT16) == 7
    assert coerce("-7", FieldKind.INT64) == -7
    assert coerce("\t2.5\n", FieldKind.FLOAT64) == 2.5


@pytest.mark.parametrize(
    "raw, kind, expected",
    [
        (70000, FieldKind.INT16, 70000 - 65536),
        (2**31, FieldKind.INT32, -(2**31)),
        (2**64 + 5, FieldKind.INT64, 5),
        (-1, FieldKind.INT16, -1),
    ],
)
def test_native_integers_wrap_to_width(raw, kind, expected):
    assert coerce(raw, kind) == expected


def test_native_floats_truncate_toward_zero():
    assert coerce(3.9, FieldKind.INT32) == 3
    assert coerce(-3.9, FieldKind.INT32) == -3
    assert coerce(Decimal("12.7"), FieldKind.INT64) == 12


@pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_floats_are_not_integers(raw):
    with pytest.raises(NumericParseError):
        coerce(raw, FieldKind.INT64)


@pytest.mark.parametrize(
    "raw", ["abc", "", " ", "4 2", "1.5", "1e3", "0x10", "1_000", "١٢"]
)
def test_unparsable_integer_text(raw):
    with pytest.raises(NumericParseError) as exc_info:
        coerce(raw, FieldKind.INT32)
    assert exc_info.value.raw_value == raw
    assert exc_info.value.target_kind is FieldKind.INT32


def test_integer_text_out_of_range():
    with pytest.raises(NumericParseError):
        coerce("32768", FieldKind.INT16)
    with pytest.raises(NumericParseError):
        coerce(str(2**63), FieldKind.INT64)


@pytest.mark.parametrize("raw", [True, None, [1], object()])
def test_non_numeric_values_rejected_for_integers(raw):
    with pytest.raises(NumericParseError):
        coerce(raw, FieldKind.INT64)


# --- Float kinds ---


@pytest.mark.parametrize("value", [0.0, 1.5, -2.25, 1e10, 3.0])
def test_text_and_native_floats_agree(value):
    assert coerce(str(value), FieldKind.FLOAT64) == coerce(value, FieldKind.FLOAT64) == value


def test_float_text_forms():
    assert coerce("1", FieldKind.FLOAT64) == 1.0
    assert coerce(".5", FieldKind.FLOAT64) == 0.5
    assert coerce("2.", FieldKind.FLOAT64) == 2.0
    assert coerce("-1.5e-3", FieldKind.FLOAT64) == -0.0015
    assert math.isnan(coerce("NaN", FieldKind.FLOAT64))
    assert coerce("-Infinity", FieldKind.FLOAT64) == float("-inf")


def test_float32_rounds_to_single_precision():
    value = coerce(0.1, FieldKind.FLOAT32)
    assert value != 0.1
    assert value == pytest.approx(0.1, rel=1e-7)
    assert coerce("0.1", FieldKind.FLOAT32) == value


def test_float32_overflow():
    with pytest.raises(NumericParseError):
        coerce(1e300, FieldKind.FLOAT32)


def test_native_ints_widen_to_float():
    assert coerce(3, FieldKind.FLOAT64) == 3.0
    assert isinstance(coerce(3, FieldKind.FLOAT64), float)


@pytest.mark.parametrize("raw", ["1,5", "abc", "inf", "1.5.2", "", " ", "1 .5"])
def test_unparsable_float_text(raw):
    with pytest.raises(NumericParseError):
        coerce(raw, FieldKind.FLOAT64)


# --- Pass-through and relations ---


@pytest.mark.parametrize("kind", [FieldKind.TEXT, FieldKind.OTHER])
@pytest.mark.parametrize("raw", ["30", None, True, ["a"]])
def test_text_and_other_pass_through(kind, raw):
    assert coerce(raw, kind) is raw


def test_other_keeps_native_numbers():
    assert coerce(30, FieldKind.OTHER) == 30


@pytest.mark.parametrize(
    "raw, expected", [(30, "30"), (-2, "-2"), (1.5, "1.5"), (Decimal("2.50"), "2.50")]
)
def test_text_turns_native_numbers_into_text(raw, expected):
    assert coerce(raw, FieldKind.TEXT) == expected


def test_relation_coerces_to_identifier_kind():
    relation = Relation(FieldKind.INT64, "departments", local_field="department_id")
    assert coerce("5", relation) == 5
    text_relation = Relation(FieldKind.TEXT, "projects", local_field="project_id")
    assert coerce("p-1", text_relation) == "p-1"


# --- Sets ---


def test_coerce_set_dedups_after_coercion():
    assert coerce_set(["30", 30, " 30", "31"], FieldKind.INT32) == [30, 31]


def test_coerce_set_keeps_first_occurrence_order():
    assert coerce_set(["b", "a", "b", "c"], FieldKind.TEXT) == ["b", "a", "c"]


def test_coerce_set_handles_unhashable_pass_through():
    assert coerce_set([["a"], ["a"], ["b"]], FieldKind.OTHER) == [["a"], ["b"]]


def test_coerce_set_fails_on_any_bad_value():
    with pytest.raises(NumericParseError):
        coerce_set(["1", "x"], FieldKind.INT64)


# --- ValueCoercer ---


def test_value_coercer_declared_kind(person_schema):
    coercer = ValueCoercer(person_schema)
    assert coercer.declared_kind("age") is FieldKind.INT32
    with pytest.raises(FieldNotFoundError):
        coercer.declared_kind("salary")


def test_value_coercer_coerce_field_keeps_none(person_schema):
    coercer = ValueCoercer(person_schema)
    assert coercer.coerce_field("age", None) is None
    assert coercer.coerce_field("age", "41") == 41
    with pytest.raises(FieldNotFoundError):
        coercer.coerce_field("salary", None)


# --- Storage records ---


def test_narrow_record_rounds_float32_fields_only():
    schema = EntitySchema(
        "Reading",
        {"id": FieldKind.INT64, "weight": FieldKind.FLOAT32, "exact": FieldKind.FLOAT64},
    )
    record = {"id": 1, "weight": 0.1, "exact": 0.1, "note": 0.1}
    narrowed = narrow_record(record, schema)
    assert narrowed["weight"] == coerce("0.1", FieldKind.FLOAT32)
    assert narrowed["exact"] == 0.1
    assert narrowed["note"] == 0.1
    # The input record is left untouched
    assert record["weight"] == 0.1


def test_narrow_record_keeps_missing_values():
    schema = EntitySchema("Reading", {"id": FieldKind.INT64, "weight": FieldKind.FLOAT32})
    assert narrow_record({"id": 1, "weight": None}, schema) == {"id": 1, "weight": None}
