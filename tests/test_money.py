from decimal import Decimal

import pytest
from pydantic import BaseModel

from fulfillment.domain.money import (
    PENDING,
    TBD,
    Amount,
    Pending,
    Resolved,
    amount_or_none,
    from_wire,
    is_pending,
    quantize,
    resolved,
    to_wire,
)


class Holder(BaseModel):
    value: Amount


def test_quantize_rounds_half_up_to_cents():
    assert quantize("10.005") == Decimal("10.01")
    assert quantize(2) == Decimal("2.00")
    assert quantize(0.1) == Decimal("0.10")


def test_quantize_rejects_garbage():
    with pytest.raises(ValueError):
        quantize("ten")


@pytest.mark.parametrize("raw", [float("nan"), float("inf"), "-Infinity", Decimal("NaN"), "1e40"])
def test_quantize_rejects_non_finite_and_out_of_range(raw):
    with pytest.raises(ValueError):
        quantize(raw)


def test_wire_shape_is_number_or_tbd():
    assert to_wire(PENDING) == TBD
    assert to_wire(resolved("1525")) == 1525.0


@pytest.mark.parametrize("raw", ["TBD", "tbd", " TBD "])
def test_from_wire_accepts_tbd_in_any_case(raw):
    assert is_pending(from_wire(raw))


def test_from_wire_parses_numbers_and_numeric_strings():
    assert from_wire(12.5) == Resolved(amount=Decimal("12.50"))
    assert from_wire("99.999") == Resolved(amount=Decimal("100.00"))


@pytest.mark.parametrize("raw", [None, True])
def test_from_wire_never_accepts_null_or_bool(raw):
    with pytest.raises(ValueError):
        from_wire(raw)


def test_amount_union_discriminates_on_kind():
    assert isinstance(Holder.model_validate({"value": {"kind": "pending"}}).value, Pending)
    holder = Holder.model_validate({"value": {"kind": "resolved", "amount": "3.50"}})
    assert holder.value.amount == Decimal("3.50")
    assert amount_or_none(holder.value) == Decimal("3.50")
    assert amount_or_none(PENDING) is None
