"""Money values and the resolved-or-pending amount union.

Delivery cost (and therefore the order total) can be unknown when an order
is placed. Such fields hold ``Pending`` until the fee is resolved, never a
bare string or ``None``; on the wire the pending state is the literal
``"TBD"``.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

TBD = "TBD"
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize(value) -> Decimal:
    """Coerce ``value`` to a 2-place Decimal."""
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid money value: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Money value must be finite: {value!r}")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Money value out of range: {value!r}") from exc


class Resolved(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["resolved"] = "resolved"
    amount: Decimal

    def __str__(self) -> str:
        return str(self.amount)


class Pending(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"

    def __str__(self) -> str:
        return TBD


Amount = Annotated[Union[Resolved, Pending], Field(discriminator="kind")]

PENDING = Pending()


def resolved(value) -> Resolved:
    return Resolved(amount=quantize(value))


def is_pending(value) -> bool:
    return isinstance(value, Pending)


def amount_or_none(value) -> Union[Decimal, None]:
    if isinstance(value, Resolved):
        return value.amount
    return None


def to_wire(value) -> Union[float, str]:
    if isinstance(value, Pending):
        return TBD
    if isinstance(value, Resolved):
        return float(value.amount)
    raise TypeError(f"Not an amount: {value!r}")


def from_wire(raw) -> Union[Resolved, Pending]:
    """Parse the persisted/wire shape: a number, numeric string or ``"TBD"``."""
    if isinstance(raw, (Resolved, Pending)):
        return raw
    if raw is None:
        raise ValueError("Amount cannot be null; use a number or 'TBD'")
    if isinstance(raw, str) and raw.strip().upper() == TBD:
        return PENDING
    if isinstance(raw, bool):
        raise ValueError(f"Invalid amount: {raw!r}")
    return resolved(raw)
