"""Pure order, pricing and invoicing rules. No I/O happens in this package."""

from .aggregate import OrderAggregate
from .availability import AvailabilityValidator, ItemRequest
from .invoicing import InvoiceDerivation, derive_status
from .money import PENDING, TBD, Pending, Resolved, resolved
from .pricing import PricingEngine, PricingResult
from .state_machine import OrderStateMachine

__all__ = [
    "OrderAggregate",
    "AvailabilityValidator",
    "ItemRequest",
    "InvoiceDerivation",
    "derive_status",
    "PENDING",
    "TBD",
    "Pending",
    "Resolved",
    "resolved",
    "PricingEngine",
    "PricingResult",
    "OrderStateMachine",
]
