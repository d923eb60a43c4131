from datetime import datetime
from typing import Callable, Optional

from fulfillment.errors import StateError, ValidationError
from .models import Order, OrderStatus, StatusEntry, utcnow

TRANSITIONS: dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset(
        {OrderStatus.DELIVERED, OrderStatus.RETURNED, OrderStatus.CANCELLED}
    ),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

TERMINAL = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED})

# Attaching a tracking number ships the order straight from these states.
SHIP_ON_TRACKING = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


class OrderStateMachine:
    """Legal order status transitions and the append-only status history.

    History entries are frozen and only ever appended; the last entry always
    carries the order's current status.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    @staticmethod
    def allowed_targets(current: OrderStatus) -> frozenset:
        return TRANSITIONS[OrderStatus(current)]

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        return OrderStatus(target) in self.allowed_targets(current)

    def is_terminal(self, status: OrderStatus) -> bool:
        return OrderStatus(status) in TERMINAL

    def seed(self, order: Order, note: str = "Order created", actor: Optional[str] = None) -> StatusEntry:
        if order.status_history:
            raise StateError("Status history already initialised", code="history-initialised")
        entry = self._entry(order.status, note, actor)
        order.status_history.append(entry)
        return entry

    def transition(
        self,
        order: Order,
        target: OrderStatus,
        note: str = "",
        actor: Optional[str] = None,
    ) -> StatusEntry:
        target = OrderStatus(target)
        if not self.can_transition(order.status, target):
            raise StateError(
                f"Cannot change order status from {order.status.value} to {target.value}",
                code="illegal-transition",
                details={"from": order.status.value, "to": target.value},
            )
        return self._apply(order, target, note or f"Status changed to {target.value}", actor)

    def record(self, order: Order, note: str, actor: Optional[str] = None) -> StatusEntry:
        """Append an audit entry without changing status."""
        entry = self._entry(order.status, note, actor)
        order.status_history.append(entry)
        order.updated_at = entry.timestamp
        return entry

    def attach_tracking(self, order: Order, tracking_number: str, actor: Optional[str] = None) -> StatusEntry:
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            raise ValidationError("Tracking number is required")
        if self.is_terminal(order.status):
            raise StateError(
                f"Cannot add a tracking number to a {order.status.value} order",
                code="illegal-transition",
            )
        order.tracking_number = tracking_number
        if order.status in SHIP_ON_TRACKING:
            return self._apply(order, OrderStatus.SHIPPED, "Tracking number added", actor)
        return self.record(order, f"Tracking number updated: {tracking_number}", actor)

    def _apply(self, order: Order, target: OrderStatus, note: str, actor: Optional[str]) -> StatusEntry:
        entry = self._entry(target, note, actor)
        order.status = target
        order.status_history.append(entry)
        order.updated_at = entry.timestamp
        return entry

    def _entry(self, status: OrderStatus, note: str, actor: Optional[str]) -> StatusEntry:
        return StatusEntry(status=status, timestamp=self.clock(), note=note, actor=actor)
