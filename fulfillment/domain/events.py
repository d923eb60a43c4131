"""Names of the domain events published on the event bus."""

ORDER_CREATED = "order:created"
ORDER_UPDATED = "order:updated"
ORDER_STATUS_CHANGED = "order:status_changed"
ORDER_DELIVERY_FEE_UPDATED = "order:delivery_fee_updated"
ORDER_CANCELLED = "order:cancelled"
ORDER_DELETED = "order:deleted"

INVOICE_CREATED = "invoice:created"
INVOICE_PAYMENT_RECORDED = "invoice:payment_recorded"
INVOICE_PAID = "invoice:paid"
INVOICE_STATUS_CHANGED = "invoice:status_changed"
INVOICE_SENT = "invoice:sent"
INVOICE_DELETED = "invoice:deleted"

PRODUCT_LOW_STOCK = "product:low-stock"

ALL_EVENTS = "*"
