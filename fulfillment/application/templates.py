"""Plain-text e-mail bodies and invoice HTML built from ``string.Template``."""
from string import Template
from typing import Optional

from fulfillment.domain.models import Invoice, Order
from fulfillment.domain.money import Resolved


def _money(value) -> str:
    return f"{value:,.2f}"


def order_total_text(order: Order) -> str:
    if isinstance(order.total_amount, Resolved):
        return _money(order.total_amount.amount)
    return f"{_money(order.subtotal)} + delivery fee (to be confirmed)"


def _item_lines(order: Order) -> str:
    return "\n".join(
        f"  - {item.name} x{item.quantity} {item.unit} @ {_money(item.unit_price)} = {_money(item.line_total)}"
        for item in order.items
    )


ORDER_CONFIRMATION = Template(
    """Hello $name,

Thank you for your order $order_number.

Items:
$items

Subtotal: $subtotal
Delivery: $shipping
Total: $total

$fee_notice
$business
"""
)

ADMIN_NEW_ORDER = Template(
    """New order $order_number from $name ($client_id).

Items:
$items

Shipping method: $shipping_method
Total: $total
$fee_notice"""
)

DELIVERY_FEE_UPDATED = Template(
    """Hello $name,

The delivery fee for order $order_number has been confirmed: $fee.
Your order total is now $total.

$business
"""
)

INVOICE_EMAIL = Template(
    """Hello $name,

Please find attached invoice $invoice_number.

Total: $total
Paid: $paid
Balance due: $balance
Due date: $due_date

$payment_terms

$business
"""
)

INVOICE_HTML = Template(
    """<html><body>
<h1>$business</h1>
<h2>Invoice $invoice_number</h2>
<p>Billed to: $client_name<br/>$client_address</p>
<table>
<tr><th>Item</th><th>Qty</th><th>Unit price</th><th>Total</th></tr>
$rows
</table>
<p>Subtotal: $subtotal<br/>Tax: $tax<br/>Discount: $discount<br/>Delivery: $delivery_fee</p>
<p><strong>Total: $total</strong><br/>Paid: $paid<br/>Balance: $balance</p>
<p>Issued: $issue_date &middot; Due: $due_date</p>
<p>$payment_terms</p>
</body></html>"""
)


def _fee_notice(order: Order) -> str:
    if order.delivery_fee_pending:
        return "The delivery fee will be confirmed shortly and your invoice sent once it is known."
    return ""


def render_order_confirmation(order: Order, name: str, business: str) -> tuple[str, str]:
    subject = f"Order confirmation {order.order_number}"
    body = ORDER_CONFIRMATION.substitute(
        name=name,
        order_number=order.order_number,
        items=_item_lines(order),
        subtotal=_money(order.subtotal),
        shipping=_money(order.shipping_cost.amount) if isinstance(order.shipping_cost, Resolved) else "TBD",
        total=order_total_text(order),
        fee_notice=_fee_notice(order),
        business=business,
    )
    return subject, body


def render_admin_new_order(order: Order, name: str) -> tuple[str, str]:
    subject = f"New order {order.order_number}"
    body = ADMIN_NEW_ORDER.substitute(
        order_number=order.order_number,
        name=name,
        client_id=order.client_id,
        items=_item_lines(order),
        shipping_method=order.shipping_method.value,
        total=order_total_text(order),
        fee_notice="Delivery fee pending." if order.delivery_fee_pending else "",
    )
    return subject, body


def render_delivery_fee_updated(order: Order, name: str, business: str) -> tuple[str, str]:
    subject = f"Delivery fee confirmed for order {order.order_number}"
    body = DELIVERY_FEE_UPDATED.substitute(
        name=name,
        order_number=order.order_number,
        fee=_money(order.shipping_cost.amount) if isinstance(order.shipping_cost, Resolved) else "TBD",
        total=order_total_text(order),
        business=business,
    )
    return subject, body


def _date(value) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def render_invoice_email(invoice: Invoice, business: Optional[str] = None) -> tuple[str, str]:
    subject = f"Invoice {invoice.invoice_number}"
    body = INVOICE_EMAIL.substitute(
        name=invoice.client_info.name,
        invoice_number=invoice.invoice_number,
        total=_money(invoice.total_amount),
        paid=_money(invoice.paid_amount),
        balance=_money(invoice.balance),
        due_date=_date(invoice.due_date),
        payment_terms=invoice.payment_terms,
        business=business or invoice.business_info.name,
    )
    return subject, body


def render_invoice_html(invoice: Invoice) -> str:
    rows = "\n".join(
        f"<tr><td>{item.name}</td><td>{item.quantity}</td>"
        f"<td>{_money(item.unit_price)}</td><td>{_money(item.total_price)}</td></tr>"
        for item in invoice.items
    )
    return INVOICE_HTML.substitute(
        business=invoice.business_info.name,
        invoice_number=invoice.invoice_number,
        client_name=invoice.client_info.name,
        client_address=invoice.client_info.address or "",
        rows=rows,
        subtotal=_money(invoice.subtotal),
        tax=_money(invoice.tax),
        discount=_money(invoice.discount),
        delivery_fee=_money(invoice.delivery_fee),
        total=_money(invoice.total_amount),
        paid=_money(invoice.paid_amount),
        balance=_money(invoice.balance),
        issue_date=_date(invoice.issue_date),
        due_date=_date(invoice.due_date),
        payment_terms=invoice.payment_terms,
    )
