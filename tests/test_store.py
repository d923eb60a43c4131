from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

from fakes import FakeNotifier, RecordingEventBus
from fulfillment.application import InvoiceService, OrderWorkflowService
from fulfillment.application.ports import OrderFilters
from fulfillment.application.schemas import PaymentCreate
from fulfillment.domain.models import ClientSnapshot, InvoiceStatus, OrderStatus
from fulfillment.domain.money import PENDING, resolved
from fulfillment.errors import NotFoundError, StateError
from fulfillment.infrastructure import (
    SqlAlchemyStore,
    SqlClientDirectory,
    build_engine,
    build_sessionmaker,
    init_models,
)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_models(engine)
    yield build_sessionmaker(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlAlchemyStore(session_factory)


@pytest.fixture
def sql_clients(session_factory):
    return SqlClientDirectory(session_factory)


@pytest.fixture
def sql_service(sql_store, sql_clients, settings, clock):
    return OrderWorkflowService(sql_store, sql_clients, FakeNotifier(), RecordingEventBus(), settings, clock)


async def seed(sql_store, sql_clients, products, client_snapshot):
    for product in products:
        await sql_store.save_product(product)
    await sql_clients.save_client(client_snapshot)


@pytest.mark.asyncio
async def test_pending_order_round_trip(
    sql_service, sql_store, sql_clients, session_factory, products, client_snapshot, make_order_input, clock
):
    await seed(sql_store, sql_clients, products, client_snapshot)
    created = await sql_service.create_order(make_order_input(), actor="admin")

    loaded = await sql_store.get_order(created.id)

    assert loaded.total_amount == PENDING
    assert loaded.shipping_cost == PENDING
    assert loaded.subtotal == Decimal("25.00")
    assert [i.product_id for i in loaded.items] == ["p1", "p2"]
    assert loaded.shipping_address.city == "Lagos"
    assert loaded.created_at == clock.now
    assert loaded.created_at.tzinfo is not None
    assert loaded.status_history[0].actor == "admin"
    assert loaded.version == 1

    with session_factory() as session:
        row = session.execute(text("SELECT shipping_cost, total_amount FROM orders")).one()
    assert tuple(row) == ("TBD", "TBD")


@pytest.mark.asyncio
async def test_fee_update_persists_order_and_invoice(
    sql_service, sql_store, sql_clients, products, client_snapshot, make_order_input
):
    await seed(sql_store, sql_clients, products, client_snapshot)
    order = await sql_service.create_order(make_order_input())

    updated = await sql_service.update_delivery_fee(order.id, Decimal("1500"), service="GIG")

    loaded = await sql_store.get_order(order.id)
    assert loaded.total_amount == resolved(1525)
    assert loaded.final_total_amount == Decimal("1525.00")
    assert loaded.invoice_id == updated.invoice_id
    assert loaded.version == 3

    invoice = await sql_store.get_invoice_by_order(order.id)
    assert invoice.id == updated.invoice_id
    assert invoice.total_amount == Decimal("1525.00")
    assert invoice.client_info.email == "ada@example.com"
    assert [i.name for i in invoice.items] == ["Sanitary pads", "Hand wash"]


@pytest.mark.asyncio
async def test_stale_version_is_rejected(sql_service, sql_store, sql_clients, products, client_snapshot, make_order_input):
    await seed(sql_store, sql_clients, products, client_snapshot)
    order = await sql_service.create_order(make_order_input())
    stale = await sql_store.get_order(order.id)
    await sql_service.update_status(order.id, OrderStatus.PROCESSING)

    with pytest.raises(StateError) as exc:
        await sql_store.update_order(stale)
    assert exc.value.code == "concurrent-update"

    await sql_store.delete_order(order.id)
    with pytest.raises(NotFoundError):
        await sql_store.update_order(stale)


@pytest.mark.asyncio
async def test_payment_ledger_is_persisted(
    sql_service, sql_store, sql_clients, settings, clock, products, client_snapshot, make_order_input
):
    await seed(sql_store, sql_clients, products, client_snapshot)
    invoices = InvoiceService(sql_store, sql_clients, FakeNotifier(), RecordingEventBus(), settings, clock)
    order = await sql_service.create_order(make_order_input(shipping_method="pickup"))

    await invoices.record_payment(order.invoice_id, PaymentCreate(amount=Decimal("10"), reference="A"))
    await invoices.record_payment(order.invoice_id, PaymentCreate(amount=Decimal("15"), reference="B"))

    invoice = await sql_store.get_invoice(order.invoice_id)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_amount == Decimal("25.00")
    assert [p.reference for p in invoice.payments] == ["A", "B"]
    assert invoice.payments[0].amount == Decimal("10.00")
    assert await sql_store.list_invoices(status=InvoiceStatus.PAID) == [invoice]


@pytest.mark.asyncio
async def test_listing_and_counting(sql_service, sql_store, sql_clients, clock, products, client_snapshot, make_order_input):
    await seed(sql_store, sql_clients, products, client_snapshot)
    start = clock.now
    first = await sql_service.create_order(make_order_input())
    clock.advance(minutes=1)
    second = await sql_service.create_order(make_order_input(shipping_method="pickup"))

    assert second.order_number == "ORD-20250314-0002"
    assert await sql_store.count_orders_between(start, start + timedelta(days=1)) == 2
    assert await sql_store.count_invoices_between(start, start + timedelta(days=1)) == 1

    newest_first = await sql_store.list_orders(OrderFilters())
    assert [o.id for o in newest_first] == [second.id, first.id]
    pending = await sql_store.list_orders(OrderFilters(delivery_fee_pending=True))
    assert [o.id for o in pending] == [first.id]


@pytest.mark.asyncio
async def test_adjust_product(sql_store, products):
    for product in products:
        await sql_store.save_product(product)

    product = await sql_store.adjust_product("p4", lambda p: p.model_copy(update={"stock_quantity": 1}))

    assert product.stock_quantity == 1
    stored = await sql_store.get_product("p4")
    assert stored.stock_quantity == 1
    assert stored.variants == {"large": Decimal("12.50")}
    with pytest.raises(NotFoundError):
        await sql_store.adjust_product("missing", lambda p: p)


@pytest.mark.asyncio
async def test_client_directory_prefers_clients_then_users(sql_clients):
    await sql_clients.save_client(ClientSnapshot(id="x1", name="Shop Client", email="shop@example.com"))
    await sql_clients.save_user("x2", "Tolu", "Ade", email="tolu@example.com")

    assert (await sql_clients.resolve("x1")).name == "Shop Client"
    user = await sql_clients.resolve("x2")
    assert user.name == "Tolu Ade"
    assert user.email == "tolu@example.com"
    assert await sql_clients.resolve("x3") is None


@pytest.mark.asyncio
async def test_date_and_total_filters(sql_service, sql_store, sql_clients, clock, products, client_snapshot, make_order_input):
    await seed(sql_store, sql_clients, products, client_snapshot)
    pending = await sql_service.create_order(make_order_input())
    clock.advance(hours=1)
    cheap = await sql_service.create_order(make_order_input(shipping_method="pickup"))
    clock.advance(hours=1)
    dear = await sql_service.create_order(make_order_input())
    await sql_service.update_delivery_fee(dear.id, Decimal("500"))

    assert await sql_store.order_number_exists(pending.order_number)
    assert not await sql_store.order_number_exists("ORD-20250314-0099")
    assert await sql_store.invoice_number_exists("INV-25-03-0001")
    assert not await sql_store.invoice_number_exists("INV-25-03-0099")

    since = await sql_store.list_orders(OrderFilters(created_after=cheap.created_at))
    assert [o.id for o in since] == [dear.id, cheap.id]
    before = await sql_store.list_orders(OrderFilters(created_before=cheap.created_at))
    assert [o.id for o in before] == [pending.id]

    at_least = await sql_store.list_orders(OrderFilters(min_total=Decimal("0")))
    assert [o.id for o in at_least] == [dear.id, cheap.id]
    at_most = await sql_store.list_orders(OrderFilters(max_total=Decimal("100")))
    assert [o.id for o in at_most] == [cheap.id]
