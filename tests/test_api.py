import asyncio

import pytest
from fastapi.testclient import TestClient

from fakes import RecordingEventBus
from fulfillment.infrastructure import (
    SqlAlchemyStore,
    SqlClientDirectory,
    build_engine,
    build_sessionmaker,
    init_models,
)
from fulfillment.main import create_app


@pytest.fixture
def client(settings, products, client_snapshot, notifier):
    engine = build_engine("sqlite://")
    init_models(engine)
    session_factory = build_sessionmaker(engine)
    store = SqlAlchemyStore(session_factory)
    clients = SqlClientDirectory(session_factory)

    async def seed():
        for product in products:
            await store.save_product(product)
        await clients.save_client(client_snapshot)

    asyncio.run(seed())
    app = create_app(settings, store=store, clients=clients, notifier=notifier, events_bus=RecordingEventBus())
    with TestClient(app) as test_client:
        yield test_client
    engine.dispose()


ORDER = {
    "client_id": "c1",
    "items": [{"product_id": "p1", "quantity": 2}, {"product_id": "p2", "quantity": 1}],
    "shipping_method": "delivery",
    "shipping_address": {"street": "1 Marina", "city": "Lagos", "state": "Lagos"},
}


def test_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "running"


def test_delivery_order_flow(client):
    resp = client.post("/orders", json=ORDER, headers={"X-Actor-ID": "admin"})
    assert resp.status_code == 201
    order = resp.json()
    assert order["total_amount"] == "TBD"
    assert order["shipping_cost"] == "TBD"
    assert order["subtotal"] == 25.0
    assert order["invoice_id"] is None

    pending = client.get("/orders/pending-delivery-fee").json()
    assert [o["id"] for o in pending] == [order["id"]]

    resp = client.patch(f"/orders/{order['id']}/delivery-fee", json={"fee": 1500, "service": "GIG"})
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["total_amount"] == 1525.0
    assert updated["delivery_fee_pending"] is False

    invoice = client.get(f"/invoices/order/{order['id']}").json()
    assert invoice["id"] == updated["invoice_id"]
    assert invoice["total_amount"] == 1525.0
    assert invoice["status"] == "pending"

    resp = client.post(f"/invoices/{invoice['id']}/payments", json={"amount": 2000})
    assert resp.status_code == 409
    assert resp.json()["code"] == "overpayment"

    resp = client.post(f"/invoices/{invoice['id']}/payments", json={"amount": 1525, "method": "cash"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "paid"
    assert resp.json()["balance"] == 0.0

    order = client.get(f"/orders/{order['id']}").json()
    assert order["payment_status"] == "paid"
    assert order["status"] == "processing"


def test_unknown_order_error_body(client):
    resp = client.get("/orders/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Order with ID does-not-exist not found", "code": "not_found"}


def test_unavailable_product_is_rejected(client):
    body = dict(ORDER, items=[{"product_id": "p3", "quantity": 1}])
    resp = client.post("/orders", json=body)
    assert resp.status_code == 409
    assert resp.json()["code"] == "unavailable"
    assert client.get("/orders").json() == []


def test_cancel_and_delete(client):
    first = client.post("/orders", json=ORDER).json()
    second = client.post("/orders", json=ORDER).json()

    resp = client.post(f"/orders/{first['id']}/cancel", json={"reason": "changed mind"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = client.delete(f"/orders/{second['id']}")
    assert resp.status_code == 204
    assert client.get(f"/orders/{second['id']}").status_code == 404


def test_stock_adjustment(client):
    resp = client.post("/products/p2/stock", json={"quantity": 5})
    assert resp.status_code == 200
    assert resp.json()["stock_quantity"] == 45

    resp = client.post("/products/p2/stock", json={"quantity": 100})
    assert resp.status_code == 409
    assert resp.json()["code"] == "insufficient-stock"
    assert client.get("/products/p2").json()["stock_quantity"] == 45


def test_reporting_endpoints(client):
    pickup = client.post("/orders", json=dict(ORDER, shipping_method="pickup")).json()
    delivery = client.post("/orders", json=ORDER).json()
    assert pickup["display_total"] == 25.0
    assert delivery["display_total"] == "25.00 + delivery fee"

    stats = client.get("/orders/stats").json()
    assert stats["total_orders"] == 2
    assert stats["pending_delivery_fee_orders"] == 1
    assert stats["total_sales"] == 25.0
    assert stats["by_status"]["pending"] == {"count": 2, "revenue": 25.0}

    sales = client.get("/orders/sales", params={"period": "7d"}).json()
    assert sales["total_orders"] == 2
    assert sales["total_sales"] == 25.0
    assert client.get("/orders/sales", params={"period": "2w"}).status_code == 422

    recent = client.get("/orders/recent", params={"limit": 1}).json()
    assert len(recent) == 1

    metrics = client.get(f"/orders/{delivery['id']}/metrics").json()
    assert metrics["total_quantity"] == 3
    assert metrics["unique_products_count"] == 2
    assert metrics["total_amount"] == "TBD"

    filtered = client.get("/orders", params={"min_total": 0}).json()
    assert [o["id"] for o in filtered] == [pickup["id"]]


def test_delivery_date(client):
    order = client.post("/orders", json=ORDER).json()

    resp = client.patch(
        f"/orders/{order['id']}/delivery-date",
        json={"delivery_date": "2025-03-20T10:00:00Z", "time_slot": "morning"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["delivery_date"].startswith("2025-03-20T10:00:00")
    assert body["delivery_time_slot"] == "morning"
    assert client.get(f"/orders/{order['id']}").json()["delivery_time_slot"] == "morning"


def test_create_invoice_for_order(client):
    order = client.post("/orders", json=ORDER).json()
    resp = client.post(f"/invoices/order/{order['id']}")
    assert resp.status_code == 409
    assert resp.json()["code"] == "fee-pending"

    pickup = client.post("/orders", json=dict(ORDER, shipping_method="pickup")).json()
    assert client.delete(f"/invoices/{pickup['invoice_id']}").status_code == 204

    resp = client.post(f"/invoices/order/{pickup['id']}")
    assert resp.status_code == 201
    invoice = resp.json()
    assert invoice["order_id"] == pickup["id"]
    assert invoice["total_amount"] == 25.0
    assert client.get(f"/orders/{pickup['id']}").json()["invoice_id"] == invoice["id"]
    assert client.post(f"/invoices/order/{pickup['id']}").json()["code"] == "invoice-exists"
