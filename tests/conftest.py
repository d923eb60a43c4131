from decimal import Decimal

import pytest

from fakes import FakeClientDirectory, FakeNotifier, FakeStore, FixedClock, RecordingEventBus
from fulfillment.application import InventoryService, InvoiceService, OrderWorkflowService
from fulfillment.application.schemas import OrderCreate
from fulfillment.core_settings import Settings
from fulfillment.domain.models import Address, ClientSnapshot, ProductSnapshot


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        ADMIN_EMAILS="admin@example.com,ops@example.com",
        EMAIL_FROM="orders@example.com",
        EMAIL_API_URL="http://mailer.test/send",
        PDF_RENDERER_URL="http://pdf.test/render",
        NOTIFY_BACKOFF_SECONDS=0.0,
        LOW_STOCK_THRESHOLD=5,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def products():
    return [
        ProductSnapshot(id="p1", name="Sanitary pads", unit="pack", price=Decimal("10.00"), stock_quantity=100),
        ProductSnapshot(id="p2", name="Hand wash", unit="bottle", price=Decimal("5.00"), stock_quantity=50),
        ProductSnapshot(id="p3", name="Discontinued soap", price=Decimal("3.00"), stock_quantity=10, is_available=False),
        ProductSnapshot(
            id="p4",
            name="Body lotion",
            unit="bottle",
            price=Decimal("8.00"),
            stock_quantity=6,
            variants={"large": Decimal("12.50")},
        ),
    ]


@pytest.fixture
def store(products):
    store = FakeStore()
    for product in products:
        store.add_product(product)
    return store


@pytest.fixture
def client_snapshot():
    return ClientSnapshot(
        id="c1", name="Ada Obi", email="ada@example.com", phone="+2348000000", address="1 Marina, Lagos"
    )


@pytest.fixture
def clients(client_snapshot):
    user = ClientSnapshot(id="u1", name="Tolu Ade", email="tolu@example.com")
    return FakeClientDirectory(clients=[client_snapshot], users=[user])


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def events():
    return RecordingEventBus()


@pytest.fixture
def service(store, clients, notifier, events, settings, clock):
    return OrderWorkflowService(store, clients, notifier, events, settings, clock)


@pytest.fixture
def invoice_service(store, clients, notifier, events, settings, clock):
    return InvoiceService(store, clients, notifier, events, settings, clock)


@pytest.fixture
def inventory_service(store, events, settings):
    return InventoryService(store, events, settings)


@pytest.fixture
def address():
    return Address(street="1 Marina", city="Lagos", state="Lagos")


@pytest.fixture
def make_order_input(address):
    """Two lines worth 25.00: 2 x 10.00 and 1 x 5.00."""

    def factory(**overrides):
        data = {
            "client_id": "c1",
            "items": [
                {"product_id": "p1", "quantity": 2},
                {"product_id": "p2", "quantity": 1},
            ],
            "shipping_method": "delivery",
            "shipping_address": address,
        }
        data.update(overrides)
        return OrderCreate.model_validate(data)

    return factory
