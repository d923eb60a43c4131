import pytest

from fulfillment.domain import events as domain_events
from fulfillment.errors import NotFoundError, StateError


@pytest.mark.asyncio
async def test_adjust_stock_decrements(inventory_service, store, events):
    product = await inventory_service.adjust_stock("p1", 30)
    assert product.stock_quantity == 70
    assert store.products["p1"].stock_quantity == 70
    assert events.emitted == []


@pytest.mark.asyncio
async def test_low_stock_event(inventory_service, events):
    await inventory_service.adjust_stock("p4", 2)

    [(name, payload)] = events.emitted
    assert name == domain_events.PRODUCT_LOW_STOCK
    assert payload["product_id"] == "p4"
    assert payload["stock_quantity"] == 4
    assert payload["threshold"] == 5


@pytest.mark.asyncio
async def test_insufficient_stock_leaves_product_unchanged(inventory_service, store):
    with pytest.raises(StateError) as exc:
        await inventory_service.adjust_stock("p2", 51)
    assert exc.value.code == "insufficient-stock"
    assert store.products["p2"].stock_quantity == 50


@pytest.mark.asyncio
async def test_restock(inventory_service):
    product = await inventory_service.adjust_stock("p4", -10)
    assert product.stock_quantity == 16


@pytest.mark.asyncio
async def test_unknown_product(inventory_service):
    with pytest.raises(NotFoundError):
        await inventory_service.adjust_stock("nope", 1)
