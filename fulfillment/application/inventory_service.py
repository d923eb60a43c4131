from typing import Optional

from fulfillment.core_settings import Settings, get_settings
from fulfillment.domain import events
from fulfillment.domain.availability import apply_stock_adjustment
from fulfillment.domain.models import ProductSnapshot, utcnow
from fulfillment.errors import NotFoundError
from shared.core.logging_config import get_logger

from .ports import EventBus, PersistenceStore

logger = get_logger(__name__)


class InventoryService:
    """Stock adjustments for catalog products.

    Orders never reserve stock; adjustments are applied here explicitly
    once goods leave (or return to) the shelf.
    """

    def __init__(self, store: PersistenceStore, events_bus: EventBus, settings: Optional[Settings] = None):
        self.store = store
        self.events = events_bus
        self.settings = settings or get_settings()

    async def get_product(self, product_id: str) -> ProductSnapshot:
        product = await self.store.get_product(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    async def adjust_stock(self, product_id: str, quantity: int) -> ProductSnapshot:
        """Remove ``quantity`` units (negative restocks) in one store transaction."""
        product = await self.store.adjust_product(
            product_id, lambda current: apply_stock_adjustment(current, quantity)
        )
        logger.info(
            f"Stock adjusted for product {product.name}",
            product_id=product.id,
            quantity=quantity,
            remaining=product.stock_quantity,
        )
        threshold = self.settings.LOW_STOCK_THRESHOLD
        if product.stock_quantity <= threshold:
            logger.warning(f"Product {product.name} is low on stock", remaining=product.stock_quantity)
            self.events.emit(
                events.PRODUCT_LOW_STOCK,
                {
                    "product_id": product.id,
                    "name": product.name,
                    "stock_quantity": product.stock_quantity,
                    "threshold": threshold,
                    "timestamp": utcnow(),
                },
            )
        return product
