from typing import Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from fulfillment.errors import NotFoundError, StateError, ValidationError
from .models import ProductSnapshot


class ItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    variant: Optional[str] = None


class ProductReader(Protocol):
    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]: ...


def check_item(product: ProductSnapshot, quantity: int, variant: Optional[str] = None) -> None:
    """Raise ``StateError`` if ``product`` cannot satisfy the requested line."""
    if not product.is_available:
        raise StateError(f'Product "{product.name}" is not available', code="unavailable")
    if product.stock_quantity < quantity:
        raise StateError(
            f'Insufficient stock for product "{product.name}": '
            f"requested {quantity}, available {product.stock_quantity}",
            code="insufficient-stock",
        )
    if variant and variant not in product.variants:
        raise StateError(
            f'Variant "{variant}" does not exist for product "{product.name}"',
            code="unknown-variant",
        )


class AvailabilityValidator:
    """Checks requested lines against product stock snapshots.

    Read-only: nothing is reserved or decremented here, so a later stock
    adjustment can still race with a concurrent order for the same product.
    """

    def __init__(self, products: ProductReader):
        self.products = products

    async def validate(self, requested: Sequence[ItemRequest]) -> list[ProductSnapshot]:
        """Validate each line in order and return the matching snapshots."""
        if not requested:
            raise ValidationError("Order must contain at least one item")

        snapshots = []
        for item in requested:
            product = await self.products.get_product(item.product_id)
            if product is None:
                raise NotFoundError("Product", item.product_id)
            check_item(product, item.quantity, item.variant)
            snapshots.append(product)
        return snapshots


def apply_stock_adjustment(product: ProductSnapshot, quantity: int) -> ProductSnapshot:
    """Return ``product`` with ``quantity`` units removed (negative restocks)."""
    remaining = product.stock_quantity - quantity
    if remaining < 0:
        raise StateError(
            f'Insufficient stock for product "{product.name}": '
            f"requested {quantity}, available {product.stock_quantity}",
            code="insufficient-stock",
        )
    return product.model_copy(update={"stock_quantity": remaining})
