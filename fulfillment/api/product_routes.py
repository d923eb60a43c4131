from fastapi import APIRouter, Depends

from fulfillment.application import InventoryService
from fulfillment.application.schemas import StockAdjustment
from fulfillment.domain.models import ProductSnapshot

from .deps import get_inventory_service

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/{product_id}", response_model=ProductSnapshot)
async def get_product(product_id: str, service: InventoryService = Depends(get_inventory_service)):
    return await service.get_product(product_id)


@router.post("/{product_id}/stock", response_model=ProductSnapshot)
async def adjust_stock(
    product_id: str,
    payload: StockAdjustment,
    service: InventoryService = Depends(get_inventory_service),
):
    """Positive quantities remove stock, negative quantities restock."""
    return await service.adjust_stock(product_id, payload.quantity)
