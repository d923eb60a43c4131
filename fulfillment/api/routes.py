from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response

from fulfillment.application import OrderWorkflowService
from fulfillment.application.ports import OrderFilters
from fulfillment.application.schemas import (
    CancelRequest,
    DeliveryDateUpdate,
    DeliveryFeeUpdate,
    DiscountUpdate,
    OrderCreate,
    OrderMetricsRead,
    OrderRead,
    OrderStatsRead,
    SalesReportRead,
    StatusUpdate,
    TrackingUpdate,
)
from fulfillment.domain.models import OrderStatus

from .deps import get_actor, get_order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=list[OrderRead])
async def list_orders(
    client_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    delivery_fee_pending: Optional[bool] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    min_total: Optional[Decimal] = None,
    max_total: Optional[Decimal] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: OrderWorkflowService = Depends(get_order_service),
):
    filters = OrderFilters(
        client_id=client_id,
        status=status,
        delivery_fee_pending=delivery_fee_pending,
        created_after=created_after,
        created_before=created_before,
        min_total=min_total,
        max_total=max_total,
        limit=limit,
        offset=offset,
    )
    return [OrderRead.from_domain(o) for o in await service.list_orders(filters)]


@router.get("/pending-delivery-fee", response_model=list[OrderRead])
async def list_pending_delivery_fee(service: OrderWorkflowService = Depends(get_order_service)):
    """Delivery orders still waiting for a fee."""
    return [OrderRead.from_domain(o) for o in await service.list_pending_delivery_fee()]


@router.get("/stats", response_model=OrderStatsRead)
async def order_stats(
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    service: OrderWorkflowService = Depends(get_order_service),
):
    return OrderStatsRead.model_validate(await service.order_stats(created_after, created_before))


@router.get("/recent", response_model=list[OrderRead])
async def recent_orders(
    limit: int = Query(default=10, ge=1, le=100),
    service: OrderWorkflowService = Depends(get_order_service),
):
    return [OrderRead.from_domain(o) for o in await service.recent_orders(limit)]


@router.get("/sales", response_model=SalesReportRead)
async def sales_data(
    period: Literal["7d", "30d", "90d", "1y"] = "30d",
    service: OrderWorkflowService = Depends(get_order_service),
):
    return SalesReportRead.model_validate(await service.sales_data(period))


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(order_id: str, service: OrderWorkflowService = Depends(get_order_service)):
    return OrderRead.from_domain(await service.get_order(order_id))


@router.get("/{order_id}/metrics", response_model=OrderMetricsRead)
async def order_metrics(order_id: str, service: OrderWorkflowService = Depends(get_order_service)):
    return OrderMetricsRead.from_domain(await service.get_order(order_id))


@router.post("", response_model=OrderRead, status_code=201)
async def create_order(
    payload: OrderCreate,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    return OrderRead.from_domain(await service.create_order(payload, actor))


@router.patch("/{order_id}/delivery-fee", response_model=OrderRead)
async def update_delivery_fee(
    order_id: str,
    payload: DeliveryFeeUpdate,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    order = await service.update_delivery_fee(order_id, payload.fee, payload.service, actor)
    return OrderRead.from_domain(order)


@router.post("/{order_id}/status", response_model=OrderRead)
async def update_status(
    order_id: str,
    payload: StatusUpdate,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    return OrderRead.from_domain(await service.update_status(order_id, payload.status, payload.note, actor))


@router.post("/{order_id}/tracking", response_model=OrderRead)
async def attach_tracking_number(
    order_id: str,
    payload: TrackingUpdate,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    order = await service.attach_tracking_number(order_id, payload.tracking_number, actor)
    return OrderRead.from_domain(order)


@router.post("/{order_id}/discount", response_model=OrderRead)
async def apply_discount(
    order_id: str,
    payload: DiscountUpdate,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    order = await service.apply_discount(order_id, payload.amount, payload.reason, actor)
    return OrderRead.from_domain(order)


@router.patch("/{order_id}/delivery-date", response_model=OrderRead)
async def set_delivery_date(
    order_id: str,
    payload: DeliveryDateUpdate,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    order = await service.set_delivery_date(order_id, payload.delivery_date, payload.time_slot, actor)
    return OrderRead.from_domain(order)


@router.post("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: str,
    payload: CancelRequest,
    service: OrderWorkflowService = Depends(get_order_service),
    actor: Optional[str] = Depends(get_actor),
):
    return OrderRead.from_domain(await service.cancel_order(order_id, payload.reason, actor))


@router.delete("/{order_id}", status_code=204)
async def delete_order(order_id: str, service: OrderWorkflowService = Depends(get_order_service)):
    """Only pending orders can be deleted."""
    await service.delete_order(order_id)
    return Response(status_code=204)
