from typing import Optional

from fastapi import Header, Request

from fulfillment.application import InventoryService, InvoiceService, OrderWorkflowService


def get_order_service(request: Request) -> OrderWorkflowService:
    return request.app.state.order_service


def get_invoice_service(request: Request) -> InvoiceService:
    return request.app.state.invoice_service


def get_inventory_service(request: Request) -> InventoryService:
    return request.app.state.inventory_service


def get_actor(x_actor_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_actor_id
