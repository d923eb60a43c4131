from typing import Optional

from fastapi import APIRouter, Depends, Response

from fulfillment.application import InvoiceService
from fulfillment.application.schemas import (
    InvoiceRead,
    InvoiceStatusUpdate,
    PaymentCreate,
    StandaloneInvoiceCreate,
)
from fulfillment.domain.models import InvoiceStatus

from .deps import get_actor, get_invoice_service

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("", response_model=list[InvoiceRead])
async def list_invoices(
    client_id: Optional[str] = None,
    status: Optional[InvoiceStatus] = None,
    service: InvoiceService = Depends(get_invoice_service),
):
    return [InvoiceRead.from_domain(i) for i in await service.list_invoices(client_id, status)]


@router.post("", response_model=InvoiceRead, status_code=201)
async def create_standalone_invoice(
    payload: StandaloneInvoiceCreate, service: InvoiceService = Depends(get_invoice_service)
):
    return InvoiceRead.from_domain(await service.create_standalone_invoice(payload))


@router.get("/order/{order_id}", response_model=InvoiceRead)
async def get_invoice_for_order(order_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return InvoiceRead.from_domain(await service.get_invoice_for_order(order_id))


@router.post("/order/{order_id}", response_model=InvoiceRead, status_code=201)
async def create_invoice_for_order(order_id: str, service: InvoiceService = Depends(get_invoice_service)):
    """Issue the missing invoice of an order with a resolved total."""
    return InvoiceRead.from_domain(await service.create_invoice_for_order(order_id))


@router.get("/{invoice_id}", response_model=InvoiceRead)
async def get_invoice(invoice_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return InvoiceRead.from_domain(await service.get_invoice(invoice_id))


@router.post("/{invoice_id}/payments", response_model=InvoiceRead)
async def record_payment(
    invoice_id: str,
    payload: PaymentCreate,
    service: InvoiceService = Depends(get_invoice_service),
    actor: Optional[str] = Depends(get_actor),
):
    return InvoiceRead.from_domain(await service.record_payment(invoice_id, payload, actor))


@router.post("/{invoice_id}/status", response_model=InvoiceRead)
async def set_status(
    invoice_id: str,
    payload: InvoiceStatusUpdate,
    service: InvoiceService = Depends(get_invoice_service),
):
    return InvoiceRead.from_domain(await service.set_status(invoice_id, payload.status))


@router.post("/{invoice_id}/send", response_model=InvoiceRead)
async def send_invoice(invoice_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return InvoiceRead.from_domain(await service.send_invoice(invoice_id))


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(invoice_id: str, service: InvoiceService = Depends(get_invoice_service)):
    await service.delete_invoice(invoice_id)
    return Response(status_code=204)
