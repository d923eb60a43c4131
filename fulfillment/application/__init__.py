from .inventory_service import InventoryService
from .invoice_service import InvoiceService
from .service import OrderWorkflowService

__all__ = ["OrderWorkflowService", "InvoiceService", "InventoryService"]
