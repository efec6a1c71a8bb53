"""
Procurement Module.

Requisitions, supplier quote options, consolidation into purchase orders
and the purchase order lifecycle.
"""

from procurement_modules.procurement.config import ProcurementConfig
from procurement_modules.procurement.models import (
    AuthorizationResult,
    ConsolidationResult,
    DirectOrderLineInput,
    HistoryEventType,
    PaymentMethod,
    PurchaseOrder,
    PurchaseOrderHeaderInput,
    PurchaseOrderHistoryEntry,
    PurchaseOrderLine,
    PurchaseOrderLineInput,
    PurchaseOrderStatus,
    QuoteOption,
    QuoteOptionInput,
    ReceiptLineInput,
    ReceiptResult,
    Requisition,
    RequisitionLine,
    RequisitionLineInput,
    RequisitionStatus,
)
from procurement_modules.procurement.workflows import (
    INCREMENTAL_COST_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)

__all__ = [
    "AuthorizationResult",
    "ConsolidationResult",
    "DirectOrderLineInput",
    "HistoryEventType",
    "INCREMENTAL_COST_WORKFLOW",
    "PURCHASE_ORDER_WORKFLOW",
    "PaymentMethod",
    "ProcurementConfig",
    "PurchaseOrder",
    "PurchaseOrderHeaderInput",
    "PurchaseOrderHistoryEntry",
    "PurchaseOrderLine",
    "PurchaseOrderLineInput",
    "PurchaseOrderStatus",
    "QuoteOption",
    "QuoteOptionInput",
    "ReceiptLineInput",
    "ReceiptResult",
    "Requisition",
    "RequisitionLine",
    "RequisitionLineInput",
    "RequisitionStatus",
]
