"""
Procurement Domain Models.

The nouns of procurement: requisitions, quote options, purchase orders and
their audit history.  Frozen DTOs returned by ``ProcurementService``, plus
the input shapes callers hand to it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_engines.liquidation import PaymentStatus
from procurement_kernel.db.types import ZERO
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.models")


class RequisitionStatus(Enum):
    """Requisition lifecycle states."""
    QUOTING = "quoting"
    AWAITING_DELIVERY = "awaiting_delivery"  # every line consolidated
    CANCELLED = "cancelled"


class PurchaseOrderStatus(Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    PENDING_AUTHORIZATION = "pending_authorization"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROCESS = "in_process"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    CLOSED = "closed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


EDITABLE_STATUSES = frozenset({PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING_AUTHORIZATION})
RECEIVABLE_STATUSES = frozenset({PurchaseOrderStatus.IN_PROCESS, PurchaseOrderStatus.PARTIALLY_DELIVERED})


class PaymentMethod(Enum):
    """How the supplier is paid; credit and wire transfer settle later."""
    CREDIT = "credit"
    WIRE_TRANSFER = "wire_transfer"
    CASH = "cash"
    CHECK = "check"
    CARD = "card"


class HistoryEventType(Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    EDITED = "edited"
    RECEIVED = "received"
    PAYMENT_POSTED = "payment_posted"
    PAYMENT_REVERSED = "payment_reversed"


# -----------------------------------------------------------------------------
# Requisitions and quotes
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RequisitionLine:
    """A material need on a requisition."""
    id: UUID
    requisition_id: UUID
    line_number: int
    required_quantity: Decimal
    quantity_processed: Decimal = ZERO
    material_id: UUID | None = None
    description: str = ""
    unit: str = "pza"

    @property
    def remaining_quantity(self) -> Decimal:
        return self.required_quantity - self.quantity_processed

    @property
    def is_fully_processed(self) -> bool:
        return self.quantity_processed >= self.required_quantity


@dataclass(frozen=True)
class Requisition:
    id: UUID
    number: str
    department_code: str
    status: RequisitionStatus
    project_id: UUID | None = None
    site_id: UUID | None = None
    lines: tuple[RequisitionLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class QuoteOption:
    """A supplier's offer for one requisition line."""
    id: UUID
    requisition_line_id: UUID
    supplier_id: UUID
    unit_price: Decimal
    quoted_quantity: Decimal
    currency: str
    is_net_price: bool = False
    is_import: bool = False
    is_immediate_delivery: bool = True
    selected: bool = False
    is_total_forced: bool = False
    forced_total: Decimal | None = None
    calculation_snapshot: dict[str, Any] | None = None
    purchase_order_id: UUID | None = None

    @property
    def is_consumed(self) -> bool:
        return self.purchase_order_id is not None


# -----------------------------------------------------------------------------
# Purchase orders
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A purchase order line; ``unit_price`` is the pre-tax base."""
    id: UUID
    purchase_order_id: UUID
    line_number: int
    quantity: Decimal
    unit_price: Decimal
    material_id: UUID | None = None
    description: str = ""
    unit: str = "pza"
    is_import: bool = False
    quote_option_id: UUID | None = None
    requisition_line_id: UUID | None = None
    quantity_received: Decimal = ZERO
    received_location_id: UUID | None = None

    def __post_init__(self):
        if self.quantity_received > self.quantity:
            logger.warning(
                "purchase_order_line_over_receipt",
                extra={
                    "line_id": str(self.id),
                    "quantity": str(self.quantity),
                    "quantity_received": str(self.quantity_received),
                },
            )
            raise ValueError(
                f"quantity_received ({self.quantity_received}) "
                f"cannot exceed quantity ({self.quantity})"
            )

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def pending_quantity(self) -> Decimal:
        return self.quantity - self.quantity_received


@dataclass(frozen=True)
class PurchaseOrder:
    id: UUID
    number: str
    supplier_id: UUID
    currency: str
    status: PurchaseOrderStatus
    subtotal: Decimal
    tax: Decimal
    withholding: Decimal
    total: Decimal
    requisition_id: UUID | None = None
    project_id: UUID | None = None
    site_id: UUID | None = None
    is_import: bool = False
    is_total_forced: bool = False
    calculation_snapshot: dict[str, Any] | None = None
    has_immediate_delivery: bool = True
    payment_method: PaymentMethod | None = None
    amount_paid: Decimal = ZERO
    pending_settlement: bool = False
    payment_status: PaymentStatus = PaymentStatus.PENDING
    credit_days: int | None = None
    credit_due_date: date | None = None
    is_urgent: bool = False
    comments: str | None = None
    authorized_at: datetime | None = None
    authorized_by: UUID | None = None
    held_from_status: PurchaseOrderStatus | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)

    @property
    def outstanding(self) -> Decimal:
        return max(self.total - self.amount_paid, ZERO)

    @property
    def is_fully_received(self) -> bool:
        return bool(self.lines) and all(line.quantity_received >= line.quantity for line in self.lines)


@dataclass(frozen=True)
class PurchaseOrderHistoryEntry:
    """One append-only audit record for a purchase order."""
    id: UUID
    purchase_order_id: UUID
    event_type: HistoryEventType
    actor_id: UUID
    occurred_at: datetime
    from_status: str | None = None
    to_status: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Inputs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RequisitionLineInput:
    required_quantity: Decimal
    material_id: UUID | None = None
    description: str = ""
    unit: str = "pza"


@dataclass(frozen=True)
class QuoteOptionInput:
    requisition_line_id: UUID
    supplier_id: UUID
    unit_price: Decimal
    quoted_quantity: Decimal
    currency: str
    is_net_price: bool = False
    is_import: bool = False
    is_immediate_delivery: bool = True
    is_total_forced: bool = False
    forced_total: Decimal | None = None


@dataclass(frozen=True)
class PurchaseOrderHeaderInput:
    """Editable header fields; an edit replaces all of them."""
    comments: str | None = None
    is_urgent: bool = False
    payment_method: PaymentMethod | None = None
    credit_days: int | None = None


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    """
    One line of an edit.  ``id`` names the stored line it replaces; leave
    it None to insert a new line.
    """
    quantity: Decimal
    unit_price: Decimal
    id: UUID | None = None
    material_id: UUID | None = None
    description: str = ""
    unit: str = "pza"
    is_import: bool = False
    is_net_price: bool = False


@dataclass(frozen=True)
class DirectOrderLineInput:
    """A catalog material ordered without a requisition."""
    material_id: UUID
    quantity: Decimal
    unit_price: Decimal
    description: str = ""
    unit: str = "pza"
    is_import: bool = False
    is_net_price: bool = False


@dataclass(frozen=True)
class ReceiptLineInput:
    line_id: UUID
    quantity: Decimal
    location_id: UUID


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ConsolidationResult:
    requisition_id: UUID
    requisition_status: RequisitionStatus
    orders: tuple[PurchaseOrder, ...]


@dataclass(frozen=True)
class AuthorizationResult:
    """
    Outcome of an authorization.

    The authorization itself is committed; ``warnings`` lists side effects
    (document emission, notification) that failed afterwards.
    """
    order: PurchaseOrder
    warnings: tuple[str, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


@dataclass(frozen=True)
class ReceiptResult:
    order: PurchaseOrder
    movement_ids: tuple[UUID, ...] = ()
