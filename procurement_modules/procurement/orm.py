"""
SQLAlchemy ORM persistence models for the Procurement module.

Responsibility
--------------
Database-backed persistence for requisitions, quote options, purchase
orders, their lines and their append-only history.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProcurementService``,
``PaymentService`` and ``IncrementalCostService``.  Inherits from
``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* All monetary and quantity fields use ``Decimal`` (exact on every
  backend) -- NEVER float.
* Enum fields stored as String(50) for readability and portability.
* ``quote_options.purchase_order_id`` is set once an option is consumed
  by a purchase order and cleared only by cancellation or line removal.
* ``purchase_order_history`` rows are only ever inserted.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase

# ---------------------------------------------------------------------------
# RequisitionModel
# ---------------------------------------------------------------------------


class RequisitionModel(TrackedBase):
    """
    A requisition: the departmental need that quoting answers.

    Guarantees:
        - ``number`` is unique (per-department sequence, e.g. ``MNT-0003``).
        - ``project_id`` and ``site_id`` are copied onto every purchase order
          derived from it.
    """

    __tablename__ = "requisitions"

    __table_args__ = (
        UniqueConstraint("number", name="uq_requisition_number"),
        Index("idx_requisition_status", "status"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    department_code: Mapped[str] = mapped_column(String(20), nullable=False)
    project_id: Mapped[UUID | None]
    site_id: Mapped[UUID | None]
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="quoting")

    lines: Mapped[list["RequisitionLineModel"]] = relationship(
        "RequisitionLineModel",
        back_populates="requisition",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RequisitionLineModel.line_number",
    )

    def to_dto(self):
        from procurement_modules.procurement.models import Requisition, RequisitionStatus

        return Requisition(
            id=self.id,
            number=self.number,
            department_code=self.department_code,
            status=RequisitionStatus(self.status),
            project_id=self.project_id,
            site_id=self.site_id,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<RequisitionModel {self.number} [{self.status}]>"


# ---------------------------------------------------------------------------
# RequisitionLineModel
# ---------------------------------------------------------------------------


class RequisitionLineModel(TrackedBase):
    """
    A requisition line.

    Guarantees:
        - 0 <= quantity_processed <= required_quantity.
        - (requisition_id, line_number) is unique.
    """

    __tablename__ = "requisition_lines"

    __table_args__ = (
        UniqueConstraint("requisition_id", "line_number", name="uq_requisition_line_number"),
        Index("idx_req_line_requisition", "requisition_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(ForeignKey("requisitions.id"), nullable=False)
    line_number: Mapped[int]
    material_id: Mapped[UUID | None]
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pza")
    required_quantity: Mapped[Decimal]
    quantity_processed: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    requisition: Mapped["RequisitionModel"] = relationship(
        "RequisitionModel",
        back_populates="lines",
    )

    def to_dto(self):
        from procurement_modules.procurement.models import RequisitionLine

        return RequisitionLine(
            id=self.id,
            requisition_id=self.requisition_id,
            line_number=self.line_number,
            required_quantity=self.required_quantity,
            quantity_processed=self.quantity_processed,
            material_id=self.material_id,
            description=self.description,
            unit=self.unit,
        )


# ---------------------------------------------------------------------------
# QuoteOptionModel
# ---------------------------------------------------------------------------


class QuoteOptionModel(TrackedBase):
    """
    A supplier quote for one requisition line.

    Guarantees:
        - ``is_net_price`` and ``is_total_forced`` are never both true.
        - ``calculation_snapshot`` is frozen at registration.
        - ``purchase_order_id`` is set while a purchase order consumes it.
    """

    __tablename__ = "quote_options"

    __table_args__ = (
        Index("idx_quote_option_line", "requisition_line_id"),
        Index("idx_quote_option_order", "purchase_order_id"),
    )

    requisition_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("requisition_lines.id"), nullable=False,
    )
    supplier_id: Mapped[UUID]
    unit_price: Mapped[Decimal]
    quoted_quantity: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_net_price: Mapped[bool] = mapped_column(default=False)
    is_import: Mapped[bool] = mapped_column(default=False)
    is_immediate_delivery: Mapped[bool] = mapped_column(default=True)
    selected: Mapped[bool] = mapped_column(default=False)
    is_total_forced: Mapped[bool] = mapped_column(default=False)
    forced_total: Mapped[Decimal | None]
    calculation_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # Plain column: purchase_order_lines already references quote_options
    purchase_order_id: Mapped[UUID | None]

    def to_dto(self):
        from procurement_modules.procurement.models import QuoteOption

        return QuoteOption(
            id=self.id,
            requisition_line_id=self.requisition_line_id,
            supplier_id=self.supplier_id,
            unit_price=self.unit_price,
            quoted_quantity=self.quoted_quantity,
            currency=self.currency,
            is_net_price=self.is_net_price,
            is_import=self.is_import,
            is_immediate_delivery=self.is_immediate_delivery,
            selected=self.selected,
            is_total_forced=self.is_total_forced,
            forced_total=self.forced_total,
            calculation_snapshot=dict(self.calculation_snapshot) if self.calculation_snapshot else None,
            purchase_order_id=self.purchase_order_id,
        )


# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order (OC).

    Guarantees:
        - ``number`` is unique (global sequence, e.g. ``OC-0019``).
        - ``amount_paid``, ``pending_settlement`` and ``payment_status`` are
          derived from the active payments and rewritten on every payment
          post or reversal.
        - A forced ``total`` is never recomputed.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("number", name="uq_purchase_order_number"),
        Index("idx_po_status", "status"),
        Index("idx_po_supplier", "supplier_id"),
        Index("idx_po_requisition", "requisition_id"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID]
    requisition_id: Mapped[UUID | None] = mapped_column(ForeignKey("requisitions.id"), nullable=True)
    project_id: Mapped[UUID | None]
    site_id: Mapped[UUID | None]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")

    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    withholding: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    is_import: Mapped[bool] = mapped_column(default=False)
    is_total_forced: Mapped[bool] = mapped_column(default=False)
    calculation_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    has_immediate_delivery: Mapped[bool] = mapped_column(default=True)

    # Payment terms and derived liquidation
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    pending_settlement: Mapped[bool] = mapped_column(default=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    credit_days: Mapped[int | None]
    credit_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_urgent: Mapped[bool] = mapped_column(default=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    authorized_at: Mapped[datetime | None]
    authorized_by: Mapped[UUID | None]
    held_from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    def to_dto(self):
        from procurement_engines.liquidation import PaymentStatus
        from procurement_modules.procurement.models import (
            PaymentMethod,
            PurchaseOrder,
            PurchaseOrderStatus,
        )

        return PurchaseOrder(
            id=self.id,
            number=self.number,
            supplier_id=self.supplier_id,
            currency=self.currency,
            status=PurchaseOrderStatus(self.status),
            subtotal=self.subtotal,
            tax=self.tax,
            withholding=self.withholding,
            total=self.total,
            requisition_id=self.requisition_id,
            project_id=self.project_id,
            site_id=self.site_id,
            is_import=self.is_import,
            is_total_forced=self.is_total_forced,
            calculation_snapshot=dict(self.calculation_snapshot) if self.calculation_snapshot else None,
            has_immediate_delivery=self.has_immediate_delivery,
            payment_method=PaymentMethod(self.payment_method) if self.payment_method else None,
            amount_paid=self.amount_paid,
            pending_settlement=self.pending_settlement,
            payment_status=PaymentStatus(self.payment_status),
            credit_days=self.credit_days,
            credit_due_date=self.credit_due_date,
            is_urgent=self.is_urgent,
            comments=self.comments,
            authorized_at=self.authorized_at,
            authorized_by=self.authorized_by,
            held_from_status=PurchaseOrderStatus(self.held_from_status) if self.held_from_status else None,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.number} [{self.status}] total={self.total}>"


# ---------------------------------------------------------------------------
# PurchaseOrderLineModel
# ---------------------------------------------------------------------------


class PurchaseOrderLineModel(TrackedBase):
    """
    A purchase order line.

    Guarantees:
        - ``unit_price`` is the pre-tax base price.
        - ``quantity_received`` never exceeds ``quantity``.
        - ``quote_option_id`` is None for lines added by an edit.
    """

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        Index("idx_po_line_order", "purchase_order_id"),
        Index("idx_po_line_material", "material_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    line_number: Mapped[int]
    material_id: Mapped[UUID | None]
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pza")
    quantity: Mapped[Decimal]
    unit_price: Mapped[Decimal]
    is_import: Mapped[bool] = mapped_column(default=False)
    quote_option_id: Mapped[UUID | None] = mapped_column(ForeignKey("quote_options.id"), nullable=True)
    requisition_line_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("requisition_lines.id"), nullable=True,
    )
    quantity_received: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    received_location_id: Mapped[UUID | None]

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from procurement_modules.procurement.models import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            quantity=self.quantity,
            unit_price=self.unit_price,
            material_id=self.material_id,
            description=self.description,
            unit=self.unit,
            is_import=self.is_import,
            quote_option_id=self.quote_option_id,
            requisition_line_id=self.requisition_line_id,
            quantity_received=self.quantity_received,
            received_location_id=self.received_location_id,
        )


# ---------------------------------------------------------------------------
# PurchaseOrderHistoryModel
# ---------------------------------------------------------------------------


class PurchaseOrderHistoryModel(TrackedBase):
    """Append-only audit record: status changes, edits, payments, receptions."""

    __tablename__ = "purchase_order_history"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "sequence", name="uq_po_history_sequence"),
        Index("idx_po_history_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    sequence: Mapped[int]
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime]

    def to_dto(self):
        from procurement_modules.procurement.models import HistoryEventType, PurchaseOrderHistoryEntry

        return PurchaseOrderHistoryEntry(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            event_type=HistoryEventType(self.event_type),
            actor_id=self.created_by_id,
            occurred_at=self.occurred_at,
            from_status=self.from_status,
            to_status=self.to_status,
            details=dict(self.details or {}),
        )
