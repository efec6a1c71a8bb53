"""
SQLAlchemy ORM persistence models for incremental cost orders.

Invariants enforced
-------------------
* One application row per (incremental cost, base purchase order).
* Distribution items are inserted once, at close, and never updated.
* ``exchange_rates`` is a JSON snapshot of decimal strings keyed by ISO
  currency code; the order's own currency is stored with rate ``"1"``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase


class IncrementalCostOrderModel(TrackedBase):
    __tablename__ = "incremental_cost_orders"

    __table_args__ = (
        UniqueConstraint("number", name="uq_incremental_cost_number"),
        Index("idx_incremental_cost_status", "status"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    cost_type: Mapped[str] = mapped_column(String(30), nullable=False)
    supplier_id: Mapped[UUID | None]
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rates: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    closed_at: Mapped[datetime | None]

    applications: Mapped[list["IncrementalCostApplicationModel"]] = relationship(
        "IncrementalCostApplicationModel",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="IncrementalCostApplicationModel.position",
    )
    items: Mapped[list["IncrementalCostDistributionItemModel"]] = relationship(
        "IncrementalCostDistributionItemModel",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="IncrementalCostDistributionItemModel.position",
    )

    def rate_snapshot(self) -> dict[str, Decimal]:
        return {code: Decimal(str(rate)) for code, rate in (self.exchange_rates or {}).items()}

    def to_dto(self):
        from procurement_modules.incremental.models import (
            CostType,
            IncrementalCostOrder,
            IncrementalCostStatus,
        )

        return IncrementalCostOrder(
            id=self.id,
            number=self.number,
            cost_type=CostType(self.cost_type),
            total_amount=self.total_amount,
            currency=self.currency,
            status=IncrementalCostStatus(self.status),
            exchange_rates=self.rate_snapshot(),
            supplier_id=self.supplier_id,
            description=self.description,
            closed_at=self.closed_at,
            applications=tuple(app.to_dto() for app in self.applications),
            items=tuple(item.to_dto() for item in self.items),
        )

    def __repr__(self) -> str:
        return f"<IncrementalCostOrderModel {self.number} [{self.status}] {self.total_amount} {self.currency}>"


class IncrementalCostApplicationModel(TrackedBase):
    __tablename__ = "incremental_cost_applications"

    __table_args__ = (
        UniqueConstraint("incremental_cost_id", "purchase_order_id", name="uq_incremental_application"),
        Index("idx_incremental_application_order", "purchase_order_id"),
    )

    incremental_cost_id: Mapped[UUID] = mapped_column(
        ForeignKey("incremental_cost_orders.id"), nullable=False,
    )
    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    position: Mapped[int]
    assigned_amount: Mapped[Decimal | None]

    def to_dto(self):
        from procurement_modules.incremental.models import IncrementalCostApplication

        return IncrementalCostApplication(
            id=self.id,
            incremental_cost_id=self.incremental_cost_id,
            purchase_order_id=self.purchase_order_id,
            assigned_amount=self.assigned_amount,
        )


class IncrementalCostDistributionItemModel(TrackedBase):
    __tablename__ = "incremental_cost_distribution_items"

    __table_args__ = (
        UniqueConstraint("incremental_cost_id", "position", name="uq_incremental_item_position"),
    )

    incremental_cost_id: Mapped[UUID] = mapped_column(
        ForeignKey("incremental_cost_orders.id"), nullable=False,
    )
    position: Mapped[int]
    purchase_order_id: Mapped[UUID]
    purchase_order_line_id: Mapped[UUID]
    material_id: Mapped[UUID]
    location_id: Mapped[UUID | None]
    base_cost: Mapped[Decimal]
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal]
    normalized_cost: Mapped[Decimal]
    percentage: Mapped[Decimal]
    increment: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    movement_id: Mapped[UUID | None]

    def to_dto(self):
        from procurement_modules.incremental.models import DistributionItem

        return DistributionItem(
            id=self.id,
            incremental_cost_id=self.incremental_cost_id,
            purchase_order_id=self.purchase_order_id,
            purchase_order_line_id=self.purchase_order_line_id,
            material_id=self.material_id,
            base_cost=self.base_cost,
            base_currency=self.base_currency,
            exchange_rate=self.exchange_rate,
            normalized_cost=self.normalized_cost,
            percentage=self.percentage,
            increment=self.increment,
            currency=self.currency,
            location_id=self.location_id,
            movement_id=self.movement_id,
        )
