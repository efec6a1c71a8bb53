"""
SQLAlchemy ORM persistence models for the Inventory ledger.

Invariants enforced
-------------------
* (material_id, location_id) is unique on ``inventory_records``.
* (record_id, project_id, site_id) identifies one assignment; rows are
  deleted when their quantity reaches zero.
* ``inventory_movements`` is append-only except for its ``status`` column;
  ``reversal_of_id`` is unique so a movement has at most one reversal.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TrackedBase


class InventoryRecordModel(TrackedBase):
    """Two-pool stock record for one material at one location."""

    __tablename__ = "inventory_records"

    __table_args__ = (
        UniqueConstraint("material_id", "location_id", name="uq_inventory_material_location"),
        Index("idx_inventory_material", "material_id"),
    )

    material_id: Mapped[UUID]
    location_id: Mapped[UUID]
    available: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    assigned: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    unit_cost: Mapped[Decimal | None]
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    valuation_adjustment: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    @property
    def total(self) -> Decimal:
        return self.available + self.assigned

    def to_dto(self):
        from procurement_modules.inventory.models import InventoryRecord

        return InventoryRecord(
            id=self.id,
            material_id=self.material_id,
            location_id=self.location_id,
            available=self.available,
            assigned=self.assigned,
            unit_cost=self.unit_cost,
            currency=self.currency,
            valuation_adjustment=self.valuation_adjustment,
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryRecordModel {self.material_id}@{self.location_id} "
            f"available={self.available} assigned={self.assigned}>"
        )


class InventoryAssignmentModel(TrackedBase):
    """Quantity of a record committed to a project and site."""

    __tablename__ = "inventory_assignments"

    __table_args__ = (
        UniqueConstraint("record_id", "project_id", "site_id", name="uq_inventory_assignment"),
        Index("idx_assignment_project", "project_id"),
    )

    record_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_records.id"), nullable=False)
    project_id: Mapped[UUID]
    site_id: Mapped[UUID | None]
    quantity: Mapped[Decimal]

    def to_dto(self):
        from procurement_modules.inventory.models import InventoryAssignment

        return InventoryAssignment(
            id=self.id,
            record_id=self.record_id,
            project_id=self.project_id,
            site_id=self.site_id,
            quantity=self.quantity,
        )


class InventoryMovementModel(TrackedBase):
    """Ledger entry with before/after quantities of both pools."""

    __tablename__ = "inventory_movements"

    __table_args__ = (
        UniqueConstraint("reversal_of_id", name="uq_movement_reversal_of"),
        UniqueConstraint("record_id", "sequence", name="uq_movement_record_sequence"),
        Index("idx_movement_record", "record_id"),
        Index("idx_movement_document", "document_type", "document_id"),
        Index("idx_movement_document_line", "document_line_id"),
    )

    movement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    record_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_records.id"), nullable=False)
    # Position in the record's ledger, assigned under the record lock
    sequence: Mapped[int]
    material_id: Mapped[UUID]
    location_id: Mapped[UUID]
    quantity: Mapped[Decimal]
    available_before: Mapped[Decimal]
    available_after: Mapped[Decimal]
    assigned_before: Mapped[Decimal]
    assigned_after: Mapped[Decimal]
    project_id: Mapped[UUID | None]
    site_id: Mapped[UUID | None]
    target_project_id: Mapped[UUID | None]
    target_site_id: Mapped[UUID | None]
    value_amount: Mapped[Decimal | None]
    value_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    document_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    document_id: Mapped[UUID | None]
    # Order line a receipt belongs to
    document_line_id: Mapped[UUID | None]
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("inventory_movements.id"), nullable=True,
    )
    offsets_movement_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("inventory_movements.id"), nullable=True,
    )
    movement_date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime]

    def to_dto(self):
        from procurement_modules.inventory.models import Movement, MovementStatus, MovementType

        return Movement(
            id=self.id,
            movement_type=MovementType(self.movement_type),
            record_id=self.record_id,
            material_id=self.material_id,
            location_id=self.location_id,
            quantity=self.quantity,
            available_before=self.available_before,
            available_after=self.available_after,
            assigned_before=self.assigned_before,
            assigned_after=self.assigned_after,
            movement_date=self.movement_date,
            occurred_at=self.occurred_at,
            actor_id=self.created_by_id,
            status=MovementStatus(self.status),
            project_id=self.project_id,
            site_id=self.site_id,
            target_project_id=self.target_project_id,
            target_site_id=self.target_site_id,
            value_amount=self.value_amount,
            value_currency=self.value_currency,
            document_type=self.document_type,
            document_id=self.document_id,
            document_line_id=self.document_line_id,
            reason=self.reason,
            reversal_of_id=self.reversal_of_id,
            offsets_movement_id=self.offsets_movement_id,
        )
