"""
Inventory Domain Models (``procurement_modules.inventory.models``).

Responsibility
--------------
Frozen value objects for the two-pool inventory ledger: the per
(material, location) record, project assignments and the append-only
movement journal.

Invariants
----------
- ``available >= 0`` and ``assigned >= 0`` on every record.
- ``total`` is derived (``available + assigned``), never stored.
- Every movement carries before/after quantities for both pools.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procurement_kernel.db.types import ZERO
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.inventory.models")


class MovementType(Enum):
    """Inventory movement categories."""
    RECEIPT = "receipt"
    ISSUE = "issue"
    ASSIGN = "assign"  # available -> assigned
    RELEASE = "release"  # assigned -> available
    TRANSFER_ASSIGNMENT = "transfer_assignment"
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    VALUATION_ADJUSTMENT = "valuation_adjustment"
    REVERSAL = "reversal"


NON_REVERSIBLE_TYPES = frozenset({MovementType.REVERSAL, MovementType.VALUATION_ADJUSTMENT})


class MovementStatus(Enum):
    ACTIVE = "active"
    REVERSED = "reversed"


@dataclass(frozen=True)
class InventoryRecord:
    """Stock of one material at one location."""
    id: UUID
    material_id: UUID
    location_id: UUID
    available: Decimal = ZERO
    assigned: Decimal = ZERO
    unit_cost: Decimal | None = None
    currency: str | None = None
    valuation_adjustment: Decimal = ZERO

    def __post_init__(self):
        if self.available < ZERO or self.assigned < ZERO:
            logger.warning(
                "inventory_record_negative_pool",
                extra={
                    "record_id": str(self.id),
                    "available": str(self.available),
                    "assigned": str(self.assigned),
                },
            )
            raise ValueError(
                f"Inventory pools cannot be negative: available={self.available}, "
                f"assigned={self.assigned}"
            )

    @property
    def total(self) -> Decimal:
        return self.available + self.assigned


@dataclass(frozen=True)
class InventoryAssignment:
    """Quantity of a record reserved for one (project, site)."""
    id: UUID
    record_id: UUID
    project_id: UUID
    quantity: Decimal
    site_id: UUID | None = None


@dataclass(frozen=True)
class Movement:
    """One append-only ledger entry."""
    id: UUID
    movement_type: MovementType
    record_id: UUID
    material_id: UUID
    location_id: UUID
    quantity: Decimal
    available_before: Decimal
    available_after: Decimal
    assigned_before: Decimal
    assigned_after: Decimal
    movement_date: date
    occurred_at: datetime
    actor_id: UUID
    status: MovementStatus = MovementStatus.ACTIVE
    project_id: UUID | None = None
    site_id: UUID | None = None
    target_project_id: UUID | None = None
    target_site_id: UUID | None = None
    value_amount: Decimal | None = None
    value_currency: str | None = None
    document_type: str | None = None
    document_id: UUID | None = None
    document_line_id: UUID | None = None
    reason: str | None = None
    reversal_of_id: UUID | None = None
    offsets_movement_id: UUID | None = None

    @property
    def is_reversible(self) -> bool:
        return self.movement_type not in NON_REVERSIBLE_TYPES and self.status == MovementStatus.ACTIVE


@dataclass(frozen=True)
class StockMovementResult:
    """Record state after an operation, and the movement that recorded it."""
    record: InventoryRecord
    movement: Movement
