"""
Incremental Cost Domain Models.

Incremental costs (freight, customs duties, insurance) are billed apart from
the goods they belong to and distributed over the material lines of one or
more base purchase orders.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procurement_engines.distribution import DistributionResult


class CostType(Enum):
    FREIGHT = "freight"
    CUSTOMS_DUTY = "customs_duty"
    INSURANCE = "insurance"
    HANDLING = "handling"
    OTHER = "other"


class IncrementalCostStatus(Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class IncrementalCostApplication:
    """Link to one base purchase order; ``assigned_amount`` is set at close."""
    id: UUID
    incremental_cost_id: UUID
    purchase_order_id: UUID
    assigned_amount: Decimal | None = None


@dataclass(frozen=True)
class DistributionItem:
    """
    One persisted line of the distribution snapshot.

    A line received at several locations has one item per location, each
    carrying that location's part of the line's increment.
    """
    id: UUID
    incremental_cost_id: UUID
    purchase_order_id: UUID
    purchase_order_line_id: UUID
    material_id: UUID
    base_cost: Decimal
    base_currency: str
    exchange_rate: Decimal
    normalized_cost: Decimal
    percentage: Decimal
    increment: Decimal
    currency: str
    location_id: UUID | None = None
    movement_id: UUID | None = None


@dataclass(frozen=True)
class IncrementalCostOrder:
    id: UUID
    number: str
    cost_type: CostType
    total_amount: Decimal
    currency: str
    status: IncrementalCostStatus
    exchange_rates: dict[str, Decimal] = field(default_factory=dict)
    supplier_id: UUID | None = None
    description: str | None = None
    closed_at: datetime | None = None
    applications: tuple[IncrementalCostApplication, ...] = ()
    items: tuple[DistributionItem, ...] = ()

    @property
    def base_order_ids(self) -> tuple[UUID, ...]:
        return tuple(app.purchase_order_id for app in self.applications)


@dataclass(frozen=True)
class CloseResult:
    """
    Outcome of closing an incremental cost order.

    ``unposted_lines`` lists material lines that received a share but were
    never received into a location, so no valuation movement was posted.
    """
    order: IncrementalCostOrder
    distribution: DistributionResult
    movement_ids: tuple[UUID, ...] = ()
    unposted_lines: tuple[UUID, ...] = ()
