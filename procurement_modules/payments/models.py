"""
Payment Domain Models.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procurement_engines.liquidation import Liquidation
from procurement_modules.procurement.models import PaymentMethod, PurchaseOrder


class PaymentType(Enum):
    FULL = "full"  # settles the outstanding balance
    ADVANCE = "advance"


@dataclass(frozen=True)
class Payment:
    """A payment against a purchase order.  Immutable except for reversal."""
    id: UUID
    purchase_order_id: UUID
    amount: Decimal
    currency: str
    payment_type: PaymentType
    paid_at: datetime
    actor_id: UUID
    payment_method: PaymentMethod | None = None
    reference: str | None = None
    committed_date: date | None = None
    reversed_at: datetime | None = None
    reversed_by: UUID | None = None
    reversal_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.reversed_at is None


@dataclass(frozen=True)
class PaymentResult:
    """The payment touched plus the order and its liquidation after the change."""
    payment: Payment
    liquidation: Liquidation
    order: PurchaseOrder
