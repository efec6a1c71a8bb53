"""
Liquidation -- derive a purchase order's payment state from its payments.

The amount paid is always re-summed from the full set of active payments;
there is no running counter to drift.  Posting and then reversing a payment
therefore returns every derived field to its previous value.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from procurement_engines.tracer import traced_engine
from procurement_kernel.db.types import ZERO, to_decimal


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


@dataclass(frozen=True)
class Liquidation:
    amount_paid: Decimal
    outstanding: Decimal
    pending_settlement: bool
    payment_status: PaymentStatus


@traced_engine("liquidation", "1.0", fingerprint_fields=("total", "payment_amounts", "tracks_settlement"))
def compute_liquidation(
    *,
    total: Decimal,
    payment_amounts: Iterable[Decimal],
    tracks_settlement: bool,
) -> Liquidation:
    """
    Recompute liquidation from scratch.

    Args:
        total: Order total.
        payment_amounts: Amounts of all active (non-reversed) payments.
        tracks_settlement: Whether the order's payment method carries the
            pending-settlement flag (credit terms, wire transfer).
    """
    total = to_decimal(total)
    amount_paid = sum((to_decimal(a) for a in payment_amounts), ZERO)
    outstanding = max(total - amount_paid, ZERO)

    if amount_paid >= total:
        status = PaymentStatus.PAID
    elif amount_paid > ZERO:
        status = PaymentStatus.PARTIAL
    else:
        status = PaymentStatus.PENDING

    return Liquidation(
        amount_paid=amount_paid,
        outstanding=outstanding,
        pending_settlement=tracks_settlement and amount_paid < total,
        payment_status=status,
    )
