"""
SQLAlchemy ORM persistence model for purchase order payments.

Invariants enforced
-------------------
* Monetary fields use ``Decimal`` -- NEVER float.
* Rows are never deleted; reversal fills ``reversed_at``/``reversed_by``/
  ``reversal_reason`` once.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TrackedBase


class PaymentModel(TrackedBase):
    """A payment posted against a purchase order."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_order", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    committed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_at: Mapped[datetime]
    reversed_at: Mapped[datetime | None]
    reversed_by: Mapped[UUID | None]
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from procurement_modules.payments.models import Payment, PaymentType
        from procurement_modules.procurement.models import PaymentMethod

        return Payment(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            amount=self.amount,
            currency=self.currency,
            payment_type=PaymentType(self.payment_type),
            paid_at=self.paid_at,
            actor_id=self.created_by_id,
            payment_method=PaymentMethod(self.payment_method) if self.payment_method else None,
            reference=self.reference,
            committed_date=self.committed_date,
            reversed_at=self.reversed_at,
            reversed_by=self.reversed_by,
            reversal_reason=self.reversal_reason,
        )

    def __repr__(self) -> str:
        state = "reversed" if self.reversed_at else "active"
        return f"<PaymentModel {self.amount} {self.currency} [{state}]>"
