"""
Payment Module Service (``procurement_modules.payments.service``).

Responsibility
--------------
Posts and reverses payments against purchase orders and keeps each order's
derived liquidation fields (``amount_paid``, ``pending_settlement``,
``payment_status``) in step with its payment set.

Invariants enforced
-------------------
* Liquidation is recomputed from the full set of active payments on every
  change (``compute_liquidation``); there is no running counter.
* A payment never exceeds the order's outstanding balance.
* A payment is reversed at most once and never deleted.

Failure modes
-------------
* ``PurchaseOrderNotFoundError`` / ``PaymentNotFoundError``.
* ``InvalidPaymentError`` -- non-positive amount, over the balance, or an
  order in a state that does not take payments.
* ``PaymentAlreadyReversedError``.
* ``MissingJustificationError`` -- reversal without a reason.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_engines.liquidation import Liquidation, compute_liquidation
from procurement_kernel.db.types import ZERO, to_decimal
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    InvalidPaymentError,
    MissingJustificationError,
    PaymentAlreadyReversedError,
    PaymentNotFoundError,
    PurchaseOrderNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules._service_helpers import lock_by_id, transaction_boundary
from procurement_modules.payments.models import Payment, PaymentResult, PaymentType
from procurement_modules.payments.orm import PaymentModel
from procurement_modules.procurement.config import ProcurementConfig
from procurement_modules.procurement.history import append_history
from procurement_modules.procurement.models import (
    HistoryEventType,
    PaymentMethod,
    PurchaseOrderStatus,
)
from procurement_modules.procurement.orm import PurchaseOrderModel

logger = get_logger("modules.payments.service")

PAYABLE_STATUSES = frozenset({
    PurchaseOrderStatus.APPROVED.value,
    PurchaseOrderStatus.IN_PROCESS.value,
    PurchaseOrderStatus.PARTIALLY_DELIVERED.value,
    PurchaseOrderStatus.DELIVERED.value,
})


def reconcile_order_payments(
    session: Session,
    order: PurchaseOrderModel,
    config: ProcurementConfig,
) -> Liquidation:
    """Recompute and store an order's liquidation from its active payments."""
    amounts = session.execute(
        select(PaymentModel.amount).where(
            PaymentModel.purchase_order_id == order.id,
            PaymentModel.reversed_at.is_(None),
        )
    ).scalars().all()
    method = PaymentMethod(order.payment_method) if order.payment_method else None
    liquidation = compute_liquidation(
        total=order.total,
        payment_amounts=amounts,
        tracks_settlement=config.tracks_settlement(method),
    )
    order.amount_paid = liquidation.amount_paid
    order.pending_settlement = liquidation.pending_settlement
    order.payment_status = liquidation.payment_status.value
    return liquidation


class PaymentService:
    """
    Payments against purchase orders.

    Guarantees
    ----------
    * Each public method owns the transaction boundary (commit on success,
      rollback on exception).
    * The purchase order row is locked before the payment set is read.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ProcurementConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or ProcurementConfig.with_defaults()

    def post_payment(
        self,
        order_id: UUID,
        amount: Decimal | None,
        payment_type: PaymentType,
        actor_id: UUID,
        payment_method: PaymentMethod | None = None,
        reference: str | None = None,
        committed_date: date | None = None,
    ) -> PaymentResult:
        """
        Register a payment and recompute the order's liquidation.

        ``FULL`` payments default ``amount`` to the outstanding balance.
        ``committed_date`` (the date the supplier was promised the rest) is
        only meaningful for ``ADVANCE`` payments.
        """
        with transaction_boundary(self._session, "payments.post_payment"):
            order = lock_by_id(self._session, PurchaseOrderModel, order_id)
            if order is None:
                raise PurchaseOrderNotFoundError(order_id)
            if order.status not in PAYABLE_STATUSES:
                raise InvalidPaymentError(order_id, f"order in state '{order.status}' does not take payments")

            current = reconcile_order_payments(self._session, order, self._config)
            outstanding = current.outstanding
            if outstanding <= ZERO:
                raise InvalidPaymentError(order_id, "order is already paid in full")

            if amount is None:
                if payment_type != PaymentType.FULL:
                    raise InvalidPaymentError(order_id, "advance payments need an amount")
                amount = outstanding
            amount = to_decimal(amount)
            if amount <= ZERO:
                raise InvalidPaymentError(order_id, f"amount must be positive, got {amount}")
            if amount > outstanding:
                raise InvalidPaymentError(
                    order_id, f"amount {amount} exceeds outstanding balance {outstanding}",
                )
            if committed_date is not None and payment_type != PaymentType.ADVANCE:
                raise InvalidPaymentError(order_id, "committed_date applies to advance payments only")

            method = payment_method or (
                PaymentMethod(order.payment_method) if order.payment_method else None
            )
            payment = PaymentModel(
                purchase_order_id=order.id,
                amount=amount,
                currency=order.currency,
                payment_type=payment_type.value,
                payment_method=method.value if method else None,
                reference=reference,
                committed_date=committed_date,
                paid_at=self._clock.now(),
                created_by_id=actor_id,
            )
            self._session.add(payment)
            self._session.flush()

            liquidation = reconcile_order_payments(self._session, order, self._config)
            order.updated_by_id = actor_id
            append_history(
                self._session, order, HistoryEventType.PAYMENT_POSTED, actor_id, self._clock.now(),
                details={
                    "payment_id": payment.id,
                    "amount": amount,
                    "payment_type": payment_type,
                    "amount_paid": liquidation.amount_paid,
                    "payment_status": liquidation.payment_status,
                },
            )

        logger.info(
            "payment_posted",
            extra={
                "order_id": str(order_id),
                "payment_id": str(payment.id),
                "amount": str(amount),
                "payment_type": payment_type.value,
                "amount_paid": str(liquidation.amount_paid),
                "pending_settlement": liquidation.pending_settlement,
            },
        )
        return PaymentResult(payment=payment.to_dto(), liquidation=liquidation, order=order.to_dto())

    def reverse_payment(self, payment_id: UUID, actor_id: UUID, reason: str) -> PaymentResult:
        """Mark a payment reversed and recompute the order's liquidation."""
        if not reason or not reason.strip():
            raise MissingJustificationError("reverse_payment")

        with transaction_boundary(self._session, "payments.reverse_payment"):
            payment = lock_by_id(self._session, PaymentModel, payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)
            order = lock_by_id(self._session, PurchaseOrderModel, payment.purchase_order_id)
            if payment.reversed_at is not None:
                raise PaymentAlreadyReversedError(payment_id)
            if order.status == PurchaseOrderStatus.CLOSED.value:
                raise InvalidPaymentError(order.id, "payments of a closed order cannot be reversed")

            payment.reversed_at = self._clock.now()
            payment.reversed_by = actor_id
            payment.reversal_reason = reason.strip()
            payment.updated_by_id = actor_id
            self._session.flush()

            liquidation = reconcile_order_payments(self._session, order, self._config)
            order.updated_by_id = actor_id
            append_history(
                self._session, order, HistoryEventType.PAYMENT_REVERSED, actor_id, self._clock.now(),
                details={
                    "payment_id": payment.id,
                    "amount": payment.amount,
                    "reason": payment.reversal_reason,
                    "amount_paid": liquidation.amount_paid,
                    "payment_status": liquidation.payment_status,
                },
            )

        logger.info(
            "payment_reversed",
            extra={
                "order_id": str(payment.purchase_order_id),
                "payment_id": str(payment_id),
                "amount": str(payment.amount),
                "amount_paid": str(liquidation.amount_paid),
            },
        )
        return PaymentResult(payment=payment.to_dto(), liquidation=liquidation, order=order.to_dto())

    def list_payments(self, order_id: UUID, include_reversed: bool = True) -> tuple[Payment, ...]:
        stmt = select(PaymentModel).where(PaymentModel.purchase_order_id == order_id)
        if not include_reversed:
            stmt = stmt.where(PaymentModel.reversed_at.is_(None))
        stmt = stmt.order_by(PaymentModel.paid_at, PaymentModel.created_at, PaymentModel.id)
        return tuple(row.to_dto() for row in self._session.execute(stmt).scalars())
