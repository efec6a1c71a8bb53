"""Tests for PaymentService: posting, reversal and order liquidation."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_engines.liquidation import PaymentStatus
from procurement_kernel.exceptions import (
    InvalidPaymentError,
    MissingJustificationError,
    PaymentAlreadyReversedError,
    PaymentNotFoundError,
    PurchaseOrderNotFoundError,
)
from procurement_modules.payments.models import PaymentType
from procurement_modules.procurement.models import (
    HistoryEventType,
    PaymentMethod,
    ReceiptLineInput,
)


@pytest.fixture
def approved_order(draft_order, advance_order):
    """Approved cash order totalling 1160.00 MXN."""
    return advance_order(draft_order, "approved", payment_method=PaymentMethod.CASH)


class TestPostPayment:
    def test_full_payment_defaults_to_outstanding(self, approved_order, payment_service, procurement_service, test_actor_id):
        result = payment_service.post_payment(approved_order.id, None, PaymentType.FULL, test_actor_id)

        assert result.payment.amount == Decimal("1160")
        assert result.payment.currency == "MXN"
        assert result.liquidation.payment_status == PaymentStatus.PAID
        assert result.liquidation.outstanding == Decimal("0")
        assert result.order.id == approved_order.id
        assert result.order.amount_paid == Decimal("1160")
        assert result.order.payment_status == PaymentStatus.PAID

        order = procurement_service.get_purchase_order(approved_order.id)
        assert order.amount_paid == Decimal("1160")
        assert order.payment_status == PaymentStatus.PAID

    def test_advances_accumulate(self, approved_order, payment_service, test_actor_id):
        first = payment_service.post_payment(approved_order.id, Decimal("500"), PaymentType.ADVANCE, test_actor_id)
        assert first.liquidation.payment_status == PaymentStatus.PARTIAL
        assert first.liquidation.outstanding == Decimal("660")

        second = payment_service.post_payment(approved_order.id, Decimal("660"), PaymentType.ADVANCE, test_actor_id)
        assert second.liquidation.payment_status == PaymentStatus.PAID
        assert second.liquidation.amount_paid == Decimal("1160")

    def test_advance_needs_amount(self, approved_order, payment_service, test_actor_id):
        with pytest.raises(InvalidPaymentError, match="need an amount"):
            payment_service.post_payment(approved_order.id, None, PaymentType.ADVANCE, test_actor_id)

    def test_over_payment_rejected(self, approved_order, payment_service, test_actor_id):
        with pytest.raises(InvalidPaymentError, match="exceeds outstanding"):
            payment_service.post_payment(approved_order.id, Decimal("1160.01"), PaymentType.ADVANCE, test_actor_id)

        assert payment_service.list_payments(approved_order.id) == ()

    def test_non_positive_amount_rejected(self, approved_order, payment_service, test_actor_id):
        with pytest.raises(InvalidPaymentError, match="positive"):
            payment_service.post_payment(approved_order.id, Decimal("0"), PaymentType.ADVANCE, test_actor_id)

    def test_paid_order_takes_no_more_payments(self, approved_order, payment_service, test_actor_id):
        payment_service.post_payment(approved_order.id, None, PaymentType.FULL, test_actor_id)

        with pytest.raises(InvalidPaymentError, match="already paid"):
            payment_service.post_payment(approved_order.id, Decimal("1"), PaymentType.ADVANCE, test_actor_id)

    def test_draft_order_not_payable(self, draft_order, payment_service, test_actor_id):
        with pytest.raises(InvalidPaymentError, match="does not take payments"):
            payment_service.post_payment(draft_order.id, None, PaymentType.FULL, test_actor_id)

    def test_unknown_order(self, payment_service, test_actor_id):
        with pytest.raises(PurchaseOrderNotFoundError):
            payment_service.post_payment(uuid4(), None, PaymentType.FULL, test_actor_id)

    def test_committed_date_only_on_advance(self, approved_order, payment_service, test_actor_id):
        with pytest.raises(InvalidPaymentError, match="advance payments only"):
            payment_service.post_payment(
                approved_order.id, None, PaymentType.FULL, test_actor_id, committed_date=date(2024, 2, 1),
            )

        result = payment_service.post_payment(
            approved_order.id, Decimal("100"), PaymentType.ADVANCE, test_actor_id, committed_date=date(2024, 2, 1),
        )
        assert result.payment.committed_date == date(2024, 2, 1)

    def test_method_defaults_to_order_terms(self, approved_order, payment_service, test_actor_id):
        inherited = payment_service.post_payment(approved_order.id, Decimal("100"), PaymentType.ADVANCE, test_actor_id)
        explicit = payment_service.post_payment(
            approved_order.id, Decimal("100"), PaymentType.ADVANCE, test_actor_id,
            payment_method=PaymentMethod.WIRE_TRANSFER, reference="SPEI-881",
        )

        assert inherited.payment.payment_method == PaymentMethod.CASH
        assert explicit.payment.payment_method == PaymentMethod.WIRE_TRANSFER
        assert explicit.payment.reference == "SPEI-881"

    def test_payment_recorded_in_history(self, approved_order, payment_service, procurement_service, test_actor_id):
        result = payment_service.post_payment(approved_order.id, Decimal("160"), PaymentType.ADVANCE, test_actor_id)

        entry = procurement_service.get_history(approved_order.id)[-1]
        assert entry.event_type == HistoryEventType.PAYMENT_POSTED
        assert entry.details["payment_id"] == str(result.payment.id)
        assert entry.details["payment_type"] == "advance"
        assert entry.details["payment_status"] == "partial"


class TestPendingSettlement:
    def test_credit_order_pending_until_paid(self, draft_order, advance_order, payment_service, test_actor_id):
        order = advance_order(draft_order, "approved", payment_method=PaymentMethod.CREDIT)

        partial = payment_service.post_payment(order.id, Decimal("1000"), PaymentType.ADVANCE, test_actor_id)
        assert partial.liquidation.pending_settlement is True

        full = payment_service.post_payment(order.id, None, PaymentType.FULL, test_actor_id)
        assert full.payment.amount == Decimal("160")
        assert full.liquidation.pending_settlement is False

    def test_cash_order_never_pending(self, approved_order, payment_service, test_actor_id):
        result = payment_service.post_payment(approved_order.id, Decimal("1"), PaymentType.ADVANCE, test_actor_id)

        assert result.liquidation.pending_settlement is False


class TestReversePayment:
    def test_reversal_restores_liquidation(self, approved_order, payment_service, procurement_service, test_actor_id):
        posted = payment_service.post_payment(approved_order.id, Decimal("500"), PaymentType.ADVANCE, test_actor_id)

        reversed_ = payment_service.reverse_payment(posted.payment.id, test_actor_id, reason="bounced")

        assert reversed_.payment.is_active is False
        assert reversed_.payment.reversal_reason == "bounced"
        assert reversed_.liquidation.amount_paid == Decimal("0")
        assert reversed_.liquidation.payment_status == PaymentStatus.PENDING
        assert reversed_.order.amount_paid == Decimal("0")
        assert reversed_.order.payment_status == PaymentStatus.PENDING
        order = procurement_service.get_purchase_order(approved_order.id)
        assert order.payment_status == PaymentStatus.PENDING
        assert procurement_service.get_history(approved_order.id)[-1].event_type == HistoryEventType.PAYMENT_REVERSED

    def test_reversed_payments_filtered(self, approved_order, payment_service, test_actor_id):
        kept = payment_service.post_payment(approved_order.id, Decimal("100"), PaymentType.ADVANCE, test_actor_id)
        dropped = payment_service.post_payment(approved_order.id, Decimal("200"), PaymentType.ADVANCE, test_actor_id)
        payment_service.reverse_payment(dropped.payment.id, test_actor_id, reason="duplicate")

        assert len(payment_service.list_payments(approved_order.id)) == 2
        active = payment_service.list_payments(approved_order.id, include_reversed=False)
        assert [p.id for p in active] == [kept.payment.id]

    def test_double_reversal_rejected(self, approved_order, payment_service, test_actor_id):
        posted = payment_service.post_payment(approved_order.id, Decimal("500"), PaymentType.ADVANCE, test_actor_id)
        payment_service.reverse_payment(posted.payment.id, test_actor_id, reason="bounced")

        with pytest.raises(PaymentAlreadyReversedError):
            payment_service.reverse_payment(posted.payment.id, test_actor_id, reason="again")

    def test_reason_required(self, approved_order, payment_service, test_actor_id):
        posted = payment_service.post_payment(approved_order.id, Decimal("500"), PaymentType.ADVANCE, test_actor_id)

        with pytest.raises(MissingJustificationError):
            payment_service.reverse_payment(posted.payment.id, test_actor_id, reason="  ")

    def test_unknown_payment(self, payment_service, test_actor_id):
        with pytest.raises(PaymentNotFoundError):
            payment_service.reverse_payment(uuid4(), test_actor_id, reason="typo")

    def test_closed_order_payments_frozen(self, draft_order, advance_order, payment_service, procurement_service, test_actor_id):
        order = advance_order(draft_order, "in_process")
        procurement_service.receive_purchase_order(
            order.id, [ReceiptLineInput(order.lines[0].id, Decimal("10"), uuid4())], test_actor_id,
        )
        posted = payment_service.post_payment(order.id, None, PaymentType.FULL, test_actor_id)
        procurement_service.close_purchase_order(order.id, test_actor_id)

        with pytest.raises(InvalidPaymentError, match="closed order"):
            payment_service.reverse_payment(posted.payment.id, test_actor_id, reason="late refund")
