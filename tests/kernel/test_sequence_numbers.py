"""Tests for document number allocation."""

from datetime import datetime, timezone

from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.services.sequence_service import SequenceService, format_document_number


class TestSequenceService:
    def test_first_value_is_one(self, session):
        service = SequenceService(session)

        assert service.next_value(SequenceService.PURCHASE_ORDER) == 1
        assert service.next_value(SequenceService.PURCHASE_ORDER) == 2

    def test_scopes_are_independent(self, session):
        service = SequenceService(session)

        service.next_value(SequenceService.PURCHASE_ORDER)
        service.next_value(SequenceService.PURCHASE_ORDER)

        assert service.next_value(SequenceService.INCREMENTAL_COST) == 1
        assert service.next_value(SequenceService.requisition_scope("mnt")) == 1

    def test_current_value(self, session):
        service = SequenceService(session)

        assert service.current_value("unused") is None
        service.next_value("used")
        assert service.current_value("used") == 1

    def test_values_survive_commit(self, session):
        SequenceService(session).next_value(SequenceService.PURCHASE_ORDER)
        session.commit()

        assert SequenceService(session).next_value(SequenceService.PURCHASE_ORDER) == 2


class TestDocumentNumbers:
    def test_zero_padded(self):
        assert format_document_number("OC", 19) == "OC-0019"

    def test_wider_values_not_truncated(self):
        assert format_document_number("OC", 123456) == "OC-123456"

    def test_requisition_scope_normalized(self):
        assert SequenceService.requisition_scope(" mnt ") == "requisition:MNT"


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock()

        assert clock.now() == clock.now()
        assert clock.today().isoformat() == "2024-01-01"

    def test_advance_days(self):
        clock = DeterministicClock()

        clock.advance_days(1)

        assert clock.today().isoformat() == "2024-01-02"

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance(30)

        clock.set_time(datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc))

        assert clock.now() == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
