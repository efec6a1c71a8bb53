"""
Tests for the two-pool inventory ledger.

Covers receipts into the available and assigned pools, commit/release of
project assignments, transfers, issues, adjustments, valuation and
reversals, checking the record, its assignments and the movement journal
after each operation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from procurement_kernel.exceptions import (
    AlreadyReversedError,
    AssignmentNotFoundError,
    InsufficientStockError,
    InvalidAssignmentTransferError,
    MissingJustificationError,
    MovementNotFoundError,
    MovementNotReversibleError,
    ReversalWindowClosedError,
    WouldGoNegativeError,
)
from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.inventory.models import MovementStatus, MovementType
from procurement_modules.inventory.service import InventoryService


@pytest.fixture
def material_id():
    return uuid4()


@pytest.fixture
def location_id():
    return uuid4()


@pytest.fixture
def project_id():
    return uuid4()


@pytest.fixture
def stocked(inventory_service, material_id, location_id, test_actor_id):
    """Ten units in general stock."""
    return inventory_service.receive_stock(material_id, location_id, Decimal("10"), test_actor_id)


class TestReceiveStock:
    def test_general_stock_lands_in_available(self, stocked):
        assert stocked.record.available == Decimal("10")
        assert stocked.record.assigned == Decimal("0")
        assert stocked.movement.movement_type == MovementType.RECEIPT
        assert stocked.movement.available_before == Decimal("0")
        assert stocked.movement.available_after == Decimal("10")

    def test_project_receipt_lands_in_assigned(
        self, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        result = inventory_service.receive_stock(
            material_id, location_id, Decimal("4"), test_actor_id, project_id=project_id,
        )

        assert result.record.available == Decimal("0")
        assert result.record.assigned == Decimal("4")
        (assignment,) = inventory_service.list_assignments(material_id, location_id)
        assert assignment.project_id == project_id
        assert assignment.quantity == Decimal("4")

    def test_stock_project_sentinel_feeds_available(
        self, session, deterministic_clock, material_id, location_id, test_actor_id,
    ):
        stock_project = uuid4()
        service = InventoryService(
            session, clock=deterministic_clock, config=InventoryConfig(stock_project_id=stock_project),
        )

        result = service.receive_stock(
            material_id, location_id, Decimal("3"), test_actor_id, project_id=stock_project,
        )

        assert result.record.available == Decimal("3")
        assert service.list_assignments(material_id, location_id) == ()

    def test_last_entry_price_recorded(
        self, inventory_service, material_id, location_id, test_actor_id,
    ):
        inventory_service.receive_stock(
            material_id, location_id, Decimal("2"), test_actor_id,
            unit_cost=Decimal("10"), currency="MXN",
        )
        result = inventory_service.receive_stock(
            material_id, location_id, Decimal("1"), test_actor_id,
            unit_cost=Decimal("12.5"), currency="MXN",
        )

        assert result.record.unit_cost == Decimal("12.5")
        assert result.record.currency == "MXN"
        assert result.movement.value_amount == Decimal("12.5")

    def test_non_positive_quantity_rejected(
        self, inventory_service, material_id, location_id, test_actor_id,
    ):
        with pytest.raises(ValueError, match="must be positive"):
            inventory_service.receive_stock(material_id, location_id, Decimal("0"), test_actor_id)


class TestCommitAndRelease:
    def test_commit_moves_available_to_assigned(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        result = inventory_service.commit_stock(
            material_id, location_id, Decimal("4"), project_id, test_actor_id,
        )

        assert result.record.available == Decimal("6")
        assert result.record.assigned == Decimal("4")
        assert result.record.total == Decimal("10")
        assert result.movement.movement_type == MovementType.ASSIGN

    def test_commit_more_than_available_rejected(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.commit_stock(
                material_id, location_id, Decimal("11"), project_id, test_actor_id,
            )

        assert exc_info.value.available == Decimal("10")
        record = inventory_service.get_record(material_id, location_id)
        assert record.available == Decimal("10")

    def test_commit_to_general_stock_rejected(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        with pytest.raises(InvalidAssignmentTransferError):
            inventory_service.commit_stock(material_id, location_id, Decimal("1"), None, test_actor_id)

    def test_full_release_removes_assignment(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        inventory_service.commit_stock(material_id, location_id, Decimal("10"), project_id, test_actor_id)

        result = inventory_service.release_stock(
            material_id, location_id, Decimal("10"), project_id, test_actor_id,
        )

        assert result.record.available == Decimal("10")
        assert result.record.assigned == Decimal("0")
        assert inventory_service.list_assignments(material_id, location_id) == ()

    def test_full_release_links_the_commit_it_undoes(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        committed = inventory_service.commit_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)

        result = inventory_service.release_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)

        assert result.movement.movement_type == MovementType.RELEASE
        assert result.movement.offsets_movement_id == committed.movement.id

    def test_partial_release_links_nothing(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        inventory_service.commit_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)

        result = inventory_service.release_stock(material_id, location_id, Decimal("3"), project_id, test_actor_id)

        assert result.movement.offsets_movement_id is None

    def test_release_of_several_commits_links_nothing(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        inventory_service.commit_stock(material_id, location_id, Decimal("2"), project_id, test_actor_id)
        inventory_service.commit_stock(material_id, location_id, Decimal("2"), project_id, test_actor_id)

        result = inventory_service.release_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)

        assert result.movement.offsets_movement_id is None

    def test_release_unknown_assignment_rejected(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        inventory_service.commit_stock(material_id, location_id, Decimal("2"), project_id, test_actor_id)

        with pytest.raises(AssignmentNotFoundError):
            inventory_service.release_stock(
                material_id, location_id, Decimal("1"), project_id, test_actor_id, site_id=uuid4(),
            )

    def test_release_more_than_assignment_rejected(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        inventory_service.commit_stock(material_id, location_id, Decimal("2"), project_id, test_actor_id)

        with pytest.raises(InsufficientStockError):
            inventory_service.release_stock(
                material_id, location_id, Decimal("3"), project_id, test_actor_id,
            )

    def test_assignments_unique_per_project_and_site(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        site = uuid4()
        inventory_service.commit_stock(material_id, location_id, Decimal("2"), project_id, test_actor_id, site_id=site)
        inventory_service.commit_stock(material_id, location_id, Decimal("3"), project_id, test_actor_id, site_id=site)
        inventory_service.commit_stock(material_id, location_id, Decimal("1"), project_id, test_actor_id)

        assignments = inventory_service.list_assignments(material_id, location_id)

        by_site = {a.site_id: a.quantity for a in assignments}
        assert by_site == {site: Decimal("5"), None: Decimal("1")}
        assert sum(a.quantity for a in assignments) == Decimal("6")


class TestTransferAssignment:
    def test_transfer_whole_assignment(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        target = uuid4()
        inventory_service.commit_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)

        result = inventory_service.transfer_assignment(
            material_id, location_id, project_id, target, test_actor_id,
        )

        assert result.movement.quantity == Decimal("4")
        assert result.record.assigned == Decimal("4")
        (assignment,) = inventory_service.list_assignments(material_id, location_id)
        assert assignment.project_id == target

    def test_partial_transfer(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        target = uuid4()
        inventory_service.commit_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)

        inventory_service.transfer_assignment(
            material_id, location_id, project_id, target, test_actor_id, quantity=Decimal("1"),
        )

        quantities = {
            a.project_id: a.quantity for a in inventory_service.list_assignments(material_id, location_id)
        }
        assert quantities == {project_id: Decimal("3"), target: Decimal("1")}

    def test_same_source_and_target_rejected(
        self, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        with pytest.raises(InvalidAssignmentTransferError):
            inventory_service.transfer_assignment(
                material_id, location_id, project_id, project_id, test_actor_id,
            )


class TestIssueAndAdjust:
    def test_issue_from_available(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        result = inventory_service.issue_stock(material_id, location_id, Decimal("3"), test_actor_id)

        assert result.record.available == Decimal("7")
        assert result.movement.movement_type == MovementType.ISSUE

    def test_issue_from_unknown_record_rejected(
        self, inventory_service, material_id, location_id, test_actor_id,
    ):
        with pytest.raises(InsufficientStockError):
            inventory_service.issue_stock(material_id, location_id, Decimal("1"), test_actor_id)

    def test_adjust_requires_reason(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        with pytest.raises(MissingJustificationError):
            inventory_service.adjust_stock(material_id, location_id, Decimal("-1"), " ", test_actor_id)

    def test_negative_adjustment(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        result = inventory_service.adjust_stock(
            material_id, location_id, Decimal("-2"), "damaged in storage", test_actor_id,
        )

        assert result.record.available == Decimal("8")
        assert result.movement.movement_type == MovementType.ADJUSTMENT_OUT
        assert result.movement.quantity == Decimal("2")
        assert result.movement.reason == "damaged in storage"

    def test_adjustment_cannot_go_negative(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        with pytest.raises(InsufficientStockError):
            inventory_service.adjust_stock(
                material_id, location_id, Decimal("-11"), "count correction", test_actor_id,
            )

    def test_initial_load_sets_cost(
        self, inventory_service, material_id, location_id, test_actor_id,
    ):
        result = inventory_service.adjust_stock(
            material_id, location_id, Decimal("5"), "initial load", test_actor_id,
            unit_cost=Decimal("3.20"), currency="USD",
        )

        assert result.record.unit_cost == Decimal("3.20")
        assert result.record.currency == "USD"

    def test_cost_only_on_empty_record(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        with pytest.raises(ValueError, match="empty record"):
            inventory_service.adjust_stock(
                material_id, location_id, Decimal("5"), "reload", test_actor_id, unit_cost=Decimal("1"),
            )


class TestValuationAdjustment:
    def test_quantities_untouched(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        result = inventory_service.post_valuation_adjustment(
            material_id, location_id, Decimal("150.00"), "MXN", test_actor_id,
        )

        assert result.record.available == Decimal("10")
        assert result.record.valuation_adjustment == Decimal("150.00")
        assert result.movement.movement_type == MovementType.VALUATION_ADJUSTMENT
        assert result.movement.quantity == Decimal("0")

    def test_currency_must_match_record(
        self, inventory_service, material_id, location_id, test_actor_id,
    ):
        inventory_service.receive_stock(
            material_id, location_id, Decimal("1"), test_actor_id, unit_cost=Decimal("1"), currency="USD",
        )

        with pytest.raises(ValueError, match="kept in USD"):
            inventory_service.post_valuation_adjustment(
                material_id, location_id, Decimal("1"), "MXN", test_actor_id,
            )

    def test_valuation_not_reversible(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        result = inventory_service.post_valuation_adjustment(
            material_id, location_id, Decimal("1"), "MXN", test_actor_id,
        )

        with pytest.raises(MovementNotReversibleError):
            inventory_service.reverse_movement(result.movement.id, "wrong amount", test_actor_id)


class TestReverseMovement:
    def test_reversal_restores_pools_and_assignment(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        committed = inventory_service.commit_stock(
            material_id, location_id, Decimal("4"), project_id, test_actor_id,
        )

        result = inventory_service.reverse_movement(committed.movement.id, "wrong project", test_actor_id)

        assert result.record.available == Decimal("10")
        assert result.record.assigned == Decimal("0")
        assert result.movement.movement_type == MovementType.REVERSAL
        assert result.movement.reversal_of_id == committed.movement.id
        assert inventory_service.list_assignments(material_id, location_id) == ()

        original = next(
            m for m in inventory_service.list_movements(material_id, location_id)
            if m.id == committed.movement.id
        )
        assert original.status == MovementStatus.REVERSED
        assert original.is_reversible is False

    def test_reversal_of_transfer(
        self, stocked, inventory_service, material_id, location_id, project_id, test_actor_id,
    ):
        target = uuid4()
        inventory_service.commit_stock(material_id, location_id, Decimal("4"), project_id, test_actor_id)
        transfer = inventory_service.transfer_assignment(
            material_id, location_id, project_id, target, test_actor_id, quantity=Decimal("3"),
        )

        inventory_service.reverse_movement(transfer.movement.id, "typo in project", test_actor_id)

        quantities = {
            a.project_id: a.quantity for a in inventory_service.list_assignments(material_id, location_id)
        }
        assert quantities == {project_id: Decimal("4")}

    def test_second_reversal_rejected(
        self, stocked, inventory_service, test_actor_id,
    ):
        inventory_service.reverse_movement(stocked.movement.id, "duplicate entry", test_actor_id)

        with pytest.raises(AlreadyReversedError) as exc_info:
            inventory_service.reverse_movement(stocked.movement.id, "duplicate entry", test_actor_id)

        assert exc_info.value.reversal_id is not None

    def test_reversal_of_reversal_rejected(self, stocked, inventory_service, test_actor_id):
        reversal = inventory_service.reverse_movement(stocked.movement.id, "duplicate entry", test_actor_id)

        with pytest.raises(MovementNotReversibleError):
            inventory_service.reverse_movement(reversal.movement.id, "undo the undo", test_actor_id)

    def test_short_reason_rejected(self, stocked, inventory_service, test_actor_id):
        with pytest.raises(MissingJustificationError):
            inventory_service.reverse_movement(stocked.movement.id, "no", test_actor_id)

    def test_unknown_movement(self, inventory_service, test_actor_id):
        with pytest.raises(MovementNotFoundError):
            inventory_service.reverse_movement(uuid4(), "does not exist", test_actor_id)

    def test_previous_day_rejected(
        self, stocked, inventory_service, deterministic_clock, test_actor_id,
    ):
        deterministic_clock.advance_days(1)

        with pytest.raises(ReversalWindowClosedError):
            inventory_service.reverse_movement(stocked.movement.id, "late correction", test_actor_id)

    def test_reversal_that_would_go_negative_rejected(
        self, stocked, inventory_service, material_id, location_id, test_actor_id,
    ):
        inventory_service.issue_stock(material_id, location_id, Decimal("8"), test_actor_id)

        with pytest.raises(WouldGoNegativeError):
            inventory_service.reverse_movement(stocked.movement.id, "wrong receipt", test_actor_id)


class TestLedgerProperties:
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        operations=st.lists(
            st.tuples(
                st.sampled_from(["receive", "commit", "release", "issue"]),
                st.integers(min_value=1, max_value=20),
            ),
            min_size=1,
            max_size=12,
        )
    )
    def test_pools_never_negative_and_assigned_matches_assignments(
        self, inventory_service, test_actor_id, operations,
    ):
        material, location, project = uuid4(), uuid4(), uuid4()
        calls = {
            "receive": lambda q: inventory_service.receive_stock(material, location, q, test_actor_id),
            "commit": lambda q: inventory_service.commit_stock(material, location, q, project, test_actor_id),
            "release": lambda q: inventory_service.release_stock(material, location, q, project, test_actor_id),
            "issue": lambda q: inventory_service.issue_stock(material, location, q, test_actor_id),
        }
        for name, quantity in operations:
            try:
                calls[name](Decimal(quantity))
            except (InsufficientStockError, AssignmentNotFoundError):
                pass

            record = inventory_service.get_record(material, location)
            if record is None:
                continue
            assert record.available >= 0
            assert record.assigned >= 0
            assignments = inventory_service.list_assignments(material, location)
            assert sum((a.quantity for a in assignments), Decimal("0")) == record.assigned
