"""Tests for the purchase order and incremental cost state machines."""

from uuid import uuid4

import pytest

from procurement_kernel.exceptions import InvalidTransitionError
from procurement_modules.procurement.models import PurchaseOrderStatus
from procurement_modules.procurement.workflows import (
    INCREMENTAL_COST_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
    resolve_transition,
)

TERMINAL = ("closed", "cancelled")


class TestPurchaseOrderWorkflow:
    def test_states_match_status_enum(self):
        assert set(PURCHASE_ORDER_WORKFLOW.states) == {s.value for s in PurchaseOrderStatus}
        assert PURCHASE_ORDER_WORKFLOW.initial_state == "draft"

    def test_every_transition_uses_known_states(self):
        states = set(PURCHASE_ORDER_WORKFLOW.states)
        for transition in PURCHASE_ORDER_WORKFLOW.transitions:
            assert transition.from_state in states
            assert transition.to_state in states

    @pytest.mark.parametrize("state", TERMINAL)
    def test_terminal_states_have_no_actions(self, state):
        assert PURCHASE_ORDER_WORKFLOW.allowed_actions(state) == ()

    def test_draft_actions(self):
        assert PURCHASE_ORDER_WORKFLOW.allowed_actions("draft") == ("cancel", "hold", "submit")

    def test_approved_actions(self):
        assert PURCHASE_ORDER_WORKFLOW.allowed_actions("approved") == ("cancel", "hold", "start_processing")

    def test_on_hold_can_only_resume_or_cancel(self):
        assert PURCHASE_ORDER_WORKFLOW.allowed_actions("on_hold") == ("cancel", "resume")

    def test_receive_targets_selected_explicitly(self):
        partial = resolve_transition(
            PURCHASE_ORDER_WORKFLOW, uuid4(), "in_process", "receive", "partially_delivered",
        )
        full = resolve_transition(PURCHASE_ORDER_WORKFLOW, uuid4(), "partially_delivered", "receive", "delivered")

        assert partial.to_state == "partially_delivered"
        assert full.to_state == "delivered"
        assert full.guard is not None and full.guard.name == "all_lines_received"

    def test_resume_returns_to_held_state(self):
        transition = resolve_transition(PURCHASE_ORDER_WORKFLOW, uuid4(), "on_hold", "resume", "in_process")

        assert transition.to_state == "in_process"

    def test_close_guarded_by_payment(self):
        (transition,) = PURCHASE_ORDER_WORKFLOW.transitions_for("delivered", "close")

        assert transition.guard.name == "fully_paid"

    def test_illegal_action_raises(self):
        order_id = uuid4()

        with pytest.raises(InvalidTransitionError) as exc_info:
            resolve_transition(PURCHASE_ORDER_WORKFLOW, order_id, "draft", "authorize")

        assert exc_info.value.entity_id == order_id
        assert exc_info.value.action == "authorize"

    def test_unknown_target_raises(self):
        with pytest.raises(InvalidTransitionError):
            resolve_transition(PURCHASE_ORDER_WORKFLOW, uuid4(), "on_hold", "resume", "closed")


class TestIncrementalCostWorkflow:
    def test_happy_path(self):
        approve = resolve_transition(INCREMENTAL_COST_WORKFLOW, uuid4(), "draft", "approve")
        close = resolve_transition(INCREMENTAL_COST_WORKFLOW, uuid4(), "approved", "close")

        assert (approve.to_state, close.to_state) == ("approved", "closed")

    @pytest.mark.parametrize("state", ("draft", "approved"))
    def test_cancel_before_close(self, state):
        assert resolve_transition(INCREMENTAL_COST_WORKFLOW, uuid4(), state, "cancel").to_state == "cancelled"

    def test_draft_cannot_close(self):
        with pytest.raises(InvalidTransitionError):
            resolve_transition(INCREMENTAL_COST_WORKFLOW, uuid4(), "draft", "close")
