"""
Procurement Workflows.

State machines for purchase orders and incremental cost orders.  Services
never assign a status directly: they resolve the transition for an action
first, which raises ``InvalidTransitionError`` when the action is not legal
from the current state.
"""

from dataclasses import dataclass
from uuid import UUID

from procurement_kernel.exceptions import InvalidTransitionError
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.workflows")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def transitions_for(self, state: str, action: str) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.from_state == state and t.action == action)

    def allowed_actions(self, state: str) -> tuple[str, ...]:
        return tuple(sorted({t.action for t in self.transitions if t.from_state == state}))


def resolve_transition(
    workflow: Workflow,
    entity_id: UUID,
    current_state: str,
    action: str,
    to_state: str | None = None,
) -> Transition:
    """
    Find the transition for ``action`` from ``current_state``.

    ``to_state`` picks between several targets of one action (receive,
    resume).

    Raises:
        InvalidTransitionError: no such transition.
    """
    candidates = workflow.transitions_for(current_state, action)
    if to_state is not None:
        candidates = tuple(t for t in candidates if t.to_state == to_state)
    if not candidates:
        logger.warning(
            "workflow_transition_rejected",
            extra={
                "workflow_name": workflow.name,
                "entity_id": str(entity_id),
                "current_state": current_state,
                "action": action,
                "to_state": to_state,
            },
        )
        raise InvalidTransitionError(entity_id, current_state, action)
    return candidates[0]


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Order has at least one line",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="All order lines fully received",
)

FULLY_PAID = Guard(
    name="fully_paid",
    description="Active payments cover the order total",
)

logger.info(
    "procurement_workflow_guards_defined",
    extra={"guards": [HAS_LINES.name, ALL_LINES_RECEIVED.name, FULLY_PAID.name]},
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

# States from which an order may be put on hold or cancelled
_OPEN_STATES = (
    "draft",
    "pending_authorization",
    "approved",
    "rejected",
    "in_process",
    "partially_delivered",
    "delivered",
)

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending_authorization",
        "approved",
        "rejected",
        "in_process",
        "partially_delivered",
        "delivered",
        "closed",
        "on_hold",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "pending_authorization", action="submit", guard=HAS_LINES),
        Transition("pending_authorization", "approved", action="authorize"),
        Transition("pending_authorization", "rejected", action="reject"),
        Transition("rejected", "draft", action="revise"),
        Transition("approved", "in_process", action="start_processing"),
        Transition("in_process", "partially_delivered", action="receive"),
        Transition("in_process", "delivered", action="receive", guard=ALL_LINES_RECEIVED),
        Transition("partially_delivered", "partially_delivered", action="receive"),
        Transition("partially_delivered", "delivered", action="receive", guard=ALL_LINES_RECEIVED),
        Transition("delivered", "closed", action="close", guard=FULLY_PAID),
        *(Transition(state, "on_hold", action="hold") for state in _OPEN_STATES),
        *(Transition("on_hold", state, action="resume") for state in _OPEN_STATES),
        *(Transition(state, "cancelled", action="cancel") for state in (*_OPEN_STATES, "on_hold")),
    ),
)

logger.info(
    "procurement_po_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Incremental Cost Workflow
# -----------------------------------------------------------------------------

INCREMENTAL_COST_WORKFLOW = Workflow(
    name="incremental_cost",
    description="Incremental cost order lifecycle",
    initial_state="draft",
    states=("draft", "approved", "closed", "cancelled"),
    transitions=(
        Transition("draft", "approved", action="approve"),
        Transition("approved", "closed", action="close"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("approved", "cancelled", action="cancel"),
    ),
)

logger.info(
    "incremental_cost_workflow_registered",
    extra={
        "workflow_name": INCREMENTAL_COST_WORKFLOW.name,
        "state_count": len(INCREMENTAL_COST_WORKFLOW.states),
        "transition_count": len(INCREMENTAL_COST_WORKFLOW.transitions),
        "initial_state": INCREMENTAL_COST_WORKFLOW.initial_state,
    },
)
