"""
Document workflow state machines (``stock_ledger.domain.workflow``).

Responsibility
--------------
Pure value objects for the lifecycle of movement-producing documents, and
the stock transfer workflow definition.  ``posts_entry=True`` marks the
transitions that are allowed to emit StockMovement rows; each may do so
at most once (the writer's idempotency key guarantees it).

Architecture position
---------------------
**Domain layer** -- pure value objects.  ZERO I/O.  Executed by
``stock_ledger.services.transfer_service``.
"""

from __future__ import annotations

from dataclasses import dataclass

from stock_ledger.exceptions import InvalidTransitionError
from stock_ledger.logging_config import get_logger

logger = get_logger("domain.workflow")


@dataclass(frozen=True)
class Guard:
    """A named precondition documented on a transition."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition.  ``posts_entry=True`` means it emits movements."""

    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    posts_entry: bool = False


@dataclass(frozen=True)
class Workflow:
    """
    A state machine definition for a document lifecycle.

    ``transitions`` reference only states in ``states``; ``terminal_states``
    have no outgoing transitions.
    """

    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self):
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t.action!r} references unknown state")
            if t.from_state in self.terminal_states:
                raise ValueError(f"{self.name}: terminal state {t.from_state!r} has a transition")

    def find_transition(self, state: str, action: str) -> Transition:
        """
        Return the transition for ``action`` out of ``state``.

        Raises:
            InvalidTransitionError: no such transition.
        """
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        raise InvalidTransitionError(self.name, state, action)

    def allowed_actions(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


# -----------------------------------------------------------------------------
# Stock transfer
# -----------------------------------------------------------------------------

OUT_LEG_POSTED = Guard(
    name="out_leg_posted",
    description="Stock has left the source location and must be put back",
)

TRANSFER_WORKFLOW = Workflow(
    name="stock_transfer",
    description="Stock transfer between two locations of one business",
    initial_state="created",
    states=(
        "created",
        "sent",
        "in_transit",
        "received",
        "verified",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("created", "sent", action="send", posts_entry=True),
        Transition("sent", "in_transit", action="dispatch"),
        Transition("sent", "received", action="receive", posts_entry=True),
        Transition("in_transit", "received", action="receive", posts_entry=True),
        Transition("received", "verified", action="verify"),
        Transition("received", "completed", action="complete"),
        Transition("verified", "completed", action="complete"),
        Transition("created", "cancelled", action="cancel"),
        Transition("sent", "cancelled", action="cancel", guard=OUT_LEG_POSTED, posts_entry=True),
        Transition("in_transit", "cancelled", action="cancel", guard=OUT_LEG_POSTED, posts_entry=True),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.info(
    "stock_transfer_workflow_registered",
    extra={
        "workflow_name": TRANSFER_WORKFLOW.name,
        "state_count": len(TRANSFER_WORKFLOW.states),
        "transition_count": len(TRANSFER_WORKFLOW.transitions),
        "initial_state": TRANSFER_WORKFLOW.initial_state,
    },
)
