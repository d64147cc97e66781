"""
Workflow Hub - Workflow State Machine

This module implements a deterministic state machine for record workflows.
One generic StateMachine is parameterized by a per-workflow transition table,
replacing the per-handler copies of the same logic (disputes, orders).

The state machine is pure business logic with no direct HTTP or DB calls.
All transition checks are deterministic and can be covered by unit tests.

Workflows Supported:
- DISPUTES: submitted -> assigned -> in-review -> resolved -> closed, with reopen edges
- ORDERS: submitted -> validated -> pending-approval -> approved -> in-fulfillment -> completed,
  with on-hold and cancellation branches
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Set
import logging

from services.workflow_errors import InvalidTransitionError

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS DEFINITIONS
# =============================================================================

class DisputeStatus(str, Enum):
    """Dispute lifecycle states."""
    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    IN_REVIEW = "in-review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    SUBMITTED = "submitted"
    VALIDATED = "validated"
    PENDING_APPROVAL = "pending-approval"
    APPROVED = "approved"
    IN_FULFILLMENT = "in-fulfillment"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on-hold"


# =============================================================================
# TRANSITION TABLES
# =============================================================================

# Format: {current_status: {allowed target statuses}}
# A status with an empty target set is terminal.

TransitionTable = Mapping[str, FrozenSet[str]]

DISPUTE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DisputeStatus.SUBMITTED.value: frozenset({
        DisputeStatus.ASSIGNED.value,
    }),
    DisputeStatus.ASSIGNED.value: frozenset({
        DisputeStatus.IN_REVIEW.value,
        DisputeStatus.SUBMITTED.value,      # Reopen
    }),
    DisputeStatus.IN_REVIEW.value: frozenset({
        DisputeStatus.RESOLVED.value,
        DisputeStatus.ASSIGNED.value,       # Reopen
    }),
    DisputeStatus.RESOLVED.value: frozenset({
        DisputeStatus.CLOSED.value,
        DisputeStatus.IN_REVIEW.value,      # Reopen
    }),
    DisputeStatus.CLOSED.value: frozenset(),
}

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.SUBMITTED.value: frozenset({
        OrderStatus.VALIDATED.value,
        OrderStatus.CANCELLED.value,
    }),
    OrderStatus.VALIDATED.value: frozenset({
        OrderStatus.PENDING_APPROVAL.value,
        OrderStatus.APPROVED.value,         # Auto-approval shortcut
        OrderStatus.CANCELLED.value,
    }),
    OrderStatus.PENDING_APPROVAL.value: frozenset({
        OrderStatus.APPROVED.value,
        OrderStatus.CANCELLED.value,
        OrderStatus.ON_HOLD.value,
    }),
    OrderStatus.APPROVED.value: frozenset({
        OrderStatus.IN_FULFILLMENT.value,
        OrderStatus.CANCELLED.value,
        OrderStatus.ON_HOLD.value,
    }),
    OrderStatus.IN_FULFILLMENT.value: frozenset({
        OrderStatus.COMPLETED.value,
        OrderStatus.ON_HOLD.value,
    }),
    OrderStatus.ON_HOLD.value: frozenset({
        OrderStatus.PENDING_APPROVAL.value,
        OrderStatus.APPROVED.value,
        OrderStatus.CANCELLED.value,
    }),
    OrderStatus.COMPLETED.value: frozenset(),
    OrderStatus.CANCELLED.value: frozenset(),
}


def _status_key(status) -> Optional[str]:
    # Accept enum members as well as plain strings
    return status.value if isinstance(status, Enum) else status


# =============================================================================
# STATE MACHINE
# =============================================================================

class StateMachine:
    """
    Transition guard for one workflow.

    Holds a static transition table and a start status. Instances are
    immutable after construction and safe to share between concurrent
    operations.
    """

    def __init__(self, name: str, transitions: TransitionTable, start_status: str):
        self.name = name
        self.start_status = _status_key(start_status)
        self._transitions: Dict[str, FrozenSet[str]] = {
            _status_key(state): frozenset(_status_key(t) for t in targets)
            for state, targets in transitions.items()
        }
        self._check_table()

    def _check_table(self):
        """Fail fast on a malformed table: dangling targets, no terminal, unreachable states."""
        if self.start_status not in self._transitions:
            raise ValueError(f"{self.name}: start status '{self.start_status}' not in transition table")

        for state, targets in self._transitions.items():
            unknown = targets - set(self._transitions)
            if unknown:
                raise ValueError(f"{self.name}: status '{state}' targets unknown statuses {sorted(unknown)}")

        if not self.terminal_states():
            raise ValueError(f"{self.name}: transition table has no terminal status")

        unreachable = set(self._transitions) - self.reachable_states()
        if unreachable:
            raise ValueError(f"{self.name}: statuses unreachable from start: {sorted(unreachable)}")

    @property
    def statuses(self) -> List[str]:
        return list(self._transitions)

    def can_transition(self, current_status: str, target_status: str) -> bool:
        """
        Check if a transition is allowed.

        An unknown current status is an error, not a denial: it means the item
        carries a status from another table or a corrupted record.
        """
        current_key = _status_key(current_status)
        targets = self._transitions.get(current_key)
        if targets is None:
            raise InvalidTransitionError(
                f"Invalid current state: {current_status}",
                code="INVALID_STATE",
                context={"workflow": self.name, "current_status": current_key,
                         "target_status": _status_key(target_status)},
            )
        return _status_key(target_status) in targets

    def validate_transition(self, current_status: str, target_status: str, item_id: Optional[str] = None):
        """Raise InvalidTransitionError unless current -> target is in the table."""
        if not self.can_transition(current_status, target_status):
            current_key = _status_key(current_status)
            target_key = _status_key(target_status)
            logger.warning(
                "Invalid workflow transition: workflow=%s, item=%s, %s -> %s",
                self.name, item_id, current_key, target_key
            )
            raise InvalidTransitionError(
                f"Invalid transition from {current_key} to {target_key}",
                context={
                    "workflow": self.name,
                    "item_id": item_id,
                    "current_status": current_key,
                    "target_status": target_key,
                    "allowed_transitions": sorted(self.allowed_transitions(current_key)),
                },
            )

    def allowed_transitions(self, current_status: str) -> Set[str]:
        """Allowed next statuses; empty for unknown or terminal statuses."""
        return set(self._transitions.get(_status_key(current_status), frozenset()))

    def is_terminal(self, status: str) -> bool:
        targets = self._transitions.get(_status_key(status))
        return targets is not None and len(targets) == 0

    def terminal_states(self) -> Set[str]:
        return {state for state, targets in self._transitions.items() if not targets}

    def reachable_states(self) -> Set[str]:
        """All statuses reachable from the start status (start included)."""
        seen = {self.start_status}
        frontier = [self.start_status]
        while frontier:
            state = frontier.pop()
            for target in self._transitions.get(state, ()):
                if target not in seen:
                    seen.add(target)
                    frontier.append(target)
        return seen

    def to_dict(self) -> Dict:
        return {
            "workflow": self.name,
            "start_status": self.start_status,
            "transitions": {state: sorted(targets) for state, targets in self._transitions.items()},
            "terminal_statuses": sorted(self.terminal_states()),
        }


DISPUTE_STATE_MACHINE = StateMachine("disputes", DISPUTE_TRANSITIONS, DisputeStatus.SUBMITTED)
ORDER_STATE_MACHINE = StateMachine("orders", ORDER_TRANSITIONS, OrderStatus.SUBMITTED)
