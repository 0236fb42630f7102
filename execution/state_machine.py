# PATH: execution/state_machine.py
"""
Action dispatch state machine.

States (ActionState):
  PENDING     → action decided, transaction not built yet
  DRY_RUN     → logged only, nothing sent
  SIMULATING  → pre-flight eth_call
  SIM_PASSED  → simulation passed, ready to submit
  SIM_FAILED  → simulation predicts a revert, will not submit
  SUBMITTING  → signing and broadcasting under a nonce lease
  SUBMITTED   → accepted by the node
  CONFIRMING  → waiting for the receipt
  CONFIRMED   → mined with status 1
  FAILED      → build, submit, revert or confirmation failure

Transitions:
  PENDING     → SIMULATING | DRY_RUN | FAILED
  SIMULATING  → SIM_PASSED | SIM_FAILED | FAILED
  SIM_PASSED  → SUBMITTING
  SUBMITTING  → SUBMITTED | FAILED
  SUBMITTED   → CONFIRMING | FAILED
  CONFIRMING  → CONFIRMED | FAILED
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ActionState(str, Enum):
    """Dispatch states."""
    PENDING = "PENDING"
    DRY_RUN = "DRY_RUN"
    SIMULATING = "SIMULATING"
    SIM_PASSED = "SIM_PASSED"
    SIM_FAILED = "SIM_FAILED"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"
    CONFIRMING = "CONFIRMING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


VALID_TRANSITIONS: Dict[ActionState, List[ActionState]] = {
    ActionState.PENDING: [ActionState.SIMULATING, ActionState.DRY_RUN, ActionState.FAILED],
    ActionState.DRY_RUN: [],
    ActionState.SIMULATING: [ActionState.SIM_PASSED, ActionState.SIM_FAILED, ActionState.FAILED],
    ActionState.SIM_PASSED: [ActionState.SUBMITTING],
    ActionState.SIM_FAILED: [],
    ActionState.SUBMITTING: [ActionState.SUBMITTED, ActionState.FAILED],
    ActionState.SUBMITTED: [ActionState.CONFIRMING, ActionState.FAILED],
    ActionState.CONFIRMING: [ActionState.CONFIRMED, ActionState.FAILED],
    ActionState.CONFIRMED: [],
    ActionState.FAILED: [],
}


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: ActionState
    to_state: ActionState
    timestamp: str = ""
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""


@dataclass
class ActionStateMachine:
    """
    Tracks one dispatch: current state plus transition history.
    """
    action_id: str
    state: ActionState = ActionState.PENDING
    history: List[StateTransition] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def can_transition_to(self, new_state: ActionState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, [])

    def transition_to(
        self,
        new_state: ActionState,
        reason: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Move to new_state.

        Raises InvalidTransitionError if the transition is not allowed.
        """
        if not self.can_transition_to(new_state):
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid transitions: {[s.value for s in VALID_TRANSITIONS.get(self.state, [])]}"
            )

        transition = StateTransition(
            from_state=self.state,
            to_state=new_state,
            reason=reason,
            metadata=metadata or {},
        )
        self.history.append(transition)
        self.state = new_state
        return transition

    def fail(self, reason: str) -> StateTransition:
        return self.transition_to(ActionState.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return len(VALID_TRANSITIONS.get(self.state, [])) == 0

    @property
    def is_success(self) -> bool:
        return self.state in (ActionState.CONFIRMED, ActionState.DRY_RUN)

    @property
    def is_failed(self) -> bool:
        return self.state in (ActionState.FAILED, ActionState.SIM_FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "state": self.state.value,
            "is_terminal": self.is_terminal,
            "is_success": self.is_success,
            "created_at": self.created_at,
            "history": [
                {
                    "from_state": t.from_state.value,
                    "to_state": t.to_state.value,
                    "timestamp": t.timestamp,
                    "reason": t.reason,
                }
                for t in self.history
            ],
            "metadata": self.metadata,
        }
