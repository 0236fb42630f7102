"""
execution - Action dispatch for KEEPER.

- dispatcher.py: simulate, pad gas, submit under a nonce lease, confirm
- state_machine.py: dispatch states and transition history
"""

from execution.dispatcher import DispatchResult, ExecutionDispatcher
from execution.state_machine import (
    ActionState,
    ActionStateMachine,
    InvalidTransitionError,
)

__all__ = [
    "ActionState",
    "ActionStateMachine",
    "DispatchResult",
    "ExecutionDispatcher",
    "InvalidTransitionError",
]
