# PATH: tests/unit/test_state_machine.py
"""
Unit tests for the action dispatch state machine.
"""

import unittest

from execution.state_machine import (
    ActionState,
    ActionStateMachine,
    InvalidTransitionError,
    VALID_TRANSITIONS,
)


class TestActionStateMachine(unittest.TestCase):
    def test_initial_state(self):
        machine = ActionStateMachine(action_id="KICK-1")
        self.assertEqual(machine.state, ActionState.PENDING)
        self.assertFalse(machine.is_terminal)
        self.assertTrue(machine.created_at)

    def test_happy_path(self):
        machine = ActionStateMachine(action_id="KICK-1")
        for state in (
            ActionState.SIMULATING,
            ActionState.SIM_PASSED,
            ActionState.SUBMITTING,
            ActionState.SUBMITTED,
            ActionState.CONFIRMING,
            ActionState.CONFIRMED,
        ):
            machine.transition_to(state)

        self.assertTrue(machine.is_terminal)
        self.assertTrue(machine.is_success)
        self.assertEqual(len(machine.history), 6)
        self.assertEqual(machine.history[0].from_state, ActionState.PENDING)

    def test_dry_run_is_terminal_success(self):
        machine = ActionStateMachine(action_id="SETTLE-1")
        machine.transition_to(ActionState.DRY_RUN, reason="dry run")
        self.assertTrue(machine.is_terminal)
        self.assertTrue(machine.is_success)

    def test_simulation_failure_is_terminal(self):
        machine = ActionStateMachine(action_id="TAKE-1")
        machine.transition_to(ActionState.SIMULATING)
        machine.transition_to(ActionState.SIM_FAILED, reason="reverted")

        self.assertTrue(machine.is_terminal)
        self.assertTrue(machine.is_failed)
        self.assertFalse(machine.is_success)

    def test_cannot_submit_without_simulation(self):
        machine = ActionStateMachine(action_id="KICK-1")
        with self.assertRaises(InvalidTransitionError):
            machine.transition_to(ActionState.SUBMITTING)
        self.assertEqual(machine.state, ActionState.PENDING)

    def test_no_transition_out_of_terminal_states(self):
        for state, targets in VALID_TRANSITIONS.items():
            if targets:
                continue
            machine = ActionStateMachine(action_id="X-1", state=state)
            self.assertTrue(machine.is_terminal)
            self.assertFalse(machine.can_transition_to(ActionState.FAILED))

    def test_fail_records_reason(self):
        machine = ActionStateMachine(action_id="ARB_TAKE-1")
        machine.transition_to(ActionState.SIMULATING)
        machine.fail("rpc down")

        self.assertEqual(machine.state, ActionState.FAILED)
        self.assertEqual(machine.history[-1].reason, "rpc down")

    def test_to_dict(self):
        machine = ActionStateMachine(action_id="KICK-1", metadata={"pool": "0xabc"})
        machine.transition_to(ActionState.DRY_RUN)
        data = machine.to_dict()

        self.assertEqual(data["state"], "DRY_RUN")
        self.assertTrue(data["is_success"])
        self.assertEqual(data["history"][0]["to_state"], "DRY_RUN")
        self.assertEqual(data["metadata"], {"pool": "0xabc"})


if __name__ == "__main__":
    unittest.main()
