# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Unit Tests for the Synthesis Controller

Tests cover:
- State machine traces for success, retry exhaustion and fatal errors
- One solve per method combination per sweep, results in combination order
- Thread-pool solving
- Seed weight policy across sweeps
- ControllerTable queries

The solver is mocked so that the controller logic is tested in isolation.
"""

import unittest
import warnings
from unittest.mock import MagicMock

import numpy as np
from numpy.testing import assert_allclose

from pwasym.control.settings import AnalysisSettings, MethodCombination, SynthesisSettings
from pwasym.control.solver_adapter import Feasible, Infeasible, SolverAdapter
from pwasym.control.synthesis_controller import (
    ControllerTable,
    ControllerTableEntry,
    SynthesisController,
    SynthesisState,
)
from pwasym.exceptions import ConfigurationError, ModelError
from pwasym.systems.region_model import PWASystem

S = SynthesisState
LMI = MethodCombination("quadratic", "linear", "global")
BMI = MethodCombination("quadratic", "bilinear", "global")


def _single():
    return PWASystem.from_matrices(
        A=[[[1.0]]], a=[[0.0]], B=[[[1.0]]], E=np.zeros((1, 0, 1)), e=[[]], xcl=[0.0],
    )


def _interval():
    """|x| ≤ 1 only."""
    return PWASystem.from_matrices(
        A=[[[-1.0]]], a=[[0.0]], B=[[[1.0]]], E=[[[1.0], [-1.0]]], e=[[1.0, 1.0]],
    )


def _feasible(K=-3.0, slack=-1.0):
    return Feasible({"gains": [np.array([[K, 0.0]])], "slack": slack, "Q": [np.eye(1)]})


def _settings(**kwargs):
    options = dict(
        approximations="quadratic",
        lyapunov="global",
        synthesis_methods=("lmi", "bmi"),
        random_state=0,
    )
    options.update(kwargs)
    return SynthesisSettings(**options)


def _mock_solver(**kwargs):
    solver = MagicMock(spec=SolverAdapter)
    solver.solve.configure_mock(**kwargs)
    return solver


class TestStateMachine(unittest.TestCase):
    def test_success_trace(self):
        solver = _mock_solver(return_value=_feasible())
        controller = SynthesisController(_single(), _settings(), solver=solver)
        result = controller.run()
        self.assertEqual(controller.trace, [S.IDLE, S.BUILDING, S.SOLVING, S.AGGREGATING, S.DONE])
        self.assertTrue(result["success"])
        self.assertEqual(result["state"], "done")
        self.assertEqual(len(result["table"]), 2)
        self.assertTrue(result["message"].startswith("Converged after 1 sweep(s)"))

    def test_retries_until_budget_exhausted(self):
        solver = _mock_solver(return_value=Infeasible("no certificate"))
        controller = SynthesisController(_single(), _settings(iteration_number=3), solver=solver)
        result = controller.run()

        self.assertEqual(solver.solve.call_count, 6)
        self.assertFalse(result["success"])
        self.assertEqual(result["state"], "failed")
        self.assertEqual(result["sweeps"], 3)
        self.assertEqual(len(result["attempts"]), 6)
        self.assertEqual([a["sweep"] for a in result["attempts"]], [1, 1, 2, 2, 3, 3])
        self.assertEqual(controller.trace.count(S.RETRYING), 2)
        self.assertEqual(controller.trace[-1], S.FAILED)
        self.assertEqual(result["message"], "No method combination converged after 3 sweep(s)")

    def test_success_on_second_sweep(self):
        solver = _mock_solver(
            side_effect=[Infeasible("a"), Infeasible("b"), Infeasible("c"), _feasible()],
        )
        controller = SynthesisController(_single(), _settings(iteration_number=5), solver=solver)
        result = controller.run()
        self.assertTrue(result["success"])
        self.assertEqual(result["sweeps"], 2)
        entry = result["table"][0]
        self.assertEqual(entry.sweep, 2)
        self.assertEqual(entry.method, BMI)

    def test_model_error_is_fatal(self):
        solver = _mock_solver(return_value=_feasible())
        controller = SynthesisController(_interval(), _settings(xcl=[2.0]), solver=solver)
        with self.assertRaises(ModelError):
            controller.run()
        self.assertEqual(controller.state, S.FAILED)
        self.assertEqual(controller.trace, [S.IDLE, S.BUILDING, S.FAILED])
        solver.solve.assert_not_called()

    def test_no_applicable_combination_is_fatal(self):
        controller = SynthesisController(
            _single(), _settings(approximations="ellipsoidal"), solver=_mock_solver(),
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            with self.assertRaises(ConfigurationError):
                controller.run()
        self.assertEqual(controller.state, S.FAILED)

    def test_run_only_once(self):
        controller = SynthesisController(
            _single(), _settings(), solver=_mock_solver(return_value=_feasible()),
        )
        controller.run()
        with self.assertRaises(RuntimeError):
            controller.run()

    def test_illegal_transition(self):
        controller = SynthesisController(_single(), _settings(), solver=_mock_solver())
        with self.assertRaises(RuntimeError):
            controller._enter(S.DONE)

    def test_requires_synthesis_settings(self):
        with self.assertRaises(ConfigurationError):
            SynthesisController(_single(), AnalysisSettings())


class TestSweep(unittest.TestCase):
    def test_systems_follow_combination_order(self):
        solver = _mock_solver(return_value=Infeasible("no"))
        SynthesisController(_single(), _settings(iteration_number=1), solver=solver).run()
        methods = [call.args[0].method for call in solver.solve.call_args_list]
        self.assertEqual(methods, [LMI, BMI])
        lmi_system, bmi_system = (call.args[0] for call in solver.solve.call_args_list)
        self.assertFalse(lmi_system.is_bilinear)
        self.assertTrue(bmi_system.is_bilinear)
        self.assertEqual(len(bmi_system.fixed_gains), 1)

    def test_thread_pool(self):
        def solve(system):
            if system.method.inequality == "bilinear":
                return _feasible(K=-4.0)
            return Infeasible("lmi failed")

        solver = _mock_solver(side_effect=solve)
        settings = _settings(max_workers=2, iteration_number=1)
        result = SynthesisController(_single(), settings, solver=solver).run()

        self.assertEqual([a["outcome"] for a in result["attempts"]], ["infeasible", "feasible"])
        self.assertEqual(len(result["table"]), 1)
        self.assertEqual(result["table"][0].method, BMI)
        assert_allclose(result["table"].gain(0), [[-4.0, 0.0]])

    def test_user_weights_on_first_sweep_only(self):
        settings = _settings(q_lin=2.0 * np.eye(1), r_lin=np.eye(1), random_q=True)
        controller = SynthesisController(_single(), settings, solver=_mock_solver())
        rng = np.random.default_rng(0)
        q1, r1 = controller._weights(rng, 1)
        q2, r2 = controller._weights(rng, 2)
        assert_allclose(q1, [[2.0]])
        assert_allclose(r1, [[1.0]])
        assert_allclose(r2, [[1.0]])
        self.assertGreater(q2[0, 0], 0)
        self.assertFalse(np.allclose(q2, q1))

    def test_random_weights_are_reproducible(self):
        settings = _settings(random_state=3)
        first = SynthesisController(_single(), settings, solver=_mock_solver())
        second = SynthesisController(_single(), settings, solver=_mock_solver())
        q_a, _ = first._weights(np.random.default_rng(3), 1)
        q_b, _ = second._weights(np.random.default_rng(3), 1)
        assert_allclose(q_a, q_b)


class TestControllerTable(unittest.TestCase):
    def setUp(self):
        self.entries = [
            ControllerTableEntry((np.array([[-2.0, 0.0]]),), LMI, {"slack": -0.5}),
            ControllerTableEntry((np.array([[-3.0, 0.0]]),), BMI, {"slack": -1.0}, sweep=2),
        ]
        self.table = ControllerTable(self.entries)

    def test_sequence(self):
        self.assertEqual(len(self.table), 2)
        self.assertIs(self.table[1], self.entries[1])
        self.assertEqual(list(self.table), self.entries)

    def test_best_has_most_negative_slack(self):
        self.assertIs(self.table.best(), self.entries[1])
        self.assertIsNone(ControllerTable().best())

    def test_for_method(self):
        self.assertEqual(self.table.for_method("bmi"), [self.entries[1]])
        self.assertEqual(self.table.for_method("LMI"), [self.entries[0]])
        self.assertEqual(self.table.for_method(BMI), [self.entries[1]])

    def test_gain(self):
        assert_allclose(self.table.gain(0), [[-2.0, 0.0]])
        assert_allclose(self.table.gain(0, index=1), [[-3.0, 0.0]])

    def test_repr(self):
        self.assertIn("LMI approach", repr(self.table))


if __name__ == "__main__":
    unittest.main()
