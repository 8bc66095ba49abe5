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
Unit Tests for PWA Control Functions

Tests cover:
- Seed gains from local LQR designs (equilibrium and off-equilibrium regions)
- Open- and closed-loop stability verdicts and messages
- Decay-rate bound of a single Hurwitz region and repeated analysis
- End-to-end synthesis with the LMI and BMI methods
- SynthesisFailure when requested

Models are scalar, apart from the planar Hurwitz region, so the expected
gains follow from the scalar Riccati equation 2 a p - p² b² / r + q = 0.
"""

import unittest
import warnings
from unittest.mock import MagicMock

import numpy as np
from numpy.testing import assert_allclose

from pwasym.control.pwa_control_functions import (
    analyze_pwa_stability,
    design_seed_gains,
    synthesize_pwa_controller,
)
from pwasym.control.settings import AnalysisSettings, MethodCombination, SynthesisSettings
from pwasym.control.solver_adapter import SolverAdapter, SolverFailure
from pwasym.exceptions import ConfigurationError, ModelError, SynthesisFailure
from pwasym.systems.region_model import PWASystem

SQRT2 = np.sqrt(2.0)


def _single(A=1.0, B=1.0, xcl=(0.0,)):
    return PWASystem.from_matrices(
        A=[[[A]]], a=[[0.0]], B=[[[B]]], E=np.zeros((1, 0, 1)), e=[[]], xcl=xcl,
    )


def _slab(A1=-1.0, a1=0.0, B1=1.0):
    """x ≤ 1 (A = -1) and x ≥ 1 (A = A1); x_cl = 0 lies in region 0 only."""
    return PWASystem.from_matrices(
        A=[[[-1.0]], [[A1]]],
        a=[[0.0], [a1]],
        B=[[[1.0]], [[B1]]],
        E=[[[-1.0]], [[1.0]]],
        e=[[1.0], [-1.0]],
        xcl=[0.0],
    )


def _half_lines():
    return PWASystem.from_matrices(
        A=[[[-1.0]], [[-2.0]]],
        a=[[0.0], [0.0]],
        B=[[[1.0]], [[1.0]]],
        E=[[[-1.0]], [[1.0]]],
        e=[[0.0], [0.0]],
        xcl=[0.0],
        boundaries=[(0, 1, np.zeros((1, 0)), [0.0])],
    )


QUADRATIC_GLOBAL = dict(approximations="quadratic", lyapunov="global")


class TestSeedGains(unittest.TestCase):
    def test_scalar_lqr_seed(self):
        gains = design_seed_gains(_single(), np.zeros(1), np.eye(1), np.eye(1))
        self.assertEqual(len(gains), 1)
        assert_allclose(gains[0], [[-(1.0 + SQRT2), 0.0]], rtol=1e-8, atol=1e-10)

    def test_affine_term_cancels_drift_outside_xcl(self):
        # Region 1 has a = 2: k̃ = -2 removes the drift at x_cl
        gains = design_seed_gains(_slab(a1=2.0), np.zeros(1), np.eye(1), np.eye(1))
        assert_allclose(gains[0], [[-(SQRT2 - 1.0), 0.0]], rtol=1e-8, atol=1e-10)
        assert_allclose(gains[1], [[-(SQRT2 - 1.0), -2.0]], rtol=1e-8, atol=1e-10)

    def test_shifted_equilibrium(self):
        # dx/dt = x - 1 + u has x_cl = 1 with u_eq = 0
        model = PWASystem.from_matrices(
            A=[[[1.0]]], a=[[-1.0]], B=[[[1.0]]], E=np.zeros((1, 0, 1)), e=[[]],
        )
        gains = design_seed_gains(model, np.ones(1), np.eye(1), np.eye(1))
        K, k = gains[0][0, 0], gains[0][0, 1]
        self.assertAlmostEqual(K * 1.0 + k, 0.0)

    def test_unstabilizable_region_reuses_equilibrium_gain(self):
        gains = design_seed_gains(_slab(A1=1.0, B1=0.0), np.zeros(1), np.eye(1), np.eye(1))
        assert_allclose(gains[1][:, :1], gains[0][:, :1])

    def test_unstabilizable_equilibrium_region_warns(self):
        with self.assertWarns(UserWarning):
            gains = design_seed_gains(_single(B=0.0), np.zeros(1), np.eye(1), np.eye(1))
        assert_allclose(gains[0], np.zeros((1, 2)))

    def test_no_inputs(self):
        model = PWASystem.from_matrices(
            A=[[[-1.0]]], a=[[0.0]], B=[np.zeros((1, 0))], E=np.zeros((1, 0, 1)), e=[[]],
        )
        with self.assertRaises(ModelError):
            design_seed_gains(model, np.zeros(1), np.eye(1), np.eye(0))


class TestStabilityAnalysis(unittest.TestCase):
    def test_open_loop_stable(self):
        result = analyze_pwa_stability(_half_lines(), AnalysisSettings(**QUADRATIC_GLOBAL))
        self.assertTrue(result["is_stable"])
        self.assertEqual(result["status"], "stable")
        self.assertEqual(result["message"], "The open-loop PWA system is stable at xcl.")
        self.assertFalse(result["closed_loop"])
        self.assertEqual(result["method"], MethodCombination("quadratic", "linear", "global"))
        self.assertIsNotNone(result["certificate"])
        assert_allclose(result["xcl"], [0.0])

    def test_stops_at_first_certificate(self):
        settings = AnalysisSettings(approximations="quadratic", lyapunov=("global", "pwq"))
        result = analyze_pwa_stability(_half_lines(), settings)
        self.assertEqual(len(result["outcomes"]), 1)
        self.assertEqual(result["outcomes"][0]["outcome"], "feasible")

    def test_single_region_unstable(self):
        result = analyze_pwa_stability(_single(), AnalysisSettings(**QUADRATIC_GLOBAL))
        self.assertFalse(result["is_stable"])
        self.assertEqual(result["status"], "unstable")
        self.assertEqual(result["message"], "The open-loop PWA system is unstable at xcl.")
        self.assertIsNone(result["certificate"])

    def test_multi_region_could_not_verify(self):
        result = analyze_pwa_stability(_slab(A1=1.0), AnalysisSettings(**QUADRATIC_GLOBAL))
        self.assertEqual(result["status"], "could not verify")
        self.assertEqual(
            result["message"],
            "I could not verify if the open-loop PWA system is stable at xcl.",
        )

    def test_closed_loop(self):
        result = analyze_pwa_stability(
            _single(), AnalysisSettings(**QUADRATIC_GLOBAL), gains=[[[-3.0, 0.0]]],
        )
        self.assertTrue(result["closed_loop"])
        self.assertEqual(result["message"], "The closed-loop PWA system is stable at xcl.")

    def test_closed_loop_gains_must_keep_equilibrium(self):
        with self.assertRaises(ModelError):
            analyze_pwa_stability(
                _single(), AnalysisSettings(**QUADRATIC_GLOBAL), gains=[[[-3.0, 1.0]]],
            )

    def test_solver_failure_is_not_instability(self):
        solver = MagicMock(spec=SolverAdapter)
        solver.solve.return_value = SolverFailure("numerical trouble")
        result = analyze_pwa_stability(
            _single(), AnalysisSettings(**QUADRATIC_GLOBAL), solver=solver,
        )
        self.assertEqual(result["status"], "could not verify")
        self.assertEqual(result["outcomes"][0]["reason"], "numerical trouble")

    def test_missing_xcl(self):
        with self.assertRaises(ConfigurationError):
            analyze_pwa_stability(_single(xcl=None), AnalysisSettings(**QUADRATIC_GLOBAL))

    def test_unsupported_combinations_are_skipped(self):
        with self.assertWarns(UserWarning):
            result = analyze_pwa_stability(_single(), AnalysisSettings(lyapunov="global"))
        methods = [o["method"].approximation for o in result["outcomes"]]
        self.assertEqual(methods, ["quadratic"])


class TestHurwitzSingleRegion(unittest.TestCase):
    """
    One region, B = 0, A Hurwitz and non-normal (max Re λ = -1).

    Q A + A'Q + alpha Q ≺ 0 has a solution exactly when A + alpha/2 I is
    Hurwitz, i.e. for 0 < alpha < 2.
    """

    A = np.array([[-1.0, 5.0], [0.0, -2.0]])

    def _model(self):
        return PWASystem.from_matrices(
            A=[self.A],
            a=[np.zeros(2)],
            B=[np.zeros((2, 1))],
            E=[np.zeros((0, 2))],
            e=[np.zeros(0)],
            xcl=[0.0, 0.0],
        )

    def test_stable_for_alpha_inside_decay_bound(self):
        for alpha in (0.1, 1.0, 1.9):
            settings = AnalysisSettings(alpha=alpha, **QUADRATIC_GLOBAL)
            result = analyze_pwa_stability(self._model(), settings)
            self.assertEqual(result["status"], "stable", f"alpha={alpha}")
            Q = result["certificate"]["Q"][0]
            self.assertGreater(np.min(np.linalg.eigvalsh(Q)), 0)
            decay = Q @ self.A + self.A.T @ Q + alpha * Q
            self.assertLess(np.max(np.linalg.eigvalsh(decay)), 0)

    def test_unstable_beyond_decay_bound(self):
        settings = AnalysisSettings(alpha=2.5, **QUADRATIC_GLOBAL)
        result = analyze_pwa_stability(self._model(), settings)
        self.assertEqual(result["status"], "unstable")
        self.assertIsNone(result["certificate"])

    def test_repeated_analysis_gives_same_verdict(self):
        settings = AnalysisSettings(alpha=1.0, **QUADRATIC_GLOBAL)
        first = analyze_pwa_stability(self._model(), settings)
        second = analyze_pwa_stability(self._model(), settings)
        self.assertEqual(first["status"], second["status"])
        self.assertEqual(first["method"], second["method"])
        assert_allclose(first["certificate"]["Q"][0], second["certificate"]["Q"][0], rtol=1e-6)


class TestSynthesis(unittest.TestCase):
    def _settings(self, **kwargs):
        options = dict(
            QUADRATIC_GLOBAL,
            q_lin=np.eye(1),
            r_lin=np.eye(1),
            iteration_number=1,
        )
        options.update(kwargs)
        return SynthesisSettings(**options)

    def test_lmi_uses_seed_gains(self):
        result = synthesize_pwa_controller(_single(), self._settings(synthesis_methods="lmi"))
        self.assertTrue(result["success"])
        self.assertEqual(result["state"], "done")
        self.assertEqual(result["sweeps"], 1)
        entry = result["table"].best()
        self.assertEqual(entry.method.synthesis_method, "lmi")
        assert_allclose(entry.gains[0], [[-(1.0 + SQRT2), 0.0]], rtol=1e-8, atol=1e-10)

    def test_bmi(self):
        result = synthesize_pwa_controller(_single(), self._settings(synthesis_methods="bmi"))
        self.assertTrue(result["success"])
        Kbar = result["table"].best().gains[0]
        self.assertLess(1.0 + Kbar[0, 0], 0)

    def test_closed_loop_of_synthesized_gains_is_stable(self):
        result = synthesize_pwa_controller(_single(), self._settings(synthesis_methods="lmi"))
        check = analyze_pwa_stability(
            _single(), AnalysisSettings(**QUADRATIC_GLOBAL), gains=result["table"].best().gains,
        )
        self.assertTrue(check["is_stable"])

    def test_failure_result(self):
        settings = self._settings(synthesis_methods="lmi", iteration_number=2)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = synthesize_pwa_controller(_single(B=0.0), settings)
        self.assertFalse(result["success"])
        self.assertEqual(result["state"], "failed")
        self.assertEqual(result["sweeps"], 2)
        self.assertEqual(len(result["table"]), 0)

    def test_raise_on_failure(self):
        settings = self._settings(synthesis_methods="lmi", iteration_number=2)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            with self.assertRaises(SynthesisFailure) as ctx:
                synthesize_pwa_controller(_single(B=0.0), settings, raise_on_failure=True)
        self.assertEqual(ctx.exception.sweeps, 2)


if __name__ == "__main__":
    unittest.main()
