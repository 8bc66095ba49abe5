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
Unit Tests for the Certificate Builder

Tests cover:
- Gain sources and coordinate shifts of K̄
- Equilibrium checks for open loop, fixed gains and unknown gains
- Inequality layout: containing vs non-containing regions, multipliers
- Continuity and Lyapunov links (pwq, normal projection)
- Error paths raising ModelError
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from pwasym.control.certificate_builder import (
    GainSource,
    build,
    check_equilibrium,
    shift_gain,
    unshift_gain,
)
from pwasym.control.settings import MethodCombination
from pwasym.exceptions import ModelError
from pwasym.systems.region_model import PWASystem

QUAD_LMI_GLOBAL = MethodCombination("quadratic", "linear", "global")
QUAD_LMI_PWQ = MethodCombination("quadratic", "linear", "pwq")
QUAD_BMI_GLOBAL = MethodCombination("quadratic", "bilinear", "global")
ELL_LMI_GLOBAL = MethodCombination("ellipsoidal", "linear", "global")


def _half_lines(boundaries=None):
    """x ≤ 0 (A = -1) and x ≥ 0 (A = -2); x_cl = 0 lies on the boundary."""
    return PWASystem.from_matrices(
        A=[[[-1.0]], [[-2.0]]],
        a=[[0.0], [0.0]],
        B=[[[1.0]], [[1.0]]],
        E=[[[-1.0]], [[1.0]]],
        e=[[0.0], [0.0]],
        xcl=[0.0],
        boundaries=boundaries,
    )


def _slab(a1=0.0, boundaries=None):
    """x ≤ 1 and x ≥ 1, both A = -1; x_cl = 0 lies in region 0 only."""
    return PWASystem.from_matrices(
        A=[[[-1.0]], [[-1.0]]],
        a=[[0.0], [a1]],
        B=[[[1.0]], [[1.0]]],
        E=[[[-1.0]], [[1.0]]],
        e=[[1.0], [-1.0]],
        boundaries=boundaries,
    )


def _intervals():
    """[-1, 1] and [1, 3], each with its enclosing ellipsoid."""
    return PWASystem.from_matrices(
        A=[[[-1.0]], [[-1.0]]],
        a=[[0.0], [0.0]],
        B=[[[1.0]], [[1.0]]],
        E=[[[1.0], [-1.0]], [[1.0], [-1.0]]],
        e=[[1.0, 1.0], [-1.0, 3.0]],
        EL=[[[1.0]], [[1.0]]],
        eL=[[0.0], [-2.0]],
    )


class TestGainSource(unittest.TestCase):
    def test_kinds(self):
        self.assertEqual(GainSource.fixed_zero().kind, "fixed_zero")
        self.assertFalse(GainSource.fixed_zero().is_unknown)
        self.assertTrue(GainSource.unknown().is_unknown)
        self.assertIsNone(GainSource.unknown().gains)

    def test_zero_table(self):
        table = GainSource.fixed_zero().table(_half_lines())
        self.assertEqual(len(table), 2)
        for Kbar in table:
            assert_allclose(Kbar, np.zeros((1, 2)))

    def test_external_gains_are_read_only_copies(self):
        original = np.array([[-1.0, 0.0]])
        source = GainSource.fixed_external([original, [[-2.0, 0.0]]])
        original[0, 0] = 5.0
        self.assertEqual(source.gains[0][0, 0], -1.0)
        self.assertFalse(source.gains[1].flags.writeable)

    def test_table_count_mismatch(self):
        source = GainSource.fixed_external([[[-1.0, 0.0]]])
        with self.assertRaises(ModelError):
            source.table(_half_lines())

    def test_table_shape_mismatch(self):
        source = GainSource.fixed_external([[[-1.0]], [[-2.0]]])
        with self.assertRaises(ModelError):
            source.table(_half_lines())

    def test_shift_round_trip(self):
        Kbar = np.array([[-2.0, 3.0]])
        xcl = np.array([1.0])
        K, k_tilde = shift_gain(Kbar, xcl)
        assert_allclose(K, [[-2.0]])
        assert_allclose(k_tilde, [1.0])
        assert_allclose(unshift_gain(K, k_tilde, xcl), Kbar)


class TestEquilibriumCheck(unittest.TestCase):
    def test_open_loop_equilibrium(self):
        u_eq = check_equilibrium(_half_lines(), np.zeros(1), GainSource.fixed_zero())
        self.assertEqual(sorted(u_eq), [0, 1])

    def test_open_loop_drift_rejected(self):
        model = PWASystem.from_matrices(
            A=[[[-1.0]]], a=[[2.0]], B=[[[1.0]]], E=np.zeros((1, 0, 1)), e=[[]],
        )
        with self.assertRaises(ModelError):
            check_equilibrium(model, np.zeros(1), GainSource.fixed_zero())

    def test_unknown_gains_solve_for_u_eq(self):
        model = PWASystem.from_matrices(
            A=[[[-1.0]]], a=[[2.0]], B=[[[1.0]]], E=np.zeros((1, 0, 1)), e=[[]],
        )
        u_eq = check_equilibrium(model, np.zeros(1), GainSource.unknown())
        assert_allclose(u_eq[0], [-2.0])

    def test_fixed_gains(self):
        model = PWASystem.from_matrices(
            A=[[[1.0]]], a=[[0.0]], B=[[[1.0]]], E=np.zeros((1, 0, 1)), e=[[]],
        )
        check_equilibrium(model, np.zeros(1), GainSource.fixed_external([[[-3.0, 0.0]]]))
        with self.assertRaises(ModelError):
            check_equilibrium(model, np.zeros(1), GainSource.fixed_external([[[-3.0, 1.0]]]))

    def test_xcl_outside_model(self):
        model = PWASystem.from_matrices(
            A=[[[-1.0]]], a=[[0.0]], B=[[[1.0]]], E=[[[1.0], [-1.0]]], e=[[1.0, 1.0]],
        )
        with self.assertRaises(ModelError):
            check_equilibrium(model, np.array([2.0]), GainSource.fixed_zero())


class TestInequalityLayout(unittest.TestCase):
    def test_regions_containing_xcl_need_no_multiplier(self):
        system = build(_half_lines(), np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())
        self.assertEqual(len(system.inequalities), 2)
        self.assertTrue(all(r.contains_xcl for r in system.inequalities))
        self.assertEqual(system.unknowns, ("Q",))
        self.assertFalse(system.is_bilinear)
        self.assertEqual(system.n_lyapunov, 1)

    def test_polytopic_data_carry_constant_row(self):
        system = build(_slab(), np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())
        outside = system.inequalities[1]
        self.assertFalse(outside.contains_xcl)
        self.assertTrue(outside.needs_multiplier)
        self.assertEqual(outside.slack, "polytopic")
        assert_allclose(outside.S, [[1.0], [0.0]])
        assert_allclose(outside.s, [-1.0, 1.0])
        self.assertEqual(system.unknowns, ("Q", "Z_1"))

    def test_affine_term_is_shifted(self):
        # Region 1 has a = 3; at x_cl = 0 the shifted term is A x_cl + a = 3
        system = build(_slab(a1=3.0), np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())
        assert_allclose(system.inequalities[1].a, [3.0])

    def test_ellipsoidal_data(self):
        system = build(_intervals(), np.zeros(1), 0.1, ELL_LMI_GLOBAL, GainSource.fixed_zero())
        outside = system.inequalities[1]
        self.assertEqual(outside.slack, "ellipsoidal")
        assert_allclose(outside.S, [[1.0]])
        assert_allclose(outside.s, [-2.0])
        self.assertEqual(system.unknowns, ("Q", "mu_1"))

    def test_unknown_gains(self):
        system = build(_slab(), np.zeros(1), 0.1, QUAD_BMI_GLOBAL, GainSource.unknown())
        self.assertTrue(system.is_bilinear)
        self.assertEqual(system.fixed_gains, ())
        self.assertEqual(system.unknowns, ("Q", "Z_1", "K_0", "k_0", "K_1", "k_1"))

    def test_seed_gains_are_kept(self):
        seeds = [[[-1.0, 0.0]], [[-2.0, 0.0]]]
        system = build(_slab(), np.zeros(1), 0.1, QUAD_BMI_GLOBAL, GainSource.unknown(seeds))
        self.assertEqual(len(system.fixed_gains), 2)
        K, k_tilde = system.shifted_gains()[1]
        assert_allclose(K, [[-2.0]])
        assert_allclose(k_tilde, [0.0])

    def test_pwadi_envelopes(self):
        model = PWASystem.from_matrices(
            A=[[[-1.0]], [[-1.0]]],
            a=[[0.0], [0.0]],
            B=[[[1.0]], [[1.0]]],
            A2=[[[-2.0]], [[-3.0]]],
            a2=[[0.0], [0.0]],
            B2=[[[1.0]], [[2.0]]],
            E=[[[-1.0]], [[1.0]]],
            e=[[1.0], [-1.0]],
        )
        system = build(model, np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())
        self.assertEqual(len(system.inequalities), 4)
        self.assertEqual([r.envelope for r in system.inequalities], [1, 2, 1, 2])
        self.assertEqual(system.unknowns, ("Q", "Z_1,1", "Z_1,2"))

    def test_alpha_stored_as_float(self):
        system = build(_half_lines(), np.zeros(1), 1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())
        self.assertIsInstance(system.alpha, float)


class TestBoundaryLinks(unittest.TestCase):
    def test_global_has_no_links_by_default(self):
        model = _slab(boundaries=[(0, 1, np.zeros((1, 0)), [1.0])])
        system = build(model, np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())
        self.assertEqual(system.continuity, ())
        self.assertEqual(system.lyapunov_links, ())

    def test_pwq_links_and_shifted_offset(self):
        model = _slab(boundaries=[(0, 1, np.zeros((1, 0)), [1.0])])
        system = build(model, np.zeros(1), 0.1, QUAD_LMI_PWQ, GainSource.fixed_zero())
        self.assertEqual(system.continuity, ())
        self.assertEqual(len(system.lyapunov_links), 1)
        self.assertEqual(system.unknowns[:2], ("Q_0", "Q_1"))
        self.assertEqual(system.n_lyapunov, 2)
        self.assertEqual(system.lyapunov_index(1), 1)
        assert_allclose(system.lyapunov_links[0].Fbar, [[1.0], [1.0]])

    def test_pwq_with_unknown_gains_adds_control_continuity(self):
        model = _slab(boundaries=[(0, 1, np.zeros((1, 0)), [1.0])])
        method = MethodCombination("quadratic", "bilinear", "pwq")
        system = build(model, np.zeros(1), 0.1, method, GainSource.unknown())
        self.assertEqual(len(system.continuity), 1)
        assert_allclose(system.continuity[0].Fbar, [[1.0], [1.0]])

    def test_offset_shift_follows_xcl(self):
        # Same slab moved so that x_cl = 0.5 is an equilibrium of region 0
        model = PWASystem.from_matrices(
            A=[[[-1.0]], [[-1.0]]],
            a=[[0.5], [0.5]],
            B=[[[1.0]], [[1.0]]],
            E=[[[-1.0]], [[1.0]]],
            e=[[1.0], [-1.0]],
            boundaries=[(0, 1, np.zeros((1, 0)), [1.0])],
        )
        system = build(model, [0.5], 0.1, QUAD_LMI_PWQ, GainSource.fixed_zero())
        assert_allclose(system.lyapunov_links[0].Fbar, [[0.5], [1.0]])

    def test_continuity_can_be_forced(self):
        model = _slab(boundaries=[(0, 1, np.zeros((1, 0)), [1.0])])
        system = build(
            model, np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero(), continuity=True,
        )
        self.assertEqual(len(system.continuity), 1)
        assert_allclose(system.continuity[0].projector, np.eye(1))

    def test_normal_projection(self):
        # Planar model split along x1 = 0; boundary direction is the x2 axis
        model = PWASystem.from_matrices(
            A=[-np.eye(2), -2 * np.eye(2)],
            a=[np.zeros(2), np.zeros(2)],
            B=[np.array([[0.0], [1.0]])] * 2,
            E=[np.array([[-1.0, 0.0]]), np.array([[1.0, 0.0]])],
            e=[[0.0], [0.0]],
            boundaries=[(0, 1, np.array([[0.0], [1.0]]), np.zeros(2))],
        )
        system = build(
            model,
            np.zeros(2),
            0.1,
            QUAD_LMI_GLOBAL,
            GainSource.fixed_zero(),
            continuity=True,
            normal_direction_only=True,
        )
        projector = system.continuity[0].projector
        self.assertEqual(projector.shape, (1, 2))
        assert_allclose(np.abs(projector), [[1.0, 0.0]], atol=1e-12)


class TestBuildErrors(unittest.TestCase):
    def test_bad_xcl_shape(self):
        with self.assertRaises(ModelError):
            build(_half_lines(), np.zeros(2), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())

    def test_non_positive_alpha(self):
        with self.assertRaises(ModelError):
            build(_half_lines(), np.zeros(1), 0.0, QUAD_LMI_GLOBAL, GainSource.fixed_zero())

    def test_ellipsoids_missing(self):
        with self.assertRaises(ModelError):
            build(_half_lines(), np.zeros(1), 0.1, ELL_LMI_GLOBAL, GainSource.fixed_zero())

    def test_pwq_without_boundaries(self):
        with self.assertRaises(ModelError):
            build(_half_lines(), np.zeros(1), 0.1, QUAD_LMI_PWQ, GainSource.fixed_zero())

    def test_inequality_kind_must_match_gain_source(self):
        with self.assertRaises(ModelError):
            build(_half_lines(), np.zeros(1), 0.1, QUAD_LMI_GLOBAL, GainSource.unknown())
        with self.assertRaises(ModelError):
            build(_half_lines(), np.zeros(1), 0.1, QUAD_BMI_GLOBAL, GainSource.fixed_zero())

    def test_unknown_gains_need_inputs(self):
        model = PWASystem.from_matrices(
            A=[[[-1.0]]], a=[[0.0]], B=[np.zeros((1, 0))], E=np.zeros((1, 0, 1)), e=[[]],
        )
        with self.assertRaises(ModelError):
            build(model, np.zeros(1), 0.1, QUAD_BMI_GLOBAL, GainSource.unknown())

    def test_xcl_not_an_equilibrium(self):
        with self.assertRaises(ModelError):
            build(_slab(), np.array([0.5]), 0.1, QUAD_LMI_GLOBAL, GainSource.fixed_zero())


if __name__ == "__main__":
    unittest.main()
