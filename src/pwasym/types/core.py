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
Core Types - Fundamental Building Blocks

Defines the basic array types used throughout the PWA toolbox:
- Multi-backend array types (NumPy, PyTorch, JAX)
- Semantic vector types (state, control, aggregated state)
- Matrix types (dynamics, input, region, gain, Lyapunov)

Design Philosophy
----------------
- **Backend Agnostic**: State vectors may arrive as NumPy, PyTorch or JAX
- **Semantic Clarity**: Names convey mathematical meaning
- **NumPy Internally**: All synthesis and certificate data are NumPy

Usage
-----
>>> from pwasym.types.core import StateVector, AggregatedGain, ControlVector
>>>
>>> def affine_law(x: StateVector, Kbar: AggregatedGain) -> ControlVector:
...     return Kbar @ np.append(x, 1.0)
"""

from typing import TYPE_CHECKING, Union

import numpy as np

if TYPE_CHECKING:
    import jax.numpy as jnp
    import torch


# ============================================================================
# Basic Array Types - Multi-Backend Support
# ============================================================================

ArrayLike = Union[np.ndarray, "torch.Tensor", "jnp.ndarray"]
"""
Array-like type supporting multiple backends.

Can be NumPy array, PyTorch tensor, or JAX array. Arrays are converted to
NumPy on entry to any classification or synthesis routine.
"""

NumpyArray = np.ndarray
"""Pure NumPy array (no conversion needed)."""

ScalarLike = Union[float, int, np.number]
"""Scalar value (decay rates, tolerances, time)."""


# ============================================================================
# Vector Types
# ============================================================================

StateVector = ArrayLike
"""
State vector x ∈ ℝⁿ.

Shape: (n,)
"""

ControlVector = ArrayLike
"""
Control input vector u ∈ ℝᵐ.

Shape: (m,)
"""

AggregatedState = NumpyArray
"""
Aggregated state x̄ = [x; 1] ∈ ℝⁿ⁺¹.

Lets an affine law u = K x + k be written as the linear map u = K̄ x̄.
"""

EquilibriumState = StateVector
"""Closed-loop equilibrium point x_cl (n,)."""


# ============================================================================
# Matrix Types
# ============================================================================

StateMatrix = ArrayLike
"""Dynamics matrix A (n, n) of one region."""

AffineTerm = ArrayLike
"""Affine drift a (n,) of one region."""

InputMatrix = ArrayLike
"""Input matrix B (n, m) of one region."""

RegionMatrix = ArrayLike
"""
Polytope rows E (p, n) of a region {x | E x + e ≥ 0}.

A matrix with zero rows describes the whole state space.
"""

RegionOffset = ArrayLike
"""Polytope offset e (p,)."""

EllipsoidMatrix = ArrayLike
"""Ellipsoid map EL (q, n) of a region {x | ‖EL x + eL‖ < 1}."""

EllipsoidOffset = ArrayLike
"""Ellipsoid offset eL (q,)."""

BoundaryMatrix = ArrayLike
"""Boundary parametrization F (n, n-1) of x = F s + f."""

GainMatrix = ArrayLike
"""Linear feedback gain K (m, n)."""

AggregatedGain = ArrayLike
"""
Aggregated affine gain K̄ = [K  k] of shape (m, n+1).

u = K̄ [x; 1] = K x + k
"""

LyapunovMatrix = NumpyArray
"""Symmetric positive definite Lyapunov matrix Q (n, n), V(x̃) = x̃'Qx̃."""

CostMatrix = ArrayLike
"""LQR weight matrix (QLin (n, n) or RLin (m, m))."""


__all__ = [
    "ArrayLike",
    "NumpyArray",
    "ScalarLike",
    "StateVector",
    "ControlVector",
    "AggregatedState",
    "EquilibriumState",
    "StateMatrix",
    "AffineTerm",
    "InputMatrix",
    "RegionMatrix",
    "RegionOffset",
    "EllipsoidMatrix",
    "EllipsoidOffset",
    "BoundaryMatrix",
    "GainMatrix",
    "AggregatedGain",
    "LyapunovMatrix",
    "CostMatrix",
]
