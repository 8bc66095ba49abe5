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
Backend and Method Types

Defines literal identifiers shared across the toolbox:
- Computational backends (NumPy, PyTorch, JAX)
- Region approximation methods (ellipsoidal, quadratic)
- Inequality kinds (linear, bilinear)
- Lyapunov structures (global, piecewise quadratic)
- Runtime feedback modes (linear, pwa)

Usage
-----
>>> from pwasym.types.backends import Backend, ApproximationMethod
>>>
>>> def classify(x, approximation: ApproximationMethod = 'quadratic'):
...     pass
"""

from typing import Any, Literal

import numpy as np

# ============================================================================
# Backend Types
# ============================================================================

Backend = Literal["numpy", "torch", "jax"]
"""
Backend identifier for array conversion at the API boundary.

Valid values:
- 'numpy': NumPy arrays (default, used internally everywhere)
- 'torch': PyTorch tensors (host simulations written in torch)
- 'jax': JAX arrays
"""

# ============================================================================
# Method Identifiers
# ============================================================================

ApproximationMethod = Literal["ellipsoidal", "quadratic"]
"""
How region containment enters the matrix inequalities.

- 'quadratic': polytopic description E x + e ≥ 0 (S-procedure with Z ≥ 0)
- 'ellipsoidal': ellipsoid ‖EL x + eL‖ < 1 (S-procedure with μ < 0)
"""

ClassifierApproximation = Literal["ellipsoidal", "quadratic", "both"]
"""Containment rule used by the region classifier ('both' = polytope first)."""

InequalityKind = Literal["linear", "bilinear"]
"""'linear' (LMI, gains fixed) or 'bilinear' (BMI, gains unknown)."""

SynthesisMethod = Literal["lmi", "bmi"]
"""User-facing synthesis method name, mapped to an InequalityKind."""

LyapunovStructure = Literal["global", "pwq"]
"""'global' quadratic V = x'Qx or 'pwq' piecewise quadratic V = x'Q_i x."""

FeedbackMode = Literal["linear", "pwa"]
"""Runtime feedback: fixed equilibrium-region gain or region lookup per tick."""

SlackKind = Literal["polytopic", "ellipsoidal"]
"""Kind of S-procedure multiplier attached to a region inequality."""

VALID_BACKENDS = ("numpy", "torch", "jax")
VALID_APPROXIMATIONS = ("ellipsoidal", "quadratic")
VALID_SYNTHESIS_METHODS = ("lmi", "bmi")
VALID_LYAPUNOV = ("global", "pwq")
VALID_FEEDBACK_MODES = ("linear", "pwa")


# ============================================================================
# Backend Conversion Utilities
# ============================================================================


def to_numpy(arr: Any, backend: Backend = "numpy") -> np.ndarray:
    """
    Convert array to a float64 NumPy array.

    Args:
        arr: Array in any backend (or nested sequence / scalar)
        backend: Source backend identifier

    Returns:
        NumPy array

    Raises:
        ValueError: If backend is not a known backend identifier
    """
    if backend not in VALID_BACKENDS:
        raise ValueError(f"Unknown backend: {backend}")

    if isinstance(arr, np.ndarray):
        return arr.astype(float, copy=False)

    if hasattr(arr, "detach"):
        # PyTorch tensor
        return arr.detach().cpu().numpy().astype(float)
    # JAX arrays, nested sequences and scalars
    return np.asarray(arr, dtype=float)


def from_numpy(arr: np.ndarray, backend: Backend = "numpy"):
    """
    Convert NumPy array back to target backend.

    Args:
        arr: NumPy array
        backend: Target backend

    Returns:
        Array in target backend
    """
    if backend == "numpy":
        return arr
    if backend == "torch":
        import torch

        return torch.from_numpy(np.ascontiguousarray(arr))
    if backend == "jax":
        import jax.numpy as jnp

        return jnp.array(arr)
    raise ValueError(f"Unknown backend: {backend}")


__all__ = [
    "Backend",
    "ApproximationMethod",
    "ClassifierApproximation",
    "InequalityKind",
    "SynthesisMethod",
    "LyapunovStructure",
    "FeedbackMode",
    "SlackKind",
    "VALID_BACKENDS",
    "VALID_APPROXIMATIONS",
    "VALID_SYNTHESIS_METHODS",
    "VALID_LYAPUNOV",
    "VALID_FEEDBACK_MODES",
    "to_numpy",
    "from_numpy",
]
