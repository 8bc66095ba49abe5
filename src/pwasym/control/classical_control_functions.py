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
Classical Control Functions for Region-Local Design

Pure stateless helpers applied to the linear part (A_i, B_i) of a single
region. They seed PWA synthesis with a local controller that is later
extended to the remaining regions.

**Control Design:**
- Continuous-time Linear Quadratic Regulator (LQR)
- Random positive definite weights for re-seeding

**System Analysis:**
- Controllability and stabilizability (PBH test)

Mathematical Background
-----------------------
LQR minimizes:
    J = ∫₀^∞ (x'Qx + u'Ru) dt

Solution via the continuous algebraic Riccati equation (CARE):
    A'P + PA - PBR⁻¹B'P + Q = 0

Optimal gain: K = R⁻¹B'P, applied as u = -Kx.

Stabilizability (PBH):
    rank([λI - A, B]) = n   for every eigenvalue λ with Re(λ) ≥ 0
"""

from typing import Optional

import numpy as np
from scipy import linalg

from pwasym.types.backends import Backend, from_numpy, to_numpy
from pwasym.types.core import CostMatrix, InputMatrix, StateMatrix
from pwasym.types.pwa_results import ControllabilityInfo, LQRResult

# ============================================================================
# LQR - Linear Quadratic Regulator
# ============================================================================


def design_lqr(
    A: StateMatrix,
    B: InputMatrix,
    Q: CostMatrix,
    R: CostMatrix,
    backend: Backend = "numpy",
) -> LQRResult:
    """
    Design a Linear Quadratic Regulator for one region's linear part.

    Parameters
    ----------
    A : StateMatrix
        State matrix (n, n)
    B : InputMatrix
        Input matrix (n, m)
    Q : CostMatrix
        State cost (n, n), Q ≥ 0
    R : CostMatrix
        Control cost (m, m), R > 0
    backend : Backend
        Backend of the inputs and of the returned arrays

    Returns
    -------
    LQRResult
        gain K (u = -Kx), Riccati solution, closed-loop eigenvalues and
        stability margin

    Raises
    ------
    ValueError
        If matrices have incompatible shapes
    LinAlgError
        If the Riccati equation has no stabilizing solution

    Examples
    --------
    >>> A = np.array([[0, 1], [2, 0]])
    >>> B = np.array([[0], [1]])
    >>> result = design_lqr(A, B, np.eye(2), np.eye(1))
    >>> result['stability_margin'] > 0
    True
    """
    A_np = to_numpy(A, backend)
    B_np = to_numpy(B, backend)
    Q_np = to_numpy(Q, backend)
    R_np = to_numpy(R, backend)

    nx = A_np.shape[0]
    nu = B_np.shape[1]

    if A_np.shape != (nx, nx):
        raise ValueError(f"A must be square, got shape {A_np.shape}")
    if B_np.shape[0] != nx:
        raise ValueError(f"B must have {nx} rows, got {B_np.shape[0]}")
    if Q_np.shape != (nx, nx):
        raise ValueError(f"Q must be ({nx}, {nx}), got {Q_np.shape}")
    if R_np.shape != (nu, nu):
        raise ValueError(f"R must be ({nu}, {nu}), got {R_np.shape}")

    P = linalg.solve_continuous_are(A_np, B_np, Q_np, R_np)
    K = linalg.solve(R_np, B_np.T @ P)
    eigenvalues = np.linalg.eigvals(A_np - B_np @ K)
    stability_margin = -np.max(np.real(eigenvalues))

    result: LQRResult = {
        "gain": from_numpy(K, backend),
        "cost_to_go": from_numpy(P, backend),
        "controller_eigenvalues": from_numpy(eigenvalues, backend),
        "stability_margin": float(stability_margin),
    }

    return result


def random_positive_definite(
    size: int,
    rng: Optional[np.random.Generator] = None,
    scale: float = 1.0,
) -> np.ndarray:
    """
    Draw a random symmetric positive definite matrix.

    M M' + size·I with M standard normal, scaled by ``scale``. Used to
    re-draw LQR seed weights between synthesis sweeps.

    Args:
        size: Matrix dimension
        rng: NumPy generator (a fresh default generator if None)
        scale: Positive scale factor

    Returns:
        Symmetric positive definite (size, size) matrix
    """
    if size < 1:
        raise ValueError(f"size must be positive, got {size}")
    rng = rng if rng is not None else np.random.default_rng()
    M = rng.standard_normal((size, size))
    return scale * (M @ M.T + size * np.eye(size))


# ============================================================================
# Controllability Analysis
# ============================================================================


def analyze_controllability(
    A: StateMatrix,
    B: InputMatrix,
    tolerance: float = 1e-10,
) -> ControllabilityInfo:
    """
    Controllability and stabilizability of (A, B).

    Controllability test:
        rank([B, AB, A²B, ..., Aⁿ⁻¹B]) = n

    Stabilizability (PBH) test:
        rank([λI - A, B]) = n for every λ ∈ eig(A) with Re(λ) ≥ 0

    Args:
        A: State matrix (n, n)
        B: Input matrix (n, m)
        tolerance: Tolerance for rank computation

    Returns:
        ControllabilityInfo with the controllability matrix, its rank and
        both flags

    Examples
    --------
    >>> A = np.array([[1, 0], [0, -1]])
    >>> B = np.array([[1], [0]])
    >>> info = analyze_controllability(A, B)
    >>> info['is_controllable'], info['is_stabilizable']
    (False, True)
    """
    A_np = np.asarray(A, dtype=float)
    B_np = np.asarray(B, dtype=float)

    nx = A_np.shape[0]
    if A_np.shape != (nx, nx):
        raise ValueError(f"A must be square, got shape {A_np.shape}")
    if B_np.ndim != 2 or B_np.shape[0] != nx:
        raise ValueError(f"B must have {nx} rows, got shape {B_np.shape}")
    nu = B_np.shape[1]

    C = np.zeros((nx, nx * nu))
    if nu > 0:
        C[:, :nu] = B_np
        AB = B_np.copy()
        for i in range(1, nx):
            AB = A_np @ AB
            C[:, i * nu : (i + 1) * nu] = AB

    rank = np.linalg.matrix_rank(C, tol=tolerance) if nu > 0 else 0
    is_controllable = rank == nx

    is_stabilizable = True
    for lam in np.linalg.eigvals(A_np):
        if np.real(lam) < 0:
            continue
        pbh = np.hstack([lam * np.eye(nx) - A_np, B_np.astype(complex)])
        if np.linalg.matrix_rank(pbh, tol=max(tolerance, 1e-9)) < nx:
            is_stabilizable = False
            break

    result: ControllabilityInfo = {
        "controllability_matrix": C,
        "rank": int(rank),
        "is_controllable": bool(is_controllable),
        "is_stabilizable": bool(is_stabilizable),
    }

    return result


__all__ = [
    "design_lqr",
    "random_positive_definite",
    "analyze_controllability",
]
