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
PWA Analysis and Synthesis Result Types

Structured return values for:
- Classical helpers used to seed synthesis (LQR, eigenvalues, controllability)
- Lyapunov certificates returned by the matrix-inequality solvers
- Stability analysis of open- and closed-loop PWA models
- Controller synthesis sweeps
- Runtime feedback ticks

Mathematical Background
----------------------
A certificate for decay rate alpha consists of Q ≻ 0 (or Q_i ≻ 0 per
region) such that, in error coordinates x̃ = x - x_cl,

    V(x̃) = x̃'Q x̃,    dV/dt < -alpha V    inside every region,

with S-procedure multipliers Z_i ≥ 0 (polytopic) or mu_i < 0
(ellipsoidal) absorbing the region constraints.

Usage
-----
>>> result: StabilityResult = analyze_pwa_stability(model, settings)
>>> if result['is_stable']:
...     Q = result['certificate']['Q'][0]
>>>
>>> synthesis: SynthesisResult = synthesize_pwa_controller(model, settings)
>>> for entry in synthesis['table']:
...     print(entry.method.describe(), entry.gains[0])
"""

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from typing_extensions import TypedDict

from .core import AggregatedGain, GainMatrix, LyapunovMatrix

# ============================================================================
# Classical Control Types
# ============================================================================


class LQRResult(TypedDict):
    """
    LQR design result.

    Fields
    ------
    gain : GainMatrix
        Optimal gain K (m, n) for u = -K x
    cost_to_go : np.ndarray
        Riccati solution P (n, n)
    controller_eigenvalues : np.ndarray
        Eigenvalues of A - B K
    stability_margin : float
        -max Re(λ) of A - B K; positive = stable
    """

    gain: GainMatrix
    cost_to_go: np.ndarray
    controller_eigenvalues: np.ndarray
    stability_margin: float


class ControllabilityInfo(TypedDict, total=False):
    """
    Controllability / stabilizability of (A, B).

    Fields
    ------
    controllability_matrix : np.ndarray
        [B, AB, ..., Aⁿ⁻¹B]
    rank : int
        Rank of the controllability matrix
    is_controllable : bool
        rank == n
    is_stabilizable : bool
        Every eigenvalue with Re(λ) ≥ 0 passes the PBH rank test
    """

    controllability_matrix: np.ndarray
    rank: int
    is_controllable: bool
    is_stabilizable: bool


# ============================================================================
# Certificates
# ============================================================================


class Certificate(TypedDict, total=False):
    """
    Feasible point of a PWA matrix-inequality system.

    Fields
    ------
    Q : List[LyapunovMatrix]
        One matrix for a global Lyapunov function, one per region for pwq
    alpha : float
        Decay rate the certificate was built for
    multipliers : Dict[Tuple[int, int], np.ndarray]
        S-procedure multiplier per (region, envelope): Z_i (polytopic,
        elementwise ≥ 0) or a 1-element array holding mu_i < 0
    gains : List[AggregatedGain]
        K̄_i = [K_i  k_i] per region, in original coordinates
    slack : float
        Largest eigenvalue margin t achieved (t < 0 for a certificate)
    iterations : int
        Convex solves performed (1 for linear systems)
    solver_status : str
        Final cvxpy status string
    """

    Q: List[LyapunovMatrix]
    alpha: float
    multipliers: Dict[Tuple[int, int], np.ndarray]
    gains: List[AggregatedGain]
    slack: float
    iterations: int
    solver_status: str


class CombinationOutcome(TypedDict):
    """
    Record of one method combination attempt.

    Fields
    ------
    method : Any
        MethodCombination attempted
    sweep : int
        1-based sweep number
    outcome : str
        'feasible', 'infeasible' or 'solver_error'
    reason : str
        Solver status or diagnostic message
    """

    method: Any
    sweep: int
    outcome: str
    reason: str


# ============================================================================
# Analysis and Synthesis Results
# ============================================================================


class StabilityResult(TypedDict):
    """
    PWA stability analysis result.

    Fields
    ------
    is_stable : bool
        True when a Lyapunov certificate was found
    status : str
        'stable', 'unstable' (single-region models only) or 'could not verify'
    message : str
        Human-readable verdict
    closed_loop : bool
        True when a gain table closed the loop
    certificate : Optional[Certificate]
        First certificate found
    method : Optional[Any]
        MethodCombination that produced the certificate
    xcl : np.ndarray
        Equilibrium point analysed
    outcomes : List[CombinationOutcome]
        Every combination attempted
    """

    is_stable: bool
    status: str
    message: str
    closed_loop: bool
    certificate: Optional[Certificate]
    method: Optional[Any]
    xcl: np.ndarray
    outcomes: List[CombinationOutcome]


class SynthesisResult(TypedDict):
    """
    PWA controller synthesis result.

    Fields
    ------
    success : bool
        True when the controller table is non-empty
    state : str
        Final controller state ('done' or 'failed')
    table : Any
        ControllerTable with one entry per converged combination
    sweeps : int
        Number of full sweeps performed
    attempts : List[CombinationOutcome]
        Every combination attempt across all sweeps
    message : str
        Human-readable summary
    settings : Any
        SynthesisSettings the run used
    xcl : np.ndarray
        Equilibrium point used
    """

    success: bool
    state: str
    table: Any
    sweeps: int
    attempts: List[CombinationOutcome]
    message: str
    settings: Any
    xcl: np.ndarray


class FeedbackOutput(TypedDict):
    """
    One tick of the runtime feedback block.

    Fields
    ------
    control : Any
        Control vector u (m,) in the requested backend
    region : Optional[int]
        Region whose gain was applied (None on a classification miss)
    stop : bool
        True when the host simulation must stop
    """

    control: Any
    region: Optional[int]
    stop: bool


__all__ = [
    "LQRResult",
    "ControllabilityInfo",
    "Certificate",
    "CombinationOutcome",
    "StabilityResult",
    "SynthesisResult",
    "FeedbackOutput",
]
