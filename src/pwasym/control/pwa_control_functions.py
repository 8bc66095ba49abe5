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
PWA Control Functions

Pure entry points for piecewise-affine stability analysis and controller
synthesis.

**Analysis:**
- analyze_pwa_stability: open loop (no gains) or closed loop (given K̄ table)

**Synthesis:**
- design_seed_gains: LQR local controller extended to every region
- synthesize_pwa_controller: retrying sweep over method combinations

Verdicts
--------
A certificate proves stability at x_cl. Its absence proves instability only
for single-region models, where the Lyapunov LMI is also necessary; for
multi-region models the conditions are only sufficient and the verdict is
'could not verify'.

Usage
-----
>>> settings = AnalysisSettings(lyapunov='global', approximations='quadratic')
>>> result = analyze_pwa_stability(model, settings)
>>> result['message']
'The open-loop PWA system is stable at xcl.'
>>>
>>> synthesis = synthesize_pwa_controller(model, SynthesisSettings(iteration_number=3))
>>> Kbar = synthesis['table'].best().gains
"""

import logging
import warnings
from typing import List, Optional, Sequence

import numpy as np

from pwasym.control.certificate_builder import GainSource, build, check_equilibrium
from pwasym.control.classical_control_functions import analyze_controllability, design_lqr
from pwasym.control.settings import (
    AnalysisSettings,
    SynthesisSettings,
    enumerate_combinations,
    filter_combinations,
)
from pwasym.control.solver_adapter import SolverAdapter
from pwasym.exceptions import ModelError, SynthesisFailure
from pwasym.systems.region_model import PWASystem
from pwasym.types.core import AggregatedGain, CostMatrix
from pwasym.types.pwa_results import CombinationOutcome, StabilityResult, SynthesisResult

logger = logging.getLogger(__name__)


# ============================================================================
# Seed Gains (Local Controller Extension)
# ============================================================================


def _local_lqr(A: np.ndarray, B: np.ndarray, q_lin: CostMatrix, r_lin: CostMatrix):
    """PWA-convention gain K (u = K x) from LQR, or None if (A, B) is not stabilizable."""
    if not analyze_controllability(A, B)["is_stabilizable"]:
        return None
    try:
        result = design_lqr(A, B, q_lin, r_lin)
    except (np.linalg.LinAlgError, ValueError) as exc:
        logger.debug("LQR seed failed: %s", exc)
        return None
    return -np.asarray(result["gain"], dtype=float)


def design_seed_gains(
    model: PWASystem,
    xcl: np.ndarray,
    q_lin: CostMatrix,
    r_lin: CostMatrix,
) -> List[np.ndarray]:
    """
    Seed gain table by extending a local LQR controller to every region.

    For every region the linear part K_i comes from an LQR design on the
    first envelope (A_i, B_i) with weights (q_lin, r_lin); regions whose
    pair is not stabilizable reuse the equilibrium region's gain. The affine
    part is chosen so that

    - regions containing x_cl keep x_cl an equilibrium: K_i x_cl + k_i = u_eq
    - other regions minimise the closed-loop drift at x_cl in least squares:
      min ‖A_ij x_cl + a_ij + B_ij (K_i x_cl + k_i)‖

    Args:
        model: PWA / PWADI model
        xcl: Equilibrium point (n,)
        q_lin: State weight (n, n), positive definite
        r_lin: Input weight (m, m), positive definite

    Returns:
        K̄_i = [K_i  k_i] per region, (m, n+1), original coordinates

    Raises:
        ModelError: If x_cl is not an equilibrium reachable with some u_eq
    """
    xcl = np.asarray(xcl, dtype=float).reshape(-1)
    n, m = model.n, model.m
    if m == 0:
        raise ModelError("Controller synthesis needs at least one control input")
    u_eq = check_equilibrium(model, xcl, GainSource.unknown())
    eq_region = min(u_eq)

    eq_dyn = model.regions[eq_region].dynamics[0]
    K_eq = _local_lqr(eq_dyn.A, eq_dyn.B, q_lin, r_lin)
    if K_eq is None:
        warnings.warn(
            f"Region {eq_region} containing xcl is not stabilizable; seeding with K = 0",
        )
        K_eq = np.zeros((m, n))

    gains = []
    for region in model.regions:
        dyn = region.dynamics[0]
        K = K_eq if region.index == eq_region else _local_lqr(dyn.A, dyn.B, q_lin, r_lin)
        if K is None:
            K = K_eq
        if region.index in u_eq:
            k_tilde = u_eq[region.index]
        else:
            B_stack = np.vstack([d.B for d in region.dynamics])
            rhs = -np.concatenate([d.A @ xcl + d.a for d in region.dynamics])
            k_tilde = np.linalg.lstsq(B_stack, rhs, rcond=None)[0]
        gains.append(np.hstack([K, (k_tilde - K @ xcl).reshape(-1, 1)]))
    return gains


# ============================================================================
# Stability Analysis
# ============================================================================


def _verdict_message(status: str, closed_loop: bool) -> str:
    loop = "closed-loop" if closed_loop else "open-loop"
    if status == "stable":
        return f"The {loop} PWA system is stable at xcl."
    if status == "unstable":
        return f"The {loop} PWA system is unstable at xcl."
    return f"I could not verify if the {loop} PWA system is stable at xcl."


def analyze_pwa_stability(
    model: PWASystem,
    settings: Optional[AnalysisSettings] = None,
    gains: Optional[Sequence[AggregatedGain]] = None,
    solver: Optional[SolverAdapter] = None,
) -> StabilityResult:
    """
    Search for a Lyapunov certificate of the open- or closed-loop model.

    Sweeps approximation × Lyapunov structure with linear inequalities and
    stops at the first certificate. Analysis never retries.

    Args:
        model: PWA / PWADI model
        settings: Analysis settings (defaults: every approximation and
            Lyapunov structure, alpha = 0.1, xcl from the model)
        gains: Optional K̄ table (one (m, n+1) per region) closing the loop
        solver: Solver adapter (built from the settings if None)

    Returns:
        StabilityResult with verdict, certificate and per-combination outcomes

    Raises:
        ModelError: If xcl is not an equilibrium or the gain table is malformed
        ConfigurationError: If no method combination fits the model

    Examples
    --------
    >>> result = analyze_pwa_stability(model, AnalysisSettings(xcl=[0.0]))
    >>> result['status']
    'stable'
    """
    settings = settings if settings is not None else AnalysisSettings()
    xcl = settings.resolve_xcl(model)
    closed_loop = gains is not None
    gain_source = GainSource.fixed_external(gains) if closed_loop else GainSource.fixed_zero()
    solver = solver if solver is not None else SolverAdapter.from_settings(settings)

    combinations = filter_combinations(
        model,
        enumerate_combinations(settings.approximations, ("linear",), settings.lyapunov),
    )

    outcomes: List[CombinationOutcome] = []
    certificate = None
    method = None
    for combo in combinations:
        system = build(
            model,
            xcl,
            settings.alpha,
            combo,
            gain_source,
            continuity=settings.continuity or None,
            normal_direction_only=settings.normal_direction_only,
        )
        outcome = solver.solve(system)
        outcomes.append(
            {
                "method": combo,
                "sweep": 1,
                "outcome": outcome.kind,
                "reason": getattr(outcome, "reason", "certificate found"),
            },
        )
        logger.debug("Analysis %s: %s", combo.describe(), outcome.kind)
        if outcome.kind == "feasible":
            certificate = outcome.certificate
            method = combo
            break

    if certificate is not None:
        status = "stable"
    elif model.n_regions == 1 and all(o["outcome"] == "infeasible" for o in outcomes):
        status = "unstable"
    else:
        status = "could not verify"

    message = _verdict_message(status, closed_loop)
    logger.info(message)

    result: StabilityResult = {
        "is_stable": status == "stable",
        "status": status,
        "message": message,
        "closed_loop": closed_loop,
        "certificate": certificate,
        "method": method,
        "xcl": xcl,
        "outcomes": outcomes,
    }
    return result


# ============================================================================
# Synthesis
# ============================================================================


def synthesize_pwa_controller(
    model: PWASystem,
    settings: Optional[SynthesisSettings] = None,
    solver: Optional[SolverAdapter] = None,
    raise_on_failure: bool = False,
) -> SynthesisResult:
    """
    Synthesize PWA state-feedback gains u = K_i x + k_i.

    Runs the SynthesisController: at most ``settings.iteration_number``
    sweeps over approximation × synthesis method × Lyapunov structure, with
    fresh seed weights on each retry.

    Args:
        model: PWA / PWADI model
        settings: Synthesis settings
        solver: Solver adapter (built from the settings if None)
        raise_on_failure: Raise SynthesisFailure instead of returning an
            unsuccessful result

    Returns:
        SynthesisResult with the controller table

    Raises:
        ModelError: If xcl is not an equilibrium of the model
        SynthesisFailure: If no combination converged and raise_on_failure
    """
    from pwasym.control.synthesis_controller import SynthesisController

    settings = settings if settings is not None else SynthesisSettings()
    result = SynthesisController(model, settings, solver=solver).run()
    if raise_on_failure and not result["success"]:
        raise SynthesisFailure(result["message"], sweeps=result["sweeps"])
    return result


__all__ = [
    "design_seed_gains",
    "analyze_pwa_stability",
    "synthesize_pwa_controller",
]
