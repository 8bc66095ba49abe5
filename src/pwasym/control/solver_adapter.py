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
Solver Adapters

Resolve an InequalitySystem into one of three outcomes:

- Feasible(certificate): Q, multipliers and gains satisfying every inequality
- Infeasible(reason): no certificate exists for this combination (or the
  bilinear heuristic stalled without finding one)
- SolverFailure(reason): numerical trouble, solver error or time limit

Two backends, both on cvxpy:

- ConvexLMISolver: fixed gains, one semidefinite feasibility problem
- BilinearSolver: unknown gains, alternating convex minimisation of the
  largest-eigenvalue slack t over (Q, multipliers) and (K, k, multipliers)

SolverAdapter dispatches on ``system.is_bilinear``.

Every Feasible outcome is verified numerically (eigenvalues of the block
inequalities, sign of the multipliers, equality residuals) before it is
returned; solver status alone is never trusted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cvxpy as cp
import numpy as np

from pwasym.control.certificate_builder import InequalitySystem, RegionInequality, unshift_gain
from pwasym.exceptions import SolverError
from pwasym.types.pwa_results import Certificate

logger = logging.getLogger(__name__)

_VERIFY_STATUSES = (cp.OPTIMAL, cp.OPTIMAL_INACCURATE)
_INFEASIBLE_STATUSES = (cp.INFEASIBLE, cp.INFEASIBLE_INACCURATE)

# Per-solver option carrying a wall-clock limit in seconds
_TIME_LIMIT_OPTIONS = {cp.CLARABEL: "time_limit", cp.SCS: "time_limit_secs"}


# ============================================================================
# Outcomes
# ============================================================================


@dataclass(frozen=True, eq=False)
class Feasible:
    """A verified certificate."""

    certificate: Certificate

    @property
    def kind(self) -> str:
        return "feasible"


@dataclass(frozen=True, eq=False)
class Infeasible:
    """No certificate for this combination."""

    reason: str

    @property
    def kind(self) -> str:
        return "infeasible"


@dataclass(frozen=True, eq=False)
class SolverFailure:
    """Numerical failure, solver error or exhausted time budget."""

    reason: str

    @property
    def kind(self) -> str:
        return "solver_error"


SolveOutcome = Union[Feasible, Infeasible, SolverFailure]


# ============================================================================
# Expression Assembly (shared by numeric checks and cvxpy problems)
# ============================================================================


def _sym(X):
    return (X + X.T) / 2


def _region_block(r: RegionInequality, Q, K, kt, multiplier, alpha: float, stack):
    """
    Left-hand side of the decay inequality of one (region, envelope).

    Works on numpy arrays and cvxpy expressions alike; ``stack`` is
    ``np.block`` or ``cp.bmat``. ``kt`` is a column (m, 1).
    """
    M = r.A + r.B @ K
    mvec = r.a.reshape(-1, 1) + r.B @ kt
    L11 = Q @ M + M.T @ Q + alpha * Q
    if r.contains_xcl:
        return L11
    s = r.s.reshape(-1, 1)
    if r.slack == "polytopic":
        T11 = L11 + r.S.T @ multiplier @ r.S
        T12 = Q @ mvec + r.S.T @ multiplier @ s
        T22 = s.T @ multiplier @ s
    else:
        T11 = L11 + multiplier * (r.S.T @ r.S)
        T12 = Q @ mvec + multiplier * (r.S.T @ s)
        T22 = multiplier * (s.T @ s - 1.0)
    return stack([[T11, T12], [T12.T, T22]])


def _aggregate(r: RegionInequality, K, kt, hstack):
    """M̄ = [A + B K,  ã + B k̃] (n, n+1)."""
    return hstack([r.A + r.B @ K, r.a.reshape(-1, 1) + r.B @ kt])


def _new_multiplier(r: RegionInequality, eps: float):
    if r.slack == "polytopic":
        p = r.S.shape[0]
        Z = cp.Variable((p, p), symmetric=True)
        return Z, [Z >= 0]
    mu = cp.Variable()
    return mu, [mu <= -eps]


def _by_key(system: InequalitySystem) -> Dict[Tuple[int, int], RegionInequality]:
    return {(r.region, r.envelope): r for r in system.inequalities}


def _decay_constraints(system: InequalitySystem, Qs, gains, bound, eps: float):
    """
    Decay inequalities of every (region, envelope), block ⪯ bound·I.

    Returns (constraints, multipliers) with one fresh multiplier per
    (region, envelope) not containing x_cl.
    """
    constraints = []
    multipliers = {}
    for r in system.inequalities:
        Q = Qs[system.lyapunov_index(r.region)]
        K, kt = gains[r.region]
        multiplier = None
        if r.needs_multiplier:
            multiplier, extra = _new_multiplier(r, eps)
            multipliers[(r.region, r.envelope)] = multiplier
            constraints.extend(extra)
        block = _region_block(r, Q, K, kt, multiplier, system.alpha, cp.bmat)
        size = block.shape[0]
        constraints.append(_sym(block) << bound * np.eye(size))
    return constraints, multipliers


def _continuity_constraints(system: InequalitySystem, gains) -> List:
    rows = _by_key(system)
    envelopes = sorted({r.envelope for r in system.inequalities})
    constraints = []
    for link in system.continuity:
        for j in envelopes:
            Mi = _aggregate(rows[(link.i, j)], *gains[link.i], cp.hstack)
            Mh = _aggregate(rows[(link.h, j)], *gains[link.h], cp.hstack)
            constraints.append(link.projector @ (Mi - Mh) @ link.Fbar == 0)
    return constraints


def _equilibrium_constraints(system: InequalitySystem, gains) -> List:
    constraints = []
    for r in system.inequalities:
        if r.contains_xcl:
            _, kt = gains[r.region]
            constraints.append(r.a.reshape(-1, 1) + r.B @ kt == 0)
    return constraints


def _lyapunov_constraints(system: InequalitySystem, Qs) -> List:
    constraints = []
    n = system.n
    for link in system.lyapunov_links:
        Fn = link.Fbar[:n, :]
        constraints.append(Fn.T @ (Qs[link.i] - Qs[link.h]) @ Fn == 0)
    return constraints


# ============================================================================
# Numeric Verification
# ============================================================================


def _clean_multiplier(r: RegionInequality, value) -> np.ndarray:
    if r.slack == "polytopic":
        Z = np.asarray(value, dtype=float)
        return np.maximum((Z + Z.T) / 2, 0.0)
    return np.array([min(float(value), 0.0)])


def _max_block_eigenvalue(system: InequalitySystem, Qs, gains, multipliers) -> float:
    worst = -np.inf
    for r in system.inequalities:
        Q = Qs[system.lyapunov_index(r.region)]
        K, kt = gains[r.region]
        multiplier = multipliers.get((r.region, r.envelope))
        if multiplier is not None and r.slack == "ellipsoidal":
            multiplier = float(multiplier[0])
        block = _region_block(r, Q, K, kt, multiplier, system.alpha, np.block)
        worst = max(worst, float(np.max(np.linalg.eigvalsh(_sym(block)))))
    return worst


def continuity_residual(system: InequalitySystem, gains) -> float:
    """Largest control-continuity violation for numeric gains."""
    rows = _by_key(system)
    envelopes = sorted({r.envelope for r in system.inequalities})
    residual = 0.0
    for link in system.continuity:
        for j in envelopes:
            Mi = _aggregate(rows[(link.i, j)], *gains[link.i], np.hstack)
            Mh = _aggregate(rows[(link.h, j)], *gains[link.h], np.hstack)
            gap = np.abs(link.projector @ (Mi - Mh) @ link.Fbar)
            residual = max(residual, float(np.max(gap, initial=0.0)))
    return residual


def verify_certificate(
    system: InequalitySystem,
    Qs: Sequence[np.ndarray],
    gains,
    multipliers: Dict[Tuple[int, int], np.ndarray],
    tol: float = 1e-6,
) -> Tuple[bool, str, float]:
    """
    Check a candidate certificate with plain linear algebra.

    Args:
        system: Inequality system the candidate was computed for
        Qs: Lyapunov matrices (one, or one per region)
        gains: (K_i, k̃_i) per region, k̃_i as (m, 1) column
        multipliers: Cleaned multipliers per (region, envelope)
        tol: Relative tolerance on the equality constraints

    Returns:
        (ok, reason, largest block eigenvalue)
    """
    for idx, Q in enumerate(Qs):
        if np.min(np.linalg.eigvalsh(_sym(Q))) <= 0:
            return False, f"Q[{idx}] is not positive definite", np.inf

    worst = _max_block_eigenvalue(system, Qs, gains, multipliers)
    if worst >= 0:
        return False, f"decay inequality violated (max eigenvalue {worst:.3e})", worst

    scale = max(1.0, max(float(np.max(np.abs(Q))) for Q in Qs))
    for link in system.lyapunov_links:
        Fn = link.Fbar[: system.n, :]
        res = float(np.max(np.abs(Fn.T @ (Qs[link.i] - Qs[link.h]) @ Fn), initial=0.0))
        if res > tol * scale:
            return False, f"Lyapunov function discontinuous across ({link.i}, {link.h})", worst

    if continuity_residual(system, gains) > tol * max(1.0, _gain_scale(gains)):
        return False, "control law discontinuous across a boundary", worst

    if system.is_bilinear:
        for r in system.inequalities:
            if r.contains_xcl:
                drift = r.a + r.B @ gains[r.region][1].reshape(-1)
                if np.linalg.norm(drift) > tol * max(1.0, _gain_scale(gains)):
                    return False, f"x_cl is not an equilibrium of region {r.region}", worst

    return True, "verified", worst


def _gain_scale(gains) -> float:
    return max((float(np.max(np.abs(K), initial=0.0)) for K, _ in gains), default=0.0)


# ============================================================================
# Solvers
# ============================================================================


class _CvxpySolver:
    """Shared cvxpy plumbing: solver choice, status mapping, time budget."""

    def __init__(
        self,
        solver: Optional[str] = None,
        eps: float = 1e-6,
        time_limit: Optional[float] = None,
        verify_tol: float = 1e-6,
    ):
        if eps <= 0:
            raise ValueError(f"eps must be positive, got {eps}")
        self.solver = solver
        self.eps = float(eps)
        self.time_limit = time_limit
        self.verify_tol = float(verify_tol)

    def _solver_name(self) -> Optional[str]:
        """Explicit solver, or the first time-limited one installed when a budget is set."""
        if self.solver is not None or self.time_limit is None:
            return self.solver
        installed = cp.installed_solvers()
        return next((name for name in _TIME_LIMIT_OPTIONS if name in installed), None)

    def _run(self, problem: cp.Problem, start: float) -> str:
        """
        Solve within the remaining time budget and return the status.

        Raises SolverError when no usable status comes back or the budget
        is already spent.
        """
        options = {}
        solver = self._solver_name()
        if solver is not None:
            options["solver"] = solver
        if self.time_limit is not None:
            remaining = self.time_limit - (time.monotonic() - start)
            if remaining <= 0:
                raise SolverError("time limit exceeded")
            if solver in _TIME_LIMIT_OPTIONS:
                options[_TIME_LIMIT_OPTIONS[solver]] = remaining
        try:
            problem.solve(**options)
        except cp.SolverError as exc:
            raise SolverError(f"solver error: {exc}") from exc
        logger.debug("cvxpy status %s", problem.status)
        if problem.status in _VERIFY_STATUSES or problem.status in _INFEASIBLE_STATUSES:
            return problem.status
        if problem.status == cp.USER_LIMIT and self.time_limit is not None:
            raise SolverError("time limit exceeded")
        raise SolverError(f"solver status '{problem.status}'")

    def _out_of_time(self, start: float) -> bool:
        return self.time_limit is not None and time.monotonic() - start > self.time_limit

    @staticmethod
    def _gains_from(system: InequalitySystem):
        gains = []
        for K, kt in system.shifted_gains():
            gains.append((K, kt.reshape(-1, 1)))
        return gains

    @staticmethod
    def _unshifted(system: InequalitySystem, gains) -> List[np.ndarray]:
        return [unshift_gain(K, kt.reshape(-1), system.xcl) for K, kt in gains]


class ConvexLMISolver(_CvxpySolver):
    """
    Semidefinite feasibility for systems with fixed gains.

    Problem:
        find Q (⪰ I), Z_i (≥ 0) / mu_i (≤ -eps)
        s.t. every decay block ⪯ -eps I, Lyapunov continuity (pwq)

    Examples
    --------
    >>> outcome = ConvexLMISolver().solve(system)
    >>> outcome.kind
    'feasible'
    """

    def solve(self, system: InequalitySystem) -> SolveOutcome:
        if system.is_bilinear:
            raise ValueError("ConvexLMISolver cannot solve a system with unknown gains")
        start = time.monotonic()
        gains = self._gains_from(system)

        residual = continuity_residual(system, gains)
        if residual > self.verify_tol * max(1.0, _gain_scale(gains)):
            return Infeasible(f"fixed gains violate control continuity (residual {residual:.3e})")

        n = system.n
        Qs = [cp.Variable((n, n), symmetric=True) for _ in range(system.n_lyapunov)]
        constraints, multipliers = _decay_constraints(system, Qs, gains, -self.eps, self.eps)
        constraints += [Q >> np.eye(n) for Q in Qs]
        constraints += _lyapunov_constraints(system, Qs)
        problem = cp.Problem(cp.Minimize(0), constraints)

        try:
            status = self._run(problem, start)
        except SolverError as exc:
            return SolverFailure(str(exc))
        if status in _INFEASIBLE_STATUSES:
            return Infeasible(f"solver status '{status}'")

        Q_values = [np.asarray(Q.value, dtype=float) for Q in Qs]
        rows = _by_key(system)
        cleaned = {key: _clean_multiplier(rows[key], var.value) for key, var in multipliers.items()}
        ok, reason, worst = verify_certificate(system, Q_values, gains, cleaned, self.verify_tol)
        if not ok:
            return SolverFailure(f"certificate verification failed: {reason}")

        certificate: Certificate = {
            "Q": Q_values,
            "alpha": system.alpha,
            "multipliers": cleaned,
            "gains": self._unshifted(system, gains),
            "slack": worst,
            "iterations": 1,
            "solver_status": status,
        }
        return Feasible(certificate)


class BilinearSolver(_CvxpySolver):
    """
    Alternating convex iterations for systems with unknown gains.

    Each iteration solves two SDPs in the slack t (bounded below by -1):

        Lyapunov step:  min t over (Q, multipliers) with the gains fixed
        Gain step:      min t over (K_i, k̃_i, multipliers) with Q fixed,
                        subject to ã_ij + B_ij k̃_i = 0 where x_cl lies and
                        to control continuity

    The slack never increases from one gain step to the next; the loop stops
    with a certificate as soon as t ≤ -eps and the candidate verifies.

    Attributes
    ----------
    max_iterations : int
        Alternations allowed before giving up
    stall_tol : float
        Minimum decrease of t between iterations
    """

    def __init__(
        self,
        solver: Optional[str] = None,
        eps: float = 1e-6,
        time_limit: Optional[float] = None,
        verify_tol: float = 1e-6,
        max_iterations: int = 30,
        stall_tol: float = 1e-6,
    ):
        super().__init__(solver=solver, eps=eps, time_limit=time_limit, verify_tol=verify_tol)
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.max_iterations = int(max_iterations)
        self.stall_tol = float(stall_tol)

    def _lyapunov_step(self, system, gains, start):
        n = system.n
        Qs = [cp.Variable((n, n), symmetric=True) for _ in range(system.n_lyapunov)]
        t = cp.Variable()
        constraints, multipliers = _decay_constraints(system, Qs, gains, t, self.eps)
        constraints += [Q >> np.eye(n) for Q in Qs]
        constraints += _lyapunov_constraints(system, Qs)
        constraints.append(t >= -1.0)
        status = self._run(cp.Problem(cp.Minimize(t), constraints), start)
        if status in _INFEASIBLE_STATUSES:
            return status, None, None, None
        Q_values = [np.asarray(Q.value, dtype=float) for Q in Qs]
        return status, float(t.value), Q_values, multipliers

    def _gain_step(self, system, Q_values, start):
        n, m = system.n, system.m
        gains = [
            (cp.Variable((m, n)), cp.Variable((m, 1))) for _ in range(system.n_regions)
        ]
        t = cp.Variable()
        constraints, multipliers = _decay_constraints(system, Q_values, gains, t, self.eps)
        constraints += _equilibrium_constraints(system, gains)
        constraints += _continuity_constraints(system, gains)
        constraints.append(t >= -1.0)
        status = self._run(cp.Problem(cp.Minimize(t), constraints), start)
        if status in _INFEASIBLE_STATUSES:
            return status, None, None, None
        values = [
            (np.asarray(K.value, dtype=float), np.asarray(kt.value, dtype=float))
            for K, kt in gains
        ]
        return status, float(t.value), values, multipliers

    def _candidate(self, system, Q_values, gains, multipliers, status, t, iterations):
        rows = _by_key(system)
        cleaned = {key: _clean_multiplier(rows[key], var.value) for key, var in multipliers.items()}
        ok, reason, worst = verify_certificate(system, Q_values, gains, cleaned, self.verify_tol)
        if not ok:
            logger.debug("Candidate at iteration %d rejected: %s", iterations, reason)
            return None
        certificate: Certificate = {
            "Q": Q_values,
            "alpha": system.alpha,
            "multipliers": cleaned,
            "gains": self._unshifted(system, gains),
            "slack": t,
            "iterations": iterations,
            "solver_status": status,
        }
        return Feasible(certificate)

    def solve(self, system: InequalitySystem) -> SolveOutcome:
        if not system.is_bilinear:
            raise ValueError("BilinearSolver expects a system with unknown gains")
        start = time.monotonic()
        gains = self._gains_from(system) if system.fixed_gains else None
        Q_values = [np.eye(system.n) for _ in range(system.n_lyapunov)]
        previous = np.inf
        solves = 0

        try:
            for iteration in range(1, self.max_iterations + 1):
                if gains is not None:
                    status, t, Q_step, multipliers = self._lyapunov_step(system, gains, start)
                    solves += 1
                    if Q_step is None:
                        return Infeasible(f"Lyapunov step status '{status}'")
                    Q_values = Q_step
                    if t <= -self.eps:
                        found = self._candidate(system, Q_values, gains, multipliers, status, t, solves)
                        if found is not None:
                            return found

                status, t, gain_step, multipliers = self._gain_step(system, Q_values, start)
                solves += 1
                if gain_step is None:
                    return Infeasible(f"gain step status '{status}'")
                gains = gain_step
                logger.debug("Bilinear iteration %d: t = %.3e", iteration, t)
                if t <= -self.eps:
                    found = self._candidate(system, Q_values, gains, multipliers, status, t, solves)
                    if found is not None:
                        return found

                if self._out_of_time(start):
                    return SolverFailure("time limit exceeded")
                if previous - t < self.stall_tol:
                    return Infeasible(f"alternating iterations stalled at t = {t:.3e}")
                previous = t
        except SolverError as exc:
            return SolverFailure(str(exc))

        return Infeasible(f"no certificate after {self.max_iterations} iterations (t = {previous:.3e})")


class SolverAdapter:
    """
    Dispatch inequality systems to the convex or the bilinear backend.

    Examples
    --------
    >>> adapter = SolverAdapter.from_settings(settings)
    >>> outcome = adapter.solve(system)
    >>> if outcome.kind == 'feasible':
    ...     Q = outcome.certificate['Q'][0]
    """

    def __init__(
        self,
        solver: Optional[str] = None,
        eps: float = 1e-6,
        time_limit: Optional[float] = None,
        max_iterations: int = 30,
    ):
        self.linear = ConvexLMISolver(solver=solver, eps=eps, time_limit=time_limit)
        self.bilinear = BilinearSolver(
            solver=solver,
            eps=eps,
            time_limit=time_limit,
            max_iterations=max_iterations,
        )

    @classmethod
    def from_settings(cls, settings) -> "SolverAdapter":
        return cls(
            solver=settings.solver,
            eps=settings.eps,
            time_limit=settings.time_limit,
            max_iterations=getattr(settings, "bmi_iterations", 30),
        )

    def solve(self, system: InequalitySystem) -> SolveOutcome:
        backend = self.bilinear if system.is_bilinear else self.linear
        outcome = backend.solve(system)
        logger.debug("%s -> %s", system.method.describe(), outcome.kind)
        return outcome


__all__ = [
    "Feasible",
    "Infeasible",
    "SolverFailure",
    "SolveOutcome",
    "ConvexLMISolver",
    "BilinearSolver",
    "SolverAdapter",
    "continuity_residual",
    "verify_certificate",
]
