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
Certificate Builder

Builds the Lyapunov matrix-inequality system certifying that a PWA model
(open loop, closed through a given gain table, or closed through unknown
gains) decays to x_cl at rate alpha.

Mathematical Background
-----------------------
All data are shifted to error coordinates x̃ = x - x_cl:

    ã_i = A_i x_cl + a_i,   ẽ_i = E_i x_cl + e_i,   ẽL_i = EL_i x_cl + eL_i,
    k̃_i = K_i x_cl + k_i,   M_i = A_i + B_i K_i,    m_i = ã_i + B_i k̃_i.

With V(x̃) = x̃'Q x̃ the conditions are (Samadi & Rodrigues, 2008):

(1) Q ≻ 0 (one Q, or one Q_i per region for pwq)

(2) Regions containing x_cl:

        Q M_i + M_i'Q + alpha Q ≺ 0

(3) Regions not containing x_cl, polytopic approximation (Z_i ≥ 0):

        [ Q M_i + M_i'Q + alpha Q + E_i'Z_i E_i    Q m_i + E_i'Z_i ẽ_i ]
        [ (Q m_i + E_i'Z_i ẽ_i)'                   ẽ_i'Z_i ẽ_i         ]  ≺ 0

    where E_i, ẽ_i carry the extra row [0 | 1] (the constant 1 ≥ 0), so that
    products of a region row with the constant enter Z_i.

    or ellipsoidal approximation (mu_i < 0):

        [ Q M_i + M_i'Q + alpha Q + mu_i EL_i'EL_i   Q m_i + mu_i EL_i'ẽL_i ]
        [ (Q m_i + mu_i EL_i'ẽL_i)'                  -mu_i (1 - ẽL_i'ẽL_i)  ]  ≺ 0

(4) Optional continuity of the closed-loop vector field on the boundary
    x̃ = F s + f̃ of adjacent regions i, h:

        [M_i  m_i] F̄ = [M_h  m_h] F̄,   F̄ = [[F, f̃], [0, 1]]

For a PWADI every condition is emitted for both envelopes j = 1, 2 with a
shared gain per region. With unknown gains the problem is bilinear in
(Q, K_i); with fixed gains it is an LMI in (Q, Z_i / mu_i).

The builder only describes the problem; solving is delegated to the
solver adapters.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np
from scipy import linalg

from pwasym.control.settings import MethodCombination
from pwasym.exceptions import ModelError
from pwasym.systems.region_classifier import RegionClassifier
from pwasym.systems.region_model import PWASystem
from pwasym.types.backends import SlackKind
from pwasym.types.core import AggregatedGain

GainKind = Literal["fixed_zero", "fixed_external", "unknown"]

# Containment slack for x_cl sitting exactly on a region boundary
_CONTAINMENT_TOL = 1e-9


# ============================================================================
# Gain Source
# ============================================================================


@dataclass(frozen=True, eq=False)
class GainSource:
    """
    Where the per-region gains K̄_i = [K_i  k_i] come from.

    - fixed_zero: open loop, K_i = 0, k_i = 0
    - fixed_external: a given gain table (closed-loop analysis)
    - unknown: gains are decision variables; ``gains`` optionally holds a
      seed used to start the bilinear solver

    Examples
    --------
    >>> GainSource.fixed_zero().is_unknown
    False
    >>> GainSource.unknown(seed_gains).kind
    'unknown'
    """

    kind: GainKind
    gains: Optional[Tuple[np.ndarray, ...]] = None

    @classmethod
    def fixed_zero(cls) -> "GainSource":
        return cls(kind="fixed_zero")

    @classmethod
    def fixed_external(cls, gains: Sequence[AggregatedGain]) -> "GainSource":
        return cls(kind="fixed_external", gains=_as_gain_tuple(gains))

    @classmethod
    def unknown(cls, seed_gains: Optional[Sequence[AggregatedGain]] = None) -> "GainSource":
        seed = _as_gain_tuple(seed_gains) if seed_gains is not None else None
        return cls(kind="unknown", gains=seed)

    @property
    def is_unknown(self) -> bool:
        return self.kind == "unknown"

    def table(self, model: PWASystem) -> List[np.ndarray]:
        """
        Gain per region in original coordinates (zeros for fixed_zero).

        Raises:
            ModelError: If the table size or gain shapes do not match the model
        """
        n, m, nr = model.n, model.m, model.n_regions
        if self.gains is None:
            return [np.zeros((m, n + 1)) for _ in range(nr)]
        if len(self.gains) != nr:
            raise ModelError(f"Gain table needs one K̄ per region ({nr}), got {len(self.gains)}")
        for i, Kbar in enumerate(self.gains):
            if Kbar.shape != (m, n + 1):
                raise ModelError(f"K̄ of region {i} must be ({m}, {n + 1}), got {Kbar.shape}")
        return list(self.gains)


def _as_gain_tuple(gains: Sequence[AggregatedGain]) -> Tuple[np.ndarray, ...]:
    out = []
    for Kbar in gains:
        arr = np.atleast_2d(np.array(Kbar, dtype=float))
        arr.setflags(write=False)
        out.append(arr)
    return tuple(out)


def shift_gain(Kbar: np.ndarray, xcl: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split K̄ = [K k] and move k to error coordinates: k̃ = K x_cl + k."""
    n = xcl.shape[0]
    K = Kbar[:, :n]
    k = Kbar[:, n]
    return K, K @ xcl + k


def unshift_gain(K: np.ndarray, k_tilde: np.ndarray, xcl: np.ndarray) -> np.ndarray:
    """Inverse of shift_gain: K̄ = [K  k̃ - K x_cl]."""
    return np.hstack([K, (k_tilde - K @ xcl).reshape(-1, 1)])


# ============================================================================
# Inequality System
# ============================================================================


@dataclass(frozen=True, eq=False)
class RegionInequality:
    """
    Decay inequality of one (region, envelope) pair in error coordinates.

    Attributes
    ----------
    region : int
        Region index i
    envelope : int
        Envelope j (1 for PWA, 1 or 2 for PWADI)
    contains_xcl : bool
        True → plain LMI (2); False → augmented inequality (3)
    A, a, B : np.ndarray
        Shifted dynamics (A_ij, ã_ij, B_ij)
    slack : SlackKind
        'polytopic' (Z_i ≥ 0) or 'ellipsoidal' (mu_i < 0)
    S, s : np.ndarray
        Shifted containment data ([E_i; 0], [ẽ_i; 1]) or (EL_i, ẽL_i)
    """

    region: int
    envelope: int
    contains_xcl: bool
    A: np.ndarray
    a: np.ndarray
    B: np.ndarray
    slack: SlackKind
    S: np.ndarray
    s: np.ndarray

    @property
    def needs_multiplier(self) -> bool:
        return not self.contains_xcl


@dataclass(frozen=True, eq=False)
class ContinuityLink:
    """
    Control continuity across the boundary of regions i and h.

    The constraint is P ([M_i m_i] - [M_h m_h]) F̄ = 0 for every envelope,
    with P the identity or the projection on the boundary normal.
    """

    i: int
    h: int
    Fbar: np.ndarray
    projector: np.ndarray


@dataclass(frozen=True, eq=False)
class LyapunovLink:
    """Continuity of a piecewise quadratic V across the boundary of i and h."""

    i: int
    h: int
    Fbar: np.ndarray


@dataclass(frozen=True, eq=False)
class InequalitySystem:
    """
    Matrix-inequality feasibility problem for one method combination.

    Attributes
    ----------
    n, m, n_regions : int
        Model dimensions
    alpha : float
        Decay rate
    method : MethodCombination
        Combination the system was built for
    gain_source : GainSource
        Fixed or unknown gains
    xcl : np.ndarray
        Equilibrium point (data are shifted to it)
    inequalities : Tuple[RegionInequality, ...]
        One entry per (region, envelope)
    continuity : Tuple[ContinuityLink, ...]
        Control continuity constraints
    lyapunov_links : Tuple[LyapunovLink, ...]
        Lyapunov continuity constraints (pwq only)
    unknowns : Tuple[str, ...]
        Names of the decision variables
    """

    n: int
    m: int
    n_regions: int
    alpha: float
    method: MethodCombination
    gain_source: GainSource
    xcl: np.ndarray
    inequalities: Tuple[RegionInequality, ...]
    continuity: Tuple[ContinuityLink, ...] = field(default_factory=tuple)
    lyapunov_links: Tuple[LyapunovLink, ...] = field(default_factory=tuple)
    unknowns: Tuple[str, ...] = field(default_factory=tuple)
    fixed_gains: Tuple[np.ndarray, ...] = field(default_factory=tuple)

    @property
    def is_bilinear(self) -> bool:
        """True when gains are unknown (products Q·K_i appear)."""
        return self.gain_source.is_unknown

    @property
    def n_lyapunov(self) -> int:
        """Number of Lyapunov matrices: 1 (global) or NR (pwq)."""
        return self.n_regions if self.method.lyapunov == "pwq" else 1

    def lyapunov_index(self, region: int) -> int:
        return region if self.method.lyapunov == "pwq" else 0

    def shifted_gains(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        """(K_i, k̃_i) per region for the fixed or seed gains."""
        return [shift_gain(Kbar, self.xcl) for Kbar in self.fixed_gains]


# ============================================================================
# Equilibrium Check
# ============================================================================


def check_equilibrium(
    model: PWASystem,
    xcl: np.ndarray,
    gain_source: GainSource,
    tol: float = 1e-6,
) -> Dict[int, np.ndarray]:
    """
    Verify that x_cl is an equilibrium of every region containing it.

    - fixed_zero:      A_ij x_cl + a_ij = 0
    - fixed_external:  (A_ij + B_ij K_i) x_cl + a_ij + B_ij k_i = 0
    - unknown:         some u_eq solves A_ij x_cl + a_ij + B_ij u_eq = 0
                       for all envelopes j of the region

    Args:
        model: PWA / PWADI model
        xcl: Equilibrium point (n,)
        gain_source: Gains closing the loop
        tol: Residual tolerance

    Returns:
        u_eq per containing region

    Raises:
        ModelError: If x_cl is outside the model or fails an equilibrium equation
    """
    classifier = RegionClassifier(model, approximation="quadratic", tol=_CONTAINMENT_TOL)
    containing = sorted(classifier.classify(xcl))
    if not containing:
        raise ModelError(f"xcl={xcl} is not contained in any region of the model")

    table = gain_source.table(model) if not gain_source.is_unknown else None
    u_eq: Dict[int, np.ndarray] = {}
    for i in containing:
        dynamics = model.regions[i].dynamics
        if table is not None:
            K, k = table[i][:, : model.n], table[i][:, model.n]
            u = K @ xcl + k
        else:
            B_stack = np.vstack([dyn.B for dyn in dynamics])
            rhs = -np.concatenate([dyn.A @ xcl + dyn.a for dyn in dynamics])
            if model.m > 0:
                u = np.linalg.lstsq(B_stack, rhs, rcond=None)[0]
            else:
                u = np.zeros(0)
        residual = max(float(np.linalg.norm(dyn.drift(xcl, u))) for dyn in dynamics)
        if residual > tol:
            raise ModelError(
                f"xcl={xcl} does not satisfy the equilibrium equations of region {i} "
                f"(residual {residual:.3e} > {tol:.1e})",
            )
        u_eq[i] = u
    return u_eq


# ============================================================================
# Builder
# ============================================================================


def _normal_projector(F: np.ndarray) -> np.ndarray:
    """Rows spanning the normal space of the boundary directions F."""
    n = F.shape[0]
    if F.shape[1] == 0:
        return np.eye(n)
    return linalg.null_space(F.T).T


def build(
    model: PWASystem,
    xcl: np.ndarray,
    alpha: float,
    method: MethodCombination,
    gain_source: GainSource,
    continuity: Optional[bool] = None,
    normal_direction_only: bool = False,
    equilibrium_tol: float = 1e-6,
) -> InequalitySystem:
    """
    Build the matrix-inequality system for one method combination.

    Args:
        model: PWA / PWADI model
        xcl: Equilibrium point (n,)
        alpha: Decay rate, > 0
        method: Approximation / inequality / Lyapunov combination
        gain_source: fixed_zero, fixed_external or unknown gains
        continuity: Emit control-continuity constraints. None → pwq with unknown gains
        normal_direction_only: Project continuity on the boundary normal
        equilibrium_tol: Residual tolerance of the equilibrium check

    Returns:
        InequalitySystem describing the feasibility problem

    Raises:
        ModelError: If xcl fails the equilibrium check, ellipsoid data are
            missing, pwq lacks boundary links, or the gain table is malformed

    Examples
    --------
    >>> method = MethodCombination('quadratic', 'linear', 'global')
    >>> system = build(model, np.zeros(1), 0.1, method, GainSource.fixed_zero())
    >>> system.is_bilinear
    False
    """
    xcl = np.asarray(xcl, dtype=float).reshape(-1)
    if xcl.shape != (model.n,):
        raise ModelError(f"xcl must have shape ({model.n},), got {xcl.shape}")
    if alpha <= 0:
        raise ModelError(f"alpha must be positive, got {alpha}")
    if method.approximation == "ellipsoidal" and not model.has_ellipsoids:
        raise ModelError("Ellipsoidal approximation requested but some regions have no EL/eL")
    if method.lyapunov == "pwq" and model.n_regions > 1 and not model.has_boundaries:
        raise ModelError("Piecewise quadratic Lyapunov functions need boundary links")
    if (method.inequality == "bilinear") != gain_source.is_unknown:
        raise ModelError(
            f"{method.inequality} inequalities do not match a '{gain_source.kind}' gain source",
        )
    if gain_source.is_unknown and model.m == 0:
        raise ModelError("Unknown gains need at least one control input (m ≥ 1)")

    check_equilibrium(model, xcl, gain_source, tol=equilibrium_tol)

    classifier = RegionClassifier(model, approximation="quadratic", tol=_CONTAINMENT_TOL)
    containing = classifier.classify(xcl)
    if gain_source.is_unknown and gain_source.gains is None:
        fixed_gains: Tuple[np.ndarray, ...] = ()
    else:
        fixed_gains = tuple(gain_source.table(model))

    inequalities = []
    for region in model.regions:
        inside = region.index in containing
        if method.approximation == "ellipsoidal":
            S, s, slack = region.EL, region.EL @ xcl + region.eL, "ellipsoidal"
        else:
            # Ē = [[E, ẽ], [0, 1]]: the trivial row 1 ≥ 0 lets Z weigh affine terms
            S = np.vstack([region.E, np.zeros((1, model.n))])
            s = np.append(region.E @ xcl + region.e, 1.0)
            slack = "polytopic"
        for j, dyn in enumerate(region.dynamics, start=1):
            inequalities.append(
                RegionInequality(
                    region=region.index,
                    envelope=j,
                    contains_xcl=inside,
                    A=dyn.A,
                    a=dyn.A @ xcl + dyn.a,
                    B=dyn.B,
                    slack=slack,
                    S=S,
                    s=s,
                ),
            )

    if continuity is None:
        continuity = method.lyapunov == "pwq" and gain_source.is_unknown

    continuity_links = []
    lyapunov_links = []
    for link in model.boundaries:
        Fbar = link.aggregated.copy()
        Fbar[: model.n, -1] -= xcl
        if continuity:
            projector = _normal_projector(link.F) if normal_direction_only else np.eye(model.n)
            continuity_links.append(
                ContinuityLink(i=link.i, h=link.h, Fbar=Fbar, projector=projector),
            )
        if method.lyapunov == "pwq":
            lyapunov_links.append(LyapunovLink(i=link.i, h=link.h, Fbar=Fbar))

    unknowns = _unknown_names(model, method, gain_source, containing)

    return InequalitySystem(
        n=model.n,
        m=model.m,
        n_regions=model.n_regions,
        alpha=float(alpha),
        method=method,
        gain_source=gain_source,
        xcl=xcl,
        inequalities=tuple(inequalities),
        continuity=tuple(continuity_links),
        lyapunov_links=tuple(lyapunov_links),
        unknowns=unknowns,
        fixed_gains=fixed_gains,
    )


def _unknown_names(model, method, gain_source, containing) -> Tuple[str, ...]:
    names = ["Q"] if method.lyapunov == "global" else [f"Q_{i}" for i in range(model.n_regions)]
    multiplier = "mu" if method.approximation == "ellipsoidal" else "Z"
    for region in model.regions:
        if region.index in containing:
            continue
        for j in range(1, region.n_envelopes + 1):
            suffix = f"{region.index}" if region.n_envelopes == 1 else f"{region.index},{j}"
            names.append(f"{multiplier}_{suffix}")
    if gain_source.is_unknown:
        for i in range(model.n_regions):
            names.extend([f"K_{i}", f"k_{i}"])
    return tuple(names)


__all__ = [
    "GainSource",
    "RegionInequality",
    "ContinuityLink",
    "LyapunovLink",
    "InequalitySystem",
    "check_equilibrium",
    "shift_gain",
    "unshift_gain",
    "build",
]
