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
Region Model for PWA and PWADI Systems

Static description of a piecewise-affine (PWA) system, or of a PWA
differential inclusion (PWADI) whose two affine envelopes bound the true
nonlinear dynamics in each region.

Mathematical Background
-----------------------
In region R_i (i = 0, ..., NR-1) the dynamics are

    dx/dt = A_i x + a_i + B_i u                       (PWA)
    dx/dt ∈ co{A_ij x + a_ij + B_ij u, j = 1, 2}       (PWADI)

and the region itself is the polytope

    R_i = {x | E_i x + e_i ≥ 0}

optionally approximated by the (possibly degenerate) ellipsoid

    Elip_i = {x | ‖EL_i x + eL_i‖ < 1}.

The shared boundary of two adjacent regions R_i and R_h may be
parametrized as {F_ih s + f_ih | s ∈ ℝⁿ⁻¹}.

Regions are stored in an index-addressed tuple; the position of a region
is its stable integer key for the lifetime of the model.

Usage
-----
>>> import numpy as np
>>> from pwasym.systems.region_model import PWASystem
>>>
>>> # Two half-lines with different decay rates
>>> model = PWASystem.from_matrices(
...     A=[[[-1.0]], [[-2.0]]],
...     a=[[0.0], [0.0]],
...     B=[[[1.0]], [[1.0]]],
...     E=[[[1.0]], [[-1.0]]],
...     e=[[0.0], [0.0]],
...     xcl=[0.0],
... )
>>> model.n_regions
2
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

from pwasym.exceptions import ModelError
from pwasym.types.core import (
    AffineTerm,
    BoundaryMatrix,
    EllipsoidMatrix,
    EllipsoidOffset,
    InputMatrix,
    RegionMatrix,
    RegionOffset,
    StateMatrix,
)


def _frozen(arr, ndim: int, name: str) -> np.ndarray:
    """Copy to a read-only float64 array with at least ``ndim`` dimensions."""
    try:
        out = np.array(arr, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ModelError(f"{name} is not numeric: {exc}") from exc
    if ndim == 1:
        out = np.atleast_1d(out)
        if out.ndim != 1:
            out = out.reshape(-1)
    elif ndim == 2:
        out = np.atleast_2d(out)
    out.setflags(write=False)
    return out


# ============================================================================
# Region Records
# ============================================================================


@dataclass(frozen=True, eq=False)
class AffineDynamics:
    """
    Affine dynamics dx/dt = A x + a + B u valid inside one region.

    Attributes
    ----------
    A : StateMatrix
        Dynamics matrix (n, n)
    a : AffineTerm
        Affine drift (n,)
    B : InputMatrix
        Input matrix (n, m)
    """

    A: StateMatrix
    a: AffineTerm
    B: InputMatrix

    def __post_init__(self):
        object.__setattr__(self, "A", _frozen(self.A, 2, "A"))
        object.__setattr__(self, "a", _frozen(self.a, 1, "a"))
        object.__setattr__(self, "B", _frozen(self.B, 2, "B"))

    def drift(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Evaluate A x + a + B u."""
        return self.A @ x + self.a + self.B @ u


@dataclass(frozen=True, eq=False)
class Region:
    """
    One region of a PWA / PWADI model.

    Attributes
    ----------
    index : int
        Stable integer key (position in the model)
    E, e : RegionMatrix, RegionOffset
        Polytope {x | E x + e ≥ 0}; E may have zero rows (whole space)
    dynamics : Tuple[AffineDynamics, ...]
        One entry for a PWA region, two envelopes for a PWADI region
    EL, eL : Optional ellipsoid {x | ‖EL x + eL‖ < 1}
    """

    index: int
    E: RegionMatrix
    e: RegionOffset
    dynamics: Tuple[AffineDynamics, ...]
    EL: Optional[EllipsoidMatrix] = None
    eL: Optional[EllipsoidOffset] = None

    def __post_init__(self):
        E = np.array(self.E, dtype=float)
        if E.size == 0:
            E = E.reshape(0, E.shape[-1] if E.ndim == 2 else 0)
        else:
            E = np.atleast_2d(E)
        E.setflags(write=False)
        object.__setattr__(self, "E", E)
        object.__setattr__(self, "e", _frozen(self.e, 1, "e") if np.size(self.e) else _empty())

        dynamics = self.dynamics
        if isinstance(dynamics, AffineDynamics):
            dynamics = (dynamics,)
        object.__setattr__(self, "dynamics", tuple(dynamics))

        if (self.EL is None) != (self.eL is None):
            raise ModelError(
                f"Region {self.index}: ellipsoid needs both EL and eL, got only one",
            )
        if self.EL is not None:
            object.__setattr__(self, "EL", _frozen(self.EL, 2, "EL"))
            object.__setattr__(self, "eL", _frozen(self.eL, 1, "eL"))

    @property
    def has_ellipsoid(self) -> bool:
        return self.EL is not None

    @property
    def n_envelopes(self) -> int:
        return len(self.dynamics)

    @property
    def n_rows(self) -> int:
        """Number of polytope rows p (0 for an unbounded region)."""
        return self.E.shape[0]


def _empty() -> np.ndarray:
    out = np.zeros(0)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class BoundaryLink:
    """
    Parametrization of the shared boundary between regions i and h.

    Points on the boundary are x = F s + f with s ∈ ℝⁿ⁻¹.

    Attributes
    ----------
    i, h : int
        Indices of the adjacent regions (ordered pair)
    F : BoundaryMatrix
        Boundary directions (n, n-1)
    f : np.ndarray
        Boundary offset (n,)
    """

    i: int
    h: int
    F: BoundaryMatrix
    f: np.ndarray

    def __post_init__(self):
        F = np.array(self.F, dtype=float)
        if F.ndim == 1:
            F = F.reshape(-1, 1) if F.size else F.reshape(F.size, 0)
        F.setflags(write=False)
        object.__setattr__(self, "F", F)
        object.__setattr__(self, "f", _frozen(self.f, 1, "f"))

    @property
    def aggregated(self) -> np.ndarray:
        """F̄ = [[F, f], [0, 1]] mapping [s; 1] to [x; 1]."""
        n, d = self.F.shape
        top = np.hstack([self.F, self.f.reshape(n, 1)])
        bottom = np.hstack([np.zeros((1, d)), np.ones((1, 1))])
        return np.vstack([top, bottom])


# ============================================================================
# PWA System
# ============================================================================


@dataclass(frozen=True, eq=False)
class PWASystem:
    """
    Ordered collection of regions sharing state dimension n and input size m.

    A PWADI is a PWASystem whose regions all carry two dynamics envelopes.
    The model is validated on construction and is immutable afterwards.

    Attributes
    ----------
    regions : Tuple[Region, ...]
        Region records; ``regions[i].index == i``
    n : int
        State dimension
    m : int
        Input dimension
    xcl : Optional[np.ndarray]
        Equilibrium point carried by the model (used when settings omit one)
    boundaries : Tuple[BoundaryLink, ...]
        Optional boundary parametrizations for continuity constraints

    Raises
    ------
    ModelError
        If NR < 1 or any region has inconsistent shapes

    Examples
    --------
    >>> region = Region(
    ...     index=0,
    ...     E=np.zeros((0, 2)), e=np.zeros(0),
    ...     dynamics=(AffineDynamics(A=-np.eye(2), a=np.zeros(2), B=np.zeros((2, 1))),),
    ... )
    >>> model = PWASystem(regions=(region,), n=2, m=1)
    >>> model.is_pwadi
    False
    """

    regions: Tuple[Region, ...]
    n: int
    m: int
    xcl: Optional[np.ndarray] = None
    boundaries: Tuple[BoundaryLink, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "regions", tuple(self.regions))
        object.__setattr__(self, "boundaries", tuple(self.boundaries))
        object.__setattr__(self, "n", int(self.n))
        object.__setattr__(self, "m", int(self.m))
        if self.xcl is not None:
            object.__setattr__(self, "xcl", _frozen(self.xcl, 1, "xcl"))
        self.validate()

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_matrices(
        cls,
        A: Sequence,
        a: Sequence,
        B: Sequence,
        E: Sequence,
        e: Sequence,
        EL: Optional[Sequence] = None,
        eL: Optional[Sequence] = None,
        A2: Optional[Sequence] = None,
        a2: Optional[Sequence] = None,
        B2: Optional[Sequence] = None,
        xcl=None,
        boundaries: Optional[Sequence] = None,
    ) -> "PWASystem":
        """
        Build a model from per-region lists of matrices.

        Args:
            A, a, B: Per-region dynamics (first envelope for a PWADI)
            E, e: Per-region polytopes
            EL, eL: Optional per-region ellipsoids (entries may be None)
            A2, a2, B2: Second PWADI envelope, all three or none
            xcl: Optional equilibrium point
            boundaries: Iterable of BoundaryLink or (i, h, F, f) tuples

        Returns:
            Validated PWASystem
        """
        nr = len(A)
        for name, seq in (("a", a), ("B", B), ("E", E), ("e", e)):
            if len(seq) != nr:
                raise ModelError(f"Expected {nr} entries for {name}, got {len(seq)}")

        envelopes = [A2, a2, B2]
        if any(env is not None for env in envelopes) and not all(
            env is not None for env in envelopes
        ):
            raise ModelError("PWADI envelope needs A2, a2 and B2 together")
        pwadi = A2 is not None

        regions = []
        for i in range(nr):
            dynamics = [AffineDynamics(A[i], a[i], B[i])]
            if pwadi:
                dynamics.append(AffineDynamics(A2[i], a2[i], B2[i]))
            ell = EL[i] if EL is not None else None
            ell_off = eL[i] if eL is not None else None
            regions.append(
                Region(
                    index=i,
                    E=E[i],
                    e=e[i],
                    dynamics=tuple(dynamics),
                    EL=ell,
                    eL=ell_off,
                ),
            )

        first = regions[0].dynamics[0] if regions else None
        n = first.A.shape[0] if first is not None else 0
        m = first.B.shape[1] if first is not None else 0

        links = []
        for link in boundaries or ():
            links.append(link if isinstance(link, BoundaryLink) else BoundaryLink(*link))

        return cls(regions=tuple(regions), n=n, m=m, xcl=xcl, boundaries=tuple(links))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check dimensional consistency of every region and boundary link.

        Raises:
            ModelError: On NR < 1 or any shape inconsistency
        """
        n, m = self.n, self.m
        if len(self.regions) < 1:
            raise ModelError("A PWA model needs at least one region (NR >= 1)")
        if n < 1:
            raise ModelError(f"State dimension must be positive, got n={n}")
        if m < 0:
            raise ModelError(f"Input dimension must be non-negative, got m={m}")

        envelope_counts = {region.n_envelopes for region in self.regions}
        if len(envelope_counts) != 1 or not envelope_counts <= {1, 2}:
            raise ModelError(
                f"All regions must carry the same number of envelopes (1 or 2), "
                f"got {sorted(envelope_counts)}",
            )

        for pos, region in enumerate(self.regions):
            tag = f"Region {pos}"
            if region.index != pos:
                raise ModelError(f"{tag}: index {region.index} does not match its position")

            if region.E.ndim != 2 or region.E.shape[1] != n:
                raise ModelError(f"{tag}: E must have {n} columns, got shape {region.E.shape}")
            if region.e.shape != (region.E.shape[0],):
                raise ModelError(
                    f"{tag}: e must have length {region.E.shape[0]}, got shape {region.e.shape}",
                )

            for j, dyn in enumerate(region.dynamics, start=1):
                if dyn.A.shape != (n, n):
                    raise ModelError(f"{tag}, envelope {j}: A must be ({n}, {n}), got {dyn.A.shape}")
                if dyn.a.shape != (n,):
                    raise ModelError(f"{tag}, envelope {j}: a must be ({n},), got {dyn.a.shape}")
                if dyn.B.shape != (n, m):
                    raise ModelError(f"{tag}, envelope {j}: B must be ({n}, {m}), got {dyn.B.shape}")

            if region.has_ellipsoid:
                if region.EL.ndim != 2 or region.EL.shape[1] != n:
                    raise ModelError(
                        f"{tag}: EL must have {n} columns, got shape {region.EL.shape}",
                    )
                if region.eL.shape != (region.EL.shape[0],):
                    raise ModelError(
                        f"{tag}: eL must have length {region.EL.shape[0]}, "
                        f"got shape {region.eL.shape}",
                    )

        nr = len(self.regions)
        for link in self.boundaries:
            if not (0 <= link.i < nr and 0 <= link.h < nr) or link.i == link.h:
                raise ModelError(f"Boundary ({link.i}, {link.h}) does not name two regions")
            if link.F.shape[0] != n or link.F.shape[1] > n - 1:
                raise ModelError(
                    f"Boundary ({link.i}, {link.h}): F must be ({n}, <= {n - 1}), "
                    f"got {link.F.shape}",
                )
            if link.f.shape != (n,):
                raise ModelError(
                    f"Boundary ({link.i}, {link.h}): f must be ({n},), got {link.f.shape}",
                )

        if self.xcl is not None and self.xcl.shape != (n,):
            raise ModelError(f"xcl must have shape ({n},), got {self.xcl.shape}")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def n_regions(self) -> int:
        """Number of regions NR."""
        return len(self.regions)

    @property
    def n_envelopes(self) -> int:
        """1 for a PWA model, 2 for a PWADI."""
        return self.regions[0].n_envelopes

    @property
    def is_pwadi(self) -> bool:
        return self.n_envelopes == 2

    @property
    def has_ellipsoids(self) -> bool:
        """True when every region carries an ellipsoidal approximation."""
        return all(region.has_ellipsoid for region in self.regions)

    @property
    def has_boundaries(self) -> bool:
        return len(self.boundaries) > 0

    def boundary_for(self, i: int, h: int) -> Optional[BoundaryLink]:
        """Return the link between regions i and h (either order), if any."""
        for link in self.boundaries:
            if (link.i, link.h) in ((i, h), (h, i)):
                return link
        return None

    def __len__(self) -> int:
        return len(self.regions)

    def __repr__(self) -> str:
        kind = "PWADI" if self.is_pwadi else "PWA"
        return f"PWASystem({kind}, NR={self.n_regions}, n={self.n}, m={self.m})"


__all__ = [
    "AffineDynamics",
    "Region",
    "BoundaryLink",
    "PWASystem",
]
