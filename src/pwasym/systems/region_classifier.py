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
Region Classifier

Point-in-region classification for PWA models, shared by synthesis-time
equilibrium checks and runtime feedback.

Containment rules:
    Polytopic:    x ∈ R_i  ⟺  E_i x + e_i ≥ 0 elementwise (boundary inclusive)
    Ellipsoidal:  x ∈ R_i  ⟺  ‖EL_i x + eL_i‖ < 1        (boundary excluded)

With approximation='both' the polytope is authoritative and the ellipsoid
only decides for regions that have no polytope rows but do carry an
ellipsoid.

The classifier is a pure function of immutable model data: it holds no
mutable state and can be shared across threads and simulation instances.
"""

from typing import FrozenSet, Optional

import numpy as np

from pwasym.exceptions import ConfigurationError
from pwasym.systems.region_model import PWASystem, Region
from pwasym.types.backends import Backend, ClassifierApproximation, to_numpy
from pwasym.types.core import StateVector


class RegionClassifier:
    """
    Classify states into the regions of a PWA model.

    Attributes
    ----------
    model : PWASystem
        Model whose region predicates are evaluated
    approximation : ClassifierApproximation
        'quadratic' (polytopes), 'ellipsoidal', or 'both'
    tol : float
        Slack added to the polytopic test, E x + e ≥ -tol

    Examples
    --------
    >>> classifier = RegionClassifier(model)
    >>> classifier.classify(np.array([0.0]))
    frozenset({0, 1})
    >>> classifier.select(np.array([0.0]))
    0
    >>> classifier.select(np.array([10.0])) is None  # outside the model
    True
    """

    def __init__(
        self,
        model: PWASystem,
        approximation: ClassifierApproximation = "quadratic",
        tol: float = 0.0,
        backend: Backend = "numpy",
    ):
        if approximation not in ("quadratic", "ellipsoidal", "both"):
            raise ConfigurationError(
                f"approximation must be 'quadratic', 'ellipsoidal' or 'both', "
                f"got '{approximation}'",
            )
        if approximation == "ellipsoidal" and not model.has_ellipsoids:
            missing = [r.index for r in model.regions if not r.has_ellipsoid]
            raise ConfigurationError(
                f"Ellipsoidal classification needs EL/eL for every region; missing for {missing}",
            )
        if tol < 0:
            raise ConfigurationError(f"tol must be non-negative, got {tol}")
        self.model = model
        self.approximation = approximation
        self.tol = float(tol)
        self.backend = backend

    def _state(self, x: StateVector) -> np.ndarray:
        x_np = to_numpy(x, self.backend).reshape(-1)
        if x_np.shape != (self.model.n,):
            raise ValueError(f"x must have shape ({self.model.n},), got {x_np.shape}")
        return x_np

    def _in_polytope(self, region: Region, x: np.ndarray) -> bool:
        if region.n_rows == 0:
            return True
        return bool(np.all(region.E @ x + region.e >= -self.tol))

    @staticmethod
    def _in_ellipsoid(region: Region, x: np.ndarray) -> bool:
        return bool(np.linalg.norm(region.EL @ x + region.eL) < 1.0)

    def _contains(self, region: Region, x: np.ndarray) -> bool:
        if self.approximation == "quadratic":
            return self._in_polytope(region, x)
        if self.approximation == "ellipsoidal":
            return self._in_ellipsoid(region, x)
        # 'both': polytope decides wherever it has rows
        if region.n_rows == 0 and region.has_ellipsoid:
            return self._in_ellipsoid(region, x)
        return self._in_polytope(region, x)

    def contains(self, i: int, x: StateVector) -> bool:
        """Evaluate the containment predicate of region i at x."""
        return self._contains(self.model.regions[i], self._state(x))

    def classify(self, x: StateVector) -> FrozenSet[int]:
        """
        Return every region index whose predicate holds at x.

        Multiple indices are returned for points on shared boundaries.

        Args:
            x: State vector (n,)

        Returns:
            Frozen set of matching region indices (possibly empty)
        """
        x_np = self._state(x)
        return frozenset(
            region.index for region in self.model.regions if self._contains(region, x_np)
        )

    def select(self, x: StateVector) -> Optional[int]:
        """
        Deterministic single-region lookup.

        Returns the smallest index in classify(x), or None when the state
        lies outside every region (the state left the modeled domain).
        """
        x_np = self._state(x)
        for region in self.model.regions:
            if self._contains(region, x_np):
                return region.index
        return None

    def __repr__(self) -> str:
        return (
            f"RegionClassifier(NR={self.model.n_regions}, "
            f"approximation='{self.approximation}', tol={self.tol})"
        )


__all__ = ["RegionClassifier"]
