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

import warnings
from typing import Optional, Sequence

import numpy as np

from pwasym.exceptions import ClassificationMiss, ConfigurationError
from pwasym.systems.region_classifier import RegionClassifier
from pwasym.systems.region_model import PWASystem
from pwasym.types.backends import (
    Backend,
    ClassifierApproximation,
    FeedbackMode,
    from_numpy,
    to_numpy,
)
from pwasym.types.core import AggregatedGain, StateVector
from pwasym.types.pwa_results import FeedbackOutput


class SimulationFeedback:
    """
    PWA state feedback block for a host simulation loop.

    Implements the control law:
        u(x) = K̄_i [x; 1] = K_i x + k_i

    where the region i is chosen by the mode:
    - 'linear': the region containing xcl, fixed once at construction
    - 'pwa': the region containing the current state, re-classified on
      every tick (smallest index on shared boundaries)

    When the state leaves every modeled region the block outputs zero
    control and requests the host simulation to stop; it never guesses
    a region.

    Attributes:
        model: PWA model whose regions select the gain
        gains: K̄_i (m, n+1) per region
        xcl: Equilibrium point used by 'linear' mode
        mode: 'linear' or 'pwa'
        n_inputs: State dimension n (block inputs), from K̄
        n_outputs: Control dimension m (block outputs), from K̄
        stop_requested: Latched once a classification miss occurred

    Example - Closed-loop Simulation:
        >>> result = synthesize_pwa_controller(model, settings)
        >>> feedback = SimulationFeedback.from_entry(model, result['table'].best(), xcl)
        >>>
        >>> x = np.array([0.5])
        >>> for k in range(steps):
        ...     tick = feedback.output(x, t=k * dt)
        ...     if tick['stop']:
        ...         break
        ...     x = x + dt * model.regions[tick['region']].dynamics[0].drift(x, tick['control'])

    Example - Torch State Vectors:
        >>> feedback = SimulationFeedback(model, gains, xcl, backend='torch')
        >>> u = feedback(torch.tensor([0.1, 0.0]))  # torch.Tensor
    """

    def __init__(
        self,
        model: PWASystem,
        gains: Sequence[AggregatedGain],
        xcl: Optional[StateVector] = None,
        mode: FeedbackMode = "pwa",
        approximation: ClassifierApproximation = "quadratic",
        backend: Backend = "numpy",
    ):
        """
        Initialize the feedback block.

        Args:
            model: PWA model (regions used for classification)
            gains: One K̄_i (m, n+1) per region
            xcl: Equilibrium point (defaults to model.xcl; required for 'linear')
            mode: 'linear' or 'pwa'
            approximation: Classifier approximation
            backend: Array type of the returned control

        Raises:
            ConfigurationError: Invalid mode, gain table or sizes
            ClassificationMiss: 'linear' mode with xcl outside every region
        """
        if mode not in ("linear", "pwa"):
            raise ConfigurationError(f"mode must be 'linear' or 'pwa', got '{mode}'")

        table = [np.atleast_2d(np.array(to_numpy(K, backend), dtype=float)) for K in gains]
        if len(table) != model.n_regions:
            raise ConfigurationError(
                f"Need one K̄ per region ({model.n_regions}), got {len(table)}",
            )
        m, n_plus_one = table[0].shape
        for i, Kbar in enumerate(table):
            if Kbar.shape != (m, n_plus_one):
                raise ConfigurationError(
                    f"K̄ of region {i} has shape {Kbar.shape}, expected {(m, n_plus_one)}",
                )
        if n_plus_one - 1 != model.n:
            raise ConfigurationError(
                f"K̄ implies {n_plus_one - 1} inputs but the model has n={model.n}",
            )

        self.model = model
        self.gains = tuple(table)
        self.n_inputs = n_plus_one - 1
        self.n_outputs = m
        self.mode = mode
        self.backend = backend
        self.classifier = RegionClassifier(model, approximation=approximation, backend="numpy")
        self.stop_requested = False

        if xcl is None:
            xcl = model.xcl
        self.xcl = None if xcl is None else to_numpy(xcl, backend).reshape(-1)

        self._fixed_region = None
        if mode == "linear":
            if self.xcl is None:
                raise ConfigurationError("'linear' mode needs xcl (settings or model)")
            self._fixed_region = self.classifier.select(self.xcl)
            if self._fixed_region is None:
                raise ClassificationMiss(self.xcl)

    @classmethod
    def from_entry(
        cls,
        model: PWASystem,
        entry,
        xcl: Optional[StateVector] = None,
        mode: FeedbackMode = "pwa",
        **kwargs,
    ) -> "SimulationFeedback":
        """Build the block from a ControllerTableEntry."""
        return cls(model, entry.gains, xcl=xcl, mode=mode, **kwargs)

    def _zero(self):
        return from_numpy(np.zeros(self.n_outputs), self.backend)

    def output(self, x: StateVector, t: Optional[float] = None) -> FeedbackOutput:
        """
        One tick: classify, apply K̄_i [x; 1].

        Args:
            x: Current state (n,)
            t: Simulation time (reported on a miss)

        Returns:
            FeedbackOutput with control, region and stop flag
        """
        x_np = to_numpy(x, self.backend).reshape(-1)
        if x_np.shape != (self.n_inputs,):
            raise ValueError(f"x must have shape ({self.n_inputs},), got {x_np.shape}")

        region = self._fixed_region if self.mode == "linear" else self.classifier.select(x_np)
        if region is None:
            self.stop_requested = True
            warnings.warn(
                f"State x={x_np} at t={t} is outside every region; stopping simulation",
            )
            return {"control": self._zero(), "region": None, "stop": True}

        u = self.gains[region] @ np.append(x_np, 1.0)
        return {"control": from_numpy(u, self.backend), "region": region, "stop": False}

    def __call__(self, x: StateVector, t: Optional[float] = None):
        """
        Compute u(x), raising on a classification miss.

        Raises:
            ClassificationMiss: carries x, t and the zero control
        """
        tick = self.output(x, t)
        if tick["stop"]:
            state = to_numpy(x, self.backend).reshape(-1)
            raise ClassificationMiss(state, time=t, control=tick["control"])
        return tick["control"]

    def reset(self) -> None:
        """Clear the latched stop request."""
        self.stop_requested = False

    def __repr__(self) -> str:
        return (
            f"SimulationFeedback(mode='{self.mode}', n={self.n_inputs}, m={self.n_outputs}, "
            f"NR={len(self.gains)})"
        )
