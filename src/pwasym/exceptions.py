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
Exceptions for PWA analysis, synthesis and runtime feedback.

Taxonomy
--------
ConfigurationError
    Invalid settings or an equilibrium point that fails its equilibrium
    equations. Fatal; raised before any inequality is solved.
ModelError
    Inconsistent PWA/PWADI model data (a ConfigurationError).
SolverError
    The feasibility solver failed numerically or ran out of time.
SynthesisFailure
    No method combination converged within the retry budget.
ClassificationMiss
    The state left every modeled region during runtime feedback.

Infeasibility of a single method combination is an expected outcome and is
not represented by an exception.
"""

from typing import Optional

import numpy as np


class ConfigurationError(ValueError):
    """Raised when analysis or synthesis settings are invalid"""

    pass


class ModelError(ConfigurationError):
    """Raised when a PWA model or its equilibrium point is inconsistent"""

    pass


class SolverError(RuntimeError):
    """Raised when the matrix-inequality solver fails numerically"""

    pass


class SynthesisFailure(RuntimeError):
    """Raised when every synthesis sweep ends with an empty controller table"""

    def __init__(self, message: str, sweeps: int = 0):
        super().__init__(message)
        self.sweeps = sweeps


class ClassificationMiss(RuntimeError):
    """
    Raised by the feedback block when no region contains the current state.

    Attributes
    ----------
    state : np.ndarray
        State that fell outside every region
    time : Optional[float]
        Simulation time of the miss, if the host supplied it
    control : np.ndarray
        The zero control emitted for the failed tick
    """

    def __init__(
        self,
        state: np.ndarray,
        time: Optional[float] = None,
        control: Optional[np.ndarray] = None,
    ):
        self.state = np.asarray(state)
        self.time = time
        self.control = control
        where = f" at t={time}" if time is not None else ""
        super().__init__(
            f"State {np.array2string(self.state, precision=4)} is outside every "
            f"modeled region{where}; stopping simulation",
        )


__all__ = [
    "ConfigurationError",
    "ModelError",
    "SolverError",
    "SynthesisFailure",
    "ClassificationMiss",
]
