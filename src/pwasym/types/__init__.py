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
Types Module - Type Definitions for pwasym

Usage
-----
>>> from pwasym.types import StateVector, AggregatedGain, Backend, StabilityResult

Module Organization
------------------
- core: Arrays, vectors, PWA matrices
- backends: Backend and option literals, conversion helpers
- pwa_results: TypedDict results (LQR, certificates, analysis, synthesis)
"""

from .backends import (
    ApproximationMethod,
    Backend,
    ClassifierApproximation,
    FeedbackMode,
    InequalityKind,
    LyapunovStructure,
    SlackKind,
    SynthesisMethod,
    from_numpy,
    to_numpy,
)
from .core import (
    AffineTerm,
    AggregatedGain,
    AggregatedState,
    ArrayLike,
    BoundaryMatrix,
    ControlVector,
    CostMatrix,
    EllipsoidMatrix,
    EllipsoidOffset,
    EquilibriumState,
    GainMatrix,
    InputMatrix,
    LyapunovMatrix,
    NumpyArray,
    RegionMatrix,
    RegionOffset,
    ScalarLike,
    StateMatrix,
    StateVector,
)
from .pwa_results import (
    Certificate,
    CombinationOutcome,
    ControllabilityInfo,
    FeedbackOutput,
    LQRResult,
    StabilityResult,
    SynthesisResult,
)

__all__ = [
    # Backends
    "Backend",
    "ApproximationMethod",
    "ClassifierApproximation",
    "InequalityKind",
    "SynthesisMethod",
    "LyapunovStructure",
    "FeedbackMode",
    "SlackKind",
    "to_numpy",
    "from_numpy",
    # Arrays
    "ArrayLike",
    "NumpyArray",
    "ScalarLike",
    "StateVector",
    "ControlVector",
    "AggregatedState",
    "EquilibriumState",
    "StateMatrix",
    "AffineTerm",
    "InputMatrix",
    "RegionMatrix",
    "RegionOffset",
    "EllipsoidMatrix",
    "EllipsoidOffset",
    "BoundaryMatrix",
    "GainMatrix",
    "AggregatedGain",
    "LyapunovMatrix",
    "CostMatrix",
    # Results
    "LQRResult",
    "ControllabilityInfo",
    "Certificate",
    "CombinationOutcome",
    "StabilityResult",
    "SynthesisResult",
    "FeedbackOutput",
]
