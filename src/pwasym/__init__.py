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
pwasym - Piecewise-Affine Stability Analysis and Controller Synthesis
=====================================================================

Lyapunov-based stability analysis of piecewise-affine (PWA) and
piecewise-affine differential-inclusion (PWADI) models, and synthesis of
piecewise-affine state feedback u = K_i x + k_i through matrix
inequalities solved with cvxpy.

Quick Start
-----------
>>> import numpy as np
>>> from pwasym import PWASystem, AnalysisSettings, analyze_pwa_stability
>>>
>>> model = PWASystem.from_matrices(
...     A=[[[-1.0]], [[-2.0]]], a=[[0.0], [0.0]], B=[[[1.0]], [[1.0]]],
...     E=[[[-1.0]], [[1.0]]], e=[[0.0], [0.0]], xcl=[0.0],
... )
>>> analyze_pwa_stability(model, AnalysisSettings(approximations='quadratic'))['message']
'The open-loop PWA system is stable at xcl.'

Authors
-------
Gil Benezer

License
-------
GNU Affero General Public License v3.0
"""

from .control import (
    AnalysisSettings,
    ControllerTable,
    ControllerTableEntry,
    MethodCombination,
    PWAControlSynthesis,
    SimulationFeedback,
    SolverAdapter,
    SynthesisController,
    SynthesisSettings,
    SynthesisState,
    analyze_pwa_stability,
    design_seed_gains,
    synthesize_pwa_controller,
)
from .exceptions import (
    ClassificationMiss,
    ConfigurationError,
    ModelError,
    SolverError,
    SynthesisFailure,
)
from .systems import AffineDynamics, BoundaryLink, PWASystem, Region, RegionClassifier

__version__ = "0.1.0"

__all__ = [
    # Model
    "AffineDynamics",
    "Region",
    "BoundaryLink",
    "PWASystem",
    "RegionClassifier",
    # Analysis / synthesis
    "AnalysisSettings",
    "SynthesisSettings",
    "MethodCombination",
    "analyze_pwa_stability",
    "design_seed_gains",
    "synthesize_pwa_controller",
    "SynthesisController",
    "SynthesisState",
    "ControllerTable",
    "ControllerTableEntry",
    "SolverAdapter",
    "PWAControlSynthesis",
    "SimulationFeedback",
    # Errors
    "ConfigurationError",
    "ModelError",
    "SolverError",
    "SynthesisFailure",
    "ClassificationMiss",
]
