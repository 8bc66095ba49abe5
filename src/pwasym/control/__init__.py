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
PWA Control Design and Analysis
===============================

Stability analysis and controller synthesis for piecewise-affine models,
plus the classical helpers used to seed synthesis.

Analysis
--------
>>> from pwasym.control import AnalysisSettings, analyze_pwa_stability
>>>
>>> result = analyze_pwa_stability(model, AnalysisSettings(xcl=[0.0]))
>>> result['status']
'stable'
>>>
>>> # Closed loop through a gain table
>>> result = analyze_pwa_stability(model, settings, gains=Kbar)

Synthesis
---------
>>> from pwasym.control import SynthesisSettings, synthesize_pwa_controller
>>>
>>> result = synthesize_pwa_controller(model, SynthesisSettings(iteration_number=3))
>>> entry = result['table'].best()
>>>
>>> # Object-oriented interface
>>> synthesis = PWAControlSynthesis(model)
>>> feedback = synthesis.feedback(entry, mode='pwa')

Authors
-------
Gil Benezer

License
-------
GNU Affero General Public License v3.0
"""

from .certificate_builder import (
    GainSource,
    InequalitySystem,
    build,
    check_equilibrium,
)
from .classical_control_functions import (
    analyze_controllability,
    design_lqr,
    random_positive_definite,
)
from .control_synthesis import PWAControlSynthesis
from .controllers import SimulationFeedback
from .pwa_control_functions import (
    analyze_pwa_stability,
    design_seed_gains,
    synthesize_pwa_controller,
)
from .settings import (
    AnalysisSettings,
    MethodCombination,
    SynthesisSettings,
    enumerate_combinations,
    filter_combinations,
)
from .solver_adapter import (
    BilinearSolver,
    ConvexLMISolver,
    Feasible,
    Infeasible,
    SolverAdapter,
    SolverFailure,
)
from .synthesis_controller import (
    ControllerTable,
    ControllerTableEntry,
    SynthesisController,
    SynthesisState,
)

__all__ = [
    # Classical helpers
    "design_lqr",
    "random_positive_definite",
    "analyze_controllability",
    # Settings
    "AnalysisSettings",
    "SynthesisSettings",
    "MethodCombination",
    "enumerate_combinations",
    "filter_combinations",
    # Certificates
    "GainSource",
    "InequalitySystem",
    "build",
    "check_equilibrium",
    # Solvers
    "SolverAdapter",
    "ConvexLMISolver",
    "BilinearSolver",
    "Feasible",
    "Infeasible",
    "SolverFailure",
    # Analysis / synthesis
    "analyze_pwa_stability",
    "design_seed_gains",
    "synthesize_pwa_controller",
    "SynthesisController",
    "SynthesisState",
    "ControllerTable",
    "ControllerTableEntry",
    "PWAControlSynthesis",
    "SimulationFeedback",
]
