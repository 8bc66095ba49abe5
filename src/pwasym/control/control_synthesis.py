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
PWA Control Synthesis Wrapper

Thin wrapper binding a PWA model to the pure analysis and synthesis
functions in pwa_control_functions.py.

Design Philosophy
-----------------
- Composition not inheritance
- Thin wrapper (no caching, no mutable state beyond the bound model)
- Routes to pure functions

Usage
-----
>>> synthesis = PWAControlSynthesis(model)
>>>
>>> open_loop = synthesis.analyze(AnalysisSettings(xcl=[0.0]))
>>> print(open_loop['message'])
I could not verify if the open-loop PWA system is stable at xcl.
>>>
>>> result = synthesis.synthesize(SynthesisSettings(xcl=[0.0], iteration_number=3))
>>> feedback = synthesis.feedback(result['table'].best(), mode='pwa')
"""

from typing import Optional, Sequence

from pwasym.control.controllers.pwa_feedback import SimulationFeedback
from pwasym.control.settings import AnalysisSettings, SynthesisSettings
from pwasym.control.solver_adapter import SolverAdapter
from pwasym.systems.region_model import PWASystem
from pwasym.types.backends import Backend, FeedbackMode
from pwasym.types.core import AggregatedGain
from pwasym.types.pwa_results import StabilityResult, SynthesisResult


class PWAControlSynthesis:
    """
    Analysis and synthesis front end for one PWA model.

    Attributes
    ----------
    model : PWASystem
        Bound model
    solver : Optional[SolverAdapter]
        Shared solver adapter (built per call from the settings if None)
    backend : Backend
        Backend of the feedback blocks created by ``feedback``
    """

    def __init__(
        self,
        model: PWASystem,
        solver: Optional[SolverAdapter] = None,
        backend: Backend = "numpy",
    ):
        self.model = model
        self.solver = solver
        self.backend = backend

    def analyze(
        self,
        settings: Optional[AnalysisSettings] = None,
        gains: Optional[Sequence[AggregatedGain]] = None,
    ) -> StabilityResult:
        """
        Stability analysis, open loop or closed through ``gains``.

        Routes to pwa_control_functions.analyze_pwa_stability().
        """
        from pwasym.control.pwa_control_functions import analyze_pwa_stability

        return analyze_pwa_stability(self.model, settings, gains=gains, solver=self.solver)

    def synthesize(
        self,
        settings: Optional[SynthesisSettings] = None,
        raise_on_failure: bool = False,
    ) -> SynthesisResult:
        """
        Controller synthesis sweep.

        Routes to pwa_control_functions.synthesize_pwa_controller().
        """
        from pwasym.control.pwa_control_functions import synthesize_pwa_controller

        return synthesize_pwa_controller(
            self.model,
            settings,
            solver=self.solver,
            raise_on_failure=raise_on_failure,
        )

    def feedback(self, entry, xcl=None, mode: FeedbackMode = "pwa") -> SimulationFeedback:
        """Runtime feedback block for a ControllerTableEntry."""
        return SimulationFeedback.from_entry(
            self.model,
            entry,
            xcl=xcl,
            mode=mode,
            backend=self.backend,
        )
