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
Synthesis Controller

Drives PWA controller synthesis as an explicit state machine:

    IDLE → BUILDING → SOLVING → AGGREGATING ─┬→ DONE      (table non-empty)
              ↑                               ├→ RETRYING  (sweep < N)
              └────────── RETRYING ←──────────┘
                                              └→ FAILED    (sweep == N)

One sweep builds an inequality system for every method combination, solves
them (optionally in a thread pool) and aggregates the outcomes serially in
combination order. Every Feasible outcome becomes a ControllerTableEntry.
When a sweep ends with an empty table and sweeps remain, the seed weights
are re-drawn and the sweep repeats; after ``iteration_number`` sweeps the
run fails.

Model and configuration errors abort the run immediately (FAILED) and
propagate; Infeasible and SolverFailure outcomes are recorded and never
abort.
"""

import logging
from collections.abc import Sequence as SequenceABC
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np

from pwasym.control.certificate_builder import GainSource, InequalitySystem, build
from pwasym.control.classical_control_functions import random_positive_definite
from pwasym.control.pwa_control_functions import design_seed_gains
from pwasym.control.settings import MethodCombination, SynthesisSettings, filter_combinations
from pwasym.control.solver_adapter import SolveOutcome, SolverAdapter
from pwasym.exceptions import ConfigurationError
from pwasym.systems.region_model import PWASystem
from pwasym.types.pwa_results import Certificate, CombinationOutcome, SynthesisResult

logger = logging.getLogger(__name__)


class SynthesisState(Enum):
    """Lifecycle of a synthesis run."""

    IDLE = "idle"
    BUILDING = "building"
    SOLVING = "solving"
    AGGREGATING = "aggregating"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    SynthesisState.IDLE: {SynthesisState.BUILDING, SynthesisState.FAILED},
    SynthesisState.BUILDING: {SynthesisState.SOLVING, SynthesisState.FAILED},
    SynthesisState.SOLVING: {SynthesisState.AGGREGATING, SynthesisState.FAILED},
    SynthesisState.AGGREGATING: {
        SynthesisState.DONE,
        SynthesisState.RETRYING,
        SynthesisState.FAILED,
    },
    SynthesisState.RETRYING: {SynthesisState.BUILDING, SynthesisState.FAILED},
    SynthesisState.DONE: set(),
    SynthesisState.FAILED: set(),
}


# ============================================================================
# Controller Table
# ============================================================================


@dataclass(frozen=True, eq=False)
class ControllerTableEntry:
    """
    One converged controller.

    Attributes
    ----------
    gains : Tuple[np.ndarray, ...]
        K̄_i = [K_i  k_i] per region, original coordinates
    method : MethodCombination
        Combination that converged
    certificate : Certificate
        Lyapunov certificate proving the closed-loop decay
    sweep : int
        Sweep in which the combination converged
    """

    gains: Tuple[np.ndarray, ...]
    method: MethodCombination
    certificate: Certificate
    sweep: int = 1


class ControllerTable(SequenceABC):
    """
    Ordered, immutable collection of converged controllers.

    Examples
    --------
    >>> table = result['table']
    >>> len(table)
    2
    >>> table.best().method.describe()
    'LMI approach with quadratic curve approximation (global Lyapunov)'
    >>> table.gain(region=1)
    array([[-2.41, -1.2 ,  0.5 ]])
    """

    def __init__(self, entries=()):
        self._entries = tuple(entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def best(self) -> Optional[ControllerTableEntry]:
        """Entry with the most negative certificate slack (first on ties)."""
        if not self._entries:
            return None
        return min(self._entries, key=lambda entry: entry.certificate.get("slack", 0.0))

    def for_method(self, method: Union[MethodCombination, str]) -> List[ControllerTableEntry]:
        """Entries of one combination, or of one synthesis method ('lmi' / 'bmi')."""
        if isinstance(method, str):
            return [e for e in self._entries if e.method.synthesis_method == method.lower()]
        return [e for e in self._entries if e.method == method]

    def gain(self, region: int, index: int = 0) -> np.ndarray:
        """K̄ of one region from the entry at ``index``."""
        return self._entries[index].gains[region]

    def __repr__(self) -> str:
        methods = ", ".join(e.method.describe() for e in self._entries)
        return f"ControllerTable([{methods}])"


# ============================================================================
# Controller
# ============================================================================


class SynthesisController:
    """
    Retrying synthesis sweep over method combinations.

    Attributes
    ----------
    model : PWASystem
        Model to control
    settings : SynthesisSettings
        Immutable run configuration
    solver : SolverAdapter
        Backend resolving each inequality system
    state : SynthesisState
        Current state
    trace : List[SynthesisState]
        Every state entered, in order

    Examples
    --------
    >>> controller = SynthesisController(model, SynthesisSettings(iteration_number=3))
    >>> result = controller.run()
    >>> controller.trace[0], controller.trace[-1]
    (<SynthesisState.IDLE: 'idle'>, <SynthesisState.DONE: 'done'>)
    """

    def __init__(
        self,
        model: PWASystem,
        settings: SynthesisSettings,
        solver: Optional[SolverAdapter] = None,
    ):
        if not isinstance(settings, SynthesisSettings):
            raise ConfigurationError(
                f"settings must be SynthesisSettings, got {type(settings).__name__}",
            )
        self.model = model
        self.settings = settings
        self.solver = solver if solver is not None else SolverAdapter.from_settings(settings)
        self.state = SynthesisState.IDLE
        self.trace: List[SynthesisState] = [SynthesisState.IDLE]

    def _enter(self, state: SynthesisState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal synthesis transition {self.state.name} → {state.name}")
        self.state = state
        self.trace.append(state)

    def _weights(self, rng: np.random.Generator, sweep: int) -> Tuple[np.ndarray, np.ndarray]:
        """LQR seed weights; user weights on the first sweep, re-drawn after."""
        n, m = self.model.n, self.model.m
        s = self.settings
        if s.random_q and (s.q_lin is None or sweep > 1):
            q = random_positive_definite(n, rng)
        else:
            q = s.q_lin
        if s.random_r and (s.r_lin is None or sweep > 1):
            r = random_positive_definite(m, rng)
        else:
            r = s.r_lin
        return q, r

    def _build_all(self, combinations, xcl, seeds) -> List[InequalitySystem]:
        systems = []
        for combo in combinations:
            if combo.inequality == "linear":
                source = GainSource.fixed_external(seeds)
            else:
                source = GainSource.unknown(seeds)
            systems.append(
                build(
                    self.model,
                    xcl,
                    self.settings.alpha,
                    combo,
                    source,
                    continuity=self.settings.continuity or None,
                    normal_direction_only=self.settings.normal_direction_only,
                ),
            )
        return systems

    def _solve_all(self, systems: List[InequalitySystem]) -> List[SolveOutcome]:
        workers = self.settings.max_workers
        if workers > 1 and len(systems) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                return list(pool.map(self.solver.solve, systems))
        return [self.solver.solve(system) for system in systems]

    def run(self) -> SynthesisResult:
        """
        Execute the sweep loop.

        Returns:
            SynthesisResult; ``success`` is False when no combination
            converged within ``iteration_number`` sweeps

        Raises:
            ModelError: Model data or equilibrium point are invalid
            ConfigurationError: No method combination fits the model
        """
        if self.state is not SynthesisState.IDLE:
            raise RuntimeError("SynthesisController.run() may only be called once")

        settings = self.settings
        try:
            xcl = settings.resolve_xcl(self.model)
            combinations = filter_combinations(self.model, settings.combinations())
        except ConfigurationError:
            self._enter(SynthesisState.FAILED)
            raise

        rng = np.random.default_rng(settings.random_state)
        entries: List[ControllerTableEntry] = []
        attempts: List[CombinationOutcome] = []
        sweep = 0

        while True:
            sweep += 1
            self._enter(SynthesisState.BUILDING)
            logger.info("Synthesis sweep %d/%d", sweep, settings.iteration_number)
            try:
                q_lin, r_lin = self._weights(rng, sweep)
                seeds = design_seed_gains(self.model, xcl, q_lin, r_lin)
                systems = self._build_all(combinations, xcl, seeds)
            except ConfigurationError:
                self._enter(SynthesisState.FAILED)
                raise

            self._enter(SynthesisState.SOLVING)
            outcomes = self._solve_all(systems)

            self._enter(SynthesisState.AGGREGATING)
            for combo, outcome in zip(combinations, outcomes):
                attempts.append(
                    {
                        "method": combo,
                        "sweep": sweep,
                        "outcome": outcome.kind,
                        "reason": getattr(outcome, "reason", "certificate found"),
                    },
                )
                if outcome.kind == "feasible":
                    logger.info("%s converged", combo.describe())
                    entries.append(
                        ControllerTableEntry(
                            gains=tuple(outcome.certificate["gains"]),
                            method=combo,
                            certificate=outcome.certificate,
                            sweep=sweep,
                        ),
                    )
                else:
                    logger.debug("%s: %s", combo.describe(), outcome.reason)

            if entries:
                self._enter(SynthesisState.DONE)
                break
            if sweep >= settings.iteration_number:
                self._enter(SynthesisState.FAILED)
                break
            self._enter(SynthesisState.RETRYING)

        table = ControllerTable(entries)
        if entries:
            converged = "; ".join(e.method.describe() for e in entries)
            message = f"Converged after {sweep} sweep(s): {converged}"
        else:
            message = f"No method combination converged after {sweep} sweep(s)"
        logger.info(message)

        result: SynthesisResult = {
            "success": bool(entries),
            "state": self.state.value,
            "table": table,
            "sweeps": sweep,
            "attempts": attempts,
            "message": message,
            "settings": settings,
            "xcl": xcl,
        }
        return result


__all__ = [
    "SynthesisState",
    "ControllerTableEntry",
    "ControllerTable",
    "SynthesisController",
]
