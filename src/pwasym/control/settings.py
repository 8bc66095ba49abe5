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
Analysis and Synthesis Settings

Immutable configuration values passed explicitly to every analysis and
synthesis call. Nothing here is process-wide state.

Recognized options (original field name → attribute):

| Field               | Attribute               | Default                      |
|---------------------|-------------------------|------------------------------|
| Lyapunov            | lyapunov                | ('global', 'pwq')            |
| ApxMeth             | approximations          | ('ellipsoidal', 'quadratic') |
| SynthMeth           | synthesis_methods       | ('lmi', 'bmi')               |
| alpha               | alpha                   | 0.1                          |
| xcl                 | xcl                     | model.xcl                    |
| QLin / RLin         | q_lin / r_lin           | random positive definite     |
| RandomQ / RandomR   | random_q / random_r     | True unless QLin/RLin given  |
| NormalDirectionOnly | normal_direction_only   | False                        |
| StopTime            | stop_time               | 10.0                         |
| IterationNumber     | iteration_number        | 5                            |

Usage
-----
>>> settings = SynthesisSettings.from_dict({
...     'Lyapunov': 'global',
...     'alpha': 0.1,
...     'xcl': [0.0, 0.0],
...     'IterationNumber': 3,
... })
>>> settings.lyapunov
('global',)
"""

import itertools
import warnings
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from pwasym.exceptions import ConfigurationError
from pwasym.systems.region_model import PWASystem
from pwasym.types.backends import (
    ApproximationMethod,
    InequalityKind,
    LyapunovStructure,
    VALID_APPROXIMATIONS,
    VALID_LYAPUNOV,
    VALID_SYNTHESIS_METHODS,
)

# Original (CamelCase) option names accepted by from_dict
_ALIASES = {
    "Lyapunov": "lyapunov",
    "ApxMeth": "approximations",
    "SynthMeth": "synthesis_methods",
    "alpha": "alpha",
    "xcl": "xcl",
    "QLin": "q_lin",
    "RLin": "r_lin",
    "RandomQ": "random_q",
    "RandomR": "random_r",
    "NormalDirectionOnly": "normal_direction_only",
    "StopTime": "stop_time",
    "IterationNumber": "iteration_number",
}

_INEQUALITY_FOR_METHOD = {"lmi": "linear", "bmi": "bilinear"}


# ============================================================================
# Method Combination
# ============================================================================


@dataclass(frozen=True, order=True)
class MethodCombination:
    """
    One point of the synthesis/analysis method sweep.

    Attributes
    ----------
    approximation : ApproximationMethod
        'ellipsoidal' or 'quadratic' region approximation
    inequality : InequalityKind
        'linear' (gains fixed) or 'bilinear' (gains unknown)
    lyapunov : LyapunovStructure
        'global' or 'pwq'
    """

    approximation: ApproximationMethod
    inequality: InequalityKind
    lyapunov: LyapunovStructure

    @property
    def synthesis_method(self) -> str:
        return "lmi" if self.inequality == "linear" else "bmi"

    def describe(self) -> str:
        """Human-readable label, e.g. 'BMI approach with ellipsoidal approximation (global Lyapunov)'."""
        approx = "quadratic curve" if self.approximation == "quadratic" else "ellipsoidal"
        return (
            f"{self.synthesis_method.upper()} approach with {approx} approximation "
            f"({self.lyapunov} Lyapunov)"
        )


def enumerate_combinations(
    approximations: Sequence[str],
    inequalities: Sequence[str],
    lyapunov: Sequence[str],
) -> List[MethodCombination]:
    """Cross product of the configured lists, in configuration order."""
    return [
        MethodCombination(approximation=a, inequality=k, lyapunov=v)
        for a, k, v in itertools.product(approximations, inequalities, lyapunov)
    ]


def filter_combinations(
    model: PWASystem,
    combinations: Iterable[MethodCombination],
) -> List[MethodCombination]:
    """
    Drop combinations the model cannot support.

    Ellipsoidal combinations need ellipsoid data on every region; piecewise
    quadratic combinations on multi-region models need boundary links.
    Dropped combinations are reported with a UserWarning.

    Raises:
        ConfigurationError: If no combination remains
    """
    kept = []
    for combo in combinations:
        if combo.approximation == "ellipsoidal" and not model.has_ellipsoids:
            warnings.warn(
                f"Skipping {combo.describe()}: model has no ellipsoidal approximation "
                f"for every region",
            )
            continue
        if combo.lyapunov == "pwq" and model.n_regions > 1 and not model.has_boundaries:
            warnings.warn(
                f"Skipping {combo.describe()}: piecewise quadratic Lyapunov functions "
                f"need boundary links between regions",
            )
            continue
        kept.append(combo)
    if not kept:
        raise ConfigurationError("No method combination is applicable to this model")
    return kept


# ============================================================================
# Normalization Helpers
# ============================================================================


def _as_options(value: Any, valid: Sequence[str], name: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = (value,)
    try:
        options = tuple(str(v).lower() for v in value)
    except TypeError as exc:
        raise ConfigurationError(f"{name} must be a string or a list of strings") from exc
    if not options:
        raise ConfigurationError(f"{name} must name at least one option")
    unknown = [v for v in options if v not in valid]
    if unknown:
        raise ConfigurationError(f"Unknown {name} option(s) {unknown}; valid: {list(valid)}")
    # preserve order, drop duplicates
    return tuple(dict.fromkeys(options))


def _as_weight(value: Any, name: str) -> Optional[np.ndarray]:
    if value is None:
        return None
    mat = np.atleast_2d(np.array(value, dtype=float))
    if mat.shape[0] != mat.shape[1]:
        raise ConfigurationError(f"{name} must be square, got shape {mat.shape}")
    if not np.allclose(mat, mat.T):
        raise ConfigurationError(f"{name} must be symmetric")
    if np.min(np.linalg.eigvalsh(mat)) <= 0:
        raise ConfigurationError(f"{name} must be positive definite")
    mat.setflags(write=False)
    return mat


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True, eq=False)
class AnalysisSettings:
    """
    Settings for PWA stability analysis.

    Attributes
    ----------
    lyapunov : Tuple[str, ...]
        Lyapunov structures to attempt ('global', 'pwq')
    approximations : Tuple[str, ...]
        Region approximations to attempt ('ellipsoidal', 'quadratic')
    alpha : float
        Fixed decay rate, alpha > 0 (dV/dt < -alpha V)
    xcl : Optional[np.ndarray]
        Equilibrium point; falls back to the model's xcl
    continuity : bool
        Force control-continuity constraints (pwq synthesis emits them by default)
    normal_direction_only : bool
        Restrict continuity constraints to boundary-normal directions
    eps : float
        Strictness margin for the matrix inequalities
    time_limit : Optional[float]
        Wall-clock budget per solve, seconds
    solver : Optional[str]
        cvxpy solver name (None lets cvxpy choose)
    """

    lyapunov: Tuple[str, ...] = ("global", "pwq")
    approximations: Tuple[str, ...] = ("ellipsoidal", "quadratic")
    alpha: float = 0.1
    xcl: Optional[np.ndarray] = None
    continuity: bool = False
    normal_direction_only: bool = False
    eps: float = 1e-6
    time_limit: Optional[float] = None
    solver: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "lyapunov", _as_options(self.lyapunov, VALID_LYAPUNOV, "Lyapunov"))
        object.__setattr__(
            self,
            "approximations",
            _as_options(self.approximations, VALID_APPROXIMATIONS, "ApxMeth"),
        )
        try:
            alpha = float(self.alpha)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"alpha must be a positive scalar, got {self.alpha!r}") from exc
        if not np.isfinite(alpha) or alpha <= 0:
            raise ConfigurationError(f"alpha must be positive, got {alpha}")
        object.__setattr__(self, "alpha", alpha)
        if self.xcl is not None:
            xcl = np.atleast_1d(np.array(self.xcl, dtype=float)).reshape(-1)
            xcl.setflags(write=False)
            object.__setattr__(self, "xcl", xcl)
        if self.eps <= 0:
            raise ConfigurationError(f"eps must be positive, got {self.eps}")
        if self.time_limit is not None and self.time_limit <= 0:
            raise ConfigurationError(f"time_limit must be positive, got {self.time_limit}")

    @classmethod
    def from_dict(cls, options: Dict[str, Any]):
        """
        Build settings from a mapping of original or snake_case option names.

        Unknown keys raise ConfigurationError.
        """
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            attr = _ALIASES.get(key, key)
            if attr not in names:
                raise ConfigurationError(f"Unknown setting '{key}' for {cls.__name__}")
            kwargs[attr] = value
        return cls(**kwargs)

    def resolve_xcl(self, model: PWASystem) -> np.ndarray:
        """
        Equilibrium point to use: settings xcl, else the model's xcl.

        Raises:
            ConfigurationError: If neither is set or the size is wrong
        """
        xcl = self.xcl if self.xcl is not None else model.xcl
        if xcl is None:
            raise ConfigurationError("xcl is not defined in the settings or the model")
        if xcl.shape != (model.n,):
            raise ConfigurationError(f"xcl must have shape ({model.n},), got {xcl.shape}")
        return xcl

    def combinations(self) -> List[MethodCombination]:
        """Analysis sweeps approximation × Lyapunov with linear inequalities."""
        return enumerate_combinations(self.approximations, ("linear",), self.lyapunov)


@dataclass(frozen=True, eq=False)
class SynthesisSettings(AnalysisSettings):
    """
    Settings for PWA controller synthesis.

    Adds to AnalysisSettings:

    Attributes
    ----------
    synthesis_methods : Tuple[str, ...]
        'lmi' (fixed seed gains, convex check) and/or 'bmi' (joint synthesis)
    q_lin, r_lin : Optional[np.ndarray]
        LQR seed weights for the equilibrium region
    random_q, random_r : Optional[bool]
        Re-draw the seed weights randomly on each sweep. Defaults to True
        when the corresponding weight is not supplied.
    stop_time : float
        Simulation horizon handed to the host simulation (unused here)
    iteration_number : int
        Maximum number of full sweeps
    bmi_iterations : int
        Alternating iterations allowed per bilinear solve
    random_state : Optional[int]
        Seed for the weight generator (reproducible sweeps)
    max_workers : int
        Thread pool size for solving combinations of one sweep
    """

    synthesis_methods: Tuple[str, ...] = ("lmi", "bmi")
    q_lin: Optional[np.ndarray] = None
    r_lin: Optional[np.ndarray] = None
    random_q: Optional[bool] = None
    random_r: Optional[bool] = None
    stop_time: float = 10.0
    iteration_number: int = 5
    bmi_iterations: int = 30
    random_state: Optional[int] = None
    max_workers: int = 1

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(
            self,
            "synthesis_methods",
            _as_options(self.synthesis_methods, VALID_SYNTHESIS_METHODS, "SynthMeth"),
        )
        object.__setattr__(self, "q_lin", _as_weight(self.q_lin, "QLin"))
        object.__setattr__(self, "r_lin", _as_weight(self.r_lin, "RLin"))
        if self.random_q is None:
            object.__setattr__(self, "random_q", self.q_lin is None)
        if self.random_r is None:
            object.__setattr__(self, "random_r", self.r_lin is None)
        object.__setattr__(self, "random_q", bool(self.random_q))
        object.__setattr__(self, "random_r", bool(self.random_r))
        if not self.random_q and self.q_lin is None:
            raise ConfigurationError("RandomQ is off but QLin is not given")
        if not self.random_r and self.r_lin is None:
            raise ConfigurationError("RandomR is off but RLin is not given")

        for name in ("iteration_number", "bmi_iterations", "max_workers"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value}")
            object.__setattr__(self, name, int(value))
        if self.stop_time <= 0:
            raise ConfigurationError(f"StopTime must be positive, got {self.stop_time}")

    def combinations(self) -> List[MethodCombination]:
        """Cross product approximation × synthesis method × Lyapunov."""
        inequalities = [_INEQUALITY_FOR_METHOD[m] for m in self.synthesis_methods]
        return enumerate_combinations(self.approximations, inequalities, self.lyapunov)


__all__ = [
    "MethodCombination",
    "enumerate_combinations",
    "filter_combinations",
    "AnalysisSettings",
    "SynthesisSettings",
]
