"""Data structures for solver configuration and results.

Architecture: Params vs Metrics

             Params (input/config)         Metrics (output/results)
             ─────────────────────         ────────────────────────
Newton       NewtonParameters              NewtonResult
Adaptivity   AdaptivityParameters          AdaptivityHistory, AdaptivityResult
Eigenvalue   EigenParameters               EigenResult

Parameters are frozen; a solver entry point receives them explicitly.
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import List, Optional

import pandas as pd
from omegaconf import DictConfig, OmegaConf

ADAPT_TYPES = ("hp", "h", "p")
NORMS = ("L2", "H1")


class Termination(Enum):
    """Why a bounded iteration stopped."""

    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


# ============================================================================
# Parameters (Input Configuration)
# ============================================================================


class _ParametersMixin:
    @classmethod
    def from_config(cls, cfg):
        """Build from a mapping or OmegaConf DictConfig; unknown keys are ignored."""
        if isinstance(cfg, DictConfig):
            cfg = OmegaConf.to_container(cfg, resolve=True)
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in dict(cfg).items() if k in names})

    def to_dict(self) -> dict:
        return asdict(self)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.to_dict()])


@dataclass(frozen=True)
class NewtonParameters(_ParametersMixin):
    """Newton iteration: residual tolerance, iteration cap, linear backend."""

    tol: float = 1e-8
    max_iter: int = 150
    matrix_solver: str = "spsolve"

    def __post_init__(self):
        if self.tol <= 0:
            raise ValueError(f"Newton tolerance must be positive, got {self.tol}")
        if self.max_iter < 2:
            raise ValueError(f"Newton needs max_iter >= 2, got {self.max_iter}")


@dataclass(frozen=True)
class AdaptivityParameters(_ParametersMixin):
    """
    FTR-driven hp adaptivity.

    norm selects the norm of the FTR error. With "H1" the Galerkin scheme
    for first-order ODEs shows an odd-even oscillation of the derivative on
    refined elements, so the maximum FTR error is not monotone over the
    adaptivity steps and may stall above tol_err_ftr. "L2" decreases
    monotonically and is the default.
    """

    newton_tol_coarse: float = 1e-8
    newton_tol_ref: float = 1e-8
    newton_max_iter: int = 150
    adapt_type: str = "hp"
    threshold: float = 0.7  # refine elements with error > threshold * max error
    tol_err_ftr: float = 1e-2  # stop when the max FTR error drops below this
    norm: str = "L2"
    max_adapt_iter: int = 50
    matrix_solver: str = "spsolve"

    def __post_init__(self):
        if self.adapt_type not in ADAPT_TYPES:
            raise ValueError(f"adapt_type must be one of {ADAPT_TYPES}, got '{self.adapt_type}'")
        if self.norm not in NORMS:
            raise ValueError(f"norm must be one of {NORMS}, got '{self.norm}'")
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must lie in [0, 1], got {self.threshold}")

    def coarse_newton(self) -> NewtonParameters:
        return NewtonParameters(self.newton_tol_coarse, self.newton_max_iter, self.matrix_solver)

    def ref_newton(self) -> NewtonParameters:
        return NewtonParameters(self.newton_tol_ref, self.newton_max_iter, self.matrix_solver)


@dataclass(frozen=True)
class EigenParameters(_ParametersMixin):
    """Source (power) iteration for the dominant eigenvalue."""

    newton_tol: float = 1e-5
    newton_max_iter: int = 150
    tol_si: float = 1e-8
    max_si: int = 1000
    k_eff_init: float = 1.0
    matrix_solver: str = "spsolve"

    def __post_init__(self):
        if self.k_eff_init <= 0:
            raise ValueError(f"Initial eigenvalue must be positive, got {self.k_eff_init}")

    def newton(self) -> NewtonParameters:
        return NewtonParameters(self.newton_tol, self.newton_max_iter, self.matrix_solver)


# ============================================================================
# Metrics (Output Results)
# ============================================================================


@dataclass
class NewtonResult:
    """Outcome of one Newton solve."""

    termination: Termination = Termination.EXHAUSTED
    iterations: int = 0
    residual_norm: float = float("inf")
    residual_history: List[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.termination is Termination.CONVERGED


@dataclass
class AdaptivityHistory:
    """Convergence history, one entry per adaptivity step."""

    step: List[int] = field(default_factory=list)
    n_dof: List[int] = field(default_factory=list)
    max_ftr_error: List[float] = field(default_factory=list)
    exact_rel_error: List[Optional[float]] = field(default_factory=list)

    def append(self, step: int, n_dof: int, max_ftr_error: float, exact_rel_error=None):
        self.step.append(step)
        self.n_dof.append(n_dof)
        self.max_ftr_error.append(max_ftr_error)
        self.exact_rel_error.append(exact_rel_error)

    def __len__(self):
        return len(self.step)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(asdict(self))


@dataclass
class AdaptivityResult:
    mesh: object
    history: AdaptivityHistory
    converged: bool = False


@dataclass
class EigenResult:
    """Outcome of the source iteration."""

    k_eff: float = 0.0
    iterations: int = 0
    termination: Termination = Termination.EXHAUSTED
    k_history: List[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.termination is Termination.CONVERGED

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({"iteration": range(1, len(self.k_history) + 1), "k_eff": self.k_history})
