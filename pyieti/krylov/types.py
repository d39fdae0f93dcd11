"""Configuration, states and results of the Krylov solvers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np


class SolverState(str, Enum):
    """States of an iterative solve.

    UNINITIALIZED -> ITERATING <-> RESTARTING -> CONVERGED | NON_CONVERGENCE | BREAKDOWN
    """

    UNINITIALIZED = "uninitialized"
    ITERATING = "iterating"
    RESTARTING = "restarting"
    CONVERGED = "converged"
    NON_CONVERGENCE = "non_convergence"
    BREAKDOWN = "breakdown"


@dataclass(slots=True, frozen=True)
class BiCGStabConfig:
    """Options of the preconditioned BiCGStab solver.

    Attributes
    ----------
    tol : float
        Relative residual ||r|| / ||b|| below which the solve is converged.
    maxiter : int
        Iteration cap.
    breakdown_tol : float
        A step breaks down when |<r0, r>| < breakdown_tol * <r0, r0>.
    max_restarts : int
        Number of breakdown events that are recovered by restarting the shadow
        residual; one more raises `NumericalBreakdown`.
    """

    tol: float = 1e-8
    maxiter: int = 1000
    breakdown_tol: float = 1e-32
    max_restarts: int = 10

    def __post_init__(self):
        if not self.tol > 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.maxiter < 0:
            raise ValueError(f"maxiter must be nonnegative, got {self.maxiter}")
        if self.breakdown_tol < 0:
            raise ValueError(f"breakdown_tol must be nonnegative, got {self.breakdown_tol}")
        if self.max_restarts < 0:
            raise ValueError(f"max_restarts must be nonnegative, got {self.max_restarts}")


@dataclass
class KrylovResult:
    """Outcome of an iterative solve.

    Attributes
    ----------
    x : ndarray
        Returned iterate; on NON_CONVERGENCE the best one seen.
    converged : bool
        True if the relative residual dropped below `tol`.
    n_iter : int
        Iterations performed, including those spent on restarts.
    rel_residual : float
        Relative residual ||b - A x|| / ||b|| of `x`.
    state : SolverState
        Final state of the solver.
    residuals : list of float
        Relative residual history, initial residual first; one entry per
        iteration after that.
    n_restarts : int
        Breakdown events recovered by restarting.
    message : str or None
        Human-readable reason when the solve did not converge.
    diag : dict or None
        Extra diagnostics attached by drivers (e.g. ``"stats"``).
    """

    x: np.ndarray
    converged: bool
    n_iter: int
    rel_residual: float
    state: SolverState
    residuals: list[float] = field(default_factory=list)
    n_restarts: int = 0
    message: Optional[str] = None
    diag: Optional[dict[str, Any]] = None
