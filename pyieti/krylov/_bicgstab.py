"""Preconditioned biconjugate gradient stabilized method (BiCGStab).

The solver only needs `apply` on the system operator and on the
preconditioner; it knows nothing about how either was built.

State machine
-------------
    UNINITIALIZED -> ITERATING <-> RESTARTING -> CONVERGED
                                              -> NON_CONVERGENCE   (iteration cap)
                                              -> BREAKDOWN         (restart budget exhausted)

A breakdown event (shadow residual numerically orthogonal to the residual,
vanishing <r0, v>, or a vanished stabilization step) moves the solver to
RESTARTING: the shadow residual is replaced by the current residual and the
iteration continues. Every event is counted; exceeding
`BiCGStabConfig.max_restarts` raises `NumericalBreakdown`.
"""

from __future__ import annotations

from typing import Callable, Optional
from warnings import warn

import numpy as np

from pyieti.exceptions import NonConvergenceWarning, NumericalBreakdown
from pyieti.linalg.operators import as_operator

from .types import BiCGStabConfig, KrylovResult, SolverState


class BiCGStab:
    """Preconditioned BiCGStab for square operators.

    Parameters
    ----------
    A
        System operator (sparse/dense matrix or any linear operator).
    M
        Preconditioner approximating A^{-1}; None means no preconditioning.
    config
        Solver options, see `BiCGStabConfig`.

    Attributes
    ----------
    state
        Current `SolverState`.
    n_restarts
        Number of breakdown events recovered in the last solve.
    """

    def __init__(self, A, M=None, config: Optional[BiCGStabConfig] = None):
        self.A = as_operator(A)
        n = self.A.rows()
        if self.A.cols() != n:
            raise ValueError(f"expected square operator, got shape {self.A.shape}")
        self.M = None if M is None else as_operator(M)
        if self.M is not None and self.M.shape != (n, n):
            raise ValueError(
                f"preconditioner has shape {self.M.shape}, expected {(n, n)}"
            )
        self.config = config if config is not None else BiCGStabConfig()
        self.state = SolverState.UNINITIALIZED
        self.n_restarts = 0

    def _precondition(self, x):
        if self.M is None:
            return x.copy()
        return self.M.apply(x)

    def _breakdown(self, it: int, reason: str) -> None:
        self.n_restarts += 1
        if self.n_restarts > self.config.max_restarts:
            self.state = SolverState.BREAKDOWN
            raise NumericalBreakdown(
                f"BiCGStab breakdown at iteration {it} ({reason}); "
                f"restart budget of {self.config.max_restarts} exhausted"
            )
        self.state = SolverState.RESTARTING

    def solve(
        self,
        b,
        x0=None,
        callback: Optional[Callable[[np.ndarray], None]] = None,
    ) -> KrylovResult:
        """Solve A x = b.

        Parameters
        ----------
        b
            Right-hand side of length n.
        x0
            Initial guess (default: zero vector). Not modified.
        callback
            Called as ``callback(xk)`` after every iteration.

        Returns
        -------
        KrylovResult
            On NON_CONVERGENCE, `x` is the iterate with the smallest relative
            residual seen and a `NonConvergenceWarning` is emitted.

        Raises
        ------
        NumericalBreakdown
            If more than `max_restarts` breakdown events occur.
        """
        cfg = self.config
        A = self.A
        n = A.rows()

        b = np.ravel(np.asarray(b))
        if b.shape != (n,):
            raise ValueError(f"b has shape {b.shape}, expected ({n},)")
        dtype = np.result_type(A.dtype, b.dtype, np.float64)
        if x0 is None:
            x = np.zeros(n, dtype=dtype)
        else:
            x = np.array(x0, dtype=dtype).ravel()
            if x.shape != (n,):
                raise ValueError(f"x0 has shape {x.shape}, expected ({n},)")

        self.state = SolverState.ITERATING
        self.n_restarts = 0

        b_norm = np.linalg.norm(b)
        if b_norm == 0.0:
            self.state = SolverState.CONVERGED
            return KrylovResult(
                x=np.zeros(n, dtype=dtype), converged=True, n_iter=0,
                rel_residual=0.0, state=self.state, residuals=[0.0],
            )

        r = b - A.apply(x)
        r_hat = r.copy()
        p = np.zeros(n, dtype=dtype)
        v = np.zeros(n, dtype=dtype)
        alpha = rho = omega = 1.0

        error = np.linalg.norm(r) / b_norm
        residuals = [float(error)]
        best_x, best_error = x.copy(), error
        if error < cfg.tol:
            self.state = SolverState.CONVERGED
            return KrylovResult(
                x=x, converged=True, n_iter=0, rel_residual=float(error),
                state=self.state, residuals=residuals,
            )

        for it in range(1, cfg.maxiter + 1):
            if omega == 0.0:
                self._breakdown(it, "stabilization step vanished")
                r_hat = r.copy()
                p[:] = 0.0
                v[:] = 0.0
                alpha = rho = omega = 1.0

            rho_old = rho
            rho = np.vdot(r_hat, r)
            if abs(rho) < cfg.breakdown_tol * np.vdot(r_hat, r_hat).real:
                self._breakdown(it, "residual orthogonal to shadow residual")
                r_hat = r.copy()
                rho = np.vdot(r_hat, r_hat)

            beta = (rho / rho_old) * (alpha / omega)
            p = r + beta * (p - omega * v)

            y = self._precondition(p)
            v = A.apply(y)
            denom = np.vdot(r_hat, v)
            if denom == 0.0:
                self._breakdown(it, "<r0, v> vanished")
                r_hat = r.copy()
                p[:] = 0.0
                v[:] = 0.0
                alpha = rho = omega = 1.0
                residuals.append(float(error))
                continue
            alpha = rho / denom

            s = r - alpha * v
            z = self._precondition(s)
            t = A.apply(z)

            tt = np.vdot(t, t).real
            omega = np.vdot(t, s) / tt if tt > 0 else 0.0

            x += alpha * y + omega * z
            r -= alpha * v + omega * t
            self.state = SolverState.ITERATING

            error = np.linalg.norm(r) / b_norm
            residuals.append(float(error))
            if error < best_error:
                best_x, best_error = x.copy(), error

            if callback is not None:
                callback(x)

            if error < cfg.tol:
                self.state = SolverState.CONVERGED
                return KrylovResult(
                    x=x, converged=True, n_iter=it, rel_residual=float(error),
                    state=self.state, residuals=residuals, n_restarts=self.n_restarts,
                )

        self.state = SolverState.NON_CONVERGENCE
        message = (
            f"BiCGStab did not converge in {cfg.maxiter} iterations "
            f"(relative residual {best_error:.3e}, tol {cfg.tol:.1e})"
        )
        warn(message, NonConvergenceWarning, stacklevel=2)
        return KrylovResult(
            x=best_x, converged=False, n_iter=cfg.maxiter, rel_residual=float(best_error),
            state=self.state, residuals=residuals, n_restarts=self.n_restarts,
            message=message,
        )


def bicgstab(A, b, x0=None, tol=1e-8, maxiter=None, M=None, callback=None,
             residuals=None, max_restarts=10):
    """Biconjugate gradient stabilized method, pyamg.krylov calling convention.

    Parameters
    ----------
    A : array, matrix, sparse matrix, LinearOperator
        n x n linear system to solve.
    b : array, matrix
        Right hand side, shape is (n,) or (n,1).
    x0 : array, matrix
        Initial guess, default is a vector of zeros.
    tol : float
        Relative tolerance, ||r|| / ||b|| < tol.
    maxiter : int
        Maximum number of iterations, default 10 * n.
    M : array, matrix, sparse matrix, LinearOperator
        n x n preconditioner, approximating A^{-1}.
    callback : function
        User-supplied function called after each iteration as callback(xk).
    residuals : list
        If given, filled with the residual norm history ||r||, including the
        initial residual.
    max_restarts : int
        Breakdown events tolerated before `NumericalBreakdown` is raised.

    Returns
    -------
    (xk, info)
        xk is the approximate solution; info is 0 on convergence and the number
        of iterations when `maxiter` was reached.
    """
    n = as_operator(A).rows()
    if maxiter is None:
        maxiter = 10 * n
    config = BiCGStabConfig(tol=tol, maxiter=int(maxiter), max_restarts=max_restarts)
    result = BiCGStab(A, M=M, config=config).solve(b, x0=x0, callback=callback)

    if residuals is not None:
        b_norm = float(np.linalg.norm(np.ravel(b)))
        residuals[:] = [res * b_norm for res in result.residuals]

    info = 0 if result.converged else result.n_iter
    return result.x, info
