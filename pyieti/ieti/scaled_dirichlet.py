"""Scaled Dirichlet preconditioner for IETI/FETI dual systems.

The preconditioner acts on the Lagrange multiplier space and reads

    M = sum_k  B_k D_k S_k D_k B_k^T

where, for subdomain k,
  - B_k is the jump matrix restricted to the skeleton dofs,
  - S_k is the Schur complement of the local stiffness matrix on the skeleton,
  - D_k = diag(1 / w_k) is the scaling operator built from positive weights w_k.

Construction is two-phase. `ScaledDirichletBuilder` collects subdomains and
scaling weights; `ScaledDirichletBuilder.preconditioner()` returns an immutable
`ScaledDirichletPreconditioner` and seals the builder. The preconditioner can be
reused for any number of solves; it shares (and keeps alive) the factorizations
held by the Schur complement operators.

`scaled_dirichlet_solve` wires the pieces together: dual system, skeleton
restriction, scaling, preconditioner and BiCGStab.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
import scipy.sparse as sp

from pyieti.exceptions import InvalidConfiguration, StructuralMismatch
from pyieti.krylov import BiCGStab, BiCGStabConfig, KrylovResult
from pyieti.linalg.operators import (
    AdditiveOperator,
    MatrixOperator,
    Operator,
    ProductOperator,
    as_operator,
)

from .dual import DualSystem
from .sdp.blocks import _as_csr, matrix_blocks, schur_complement, schur_complement_of
from .sdp.scaling import deluxe_scaling, multiplicity_scaling
from .sdp.skeleton import restrict_jump_matrix, restrict_to_skeleton, skeleton_dofs
from .sdp.stats import (
    SdpStats,
    _sdp_finalize_stats,
    _sdp_print_setup_summary,
    _sdp_print_solve_summary,
)
from .sdp.types import SdpConfig, Subdomains


class ScaledDirichletPreconditioner(AdditiveOperator):
    """Immutable scaled Dirichlet preconditioner.

    An `AdditiveOperator` with transfers B_k^T and local operators
    ``Product(D_k, S_k, D_k)``. Created by `ScaledDirichletBuilder.preconditioner`.

    Attributes
    ----------
    jump_matrices, schur_ops, scaling_ops
        Tuples with B_k, S_k and D_k for every subdomain.
    """

    def __init__(self, jump_matrices, schur_ops, weights, n_workers=None):
        self.jump_matrices = tuple(jump_matrices)
        self.schur_ops = tuple(schur_ops)
        self.scaling_ops = tuple(MatrixOperator(sp.diags(1.0 / w, format="csr")) for w in weights)
        local_ops = [
            ProductOperator(D, S, D) for D, S in zip(self.scaling_ops, self.schur_ops)
        ]
        super().__init__(
            [B.T for B in self.jump_matrices], local_ops, n_workers=n_workers
        )


class ScaledDirichletBuilder:
    """Collects subdomains and scaling, then builds the preconditioner.

    Typical usage::

        builder = ScaledDirichletBuilder()
        builder.reserve(len(subdomains))
        for A_k, B_k in subdomains:
            builder.add_subdomain(builder.restrict_to_skeleton(B_k, A_k))
        builder.setup_multiplicity_scaling()
        M = builder.preconditioner()

    Parameters
    ----------
    n_workers
        Thread pool size used by the resulting preconditioner (None = sequential).
    """

    skeleton_dofs = staticmethod(skeleton_dofs)
    restrict_jump_matrix = staticmethod(restrict_jump_matrix)
    restrict_to_skeleton = staticmethod(restrict_to_skeleton)
    matrix_blocks = staticmethod(matrix_blocks)
    schur_complement = staticmethod(schur_complement)
    schur_complement_of = staticmethod(schur_complement_of)

    def __init__(self, n_workers: int | None = None):
        self.n_workers = n_workers
        self.sub = Subdomains()
        self._capacity = 0
        self._sealed = False

    def _check_open(self, what: str) -> None:
        if self._sealed:
            raise InvalidConfiguration(
                f"cannot {what}: the preconditioner has already been built"
            )

    def _check_index(self, k: int) -> None:
        if not 0 <= k < len(self.sub):
            raise IndexError(f"subdomain index {k} out of range for {len(self.sub)} subdomains")

    def reserve(self, n: int) -> None:
        """Announce the number of subdomains (capacity hint only)."""
        if n < 0:
            raise ValueError(f"cannot reserve a negative number of subdomains: {n}")
        self._capacity = max(self._capacity, int(n))

    @property
    def n_subdomains(self) -> int:
        """Number of registered subdomains."""
        return len(self.sub)

    def add_subdomain(self, jump_matrix, schur_op=None) -> int:
        """Register a subdomain and return its index.

        Parameters
        ----------
        jump_matrix
            Skeleton-restricted jump matrix B_k, or the pair ``(B_k, S_k)`` as
            returned by `restrict_to_skeleton` (then `schur_op` is omitted).
        schur_op
            Local Schur complement S_k (operator or matrix) of size B_k.shape[1].

        Raises
        ------
        StructuralMismatch
            If B_k has a different row count than earlier jump matrices, or its
            column count does not match S_k.
        InvalidConfiguration
            If the preconditioner has already been built.
        """
        self._check_open("add a subdomain")
        if schur_op is None:
            if not isinstance(jump_matrix, tuple) or len(jump_matrix) != 2:
                raise TypeError("expected a jump matrix and a Schur operator")
            jump_matrix, schur_op = jump_matrix

        B = _as_csr(jump_matrix, "jump_matrix")
        S = as_operator(schur_op)
        if S.shape != (B.shape[1], B.shape[1]):
            raise StructuralMismatch(
                f"jump matrix has {B.shape[1]} columns but the local operator has shape {S.shape}"
            )
        if len(self.sub) and B.shape[0] != self.n_lagrange_multipliers():
            raise StructuralMismatch(
                f"jump matrix has {B.shape[0]} rows, expected "
                f"{self.n_lagrange_multipliers()} Lagrange multipliers"
            )
        self.sub.append(B, S)
        return len(self.sub) - 1

    def n_lagrange_multipliers(self) -> int:
        """Return the common row count of the jump matrices."""
        if not len(self.sub):
            raise InvalidConfiguration(
                "number of Lagrange multipliers can only be determined once a subdomain is registered"
            )
        return int(self.sub.jump_matrices[0].shape[0])

    def jump_matrix(self, k: int) -> sp.csr_matrix:
        """Skeleton-restricted jump matrix of subdomain k."""
        self._check_index(k)
        return self.sub.jump_matrices[k]

    def local_schur_op(self, k: int) -> Operator:
        """Local Schur complement operator of subdomain k."""
        self._check_index(k)
        return self.sub.schur_ops[k]

    def local_scaling(self, k: int) -> np.ndarray | None:
        """Scaling weights of subdomain k (None until set up)."""
        self._check_index(k)
        return self.sub.scaling[k]

    def _require_subdomains(self) -> None:
        if not len(self.sub):
            raise InvalidConfiguration("no subdomains registered")

    def setup_multiplicity_scaling(self) -> None:
        """Set every subdomain's weights to 1 + number of multipliers per skeleton dof."""
        self._check_open("change the scaling")
        self._require_subdomains()
        for k, B in enumerate(self.sub.jump_matrices):
            self.sub.scaling[k] = multiplicity_scaling(B)

    def setup_deluxe_scaling(self, interfaces: Iterable[tuple[int, int]] | None = None) -> None:
        """Set stiffness-weighted weights from the Schur complement diagonals.

        Parameters
        ----------
        interfaces
            Optional pairs (k, l) of neighbouring subdomains; by default every
            pair of subdomains sharing a multiplier is a neighbour pair.
        """
        self._check_open("change the scaling")
        self._require_subdomains()
        weights = deluxe_scaling(self.sub.jump_matrices, self.sub.schur_ops, interfaces)
        for k, w in enumerate(weights):
            self.sub.scaling[k] = w

    def set_scaling(self, k: int, weights) -> None:
        """Set caller-provided weights for subdomain k (positive, one per skeleton dof)."""
        self._check_open("change the scaling")
        self._check_index(k)
        w = np.asarray(weights, dtype=float).ravel()
        n = self.sub.jump_matrices[k].shape[1]
        if w.shape != (n,):
            raise StructuralMismatch(f"expected {n} weights for subdomain {k}, got {w.size}")
        if np.any(w <= 0) or not np.all(np.isfinite(w)):
            raise InvalidConfiguration(f"scaling weights of subdomain {k} must be positive")
        self.sub.scaling[k] = w

    def preconditioner(self) -> ScaledDirichletPreconditioner:
        """Build the preconditioner and seal the builder.

        Raises
        ------
        InvalidConfiguration
            If no subdomain is registered or some subdomain has no scaling.
        """
        self._require_subdomains()
        missing = [k for k, w in enumerate(self.sub.scaling) if w is None]
        if missing:
            raise InvalidConfiguration(
                f"scaling is not set for subdomains {missing}; "
                "call setup_multiplicity_scaling() or setup_deluxe_scaling() first"
            )
        prec = ScaledDirichletPreconditioner(
            self.sub.jump_matrices,
            self.sub.schur_ops,
            [w.copy() for w in self.sub.scaling],
            n_workers=self.n_workers,
        )
        self._sealed = True
        return prec


def scaled_dirichlet_solve(
    matrices: Sequence,
    jump_matrices: Sequence,
    rhs: Sequence,
    *,
    scaling: str = "multiplicity",
    interfaces: Iterable[tuple[int, int]] | None = None,
    factorization: str = "splu",
    x0=None,
    tol: float = 1e-8,
    maxiter: int = 1000,
    max_restarts: int = 10,
    n_workers: int | None = None,
    print_info: bool = False,
) -> tuple[list[np.ndarray], KrylovResult]:
    """Solve a decomposed problem with scaled-Dirichlet preconditioned BiCGStab.

    Parameters
    ----------
    matrices
        Local stiffness matrices A_k (nonsingular).
    jump_matrices
        Jump matrices B_k with a common number of rows.
    rhs
        Local load vectors f_k.
    scaling
        ``"multiplicity"`` or ``"deluxe"``.
    interfaces
        Neighbour pairs for deluxe scaling.
    factorization
        Factorization used for A_k and for the interior blocks.
    x0
        Initial guess for the multipliers.
    tol, maxiter, max_restarts
        BiCGStab options, see `BiCGStabConfig`.
    n_workers
        Thread pool size for the additive operators.
    print_info
        Print setup and solve summaries.

    Returns
    -------
    (local_solutions, result)
        u_k for every subdomain and the Krylov result whose `x` holds the
        multipliers; `result.diag["stats"]` holds the `SdpStats`.
    """
    config = SdpConfig(
        scaling=scaling, factorization=factorization, n_workers=n_workers, print_info=print_info
    )
    solver_config = BiCGStabConfig(tol=tol, maxiter=maxiter, max_restarts=max_restarts)

    if not (len(matrices) == len(jump_matrices) == len(rhs)):
        raise ValueError(
            f"got {len(matrices)} matrices, {len(jump_matrices)} jump matrices "
            f"and {len(rhs)} right-hand sides"
        )
    if not len(matrices):
        raise InvalidConfiguration("no subdomains given")

    stats = SdpStats(n_subdomains=len(matrices))

    dual = DualSystem(factorization=config.factorization, n_workers=config.n_workers)
    with stats.timeit("dual"):
        for A, B, f in zip(matrices, jump_matrices, rhs):
            dual.add_subdomain(A, B, f)

    builder = ScaledDirichletBuilder(n_workers=config.n_workers)
    builder.reserve(len(matrices))
    for A, B in zip(matrices, jump_matrices):
        with stats.timeit("skeleton"):
            dofs = skeleton_dofs(B)
        with stats.timeit("schur"):
            builder.add_subdomain(
                restrict_to_skeleton(B, A, dofs, factorization=config.factorization)
            )

    with stats.timeit("scaling"):
        if config.scaling == "deluxe":
            builder.setup_deluxe_scaling(interfaces)
        else:
            builder.setup_multiplicity_scaling()

    with stats.timeit("assemble"):
        M = builder.preconditioner()
        F = dual.operator()
        d = dual.rhs()

    _sdp_finalize_stats(
        stats=stats,
        skeleton_sizes=builder.sub.skeleton_sizes(),
        local_sizes=[A.shape[0] for A in matrices],
        n_multipliers=builder.n_lagrange_multipliers(),
        scaling=config.scaling,
    )
    _sdp_print_setup_summary(stats, print_info=config.print_info)

    with stats.timeit("solve"):
        result = BiCGStab(F, M, solver_config).solve(d, x0=x0)
    _sdp_print_solve_summary(
        result, print_info=config.print_info, solve_time=stats.timings["solve"]
    )

    result.diag = {"stats": stats}
    return dual.local_solutions(result.x), result
