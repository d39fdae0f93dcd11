"""Dual (Lagrange multiplier) formulation of a decomposed linear system.

For subdomains k = 1..K with stiffness A_k, jump matrix B_k and load f_k, the
coupled saddle point problem

    A_k u_k + B_k^T lambda = f_k          (k = 1..K)
    sum_k B_k u_k          = 0

is reduced to the multipliers by eliminating every u_k:

    F lambda = d,   F = sum_k B_k A_k^{-1} B_k^T,   d = sum_k B_k A_k^{-1} f_k

after which u_k = A_k^{-1} (f_k - B_k^T lambda). Each A_k must be nonsingular
(for example through Dirichlet conditions on part of its boundary). F is
represented as an `AdditiveOperator` with transfers B_k^T; the factorizations
of A_k are computed once at registration.
"""

from __future__ import annotations

import numpy as np

from pyieti.exceptions import InvalidConfiguration, StructuralMismatch
from pyieti.linalg.operators import AdditiveOperator, InverseOperator

from .sdp.blocks import _as_csr


class DualSystem:
    """Collects subdomain data and provides F, d and the local recovery.

    Parameters
    ----------
    factorization
        Factorization of the local stiffness matrices (``"splu"`` or ``"cholesky"``).
    n_workers
        Thread pool size for applying F (None = sequential).
    """

    def __init__(self, *, factorization: str = "splu", n_workers: int | None = None):
        self.factorization = factorization
        self.n_workers = n_workers
        self._jump_matrices = []
        self._solvers = []
        self._rhs = []

    @property
    def n_subdomains(self) -> int:
        """Number of registered subdomains."""
        return len(self._solvers)

    def add_subdomain(self, local_matrix, jump_matrix, rhs) -> None:
        """Register one subdomain and factorize its stiffness matrix.

        Raises
        ------
        StructuralMismatch
            If the jump matrix row count differs from earlier subdomains or its
            column count differs from the size of `local_matrix`.
        SingularBlock
            If `local_matrix` cannot be factorized.
        """
        A = _as_csr(local_matrix, "local_matrix")
        B = _as_csr(jump_matrix, "jump_matrix")
        f = np.ravel(np.asarray(rhs))
        if A.shape[0] != A.shape[1]:
            raise ValueError(f"expected square local matrix, got shape {A.shape}")
        if B.shape[1] != A.shape[0]:
            raise StructuralMismatch(
                f"jump matrix has {B.shape[1]} columns, local matrix has {A.shape[0]} rows"
            )
        if self._jump_matrices and B.shape[0] != self._jump_matrices[0].shape[0]:
            raise StructuralMismatch(
                f"jump matrix has {B.shape[0]} rows, expected "
                f"{self._jump_matrices[0].shape[0]} Lagrange multipliers"
            )
        if f.shape != (A.shape[0],):
            raise ValueError(f"rhs has shape {f.shape}, expected ({A.shape[0]},)")

        self._solvers.append(InverseOperator(A, factorization=self.factorization))
        self._jump_matrices.append(B)
        self._rhs.append(f)

    def n_lagrange_multipliers(self) -> int:
        """Number of Lagrange multipliers (rows of the jump matrices)."""
        if not self._jump_matrices:
            raise InvalidConfiguration(
                "number of Lagrange multipliers is only defined once a subdomain is registered"
            )
        return int(self._jump_matrices[0].shape[0])

    def operator(self) -> AdditiveOperator:
        """Return F = sum_k B_k A_k^{-1} B_k^T."""
        self.n_lagrange_multipliers()
        return AdditiveOperator(
            [B.T for B in self._jump_matrices], self._solvers, n_workers=self.n_workers
        )

    def rhs(self) -> np.ndarray:
        """Return d = sum_k B_k A_k^{-1} f_k."""
        d = np.zeros(self.n_lagrange_multipliers())
        for B, solver, f in zip(self._jump_matrices, self._solvers, self._rhs):
            d = d + B @ solver.apply(f)
        return d

    def local_solutions(self, multipliers) -> list[np.ndarray]:
        """Return u_k = A_k^{-1} (f_k - B_k^T lambda) for every subdomain."""
        lam = np.ravel(np.asarray(multipliers))
        if lam.shape != (self.n_lagrange_multipliers(),):
            raise ValueError(
                f"multipliers have shape {lam.shape}, expected ({self.n_lagrange_multipliers()},)"
            )
        return [
            solver.apply(f - B.T @ lam)
            for B, solver, f in zip(self._jump_matrices, self._solvers, self._rhs)
        ]
