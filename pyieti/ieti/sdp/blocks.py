"""Block partition of local stiffness matrices and lazy Schur complements.

Given a square sparse matrix M (n x n) and an ordered set of kept indices
`dofs` (m <= n), the remaining indices are eliminated:

    M  ~  [ A00  A01 ]      A00 : kept x kept          (m x m)
          [ A10  A11 ]      A11 : interior x interior  ((n-m) x (n-m))

and the Schur complement on the kept indices is represented as an operator

    S = A00 - A01 A11^{-1} A10

that is never assembled. A11^{-1} is realized by a factorization computed once
(`InverseOperator`); every application of S costs one sparse solve.

Ordering
--------
- Kept indices keep the order given by the caller.
- Interior indices are sorted ascending.
"""

from __future__ import annotations

from warnings import warn

import numpy as np
import scipy.sparse as sp
from scipy.sparse import SparseEfficiencyWarning

from pyieti.linalg.operators import (
    InverseOperator,
    MatrixOperator,
    Operator,
    ProductOperator,
    SumOperator,
)

from .types import IndexArray, MatrixBlocks


def _as_csr(A, name: str = "A") -> sp.csr_matrix:
    """Return A as CSR, warning on implicit conversion of non-sparse input."""
    if sp.issparse(A):
        return sp.csr_matrix(A)
    try:
        A = sp.csr_matrix(A)
    except Exception as e:
        raise TypeError(f"Argument {name} must be sparse or convertible to csr_matrix") from e
    warn(f"Implicit conversion of {name} to CSR", SparseEfficiencyWarning)
    return A


def _as_index_array(dofs, n: int) -> IndexArray:
    """Validate an ordered index set against a dimension n and return it as int32."""
    idx = np.asarray(dofs)
    if idx.size == 0:
        return np.zeros(0, dtype=np.int32)
    if idx.ndim != 1 or idx.dtype.kind not in "iu":
        raise ValueError("dofs must be a one-dimensional sequence of integers")
    if idx.min() < 0 or idx.max() >= n:
        raise ValueError(f"dofs out of range for dimension {n}")
    if np.unique(idx).size != idx.size:
        raise ValueError("dofs contains duplicate indices")
    return idx.astype(np.int32, copy=False)


def matrix_blocks(M, dofs) -> MatrixBlocks:
    """Partition M into kept (`dofs`) and interior index blocks.

    Parameters
    ----------
    M
        Square sparse matrix.
    dofs
        Ordered kept indices; duplicates and out-of-range indices are rejected.

    Returns
    -------
    MatrixBlocks
        A00 = M[dofs, dofs], A01 = M[dofs, interior], A10 = M[interior, dofs],
        A11 = M[interior, interior], all CSR.
    """
    M = _as_csr(M, "M")
    n = M.shape[0]
    if M.shape[1] != n:
        raise ValueError(f"expected square matrix, got shape {M.shape}")

    kept = _as_index_array(dofs, n)
    mask = np.ones(n, dtype=bool)
    mask[kept] = False
    interior = np.flatnonzero(mask).astype(np.int32)

    return MatrixBlocks(
        A00=_submatrix(M, kept, kept),
        A01=_submatrix(M, kept, interior),
        A10=_submatrix(M, interior, kept),
        A11=_submatrix(M, interior, interior),
        dofs=kept,
        interior=interior,
    )


def _submatrix(M: sp.csr_matrix, rows: IndexArray, cols: IndexArray) -> sp.csr_matrix:
    """Return M[rows, cols] as CSR; empty index sets give empty blocks."""
    if rows.size == 0 or cols.size == 0:
        return sp.csr_matrix((rows.size, cols.size), dtype=M.dtype)
    return M[rows, :][:, cols].tocsr()


def schur_complement(blocks: MatrixBlocks, solver) -> Operator:
    """Return the lazy operator ``A00 - A01 solver A10``.

    Parameters
    ----------
    blocks
        Partition as returned by `matrix_blocks`.
    solver
        Operator realizing ``A11^{-1}``.

    Notes
    -----
    The minus sign is carried by a negated copy of A01, so `solver` factorizes
    A11 itself (positive definite whenever M is).
    """
    if blocks.n_interior == 0:
        return MatrixOperator(blocks.A00)
    if solver.shape != blocks.A11.shape:
        raise ValueError(
            f"solver has shape {solver.shape}, expected {blocks.A11.shape}"
        )
    return SumOperator(
        MatrixOperator(blocks.A00),
        ProductOperator(MatrixOperator(-blocks.A01), solver, MatrixOperator(blocks.A10)),
    )


def schur_complement_of(M, dofs, factorization: str = "splu") -> Operator:
    """Partition M and return its Schur complement on `dofs`.

    If `dofs` covers every index nothing is eliminated and the result is A00
    (M permuted to the order of `dofs`).

    Raises
    ------
    SingularBlock
        If the interior block cannot be factorized.
    """
    blocks = matrix_blocks(M, dofs)
    if blocks.n_interior == 0:
        return MatrixOperator(blocks.A00)
    return schur_complement(blocks, InverseOperator(blocks.A11, factorization=factorization))
