"""Skeleton extraction and restriction of jump matrices.

For one subdomain with jump matrix B (rows = Lagrange multipliers, columns =
local dofs), this module provides:
  - skeleton dofs   : sorted local dofs touched by at least one multiplier,
                      i.e. columns of B with a nonzero entry
  - restricted jump : B restricted to a given (ordered) set of columns and
                      re-indexed 0..len(dofs)-1 in that order
  - restrict_to_skeleton : the (restricted jump matrix, Schur complement) pair
                      that the preconditioner builder registers

A dof counts as a skeleton dof only through the nonzero pattern of B; explicit
zeros stored in B are ignored.
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from pyieti.linalg.operators import Operator

from .blocks import _as_csr, _as_index_array, schur_complement_of
from .types import IndexArray, SparseLike


def _pruned_csc(B) -> sp.csc_matrix:
    """Return a CSC copy of B without explicitly stored zeros."""
    Bc = sp.csc_matrix(_as_csr(B, "B"), copy=True)
    Bc.eliminate_zeros()
    return Bc


def skeleton_dofs(jump_matrix: SparseLike) -> IndexArray:
    """Return the sorted column indices of `jump_matrix` with a nonzero entry.

    Parameters
    ----------
    jump_matrix
        Sparse jump matrix B (n_multipliers x n_local_dofs).

    Returns
    -------
    dofs
        int32 array, sorted ascending. Columns that are entirely zero are excluded.
    """
    Bc = _pruned_csc(jump_matrix)
    return np.flatnonzero(np.diff(Bc.indptr)).astype(np.int32)


def column_multiplicity(jump_matrix) -> np.ndarray:
    """Return, for every column of `jump_matrix`, the number of rows with a nonzero in it."""
    Bc = _pruned_csc(jump_matrix)
    return np.diff(Bc.indptr).astype(np.int32)


def restrict_jump_matrix(jump_matrix: SparseLike, dofs) -> sp.csr_matrix:
    """Restrict `jump_matrix` to the columns `dofs`.

    Column ``dofs[i]`` of the input becomes column ``i`` of the result; all other
    columns are dropped. The number of rows is unchanged.
    """
    B = _as_csr(jump_matrix, "jump_matrix")
    idx = _as_index_array(dofs, B.shape[1])
    if idx.size == 0:
        return sp.csr_matrix((B.shape[0], 0), dtype=B.dtype)
    return sp.csc_matrix(B)[:, idx].tocsr()


def restrict_to_skeleton(
    jump_matrix,
    local_matrix,
    dofs=None,
    *,
    factorization: str = "splu",
) -> tuple[sp.csr_matrix, Operator]:
    """Restrict a subdomain's jump matrix and stiffness matrix to its skeleton.

    Parameters
    ----------
    jump_matrix
        Jump matrix B_k of the subdomain.
    local_matrix
        Local stiffness matrix A_k (square, columns aligned with B_k's columns).
    dofs
        Skeleton dofs to keep. Defaults to `skeleton_dofs(jump_matrix)`.
    factorization
        Factorization used for the eliminated interior block.

    Returns
    -------
    (jump, schur)
        The restricted jump matrix and the Schur complement operator of A_k on
        `dofs`, ready for `ScaledDirichletBuilder.add_subdomain`.
    """
    if local_matrix.shape[0] != jump_matrix.shape[1]:
        raise ValueError(
            f"local matrix has {local_matrix.shape[0]} rows but the jump matrix "
            f"has {jump_matrix.shape[1]} columns"
        )
    if dofs is None:
        dofs = skeleton_dofs(jump_matrix)
    return (
        restrict_jump_matrix(jump_matrix, dofs),
        schur_complement_of(local_matrix, dofs, factorization=factorization),
    )
