"""Typed data containers used by the scaled-Dirichlet preconditioner.

Containers
----------
SdpConfig
    Setup options of the preconditioner (scaling policy, factorization of the
    interior blocks, thread pool size, diagnostics).

MatrixBlocks
    The four blocks of a local stiffness matrix partitioned into kept
    (skeleton) and eliminated (interior) indices:
      - A00 : kept x kept
      - A01 : kept x interior
      - A10 : interior x kept
      - A11 : interior x interior
    together with the index arrays `dofs` (kept, in the given order) and
    `interior` (ascending).

Subdomains
    Per-subdomain registration slots of the builder:
      - jump_matrices[k] : skeleton-restricted jump matrix B_k (CSR)
      - schur_ops[k]     : local Schur complement operator S_k
      - scaling[k]       : positive weights per skeleton dof (None until set)

Invariants
----------
- All index arrays are stored as int32 numpy arrays.
- `jump_matrices[k].shape[1] == schur_ops[k].shape[0] == schur_ops[k].shape[1]`.
- All jump matrices have the same number of rows (Lagrange multipliers).
- `scaling[k]`, once set, is strictly positive with one entry per column of B_k.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix, sparray, spmatrix

from pyieti.linalg.operators import Operator

SparseLike = spmatrix | sparray
IndexArray = NDArray[np.int32]

SCALINGS = ("multiplicity", "deluxe")
FACTORIZATIONS = ("splu", "cholesky")


@dataclass(slots=True, frozen=True)
class SdpConfig:
    """Setup options for the scaled-Dirichlet preconditioner.

    Attributes
    ----------
    scaling : str
        ``"multiplicity"`` or ``"deluxe"``.
    factorization : str
        Factorization used for the interior blocks A11: ``"splu"`` or ``"cholesky"``.
    n_workers : int | None
        Thread pool size used when applying additive operators (None = sequential).
    print_info : bool
        Whether to print setup/solve summaries via `sdp.stats`.
    """

    scaling: str = "multiplicity"
    factorization: str = "splu"
    n_workers: int | None = None
    print_info: bool = False

    def __post_init__(self):
        if self.scaling not in SCALINGS:
            raise ValueError(f"Invalid scaling: {self.scaling!r}, expected one of {SCALINGS}")
        if self.factorization not in FACTORIZATIONS:
            raise ValueError(
                f"Invalid factorization: {self.factorization!r}, expected one of {FACTORIZATIONS}"
            )
        if self.n_workers is not None and self.n_workers < 1:
            raise ValueError(f"n_workers must be positive, got {self.n_workers}")


@dataclass(slots=True)
class MatrixBlocks:
    """Partition of a square sparse matrix by kept vs. eliminated indices."""

    A00: csr_matrix
    A01: csr_matrix
    A10: csr_matrix
    A11: csr_matrix
    dofs: IndexArray
    interior: IndexArray

    @property
    def n_kept(self) -> int:
        """Number of kept indices (size of A00)."""
        return int(self.dofs.size)

    @property
    def n_interior(self) -> int:
        """Number of eliminated indices (size of A11)."""
        return int(self.interior.size)


@dataclass(slots=True)
class Subdomains:
    """Registration slots for all subdomains of one preconditioner."""

    jump_matrices: list[csr_matrix] = field(default_factory=list)
    schur_ops: list[Operator] = field(default_factory=list)
    scaling: list[Optional[np.ndarray]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.jump_matrices)

    def append(self, jump_matrix: csr_matrix, schur_op: Operator) -> None:
        """Append one subdomain with an empty scaling slot."""
        self.jump_matrices.append(jump_matrix)
        self.schur_ops.append(schur_op)
        self.scaling.append(None)

    def skeleton_sizes(self) -> IndexArray:
        """Number of skeleton dofs per subdomain."""
        return np.array([B.shape[1] for B in self.jump_matrices], dtype=np.int32)
