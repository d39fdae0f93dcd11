"""Composable linear operators.

Every operator is a `scipy.sparse.linalg.LinearOperator`, so it can be handed to
SciPy's iterative solvers unchanged, and additionally exposes the small uniform
interface used throughout pyieti:

    op.apply(x) -> y      with  y.size == op.rows()  and  x.size == op.cols()

Leaf operators
--------------
MatrixOperator
    Wraps a sparse or dense matrix.
InverseOperator
    Factorizes a square matrix once and applies (a multiple of) its inverse.
WrappedOperator
    Adapts any other SciPy `LinearOperator`.

Composite operators
-------------------
SumOperator
    ``Sum(A, B, ...).apply(x) = A.apply(x) + B.apply(x) + ...``
ProductOperator
    ``Product(A, B, C).apply(x) = A.apply(B.apply(C.apply(x)))``
AdditiveOperator
    ``Additive({(T_k, Op_k)}).apply(x) = sum_k T_k^T Op_k.apply(T_k x)``

Composites only hold references to their parts; the same operator may be shared
between several composites and the caller.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from itertools import repeat
from typing import Iterable

import numpy as np
import scipy.linalg as la
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator, splu

from pyieti.exceptions import SingularBlock


def _asfptype(A):
    """Return A with a floating point (or complex) dtype."""
    if A.dtype.kind in "fc":
        return A
    return A.astype(np.float64)


def _result_dtype(*dtypes):
    return np.result_type(*dtypes, np.float64)


class Operator(LinearOperator):
    """Base class of all pyieti operators."""

    def rows(self) -> int:
        return int(self.shape[0])

    def cols(self) -> int:
        return int(self.shape[1])

    def apply(self, x):
        """Apply the operator to a vector of length `cols()`."""
        return self.matvec(x)


class MatrixOperator(Operator):
    """Operator that multiplies with a stored (sparse or dense) matrix."""

    def __init__(self, matrix):
        if sp.issparse(matrix):
            matrix = _asfptype(matrix.tocsr())
        else:
            matrix = np.asarray(matrix)
            if matrix.ndim != 2:
                raise ValueError(f"expected a 2D matrix, got ndim={matrix.ndim}")
            matrix = _asfptype(matrix)
        self.matrix = matrix
        super().__init__(matrix.dtype, matrix.shape)

    def _matvec(self, x):
        return self.matrix @ np.ravel(x)

    def _adjoint(self):
        return MatrixOperator(self.matrix.conj().T)


class WrappedOperator(Operator):
    """Adapter for a SciPy `LinearOperator` that is not a pyieti operator."""

    def __init__(self, op: LinearOperator):
        self.op = op
        super().__init__(op.dtype if op.dtype is not None else np.float64, op.shape)

    def _matvec(self, x):
        return self.op.matvec(np.ravel(x))


class InverseOperator(Operator):
    """Applies ``scale * A^{-1}`` using a factorization computed once.

    Parameters
    ----------
    A
        Square matrix (sparse or dense).
    factorization
        ``"splu"``: sparse LU (`scipy.sparse.linalg.splu`), works for any
        nonsingular matrix.
        ``"cholesky"``: dense Cholesky (`scipy.linalg.cho_factor`); requires a
        symmetric positive definite matrix and is meant for small blocks.
    scale
        Scalar factor applied to the solution.

    Raises
    ------
    SingularBlock
        If the factorization fails or the matrix is numerically rank deficient
        (smallest LU pivot at or below machine epsilon times the largest,
        independent of the size of the matrix).
    """

    def __init__(self, A, factorization: str = "splu", scale: float = 1.0):
        if factorization not in ("splu", "cholesky"):
            raise ValueError(f"Invalid factorization: {factorization!r}")
        if A.shape[0] != A.shape[1]:
            raise ValueError(f"expected square matrix, got shape {A.shape}")

        self.factorization = factorization
        self.scale = scale
        n = A.shape[0]
        A = _asfptype(A)

        if n == 0:
            self._solve = lambda b: np.zeros(0, dtype=A.dtype)
        elif factorization == "splu":
            A = sp.csc_matrix(A)
            try:
                lu = splu(A)
            except RuntimeError as exc:
                raise SingularBlock(f"sparse LU factorization failed: {exc}") from exc
            # relative pivot tolerance, independent of n
            pivots = np.abs(lu.U.diagonal())
            if not np.all(np.isfinite(pivots)) or (
                pivots.min() <= np.finfo(pivots.dtype).eps * pivots.max()
            ):
                raise SingularBlock(
                    f"matrix of size {n} is numerically singular "
                    f"(pivot ratio {pivots.min() / pivots.max():.2e})"
                )
            self._solve = lu.solve
        else:
            dense = A.toarray() if sp.issparse(A) else np.asarray(A)
            try:
                factor = la.cho_factor(dense, lower=True)
            except la.LinAlgError as exc:
                raise SingularBlock(f"Cholesky factorization failed: {exc}") from exc
            self._solve = lambda b: la.cho_solve(factor, b)

        super().__init__(A.dtype, (n, n))

    def _matvec(self, x):
        y = self._solve(np.ravel(x))
        if self.scale != 1.0:
            y = self.scale * y
        return y


class SumOperator(Operator):
    """Sum of operators of identical shape."""

    def __init__(self, *ops):
        if not ops:
            raise ValueError("SumOperator needs at least one operator")
        ops = tuple(as_operator(op) for op in ops)
        shape = ops[0].shape
        for op in ops[1:]:
            if op.shape != shape:
                raise ValueError(f"cannot add operators of shapes {shape} and {op.shape}")
        self.ops = ops
        super().__init__(_result_dtype(*(op.dtype for op in ops)), shape)

    def _matvec(self, x):
        x = np.ravel(x)
        y = self.ops[0].apply(x)
        for op in self.ops[1:]:
            y = y + op.apply(x)
        return y

    def _adjoint(self):
        return SumOperator(*(op.H for op in self.ops))


class ProductOperator(Operator):
    """Product of operators, applied from right to left."""

    def __init__(self, *ops):
        if not ops:
            raise ValueError("ProductOperator needs at least one operator")
        ops = tuple(as_operator(op) for op in ops)
        for left, right in zip(ops[:-1], ops[1:]):
            if left.shape[1] != right.shape[0]:
                raise ValueError(
                    f"cannot multiply operators of shapes {left.shape} and {right.shape}"
                )
        self.ops = ops
        super().__init__(
            _result_dtype(*(op.dtype for op in ops)), (ops[0].shape[0], ops[-1].shape[1])
        )

    def _matvec(self, x):
        y = np.ravel(x)
        for op in reversed(self.ops):
            y = op.apply(y)
        return y

    def _adjoint(self):
        return ProductOperator(*(op.H for op in reversed(self.ops)))


class AdditiveOperator(Operator):
    """Sum of local contributions transferred into a shared global space.

    ``apply(x) = sum_k T_k^T Op_k.apply(T_k x)``

    Parameters
    ----------
    transfers
        Sparse transfer matrices ``T_k`` of shape (n_k, n), mapping the global
        space onto the local space of contribution k.
    operators
        Local operators ``Op_k`` of shape (n_k, n_k).
    n_workers
        If larger than one, the local contributions are evaluated on a thread
        pool with this many workers; the sum is always formed in the calling
        thread.
    """

    def __init__(self, transfers: Iterable, operators: Iterable, n_workers: int | None = None):
        transfers = tuple(_asfptype(sp.csr_matrix(T)) for T in transfers)
        operators = tuple(as_operator(op) for op in operators)
        if len(transfers) != len(operators):
            raise ValueError(
                f"got {len(transfers)} transfer matrices but {len(operators)} operators"
            )
        if not transfers:
            raise ValueError("AdditiveOperator needs at least one contribution")
        if n_workers is not None and n_workers < 1:
            raise ValueError(f"n_workers must be positive, got {n_workers}")

        n = transfers[0].shape[1]
        for k, (T, op) in enumerate(zip(transfers, operators)):
            if T.shape[1] != n:
                raise ValueError(
                    f"transfer {k} has {T.shape[1]} columns, expected {n}"
                )
            if op.shape != (T.shape[0], T.shape[0]):
                raise ValueError(
                    f"operator {k} has shape {op.shape}, expected {(T.shape[0], T.shape[0])}"
                )

        self.transfers = transfers
        self.operators = operators
        self.n_workers = n_workers
        self._transposed = tuple(T.T.tocsr() for T in transfers)
        dtype = _result_dtype(*(T.dtype for T in transfers), *(op.dtype for op in operators))
        super().__init__(dtype, (n, n))

    def __len__(self) -> int:
        return len(self.operators)

    def _contribution(self, k: int, x):
        return self._transposed[k] @ self.operators[k].apply(self.transfers[k] @ x)

    def _matvec(self, x):
        x = np.ravel(x)
        indices = range(len(self.operators))
        y = np.zeros(self.shape[0], dtype=np.result_type(self.dtype, x.dtype))
        if self.n_workers is not None and self.n_workers > 1 and len(indices) > 1:
            with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                parts = list(pool.map(self._contribution, indices, repeat(x)))
        else:
            parts = (self._contribution(k, x) for k in indices)
        for part in parts:
            y += part
        return y

    def _adjoint(self):
        return AdditiveOperator(
            self.transfers, [op.H for op in self.operators], n_workers=self.n_workers
        )


def as_operator(obj) -> Operator:
    """Return `obj` as a pyieti `Operator`.

    Accepts pyieti operators (returned as is), SciPy sparse matrices/arrays,
    dense 2D arrays and arbitrary SciPy `LinearOperator` objects.
    """
    if isinstance(obj, Operator):
        return obj
    if sp.issparse(obj) or isinstance(obj, np.ndarray):
        return MatrixOperator(obj)
    if isinstance(obj, LinearOperator):
        return WrappedOperator(obj)
    raise TypeError(f"cannot interpret {type(obj).__name__} as a linear operator")


def operator_diagonal(op, block_size: int = 64) -> np.ndarray:
    """Return the diagonal of a square operator.

    Matrix operators read the stored diagonal; everything else is probed with
    blocks of unit vectors.
    """
    op = as_operator(op)
    n = op.rows()
    if op.cols() != n:
        raise ValueError(f"expected square operator, got shape {op.shape}")
    if isinstance(op, MatrixOperator):
        return np.asarray(op.matrix.diagonal())

    diag = np.zeros(n, dtype=op.dtype)
    for start in range(0, n, block_size):
        stop = min(start + block_size, n)
        E = np.zeros((n, stop - start), dtype=op.dtype)
        E[np.arange(start, stop), np.arange(stop - start)] = 1.0
        Y = op.matmat(E)
        diag[start:stop] = np.asarray(Y)[np.arange(start, stop), np.arange(stop - start)]
    return diag
