"""Tests for the composable linear operators."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp
from numpy.testing import assert_allclose, assert_array_equal
from scipy.sparse.linalg import LinearOperator, aslinearoperator

from pyieti.exceptions import SingularBlock
from pyieti.linalg import (
    AdditiveOperator,
    InverseOperator,
    MatrixOperator,
    ProductOperator,
    SumOperator,
    WrappedOperator,
    as_operator,
    operator_diagonal,
)


def _dense(op) -> np.ndarray:
    return np.column_stack([op.apply(e) for e in np.eye(op.cols())])


def _spd(n: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    R = rng.standard_normal((n, n))
    return R @ R.T + n * np.eye(n)


class TestMatrixOperator:
    def test_sparse_and_dense(self):
        A = np.array([[1.0, 2.0], [3.0, 4.0]])
        x = np.array([1.0, -1.0])
        for M in (A, sp.csr_matrix(A)):
            op = MatrixOperator(M)
            assert op.rows() == 2 and op.cols() == 2
            assert_allclose(op.apply(x), A @ x)

    def test_integer_matrix_becomes_float(self):
        op = MatrixOperator(sp.csr_matrix(np.array([[1, 0], [0, 2]])))
        assert op.dtype == np.float64

    def test_adjoint(self):
        A = np.array([[1.0, 2.0, 0.0], [0.0, 3.0, 4.0]])
        op = MatrixOperator(sp.csr_matrix(A))
        assert op.H.shape == (3, 2)
        assert_allclose(op.H.apply(np.array([1.0, 1.0])), A.T @ [1.0, 1.0])

    def test_rejects_vector(self):
        with pytest.raises(ValueError):
            MatrixOperator(np.ones(3))

    def test_wrong_length(self):
        op = MatrixOperator(np.eye(3))
        with pytest.raises(ValueError):
            op.apply(np.ones(4))


class TestComposites:
    def test_sum(self):
        A = np.array([[1.0, 2.0], [3.0, 4.0]])
        op = SumOperator(A, sp.identity(2, format="csr"))
        assert_allclose(op.apply(np.array([1.0, 1.0])), [4.0, 8.0])

    def test_product_applies_right_to_left(self):
        P = np.array([[0.0, 1.0], [1.0, 0.0]])
        D = np.diag([1.0, 2.0])
        x = np.array([1.0, 0.0])
        assert_allclose(ProductOperator(P, D).apply(x), [0.0, 1.0])
        assert_allclose(ProductOperator(D, P).apply(x), [0.0, 2.0])

    def test_product_shape(self):
        op = ProductOperator(np.ones((2, 3)), np.ones((3, 5)))
        assert op.shape == (2, 5)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            SumOperator(np.eye(2), np.eye(3))
        with pytest.raises(ValueError):
            ProductOperator(np.ones((2, 3)), np.ones((2, 3)))
        with pytest.raises(ValueError):
            SumOperator()

    def test_shared_parts(self):
        A = MatrixOperator(_spd(4))
        S = SumOperator(A, A)
        P = ProductOperator(A, A)
        x = np.arange(4.0)
        assert_allclose(S.apply(x), 2 * A.apply(x))
        assert_allclose(P.apply(x), A.apply(A.apply(x)))

    def test_composite_adjoint(self):
        A = np.array([[1.0, 2.0], [0.0, 1.0]])
        B = np.array([[3.0, 0.0], [1.0, 1.0]])
        assert_allclose(_dense(ProductOperator(A, B).H), (A @ B).T)
        assert_allclose(_dense(SumOperator(A, B).H), (A + B).T)

    def test_is_scipy_linear_operator(self):
        op = SumOperator(np.eye(3), np.eye(3))
        assert isinstance(op, LinearOperator)
        assert_allclose(op @ np.ones(3), 2 * np.ones(3))


class TestInverseOperator:
    @pytest.mark.parametrize("factorization", ["splu", "cholesky"])
    def test_solves(self, factorization):
        A = _spd(6)
        b = np.arange(6.0)
        op = InverseOperator(sp.csr_matrix(A), factorization=factorization)
        assert_allclose(op.apply(b), np.linalg.solve(A, b), rtol=1e-10)

    def test_scale(self):
        A = _spd(3, seed=1)
        b = np.ones(3)
        op = InverseOperator(A, scale=-2.0)
        assert_allclose(op.apply(b), -2.0 * np.linalg.solve(A, b), rtol=1e-10)

    def test_singular_splu(self):
        with pytest.raises(SingularBlock):
            InverseOperator(sp.csr_matrix(np.array([[1.0, 1.0], [1.0, 1.0]])))

    def test_indefinite_cholesky(self):
        with pytest.raises(SingularBlock):
            InverseOperator(np.array([[1.0, 2.0], [2.0, 1.0]]), factorization="cholesky")

    def test_large_high_contrast_block_accepted(self):
        n = 20000
        d = np.r_[1e-12, np.ones(n - 1)]
        op = InverseOperator(sp.diags(d, format="csr"))
        b = np.ones(n)
        assert_allclose(op.apply(b), 1.0 / d, rtol=1e-12)

    @pytest.mark.parametrize("factorization", ["splu", "cholesky"])
    def test_high_contrast_same_for_both_factorizations(self, factorization):
        d = np.r_[1e-12, np.ones(499)]
        op = InverseOperator(sp.diags(d, format="csr"), factorization=factorization)
        assert_allclose(op.apply(np.ones(500)), 1.0 / d, rtol=1e-10)

    def test_singular_block_is_linalg_error(self):
        with pytest.raises(np.linalg.LinAlgError):
            InverseOperator(sp.csr_matrix(np.array([[1.0, 2.0], [2.0, 4.0]])))

    def test_empty(self):
        op = InverseOperator(sp.csr_matrix((0, 0)))
        assert op.shape == (0, 0)
        assert op.apply(np.zeros(0)).shape == (0,)

    def test_bad_arguments(self):
        with pytest.raises(ValueError):
            InverseOperator(np.eye(2), factorization="qr")
        with pytest.raises(ValueError):
            InverseOperator(np.ones((2, 3)))


class TestAdditiveOperator:
    def _parts(self, seed=0):
        rng = np.random.default_rng(seed)
        n = 7
        transfers, ops = [], []
        for k, n_k in enumerate((3, 4, 2)):
            cols = rng.choice(n, size=n_k, replace=False)
            T = sp.csr_matrix((rng.choice([-1.0, 1.0], n_k), (np.arange(n_k), cols)), shape=(n_k, n))
            transfers.append(T)
            ops.append(MatrixOperator(_spd(n_k, seed=k)))
        return transfers, ops

    def test_matches_dense_sum(self):
        transfers, ops = self._parts()
        op = AdditiveOperator(transfers, ops)
        expected = sum(T.T.toarray() @ op_k.matrix @ T.toarray() for T, op_k in zip(transfers, ops))
        assert len(op) == 3
        assert_allclose(_dense(op), expected, rtol=1e-12)

    def test_parallel_equals_sequential(self):
        transfers, ops = self._parts(seed=3)
        x = np.linspace(-1.0, 1.0, 7)
        seq = AdditiveOperator(transfers, ops).apply(x)
        par = AdditiveOperator(transfers, ops, n_workers=2).apply(x)
        assert_allclose(par, seq, rtol=1e-14, atol=1e-14)

    def test_adjoint_of_symmetric_parts(self):
        transfers, ops = self._parts(seed=5)
        op = AdditiveOperator(transfers, ops)
        assert_allclose(_dense(op.H), _dense(op).T, rtol=1e-12)

    def test_errors(self):
        transfers, ops = self._parts()
        with pytest.raises(ValueError):
            AdditiveOperator(transfers, ops[:2])
        with pytest.raises(ValueError):
            AdditiveOperator([], [])
        with pytest.raises(ValueError):
            AdditiveOperator(transfers, ops[::-1])
        with pytest.raises(ValueError):
            AdditiveOperator(transfers, ops, n_workers=0)


class TestHelpers:
    def test_as_operator(self):
        op = MatrixOperator(np.eye(2))
        assert as_operator(op) is op
        assert isinstance(as_operator(np.eye(2)), MatrixOperator)
        assert isinstance(as_operator(sp.identity(2)), MatrixOperator)
        wrapped = as_operator(aslinearoperator(np.eye(2)))
        assert isinstance(wrapped, WrappedOperator)
        assert_allclose(wrapped.apply(np.array([1.0, 2.0])), [1.0, 2.0])
        with pytest.raises(TypeError):
            as_operator("not an operator")

    def test_operator_diagonal(self):
        A = _spd(7, seed=2)
        B = _spd(7, seed=4)
        op = SumOperator(A, ProductOperator(B, np.eye(7)))
        assert_allclose(operator_diagonal(op, block_size=3), np.diag(A + B), rtol=1e-12)
        assert_array_equal(operator_diagonal(MatrixOperator(sp.diags([1.0, 2.0]))), [1.0, 2.0])

    def test_operator_diagonal_rectangular(self):
        with pytest.raises(ValueError):
            operator_diagonal(np.ones((2, 3)))
