"""End-to-end tests: dual system + scaled Dirichlet preconditioner + BiCGStab.

Optional knobs:
  PYIETI_PRINT_INFO=1   -> passes print_info=True into the refinement studies
                           (run with `pytest -s` to see the summaries)
"""

from __future__ import annotations

import os

import numpy as np
import pytest
import scipy.sparse as sp
from numpy.testing import assert_allclose
from scipy.sparse.linalg import spsolve

from pyieti.exceptions import InvalidConfiguration, StructuralMismatch
from pyieti.gallery import interval_problem, square_problem
from pyieti.ieti import DualSystem, scaled_dirichlet_solve
from pyieti.ieti.sdp.stats import SdpStats
from pyieti.krylov import SolverState

PRINT_INFO = os.environ.get("PYIETI_PRINT_INFO", "0") == "1"


def _interval_exact(x, coefficients=(1.0, 1.0), load=(1.0, 1.0)):
    """Exact solution of -(a u')' = f on (0, 2) with piecewise constant a, f."""
    a1, a2 = coefficients
    f1, f2 = load
    # u = -f1 x^2 / (2 a1) + c1 x on (0, 1),  u = -f2 (x-1)^2 / (2 a2) + c2 (x-1) + u1 on (1, 2)
    # with u(2) = 0 and flux continuity a1 u'(1-) = a2 u'(1+)
    # a2 c2 = a1 c1 - f1,  u1 = c1 - f1 / (2 a1),  u1 + c2 - f2 / (2 a2) = 0
    c1 = (f1 / (2 * a1) + (f1 / a2) + f2 / (2 * a2)) / (1.0 + a1 / a2)
    u1 = c1 - f1 / (2 * a1)
    c2 = (a1 * c1 - f1) / a2
    x = np.asarray(x)
    left = -f1 * x**2 / (2 * a1) + c1 * x
    right = -f2 * (x - 1) ** 2 / (2 * a2) + c2 * (x - 1) + u1
    return np.where(x <= 1.0, left, right)


def _global_solution(problem):
    """Solve the undecomposed system and map it onto every subdomain's dofs."""
    u = spsolve(sp.csc_matrix(problem.global_matrix), problem.global_rhs)
    key = lambda xy: tuple(np.round(np.atleast_1d(xy) * 1e6).astype(np.int64))
    index = {key(xy): i for i, xy in enumerate(problem.global_coordinates)}
    local = []
    for coords in problem.coordinates:
        local.append(np.array([u[index[key(xy)]] for xy in coords]))
    return local


class TestDualSystem:
    def test_interval_operator(self):
        problem = interval_problem(6, coefficients=(1.0, 4.0))
        dual = DualSystem()
        for A, B, f in zip(problem.matrices, problem.jump_matrices, problem.rhs):
            dual.add_subdomain(A, B, f)
        assert dual.n_subdomains == 2
        assert dual.n_lagrange_multipliers() == 1
        F = dual.operator()
        assert_allclose(F.apply(np.array([1.0])), [1.0 + 1.0 / 4.0], rtol=1e-10)

    def test_recovery_with_exact_multiplier(self):
        problem = interval_problem(5)
        dual = DualSystem()
        for A, B, f in zip(problem.matrices, problem.jump_matrices, problem.rhs):
            dual.add_subdomain(A, B, f)
        # F = 2 for unit coefficients
        u1, u2 = dual.local_solutions(dual.rhs() / 2.0)
        assert u1[-1] == pytest.approx(u2[0])
        with pytest.raises(ValueError):
            dual.local_solutions(np.zeros(2))

    def test_errors(self):
        dual = DualSystem()
        with pytest.raises(InvalidConfiguration):
            dual.n_lagrange_multipliers()
        with pytest.raises(InvalidConfiguration):
            dual.operator()

        A = sp.identity(3, format="csr")
        dual.add_subdomain(A, sp.csr_matrix(np.array([[0.0, 0.0, 1.0]])), np.ones(3))
        with pytest.raises(StructuralMismatch):
            dual.add_subdomain(A, sp.csr_matrix(np.ones((2, 3))), np.ones(3))
        with pytest.raises(StructuralMismatch):
            dual.add_subdomain(A, sp.csr_matrix(np.ones((1, 2))), np.ones(3))
        with pytest.raises(ValueError):
            dual.add_subdomain(A, sp.csr_matrix(np.ones((1, 3))), np.ones(2))


class TestIntervalSolve:
    @pytest.mark.parametrize("n", [3, 12, 48])
    def test_refinement(self, n):
        problem = interval_problem(n)
        (u1, u2), result = scaled_dirichlet_solve(
            problem.matrices, problem.jump_matrices, problem.rhs,
            tol=1e-10, print_info=PRINT_INFO,
        )
        assert result.converged
        assert result.n_iter < 10
        assert_allclose(u1, _interval_exact(problem.coordinates[0]), atol=1e-10)
        assert_allclose(u2, _interval_exact(problem.coordinates[1]), atol=1e-10)

    @pytest.mark.parametrize("scaling", ["multiplicity", "deluxe"])
    def test_coefficient_jump(self, scaling):
        coefficients, load = (1.0, 10.0), (1.0, 3.0)
        problem = interval_problem(12, coefficients=coefficients, load=load)
        (u1, u2), result = scaled_dirichlet_solve(
            problem.matrices, problem.jump_matrices, problem.rhs,
            scaling=scaling, tol=1e-12,
        )
        assert result.converged
        assert result.n_iter <= 2
        assert_allclose(u1, _interval_exact(problem.coordinates[0], coefficients, load), atol=1e-10)
        assert_allclose(u2, _interval_exact(problem.coordinates[1], coefficients, load), atol=1e-10)


class TestSquareSolve:
    def test_refinement_keeps_iterations_bounded(self):
        iterations = []
        for n in (4, 8, 16):
            problem = square_problem(n, load=(1.0, 2.0))
            local, result = scaled_dirichlet_solve(
                problem.matrices, problem.jump_matrices, problem.rhs,
                tol=1e-10, print_info=PRINT_INFO,
            )
            assert result.converged
            for u, u_ref in zip(local, _global_solution(problem)):
                assert_allclose(u, u_ref, atol=1e-8)
            iterations.append(result.n_iter)
        assert max(iterations) <= 10
        assert iterations[-1] <= iterations[0] + 3

    @pytest.mark.parametrize("scaling", ["multiplicity", "deluxe"])
    def test_coefficient_jump(self, scaling):
        problem = square_problem(8, coefficients=(1.0, 100.0))
        local, result = scaled_dirichlet_solve(
            problem.matrices, problem.jump_matrices, problem.rhs,
            scaling=scaling, tol=1e-10,
        )
        assert result.converged
        for u, u_ref in zip(local, _global_solution(problem)):
            assert_allclose(u, u_ref, atol=1e-8)

    def test_cholesky_and_workers(self):
        problem = square_problem(6, load=(1.0, 2.0))
        args = (problem.matrices, problem.jump_matrices, problem.rhs)
        ref, ref_result = scaled_dirichlet_solve(*args, tol=1e-10)
        alt, alt_result = scaled_dirichlet_solve(
            *args, tol=1e-10, factorization="cholesky", n_workers=2
        )
        assert alt_result.converged
        assert alt_result.n_iter == ref_result.n_iter
        for u, v in zip(alt, ref):
            assert_allclose(u, v, atol=1e-10)

    def test_initial_guess(self):
        problem = square_problem(5, load=(2.0, 1.0))
        args = (problem.matrices, problem.jump_matrices, problem.rhs)
        _, first = scaled_dirichlet_solve(*args, tol=1e-12)
        _, second = scaled_dirichlet_solve(*args, tol=1e-8, x0=first.x)
        assert second.converged
        assert second.n_iter == 0


class TestDriver:
    def test_diagnostics(self):
        problem = square_problem(4)
        _, result = scaled_dirichlet_solve(problem.matrices, problem.jump_matrices, problem.rhs)
        stats = result.diag["stats"]
        assert isinstance(stats, SdpStats)
        assert stats.n_subdomains == 2
        assert stats.n_multipliers == 3
        for key in ("dual", "skeleton", "schur", "scaling", "assemble", "solve"):
            assert key in stats.timings
        assert stats.extra["skeleton_max"] == 3
        assert stats.extra["scaling"] == "multiplicity"
        assert result.state is SolverState.CONVERGED

    def test_print_info(self, capsys):
        problem = interval_problem(4)
        scaled_dirichlet_solve(
            problem.matrices, problem.jump_matrices, problem.rhs, print_info=True
        )
        out = capsys.readouterr().out
        assert "subdomains=2" in out
        assert "solve: state=converged" in out

    def test_silent_by_default(self, capsys):
        problem = interval_problem(4)
        scaled_dirichlet_solve(problem.matrices, problem.jump_matrices, problem.rhs)
        assert capsys.readouterr().out == ""

    def test_invalid_arguments(self):
        problem = interval_problem(4)
        args = (problem.matrices, problem.jump_matrices, problem.rhs)
        with pytest.raises(ValueError):
            scaled_dirichlet_solve(*args, scaling="harmonic")
        with pytest.raises(ValueError):
            scaled_dirichlet_solve(*args, factorization="qr")
        with pytest.raises(ValueError):
            scaled_dirichlet_solve(problem.matrices, problem.jump_matrices[:1], problem.rhs)
        with pytest.raises(InvalidConfiguration):
            scaled_dirichlet_solve([], [], [])


class TestGallery:
    def test_interval_sizes(self):
        problem = interval_problem(4)
        assert [A.shape for A in problem.matrices] == [(4, 4), (4, 4)]
        assert [B.shape for B in problem.jump_matrices] == [(1, 4), (1, 4)]
        assert problem.global_matrix.shape == (7, 7)
        assert_allclose(problem.coordinates[0], [0.25, 0.5, 0.75, 1.0])
        assert_allclose(problem.coordinates[1], [1.0, 1.25, 1.5, 1.75])

    def test_interval_global_solution_exact(self):
        problem = interval_problem(8, coefficients=(2.0, 0.5), load=(1.0, -1.0))
        u = spsolve(sp.csc_matrix(problem.global_matrix), problem.global_rhs)
        assert_allclose(u, _interval_exact(problem.global_coordinates, (2.0, 0.5), (1.0, -1.0)), atol=1e-12)

    def test_square_sizes(self):
        n = 4
        problem = square_problem(n, load=(1.0, 2.0))
        assert [A.shape[0] for A in problem.matrices] == [n * (n - 1)] * 2
        assert [B.shape for B in problem.jump_matrices] == [(n - 1, n * (n - 1))] * 2
        assert problem.global_matrix.shape[0] == (2 * n - 1) * (n - 1)
        total = sum(f.sum() for f in problem.rhs)
        assert total == pytest.approx(problem.global_rhs.sum())

    def test_local_matrices_symmetric(self):
        problem = square_problem(3, coefficients=(1.0, 2.0))
        for A in problem.matrices + [problem.global_matrix]:
            assert abs(A - A.T).max() < 1e-14

    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            interval_problem(0)
        with pytest.raises(ValueError):
            square_problem(1)
