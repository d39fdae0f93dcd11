"""Two-subdomain Laplace model problems.

Both problems discretize  -div(a grad u) = f  with homogeneous Dirichlet
conditions on the outer boundary by linear finite elements on a uniform mesh,
split into a left and a right subdomain of unit width. The coefficient a and
the load f are constant on each subdomain. Interface dofs are duplicated, and
one Lagrange multiplier per interface dof enforces continuity:

    B_left[r, interface dof r]  = +1
    B_right[r, interface dof r] = -1

Every local stiffness matrix is nonsingular because each subdomain touches the
Dirichlet boundary. The assembled global system is returned as well, so the
decomposed solution can be compared with a direct solve.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp


@dataclass
class DecomposedProblem:
    """Local data of a decomposed problem plus the global reference system.

    Attributes
    ----------
    matrices, jump_matrices, rhs
        Per-subdomain stiffness matrices, jump matrices and load vectors.
    coordinates
        Per-subdomain node coordinates of the free dofs, shape (n_k,) in 1D
        and (n_k, 2) in 2D.
    global_matrix, global_rhs, global_coordinates
        The undecomposed system on the whole domain.
    """

    matrices: list[sp.csr_matrix]
    jump_matrices: list[sp.csr_matrix]
    rhs: list[np.ndarray]
    coordinates: list[np.ndarray]
    global_matrix: sp.csr_matrix
    global_rhs: np.ndarray
    global_coordinates: np.ndarray


def _assemble(n_nodes, elements, K_local, f_local, fixed):
    """Assemble element contributions and eliminate the `fixed` nodes.

    `K_local` is (nloc, nloc) or one matrix per element; `f_local` is (nloc,)
    or one row per element. Returns the reduced matrix, load vector and a
    node -> free index map (-1 if fixed).
    """
    free_index = np.full(n_nodes, -1, dtype=np.int64)
    free = np.flatnonzero(~fixed)
    free_index[free] = np.arange(free.size)

    n_el, nloc = elements.shape
    K_local = np.broadcast_to(K_local, (n_el, nloc, nloc))
    f_local = np.broadcast_to(f_local, (n_el, nloc))
    rows = np.repeat(elements, nloc, axis=1).ravel()
    cols = np.tile(elements, (1, nloc)).ravel()
    A = sp.coo_matrix((K_local.ravel(), (rows, cols)), shape=(n_nodes, n_nodes)).tocsr()
    f = np.zeros(n_nodes)
    np.add.at(f, elements.ravel(), f_local.ravel())

    A = A[free, :][:, free].tocsr()
    A.sum_duplicates()
    return A, f[free], free_index


def _piecewise(values, centroids):
    """Per-element value: values[0] left of x = 1, values[1] right of it."""
    left, right = values
    return np.where(centroids < 1.0, left, right)


def _interval(x0, n, h, fix_left, fix_right, coefficients, load):
    x = x0 + h * np.arange(n + 1)
    elements = np.column_stack([np.arange(n), np.arange(1, n + 1)])
    centroids = x[:-1] + h / 2
    a = _piecewise(coefficients, centroids)
    K = a[:, None, None] * (np.array([[1.0, -1.0], [-1.0, 1.0]]) / h)
    f = _piecewise(load, centroids)[:, None] * np.full(2, h / 2)
    fixed = np.zeros(n + 1, dtype=bool)
    fixed[0] = fix_left
    fixed[n] = fix_right
    A, f, free_index = _assemble(n + 1, elements, K, f, fixed)
    return A, f, x[free_index >= 0], free_index


def interval_problem(n_elements: int, coefficients=(1.0, 1.0), load=(1.0, 1.0)) -> DecomposedProblem:
    """-(a u')' = f on (0, 2), u(0) = u(2) = 0, split at x = 1.

    Each subdomain has `n_elements` elements and `n_elements` free dofs; the
    single multiplier couples the two copies of the dof at x = 1. The
    coefficient a and the load f are constant per subdomain, given as
    (left, right) pairs. Linear elements are nodally exact in 1D, so the
    discrete solution interpolates the exact one; for the defaults it is
    u(x) = x (2 - x) / 2.
    """
    n = int(n_elements)
    if n < 1:
        raise ValueError(f"n_elements must be positive, got {n}")
    h = 1.0 / n

    A1, f1, x1, idx1 = _interval(0.0, n, h, True, False, coefficients, load)
    A2, f2, x2, idx2 = _interval(1.0, n, h, False, True, coefficients, load)

    B1 = sp.csr_matrix(([1.0], ([0], [idx1[n]])), shape=(1, A1.shape[0]))
    B2 = sp.csr_matrix(([-1.0], ([0], [idx2[0]])), shape=(1, A2.shape[0]))

    A, f, x, _ = _interval(0.0, 2 * n, h, True, True, coefficients, load)

    return DecomposedProblem(
        matrices=[A1, A2],
        jump_matrices=[B1, B2],
        rhs=[f1, f2],
        coordinates=[x1, x2],
        global_matrix=A,
        global_rhs=f,
        global_coordinates=x,
    )


def _grid(x0, nx, ny, h, fix_left, fix_right, coefficients, load):
    nodes = np.arange((nx + 1) * (ny + 1)).reshape(ny + 1, nx + 1)
    p00 = nodes[:-1, :-1].ravel()
    p10 = nodes[:-1, 1:].ravel()
    p01 = nodes[1:, :-1].ravel()
    p11 = nodes[1:, 1:].ravel()
    # two right triangles per cell, right angle at the first vertex
    elements = np.vstack([
        np.column_stack([p00, p10, p01]),
        np.column_stack([p11, p01, p10]),
    ])

    I, J = np.meshgrid(np.arange(nx + 1), np.arange(ny + 1))
    xy = np.column_stack([x0 + h * I.ravel(), h * J.ravel()])
    centroids = xy[elements, 0].mean(axis=1)

    K_ref = np.array([[1.0, -0.5, -0.5], [-0.5, 0.5, 0.0], [-0.5, 0.0, 0.5]])
    K = _piecewise(coefficients, centroids)[:, None, None] * K_ref
    f = _piecewise(load, centroids)[:, None] * np.full(3, h * h / 6.0)

    fixed = (J == 0) | (J == ny)
    if fix_left:
        fixed |= I == 0
    if fix_right:
        fixed |= I == nx
    fixed = fixed.ravel()

    A, f, free_index = _assemble(nodes.size, elements, K, f, fixed)
    return A, f, xy[free_index >= 0], free_index.reshape(ny + 1, nx + 1)


def square_problem(n: int, coefficients=(1.0, 1.0), load=(1.0, 1.0)) -> DecomposedProblem:
    """-div(a grad u) = f on (0, 2) x (0, 1), u = 0 on the boundary, split at x = 1.

    Each subdomain is a uniform n x n grid of squares, each cut into two P1
    triangles; there are n - 1 multipliers, one per interior interface node.
    `coefficients` and `load` are (left, right) pairs as in `interval_problem`.
    """
    n = int(n)
    if n < 2:
        raise ValueError(f"n must be at least 2, got {n}")
    h = 1.0 / n

    A1, f1, xy1, idx1 = _grid(0.0, n, n, h, True, False, coefficients, load)
    A2, f2, xy2, idx2 = _grid(1.0, n, n, h, False, True, coefficients, load)

    r = np.arange(n - 1)
    j = np.arange(1, n)
    B1 = sp.csr_matrix((np.ones(n - 1), (r, idx1[j, n])), shape=(n - 1, A1.shape[0]))
    B2 = sp.csr_matrix((-np.ones(n - 1), (r, idx2[j, 0])), shape=(n - 1, A2.shape[0]))

    A, f, xy, _ = _grid(0.0, 2 * n, n, h, True, True, coefficients, load)

    return DecomposedProblem(
        matrices=[A1, A2],
        jump_matrices=[B1, B2],
        rhs=[f1, f2],
        coordinates=[xy1, xy2],
        global_matrix=A,
        global_rhs=f,
        global_coordinates=xy,
    )
