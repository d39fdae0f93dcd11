"""Scaling weights for the scaled-Dirichlet preconditioner.

Each subdomain k gets one positive weight per skeleton dof; the scaling
operator is D_k = diag(1 / weight_k). Two policies are provided.

Multiplicity scaling
--------------------
    weight_k(c) = 1 + #{rows r of B_k : B_k[r, c] != 0}

i.e. one plus the number of Lagrange multipliers of subdomain k acting on dof c.

Deluxe (stiffness-weighted) scaling
-----------------------------------
Let s_k(c) be the diagonal entry of the local Schur complement S_k at dof c.
Dofs of different subdomains that share a multiplier row are neighbours. Then

    weight_k(c) = 1 + sum_{(l, c') neighbour of (k, c)} s_k(c) / s_l(c')

so that D_k(c) = s_k(c)^{-1} / (s_k(c)^{-1} + sum s_l(c')^{-1}) and the stiffer
subdomain receives the smaller share. Every neighbour dof is counted once, even
if several multipliers connect it to (k, c). If `interfaces` is given, only
neighbours in subdomains l with (k, l) or (l, k) listed in `interfaces`
contribute. With equal diagonals and one multiplier per neighbour pair this
coincides with multiplicity scaling.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Sequence

import numpy as np
import scipy.sparse as sp

from pyieti.exceptions import InvalidConfiguration
from pyieti.linalg.operators import operator_diagonal

from .skeleton import column_multiplicity


def multiplicity_scaling(jump_matrix) -> np.ndarray:
    """Return multiplicity weights (float array, one per column of `jump_matrix`)."""
    return 1.0 + column_multiplicity(jump_matrix).astype(float)


def _neighbour_filter(interfaces: Iterable[tuple[int, int]] | None, n_subdomains: int):
    """Return a predicate deciding whether subdomains k and l may exchange weights."""
    if interfaces is None:
        return lambda k, l: True
    pairs = set()
    for k, l in interfaces:
        if not (0 <= k < n_subdomains and 0 <= l < n_subdomains):
            raise ValueError(f"interface {(k, l)} refers to an unknown subdomain")
        pairs.add((k, l))
        pairs.add((l, k))
    return lambda k, l: (k, l) in pairs


def deluxe_scaling(
    jump_matrices: Sequence,
    schur_ops: Sequence,
    interfaces: Iterable[tuple[int, int]] | None = None,
) -> list[np.ndarray]:
    """Return stiffness-weighted scaling weights for all subdomains.

    Parameters
    ----------
    jump_matrices
        Skeleton-restricted jump matrices B_k (common row count).
    schur_ops
        Local Schur complement operators S_k matching the columns of B_k.
    interfaces
        Optional pairs (k, l) of subdomain indices that share an interface.

    Raises
    ------
    InvalidConfiguration
        If a Schur complement has a nonpositive diagonal entry.
    """
    n_sub = len(jump_matrices)
    allowed = _neighbour_filter(interfaces, n_sub)

    diagonals = []
    for k, op in enumerate(schur_ops):
        d = np.real(operator_diagonal(op))
        if np.any(d <= 0):
            raise InvalidConfiguration(
                f"Schur complement of subdomain {k} has a nonpositive diagonal entry; "
                "deluxe scaling needs positive definite local operators"
            )
        diagonals.append(d)

    # multiplier row -> list of (subdomain, local dof) it acts on
    participants: dict[int, list[tuple[int, int]]] = defaultdict(list)
    for k, B in enumerate(jump_matrices):
        Bc = sp.coo_matrix(B)
        nz = Bc.data != 0
        for r, c in zip(Bc.row[nz], Bc.col[nz]):
            participants[int(r)].append((k, int(c)))

    neighbours: list[defaultdict[int, set]] = [defaultdict(set) for _ in range(n_sub)]
    for members in participants.values():
        for k, c in members:
            for l, c2 in members:
                if l != k and allowed(k, l):
                    neighbours[k][c].add((l, c2))

    weights = []
    for k, d in enumerate(diagonals):
        w = np.ones_like(d)
        for c, others in neighbours[k].items():
            w[c] = 1.0 + sum(d[c] / diagonals[l][c2] for l, c2 in others)
        weights.append(w)
    return weights
