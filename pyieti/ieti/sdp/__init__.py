"""Scaled-Dirichlet preconditioner (SDP) internals.

This package contains the building blocks used by
`pyieti.ieti.scaled_dirichlet`.

Modules
-------
types
    Configuration and data containers (blocks, per-subdomain slots).
blocks
    Block partition of local matrices and lazy Schur complements.
skeleton
    Skeleton dof extraction and restriction of jump matrices.
scaling
    Multiplicity and deluxe scaling weights.
stats
    Timing and diagnostic reporting.
"""

from __future__ import annotations

from . import blocks, scaling, skeleton, stats, types

__all__ = [
    "types",
    "blocks",
    "skeleton",
    "scaling",
    "stats",
]
