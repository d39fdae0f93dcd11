"""Krylov solvers."""
from ._bicgstab import BiCGStab, bicgstab
from .types import BiCGStabConfig, KrylovResult, SolverState

__all__ = [
    'BiCGStab',
    'bicgstab',
    'BiCGStabConfig',
    'KrylovResult',
    'SolverState',
]
