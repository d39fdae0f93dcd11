"""Dual domain decomposition solvers: scaled Dirichlet preconditioning and BiCGStab."""
from . import exceptions, gallery, ieti, krylov, linalg
from .ieti import ScaledDirichletBuilder, scaled_dirichlet_solve
from .krylov import bicgstab

__version__ = '0.1.0'

__all__ = [
    'exceptions',
    'gallery',
    'ieti',
    'krylov',
    'linalg',
    'ScaledDirichletBuilder',
    'scaled_dirichlet_solve',
    'bicgstab',
]
