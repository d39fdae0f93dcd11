"""IETI/FETI dual domain decomposition with scaled Dirichlet preconditioning."""
from . import scaled_dirichlet
from .dual import DualSystem
from .scaled_dirichlet import (
    ScaledDirichletBuilder,
    ScaledDirichletPreconditioner,
    scaled_dirichlet_solve,
)

__all__ = [
    'scaled_dirichlet',
    'DualSystem',
    'ScaledDirichletBuilder',
    'ScaledDirichletPreconditioner',
    'scaled_dirichlet_solve',
]
