"""Error taxonomy shared by the domain decomposition and Krylov modules."""

from __future__ import annotations

import numpy as np


class IetiError(Exception):
    """Base class for errors raised by pyieti."""


class StructuralMismatch(IetiError, ValueError):
    """Jump matrices (or jump matrix and local operator) have incompatible sizes."""


class SingularBlock(IetiError, np.linalg.LinAlgError):
    """A block that has to be factorized is singular or not positive definite."""


class NumericalBreakdown(IetiError, ArithmeticError):
    """A Krylov iteration broke down more often than its restart budget allows."""


class InvalidConfiguration(IetiError, RuntimeError):
    """An operation was requested before its preconditions were met."""


class NonConvergenceWarning(UserWarning):
    """An iterative solver reached its iteration cap without converging."""
