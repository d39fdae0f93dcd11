"""Linear operator abstraction."""
from .operators import (
    Operator,
    MatrixOperator,
    WrappedOperator,
    InverseOperator,
    SumOperator,
    ProductOperator,
    AdditiveOperator,
    as_operator,
    operator_diagonal,
)

__all__ = [
    'Operator',
    'MatrixOperator',
    'WrappedOperator',
    'InverseOperator',
    'SumOperator',
    'ProductOperator',
    'AdditiveOperator',
    'as_operator',
    'operator_diagonal',
]
