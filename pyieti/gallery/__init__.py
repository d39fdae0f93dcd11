"""Model problems for testing and benchmarking."""
from .laplace import DecomposedProblem, interval_problem, square_problem

__all__ = ['DecomposedProblem', 'interval_problem', 'square_problem']
