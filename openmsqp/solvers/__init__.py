"""QP subproblem solvers.

- ``"condensing"``: :class:`CondensingQPSolver`, state elimination followed by
  a dense primal-dual interior-point method.
- ``"cvxpy"``: :class:`CvxpyQPSolver`, the full sparse QP through CVXPy.
"""

from openmsqp.config import QPConfig
from openmsqp.solvers.base import QPSolution, QPSolver
from openmsqp.solvers.condensing import CondensingQPSolver
from openmsqp.solvers.cvxpy import CvxpyQPSolver
from openmsqp.solvers.interior_point import DenseQPResult, solve_dense_qp

QP_SOLVERS = {
    "condensing": CondensingQPSolver,
    "cvxpy": CvxpyQPSolver,
}


def get_qp_solver(config: QPConfig) -> QPSolver:
    solver_class = QP_SOLVERS.get(config.kind)
    if solver_class is None:
        raise ValueError(f"Unknown QP solver kind: {config.kind}")
    return solver_class(config)


__all__ = [
    "CondensingQPSolver",
    "CvxpyQPSolver",
    "DenseQPResult",
    "QPSolution",
    "QPSolver",
    "get_qp_solver",
    "solve_dense_qp",
]
