"""Base class for QP subproblem solvers.

A QP solver takes the :class:`~openmsqp.nlp.qp.StructuredQP` assembled at the
current iterate and returns the step together with the multipliers of every
constraint of the QP, in the sign convention of the NLP Lagrangian::

    L = F + λᵀ(x+ - s_next) + νᵀc + μᵀz

Two-sided rows carry a single multiplier: positive when the upper bound is
active, negative when the lower bound is active.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

import numpy as np

from openmsqp.config import QPConfig
from openmsqp.nlp.qp import StructuredQP


@dataclass
class QPSolution:
    """Step and multipliers of a solved QP subproblem.

    Attributes:
        dz (np.ndarray): Step, shape ``(n_z,)``
        continuity (np.ndarray): Continuity multipliers, shape ``(N, n_x)``
        rows (list): Node-row multipliers, one array per node
        bounds (np.ndarray): Box multipliers, shape ``(n_z,)``
        iterations (int): Iterations of the underlying solver
        objective (float): QP objective at ``dz``
    """

    dz: np.ndarray
    continuity: np.ndarray
    rows: List[np.ndarray]
    bounds: np.ndarray
    iterations: int = 0
    objective: float = 0.0

    def max_multiplier(self) -> float:
        parts = [np.abs(self.continuity).ravel(), np.abs(self.bounds)]
        parts.extend(np.abs(r) for r in self.rows)
        flat = np.concatenate(parts)
        return float(flat.max()) if flat.size else 0.0


class QPSolver(ABC):
    """Abstract base class for QP subproblem solvers.

    Example:
        Implementing a custom solver::

            class MySolver(QPSolver):
                def solve(self, qp):
                    dz, lam, nu, mu = my_qp(qp.to_dense())
                    return QPSolution(dz, lam, qp.split_rows(nu), mu)
    """

    def __init__(self, config: QPConfig):
        self.config = config

    @abstractmethod
    def solve(self, qp: StructuredQP) -> QPSolution:
        """Solve the QP subproblem.

        Raises:
            QPInfeasible: The linearized constraints are contradictory. The
                exception names the most-violated row.
        """
        ...

    @abstractmethod
    def citation(self) -> List[str]:
        """Return BibTeX citations for this solver."""
        ...
