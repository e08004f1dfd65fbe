"""Base class for the Newton-type algorithms that drive a shooting solve.

This module defines the abstract interface that the SQP engine implements,
along with the :class:`AlgorithmState` dataclass that holds the iterate and
everything the engine mutates between iterations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from openmsqp.results import IterationRecord, SolverStatus

if TYPE_CHECKING:
    from openmsqp.discretization.grid import DecisionLayout
    from openmsqp.nlp.evaluation import Evaluation


@dataclass
class Multipliers:
    """Lagrange multipliers of the shooting NLP.

    Attributes:
        continuity: ``(N, n_x)`` multipliers of ``x_i+ - s_{i+1} = 0``
        rows: One array per node for the point constraints
        bounds: ``(n_z,)`` multipliers of the box bounds on ``z``
    """

    continuity: np.ndarray
    rows: List[np.ndarray]
    bounds: np.ndarray

    @classmethod
    def zeros(cls, layout: "DecisionLayout", row_counts: List[int]) -> "Multipliers":
        return cls(
            continuity=np.zeros((layout.N, layout.n_x)),
            rows=[np.zeros(m) for m in row_counts],
            bounds=np.zeros(layout.n_z),
        )

    def blend(self, target, alpha: float) -> "Multipliers":
        """``self + alpha * (target - self)`` for every multiplier block."""
        return Multipliers(
            continuity=self.continuity + alpha * (target.continuity - self.continuity),
            rows=[r + alpha * (t - r) for r, t in zip(self.rows, target.rows)],
            bounds=self.bounds + alpha * (target.bounds - self.bounds),
        )

    def max_abs(self) -> float:
        parts = [np.abs(self.continuity).ravel(), np.abs(self.bounds)]
        parts.extend(np.abs(r) for r in self.rows)
        flat = np.concatenate(parts)
        return float(flat.max()) if flat.size else 0.0


@dataclass
class AlgorithmState:
    """Mutable state of the SQP iteration.

    A fresh instance is created for each solve by
    :meth:`Algorithm.start`, enabling easy reset functionality. Only the
    algorithm mutates it.

    Attributes:
        k: Number of completed iterations
        z: Current iterate
        multipliers: Current multiplier estimates
        penalty: L1 merit penalty weight
        merit: Merit value at ``z`` for the current penalty
        alpha: Step length of the last iteration
        kkt: KKT residual at ``z``
        evaluation: NLP evaluation (with derivatives) at ``z``
        status: Current status
        records: One record per completed iteration
    """

    k: int
    z: np.ndarray
    multipliers: Multipliers
    penalty: float
    merit: float = np.inf
    alpha: float = 0.0
    kkt: float = np.inf
    evaluation: Optional["Evaluation"] = None
    status: SolverStatus = SolverStatus.INIT
    records: List[IterationRecord] = field(default_factory=list)

    @property
    def objective(self) -> float:
        return self.evaluation.objective if self.evaluation is not None else np.nan

    @property
    def terminal(self) -> bool:
        return self.status.terminal


class Algorithm(ABC):
    """Abstract base class for the shooting NLP solve loop.

    Example:
        Implementing a custom algorithm::

            class MyAlgorithm(Algorithm):
                def start(self, z0):
                    return AlgorithmState(k=0, z=z0, ...)

                def step(self, state):
                    # Run one iteration, mutate state, return its status
                    return state.status
    """

    @abstractmethod
    def start(self, z0: np.ndarray) -> AlgorithmState:
        """Evaluate the initial iterate and return a fresh state."""
        ...

    @abstractmethod
    def step(self, state: AlgorithmState, full_step: bool = False) -> SolverStatus:
        """Execute one iteration, updating ``state`` in place.

        Args:
            state: Mutable algorithm state
            full_step: Take the full step without globalization

        Returns:
            The status after the iteration.
        """
        ...
