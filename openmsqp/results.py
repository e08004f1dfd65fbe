"""Results contract of a shooting solve."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import numpy as np

if TYPE_CHECKING:
    from openmsqp.algorithms.base import AlgorithmState
    from openmsqp.discretization.grid import DecisionLayout, ShootingGrid
    from openmsqp.model import ValidatedProblem


class SolverStatus(Enum):
    INIT = "INIT"
    ITERATING = "ITERATING"
    CONVERGED = "CONVERGED"
    MAX_ITER_REACHED = "MAX_ITER_REACHED"
    DIVERGED = "DIVERGED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def terminal(self) -> bool:
        return self not in (SolverStatus.INIT, SolverStatus.ITERATING)

    def __str__(self):
        return self.value


@dataclass
class IterationRecord:
    """Diagnostics of one SQP iteration.

    Attributes:
        iteration: Iteration number, starting at 1
        kkt_residual: KKT residual after the iteration
        objective: Objective after the iteration
        infeasibility: Largest constraint violation after the iteration
        step_length: Accepted step length ``alpha``
        merit: Merit value after the iteration
        penalty: Merit penalty weight used by the line search
        qp_iterations: Iterations of the QP solver
        integration_time: Wall time spent integrating, in seconds
        qp_time: Wall time spent in the QP solver, in seconds
        status: Status after the iteration
    """

    iteration: int
    kkt_residual: float
    objective: float
    infeasibility: float
    step_length: float
    merit: float
    penalty: float
    qp_iterations: int = 0
    integration_time: float = 0.0
    qp_time: float = 0.0
    status: SolverStatus = SolverStatus.ITERATING


@dataclass
class OptimizationResults:
    """Solution of an optimal control problem.

    Trajectories are available both as arrays (``x``, ``u``) and per variable
    as ``(time, value)`` sequences (``states``, ``controls``). Every field can
    also be read with mapping-style access, e.g. ``result["objective"]``.

    Attributes:
        status: Final solver status
        iterations: Number of SQP iterations performed
        objective: Objective value at the returned iterate
        kkt_residual: KKT residual at the returned iterate
        infeasibility: Largest constraint violation at the returned iterate
        records: Ordered per-iteration diagnostics
        t_nodes: Shooting node times, shape ``(N+1,)``
        x: State nodes, shape ``(N+1, n_x)``
        u: Controls per interval, shape ``(N, n_u)``
        z: Decision vector
        states: ``name -> [(t_i, value_i), ...]`` over the nodes 0..N
        controls: ``name -> [(t_i, value_i), ...]`` over the intervals 0..N-1
        parameters: ``name -> value`` of the free parameters
        horizon: Horizon length at the returned iterate
        multipliers: Multiplier estimates at the returned iterate
        t_full, x_full, u_full: Dense re-simulation, set by post-processing
    """

    status: SolverStatus
    iterations: int
    objective: float
    kkt_residual: float
    infeasibility: float
    records: List[IterationRecord]
    t_nodes: np.ndarray
    x: np.ndarray
    u: np.ndarray
    z: np.ndarray
    states: Dict[str, List[Tuple[float, np.ndarray]]]
    controls: Dict[str, List[Tuple[float, np.ndarray]]]
    parameters: Dict[str, np.ndarray]
    horizon: float
    multipliers: Any = None
    t_full: Optional[np.ndarray] = None
    x_full: Optional[np.ndarray] = None
    u_full: Optional[np.ndarray] = None
    timing: Dict[str, float] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return self.status == SolverStatus.CONVERGED

    def keys(self) -> List[str]:
        return [f.name for f in fields(self)]

    def __getitem__(self, key: str):
        if key not in self.keys() and key != "converged":
            raise KeyError(key)
        return getattr(self, key)

    def __contains__(self, key) -> bool:
        return key in self.keys()

    def get(self, key: str, default=None):
        try:
            return self[key]
        except KeyError:
            return default

    def state(self, name: str) -> np.ndarray:
        """Node values of state ``name``, shape ``(N+1, dim)``."""
        return np.stack([value for _, value in self.states[name]])

    def control(self, name: str) -> np.ndarray:
        """Interval values of control ``name``, shape ``(N, dim)``."""
        return np.stack([value for _, value in self.controls[name]])


def format_result(
    problem: "ValidatedProblem",
    grid: "ShootingGrid",
    layout: "DecisionLayout",
    state: "AlgorithmState",
    status: SolverStatus,
    z_lower: np.ndarray,
    z_upper: np.ndarray,
) -> OptimizationResults:
    """Package the current iterate of ``state`` as :class:`OptimizationResults`."""
    S, U, p = layout.unpack(state.z)
    t_nodes = grid.node_times(p)
    states = {
        s.name: [(float(t_nodes[i]), S[i, s._slice].copy()) for i in range(layout.N + 1)]
        for s in problem.states
    }
    controls = {
        c.name: [(float(t_nodes[i]), U[i, c._slice].copy()) for i in range(layout.N)]
        for c in problem.controls
    }
    parameters = {q.name: np.asarray(p[q._slice]).copy() for q in problem.parameters}
    evaluation = state.evaluation
    return OptimizationResults(
        status=status,
        iterations=state.k,
        objective=evaluation.objective if evaluation is not None else np.nan,
        kkt_residual=state.kkt,
        infeasibility=evaluation.infeasibility(z_lower, z_upper) if evaluation is not None else np.nan,
        records=list(state.records),
        t_nodes=t_nodes,
        x=np.array(S),
        u=np.array(U),
        z=np.array(state.z),
        states=states,
        controls=controls,
        parameters=parameters,
        horizon=grid.horizon(p),
        multipliers=state.multipliers,
    )
