"""Evaluation of the shooting NLP at one iterate.

:class:`NLPEvaluator` integrates every interval (fanned out over a thread
pool), evaluates objective, continuity defects and the point constraints at
the nodes, and, when derivatives are requested, their first derivatives.

Point constraints are grouped per node:

- node 0: INITIAL and PATH rows;
- nodes 1..N-1: PATH rows;
- node N: TERMINAL rows and the PATH rows that do not read the controls.

Every node function takes the element vector ``w_i = (s_i, u_i, p)`` and the
node index, and computes the node time itself so that a free horizon is
differentiated through the time argument as well.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

import jax
import jax.numpy as jnp
import numpy as np

from openmsqp.discretization.grid import DecisionLayout
from openmsqp.dynamics import ShootingDynamics
from openmsqp.integrators.base import Integrator, IntervalResult
from openmsqp.model import ValidatedProblem
from openmsqp.symbolic.constraint import ConstraintRole, LoweredConstraint


class NodeGroup:
    """Stacked point constraints evaluated at one kind of node."""

    def __init__(self, constraints: List[LoweredConstraint], dynamics: ShootingDynamics):
        self.constraints = list(constraints)
        self.size = sum(c.size for c in self.constraints)
        self.lower = np.concatenate([c.lower for c in self.constraints]) if self.constraints else np.zeros(0)
        self.upper = np.concatenate([c.upper for c in self.constraints]) if self.constraints else np.zeros(0)
        self.names = [c.name for c in self.constraints for _ in range(c.size)]
        fns = [c.fn for c in self.constraints]

        def rows(w, node):
            x, u, p = dynamics.split_w(w)
            t = dynamics.time(0.0, p, node)
            return jnp.concatenate([fn(x, u, p, t) for fn in fns])

        if self.size:
            self.rows = jax.jit(rows)
            self.jacobian = jax.jit(jax.jacfwd(rows))
            self.hessian = jax.jit(jax.hessian(lambda w, nu, node: nu @ rows(w, node)))


@dataclass
class Evaluation:
    """Everything the QP assembly and the globalization need at one iterate.

    Attributes:
        z (np.ndarray): The iterate
        S, U, p: Unpacked states ``(N+1, n_x)``, controls ``(N, n_u)``, parameters ``(n_p,)``
        intervals (list): One :class:`IntervalResult` per interval
        objective (float): ``sum(q_i) + M(s_N, p, t0 + T)``
        defects (np.ndarray): ``x_i+ - s_{i+1}``, shape ``(N, n_x)``
        rows (list): Point-constraint values per node
        row_lower, row_upper (list): Their bounds per node
        row_jacobians (list): ``d rows / d w_i`` per node, shape ``(m_i, n_e)``
        gradient (np.ndarray): Objective gradient with respect to ``z``
        mayer_gradient (np.ndarray): Mayer gradient with respect to ``w_N``
        derivatives (bool): Whether first derivatives were computed
    """

    z: np.ndarray
    S: np.ndarray
    U: np.ndarray
    p: np.ndarray
    intervals: List[IntervalResult]
    objective: float
    defects: np.ndarray
    rows: List[np.ndarray]
    row_lower: List[np.ndarray]
    row_upper: List[np.ndarray]
    row_jacobians: Optional[List[np.ndarray]] = None
    gradient: Optional[np.ndarray] = None
    mayer_gradient: Optional[np.ndarray] = None
    derivatives: bool = False

    @property
    def N(self) -> int:
        return len(self.intervals)

    def row_violations(self) -> List[np.ndarray]:
        return [
            np.maximum(np.maximum(lo - c, c - up), 0.0)
            for c, lo, up in zip(self.rows, self.row_lower, self.row_upper)
        ]

    def infeasibility(self, z_lower: np.ndarray, z_upper: np.ndarray) -> float:
        """Largest violation of continuity, point constraints and box bounds."""
        parts = [np.abs(self.defects).ravel()]
        parts.extend(self.row_violations())
        parts.append(np.maximum(np.maximum(z_lower - self.z, self.z - z_upper), 0.0))
        flat = np.concatenate([np.ravel(part) for part in parts])
        return float(flat.max()) if flat.size else 0.0

    def violation_l1(self, z_lower: np.ndarray, z_upper: np.ndarray) -> float:
        """L1 norm of the constraint violation entering the merit function."""
        total = float(np.abs(self.defects).sum())
        total += float(sum(v.sum() for v in self.row_violations()))
        total += float(np.maximum(np.maximum(z_lower - self.z, self.z - z_upper), 0.0).sum())
        return total


class NLPEvaluator:
    """Evaluates the multiple-shooting NLP.

    Args:
        problem: The validated problem
        dynamics: Shooting right-hand sides
        integrator: Interval integrator
        layout: Decision vector layout
        workers: Threads used for the interval integrations (1 = sequential)
    """

    def __init__(self, problem: ValidatedProblem, dynamics: ShootingDynamics, integrator: Integrator,
                 layout: DecisionLayout, workers: int = 1):
        self.problem = problem
        self.dynamics = dynamics
        self.integrator = integrator
        self.layout = layout
        self.workers = workers
        N = layout.N

        initial = problem.constraints_with_role(ConstraintRole.INITIAL)
        terminal = problem.constraints_with_role(ConstraintRole.TERMINAL)
        path = problem.constraints_with_role(ConstraintRole.PATH)
        self.first = NodeGroup(initial + path, dynamics)
        self.mid = NodeGroup(path, dynamics)
        self.last = NodeGroup(terminal + [c for c in path if not c.uses_control], dynamics)
        self.groups = [self.group(i) for i in range(N + 1)]

        def mayer(w):
            x, _, p = dynamics.split_w(w)
            t = problem.t0 + problem.horizon_length(p)
            return problem.mayer(x, p, t)

        self._mayer = jax.jit(mayer)
        self._mayer_gradient = jax.jit(jax.grad(mayer))
        self._mayer_hessian = jax.jit(jax.hessian(mayer))

    def group(self, i: int) -> NodeGroup:
        if i == 0:
            return self.first
        if i == self.layout.N:
            return self.last
        return self.mid

    @property
    def row_counts(self) -> List[int]:
        return [g.size for g in self.groups]

    def element(self, S, U, p, i: int) -> np.ndarray:
        """``w_i = (s_i, u_i, p)``; node N carries zero controls."""
        u = U[i] if i < self.layout.N else np.zeros(self.layout.n_u)
        return np.concatenate([S[i], u, p])

    def _integrate_all(self, S, U, p, derivatives) -> List[IntervalResult]:
        N = self.layout.N

        def task(i):
            return self.integrator.integrate(S[i].copy(), U[i].copy(), p.copy(), i, derivatives)

        if self.workers <= 1:
            return [task(i) for i in range(N)]
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            return list(pool.map(task, range(N)))

    def evaluate(self, z, derivatives: bool = True) -> Evaluation:
        """Evaluate the NLP at ``z``.

        Raises:
            NumericalFailure, IntegrationDivergence: An interval could not be integrated.
        """
        z = np.asarray(z, dtype=float)
        layout = self.layout
        N = layout.N
        S, U, p = layout.unpack(z)

        intervals = self._integrate_all(S, U, p, derivatives)
        defects = np.stack([intervals[i].x_end - S[i + 1] for i in range(N)])

        w_N = self.element(S, U, p, N)
        objective = float(sum(r.q for r in intervals)) + float(self._mayer(w_N))

        rows, lowers, uppers, jacobians = [], [], [], []
        for i, group in enumerate(self.groups):
            lowers.append(group.lower)
            uppers.append(group.upper)
            if not group.size:
                rows.append(np.zeros(0))
                jacobians.append(np.zeros((0, layout.n_e)))
                continue
            w = self.element(S, U, p, i)
            rows.append(np.asarray(group.rows(w, float(i))))
            if derivatives:
                jacobians.append(np.asarray(group.jacobian(w, float(i))))

        evaluation = Evaluation(
            z=z, S=S, U=U, p=p, intervals=intervals, objective=objective, defects=defects,
            rows=rows, row_lower=lowers, row_upper=uppers, derivatives=derivatives,
        )
        if derivatives:
            evaluation.row_jacobians = jacobians
            evaluation.mayer_gradient = np.asarray(self._mayer_gradient(w_N))
            gradient = np.zeros(layout.n_z)
            for i, result in enumerate(intervals):
                gradient[layout.element_index(i)] += result.dq
            mayer_gradient = evaluation.mayer_gradient.copy()
            mayer_gradient[layout.n_x:layout.n_x + layout.n_u] = 0.0
            gradient[layout.element_index(N)] += mayer_gradient
            evaluation.gradient = gradient
        return evaluation

    # ==================== Second derivatives ====================

    def row_hessian(self, i: int, w, nu) -> np.ndarray:
        group = self.group(i)
        if not group.size:
            return np.zeros((self.layout.n_e, self.layout.n_e))
        return np.asarray(group.hessian(np.asarray(w, float), np.asarray(nu, float), float(i)))

    def mayer_hessian(self, w) -> np.ndarray:
        return np.asarray(self._mayer_hessian(np.asarray(w, float)))


def element_gradients(evaluation: Evaluation, layout: DecisionLayout, lam, nus) -> List[np.ndarray]:
    """Gradients of the element Lagrangians ``q_i + λ_iᵀx_i+ + ν_iᵀc_i`` (plus Mayer at N).

    The linear ``-λ_{i-1}ᵀs_i`` terms are left out since they do not change the
    element curvature.
    """
    N = layout.N
    n_x, n_u = layout.n_x, layout.n_u
    grads = []
    for i in range(N + 1):
        g = np.zeros(layout.n_e)
        if i < N:
            r = evaluation.intervals[i]
            g += r.dq
            g[:n_x] += r.A.T @ lam[i]
            g[n_x:n_x + n_u] += r.B.T @ lam[i]
            g[n_x + n_u:] += r.P.T @ lam[i]
        else:
            g += evaluation.mayer_gradient
            g[n_x:n_x + n_u] = 0.0
        if nus[i].size:
            g += evaluation.row_jacobians[i].T @ nus[i]
        if i == N:
            g[n_x:n_x + n_u] = 0.0
        grads.append(g)
    return grads


def lagrangian_gradient(evaluation: Evaluation, layout: DecisionLayout, multipliers) -> np.ndarray:
    """Gradient of ``F + λᵀ(x+ - s_next) + νᵀc + μᵀz`` with respect to ``z``."""
    N = layout.N
    n_x, n_u = layout.n_x, layout.n_u
    grad = evaluation.gradient.copy()
    lam = multipliers.continuity
    for i in range(N):
        r = evaluation.intervals[i]
        grad[layout.s(i)] += r.A.T @ lam[i]
        grad[layout.u(i)] += r.B.T @ lam[i]
        grad[layout.p] += r.P.T @ lam[i]
        grad[layout.s(i + 1)] -= lam[i]
    for i in range(N + 1):
        nu = multipliers.rows[i]
        if not nu.size:
            continue
        contribution = evaluation.row_jacobians[i].T @ nu
        if i == N:
            contribution[n_x:n_x + n_u] = 0.0
        grad[layout.element_index(i)] += contribution
    grad += multipliers.bounds
    return grad
