"""Element-wise Hessian approximations of the shooting Lagrangian.

The Lagrangian of the shooting NLP separates over the nodes, so its Hessian
is a sum of element blocks over ``w_i = (s_i, u_i, p)``. Each approximation
returns one positive definite ``(n_e, n_e)`` block per node; the block of
node N has zero control rows and columns.
"""

from abc import ABC, abstractmethod
from typing import List

import numpy as np

from openmsqp.config import SQPConfig
from openmsqp.discretization.grid import DecisionLayout
from openmsqp.nlp.evaluation import Evaluation, NLPEvaluator, element_gradients


def clip_eigenvalues(H: np.ndarray, floor: float) -> np.ndarray:
    """Symmetric matrix with every eigenvalue raised to at least ``floor``."""
    if H.size == 0:
        return H
    H = 0.5 * (H + H.T)
    eigvals, eigvecs = np.linalg.eigh(H)
    return (eigvecs * np.maximum(eigvals, floor)) @ eigvecs.T


def terminal_indices(layout: DecisionLayout) -> np.ndarray:
    """Positions of ``(s_N, p)`` inside an element vector."""
    return np.concatenate(
        [np.arange(layout.n_x), np.arange(layout.n_x + layout.n_u, layout.n_e)]
    ).astype(int)


def embed_terminal(block: np.ndarray, layout: DecisionLayout) -> np.ndarray:
    out = np.zeros((layout.n_e, layout.n_e))
    idx = terminal_indices(layout)
    out[np.ix_(idx, idx)] = block
    return out


class HessianApproximation(ABC):
    def __init__(self, layout: DecisionLayout, config: SQPConfig):
        self.layout = layout
        self.config = config

    @abstractmethod
    def blocks(self, evaluation: Evaluation, multipliers) -> List[np.ndarray]:
        """Element Hessians at ``evaluation`` for the current multipliers."""
        ...

    def update(self, old: Evaluation, new: Evaluation, multipliers):
        """Account for an accepted step from ``old`` to ``new``."""

    def reset(self):
        """Forget accumulated curvature information."""


class ExactHessian(HessianApproximation):
    """Exact element Hessians, convexified by eigenvalue clipping.

    Interval blocks come from differentiating the replayed integration twice,
    weighted by ``[λ_i; 1]``; node-row and Mayer blocks come from jax Hessians.
    """

    def __init__(self, layout: DecisionLayout, config: SQPConfig, evaluator: NLPEvaluator):
        super().__init__(layout, config)
        self.evaluator = evaluator
        if not evaluator.integrator.supports_exact_hessian:
            raise ValueError("The exact Hessian needs an integrator that records its sub-steps")

    def raw_blocks(self, evaluation: Evaluation, multipliers) -> List[np.ndarray]:
        L = self.layout
        N = L.N
        integrator = self.evaluator.integrator
        blocks = []
        for i in range(N + 1):
            w = self.evaluator.element(evaluation.S, evaluation.U, evaluation.p, i)
            He = np.zeros((L.n_e, L.n_e))
            if i < N:
                weights = np.concatenate([multipliers.continuity[i], [1.0]])
                result = evaluation.intervals[i]
                He += integrator.interval_hessian(
                    weights, evaluation.S[i], evaluation.U[i], evaluation.p, i, result.dts
                )
            else:
                He += self.evaluator.mayer_hessian(w)
            if multipliers.rows[i].size:
                He += self.evaluator.row_hessian(i, w, multipliers.rows[i])
            blocks.append(He)
        return blocks

    def blocks(self, evaluation: Evaluation, multipliers) -> List[np.ndarray]:
        floor = self.config.hessian_regularization
        raw = self.raw_blocks(evaluation, multipliers)
        out = [clip_eigenvalues(He, floor) for He in raw[:-1]]
        idx = terminal_indices(self.layout)
        out.append(embed_terminal(clip_eigenvalues(raw[-1][np.ix_(idx, idx)], floor), self.layout))
        return out


class GaussNewtonHessian(HessianApproximation):
    """Blocks ``2hQ`` and ``2hR`` per interval and ``2P`` at node N, plus regularization.

    Only the quadratic weights of the cost contribute; Lagrange or Mayer
    expressions and constraint curvature are ignored.
    """

    def __init__(self, layout: DecisionLayout, config: SQPConfig, problem, grid):
        super().__init__(layout, config)
        self.problem = problem
        self.grid = grid

    def blocks(self, evaluation: Evaluation, multipliers) -> List[np.ndarray]:
        L = self.layout
        reg = self.config.hessian_regularization
        h = self.grid.interval_length(evaluation.p)
        n_x, n_u = L.n_x, L.n_u
        blocks = []
        for _ in range(L.N):
            He = reg * np.eye(L.n_e)
            He[:n_x, :n_x] += 2.0 * h * self.problem.Q
            He[n_x:n_x + n_u, n_x:n_x + n_u] += 2.0 * h * self.problem.R
            blocks.append(He)
        terminal = reg * np.eye(n_x + L.n_p)
        terminal[:n_x, :n_x] += 2.0 * self.problem.P
        blocks.append(embed_terminal(terminal, L))
        return blocks


class BlockBFGSHessian(HessianApproximation):
    """Partitioned quasi-Newton: one damped BFGS matrix per element.

    Updates use Powell damping so every block stays positive definite, and
    the first update of each block is preceded by Shanno-Phua scaling
    ``B = (yᵀy / sᵀy) I``. The block of node N lives on ``(s_N, p)`` only.
    """

    DAMPING = 0.2

    def __init__(self, layout: DecisionLayout, config: SQPConfig):
        super().__init__(layout, config)
        self.reset()

    def reset(self):
        L = self.layout
        self._B = [np.eye(L.n_e) for _ in range(L.N)] + [np.eye(L.n_x + L.n_p)]
        self._scaled = [False] * (L.N + 1)

    def blocks(self, evaluation: Evaluation, multipliers) -> List[np.ndarray]:
        return [B.copy() for B in self._B[:-1]] + [embed_terminal(self._B[-1], self.layout)]

    def update(self, old: Evaluation, new: Evaluation, multipliers):
        L = self.layout
        lam, nus = multipliers.continuity, multipliers.rows
        grads_old = element_gradients(old, L, lam, nus)
        grads_new = element_gradients(new, L, lam, nus)
        idx_terminal = terminal_indices(L)
        for i in range(L.N + 1):
            idx = L.element_index(i)
            s = new.z[idx] - old.z[idx]
            y = grads_new[i] - grads_old[i]
            if i == L.N:
                s, y = s[idx_terminal], y[idx_terminal]
            self._B[i] = self._damped_update(i, self._B[i], s, y)

    def _damped_update(self, i, B, s, y):
        sy = float(s @ y)
        if float(s @ s) < 1e-16:
            return B
        if not self._scaled[i] and sy > 1e-12:
            B = (float(y @ y) / sy) * np.eye(B.shape[0])
            self._scaled[i] = True
        Bs = B @ s
        sBs = float(s @ Bs)
        if sBs <= 0.0:
            return B
        if sy < self.DAMPING * sBs:
            theta = (1.0 - self.DAMPING) * sBs / (sBs - sy)
            y = theta * y + (1.0 - theta) * Bs
            sy = float(s @ y)
        B = B - np.outer(Bs, Bs) / sBs + np.outer(y, y) / sy
        return 0.5 * (B + B.T)


def get_hessian(kind: str, layout: DecisionLayout, config: SQPConfig, evaluator: NLPEvaluator, problem, grid):
    if kind == "exact":
        return ExactHessian(layout, config, evaluator)
    if kind == "gauss_newton":
        return GaussNewtonHessian(layout, config, problem, grid)
    if kind == "block_bfgs":
        return BlockBFGSHessian(layout, config)
    raise ValueError(f"Unknown Hessian approximation: {kind}")
