from typing import Sequence

import numpy as np

from openmsqp.discretization.grid import DecisionLayout
from openmsqp.nlp.evaluation import Evaluation
from openmsqp.nlp.qp import StructuredQP


class NLPAssembler:
    """Linearizes the shooting NLP at an evaluated iterate into a :class:`StructuredQP`."""

    def __init__(self, layout: DecisionLayout, z_lower: np.ndarray, z_upper: np.ndarray):
        self.layout = layout
        self.z_lower = z_lower
        self.z_upper = z_upper

    def build(self, evaluation: Evaluation, hessian_blocks: Sequence[np.ndarray]) -> StructuredQP:
        if not evaluation.derivatives:
            raise ValueError("The QP needs an evaluation with derivatives")
        L = self.layout
        N = L.N
        intervals = evaluation.intervals

        A = np.stack([r.A for r in intervals]).reshape(N, L.n_x, L.n_x)
        B = np.stack([r.B for r in intervals]).reshape(N, L.n_x, L.n_u)
        P = np.stack([r.P for r in intervals]).reshape(N, L.n_x, L.n_p)

        row_lower = [lo - c for lo, c in zip(evaluation.row_lower, evaluation.rows)]
        row_upper = [up - c for up, c in zip(evaluation.row_upper, evaluation.rows)]
        C = [np.array(J, dtype=float) for J in evaluation.row_jacobians]
        if C[N].size:
            C[N][:, L.n_x:L.n_x + L.n_u] = 0.0

        return StructuredQP(
            layout=L,
            A=A,
            B=B,
            P=P,
            c=evaluation.defects.copy(),
            elements=np.stack([np.asarray(He, dtype=float) for He in hessian_blocks]),
            g=evaluation.gradient.copy(),
            C=C,
            row_lower=row_lower,
            row_upper=row_upper,
            z_lower=self.z_lower - evaluation.z,
            z_upper=self.z_upper - evaluation.z,
        )
