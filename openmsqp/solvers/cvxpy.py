"""CVXPy-based sparse QP solver.

Solves the full structured QP (states, controls and parameters as unknowns)
through CVXPy and a backend solver such as CLARABEL. Inequality multipliers
come from the backend duals; the multipliers of equality constraints
(continuity and equality node rows) are recovered from the stationarity
conditions by least squares, which makes them independent of the sign
convention of each backend.
"""

from typing import List

import cvxpy as cp
import numpy as np

from openmsqp.errors import QPInfeasible
from openmsqp.nlp.qp import StructuredQP

from .base import QPSolution, QPSolver

INFEASIBLE_STATUSES = (cp.INFEASIBLE, cp.INFEASIBLE_INACCURATE)
SOLVED_STATUSES = (cp.OPTIMAL, cp.OPTIMAL_INACCURATE)


class CvxpyQPSolver(QPSolver):
    """Sparse QP solver built on CVXPy.

    Example:
        Selecting CVXPy with a specific backend::

            config.qp.kind = "cvxpy"
            config.qp.solver = "CLARABEL"
            config.qp.solver_args = {"tol_gap_abs": 1e-10}
    """

    def solve(self, qp: StructuredQP) -> QPSolution:
        H, g, A_eq, b_eq, C, lower, upper, z_lower, z_upper = qp.to_dense()
        n = qp.n_z

        eq_rows = np.flatnonzero(np.isfinite(lower) & (lower == upper))
        is_eq = np.zeros(C.shape[0], dtype=bool)
        is_eq[eq_rows] = True
        up_rows = np.flatnonzero(np.isfinite(upper) & ~is_eq)
        lo_rows = np.flatnonzero(np.isfinite(lower) & ~is_eq)
        up_box = np.flatnonzero(np.isfinite(z_upper))
        lo_box = np.flatnonzero(np.isfinite(z_lower))

        if np.any(lower > upper) or np.any(z_lower > z_upper):
            raise QPInfeasible("contradictory bounds", row=self._most_violated(qp, np.zeros(n)))

        dz = cp.Variable(n, name="dz")
        objective = cp.Minimize(0.5 * cp.quad_form(dz, cp.psd_wrap(H)) + g @ dz)
        constr = [A_eq @ dz == b_eq]
        if eq_rows.size:
            constr += [C[eq_rows] @ dz == lower[eq_rows]]
        inequalities = {}
        if up_rows.size:
            inequalities["rows_upper"] = C[up_rows] @ dz <= upper[up_rows]
        if lo_rows.size:
            inequalities["rows_lower"] = C[lo_rows] @ dz >= lower[lo_rows]
        if up_box.size:
            inequalities["box_upper"] = dz[up_box] <= z_upper[up_box]
        if lo_box.size:
            inequalities["box_lower"] = dz[lo_box] >= z_lower[lo_box]
        constr += list(inequalities.values())

        prob = cp.Problem(objective, constr)
        try:
            prob.solve(solver=self.config.solver, **self.config.solver_args)
        except cp.error.SolverError as e:
            raise QPInfeasible(f"QP solver failed: {e}", row=self._most_violated(qp, np.zeros(n))) from e

        if prob.status in INFEASIBLE_STATUSES or prob.status not in SOLVED_STATUSES or dz.value is None:
            raise QPInfeasible(
                f"QP solver returned status '{prob.status}'",
                row=self._most_violated(qp, self._equality_point(A_eq, b_eq, C[eq_rows], lower[eq_rows])),
            )

        x = np.asarray(dz.value, dtype=float)

        def dual(key):
            return np.asarray(inequalities[key].dual_value, dtype=float).reshape(-1)

        nu = np.zeros(C.shape[0])
        if up_rows.size:
            nu[up_rows] += dual("rows_upper")
        if lo_rows.size:
            nu[lo_rows] -= dual("rows_lower")
        bounds = np.zeros(n)
        if up_box.size:
            bounds[up_box] += dual("box_upper")
        if lo_box.size:
            bounds[lo_box] -= dual("box_lower")

        # Equality multipliers from H x + g + A_eqᵀλ + C_eqᵀν_eq + C_inᵀν_in + μ = 0
        residual = H @ x + g + C.T @ nu + bounds
        E = np.hstack([A_eq.T, C[eq_rows].T])
        y = np.linalg.lstsq(E, -residual, rcond=None)[0]
        n_cont = A_eq.shape[0]
        continuity = y[:n_cont].reshape(qp.N, qp.layout.n_x)
        nu[eq_rows] = y[n_cont:]

        solver_stats = prob.solver_stats
        iterations = solver_stats.num_iters if solver_stats is not None and solver_stats.num_iters else 0
        return QPSolution(
            dz=x,
            continuity=continuity,
            rows=qp.split_rows(nu),
            bounds=bounds,
            iterations=int(iterations),
            objective=float(0.5 * x @ H @ x + g @ x),
        )

    @staticmethod
    def _equality_point(A_eq, b_eq, C_eq, b_c):
        E = np.vstack([A_eq, C_eq])
        return np.linalg.lstsq(E, np.concatenate([b_eq, b_c]), rcond=None)[0]

    @staticmethod
    def _most_violated(qp: StructuredQP, x):
        """Identifier of the row violated most at ``x``."""
        C, lower, upper = qp.node_rows()
        ids = qp.row_ids()
        best, best_value = None, -np.inf
        if C.shape[0]:
            values = C @ x
            violation = np.maximum(lower - values, values - upper)
            violation = np.where(lower > upper, np.inf, violation)
            k = int(np.argmax(violation))
            best, best_value = ids[k], violation[k]
        box = np.maximum(qp.z_lower - x, x - qp.z_upper)
        box = np.where(qp.z_lower > qp.z_upper, np.inf, box)
        if box.size:
            k = int(np.argmax(box))
            if box[k] > best_value:
                best = ("box", k)
        return best

    def citation(self) -> List[str]:
        return [
            r"""@article{diamond2016cvxpy,
  title={CVXPY: A Python-embedded modeling language for convex optimization},
  author={Diamond, Steven and Boyd, Stephen},
  journal={Journal of Machine Learning Research},
  volume={17},
  number={83},
  pages={1--5},
  year={2016}
}""",
            r"""@article{goulart2024clarabel,
  title={Clarabel: An interior-point solver for conic programs with quadratic objectives},
  author={Goulart, Paul J and Chen, Yuwen},
  journal={arXiv preprint arXiv:2405.12762},
  year={2024}
}""",
        ]
