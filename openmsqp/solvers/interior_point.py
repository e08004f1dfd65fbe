"""Dense primal-dual interior-point method for convex QPs.

Solves::

    min  ½ xᵀHx + gᵀx
    s.t. A x = b
         lower <= C x <= upper

with Mehrotra's predictor-corrector method. Two-sided rows are split into
``G x + s = h`` with slacks ``s >= 0`` and duals ``z >= 0``; rows with equal
bounds are treated as equalities. Each Newton system is reduced to::

    [ H + GᵀWG + δI   Aᵀ ] [dx]   [ -r_d - GᵀW r_i + GᵀS⁻¹r_sz ]
    [ A              -δI ] [dy] = [ -r_p                        ]

with ``W = Z S⁻¹``, followed by ``dz = W(G dx + r_i) - S⁻¹r_sz`` and
``ds = -r_i - G dx``.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from openmsqp.errors import QPInfeasible

STEP_FRACTION = 0.99
DUAL_DIVERGENCE = 1e12


@dataclass
class DenseQPResult:
    """Solution of a dense QP.

    Attributes:
        x (np.ndarray): Primal solution
        y (np.ndarray): Multipliers of ``A x = b``
        nu (np.ndarray): One signed multiplier per row of ``C`` (positive: upper bound active)
        iterations (int): Interior-point iterations
        objective (float): ``½ xᵀHx + gᵀx``
    """

    x: np.ndarray
    y: np.ndarray
    nu: np.ndarray
    iterations: int
    objective: float


def _max_step(v: np.ndarray, dv: np.ndarray) -> float:
    """Largest ``alpha`` with ``v + alpha * dv >= 0``."""
    negative = dv < 0
    if not np.any(negative):
        return np.inf
    return float(np.min(-v[negative] / dv[negative]))


def _solve_kkt(K_top, A, rhs_x, rhs_y, delta):
    n = K_top.shape[0]
    m = A.shape[0]
    K = np.block([[K_top + delta * np.eye(n), A.T], [A, -delta * np.eye(m)]])
    rhs = np.concatenate([rhs_x, rhs_y])
    try:
        sol = np.linalg.solve(K, rhs)
    except np.linalg.LinAlgError:
        sol = np.linalg.lstsq(K, rhs, rcond=None)[0]
    if not np.all(np.isfinite(sol)):
        sol = np.linalg.lstsq(K, rhs, rcond=None)[0]
    return sol[:n], sol[n:]


def solve_dense_qp(
    H: np.ndarray,
    g: np.ndarray,
    A: Optional[np.ndarray] = None,
    b: Optional[np.ndarray] = None,
    C: Optional[np.ndarray] = None,
    lower: Optional[np.ndarray] = None,
    upper: Optional[np.ndarray] = None,
    tol: float = 1e-10,
    max_iter: int = 100,
    regularization: float = 1e-12,
) -> DenseQPResult:
    """Solve a dense convex QP.

    Raises:
        QPInfeasible: A row has ``lower > upper``, or the iteration fails to
            converge; ``row`` is the index of the offending row of ``C``.
    """
    n = g.shape[0]
    A = np.zeros((0, n)) if A is None else np.asarray(A, dtype=float)
    b = np.zeros(0) if b is None else np.asarray(b, dtype=float)
    C = np.zeros((0, n)) if C is None else np.asarray(C, dtype=float)
    lower = np.full(C.shape[0], -np.inf) if lower is None else np.asarray(lower, dtype=float)
    upper = np.full(C.shape[0], np.inf) if upper is None else np.asarray(upper, dtype=float)
    m_A = A.shape[0]

    if np.any(lower > upper):
        k = int(np.argmax(lower - upper))
        raise QPInfeasible(f"row {k} has lower bound {lower[k]:.6g} > upper bound {upper[k]:.6g}", row=k)

    eq_rows = np.flatnonzero(np.isfinite(lower) & (lower == upper))
    is_eq = np.zeros(C.shape[0], dtype=bool)
    is_eq[eq_rows] = True
    up_rows = np.flatnonzero(np.isfinite(upper) & ~is_eq)
    lo_rows = np.flatnonzero(np.isfinite(lower) & ~is_eq)

    A_all = np.vstack([A, C[eq_rows]])
    b_all = np.concatenate([b, lower[eq_rows]])
    G = np.vstack([C[up_rows], -C[lo_rows]])
    h = np.concatenate([upper[up_rows], -lower[lo_rows]])
    ineq_source = np.concatenate([up_rows, lo_rows]).astype(int)
    m_i = G.shape[0]

    def unpack(x, y, z, iterations):
        nu = np.zeros(C.shape[0])
        nu[eq_rows] = y[m_A:]
        nu[up_rows] += z[: len(up_rows)]
        nu[lo_rows] -= z[len(up_rows):]
        objective = float(0.5 * x @ H @ x + g @ x)
        return DenseQPResult(x=x, y=y[:m_A], nu=nu, iterations=iterations, objective=objective)

    if m_i == 0:
        x, y = _solve_kkt(H, A_all, -g, b_all, regularization)
        residual = np.abs(A_all @ x - b_all)
        if residual.size and residual.max() > max(1e-8, 1e3 * tol) * (1.0 + np.abs(b_all).max()):
            k = int(np.argmax(residual))
            row = int(eq_rows[k - m_A]) if k >= m_A else None
            raise QPInfeasible("equality constraints are inconsistent", row=row)
        return unpack(x, y, np.zeros(0), 1)

    x = np.zeros(n)
    y = np.zeros(A_all.shape[0])
    s = np.maximum(h - G @ x, 1.0)
    z = np.ones(m_i)

    scale_d = 1.0 + np.abs(g).max(initial=0.0)
    scale_p = 1.0 + np.abs(b_all).max(initial=0.0)
    scale_i = 1.0 + np.abs(h).max(initial=0.0)

    for iteration in range(1, max_iter + 1):
        r_d = H @ x + g + A_all.T @ y + G.T @ z
        r_p = A_all @ x - b_all
        r_i = G @ x + s - h
        mu = float(s @ z) / m_i

        if (
            np.abs(r_d).max(initial=0.0) <= tol * scale_d
            and np.abs(r_p).max(initial=0.0) <= tol * scale_p
            and np.abs(r_i).max(initial=0.0) <= tol * scale_i
            and mu <= tol
        ):
            return unpack(x, y, z, iteration - 1)

        W = z / s
        K_top = H + G.T @ (W[:, None] * G)

        # Predictor
        r_sz = s * z
        dx, dy = _solve_kkt(K_top, A_all, -r_d - G.T @ (W * r_i) + G.T @ (r_sz / s), -r_p, regularization)
        dz = W * (G @ dx + r_i) - r_sz / s
        ds = -r_i - G @ dx
        alpha_aff = min(1.0, _max_step(s, ds), _max_step(z, dz))
        mu_aff = float((s + alpha_aff * ds) @ (z + alpha_aff * dz)) / m_i
        sigma = (mu_aff / mu) ** 3

        # Corrector
        r_sz = s * z + ds * dz - sigma * mu
        dx, dy = _solve_kkt(K_top, A_all, -r_d - G.T @ (W * r_i) + G.T @ (r_sz / s), -r_p, regularization)
        dz = W * (G @ dx + r_i) - r_sz / s
        ds = -r_i - G @ dx
        alpha = min(1.0, STEP_FRACTION * min(_max_step(s, ds), _max_step(z, dz)))

        x = x + alpha * dx
        y = y + alpha * dy
        z = z + alpha * dz
        s = s + alpha * ds

        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(z))) or z.max() > DUAL_DIVERGENCE:
            k = int(np.argmax(np.where(np.isfinite(z), z, np.inf)))
            raise QPInfeasible("dual iterates diverged", row=int(ineq_source[k]))

    k = int(np.argmax(z))
    raise QPInfeasible(
        f"interior point did not converge in {max_iter} iterations (mu = {float(s @ z) / m_i:.3g})",
        row=int(ineq_source[k]),
    )
