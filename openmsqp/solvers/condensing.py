"""Condensing QP solver.

The continuity conditions are used to eliminate the state steps
``ds_1..ds_N``: with ``w = (ds_0, du_0..du_{N-1}, dp)`` every state step is an
affine function ``ds_i = M_i w + d_i`` obtained from the forward recursion::

    M_0 = [I 0 0],                          d_0 = 0
    M_{i+1} = A_i M_i + B_i E_u(i) + P_i E_p,   d_{i+1} = A_i d_i + c_i

The condensed dense QP in ``w`` is solved with the interior-point method of
:mod:`openmsqp.solvers.interior_point`. Continuity multipliers are recovered
afterwards by a backward sweep over the stationarity conditions of the
eliminated state steps.
"""

from typing import List

import numpy as np

from openmsqp.errors import QPInfeasible
from openmsqp.nlp.qp import StructuredQP
from openmsqp.solvers.base import QPSolution, QPSolver
from openmsqp.solvers.interior_point import solve_dense_qp


class CondensingQPSolver(QPSolver):
    """Eliminates the continuity conditions and solves the reduced dense QP."""

    def _columns(self, qp: StructuredQP):
        L = qp.layout
        n_w = L.n_x + L.N * L.n_u + L.n_p
        p_cols = np.arange(L.n_x + L.N * L.n_u, n_w)

        def u_cols(i):
            start = L.n_x + i * L.n_u
            return np.arange(start, start + L.n_u)

        return n_w, u_cols, p_cols

    def condense(self, qp: StructuredQP):
        """Forward recursion: ``(M, d)`` with ``ds_i = M[i] @ w + d[i]``."""
        L = qp.layout
        N, n_x = L.N, L.n_x
        n_w, u_cols, p_cols = self._columns(qp)
        M = np.zeros((N + 1, n_x, n_w))
        d = np.zeros((N + 1, n_x))
        M[0][:, :n_x] = np.eye(n_x)
        for i in range(N):
            M[i + 1] = qp.A[i] @ M[i]
            M[i + 1][:, u_cols(i)] += qp.B[i]
            M[i + 1][:, p_cols] += qp.P[i]
            d[i + 1] = qp.A[i] @ d[i] + qp.c[i]
        return M, d

    def _element_map(self, qp: StructuredQP, M, d, i):
        """``dw_i = K_i w + k_i``."""
        L = qp.layout
        n_w, u_cols, p_cols = self._columns(qp)
        K = np.zeros((L.n_e, n_w))
        K[:L.n_x] = M[i]
        K[L.n_x + np.arange(L.n_u), u_cols(min(i, L.N - 1))] = 1.0
        K[L.n_x + L.n_u + np.arange(L.n_p), p_cols] = 1.0
        k = np.concatenate([d[i], np.zeros(L.n_u + L.n_p)])
        return K, k

    def solve(self, qp: StructuredQP) -> QPSolution:
        L = qp.layout
        N, n_x, n_u = L.N, L.n_x, L.n_u
        n_w, u_cols, p_cols = self._columns(qp)
        M, d = self.condense(qp)

        H = np.zeros((n_w, n_w))
        g = np.zeros(n_w)
        row_blocks, lowers, uppers, row_map = [], [], [], []
        for i in range(N + 1):
            K, k = self._element_map(qp, M, d, i)
            He = qp.elements[i]
            H += K.T @ He @ K
            g += K.T @ (He @ k)
            g += M[i].T @ qp.g[L.s(i)]

            Ci = qp.C[i]
            for j in range(Ci.shape[0]):
                lo, up = qp.row_lower[i][j], qp.row_upper[i][j]
                if not (np.isfinite(lo) or np.isfinite(up)):
                    continue
                shift = float(Ci[j] @ k)
                row_blocks.append(Ci[j] @ K)
                lowers.append(lo - shift)
                uppers.append(up - shift)
                row_map.append(("node", i, j))

        for i in range(N):
            g[u_cols(i)] += qp.g[L.u(i)]
        g[p_cols] += qp.g[L.p]

        # Box rows: identity on (ds_0, du, dp), condensed on ds_1..ds_N
        w_index = np.concatenate(
            [np.arange(L.s(0).start, L.s(0).stop), np.arange(L.u_offset, L.p_offset), np.arange(L.p.start, L.p.stop)]
        ).astype(int)
        for col, k in enumerate(w_index):
            if np.isfinite(qp.z_lower[k]) or np.isfinite(qp.z_upper[k]):
                row = np.zeros(n_w)
                row[col] = 1.0
                row_blocks.append(row)
                lowers.append(qp.z_lower[k])
                uppers.append(qp.z_upper[k])
                row_map.append(("box", int(k)))
        for i in range(1, N + 1):
            for j in range(n_x):
                k = L.s(i).start + j
                if np.isfinite(qp.z_lower[k]) or np.isfinite(qp.z_upper[k]):
                    row_blocks.append(M[i][j])
                    lowers.append(qp.z_lower[k] - d[i][j])
                    uppers.append(qp.z_upper[k] - d[i][j])
                    row_map.append(("box", int(k)))

        C = np.vstack(row_blocks) if row_blocks else np.zeros((0, n_w))
        try:
            result = solve_dense_qp(
                0.5 * (H + H.T),
                g,
                C=C,
                lower=np.asarray(lowers, dtype=float),
                upper=np.asarray(uppers, dtype=float),
                tol=self.config.tol,
                max_iter=self.config.max_iter,
                regularization=self.config.regularization,
            )
        except QPInfeasible as e:
            row = row_map[e.row] if e.row is not None else None
            raise QPInfeasible(str(e), row=row) from e

        w = result.x
        dz = np.zeros(L.n_z)
        for i in range(N + 1):
            dz[L.s(i)] = M[i] @ w + d[i]
        for i in range(N):
            dz[L.u(i)] = w[u_cols(i)]
        dz[L.p] = w[p_cols]

        rows = [np.zeros(Ci.shape[0]) for Ci in qp.C]
        bounds = np.zeros(L.n_z)
        for value, ident in zip(result.nu, row_map):
            if ident[0] == "node":
                rows[ident[1]][ident[2]] = value
            else:
                bounds[ident[1]] += value

        continuity = self.recover_continuity(qp, dz, rows, bounds)
        return QPSolution(
            dz=dz,
            continuity=continuity,
            rows=rows,
            bounds=bounds,
            iterations=result.iterations,
            objective=float(0.5 * dz @ qp.hessian_times(dz) + qp.g @ dz),
        )

    def recover_continuity(self, qp: StructuredQP, dz, rows: List[np.ndarray], bounds) -> np.ndarray:
        """Backward sweep ``λ_{i-1} = r[s_i] + A_iᵀλ_i`` with ``λ_{N-1} = r[s_N]``.

        ``r`` is the stationarity residual of the QP without the continuity
        terms.
        """
        L = qp.layout
        N = L.N
        C_full, _, _ = qp.node_rows()
        nu = np.concatenate(rows) if rows else np.zeros(0)
        r = qp.hessian_times(dz) + qp.g + C_full.T @ nu + bounds
        lam = np.zeros((N, L.n_x))
        lam[N - 1] = r[L.s(N)]
        for i in range(N - 1, 0, -1):
            lam[i - 1] = r[L.s(i)] + qp.A[i].T @ lam[i]
        return lam

    def citation(self) -> List[str]:
        return [
            r"""@article{bock1984multiple,
  title={A multiple shooting algorithm for direct solution of optimal control problems},
  author={Bock, Hans Georg and Plitt, Karl-Josef},
  journal={IFAC Proceedings Volumes},
  volume={17},
  number={2},
  pages={1603--1608},
  year={1984}
}""",
            r"""@article{mehrotra1992implementation,
  title={On the implementation of a primal-dual interior point method},
  author={Mehrotra, Sanjay},
  journal={SIAM Journal on Optimization},
  volume={2},
  number={4},
  pages={575--601},
  year={1992}
}""",
        ]
