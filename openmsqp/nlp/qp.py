from dataclasses import dataclass, replace
from typing import List, Tuple

import numpy as np

from openmsqp.discretization.grid import DecisionLayout

RowId = Tuple


@dataclass
class StructuredQP:
    """QP subproblem in the step ``dz`` with shooting structure::

        min  ½ dzᵀ H dz + gᵀ dz
        s.t. A_i ds_i + B_i du_i + P_i dp - ds_{i+1} = -c_i        i = 0..N-1
             row_lower_i <= C_i dw_i <= row_upper_i                i = 0..N
             z_lower <= dz <= z_upper

    where ``dw_i = (ds_i, du_i, dp)`` and ``H = sum_i E_iᵀ He_i E_i`` is given
    by one element Hessian per node.

    Attributes:
        layout (DecisionLayout): Decision vector layout
        A, B, P (np.ndarray): Continuity sensitivities, shapes ``(N, n_x, .)``
        c (np.ndarray): Continuity defects ``x_i+ - s_{i+1}``, shape ``(N, n_x)``
        elements (np.ndarray): Element Hessians, shape ``(N+1, n_e, n_e)``
        g (np.ndarray): Objective gradient, shape ``(n_z,)``
        C (list): Node row Jacobians ``(m_i, n_e)``
        row_lower, row_upper (list): Linearized node row bounds
        z_lower, z_upper (np.ndarray): Step bounds
    """

    layout: DecisionLayout
    A: np.ndarray
    B: np.ndarray
    P: np.ndarray
    c: np.ndarray
    elements: np.ndarray
    g: np.ndarray
    C: List[np.ndarray]
    row_lower: List[np.ndarray]
    row_upper: List[np.ndarray]
    z_lower: np.ndarray
    z_upper: np.ndarray

    @property
    def N(self) -> int:
        return self.layout.N

    @property
    def n_z(self) -> int:
        return self.layout.n_z

    def hessian_times(self, dz) -> np.ndarray:
        """``H @ dz`` without forming ``H``."""
        out = np.zeros(self.n_z)
        for i in range(self.N + 1):
            idx = self.layout.element_index(i)
            out[idx] += self.elements[i] @ dz[idx]
        return out

    def hessian(self) -> np.ndarray:
        H = np.zeros((self.n_z, self.n_z))
        for i in range(self.N + 1):
            idx = self.layout.element_index(i)
            H[np.ix_(idx, idx)] += self.elements[i]
        return H

    def continuity_matrix(self):
        """Equality constraints ``A_eq dz = b_eq`` of the continuity conditions."""
        L = self.layout
        n_x = L.n_x
        A_eq = np.zeros((self.N * n_x, self.n_z))
        for i in range(self.N):
            rows = slice(i * n_x, (i + 1) * n_x)
            A_eq[rows, L.s(i)] = self.A[i]
            A_eq[rows, L.u(i)] = self.B[i]
            A_eq[rows, L.p] = self.P[i]
            A_eq[rows, L.s(i + 1)] -= np.eye(n_x)
        b_eq = -self.c.reshape(-1)
        return A_eq, b_eq

    def row_ids(self) -> List[RowId]:
        return [("node", i, j) for i in range(self.N + 1) for j in range(self.C[i].shape[0])]

    def node_rows(self):
        """Node rows mapped to ``z``: ``(C_full, lower, upper)``."""
        blocks = []
        for i in range(self.N + 1):
            m = self.C[i].shape[0]
            block = np.zeros((m, self.n_z))
            if m:
                block[:, self.layout.element_index(i)] += self.C[i]
                if i == self.N:
                    block[:, self.layout.u(self.N - 1)] = 0.0
            blocks.append(block)
        C_full = np.vstack(blocks) if blocks else np.zeros((0, self.n_z))
        lower = np.concatenate(self.row_lower) if self.row_lower else np.zeros(0)
        upper = np.concatenate(self.row_upper) if self.row_upper else np.zeros(0)
        return C_full, lower, upper

    def to_dense(self):
        """Dense representation ``(H, g, A_eq, b_eq, C, lower, upper, z_lower, z_upper)``."""
        A_eq, b_eq = self.continuity_matrix()
        C_full, lower, upper = self.node_rows()
        return self.hessian(), self.g.copy(), A_eq, b_eq, C_full, lower, upper, self.z_lower, self.z_upper

    def split_rows(self, values) -> List[np.ndarray]:
        """Split a stacked node-row vector back into one array per node."""
        out = []
        start = 0
        for Ci in self.C:
            m = Ci.shape[0]
            out.append(np.asarray(values[start:start + m], dtype=float))
            start += m
        return out

    def relaxed(self, row: RowId) -> "StructuredQP":
        """Copy of this QP with the bounds of ``row`` removed."""
        if row is None:
            return self
        if row[0] == "node":
            _, i, j = row
            lower = [lo.copy() for lo in self.row_lower]
            upper = [up.copy() for up in self.row_upper]
            lower[i][j] = -np.inf
            upper[i][j] = np.inf
            return replace(self, row_lower=lower, row_upper=upper)
        if row[0] == "box":
            _, k = row
            z_lower = self.z_lower.copy()
            z_upper = self.z_upper.copy()
            z_lower[k] = -np.inf
            z_upper[k] = np.inf
            return replace(self, z_lower=z_lower, z_upper=z_upper)
        raise ValueError(f"Unknown row identifier {row!r}")
