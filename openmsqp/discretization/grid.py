from dataclasses import dataclass

import numpy as np

from openmsqp.model import ValidatedProblem


@dataclass(frozen=True)
class ShootingGrid:
    """Uniform split of ``[t0, t0 + T]`` into ``N`` shooting intervals.

    ``T`` is either fixed or read from the free parameters, so every method
    takes the parameter vector ``p``.
    """

    problem: ValidatedProblem
    N: int

    def horizon(self, p) -> float:
        return float(self.problem.horizon_length(np.asarray(p, dtype=float)))

    def interval_length(self, p) -> float:
        return self.horizon(p) / self.N

    def node_times(self, p) -> np.ndarray:
        """Times ``t_i = t0 + i * T / N`` for ``i = 0..N``."""
        return self.problem.t0 + np.arange(self.N + 1) * self.interval_length(p)

    def node_time(self, i: int, p) -> float:
        return self.problem.t0 + i * self.interval_length(p)


@dataclass(frozen=True)
class DecisionLayout:
    """Slices of the decision vector ``z = (s_0..s_N, u_0..u_{N-1}, p)``."""

    n_x: int
    n_u: int
    n_p: int
    N: int

    @property
    def n_z(self) -> int:
        return (self.N + 1) * self.n_x + self.N * self.n_u + self.n_p

    @property
    def n_e(self) -> int:
        """Size of one Hessian element ``(s_i, u_i, p)``."""
        return self.n_x + self.n_u + self.n_p

    @property
    def u_offset(self) -> int:
        return (self.N + 1) * self.n_x

    @property
    def p_offset(self) -> int:
        return self.u_offset + self.N * self.n_u

    def s(self, i: int) -> slice:
        return slice(i * self.n_x, (i + 1) * self.n_x)

    def u(self, i: int) -> slice:
        start = self.u_offset + i * self.n_u
        return slice(start, start + self.n_u)

    @property
    def p(self) -> slice:
        return slice(self.p_offset, self.p_offset + self.n_p)

    @property
    def states(self) -> slice:
        return slice(0, self.u_offset)

    @property
    def controls(self) -> slice:
        return slice(self.u_offset, self.p_offset)

    def element_index(self, i: int) -> np.ndarray:
        """Indices of ``(s_i, u_i, p)`` inside ``z``.

        Node ``N`` has no control; its element reuses the indices of
        ``u_{N-1}`` and always carries zero blocks there.
        """
        u_node = min(i, self.N - 1)
        sl_s, sl_u, sl_p = self.s(i), self.u(u_node), self.p
        return np.concatenate(
            [
                np.arange(sl_s.start, sl_s.stop),
                np.arange(sl_u.start, sl_u.stop),
                np.arange(sl_p.start, sl_p.stop),
            ]
        ).astype(int)

    def pack(self, S, U, p) -> np.ndarray:
        z = np.empty(self.n_z)
        z[self.states] = np.asarray(S, dtype=float).reshape(-1)
        z[self.controls] = np.asarray(U, dtype=float).reshape(-1)
        z[self.p] = np.asarray(p, dtype=float).reshape(-1)
        return z

    def unpack(self, z):
        """Return ``(S, U, p)`` with shapes ``(N+1, n_x)``, ``(N, n_u)``, ``(n_p,)``."""
        z = np.asarray(z)
        S = z[self.states].reshape(self.N + 1, self.n_x)
        U = z[self.controls].reshape(self.N, self.n_u)
        return S, U, z[self.p]

    def bounds(self, problem: ValidatedProblem):
        """Box bounds of every decision-vector entry."""
        lower = self.pack(
            np.tile(problem.x_lb, (self.N + 1, 1)), np.tile(problem.u_lb, (self.N, 1)), problem.p_lb
        )
        upper = self.pack(
            np.tile(problem.x_ub, (self.N + 1, 1)), np.tile(problem.u_ub, (self.N, 1)), problem.p_ub
        )
        return lower, upper
