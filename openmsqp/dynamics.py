from dataclasses import dataclass

import jax
import jax.numpy as jnp
import numpy as np

from openmsqp.model import ValidatedProblem


@dataclass
class ShootingDynamics:
    """Right-hand sides integrated over one shooting interval.

    Each interval ``i`` is integrated in normalized time ``tau in [0, 1]``.
    The nominal state ``xa = [x; q]`` appends the running-cost quadrature
    ``q`` to the states and evolves as::

        dxa/dtau = h(p) * [f(x, u, p, t); L(x, u, p, t)],   t = t0 + (i + tau) h(p)

    with ``h(p) = T(p) / N``, so that the sensitivity with respect to a free
    horizon is an ordinary parameter sensitivity.

    The augmented state used for first derivatives is ``y = [x; q; vec(S)]``
    where ``S = d xa / d w`` has shape ``(n_a, n_w)``, ``w = (s_i, u_i, p)``,
    ``n_a = n_x + 1`` and ``n_w = n_x + n_u + n_p``. It is seeded with the
    identity on the state block.

    Attributes:
        problem (ValidatedProblem): The lowered problem
        N (int): Number of shooting intervals
    """

    problem: ValidatedProblem
    N: int

    def __post_init__(self):
        self.n_x = self.problem.n_x
        self.n_u = self.problem.n_u
        self.n_p = self.problem.n_p
        self.n_a = self.n_x + 1
        self.n_w = self.n_x + self.n_u + self.n_p
        self.n_y = self.n_a + self.n_a * self.n_w
        self._jac = jax.jacfwd(self._F_w, argnums=1)

    def interval_length(self, p):
        return self.problem.horizon_length(p) / self.N

    def time(self, tau, p, node):
        return self.problem.t0 + (node + tau) * self.interval_length(p)

    def F(self, tau, x, u, p, node):
        """Scaled nominal right-hand side ``h * [f; L]``, shape ``(n_a,)``."""
        t = self.time(tau, p, node)
        h = self.interval_length(p)
        xdot = self.problem.f(x, u, p, t)
        ldot = self.problem.lagrange(x, u, p, t)
        return h * jnp.concatenate([xdot, jnp.reshape(ldot, (1,))])

    def _F_w(self, tau, w, node):
        x, u, p = self.split_w(w)
        return self.F(tau, x, u, p, node)

    def split_w(self, w):
        n_x, n_u = self.n_x, self.n_u
        return w[:n_x], w[n_x:n_x + n_u], w[n_x + n_u:]

    def rhs(self, tau, xa, u, p, node):
        """Nominal right-hand side on ``xa = [x; q]``."""
        return self.F(tau, xa[: self.n_x], u, p, node)

    def rhs_aug(self, tau, y, u, p, node):
        """Right-hand side of the nominal and variational equations on ``y``."""
        n_x, n_a, n_w = self.n_x, self.n_a, self.n_w
        x = y[:n_x]
        S = y[n_a:].reshape(n_a, n_w)
        w = jnp.concatenate([x, u, p])

        Fa = self._F_w(tau, w, node)
        J = self._jac(tau, w, node)

        dS = J[:, :n_x] @ S[:n_x]
        dS = dS.at[:, n_x:].add(J[:, n_x:])
        return jnp.concatenate([Fa, dS.reshape(-1)])

    def initial_nominal(self, s) -> np.ndarray:
        return np.concatenate([np.asarray(s, dtype=float), [0.0]])

    def initial_augmented(self, s) -> np.ndarray:
        S0 = np.zeros((self.n_a, self.n_w))
        S0[: self.n_x, : self.n_x] = np.eye(self.n_x)
        return np.concatenate([self.initial_nominal(s), S0.reshape(-1)])

    def unpack(self, y):
        """Split an augmented end state into ``(x+, q, A, B, P, dq)``."""
        n_x, n_u, n_a, n_w = self.n_x, self.n_u, self.n_a, self.n_w
        y = np.asarray(y)
        x_end = y[:n_x]
        q = float(y[n_x])
        if y.shape[0] == n_a:
            return x_end, q, None, None, None, None
        S = y[n_a:].reshape(n_a, n_w)
        A = S[:n_x, :n_x]
        B = S[:n_x, n_x:n_x + n_u]
        P = S[:n_x, n_x + n_u:]
        dq = S[n_x]
        return x_end, q, A, B, P, dq
