import jax
import jax.numpy as jnp
import numpy as np

from openmsqp.config import DiscretizationConfig
from openmsqp.dynamics import ShootingDynamics
from openmsqp.errors import IntegrationDivergence, NumericalFailure
from openmsqp.integrators.base import IntervalResult, Integrator
from openmsqp.integrators.tableaus import PAIRS, EmbeddedPair

SAFETY = 0.9
MIN_FACTOR = 0.2
MAX_FACTOR = 5.0
MIN_STEP = 1e-12


def embedded_step(f, pair: EmbeddedPair, tau, y, dt, *args):
    """One step of an embedded pair, returning ``(y_next, error_estimate)``.

    The stage loop is unrolled at trace time; zero tableau entries are skipped.
    """
    k = []
    for i in range(pair.stages):
        yi = y
        for j, a_ij in enumerate(pair.a[i]):
            if a_ij != 0.0:
                yi = yi + dt * a_ij * k[j]
        k.append(f(tau + pair.c[i] * dt, yi, *args))

    y_next = y
    err = jnp.zeros_like(y)
    for b_i, e_i, k_i in zip(pair.b, pair.b_err, k):
        if b_i != 0.0:
            y_next = y_next + dt * b_i * k_i
        if e_i != 0.0:
            err = err + dt * e_i * k_i
    return y_next, err


def _padded_length(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


class RungeKuttaIntegrator(Integrator):
    """Adaptive explicit embedded Runge-Kutta integration of shooting intervals.

    The step itself is a jitted jax function; the step-size control runs in
    Python on NumPy arrays. Accepted normalized sub-steps are recorded so the
    exact discrete scheme can be replayed (and differentiated twice) by
    :meth:`interval_hessian`.
    """

    supports_exact_hessian = True

    def __init__(self, dynamics: ShootingDynamics, config: DiscretizationConfig):
        super().__init__(dynamics, config)
        self.pair = PAIRS[config.order]
        self._exponent = 1.0 / (self.pair.error_order + 1)
        pair = self.pair

        self._step_aug = jax.jit(
            lambda tau, y, dt, u, p, node: embedded_step(dynamics.rhs_aug, pair, tau, y, dt, u, p, node)
        )
        self._step_nominal = jax.jit(
            lambda tau, y, dt, u, p, node: embedded_step(dynamics.rhs, pair, tau, y, dt, u, p, node)
        )
        self._hessian = jax.jit(jax.jacfwd(jax.jacfwd(self._weighted_replay)))

    # ==================== Adaptive driver ====================

    def _adaptive(self, step, y0, u, p, node, dt0, budget, n_control, stops=(1.0,)):
        """Advance ``y0`` from ``tau = 0`` through every point of ``stops``.

        Returns:
            (list of states at ``stops``, array of accepted sub-steps)
        """
        atol, rtol = self.config.atol, self.config.rtol
        y = np.asarray(y0, dtype=float)
        tau = 0.0
        dt = dt0
        dts = []
        out = []
        attempts = 0
        for stop in stops:
            while tau < stop:
                if attempts >= budget:
                    raise IntegrationDivergence(
                        f"no convergence within {budget} sub-steps (tau = {tau:.6g})", node
                    )
                attempts += 1
                hits_stop = tau + dt >= stop
                h = stop - tau if hits_stop else dt

                y_new, err = step(tau, y, h, u, p, float(node))
                y_new = np.asarray(y_new)
                err = np.asarray(err)
                if not (np.all(np.isfinite(y_new)) and np.all(np.isfinite(err))):
                    raise NumericalFailure(f"non-finite state at tau = {tau:.6g}", node)

                scale = atol + rtol * np.maximum(np.abs(y[:n_control]), np.abs(y_new[:n_control]))
                err_norm = float(np.sqrt(np.mean((err[:n_control] / scale) ** 2)))

                if err_norm <= 1.0:
                    y = y_new
                    dts.append(h)
                    tau = stop if hits_stop else tau + h

                if err_norm == 0.0:
                    factor = MAX_FACTOR
                else:
                    factor = min(MAX_FACTOR, max(MIN_FACTOR, SAFETY * err_norm ** (-self._exponent)))
                dt = h * factor if (err_norm > 1.0 or not hits_stop) else max(dt, h * factor)
                if dt < MIN_STEP and tau < stop:
                    raise IntegrationDivergence(f"step size underflow ({dt:.3g}) at tau = {tau:.6g}", node)
            out.append(y)
        return out, np.asarray(dts)

    def _integrate_once(self, s, u, p, node, derivatives, dt0, budget) -> IntervalResult:
        d = self.dynamics
        if derivatives:
            y0 = d.initial_augmented(s)
            n_control = d.n_y if self.config.error_control == "all" else d.n_a
            step = self._step_aug
        else:
            y0 = d.initial_nominal(s)
            n_control = d.n_a
            step = self._step_nominal
        (y_end,), dts = self._adaptive(step, y0, u, p, node, dt0, budget, n_control)
        return self._result(y_end, dts, n_steps=len(dts))

    # ==================== Dense output ====================

    def simulate(self, s, u, p, node, taus) -> np.ndarray:
        d = self.dynamics
        taus = np.asarray(taus, dtype=float)
        if taus.size == 0:
            return np.empty((0, d.n_x))
        order = np.argsort(taus)
        y0 = d.initial_nominal(s)
        stops = [t for t in taus[order] if t > 0.0]
        states, _ = self._adaptive(
            self._step_nominal, y0, np.asarray(u, float), np.asarray(p, float), node,
            self.dt0, 2 * self.config.max_substeps, d.n_a, stops=stops,
        )
        at_zero = [y0] * (len(taus) - len(stops))
        sorted_states = np.array(at_zero + states)
        result = np.empty((len(taus), d.n_x))
        result[order] = sorted_states[:, : d.n_x]
        return result

    # ==================== Exact second derivatives ====================

    def _replay(self, w, dts, node):
        d = self.dynamics
        x, u, p = d.split_w(w)
        y0 = jnp.concatenate([x, jnp.zeros(1, dtype=w.dtype)])
        pair = self.pair

        def body(carry, dt):
            tau, y = carry
            y_next, _ = embedded_step(d.rhs, pair, tau, y, dt, u, p, node)
            return (tau + dt, y_next), None

        (_, y_end), _ = jax.lax.scan(body, (jnp.asarray(0.0, dtype=w.dtype), y0), dts)
        return y_end

    def _weighted_replay(self, w, weights, dts, node):
        return weights @ self._replay(w, dts, node)

    def interval_hessian(self, weights, s, u, p, node, dts) -> np.ndarray:
        """Hessian of ``weights . [x+; q]`` with respect to ``w = (s, u, p)``.

        The recorded sub-steps are replayed as a ``jax.lax.scan`` (zero-padded
        to a power of two to bound recompilation) and differentiated forward
        over forward, so this is the exact Hessian of the discrete scheme.

        Returns:
            Array of shape ``(n_w, n_w)``.
        """
        dts = np.asarray(dts, dtype=float)
        padded = np.zeros(_padded_length(max(len(dts), 1)))
        padded[: len(dts)] = dts
        w = np.concatenate([np.asarray(s, float), np.asarray(u, float), np.asarray(p, float)])
        H = self._hessian(w, np.asarray(weights, dtype=float), padded, float(node))
        H = np.asarray(H)
        return 0.5 * (H + H.T)
