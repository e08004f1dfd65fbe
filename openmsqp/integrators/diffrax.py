from functools import partial

import diffrax as dfx
import jax
import jax.numpy as jnp
import numpy as np

from openmsqp.config import DiscretizationConfig
from openmsqp.dynamics import ShootingDynamics
from openmsqp.errors import IntegrationDivergence, NumericalFailure
from openmsqp.integrators.base import IntervalResult, Integrator

SOLVER_MAP = {
    "Tsit5": dfx.Tsit5,
    "Euler": dfx.Euler,
    "Heun": dfx.Heun,
    "Midpoint": dfx.Midpoint,
    "Ralston": dfx.Ralston,
    "Dopri5": dfx.Dopri5,
    "Dopri8": dfx.Dopri8,
    "Bosh3": dfx.Bosh3,
    "ReversibleHeun": dfx.ReversibleHeun,
    "ImplicitEuler": dfx.ImplicitEuler,
    "KenCarp3": dfx.KenCarp3,
    "KenCarp4": dfx.KenCarp4,
    "KenCarp5": dfx.KenCarp5,
}


class DiffraxIntegrator(Integrator):
    """Interval integration with ``diffrax.diffeqsolve`` and a PID step controller.

    Same contract as :class:`~openmsqp.integrators.runge_kutta.RungeKuttaIntegrator`,
    except that accepted sub-steps are not recorded, so no exact Hessian is
    available.
    """

    def __init__(self, dynamics: ShootingDynamics, config: DiscretizationConfig):
        super().__init__(dynamics, config)
        solver_class = SOLVER_MAP.get(config.solver)
        if solver_class is None:
            raise ValueError(f"Unknown solver: {config.solver}")
        self.solver = solver_class()
        self._term_aug = dfx.ODETerm(lambda tau, y, args: dynamics.rhs_aug(tau, y, *args))
        self._term_nominal = dfx.ODETerm(lambda tau, y, args: dynamics.rhs(tau, y, *args))

    @partial(jax.jit, static_argnums=(0, 1, 7))
    def _solve(self, augmented, y0, u, p, node, dt0, max_steps):
        term = self._term_aug if augmented else self._term_nominal
        stepsize_controller = dfx.PIDController(rtol=self.config.rtol, atol=self.config.atol)
        solution = dfx.diffeqsolve(
            term,
            solver=self.solver,
            t0=0.0,
            t1=1.0,
            dt0=dt0,
            y0=y0,
            args=(u, p, node),
            stepsize_controller=stepsize_controller,
            saveat=dfx.SaveAt(t1=True),
            max_steps=max_steps,
            throw=False,
        )
        exhausted = solution.result == dfx.RESULTS.max_steps_reached
        successful = solution.result == dfx.RESULTS.successful
        return solution.ys[-1], solution.stats["num_accepted_steps"], exhausted, successful

    def _integrate_once(self, s, u, p, node, derivatives, dt0, budget) -> IntervalResult:
        d = self.dynamics
        y0 = d.initial_augmented(s) if derivatives else d.initial_nominal(s)
        y_end, n_steps, exhausted, successful = self._solve(
            bool(derivatives), jnp.asarray(y0), jnp.asarray(u), jnp.asarray(p), float(node), dt0, int(budget)
        )
        y_end = np.asarray(y_end)
        if not np.all(np.isfinite(y_end)):
            raise NumericalFailure("non-finite state", node)
        if bool(exhausted):
            raise IntegrationDivergence(f"no convergence within {budget} sub-steps", node)
        if not bool(successful):
            raise IntegrationDivergence("step size controller failed", node)
        return self._result(y_end, None, n_steps=int(n_steps))

    def simulate(self, s, u, p, node, taus) -> np.ndarray:
        d = self.dynamics
        taus = jnp.asarray(taus, dtype=float)
        if taus.size == 0:
            return np.empty((0, d.n_x))
        solution = dfx.diffeqsolve(
            self._term_nominal,
            solver=self.solver,
            t0=0.0,
            t1=1.0,
            dt0=self.dt0,
            y0=jnp.asarray(d.initial_nominal(s)),
            args=(jnp.asarray(u, dtype=float), jnp.asarray(p, dtype=float), float(node)),
            stepsize_controller=dfx.PIDController(rtol=self.config.rtol, atol=self.config.atol),
            saveat=dfx.SaveAt(ts=taus),
            max_steps=2 * self.config.max_substeps,
        )
        return np.asarray(solution.ys)[:, : d.n_x]
