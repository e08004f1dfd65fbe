"""Shooting-interval integrators.

Two backends share the :class:`Integrator` contract:

- ``"rk"``: :class:`RungeKuttaIntegrator`, built-in embedded pairs with
  recorded sub-steps (required by the exact Hessian).
- ``"diffrax"``: :class:`DiffraxIntegrator`, any solver of ``SOLVER_MAP``.
"""

from openmsqp.config import DiscretizationConfig
from openmsqp.dynamics import ShootingDynamics
from openmsqp.integrators.base import IntervalResult, Integrator
from openmsqp.integrators.diffrax import SOLVER_MAP, DiffraxIntegrator
from openmsqp.integrators.runge_kutta import RungeKuttaIntegrator, embedded_step
from openmsqp.integrators.tableaus import PAIRS, EmbeddedPair

INTEGRATORS = {
    "rk": RungeKuttaIntegrator,
    "diffrax": DiffraxIntegrator,
}


def get_integrator(dynamics: ShootingDynamics, config: DiscretizationConfig) -> Integrator:
    integrator_class = INTEGRATORS.get(config.integrator)
    if integrator_class is None:
        raise ValueError(f"Unknown integrator: {config.integrator}")
    return integrator_class(dynamics, config)


__all__ = [
    "DiffraxIntegrator",
    "EmbeddedPair",
    "Integrator",
    "IntervalResult",
    "PAIRS",
    "RungeKuttaIntegrator",
    "SOLVER_MAP",
    "embedded_step",
    "get_integrator",
]
