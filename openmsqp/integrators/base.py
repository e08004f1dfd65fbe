"""Base class for shooting-interval integrators.

An integrator propagates one shooting interval from ``(s_i, u_i, p)`` and
returns the end state, the running-cost quadrature and, on request, their
first derivatives obtained from the variational equations. Failures inside an
interval are retried once with a tenfold smaller initial sub-step and a
doubled sub-step budget before they propagate to the caller.
"""

import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from openmsqp.config import DiscretizationConfig
from openmsqp.dynamics import ShootingDynamics
from openmsqp.errors import IntegrationError


@dataclass
class IntervalResult:
    """Outcome of integrating one shooting interval.

    Attributes:
        x_end (np.ndarray): End state ``x_i+``, shape ``(n_x,)``
        q (float): Running-cost quadrature over the interval
        A (np.ndarray): ``dx+/ds_i``, shape ``(n_x, n_x)``, None without derivatives
        B (np.ndarray): ``dx+/du_i``, shape ``(n_x, n_u)``
        P (np.ndarray): ``dx+/dp``, shape ``(n_x, n_p)``
        dq (np.ndarray): ``dq/d(s_i, u_i, p)``, shape ``(n_w,)``
        dts (np.ndarray): Accepted normalized sub-steps, empty when not recorded
        n_steps (int): Number of accepted sub-steps
        retried (bool): Whether the interval needed the local retry
    """

    x_end: np.ndarray
    q: float
    A: Optional[np.ndarray] = None
    B: Optional[np.ndarray] = None
    P: Optional[np.ndarray] = None
    dq: Optional[np.ndarray] = None
    dts: np.ndarray = field(default_factory=lambda: np.zeros(0))
    n_steps: int = 0
    retried: bool = False

    @property
    def has_derivatives(self) -> bool:
        return self.A is not None


class Integrator(ABC):
    """Abstract base class for interval integrators.

    Implementations provide :meth:`_integrate_once`; the retry policy and the
    error labelling live in :meth:`integrate`.

    Example:
        Implementing a custom integrator::

            class MyIntegrator(Integrator):
                def _integrate_once(self, s, u, p, node, derivatives, dt0, budget):
                    y_end, dts = my_solver(...)
                    return self._result(y_end, dts)
    """

    supports_exact_hessian = False

    def __init__(self, dynamics: ShootingDynamics, config: DiscretizationConfig):
        self.dynamics = dynamics
        self.config = config

    @property
    def dt0(self) -> float:
        return 1.0 / self.config.initial_substeps

    def integrate(self, s, u, p, node: int, derivatives: bool = True) -> IntervalResult:
        """Integrate interval ``node`` starting from ``s`` with control ``u`` and parameters ``p``.

        Raises:
            NumericalFailure: The dynamics produced a non-finite value twice.
            IntegrationDivergence: Step adaptation failed twice.
        """
        s = np.array(s, dtype=float)
        u = np.array(u, dtype=float)
        p = np.array(p, dtype=float)
        try:
            return self._integrate_once(s, u, p, node, derivatives, self.dt0, self.config.max_substeps)
        except IntegrationError as e:
            warnings.warn(f"Interval {node}: {e}; retrying with a smaller initial sub-step")
        try:
            result = self._integrate_once(
                s, u, p, node, derivatives, self.dt0 / 10.0, 2 * self.config.max_substeps
            )
        except IntegrationError as e:
            e.node = node
            raise
        result.retried = True
        return result

    def _result(self, y_end, dts=None, n_steps=0) -> IntervalResult:
        x_end, q, A, B, P, dq = self.dynamics.unpack(y_end)
        dts = np.zeros(0) if dts is None else np.asarray(dts, dtype=float)
        return IntervalResult(
            x_end=np.array(x_end), q=q, A=A, B=B, P=P, dq=dq, dts=dts, n_steps=int(n_steps)
        )

    @abstractmethod
    def _integrate_once(
        self, s, u, p, node: int, derivatives: bool, dt0: float, budget: int
    ) -> IntervalResult:
        """Single integration attempt of one interval.

        Args:
            s, u, p: Start state, interval control and parameters
            node: Interval index, used for the interval's time offset
            derivatives: Whether to integrate the variational equations as well
            dt0: Initial normalized sub-step
            budget: Maximum number of sub-steps
        """
        ...

    @abstractmethod
    def simulate(self, s, u, p, node: int, taus) -> np.ndarray:
        """Nominal states of interval ``node`` at the normalized times ``taus``.

        Returns:
            Array of shape ``(len(taus), n_x)``.
        """
        ...
