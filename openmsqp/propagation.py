import numpy as np

from openmsqp.config import Config
from openmsqp.discretization.grid import DecisionLayout, ShootingGrid
from openmsqp.integrators.base import Integrator
from openmsqp.results import OptimizationResults


def simulate_nonlinear(
    integrator: Integrator, grid: ShootingGrid, x0, U, p, inter_sample: int
):
    """Simulate the dynamics from ``x0`` under the piecewise constant controls ``U``.

    Every interval is sampled at ``inter_sample`` equally spaced normalized
    times (end point included) and started from the end state of the
    previous one, so the output is a single continuous trajectory.

    Returns:
        ``(t_full, x_full, u_full)`` with ``N * inter_sample + 1`` samples.
    """
    N = grid.N
    h = grid.interval_length(p)
    taus = np.linspace(0.0, 1.0, inter_sample + 1)[1:]

    t_full = [grid.node_time(0, p)]
    x_full = [np.asarray(x0, dtype=float)]
    u_full = [np.asarray(U[0], dtype=float)]
    x_start = x_full[0]
    for i in range(N):
        samples = integrator.simulate(x_start, U[i], p, i, taus)
        t_start = grid.node_time(i, p)
        for tau, x in zip(taus, samples):
            t_full.append(t_start + tau * h)
            x_full.append(np.asarray(x, dtype=float))
            u_full.append(np.asarray(U[min(i + 1, N - 1)] if tau == 1.0 else U[i], dtype=float))
        x_start = x_full[-1]
    return np.array(t_full), np.array(x_full), np.array(u_full)


def propagate_trajectory_results(
    settings: Config,
    result: OptimizationResults,
    integrator: Integrator,
    grid: ShootingGrid,
    layout: DecisionLayout,
) -> OptimizationResults:
    """Propagate the optimal controls through the nonlinear dynamics.

    This re-simulates the whole horizon from the optimal initial state with
    the optimal controls and stores the dense trajectory on the result.

    Args:
        settings (Config): Configuration settings.
        result (OptimizationResults): Result of the solve.
        integrator (Integrator): Interval integrator.
        grid (ShootingGrid): Shooting grid of the solve.
        layout (DecisionLayout): Decision vector layout.

    Returns:
        OptimizationResults: The same result with ``t_full``, ``x_full`` and
        ``u_full`` filled in.
    """
    S, U, p = layout.unpack(result.z)
    t_full, x_full, u_full = simulate_nonlinear(
        integrator, grid, S[0], U, p, settings.prp.inter_sample
    )
    result.t_full = t_full
    result.x_full = x_full
    result.u_full = u_full
    return result
