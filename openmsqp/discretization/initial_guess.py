"""Initial decision vector of the shooting transcription.

:func:`initial_guess` is a pure function of the validated problem, the grid
and the strategy name. User guesses always take precedence; the strategy only
decides what fills the entries the user left open.
"""

import warnings
from typing import Optional

import numpy as np

from openmsqp.discretization.grid import DecisionLayout, ShootingGrid
from openmsqp.errors import IntegrationError
from openmsqp.model import ValidatedProblem
from openmsqp.utils import project


def _default_value(lb: np.ndarray, ub: np.ndarray) -> np.ndarray:
    """Zero where admissible, else the box midpoint, else the finite bound."""
    value = np.zeros_like(lb)
    outside = (lb > 0.0) | (ub < 0.0)
    both = np.isfinite(lb) & np.isfinite(ub)
    value[outside & both] = 0.5 * (lb + ub)[outside & both]
    only_lower = outside & np.isfinite(lb) & ~np.isfinite(ub)
    only_upper = outside & ~np.isfinite(lb) & np.isfinite(ub)
    value[only_lower] = lb[only_lower]
    value[only_upper] = ub[only_upper]
    return value


def _resample(trajectory: np.ndarray, n: int) -> np.ndarray:
    """Linearly resample a ``(K, d)`` trajectory onto ``n`` evenly spaced points."""
    K = trajectory.shape[0]
    if K == n:
        return trajectory.copy()
    if K == 1:
        return np.repeat(trajectory, n, axis=0)
    src = np.linspace(0.0, 1.0, K)
    dst = np.linspace(0.0, 1.0, n)
    return np.stack([np.interp(dst, src, trajectory[:, j]) for j in range(trajectory.shape[1])], axis=1)


def _user_trajectory(guess: Optional[np.ndarray], n: int, d: int) -> np.ndarray:
    if guess is None:
        return np.full((n, d), np.nan)
    guess = np.atleast_2d(guess)
    return _resample(guess, n)


def _interpolated_states(problem: ValidatedProblem, N: int) -> np.ndarray:
    a, b = problem.initial_values, problem.terminal_values
    start = np.where(np.isfinite(a), a, np.where(np.isfinite(b), b, 0.0))
    end = np.where(np.isfinite(b), b, start)
    weights = np.linspace(0.0, 1.0, N + 1)[:, None]
    return (1.0 - weights) * start + weights * end


def parameter_guess(problem: ValidatedProblem) -> np.ndarray:
    """User guess, else the midpoint of the bounds, the finite bound, or zero."""
    lb, ub = problem.p_lb, problem.p_ub
    value = np.zeros(problem.n_p)
    both = np.isfinite(lb) & np.isfinite(ub)
    value[both] = 0.5 * (lb + ub)[both]
    value[np.isfinite(lb) & ~np.isfinite(ub)] = lb[np.isfinite(lb) & ~np.isfinite(ub)]
    value[~np.isfinite(lb) & np.isfinite(ub)] = ub[~np.isfinite(lb) & np.isfinite(ub)]
    if problem.p_guess is not None:
        given = np.isfinite(problem.p_guess)
        value[given] = problem.p_guess[given]
    return project(value, lb, ub)


def initial_guess(problem: ValidatedProblem, grid: ShootingGrid, strategy: str = "interpolate",
                  integrator=None) -> np.ndarray:
    """Build the initial decision vector.

    Args:
        problem: The validated problem
        grid: The shooting grid (gives N)
        strategy: "interpolate" fills states by linear interpolation between
            simple INITIAL and TERMINAL equality values, "zero" with zeros,
            "simulate" by forward simulation from ``s_0`` with the guessed controls
        integrator: Required by the "simulate" strategy

    Returns:
        ``z`` with exactly ``n_z`` entries.
    """
    N = grid.N
    n_x, n_u = problem.n_x, problem.n_u
    layout = DecisionLayout(n_x, n_u, problem.n_p, N)

    # Parameters
    p = parameter_guess(problem)

    # Controls
    U = _user_trajectory(problem.u_guess, N, n_u)
    default_u = _default_value(problem.u_lb, problem.u_ub)
    U = np.where(np.isfinite(U), U, default_u[None, :])
    U = project(U, problem.u_lb, problem.u_ub)

    # States
    S_user = _user_trajectory(problem.x_guess, N + 1, n_x)
    if strategy == "zero":
        S_default = np.zeros((N + 1, n_x))
    elif strategy in ("interpolate", "simulate"):
        S_default = _interpolated_states(problem, N)
    else:
        raise ValueError(f"Unknown initial guess strategy {strategy!r}")
    S = np.where(np.isfinite(S_user), S_user, S_default)
    S = project(S, problem.x_lb, problem.x_ub)

    if strategy == "simulate":
        if integrator is None:
            raise ValueError("The 'simulate' initial guess needs an integrator")
        for i in range(N):
            try:
                S[i + 1] = integrator.integrate(S[i], U[i], p, i, derivatives=False).x_end
            except IntegrationError as e:
                warnings.warn(f"Initial simulation stopped at interval {i} ({e}); interpolating the rest")
                break

    z = layout.pack(S, U, p)
    return z
