"""
Free-final-time rocket ascent from examples/rocket.py.

The reference solution reaches the target in roughly 7.44 s. The check is an
order of magnitude one: the exact digits depend on the grid and the tolerances.
"""

import jax
import numpy as np
import pytest

from openmsqp import Config, Problem, SolverStatus


def test_rocket_example():
    from examples.rocket import build_model

    problem = Problem(build_model(), Config.from_options(N=20, kkt_tolerance=1e-6, printing=False))
    problem.initialize()
    result = problem.solve()
    result = problem.post_process(result)

    assert result["converged"], f"Rocket failed to converge ({result.status})"
    assert result.status == SolverStatus.CONVERGED
    assert result.kkt_residual < 1e-6
    assert result.iterations <= 15, f"Took {result.iterations} SQP iterations (expected <= 15)"

    T = result.parameters["T"][0]
    assert result.objective == pytest.approx(T)
    assert T == pytest.approx(7.44, abs=0.5)

    # Boundary conditions
    np.testing.assert_allclose(result.state("position")[[0, -1], 0], [0.0, 10.0], atol=1e-6)
    np.testing.assert_allclose(result.state("velocity")[[0, -1], 0], [0.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(result.state("mass")[0], [1.0], atol=1e-6)

    # Path and box constraints at the nodes
    v = result.state("velocity")[:, 0]
    assert np.all(v <= 1.7 + 1e-6) and np.all(v >= -0.1 - 1e-6)
    u = result.control("thrust")[:, 0]
    assert np.all(np.abs(u) <= 1.1 + 1e-9)
    # Fuel is only burned
    assert np.all(np.diff(result.state("mass")[:, 0]) <= 1e-6)

    # The re-simulated trajectory ends where the shooting nodes do
    np.testing.assert_allclose(result.x_full[-1], result.x[-1], atol=1e-4)
    assert result.t_full[-1] == pytest.approx(T)

    jax.clear_caches()


def test_rocket_example_module_problem():
    from examples.rocket import problem

    assert problem.settings.dis.n == 20
    assert problem.problem.n_x == 3
    assert problem.problem.n_u == 1
    assert problem.problem.n_p == 1
    assert problem.problem.horizon_index is not None
