"""Shooting grid, decision-vector layout and the initial guess."""

import numpy as np
import pytest

from openmsqp import Config, ConstraintRole, ProblemModel
from openmsqp.discretization import DecisionLayout, ShootingGrid, initial_guess, parameter_guess
from conftest import build_pipeline, double_integrator_model, pendulum_model


@pytest.fixture
def layout():
    return DecisionLayout(n_x=2, n_u=1, n_p=1, N=3)


def test_layout_sizes(layout):
    assert layout.n_z == 4 * 2 + 3 * 1 + 1
    assert layout.n_e == 4
    assert layout.u_offset == 8
    assert layout.p_offset == 11


def test_pack_unpack(layout):
    S = np.arange(8.0).reshape(4, 2)
    U = np.array([[10.0], [11.0], [12.0]])
    p = np.array([20.0])
    z = layout.pack(S, U, p)
    S2, U2, p2 = layout.unpack(z)
    np.testing.assert_array_equal(S2, S)
    np.testing.assert_array_equal(U2, U)
    np.testing.assert_array_equal(p2, p)
    np.testing.assert_array_equal(z[layout.s(2)], [4.0, 5.0])
    np.testing.assert_array_equal(z[layout.u(1)], [11.0])
    np.testing.assert_array_equal(z[layout.p], [20.0])


def test_element_index(layout):
    np.testing.assert_array_equal(layout.element_index(0), [0, 1, 8, 11])
    np.testing.assert_array_equal(layout.element_index(2), [4, 5, 10, 11])
    # node N reuses the last control slot
    np.testing.assert_array_equal(layout.element_index(3), [6, 7, 10, 11])


def test_grid_times_with_free_horizon():
    problem = pendulum_model().validate()
    grid = ShootingGrid(problem, 4)
    p = np.array([2.0])
    assert grid.horizon(p) == 2.0
    assert grid.interval_length(p) == 0.5
    np.testing.assert_allclose(grid.node_times(p), [0.0, 0.5, 1.0, 1.5, 2.0])
    assert grid.node_time(3, p) == 1.5


def test_grid_times_with_offset():
    model = ProblemModel()
    x = model.declare_state("x")
    model.set_dynamics({x: 1.0})
    model.set_horizon(2.0, t0=1.0)
    grid = ShootingGrid(model.validate(), 2)
    np.testing.assert_allclose(grid.node_times(np.zeros(0)), [1.0, 2.0, 3.0])


def test_bounds():
    pipe = build_pipeline(pendulum_model())
    L = pipe.layout
    assert pipe.z_lower.shape == (L.n_z,)
    np.testing.assert_allclose(pipe.z_lower[L.controls], -3.0)
    np.testing.assert_allclose(pipe.z_upper[L.controls], 3.0)
    np.testing.assert_allclose(pipe.z_lower[L.p], [1.0])
    np.testing.assert_allclose(pipe.z_upper[L.p], [5.0])
    assert np.all(np.isinf(pipe.z_lower[L.states]))


def test_interpolated_guess():
    problem = double_integrator_model().validate()
    grid = ShootingGrid(problem, 4)
    z = initial_guess(problem, grid, "interpolate")
    S, U, p = DecisionLayout(2, 1, 0, 4).unpack(z)
    np.testing.assert_allclose(S[:, 0], np.linspace(0.0, 1.0, 5))
    np.testing.assert_allclose(S[:, 1], 0.0)
    np.testing.assert_allclose(U, 0.0)
    assert p.size == 0


def test_zero_guess_is_projected_onto_the_bounds():
    model = ProblemModel()
    x = model.declare_state("x")
    u = model.declare_control("u")
    model.set_dynamics({x: u})
    model.set_horizon(1.0)
    model.set_bounds(x, 1.0, 2.0)
    model.set_bounds(u, 0.5, np.inf)
    problem = model.validate()
    z = initial_guess(problem, ShootingGrid(problem, 3), "zero")
    S, U, _ = DecisionLayout(1, 1, 0, 3).unpack(z)
    np.testing.assert_allclose(S, 1.0)
    np.testing.assert_allclose(U, 0.5)


def test_user_guesses_take_precedence():
    model = double_integrator_model()
    x, v = model.states
    (a,) = model.controls
    model.set_initial_guess(v, [0.7])
    model.set_initial_guess(a, np.array([[1.0], [-1.0]]))
    problem = model.validate()
    for strategy in ("interpolate", "zero"):
        z = initial_guess(problem, ShootingGrid(problem, 4), strategy)
        S, U, _ = DecisionLayout(2, 1, 0, 4).unpack(z)
        np.testing.assert_allclose(S[:, 1], 0.7)
        np.testing.assert_allclose(U[:, 0], np.linspace(1.0, -1.0, 4))
    np.testing.assert_allclose(S[:, 0], 0.0)


def test_simulated_guess_is_continuous():
    config = Config.from_options(N=5, initial_guess_strategy="simulate", printing=False)
    model = double_integrator_model()
    model.set_initial_guess(model.controls[0], [0.5])
    pipe = build_pipeline(model, config)
    S, U, _ = pipe.layout.unpack(pipe.z0)
    t = pipe.grid.node_times(np.zeros(0))
    np.testing.assert_allclose(S[:, 0], 0.25 * t**2, atol=1e-8)
    np.testing.assert_allclose(S[:, 1], 0.5 * t, atol=1e-8)


def test_simulate_strategy_needs_an_integrator():
    problem = double_integrator_model().validate()
    with pytest.raises(ValueError):
        initial_guess(problem, ShootingGrid(problem, 4), "simulate")
    with pytest.raises(ValueError):
        initial_guess(problem, ShootingGrid(problem, 4), "random")


def test_parameter_guess():
    problem = pendulum_model().validate()
    np.testing.assert_allclose(parameter_guess(problem), [3.0])

    model = ProblemModel()
    x = model.declare_state("x")
    model.declare_parameter("a", lb=1.0, ub=3.0)
    model.declare_parameter("b", lb=2.0)
    model.declare_parameter("c", guess=7.0, ub=5.0)
    model.set_dynamics({x: 0.0})
    model.set_horizon(1.0)
    model.subject_to(ConstraintRole.INITIAL, x, 0.0, 0.0)
    np.testing.assert_allclose(parameter_guess(model.validate()), [2.0, 2.0, 5.0])


def test_guess_has_exactly_n_z_entries():
    pipe = build_pipeline(pendulum_model(), Config.from_options(N=7, printing=False))
    assert pipe.z0.shape == (pipe.layout.n_z,)
    assert np.all(np.isfinite(pipe.z0))
