"""End-to-end SQP solves on small problems with known behaviour.

The double integrator transfer ``x: 0 -> 1, v: 0 -> 0`` in ``T = 2`` with cost
``∫ a² dt`` has the continuous optimum ``12 / T³ = 1.5``. Its piecewise constant
discretization is slightly more expensive, ``1.5 / (1 - 1/N²)``.
"""

import jax
import numpy as np
import pytest

from openmsqp import Config, ConstraintRole, NumericalFailure, Problem, ProblemModel, SolverStatus, ops, solve

from conftest import double_integrator_model, pendulum_model


def lq_cost(N, T=2.0):
    return 12.0 / T**3 / (1.0 - 1.0 / N**2)


def make_problem(model, **options):
    options.setdefault("N", 10)
    options.setdefault("printing", False)
    problem = Problem(model, Config.from_options(**options))
    problem.initialize()
    return problem


def test_double_integrator_converges():
    problem = make_problem(double_integrator_model(), kkt_tolerance=1e-7)
    result = problem.solve()

    assert result["converged"]
    assert result.status == SolverStatus.CONVERGED
    assert result.objective == pytest.approx(lq_cost(10), rel=1e-6)
    assert result.kkt_residual <= 1e-7
    assert result.infeasibility < 1e-7
    # A linear-quadratic problem is solved by the first Newton step
    assert result.iterations <= 2

    position = result.state("position")
    velocity = result.state("velocity")
    assert position.shape == (11, 1)
    assert result.control("acceleration").shape == (10, 1)
    np.testing.assert_allclose(position[[0, -1], 0], [0.0, 1.0], atol=1e-8)
    np.testing.assert_allclose(velocity[[0, -1], 0], [0.0, 0.0], atol=1e-8)
    np.testing.assert_allclose(result.t_nodes, np.linspace(0.0, 2.0, 11))
    assert result.horizon == pytest.approx(2.0)

    # Optimal acceleration is antisymmetric about the midpoint
    a = result.control("acceleration")[:, 0]
    np.testing.assert_allclose(a, -a[::-1], atol=1e-6)
    assert a[0] > 0.0

    jax.clear_caches()


def test_records_follow_iterations():
    problem = make_problem(pendulum_model())
    result = problem.solve()

    assert result.converged
    assert len(result.records) == result.iterations
    assert [r.iteration for r in result.records] == list(range(1, result.iterations + 1))
    assert result.records[-1].status == SolverStatus.CONVERGED
    assert result.records[-1].kkt_residual == pytest.approx(result.kkt_residual)
    for record in result.records:
        assert 0.0 < record.step_length <= 1.0
        assert record.penalty > 0.0
        assert record.qp_iterations >= 1
    assert set(result.timing) >= {"initialize", "solve"}


def test_pendulum_solution_is_feasible():
    problem = make_problem(pendulum_model())
    result = problem.solve()

    assert result.converged
    T = result.parameters["T"]
    assert T.shape == (1,)
    assert 1.0 <= T[0] <= 5.0
    assert result.horizon == pytest.approx(T[0])
    omega = result.state("omega")[:, 0]
    assert np.all(omega**2 <= 4.0 + 1e-6)
    torque = result.control("torque")[:, 0]
    assert np.all(np.abs(torque) <= 3.0 + 1e-9)
    np.testing.assert_allclose(result.state("theta")[-1], [1.0], atol=1e-6)


def test_iteration_budget_is_resumable():
    problem = make_problem(pendulum_model())
    result = problem.solve(max_iterations=1)

    assert result.status == SolverStatus.MAX_ITER_REACHED
    assert result.iterations == 1
    assert not result["converged"]

    # Iterations of earlier calls count towards the budget
    result = problem.solve()
    assert result.converged
    assert result.iterations > 1
    assert len(result.records) == result.iterations


def test_time_limit_is_resumable():
    problem = make_problem(pendulum_model())
    result = problem.solve(time_limit=1e-9)

    assert result.status == SolverStatus.TIMED_OUT
    assert result.iterations <= 1

    result = problem.solve()
    assert result.converged


def test_real_time_iteration_takes_one_step_per_call():
    problem = make_problem(pendulum_model(), mode="real_time_single_iteration")
    kkt0 = problem.state.kkt

    result = problem.solve()
    assert result.status == SolverStatus.TIMED_OUT
    assert result.iterations == 1
    assert result.records[0].step_length == 1.0

    result = problem.solve()
    assert result.iterations == 2
    assert result.status in (SolverStatus.TIMED_OUT, SolverStatus.CONVERGED)

    for _ in range(20):
        if result.converged:
            break
        result = problem.solve()
    assert result.kkt_residual < kkt0


def test_real_time_iteration_stops_at_convergence():
    problem = make_problem(double_integrator_model(), mode="real_time_single_iteration")
    statuses = [problem.solve().status for _ in range(3)]
    assert statuses[-1] == SolverStatus.CONVERGED
    # A converged state is not iterated any further
    assert problem.solve().iterations == problem.state.k


def test_divergence_threshold():
    problem = make_problem(pendulum_model(), divergence_threshold=1e-3)
    assert problem.state.status == SolverStatus.DIVERGED

    result = problem.solve()
    assert result.status == SolverStatus.DIVERGED
    assert result.iterations == 0
    assert result.records == []


def test_reset_restarts_from_initial_guess():
    problem = make_problem(pendulum_model())
    first = problem.solve()
    assert first.converged

    problem.reset()
    assert problem.state.k == 0
    assert problem.state.records == []
    assert not problem.state.terminal

    second = problem.solve()
    assert second.converged
    assert second.iterations == first.iterations
    assert second.objective == pytest.approx(first.objective, rel=1e-8)


def test_step_reports_progress():
    problem = make_problem(pendulum_model())
    info = problem.step()

    assert set(info) == {"converged", "status", "iteration", "kkt_residual", "objective"}
    assert info["iteration"] == 1
    assert info["status"] in (SolverStatus.ITERATING, SolverStatus.CONVERGED)

    while not info["converged"] and info["iteration"] < 50:
        info = problem.step()
    assert info["converged"]
    # Stepping a converged problem leaves it untouched
    assert problem.step()["iteration"] == info["iteration"]


def test_requires_initialize():
    problem = Problem(double_integrator_model(), Config.from_options(N=5, printing=False))
    with pytest.raises(ValueError, match="initialize"):
        problem.solve()
    with pytest.raises(ValueError, match="initialize"):
        problem.reset()
    with pytest.raises(ValueError, match="initialize"):
        problem.step()
    with pytest.raises(ValueError, match="initialize"):
        problem.post_process(None)


@pytest.mark.parametrize(
    "options",
    [
        {"hessian": "gauss_newton"},
        {"hessian": "block_bfgs"},
        {"qp_solver_kind": "cvxpy"},
        {"hessian": "gauss_newton", "integrator": "diffrax"},
        {"integrator_order": 3},
    ],
    ids=["gauss_newton", "block_bfgs", "cvxpy", "diffrax", "bs3"],
)
def test_solver_variants_agree(options):
    problem = make_problem(double_integrator_model(), kkt_tolerance=1e-6, **options)
    result = problem.solve()

    assert result.converged
    assert result.objective == pytest.approx(lq_cost(10), rel=1e-4)

    jax.clear_caches()


def test_solve_function():
    result = solve(double_integrator_model(), Config.from_options(N=10, printing=False))
    assert result.converged
    assert result.objective == pytest.approx(lq_cost(10), rel=1e-6)


def contradictory_path_model():
    model = ProblemModel("contradictory_path")
    x = model.declare_state("x")
    u = model.declare_control("u")
    model.set_dynamics({x: u})
    model.set_horizon(1.0)
    model.set_lagrange_weights(R=np.eye(1))
    model.subject_to(ConstraintRole.INITIAL, x, 0.0, 0.0)
    model.add_constraint(ConstraintRole.PATH, ops.at_least(x, 2.0))
    return model


def sqrt_dynamics_model():
    model = ProblemModel("sqrt_dynamics")
    x = model.declare_state("x")
    u = model.declare_control("u")
    model.set_dynamics({x: ops.add(ops.sqrt(x), u)})
    model.set_horizon(1.0)
    model.set_lagrange_weights(R=np.eye(1))
    model.subject_to(ConstraintRole.INITIAL, x, -1.0, -1.0)
    return model


def test_infeasible_subproblem_diverges_after_one_relaxation():
    problem = make_problem(contradictory_path_model())
    z0 = problem.state.z.copy()

    with pytest.warns(UserWarning) as caught:
        result = problem.solve()
    messages = [str(w.message) for w in caught]

    assert result.status == SolverStatus.DIVERGED
    assert result.iterations == 1
    assert any("retrying with row ('node', 0" in m for m in messages)
    assert any("still infeasible after relaxation" in m for m in messages)
    # No step was taken
    np.testing.assert_array_equal(result.z, z0)
    # DIVERGED is final until reset()
    assert problem.solve().iterations == 1


def test_integration_failure_at_initial_guess_diverges():
    with pytest.warns(UserWarning) as caught:
        problem = make_problem(sqrt_dynamics_model())
    messages = [str(w.message) for w in caught]
    assert any("retrying with a smaller initial sub-step" in m for m in messages)
    assert any("Integration failed at the initial guess" in m for m in messages)

    result = problem.solve()
    assert result.status == SolverStatus.DIVERGED
    assert result.iterations == 0
    assert result.records == []


def test_failed_trial_points_keep_the_last_iterate(monkeypatch):
    problem = make_problem(pendulum_model())
    problem.solve(max_iterations=1)
    z_accepted = problem.state.z.copy()
    objective = problem.state.objective

    def failing_evaluate(z, derivatives=True):
        raise NumericalFailure("non-finite state", node=0)

    monkeypatch.setattr(problem.evaluator, "evaluate", failing_evaluate)
    result = problem.solve()

    assert result.status == SolverStatus.DIVERGED
    assert result.iterations == 2
    assert result.records[-1].step_length == 0.0
    np.testing.assert_array_equal(result.z, z_accepted)
    assert result.objective == pytest.approx(objective)


def test_failed_full_step_in_real_time_mode(monkeypatch):
    problem = make_problem(pendulum_model(), mode="real_time_single_iteration")
    z0 = problem.state.z.copy()

    def failing_evaluate(z, derivatives=True):
        raise NumericalFailure("non-finite state", node=0)

    monkeypatch.setattr(problem.evaluator, "evaluate", failing_evaluate)
    with pytest.warns(UserWarning, match="Integration failed at the full step"):
        result = problem.solve()

    assert result.status == SolverStatus.DIVERGED
    np.testing.assert_array_equal(result.z, z0)


def test_real_time_step_matches_solve():
    problem = make_problem(pendulum_model(), mode="real_time_single_iteration")
    info = problem.step()
    assert info["iteration"] == 1
    assert info["status"] == SolverStatus.TIMED_OUT
    assert not info["converged"]

    # A timed out real-time iterate can be stepped again
    assert problem.step()["iteration"] == 2
