"""Dense primal-dual interior-point QP solver."""

import numpy as np
import pytest

from openmsqp import QPInfeasible
from openmsqp.solvers import solve_dense_qp


def test_unconstrained():
    H = np.array([[4.0, 1.0], [1.0, 2.0]])
    g = np.array([1.0, -1.0])
    result = solve_dense_qp(H, g)
    np.testing.assert_allclose(result.x, np.linalg.solve(H, -g), atol=1e-10)
    assert result.objective == pytest.approx(-0.5 * g @ np.linalg.solve(H, g))


def test_equality_constrained():
    # min ½|x|² s.t. x0 + x1 = 1
    H = np.eye(2)
    g = np.zeros(2)
    A = np.array([[1.0, 1.0]])
    b = np.array([1.0])
    result = solve_dense_qp(H, g, A=A, b=b)
    np.testing.assert_allclose(result.x, [0.5, 0.5], atol=1e-10)
    # H x + g + Aᵀy = 0
    np.testing.assert_allclose(result.y, [-0.5], atol=1e-10)


def test_active_upper_bound_has_positive_multiplier():
    # min ½(x - 2)² s.t. x <= 1
    result = solve_dense_qp(np.eye(1), np.array([-2.0]), C=np.eye(1), upper=np.array([1.0]))
    np.testing.assert_allclose(result.x, [1.0], atol=1e-8)
    np.testing.assert_allclose(result.nu, [1.0], atol=1e-6)


def test_active_lower_bound_has_negative_multiplier():
    # min ½(x + 2)² s.t. x >= -1
    result = solve_dense_qp(np.eye(1), np.array([2.0]), C=np.eye(1), lower=np.array([-1.0]))
    np.testing.assert_allclose(result.x, [-1.0], atol=1e-8)
    np.testing.assert_allclose(result.nu, [-1.0], atol=1e-6)


def test_inactive_bounds_have_zero_multipliers():
    result = solve_dense_qp(
        np.eye(2), np.array([-0.2, 0.1]), C=np.eye(2), lower=-np.ones(2), upper=np.ones(2)
    )
    np.testing.assert_allclose(result.x, [0.2, -0.1], atol=1e-8)
    np.testing.assert_allclose(result.nu, 0.0, atol=1e-8)


def test_equal_bounds_become_equalities():
    C = np.array([[1.0, -1.0], [1.0, 0.0]])
    result = solve_dense_qp(
        np.eye(2), np.zeros(2), C=C, lower=np.array([1.0, -np.inf]), upper=np.array([1.0, 10.0])
    )
    np.testing.assert_allclose(result.x, [0.5, -0.5], atol=1e-8)
    np.testing.assert_allclose(result.nu[0], -0.5, atol=1e-8)


def test_kkt_conditions_on_a_mixed_problem():
    rng = np.random.default_rng(0)
    n = 6
    M = rng.standard_normal((n, n))
    H = M @ M.T + np.eye(n)
    g = rng.standard_normal(n)
    A = rng.standard_normal((2, n))
    b = rng.standard_normal(2)
    C = rng.standard_normal((4, n))
    lower = np.array([-0.1, -np.inf, -1.0, -0.5])
    upper = np.array([0.1, 0.2, np.inf, 0.5])

    result = solve_dense_qp(H, g, A=A, b=b, C=C, lower=lower, upper=upper)
    x, y, nu = result.x, result.y, result.nu
    np.testing.assert_allclose(H @ x + g + A.T @ y + C.T @ nu, 0.0, atol=1e-7)
    np.testing.assert_allclose(A @ x, b, atol=1e-8)
    values = C @ x
    assert np.all(values >= lower - 1e-8)
    assert np.all(values <= upper + 1e-8)
    assert np.all(nu[values < upper - 1e-3] <= 1e-6)
    assert np.all(nu[values > lower + 1e-3] >= -1e-6)


def test_crossed_bounds_name_the_row():
    with pytest.raises(QPInfeasible) as excinfo:
        solve_dense_qp(
            np.eye(2), np.zeros(2), C=np.eye(2), lower=np.array([0.0, 1.0]), upper=np.array([1.0, 0.0])
        )
    assert excinfo.value.row == 1


def test_contradictory_inequalities_are_infeasible():
    C = np.array([[1.0], [-1.0]])
    with pytest.raises(QPInfeasible) as excinfo:
        solve_dense_qp(np.eye(1), np.zeros(1), C=C, lower=np.array([1.0, 1.0]), upper=np.array([np.inf, np.inf]))
    assert excinfo.value.row in (0, 1)


def test_inconsistent_equalities_are_infeasible():
    A = np.array([[1.0], [1.0]])
    with pytest.raises(QPInfeasible):
        solve_dense_qp(np.eye(1), np.zeros(1), A=A, b=np.array([0.0, 1.0]))
