"""Structured QP assembly and the two QP solvers."""

import numpy as np
import pytest

from openmsqp import QPInfeasible
from openmsqp.config import QPConfig
from openmsqp.nlp.hessian import embed_terminal
from openmsqp.solvers import CondensingQPSolver, CvxpyQPSolver, get_qp_solver


def identity_blocks(layout):
    return [np.eye(layout.n_e) for _ in range(layout.N)] + [
        embed_terminal(np.eye(layout.n_x + layout.n_p), layout)
    ]


@pytest.fixture
def qp(pendulum):
    evaluation = pendulum.evaluator.evaluate(pendulum.z0)
    return pendulum.assembler.build(evaluation, identity_blocks(pendulum.layout))


def full_stationarity(qp, solution):
    A_eq, _ = qp.continuity_matrix()
    C_full, _, _ = qp.node_rows()
    return (
        qp.hessian_times(solution.dz)
        + qp.g
        + A_eq.T @ solution.continuity.reshape(-1)
        + C_full.T @ np.concatenate(solution.rows)
        + solution.bounds
    )


def test_assembled_qp_shapes(qp, pendulum):
    L = pendulum.layout
    assert qp.A.shape == (L.N, 2, 2)
    assert qp.B.shape == (L.N, 2, 1)
    assert qp.P.shape == (L.N, 2, 1)
    assert qp.c.shape == (L.N, 2)
    assert qp.elements.shape == (L.N + 1, L.n_e, L.n_e)
    assert len(qp.C) == L.N + 1
    # initial conditions and the path row at node 0, terminal conditions and the path row at node N
    assert qp.C[0].shape == (3, L.n_e)
    assert qp.C[L.N].shape == (3, L.n_e)
    np.testing.assert_array_equal(qp.C[L.N][:, L.n_x:L.n_x + L.n_u], 0.0)
    np.testing.assert_allclose(qp.hessian() @ np.arange(L.n_z), qp.hessian_times(np.arange(L.n_z, dtype=float)))


def test_condensed_states_satisfy_continuity(qp):
    solver = CondensingQPSolver(QPConfig())
    M, d = solver.condense(qp)
    L = qp.layout
    rng = np.random.default_rng(1)
    w = rng.standard_normal(M.shape[2])
    dz = np.zeros(L.n_z)
    for i in range(L.N + 1):
        dz[L.s(i)] = M[i] @ w + d[i]
    for i in range(L.N):
        dz[L.u(i)] = w[L.n_x + i * L.n_u:L.n_x + (i + 1) * L.n_u]
    dz[L.p] = w[L.n_x + L.N * L.n_u:]
    A_eq, b_eq = qp.continuity_matrix()
    np.testing.assert_allclose(A_eq @ dz, b_eq, atol=1e-10)


def test_condensing_solution_is_a_kkt_point(qp):
    solution = CondensingQPSolver(QPConfig()).solve(qp)
    A_eq, b_eq = qp.continuity_matrix()
    np.testing.assert_allclose(A_eq @ solution.dz, b_eq, atol=1e-8)
    np.testing.assert_allclose(full_stationarity(qp, solution), 0.0, atol=1e-7)

    C_full, lower, upper = qp.node_rows()
    values = C_full @ solution.dz
    assert np.all(values >= lower - 1e-8)
    assert np.all(values <= upper + 1e-8)
    assert np.all(solution.dz >= qp.z_lower - 1e-8)
    assert np.all(solution.dz <= qp.z_upper + 1e-8)
    assert solution.iterations > 0
    assert solution.objective == pytest.approx(0.5 * solution.dz @ qp.hessian_times(solution.dz) + qp.g @ solution.dz)


def test_condensing_matches_cvxpy(qp):
    condensed = CondensingQPSolver(QPConfig()).solve(qp)
    sparse = CvxpyQPSolver(QPConfig(kind="cvxpy")).solve(qp)
    np.testing.assert_allclose(condensed.dz, sparse.dz, atol=1e-6)
    np.testing.assert_allclose(condensed.continuity, sparse.continuity, atol=1e-5)
    for a, b in zip(condensed.rows, sparse.rows):
        np.testing.assert_allclose(a, b, atol=1e-5)
    np.testing.assert_allclose(condensed.bounds, sparse.bounds, atol=1e-5)
    np.testing.assert_allclose(full_stationarity(qp, sparse), 0.0, atol=1e-6)


def test_active_box_bound(qp):
    L = qp.layout
    # pull the first control hard towards +inf, so its upper bound becomes active
    qp.g[L.u(0)] = -1e3
    solution = CondensingQPSolver(QPConfig()).solve(qp)
    k = L.u(0).start
    assert solution.dz[k] == pytest.approx(qp.z_upper[k], abs=1e-7)
    assert solution.bounds[k] > 0.0


@pytest.mark.parametrize("kind", ["condensing", "cvxpy"])
def test_contradictory_node_row_is_reported(qp, kind):
    N = qp.N
    qp.row_lower[N][0] = 1.0
    qp.row_upper[N][0] = 0.0
    solver = get_qp_solver(QPConfig(kind=kind))
    with pytest.raises(QPInfeasible) as excinfo:
        solver.solve(qp)
    assert excinfo.value.row == ("node", N, 0)
    relaxed = qp.relaxed(excinfo.value.row)
    solution = solver.solve(relaxed)
    np.testing.assert_allclose(solution.rows[N][0], 0.0, atol=1e-6)


@pytest.mark.parametrize("kind", ["condensing", "cvxpy"])
def test_contradictory_box_is_reported(qp, kind):
    k = qp.layout.u(2).start
    qp.z_lower[k] = 1.0
    qp.z_upper[k] = -1.0
    with pytest.raises(QPInfeasible) as excinfo:
        get_qp_solver(QPConfig(kind=kind)).solve(qp)
    assert excinfo.value.row == ("box", k)


def test_relaxing_a_box_row(qp):
    k = qp.layout.u(1).start
    relaxed = qp.relaxed(("box", k))
    assert relaxed.z_lower[k] == -np.inf and relaxed.z_upper[k] == np.inf
    assert np.isfinite(qp.z_lower[k])
    with pytest.raises(ValueError):
        qp.relaxed(("unknown", 0))


def test_unknown_qp_solver_kind():
    config = QPConfig()
    config.kind = "active_set"
    with pytest.raises(ValueError):
        get_qp_solver(config)


def test_citations():
    assert any("Bock" in c for c in CondensingQPSolver(QPConfig()).citation())
    assert CvxpyQPSolver(QPConfig()).citation()
