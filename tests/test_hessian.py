"""Element Hessian approximations of the shooting Lagrangian."""

import numpy as np
import pytest

from openmsqp import Config
from openmsqp.algorithms import Multipliers
from openmsqp.config import SQPConfig
from openmsqp.nlp import (
    BlockBFGSHessian,
    ExactHessian,
    GaussNewtonHessian,
    clip_eigenvalues,
    element_gradients,
    get_hessian,
)
from openmsqp.nlp.hessian import terminal_indices
from conftest import build_pipeline, pendulum_model


def random_multipliers(pipe, seed=0):
    rng = np.random.default_rng(seed)
    return Multipliers(
        continuity=rng.standard_normal((pipe.layout.N, pipe.layout.n_x)),
        rows=[rng.standard_normal(m) for m in pipe.evaluator.row_counts],
        bounds=np.zeros(pipe.layout.n_z),
    )


def test_clip_eigenvalues():
    H = np.array([[1.0, 2.0], [2.0, 1.0]])  # eigenvalues 3 and -1
    clipped = clip_eigenvalues(H, 1e-3)
    eigvals = np.linalg.eigvalsh(clipped)
    np.testing.assert_allclose(sorted(eigvals), [1e-3, 3.0], atol=1e-12)
    np.testing.assert_allclose(clip_eigenvalues(np.eye(2), 1e-3), np.eye(2), atol=1e-12)


def test_exact_blocks_match_finite_differences_of_element_gradients():
    pipe = build_pipeline(pendulum_model(), Config.from_options(N=6, integrator_tolerance=1e-11, printing=False))
    config = SQPConfig(hessian_regularization=0.0)
    hessian = ExactHessian(pipe.layout, config, pipe.evaluator)
    multipliers = random_multipliers(pipe)
    evaluation = pipe.evaluator.evaluate(pipe.z0)
    raw = hessian.raw_blocks(evaluation, multipliers)
    L = pipe.layout

    i = 3
    idx = L.element_index(i)
    eps = 1e-5
    H_fd = np.zeros((L.n_e, L.n_e))
    for k in range(L.n_e):
        grads = []
        for sign in (1.0, -1.0):
            z = pipe.z0.copy()
            z[idx[k]] += sign * eps
            e = pipe.evaluator.evaluate(z)
            grads.append(element_gradients(e, L, multipliers.continuity, multipliers.rows)[i])
        H_fd[:, k] = (grads[0] - grads[1]) / (2 * eps)
    np.testing.assert_allclose(raw[i], 0.5 * (H_fd + H_fd.T), rtol=1e-3, atol=1e-5)


def test_exact_blocks_are_convexified(pendulum):
    pipe = pendulum
    config = SQPConfig(hessian_regularization=1e-6)
    hessian = ExactHessian(pipe.layout, config, pipe.evaluator)
    evaluation = pipe.evaluator.evaluate(pipe.z0)
    blocks = hessian.blocks(evaluation, random_multipliers(pipe, seed=3))
    L = pipe.layout
    assert len(blocks) == L.N + 1
    for He in blocks[:-1]:
        assert np.linalg.eigvalsh(He).min() >= 1e-6 - 1e-12
    terminal = blocks[-1]
    u = slice(L.n_x, L.n_x + L.n_u)
    np.testing.assert_array_equal(terminal[u, :], 0.0)
    np.testing.assert_array_equal(terminal[:, u], 0.0)
    idx = terminal_indices(L)
    assert np.linalg.eigvalsh(terminal[np.ix_(idx, idx)]).min() >= 1e-6 - 1e-12


def test_exact_hessian_needs_recorded_steps(pendulum):
    pendulum.integrator.supports_exact_hessian = False
    with pytest.raises(ValueError):
        ExactHessian(pendulum.layout, SQPConfig(), pendulum.evaluator)


def test_gauss_newton_blocks(double_integrator):
    pipe = double_integrator
    config = SQPConfig(hessian="gauss_newton", hessian_regularization=0.0)
    hessian = GaussNewtonHessian(pipe.layout, config, pipe.problem, pipe.grid)
    evaluation = pipe.evaluator.evaluate(pipe.z0)
    blocks = hessian.blocks(evaluation, None)
    h = pipe.grid.interval_length(np.zeros(0))
    np.testing.assert_allclose(blocks[0][2, 2], 2.0 * h)
    np.testing.assert_allclose(blocks[0][:2, :2], 0.0)
    np.testing.assert_allclose(blocks[-1], 0.0)


def test_gauss_newton_is_exact_for_quadratic_costs(double_integrator):
    pipe = double_integrator
    evaluation = pipe.evaluator.evaluate(pipe.z0)
    multipliers = Multipliers.zeros(pipe.layout, pipe.evaluator.row_counts)
    exact = ExactHessian(pipe.layout, SQPConfig(hessian_regularization=0.0), pipe.evaluator)
    gn = GaussNewtonHessian(pipe.layout, SQPConfig(hessian_regularization=0.0), pipe.problem, pipe.grid)
    for a, b in zip(exact.raw_blocks(evaluation, multipliers)[:-1], gn.blocks(evaluation, multipliers)[:-1]):
        # ∫ u² over an interval with linear dynamics has curvature 2h in u only
        np.testing.assert_allclose(a, b, atol=1e-8)


def test_block_bfgs_stays_positive_definite(pendulum):
    pipe = pendulum
    hessian = BlockBFGSHessian(pipe.layout, SQPConfig(hessian="block_bfgs"))
    multipliers = random_multipliers(pipe, seed=5)
    old = pipe.evaluator.evaluate(pipe.z0)
    initial = hessian.blocks(old, multipliers)
    np.testing.assert_allclose(initial[0], np.eye(pipe.layout.n_e))

    rng = np.random.default_rng(7)
    z = pipe.z0 + 1e-2 * rng.standard_normal(pipe.layout.n_z)
    new = pipe.evaluator.evaluate(z)
    hessian.update(old, new, multipliers)
    for He in hessian.blocks(new, multipliers)[:-1]:
        np.testing.assert_allclose(He, He.T, atol=1e-12)
        assert np.linalg.eigvalsh(He).min() > 0.0
    assert not np.allclose(hessian.blocks(new, multipliers)[0], np.eye(pipe.layout.n_e))

    hessian.reset()
    np.testing.assert_allclose(hessian.blocks(new, multipliers)[0], np.eye(pipe.layout.n_e))


def test_get_hessian(pendulum):
    pipe = pendulum
    args = (pipe.layout, SQPConfig(), pipe.evaluator, pipe.problem, pipe.grid)
    assert isinstance(get_hessian("exact", *args), ExactHessian)
    assert isinstance(get_hessian("gauss_newton", *args), GaussNewtonHessian)
    assert isinstance(get_hessian("block_bfgs", *args), BlockBFGSHessian)
    with pytest.raises(ValueError):
        get_hessian("sr1", *args)
