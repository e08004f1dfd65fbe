"""Tests for the function-based expression builder and its lowering to jax."""

import jax
import numpy as np
import pytest

from openmsqp import ProblemModel
from openmsqp.symbolic import builder as b
from openmsqp.symbolic import lower_to_jax
from openmsqp.symbolic.expr import Add, Constant, Mul, collect_leaves


@pytest.fixture
def model():
    return ProblemModel("symbols")


def test_numbers_are_wrapped_as_constants(model):
    x = model.declare_state("x")
    expr = b.add(x, 2.0)
    assert isinstance(expr, Add)
    assert any(isinstance(c, Constant) for c in expr.children())


def test_single_term_add_is_the_term(model):
    x = model.declare_state("x")
    assert b.add(x) is x


def test_lowering_evaluates_in_declaration_order(model):
    x = model.declare_state("x", 2)
    y = model.declare_state("y")
    u = model.declare_control("u")
    p = model.declare_parameter("k")
    expr = b.add(b.multiply(b.index(x, 1), y), b.multiply(u, p), model.time)
    fn = lower_to_jax(expr)
    value = fn(np.array([1.0, 2.0, 3.0]), np.array([4.0]), np.array([0.5]), 10.0)
    np.testing.assert_allclose(value, [2.0 * 3.0 + 4.0 * 0.5 + 10.0])


@pytest.mark.parametrize(
    "build, reference",
    [
        (b.sin, np.sin),
        (b.cos, np.cos),
        (b.tan, np.tan),
        (b.tanh, np.tanh),
        (b.exp, np.exp),
        (b.log, np.log),
        (b.sqrt, np.sqrt),
        (b.square, np.square),
        (b.negate, np.negative),
    ],
)
def test_elementwise_functions(model, build, reference):
    x = model.declare_state("x", 3)
    values = np.array([0.3, 0.7, 1.1])
    out = lower_to_jax(build(x))(values, np.zeros(0), np.zeros(0), 0.0)
    np.testing.assert_allclose(out, reference(values), rtol=1e-12)


def test_linear_algebra(model):
    x = model.declare_state("x", 2)
    M = np.array([[2.0, 1.0], [1.0, 3.0]])
    values = np.array([1.0, -2.0])
    zeros = np.zeros(0)

    np.testing.assert_allclose(lower_to_jax(b.matmul(M, x))(values, zeros, zeros, 0.0), M @ values)
    np.testing.assert_allclose(lower_to_jax(b.dot(x, x))(values, zeros, zeros, 0.0), values @ values)
    np.testing.assert_allclose(lower_to_jax(b.quad_form(x, M))(values, zeros, zeros, 0.0), values @ M @ values)
    np.testing.assert_allclose(lower_to_jax(b.total(x))(values, zeros, zeros, 0.0), values.sum())
    np.testing.assert_allclose(
        lower_to_jax(b.concat(x, b.constant(5.0)))(values, zeros, zeros, 0.0), [1.0, -2.0, 5.0]
    )


def test_power_and_division(model):
    x = model.declare_state("x")
    values = np.array([2.0])
    zeros = np.zeros(0)
    np.testing.assert_allclose(lower_to_jax(b.power(x, 3))(values, zeros, zeros, 0.0), [8.0])
    np.testing.assert_allclose(lower_to_jax(b.divide(1.0, x))(values, zeros, zeros, 0.0), [0.5])
    np.testing.assert_allclose(lower_to_jax(b.subtract(x, 5.0))(values, zeros, zeros, 0.0), [-3.0])


def test_lowered_functions_are_differentiable(model):
    x = model.declare_state("x", 2)
    fn = lower_to_jax(b.total(b.multiply(b.sin(x), x)))
    grad = jax.grad(lambda v: fn(v, None, None, 0.0))(np.array([0.2, 0.5]))
    expected = np.sin([0.2, 0.5]) + np.array([0.2, 0.5]) * np.cos([0.2, 0.5])
    np.testing.assert_allclose(grad, expected, rtol=1e-12)


def test_shape_mismatch_is_reported(model):
    x = model.declare_state("x", 2)
    y = model.declare_state("y", 3)
    with pytest.raises(ValueError):
        b.add(x, y).check_shape()
    with pytest.raises(ValueError):
        b.matmul(np.eye(3), x).check_shape()


def test_collect_leaves(model):
    x = model.declare_state("x")
    u = model.declare_control("u")
    expr = b.multiply(b.add(x, u), x)
    assert isinstance(expr, Mul)
    names = {leaf.name for leaf in collect_leaves(expr)}
    assert names == {"x", "u"}


def test_bounds(model):
    x = model.declare_state("x")
    bound = b.between(x, -1.0, 2.0)
    assert bound.lower == -1.0 and bound.upper == 2.0
    assert b.equal_to(x, 3.0).lower == b.equal_to(x, 3.0).upper == 3.0
    assert b.at_most(x, 1.0).lower == -np.inf
    assert b.at_least(x, 1.0).upper == np.inf
    assert not bound.has_expression_bounds
    assert b.at_most(x, b.multiply(2.0, x)).has_expression_bounds
