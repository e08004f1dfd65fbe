"""Function-based expression builder.

Expressions are assembled by calling the functions below instead of using
Python operators::

    from openmsqp.symbolic import builder as b

    accel = b.divide(b.subtract(u, b.multiply(0.2, b.square(v))), m)
    bound = b.between(v, -0.1, 1.7)

Numbers and NumPy arrays are accepted wherever an expression is, and are
wrapped as :class:`~openmsqp.symbolic.expr.Constant`.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np

from openmsqp.symbolic.expr import (
    Add,
    Concat,
    Constant,
    Cos,
    Div,
    Exp,
    Expr,
    Index,
    Log,
    MatMul,
    Mul,
    Neg,
    Power,
    Sin,
    Sqrt,
    Sub,
    Sum,
    Tan,
    Tanh,
    to_expr,
)

Operand = Union[Expr, float, int, np.ndarray]


def constant(value) -> Constant:
    return Constant(value)


def add(*terms: Operand) -> Expr:
    if len(terms) == 1:
        return to_expr(terms[0])
    return Add(*terms)


def subtract(left: Operand, right: Operand) -> Expr:
    return Sub(left, right)


def multiply(*factors: Operand) -> Expr:
    if len(factors) == 1:
        return to_expr(factors[0])
    return Mul(*factors)


def divide(left: Operand, right: Operand) -> Expr:
    return Div(left, right)


def negate(operand: Operand) -> Expr:
    return Neg(operand)


def power(base: Operand, exponent: Operand) -> Expr:
    return Power(base, exponent)


def square(operand: Operand) -> Expr:
    return Power(operand, 2.0)


def sqrt(operand: Operand) -> Expr:
    return Sqrt(operand)


def exp(operand: Operand) -> Expr:
    return Exp(operand)


def log(operand: Operand) -> Expr:
    return Log(operand)


def sin(operand: Operand) -> Expr:
    return Sin(operand)


def cos(operand: Operand) -> Expr:
    return Cos(operand)


def tan(operand: Operand) -> Expr:
    return Tan(operand)


def tanh(operand: Operand) -> Expr:
    return Tanh(operand)


def matmul(left: Operand, right: Operand) -> Expr:
    return MatMul(left, right)


def dot(left: Operand, right: Operand) -> Expr:
    """Inner product of two vectors, a scalar."""
    return Sum(Mul(left, right))


def quad_form(vector: Operand, matrix) -> Expr:
    """``vectorᵀ · matrix · vector`` for a constant or symbolic square matrix."""
    vector = to_expr(vector)
    return Sum(Mul(vector, MatMul(matrix, vector)))


def total(operand: Operand) -> Expr:
    """Sum of all entries."""
    return Sum(operand)


def index(operand: Operand, idx) -> Expr:
    return Index(operand, idx)


def concat(*operands: Operand) -> Expr:
    return Concat(*operands)


@dataclass
class Bound:
    """An expression compared to a lower and an upper bound.

    Either bound may be a number, an array, or an expression (for instance a
    bound written in terms of a free parameter). An infinite bound means the
    side is unconstrained; equal bounds encode an equality.
    """

    expr: Expr
    lower: Operand = -np.inf
    upper: Operand = np.inf

    @property
    def has_expression_bounds(self) -> bool:
        return isinstance(self.lower, Expr) or isinstance(self.upper, Expr)

    def __repr__(self):
        return f"Bound({self.lower!r} <= {self.expr!r} <= {self.upper!r})"


def between(expr: Operand, lower: Operand, upper: Operand) -> Bound:
    return Bound(to_expr(expr), lower, upper)


def equal_to(expr: Operand, value: Operand) -> Bound:
    return Bound(to_expr(expr), value, value)


def at_most(expr: Operand, upper: Operand) -> Bound:
    return Bound(to_expr(expr), -np.inf, upper)


def at_least(expr: Operand, lower: Operand) -> Bound:
    return Bound(to_expr(expr), lower, np.inf)
