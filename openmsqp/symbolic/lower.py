from typing import Any, Callable, Dict, Type

import jax.numpy as jnp

from openmsqp.symbolic.expr import (
    Add,
    Concat,
    Constant,
    Control,
    Cos,
    Div,
    Exp,
    Expr,
    Index,
    Log,
    MatMul,
    Mul,
    Neg,
    Parameter,
    Power,
    Sin,
    Sqrt,
    State,
    Sub,
    Sum,
    Tan,
    Tanh,
    Time,
)

_JAX_VISITORS: Dict[Type[Expr], Callable] = {}


def visitor(expr_cls: Type[Expr]):
    def register(fn: Callable[[Any, Expr], Callable]):
        _JAX_VISITORS[expr_cls] = fn
        return fn

    return register


def dispatch(lowerer: Any, expr: Expr):
    fn = _JAX_VISITORS.get(type(expr))
    if fn is None:
        raise NotImplementedError(
            f"{lowerer.__class__.__name__!r} has no visitor for {type(expr).__name__}"
        )
    return fn(lowerer, expr)


class JaxLowerer:
    """Turns an expression tree into a jax-traceable ``fn(x, u, p, t)``."""

    def lower(self, expr: Expr):
        return dispatch(self, expr)

    @visitor(Constant)
    def visit_constant(self, node: Constant):
        value = jnp.array(node.value)
        return lambda x, u, p, t: value

    @visitor(State)
    def visit_state(self, node: State):
        sl = node._slice
        if sl is None:
            raise ValueError(f"State {node.name!r} has no slice assigned")
        return lambda x, u, p, t: x[sl]

    @visitor(Control)
    def visit_control(self, node: Control):
        sl = node._slice
        if sl is None:
            raise ValueError(f"Control {node.name!r} has no slice assigned")
        return lambda x, u, p, t: u[sl]

    @visitor(Parameter)
    def visit_parameter(self, node: Parameter):
        sl = node._slice
        if sl is None:
            raise ValueError(f"Parameter {node.name!r} has no slice assigned")
        return lambda x, u, p, t: p[sl]

    @visitor(Time)
    def visit_time(self, node: Time):
        return lambda x, u, p, t: t

    @visitor(Add)
    def visit_add(self, node: Add):
        fs = [self.lower(term) for term in node.terms]

        def fn(x, u, p, t):
            acc = fs[0](x, u, p, t)
            for f in fs[1:]:
                acc = acc + f(x, u, p, t)
            return acc

        return fn

    @visitor(Sub)
    def visit_sub(self, node: Sub):
        fL = self.lower(node.left)
        fR = self.lower(node.right)
        return lambda x, u, p, t: fL(x, u, p, t) - fR(x, u, p, t)

    @visitor(Mul)
    def visit_mul(self, node: Mul):
        fs = [self.lower(factor) for factor in node.factors]

        def fn(x, u, p, t):
            acc = fs[0](x, u, p, t)
            for f in fs[1:]:
                acc = acc * f(x, u, p, t)
            return acc

        return fn

    @visitor(Div)
    def visit_div(self, node: Div):
        fL = self.lower(node.left)
        fR = self.lower(node.right)
        return lambda x, u, p, t: fL(x, u, p, t) / fR(x, u, p, t)

    @visitor(Neg)
    def visit_neg(self, node: Neg):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: -fO(x, u, p, t)

    @visitor(Power)
    def visit_power(self, node: Power):
        fB = self.lower(node.base)
        fE = self.lower(node.exponent)
        return lambda x, u, p, t: jnp.power(fB(x, u, p, t), fE(x, u, p, t))

    @visitor(MatMul)
    def visit_matmul(self, node: MatMul):
        fL = self.lower(node.left)
        fR = self.lower(node.right)
        return lambda x, u, p, t: jnp.matmul(fL(x, u, p, t), fR(x, u, p, t))

    @visitor(Sum)
    def visit_sum(self, node: Sum):
        f = self.lower(node.operand)
        return lambda x, u, p, t: jnp.sum(f(x, u, p, t))

    @visitor(Index)
    def visit_index(self, node: Index):
        # jnp.atleast_1d so that indexing a scalar leaf behaves like a 1-vector
        f_base = self.lower(node.base)
        idx = node.index
        return lambda x, u, p, t: jnp.atleast_1d(f_base(x, u, p, t))[idx]

    @visitor(Concat)
    def visit_concat(self, node: Concat):
        fs = [self.lower(e) for e in node.exprs]

        def fn(x, u, p, t):
            parts = [jnp.atleast_1d(f(x, u, p, t)) for f in fs]
            return jnp.concatenate(parts, axis=0)

        return fn

    @visitor(Sin)
    def visit_sin(self, node: Sin):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.sin(fO(x, u, p, t))

    @visitor(Cos)
    def visit_cos(self, node: Cos):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.cos(fO(x, u, p, t))

    @visitor(Tan)
    def visit_tan(self, node: Tan):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.tan(fO(x, u, p, t))

    @visitor(Tanh)
    def visit_tanh(self, node: Tanh):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.tanh(fO(x, u, p, t))

    @visitor(Exp)
    def visit_exp(self, node: Exp):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.exp(fO(x, u, p, t))

    @visitor(Log)
    def visit_log(self, node: Log):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.log(fO(x, u, p, t))

    @visitor(Sqrt)
    def visit_sqrt(self, node: Sqrt):
        fO = self.lower(node.operand)
        return lambda x, u, p, t: jnp.sqrt(fO(x, u, p, t))


def lower_to_jax(expr: Expr) -> Callable:
    """Lower ``expr`` to a callable ``fn(x, u, p, t)`` returning a jax array."""
    return JaxLowerer().lower(expr)
