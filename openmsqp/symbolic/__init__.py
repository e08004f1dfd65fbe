from openmsqp.symbolic import builder
from openmsqp.symbolic.builder import Bound
from openmsqp.symbolic.constraint import Constraint, ConstraintRole, LoweredConstraint
from openmsqp.symbolic.expr import (
    Constant,
    Control,
    Expr,
    Leaf,
    Parameter,
    State,
    Time,
)
from openmsqp.symbolic.lower import JaxLowerer, lower_to_jax

__all__ = [
    "builder",
    "Bound",
    "Constraint",
    "ConstraintRole",
    "LoweredConstraint",
    "Constant",
    "Control",
    "Expr",
    "Leaf",
    "Parameter",
    "State",
    "Time",
    "JaxLowerer",
    "lower_to_jax",
]
