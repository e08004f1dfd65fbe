from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from openmsqp.symbolic.expr import Expr


class ConstraintRole(Enum):
    """Where a constraint is enforced along the horizon."""

    INITIAL = "initial"
    TERMINAL = "terminal"
    PATH = "path"
    BOX = "box"


@dataclass
class Constraint:
    """A role-tagged constraint ``lower <= expr <= upper``.

    Constraints are a tagged variant: the solver looks at :attr:`role` to
    decide where the rows are evaluated, never at the Python type. Expression
    bounds are kept as given here and folded into the row on validation.

    Attributes:
        role (ConstraintRole): Evaluation role
        expr (Expr): Constrained expression
        lower: Lower bound, a number, array or expression
        upper: Upper bound, a number, array or expression
        name (str, optional): Label used in error messages
    """

    role: ConstraintRole
    expr: Expr
    lower: object = -np.inf
    upper: object = np.inf
    name: Optional[str] = None

    @property
    def is_equality(self) -> bool:
        if isinstance(self.lower, Expr) or isinstance(self.upper, Expr):
            return self.lower is self.upper
        return bool(np.all(np.asarray(self.lower) == np.asarray(self.upper)))

    def describe(self) -> str:
        label = self.name or repr(self.expr)
        return f"{self.role.value} constraint {label}"


@dataclass(frozen=True)
class LoweredConstraint:
    """Row block of a validated constraint.

    Attributes:
        role (ConstraintRole): Evaluation role
        fn: jax callable ``fn(x, u, p, t) -> (m,)`` with expression bounds folded in
        lower (np.ndarray): Stacked numeric lower bounds, shape ``(m,)``
        upper (np.ndarray): Stacked numeric upper bounds, shape ``(m,)``
        uses_control (bool): Whether the row depends on the controls
        name (str): Label of the originating constraint
    """

    role: ConstraintRole
    fn: object
    lower: np.ndarray
    upper: np.ndarray
    uses_control: bool
    name: str

    @property
    def size(self) -> int:
        return int(self.lower.shape[0])

    @property
    def shape(self) -> Tuple[int]:
        return (self.size,)
