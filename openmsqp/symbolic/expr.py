"""Expression tree nodes for dynamics, costs and constraints.

Expressions form an abstract syntax tree that is validated (shape checking)
when a model is validated and then lowered to JAX callables by
:mod:`openmsqp.symbolic.lower`. Nodes are built explicitly, either through
their constructors or through the functions of
:mod:`openmsqp.symbolic.builder`; there is no operator overloading, so
``add(x, y)`` is how a sum is written.

Leaves are the named decision quantities (:class:`State`, :class:`Control`,
:class:`Parameter`), the independent variable :class:`Time` and numeric
:class:`Constant` values. A leaf only becomes usable by a model once the model
has declared it, which assigns its slice into the corresponding vector.
"""

from typing import Callable, Optional, Tuple, Union

import numpy as np


class Expr:
    """Base class for symbolic expressions.

    All subclasses implement :meth:`children` and :meth:`check_shape`. The
    shape of an expression follows NumPy conventions: ``()`` is a scalar and
    ``(n,)`` a vector.
    """

    def children(self):
        """Return the child expressions of this node (empty for leaves)."""
        return []

    def check_shape(self) -> Tuple[int, ...]:
        """Compute and validate the shape of this expression.

        Raises:
            ValueError: If the operands of a node have incompatible shapes.
        """
        raise NotImplementedError(f"check_shape() not implemented for {self.__class__.__name__}")

    def pretty(self, indent=0):
        """Indented, one node per line view of the expression tree."""
        pad = "  " * indent
        lines = [f"{pad}{self.__class__.__name__}"]
        for child in self.children():
            lines.append(child.pretty(indent + 1))
        return "\n".join(lines)


class Leaf(Expr):
    """Named terminal node.

    Attributes:
        name (str): Name identifier
        _shape (tuple): Shape of the leaf
        _slice (slice): Position inside the stacked vector, assigned on declaration
        _owner (int): ``id`` of the declaring model, assigned on declaration
    """

    def __init__(self, name: str, shape: tuple = ()):
        super().__init__()
        self.name = name
        self._shape = tuple(shape)
        self._slice: Optional[slice] = None
        self._owner: Optional[int] = None

    @property
    def shape(self):
        return self._shape

    @property
    def size(self) -> int:
        return int(np.prod(self._shape)) if self._shape else 1

    def check_shape(self) -> Tuple[int, ...]:
        return self._shape

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.name}', shape={self.shape})"


class State(Leaf):
    """Differential state, with a value at every shooting node."""

    def __init__(self, name: str, dim: int = 1):
        super().__init__(name, (int(dim),))


class Control(Leaf):
    """Control input, piecewise constant over each shooting interval."""

    def __init__(self, name: str, dim: int = 1):
        super().__init__(name, (int(dim),))


class Parameter(Leaf):
    """Free parameter: an unknown constant over the whole horizon.

    Free parameters are decision variables (for instance the horizon length
    of a minimum-time problem) bounded by ``[lb, ub]``.

    Attributes:
        lb (np.ndarray): Lower bound, ``-inf`` when unbounded
        ub (np.ndarray): Upper bound, ``+inf`` when unbounded
        guess (np.ndarray or None): Initial guess, midpoint of bounds when None
    """

    def __init__(self, name: str, dim: int = 1, lb=-np.inf, ub=np.inf, guess=None):
        super().__init__(name, (int(dim),))
        self.lb = np.broadcast_to(np.asarray(lb, dtype=float), self._shape).copy()
        self.ub = np.broadcast_to(np.asarray(ub, dtype=float), self._shape).copy()
        self.guess = None if guess is None else np.asarray(guess, dtype=float)


class Time(Leaf):
    """The independent variable ``t``."""

    def __init__(self):
        super().__init__("t", ())


class Constant(Expr):
    """Numeric constant (scalar, vector or matrix)."""

    def __init__(self, value):
        self.value = np.asarray(value, dtype=float)

    def check_shape(self) -> Tuple[int, ...]:
        return self.value.shape

    def __repr__(self):
        if self.value.size == 1:
            return f"Const({self.value.item()!r})"
        return f"Const({self.value.tolist()!r})"


def to_expr(x: Union[Expr, float, int, np.ndarray]) -> Expr:
    """Wrap numbers and arrays as :class:`Constant`, pass expressions through."""
    return x if isinstance(x, Expr) else Constant(x)


def traverse(expr: Expr, visit: Callable[[Expr], None]):
    """Depth-first traversal applying ``visit`` to every node."""
    visit(expr)
    for child in expr.children():
        traverse(child, visit)


def collect_leaves(expr: Expr):
    """Return the distinct leaves of an expression, in traversal order."""
    found = []
    seen = set()

    def visit(node):
        if isinstance(node, Leaf) and id(node) not in seen:
            seen.add(id(node))
            found.append(node)

    traverse(expr, visit)
    return found


def _broadcast(shapes, op_name):
    try:
        return np.broadcast_shapes(*shapes)
    except ValueError as e:
        raise ValueError(f"{op_name} shapes not broadcastable: {shapes}") from e


class Add(Expr):
    """Element-wise sum of two or more expressions (NumPy broadcasting)."""

    def __init__(self, *args):
        if len(args) < 2:
            raise ValueError("Add requires two or more operands")
        self.terms = [to_expr(a) for a in args]

    def children(self):
        return list(self.terms)

    def check_shape(self) -> Tuple[int, ...]:
        return _broadcast([t.check_shape() for t in self.terms], "Add")

    def __repr__(self):
        return "(" + " + ".join(repr(t) for t in self.terms) + ")"


class Sub(Expr):
    """Element-wise difference ``left - right``."""

    def __init__(self, left, right):
        self.left = to_expr(left)
        self.right = to_expr(right)

    def children(self):
        return [self.left, self.right]

    def check_shape(self) -> Tuple[int, ...]:
        return _broadcast([self.left.check_shape(), self.right.check_shape()], "Sub")

    def __repr__(self):
        return f"({self.left!r} - {self.right!r})"


class Mul(Expr):
    """Element-wise product of two or more expressions."""

    def __init__(self, *args):
        if len(args) < 2:
            raise ValueError("Mul requires two or more operands")
        self.factors = [to_expr(a) for a in args]

    def children(self):
        return list(self.factors)

    def check_shape(self) -> Tuple[int, ...]:
        return _broadcast([f.check_shape() for f in self.factors], "Mul")

    def __repr__(self):
        return "(" + " * ".join(repr(f) for f in self.factors) + ")"


class Div(Expr):
    """Element-wise quotient ``left / right``."""

    def __init__(self, left, right):
        self.left = to_expr(left)
        self.right = to_expr(right)

    def children(self):
        return [self.left, self.right]

    def check_shape(self) -> Tuple[int, ...]:
        return _broadcast([self.left.check_shape(), self.right.check_shape()], "Div")

    def __repr__(self):
        return f"({self.left!r} / {self.right!r})"


class Neg(Expr):
    """Negation ``-operand``."""

    def __init__(self, operand):
        self.operand = to_expr(operand)

    def children(self):
        return [self.operand]

    def check_shape(self) -> Tuple[int, ...]:
        return self.operand.check_shape()

    def __repr__(self):
        return f"(-{self.operand!r})"


class Power(Expr):
    """Element-wise power ``base ** exponent``."""

    def __init__(self, base, exponent):
        self.base = to_expr(base)
        self.exponent = to_expr(exponent)

    def children(self):
        return [self.base, self.exponent]

    def check_shape(self) -> Tuple[int, ...]:
        return _broadcast([self.base.check_shape(), self.exponent.check_shape()], "Power")

    def __repr__(self):
        return f"({self.base!r})**({self.exponent!r})"


class MatMul(Expr):
    """Matrix product with ``numpy.matmul`` semantics."""

    def __init__(self, left, right):
        self.left = to_expr(left)
        self.right = to_expr(right)

    def children(self):
        return [self.left, self.right]

    def check_shape(self) -> Tuple[int, ...]:
        a = self.left.check_shape()
        b = self.right.check_shape()
        if len(a) == 0 or len(b) == 0:
            raise ValueError(f"MatMul requires at least 1-D operands, got {a} and {b}")
        try:
            return np.matmul(np.empty(a), np.empty(b)).shape
        except ValueError as e:
            raise ValueError(f"MatMul shapes incompatible: {a} @ {b}") from e

    def __repr__(self):
        return f"({self.left!r} @ {self.right!r})"


class Sum(Expr):
    """Sum of all elements, a scalar."""

    def __init__(self, operand):
        self.operand = to_expr(operand)

    def children(self):
        return [self.operand]

    def check_shape(self) -> Tuple[int, ...]:
        self.operand.check_shape()
        return ()

    def __repr__(self):
        return f"sum({self.operand!r})"


class Index(Expr):
    """Indexing or slicing of a vector expression."""

    def __init__(self, base, index: Union[int, slice]):
        self.base = to_expr(base)
        self.index = index

    def children(self):
        return [self.base]

    def check_shape(self) -> Tuple[int, ...]:
        shape = self.base.check_shape()
        probe = np.empty(shape if shape else (1,))
        try:
            return probe[self.index].shape
        except IndexError as e:
            raise ValueError(f"Index {self.index!r} out of range for shape {shape}") from e

    def __repr__(self):
        return f"{self.base!r}[{self.index!r}]"


class Concat(Expr):
    """Concatenation of scalars and vectors into one vector."""

    def __init__(self, *exprs):
        if not exprs:
            raise ValueError("Concat requires at least one operand")
        self.exprs = [to_expr(e) for e in exprs]

    def children(self):
        return list(self.exprs)

    def check_shape(self) -> Tuple[int, ...]:
        total = 0
        for e in self.exprs:
            shape = e.check_shape()
            if len(shape) > 1:
                raise ValueError(f"Concat only accepts scalars and vectors, got shape {shape}")
            total += shape[0] if shape else 1
        return (total,)

    def __repr__(self):
        return "concat(" + ", ".join(repr(e) for e in self.exprs) + ")"


class UnaryFunction(Expr):
    """Element-wise elementary function of one operand."""

    function_name = ""

    def __init__(self, operand):
        self.operand = to_expr(operand)

    def children(self):
        return [self.operand]

    def check_shape(self) -> Tuple[int, ...]:
        return self.operand.check_shape()

    def __repr__(self):
        return f"{self.function_name}({self.operand!r})"


class Sin(UnaryFunction):
    function_name = "sin"


class Cos(UnaryFunction):
    function_name = "cos"


class Tan(UnaryFunction):
    function_name = "tan"


class Tanh(UnaryFunction):
    function_name = "tanh"


class Exp(UnaryFunction):
    function_name = "exp"


class Log(UnaryFunction):
    function_name = "log"


class Sqrt(UnaryFunction):
    function_name = "sqrt"
