"""Problem model: declaration, validation and lowering of an optimal control problem.

A :class:`ProblemModel` is filled in through its declaration methods and then
frozen by :meth:`ProblemModel.validate`, which performs every structural check
before any numeric work and returns an immutable :class:`ValidatedProblem`
holding jax callables, dimensions, stacked bounds and guesses.

Example:
    >>> from openmsqp.model import ProblemModel
    >>> from openmsqp.symbolic import ConstraintRole, builder as b
    >>> m = ProblemModel()
    >>> x = m.declare_state("x")
    >>> u = m.declare_control("u")
    >>> m.set_dynamics({x: u})
    >>> m.set_horizon(1.0)
    >>> m.subject_to(ConstraintRole.INITIAL, x, 0.0, 0.0)
    >>> problem = m.validate()
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np

from openmsqp.errors import (
    DimensionMismatch,
    InfeasibleBounds,
    InvalidConstraint,
    MissingDynamics,
    ProblemDefinitionError,
    UndeclaredSymbol,
)
from openmsqp.symbolic.builder import Bound
from openmsqp.symbolic.constraint import Constraint, ConstraintRole, LoweredConstraint
from openmsqp.symbolic.expr import (
    Control,
    Expr,
    Index,
    Leaf,
    Parameter,
    State,
    Time,
    collect_leaves,
    to_expr,
)
from openmsqp.symbolic.lower import lower_to_jax
from openmsqp.utils import as_vector


@dataclass(frozen=True)
class ValidatedProblem:
    """Immutable, lowered description of an optimal control problem.

    All callables are jax-traceable. ``f``, ``lagrange`` and the constraint
    rows take ``(x, u, p, t)``; ``mayer`` takes ``(x, p, t)``.

    Attributes:
        states, controls, parameters: Declared leaves in declaration order
        f: Dynamics ``f(x, u, p, t) -> (n_x,)``
        lagrange: Running cost ``L(x, u, p, t) -> ()`` including the quadratic weights
        mayer: Terminal cost ``M(x, p, t) -> ()`` including the quadratic weight
        constraints: INITIAL, TERMINAL and PATH row blocks
        x_lb, x_ub, u_lb, u_ub, p_lb, p_ub: Stacked box bounds
        x_guess, u_guess, p_guess: User guesses, None where not supplied
        initial_values, terminal_values: Simple equality values per state
            component (NaN where no such equality exists)
        Q, R, P, x_ref, u_ref, x_ref_terminal: Quadratic weights and references
        t0: Initial time
        horizon: Fixed horizon length, None when the horizon is free
        horizon_index: Index of the horizon inside ``p`` when free
    """

    states: Tuple[State, ...]
    controls: Tuple[Control, ...]
    parameters: Tuple[Parameter, ...]
    f: Callable
    lagrange: Callable
    mayer: Callable
    constraints: Tuple[LoweredConstraint, ...]
    x_lb: np.ndarray
    x_ub: np.ndarray
    u_lb: np.ndarray
    u_ub: np.ndarray
    p_lb: np.ndarray
    p_ub: np.ndarray
    x_guess: Optional[np.ndarray]
    u_guess: Optional[np.ndarray]
    p_guess: Optional[np.ndarray]
    initial_values: np.ndarray
    terminal_values: np.ndarray
    Q: np.ndarray
    R: np.ndarray
    P: np.ndarray
    x_ref: np.ndarray
    u_ref: np.ndarray
    x_ref_terminal: np.ndarray
    t0: float
    horizon: Optional[float]
    horizon_index: Optional[int]
    has_lagrange: bool
    name: str = "ocp"

    @property
    def n_x(self) -> int:
        return int(self.x_lb.shape[0])

    @property
    def n_u(self) -> int:
        return int(self.u_lb.shape[0])

    @property
    def n_p(self) -> int:
        return int(self.p_lb.shape[0])

    def horizon_length(self, p):
        """Horizon length ``T`` as a (traceable) function of the parameters."""
        if self.horizon_index is None:
            return jnp.asarray(self.horizon, dtype=float)
        return p[self.horizon_index]

    def constraints_with_role(self, role: ConstraintRole) -> List[LoweredConstraint]:
        return [c for c in self.constraints if c.role is role]


class ProblemModel:
    """Mutable builder of an optimal control problem.

    Every method that changes the model raises :class:`ProblemDefinitionError`
    once :meth:`validate` has been called.
    """

    def __init__(self, name: str = "ocp"):
        self.name = name
        self.time = Time()
        self._states: List[State] = []
        self._controls: List[Control] = []
        self._parameters: List[Parameter] = []
        self._dynamics: Optional[Dict[State, Expr]] = None
        self._dynamics_fn: Optional[Callable] = None
        self._horizon: Union[float, Parameter, None] = None
        self._t0 = 0.0
        self._lagrange_terms: List[Union[Expr, Callable]] = []
        self._mayer_terms: List[Union[Expr, Callable]] = []
        self._lagrange_weights = None
        self._mayer_weight = None
        self._constraints: List[Tuple[Constraint, Optional[bool]]] = []
        self._guesses: Dict[int, np.ndarray] = {}
        self._validated: Optional[ValidatedProblem] = None

    # ==================== Declarations ====================

    def _check_mutable(self):
        if self._validated is not None:
            raise ProblemDefinitionError(
                f"Model {self.name!r} has been validated and can no longer be modified"
            )

    def _declare(self, leaf: Leaf, registry: list) -> Leaf:
        self._check_mutable()
        for existing in self._states + self._controls + self._parameters:
            if existing.name == leaf.name:
                raise ProblemDefinitionError(f"Duplicate variable name {leaf.name!r}")
        start = sum(v.size for v in registry)
        leaf._slice = slice(start, start + leaf.size)
        leaf._owner = id(self)
        registry.append(leaf)
        return leaf

    def declare_state(self, name: str, dim: int = 1) -> State:
        """Declare a state; its slice into ``x`` follows declaration order."""
        return self._declare(State(name, dim), self._states)

    def declare_control(self, name: str, dim: int = 1) -> Control:
        """Declare a control, piecewise constant over each interval."""
        return self._declare(Control(name, dim), self._controls)

    def declare_parameter(self, name: str, dim: int = 1, lb=-np.inf, ub=np.inf, guess=None) -> Parameter:
        """Declare a free parameter bounded by ``[lb, ub]``."""
        return self._declare(Parameter(name, dim, lb=lb, ub=ub, guess=guess), self._parameters)

    @property
    def states(self) -> List[State]:
        return list(self._states)

    @property
    def controls(self) -> List[Control]:
        return list(self._controls)

    @property
    def parameters(self) -> List[Parameter]:
        return list(self._parameters)

    # ==================== Dynamics and horizon ====================

    def set_dynamics(self, dynamics: Dict[State, Union[Expr, float]]):
        """Set the dynamics as one expression per declared state."""
        self._check_mutable()
        self._dynamics = {state: to_expr(expr) for state, expr in dynamics.items()}
        self._dynamics_fn = None

    def set_dynamics_function(self, fn: Callable):
        """Set the dynamics as a jax-traceable ``fn(x, u, p, t) -> (n_x,)``."""
        self._check_mutable()
        self._dynamics_fn = fn
        self._dynamics = None

    def set_horizon(self, horizon: Union[float, Parameter], t0: float = 0.0):
        """Fix the horizon length, or make it the (scalar) free parameter ``horizon``."""
        self._check_mutable()
        self._horizon = horizon
        self._t0 = float(t0)

    # ==================== Cost ====================

    def set_lagrange_weights(self, Q=None, R=None, x_ref=None, u_ref=None):
        """Quadratic running cost ``(x - x_ref)ᵀQ(x - x_ref) + (u - u_ref)ᵀR(u - u_ref)``."""
        self._check_mutable()
        self._lagrange_weights = (Q, R, x_ref, u_ref)

    def set_mayer_weight(self, P, x_ref=None):
        """Quadratic terminal cost ``(x(T) - x_ref)ᵀP(x(T) - x_ref)``."""
        self._check_mutable()
        self._mayer_weight = (P, x_ref)

    def set_lagrange_term(self, term: Union[Expr, Callable]):
        """Add a running cost integrand, an expression or ``fn(x, u, p, t)``."""
        self._check_mutable()
        self._lagrange_terms.append(term if callable(term) and not isinstance(term, Expr) else to_expr(term))

    def set_mayer_term(self, term: Union[Expr, Callable]):
        """Add a terminal cost, an expression or ``fn(x, p, t)``. Controls are not allowed."""
        self._check_mutable()
        self._mayer_terms.append(term if callable(term) and not isinstance(term, Expr) else to_expr(term))

    # ==================== Constraints ====================

    def add_constraint(self, role: ConstraintRole, bound: Bound, name: Optional[str] = None):
        """Add ``bound`` (from ``between``, ``equal_to``, ``at_most``, ``at_least``) with ``role``."""
        self._check_mutable()
        if not isinstance(bound, Bound):
            raise InvalidConstraint(f"Expected a Bound, got {type(bound).__name__}")
        self._constraints.append((Constraint(role, bound.expr, bound.lower, bound.upper, name), None))

    def subject_to(
        self,
        role: ConstraintRole,
        expr: Union[Expr, Callable],
        lb=-np.inf,
        ub=np.inf,
        name: Optional[str] = None,
        uses_control: Optional[bool] = None,
    ):
        """Add ``lb <= expr <= ub`` with ``role``.

        ``expr`` may also be a jax-traceable ``fn(x, u, p, t)``; since the
        dependence of a callable on the controls cannot be inspected,
        ``uses_control`` then says whether it reads ``u`` (default: True for
        INITIAL and PATH rows, False for TERMINAL rows).
        """
        self._check_mutable()
        if not isinstance(role, ConstraintRole):
            raise InvalidConstraint(f"Unknown constraint role {role!r}")
        if callable(expr) and not isinstance(expr, Expr):
            if role is ConstraintRole.BOX:
                raise InvalidConstraint("BOX constraints must be placed on a declared variable")
            if uses_control is None:
                uses_control = role is not ConstraintRole.TERMINAL
            self._constraints.append((Constraint(role, expr, lb, ub, name), bool(uses_control)))
        else:
            self._constraints.append((Constraint(role, to_expr(expr), lb, ub, name), None))

    def set_bounds(self, variable: Leaf, lb=-np.inf, ub=np.inf):
        """BOX shorthand: ``lb <= variable <= ub`` at every node."""
        self.subject_to(ConstraintRole.BOX, variable, lb, ub)

    def set_initial_guess(self, variable: Leaf, values):
        """Guess for a declared variable.

        States accept a constant ``(dim,)`` or a trajectory ``(K, dim)`` that is
        resampled onto the shooting nodes; controls the same over the
        intervals; parameters a ``(dim,)`` value.
        """
        self._check_mutable()
        if not isinstance(variable, (State, Control, Parameter)) or variable._owner != id(self):
            raise UndeclaredSymbol(f"Cannot set a guess for undeclared variable {variable!r}")
        self._guesses[id(variable)] = np.asarray(values, dtype=float)

    # ==================== Validation ====================

    def validate(self) -> ValidatedProblem:
        """Check the model and freeze it into a :class:`ValidatedProblem`.

        Raises:
            MissingDynamics: No states, no dynamics or a state without dynamics.
            DimensionMismatch: Inconsistent shapes anywhere in the model.
            InfeasibleBounds: A lower bound exceeds its upper bound.
            UndeclaredSymbol: A variable not declared in this model is used.
            InvalidConstraint: A role, cost term or horizon is used illegally.
        """
        if self._validated is not None:
            return self._validated

        # ==================== PHASE 1: Variables and dynamics ====================

        if not self._states:
            raise MissingDynamics("No states declared")
        n_x = sum(s.size for s in self._states)
        n_u = sum(c.size for c in self._controls)
        n_p = sum(p.size for p in self._parameters)

        f = self._lower_dynamics(n_x, n_u, n_p)

        # ==================== PHASE 2: Horizon ====================

        horizon, horizon_index = self._validate_horizon()

        # ==================== PHASE 3: Box bounds ====================

        x_lb, x_ub = np.full(n_x, -np.inf), np.full(n_x, np.inf)
        u_lb, u_ub = np.full(n_u, -np.inf), np.full(n_u, np.inf)
        p_lb, p_ub = np.full(n_p, -np.inf), np.full(n_p, np.inf)
        for param in self._parameters:
            if np.any(param.lb > param.ub):
                raise InfeasibleBounds(f"Parameter {param.name!r} has lb > ub: {param.lb} > {param.ub}")
            p_lb[param._slice] = param.lb
            p_ub[param._slice] = param.ub

        node_constraints = []
        for constraint, uses_control in self._constraints:
            if constraint.role is ConstraintRole.BOX:
                self._apply_box(constraint, (x_lb, x_ub), (u_lb, u_ub), (p_lb, p_ub))
            else:
                node_constraints.append((constraint, uses_control))

        for label, lb, ub in (("state", x_lb, x_ub), ("control", u_lb, u_ub), ("parameter", p_lb, p_ub)):
            if np.any(lb > ub):
                bad = int(np.argmax(lb > ub))
                raise InfeasibleBounds(f"Combined {label} bounds are empty at entry {bad}: {lb[bad]} > {ub[bad]}")

        if horizon_index is not None and not p_lb[horizon_index] > 0:
            raise InvalidConstraint("A free horizon needs a positive lower bound")

        # ==================== PHASE 4: Node constraints ====================

        lowered = []
        initial_values = np.full(n_x, np.nan)
        terminal_values = np.full(n_x, np.nan)
        for constraint, uses_control in node_constraints:
            lowered.append(self._lower_constraint(constraint, uses_control, n_x, n_u, n_p))
            if constraint.role is ConstraintRole.INITIAL:
                self._record_equality(constraint, initial_values)
            elif constraint.role is ConstraintRole.TERMINAL:
                self._record_equality(constraint, terminal_values)

        # ==================== PHASE 5: Cost ====================

        Q, R, x_ref, u_ref, P, x_ref_terminal = self._validate_weights(n_x, n_u)
        lagrange, has_lagrange = self._lower_lagrange(Q, R, x_ref, u_ref, n_x, n_u, n_p)
        mayer = self._lower_mayer(P, x_ref_terminal, n_x, n_u, n_p)

        # ==================== PHASE 6: Guesses ====================

        x_guess = self._stack_guess(self._states, n_x)
        u_guess = self._stack_guess(self._controls, n_u)
        p_guess = self._parameter_guess(n_p)

        self._validated = ValidatedProblem(
            states=tuple(self._states),
            controls=tuple(self._controls),
            parameters=tuple(self._parameters),
            f=f,
            lagrange=lagrange,
            mayer=mayer,
            constraints=tuple(lowered),
            x_lb=x_lb,
            x_ub=x_ub,
            u_lb=u_lb,
            u_ub=u_ub,
            p_lb=p_lb,
            p_ub=p_ub,
            x_guess=x_guess,
            u_guess=u_guess,
            p_guess=p_guess,
            initial_values=initial_values,
            terminal_values=terminal_values,
            Q=Q,
            R=R,
            P=P,
            x_ref=x_ref,
            u_ref=u_ref,
            x_ref_terminal=x_ref_terminal,
            t0=self._t0,
            horizon=horizon,
            horizon_index=horizon_index,
            has_lagrange=has_lagrange,
            name=self.name,
        )
        return self._validated

    # ==================== Validation helpers ====================

    def _check_symbols(self, expr: Expr, context: str):
        for leaf in collect_leaves(expr):
            if isinstance(leaf, (State, Control, Parameter)) and leaf._owner != id(self):
                raise UndeclaredSymbol(f"{context} uses {leaf!r}, which is not declared in this model")

    def _expr_shape(self, expr: Expr, context: str) -> Tuple[int, ...]:
        self._check_symbols(expr, context)
        try:
            shape = expr.check_shape()
        except ValueError as e:
            raise DimensionMismatch(f"{context}: {e}") from e
        if len(shape) > 1:
            raise DimensionMismatch(f"{context} must be a scalar or a vector, got shape {shape}")
        return shape

    @staticmethod
    def _uses_control(expr: Expr) -> bool:
        return any(isinstance(leaf, Control) for leaf in collect_leaves(expr))

    @staticmethod
    def _probe_shape(fn: Callable, args, context: str) -> Tuple[int, ...]:
        structs = [jax.ShapeDtypeStruct(np.shape(a), jnp.float64) for a in args]
        try:
            out = jax.eval_shape(fn, *structs)
        except (TypeError, ValueError, IndexError) as e:
            raise DimensionMismatch(f"{context} cannot be evaluated on the declared dimensions: {e}") from e
        return tuple(out.shape)

    def _lower_dynamics(self, n_x, n_u, n_p) -> Callable:
        if self._dynamics_fn is not None:
            shape = self._probe_shape(
                self._dynamics_fn, (np.zeros(n_x), np.zeros(n_u), np.zeros(n_p), 0.0), "Dynamics function"
            )
            if shape != (n_x,):
                raise DimensionMismatch(f"Dynamics function returns shape {shape}, expected ({n_x},)")
            return self._dynamics_fn

        if not self._dynamics:
            raise MissingDynamics("No dynamics were set")
        for state in self._dynamics:
            if not isinstance(state, State) or state._owner != id(self):
                raise UndeclaredSymbol(f"Dynamics given for {state!r}, which is not a declared state")
        parts = []
        for state in self._states:
            if state not in self._dynamics:
                raise MissingDynamics(f"State {state.name!r} has no dynamics")
            expr = self._dynamics[state]
            shape = self._expr_shape(expr, f"Dynamics of {state.name!r}")
            if shape not in ((), (state.size,)):
                raise DimensionMismatch(
                    f"Dynamics of {state.name!r} have shape {shape}, expected ({state.size},)"
                )
            parts.append((lower_to_jax(expr), state.size))

        def f(x, u, p, t):
            return jnp.concatenate(
                [jnp.broadcast_to(jnp.atleast_1d(fn(x, u, p, t)), (size,)) for fn, size in parts]
            )

        return f

    def _validate_horizon(self):
        if self._horizon is None:
            raise InvalidConstraint("No horizon set; call set_horizon()")
        if isinstance(self._horizon, Parameter):
            if self._horizon._owner != id(self):
                raise UndeclaredSymbol(f"Horizon {self._horizon!r} is not a declared parameter")
            if self._horizon.size != 1:
                raise DimensionMismatch("The horizon parameter must be a scalar")
            return None, self._horizon._slice.start
        if isinstance(self._horizon, Expr):
            raise InvalidConstraint("The horizon must be a number or a declared parameter")
        horizon = float(self._horizon)
        if not np.isfinite(horizon) or horizon <= 0:
            raise InvalidConstraint(f"The horizon must be positive, got {horizon}")
        return horizon, None

    def _apply_box(self, constraint: Constraint, x_bounds, u_bounds, p_bounds):
        expr = constraint.expr
        if isinstance(constraint.lower, Expr) or isinstance(constraint.upper, Expr):
            raise InvalidConstraint("BOX constraints take numeric bounds; use a PATH constraint instead")
        leaf, idx = expr, slice(None)
        if isinstance(expr, Index) and isinstance(expr.base, Leaf):
            leaf, idx = expr.base, expr.index
        if not isinstance(leaf, (State, Control, Parameter)):
            raise InvalidConstraint(f"BOX constraint on {expr!r}, which is not a declared variable")
        self._check_symbols(leaf, "BOX constraint")
        positions = np.arange(leaf._slice.start, leaf._slice.stop)[idx]
        positions = np.atleast_1d(positions)
        lower = as_vector_checked(constraint.lower, positions.size, "BOX lower bound")
        upper = as_vector_checked(constraint.upper, positions.size, "BOX upper bound")
        if np.any(lower > upper):
            raise InfeasibleBounds(f"BOX constraint on {leaf.name!r} has lb > ub: {lower} > {upper}")
        if isinstance(leaf, State):
            lb, ub = x_bounds
        elif isinstance(leaf, Control):
            lb, ub = u_bounds
        else:
            lb, ub = p_bounds
        lb[positions] = np.maximum(lb[positions], lower)
        ub[positions] = np.minimum(ub[positions], upper)

    def _lower_constraint(self, constraint: Constraint, uses_control, n_x, n_u, n_p) -> LoweredConstraint:
        label = constraint.describe()
        expr = constraint.expr

        if isinstance(expr, Expr):
            shape = self._expr_shape(expr, label)
            m = shape[0] if shape else 1
            uses_control = self._uses_control(expr)
            base = lower_to_jax(expr)
        else:
            shape = self._probe_shape(expr, (np.zeros(n_x), np.zeros(n_u), np.zeros(n_p), 0.0), label)
            if len(shape) > 1:
                raise DimensionMismatch(f"{label} must return a scalar or a vector, got shape {shape}")
            m = shape[0] if shape else 1
            base = expr

        if uses_control and constraint.role is ConstraintRole.TERMINAL:
            raise InvalidConstraint(f"{label} references a control, which is undefined at t = T")

        def row(x, u, p, t):
            return jnp.reshape(base(x, u, p, t), (m,))

        pieces = []
        lowers, uppers = [], []
        numeric_lower = np.full(m, -np.inf)
        numeric_upper = np.full(m, np.inf)
        for side, value in (("lower", constraint.lower), ("upper", constraint.upper)):
            if isinstance(value, Expr):
                bshape = self._expr_shape(value, f"{label} {side} bound")
                if bshape not in ((), (m,)):
                    raise DimensionMismatch(f"{label} {side} bound has shape {bshape}, expected ({m},)")
                if self._uses_control(value):
                    uses_control = True
                    if constraint.role is ConstraintRole.TERMINAL:
                        raise InvalidConstraint(f"{label} bound references a control")
                if constraint.lower is constraint.upper and side == "upper":
                    continue
                bound_fn = lower_to_jax(value)

                def folded(x, u, p, t, bound_fn=bound_fn):
                    return row(x, u, p, t) - jnp.broadcast_to(jnp.atleast_1d(bound_fn(x, u, p, t)), (m,))

                pieces.append(folded)
                if constraint.lower is constraint.upper:
                    lowers.append(np.zeros(m))
                    uppers.append(np.zeros(m))
                elif side == "lower":
                    lowers.append(np.zeros(m))
                    uppers.append(np.full(m, np.inf))
                else:
                    lowers.append(np.full(m, -np.inf))
                    uppers.append(np.zeros(m))
            else:
                vec = as_vector_checked(value, m, f"{label} {side} bound")
                if side == "lower":
                    numeric_lower = vec
                else:
                    numeric_upper = vec

        if np.any(numeric_lower > numeric_upper):
            raise InfeasibleBounds(f"{label} has lb > ub: {numeric_lower} > {numeric_upper}")
        if np.any(np.isfinite(numeric_lower)) or np.any(np.isfinite(numeric_upper)) or not pieces:
            pieces.insert(0, row)
            lowers.insert(0, numeric_lower)
            uppers.insert(0, numeric_upper)

        if len(pieces) == 1:
            fn = pieces[0]
        else:
            def fn(x, u, p, t):
                return jnp.concatenate([piece(x, u, p, t) for piece in pieces])

        return LoweredConstraint(
            role=constraint.role,
            fn=fn,
            lower=np.concatenate(lowers),
            upper=np.concatenate(uppers),
            uses_control=bool(uses_control),
            name=label,
        )

    @staticmethod
    def _record_equality(constraint: Constraint, values: np.ndarray):
        if not isinstance(constraint.expr, Expr) or not constraint.is_equality:
            return
        if isinstance(constraint.lower, Expr):
            return
        expr, idx = constraint.expr, slice(None)
        if isinstance(expr, Index) and isinstance(expr.base, State):
            expr, idx = expr.base, expr.index
        if not isinstance(expr, State):
            return
        positions = np.atleast_1d(np.arange(expr._slice.start, expr._slice.stop)[idx])
        values[positions] = as_vector(constraint.lower, positions.size)

    def _validate_weights(self, n_x, n_u):
        def matrix(value, n, label):
            if value is None:
                return np.zeros((n, n))
            arr = np.asarray(value, dtype=float)
            if arr.ndim == 1:
                arr = np.diag(arr)
            if arr.shape != (n, n):
                raise DimensionMismatch(f"{label} has shape {arr.shape}, expected ({n}, {n})")
            if not np.allclose(arr, arr.T):
                raise InvalidConstraint(f"{label} must be symmetric")
            if n and np.min(np.linalg.eigvalsh(arr)) < -1e-12 * max(1.0, np.abs(arr).max()):
                raise InvalidConstraint(f"{label} must be positive semi-definite")
            return arr

        def reference(value, n, label):
            if value is None:
                return np.zeros(n)
            return as_vector_checked(value, n, label)

        Q = R = x_ref = u_ref = None
        if self._lagrange_weights is not None:
            Q, R, x_ref, u_ref = self._lagrange_weights
        P = x_ref_terminal = None
        if self._mayer_weight is not None:
            P, x_ref_terminal = self._mayer_weight
        return (
            matrix(Q, n_x, "Q"),
            matrix(R, n_u, "R"),
            reference(x_ref, n_x, "x_ref"),
            reference(u_ref, n_u, "u_ref"),
            matrix(P, n_x, "P"),
            reference(x_ref_terminal, n_x, "terminal x_ref"),
        )

    def _lower_term(self, term, context, args):
        if isinstance(term, Expr):
            shape = self._expr_shape(term, context)
            fn = lower_to_jax(term)
        else:
            shape = self._probe_shape(term, args, context)
            fn = term
        if shape not in ((), (1,)):
            raise DimensionMismatch(f"{context} must be a scalar, got shape {shape}")
        return fn

    def _lower_lagrange(self, Q, R, x_ref, u_ref, n_x, n_u, n_p):
        args = (np.zeros(n_x), np.zeros(n_u), np.zeros(n_p), 0.0)
        terms = [self._lower_term(t, "Lagrange term", args) for t in self._lagrange_terms]
        Qj, Rj, xr, ur = jnp.asarray(Q), jnp.asarray(R), jnp.asarray(x_ref), jnp.asarray(u_ref)
        has_weights = bool(np.any(Q) or np.any(R))

        def lagrange(x, u, p, t):
            value = jnp.zeros(())
            for term in terms:
                value = value + jnp.sum(term(x, u, p, t))
            if has_weights:
                dx = x - xr
                du = u - ur
                value = value + dx @ Qj @ dx + du @ Rj @ du
            return value

        return lagrange, bool(terms) or has_weights

    def _lower_mayer(self, P, x_ref, n_x, n_u, n_p):
        lowered = []
        for term in self._mayer_terms:
            if isinstance(term, Expr):
                if self._uses_control(term):
                    raise InvalidConstraint("The Mayer term references a control, which is undefined at t = T")
                fn = self._lower_term(term, "Mayer term", None)
                lowered.append(lambda x, p, t, fn=fn: fn(x, None, p, t))
            else:
                fn = self._lower_term(
                    lambda x, p, t, term=term: term(x, p, t), "Mayer term", (np.zeros(n_x), np.zeros(n_p), 0.0)
                )
                lowered.append(fn)
        Pj, xr = jnp.asarray(P), jnp.asarray(x_ref)
        has_weight = bool(np.any(P))

        def mayer(x, p, t):
            value = jnp.zeros(())
            for term in lowered:
                value = value + jnp.sum(term(x, p, t))
            if has_weight:
                dx = x - xr
                value = value + dx @ Pj @ dx
            return value

        return mayer

    def _stack_guess(self, leaves, n) -> Optional[np.ndarray]:
        given = [leaf for leaf in leaves if id(leaf) in self._guesses]
        if not given:
            return None
        lengths = set()
        for leaf in given:
            g = self._guesses[id(leaf)]
            if g.ndim == 2:
                lengths.add(g.shape[0])
        if len(lengths) > 1:
            raise DimensionMismatch(f"Trajectory guesses have different lengths: {sorted(lengths)}")
        K = lengths.pop() if lengths else None
        stacked = np.full((K if K is not None else 1, n), np.nan)
        for leaf in given:
            g = self._guesses[id(leaf)]
            if g.ndim == 0 or g.ndim == 1:
                stacked[:, leaf._slice] = as_vector_checked(g, leaf.size, f"Guess for {leaf.name!r}")
            elif g.ndim == 2 and g.shape[1] == leaf.size:
                stacked[:, leaf._slice] = g
            else:
                raise DimensionMismatch(
                    f"Guess for {leaf.name!r} has shape {g.shape}, expected ({leaf.size},) or (K, {leaf.size})"
                )
        return stacked if K is not None else stacked[0]

    def _parameter_guess(self, n_p) -> Optional[np.ndarray]:
        guess = np.full(n_p, np.nan)
        found = False
        for param in self._parameters:
            value = self._guesses.get(id(param), param.guess)
            if value is None:
                continue
            if np.ndim(value) > 1:
                raise DimensionMismatch(f"Guess for parameter {param.name!r} must be a vector")
            guess[param._slice] = as_vector_checked(value, param.size, f"Guess for {param.name!r}")
            found = True
        return guess if found else None


def as_vector_checked(value, size, label) -> np.ndarray:
    try:
        return as_vector(value, size, label)
    except ValueError as e:
        raise DimensionMismatch(str(e)) from e
