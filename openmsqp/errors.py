"""Exception taxonomy for openmsqp.

Errors fall in three families that the solver treats differently:

- :class:`ProblemDefinitionError` and its subclasses are raised while
  validating a model. They are fatal: no numeric work is started.
- :class:`NumericalFailure` and :class:`IntegrationDivergence` come out of the
  shooting integrator. The integrator retries an interval once before raising
  them, and the SQP engine escalates persistent failures to ``DIVERGED``.
- :class:`QPInfeasible` is raised by the QP solvers when the linearized
  constraints cannot be satisfied. The engine relaxes the reported row once
  before escalating to ``DIVERGED``.
"""

from typing import Optional, Tuple


class OpenMSQPError(Exception):
    """Base class for every error raised by openmsqp."""


class ProblemDefinitionError(OpenMSQPError):
    """The optimal control problem is ill-posed and cannot be solved."""


class DimensionMismatch(ProblemDefinitionError):
    """Shapes of dynamics, weights, bounds or guesses do not agree."""


class InfeasibleBounds(ProblemDefinitionError):
    """A lower bound exceeds its upper bound."""


class MissingDynamics(ProblemDefinitionError):
    """No dynamics were set, or a declared state has no derivative."""


class UndeclaredSymbol(ProblemDefinitionError):
    """An expression references a variable that the model did not declare."""


class InvalidConstraint(ProblemDefinitionError):
    """A constraint, cost term or horizon is used in a way the role forbids."""


class IntegrationError(OpenMSQPError):
    """Base class for failures while integrating a shooting interval.

    Attributes:
        node: Index of the shooting interval that failed, when known.
    """

    def __init__(self, message: str, node: Optional[int] = None):
        super().__init__(message)
        self.node = node


class NumericalFailure(IntegrationError):
    """The dynamics produced a non-finite value (evaluated outside its domain)."""


class IntegrationDivergence(IntegrationError):
    """Step adaptation could not meet the tolerance within the sub-step budget."""


class QPInfeasible(OpenMSQPError):
    """The linearized constraints of a QP subproblem are contradictory.

    Attributes:
        row: Identifier of the most-violated constraint row, as understood by
            :meth:`openmsqp.nlp.qp.StructuredQP.relaxed`. ``("node", i, j)``
            names row ``j`` of the point constraints at node ``i`` and
            ``("box", k)`` names the bound on decision-vector entry ``k``.
    """

    def __init__(self, message: str, row: Optional[Tuple] = None):
        super().__init__(message)
        self.row = row
