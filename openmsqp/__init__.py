import os

# Set Equinox error handling to return NaN instead of crashing
os.environ["EQX_ON_ERROR"] = "nan"

import jax

# Integration tolerances and KKT tests need double precision
jax.config.update("jax_enable_x64", True)

import openmsqp.symbolic.builder as ops
from openmsqp.config import (
    Config,
    DevConfig,
    DiscretizationConfig,
    PropagationConfig,
    QPConfig,
    SQPConfig,
)
from openmsqp.errors import (
    DimensionMismatch,
    InfeasibleBounds,
    IntegrationDivergence,
    IntegrationError,
    InvalidConstraint,
    MissingDynamics,
    NumericalFailure,
    OpenMSQPError,
    ProblemDefinitionError,
    QPInfeasible,
    UndeclaredSymbol,
)
from openmsqp.model import ProblemModel, ValidatedProblem
from openmsqp.problem import Problem, solve
from openmsqp.results import IterationRecord, OptimizationResults, SolverStatus
from openmsqp.symbolic import (
    Bound,
    Constant,
    ConstraintRole,
    Control,
    Expr,
    Parameter,
    State,
    Time,
)

__all__ = [
    # Main entry points
    "Problem",
    "ProblemModel",
    "ValidatedProblem",
    "solve",
    # Expressions
    "ops",
    "Bound",
    "Constant",
    "ConstraintRole",
    "Control",
    "Expr",
    "Parameter",
    "State",
    "Time",
    # Configuration
    "Config",
    "DevConfig",
    "DiscretizationConfig",
    "PropagationConfig",
    "QPConfig",
    "SQPConfig",
    # Results
    "IterationRecord",
    "OptimizationResults",
    "SolverStatus",
    # Errors
    "DimensionMismatch",
    "InfeasibleBounds",
    "IntegrationDivergence",
    "IntegrationError",
    "InvalidConstraint",
    "MissingDynamics",
    "NumericalFailure",
    "OpenMSQPError",
    "ProblemDefinitionError",
    "QPInfeasible",
    "UndeclaredSymbol",
]
