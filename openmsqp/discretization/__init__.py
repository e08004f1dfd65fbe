from openmsqp.discretization.grid import DecisionLayout, ShootingGrid
from openmsqp.discretization.initial_guess import initial_guess, parameter_guess

__all__ = ["DecisionLayout", "ShootingGrid", "initial_guess", "parameter_guess"]
