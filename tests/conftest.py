"""Shared fixtures: small problems and the numeric pipeline built on them."""

from types import SimpleNamespace

import numpy as np
import pytest

from openmsqp import Config, ConstraintRole, ProblemModel
from openmsqp import ops
from openmsqp.discretization import DecisionLayout, ShootingGrid, initial_guess
from openmsqp.dynamics import ShootingDynamics
from openmsqp.integrators import get_integrator
from openmsqp.nlp import NLPAssembler, NLPEvaluator


def double_integrator_model(T=2.0, a_max=5.0):
    model = ProblemModel("double_integrator")
    x = model.declare_state("position")
    v = model.declare_state("velocity")
    a = model.declare_control("acceleration")
    model.set_dynamics({x: v, v: a})
    model.set_horizon(T)
    model.set_lagrange_weights(R=np.eye(1))
    model.subject_to(ConstraintRole.INITIAL, x, 0.0, 0.0)
    model.subject_to(ConstraintRole.INITIAL, v, 0.0, 0.0)
    model.subject_to(ConstraintRole.TERMINAL, x, 1.0, 1.0)
    model.subject_to(ConstraintRole.TERMINAL, v, 0.0, 0.0)
    model.set_bounds(a, -a_max, a_max)
    return model


def pendulum_model():
    """Nonlinear dynamics with a free horizon, a parameter and a path constraint."""
    model = ProblemModel("pendulum")
    theta = model.declare_state("theta")
    omega = model.declare_state("omega")
    torque = model.declare_control("torque")
    T = model.declare_parameter("T", lb=1.0, ub=5.0, guess=3.0)
    model.set_dynamics(
        {
            theta: omega,
            omega: ops.subtract(torque, ops.multiply(2.0, ops.sin(theta))),
        }
    )
    model.set_horizon(T)
    model.set_lagrange_term(ops.multiply(0.1, ops.square(torque)))
    model.set_mayer_term(T)
    model.subject_to(ConstraintRole.INITIAL, theta, 0.0, 0.0)
    model.subject_to(ConstraintRole.INITIAL, omega, 0.0, 0.0)
    model.subject_to(ConstraintRole.TERMINAL, theta, 1.0, 1.0)
    model.subject_to(ConstraintRole.TERMINAL, omega, 0.0, 0.0)
    model.add_constraint(ConstraintRole.PATH, ops.at_most(ops.square(omega), 4.0))
    model.set_bounds(torque, -3.0, 3.0)
    return model


def build_pipeline(model, config=None):
    """Everything :class:`~openmsqp.problem.Problem` builds in initialize(), without the solver."""
    config = config if config is not None else Config.from_options(N=8, printing=False)
    problem = model.validate()
    N = config.dis.n
    grid = ShootingGrid(problem, N)
    layout = DecisionLayout(problem.n_x, problem.n_u, problem.n_p, N)
    dynamics = ShootingDynamics(problem, N)
    integrator = get_integrator(dynamics, config.dis)
    evaluator = NLPEvaluator(problem, dynamics, integrator, layout)
    z_lower, z_upper = layout.bounds(problem)
    assembler = NLPAssembler(layout, z_lower, z_upper)
    z0 = initial_guess(problem, grid, config.dis.initial_guess, integrator)
    return SimpleNamespace(
        config=config,
        problem=problem,
        grid=grid,
        layout=layout,
        dynamics=dynamics,
        integrator=integrator,
        evaluator=evaluator,
        assembler=assembler,
        z_lower=z_lower,
        z_upper=z_upper,
        z0=z0,
    )


@pytest.fixture
def double_integrator():
    return build_pipeline(double_integrator_model())


@pytest.fixture
def pendulum():
    return build_pipeline(pendulum_model())
