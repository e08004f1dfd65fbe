"""Free-final-time rocket ascent with quadratic drag.

A point-mass rocket starts at rest at ``s = 0`` with unit mass and has to come
to rest again at ``s = 10`` in minimum time. Thrust is bounded, drag grows with
the square of the velocity and fuel is burned with the square of the thrust::

    s' = v,   v' = (u - 0.2 v²) / m,   m' = -0.01 u²
"""

import os
import sys

current_dir = os.path.dirname(os.path.abspath(__file__))
parent_dir = os.path.dirname(current_dir)
sys.path.append(parent_dir)

from openmsqp import Config, ConstraintRole, Problem, ProblemModel
from openmsqp import ops

n = 20
drag = 0.2
burn_rate = 0.01


def build_model() -> ProblemModel:
    model = ProblemModel("rocket")

    s = model.declare_state("position")
    v = model.declare_state("velocity")
    m = model.declare_state("mass")
    u = model.declare_control("thrust")
    T = model.declare_parameter("T", lb=5.0, ub=15.0, guess=10.0)

    model.set_dynamics(
        {
            s: v,
            v: ops.divide(ops.subtract(u, ops.multiply(drag, ops.square(v))), m),
            m: ops.multiply(-burn_rate, ops.square(u)),
        }
    )
    model.set_horizon(T)
    model.set_mayer_term(T)

    model.add_constraint(ConstraintRole.INITIAL, ops.equal_to(s, 0.0), name="start position")
    model.add_constraint(ConstraintRole.INITIAL, ops.equal_to(v, 0.0), name="start at rest")
    model.add_constraint(ConstraintRole.INITIAL, ops.equal_to(m, 1.0), name="initial mass")
    model.add_constraint(ConstraintRole.TERMINAL, ops.equal_to(s, 10.0), name="target position")
    model.add_constraint(ConstraintRole.TERMINAL, ops.equal_to(v, 0.0), name="stop at target")
    model.add_constraint(ConstraintRole.PATH, ops.between(v, -0.1, 1.7), name="speed limit")
    model.set_bounds(u, -1.1, 1.1)

    model.set_initial_guess(v, [1.0])
    model.set_initial_guess(u, [0.2])
    return model


config = Config.from_options(N=n, max_iterations=100, kkt_tolerance=1e-6)

problem = Problem(build_model(), config)

if __name__ == "__main__":
    problem.initialize()
    results = problem.solve()
    results = problem.post_process(results)
    print(f"Minimum time: {results.parameters['T'][0]:.4f} s")
