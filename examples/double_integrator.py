"""Minimum-energy transfer of a double integrator.

Move a unit mass from rest at 0 to rest at 1 in two seconds while minimizing
the integral of the squared acceleration. The continuous-time optimum is
``a(t) = 6/T² - 12 t/T³`` with cost ``12/T³ = 1.5``.
"""

import os
import sys

import numpy as np

current_dir = os.path.dirname(os.path.abspath(__file__))
parent_dir = os.path.dirname(current_dir)
sys.path.append(parent_dir)

from openmsqp import Config, ConstraintRole, Problem, ProblemModel

n = 20
total_time = 2.0


def build_model() -> ProblemModel:
    model = ProblemModel("double_integrator")

    x = model.declare_state("position")
    v = model.declare_state("velocity")
    a = model.declare_control("acceleration")

    model.set_dynamics({x: v, v: a})
    model.set_horizon(total_time)
    model.set_lagrange_weights(R=np.eye(1))

    model.subject_to(ConstraintRole.INITIAL, x, 0.0, 0.0, name="start position")
    model.subject_to(ConstraintRole.INITIAL, v, 0.0, 0.0, name="start at rest")
    model.subject_to(ConstraintRole.TERMINAL, x, 1.0, 1.0, name="target position")
    model.subject_to(ConstraintRole.TERMINAL, v, 0.0, 0.0, name="stop at target")
    model.set_bounds(a, -5.0, 5.0)
    return model


config = Config.from_options(N=n, kkt_tolerance=1e-8)

problem = Problem(build_model(), config)

if __name__ == "__main__":
    problem.initialize()
    results = problem.solve()
    results = problem.post_process(results)
    print(f"Cost: {results['objective']:.6f} (continuous optimum {12.0 / total_time**3:.6f})")
