"""L1 exact penalty merit function and Armijo line-search helpers.

The merit function is::

    phi(z) = F(z) + nu * (||x+ - s_next||_1 + ||row violations||_1 + ||box violations||_1)

Along an SQP step ``dz`` that satisfies the linearized constraints its
directional derivative is bounded by ``D = gᵀdz - nu * violation``.
"""

import numpy as np

from openmsqp.nlp.evaluation import Evaluation

PENALTY_MARGIN = 1.1
PENALTY_FACTOR = 1.5


def merit_value(evaluation: Evaluation, penalty: float, z_lower: np.ndarray, z_upper: np.ndarray) -> float:
    return float(evaluation.objective + penalty * evaluation.violation_l1(z_lower, z_upper))


def directional_derivative(
    evaluation: Evaluation, dz: np.ndarray, penalty: float, z_lower: np.ndarray, z_upper: np.ndarray
) -> float:
    return float(evaluation.gradient @ dz - penalty * evaluation.violation_l1(z_lower, z_upper))


def update_penalty(penalty: float, max_multiplier: float) -> float:
    """Raise ``penalty`` above the multiplier magnitudes when it gets too close."""
    if penalty < PENALTY_MARGIN * max_multiplier:
        return PENALTY_FACTOR * max_multiplier + 1.0
    return penalty


def armijo_accepts(
    phi_trial: float, phi: float, alpha: float, derivative: float, armijo: float, noise: float = 0.0
) -> bool:
    """Sufficient decrease ``phi_trial <= phi + armijo * alpha * min(D, 0) + noise``."""
    if not np.isfinite(phi_trial):
        return False
    return phi_trial <= phi + armijo * alpha * min(derivative, 0.0) + noise
