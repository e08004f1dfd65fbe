"""KKT residual of the shooting NLP."""

from typing import Dict, Tuple

import numpy as np

from openmsqp.discretization.grid import DecisionLayout
from openmsqp.nlp.evaluation import Evaluation, lagrangian_gradient


def _complementarity(multiplier, value, lower, upper) -> np.ndarray:
    """``|mult| * slack`` of the active side; ``|mult|`` when that side is unbounded."""
    multiplier = np.asarray(multiplier, dtype=float)
    slack_upper = np.where(np.isfinite(upper), np.abs(upper - value), 1.0)
    slack_lower = np.where(np.isfinite(lower), np.abs(value - lower), 1.0)
    slack = np.where(multiplier > 0, slack_upper, slack_lower)
    return np.abs(multiplier) * slack


def kkt_components(
    evaluation: Evaluation,
    layout: DecisionLayout,
    multipliers,
    z_lower: np.ndarray,
    z_upper: np.ndarray,
) -> Dict[str, float]:
    """Stationarity, primal infeasibility and complementarity in the infinity norm."""
    stationarity = float(np.abs(lagrangian_gradient(evaluation, layout, multipliers)).max(initial=0.0))
    infeasibility = evaluation.infeasibility(z_lower, z_upper)
    parts = [_complementarity(multipliers.bounds, evaluation.z, z_lower, z_upper)]
    for nu, value, lo, up in zip(multipliers.rows, evaluation.rows, evaluation.row_lower, evaluation.row_upper):
        if nu.size:
            parts.append(_complementarity(nu, value, lo, up))
    flat = np.concatenate(parts)
    complementarity = float(flat.max()) if flat.size else 0.0
    return {
        "stationarity": stationarity,
        "infeasibility": infeasibility,
        "complementarity": complementarity,
    }


def kkt_residual(
    evaluation: Evaluation,
    layout: DecisionLayout,
    multipliers,
    z_lower: np.ndarray,
    z_upper: np.ndarray,
) -> Tuple[float, Dict[str, float]]:
    """Return ``max(stationarity, infeasibility, complementarity)`` and its parts.

    A non-finite part makes the residual ``inf``.
    """
    parts = kkt_components(evaluation, layout, multipliers, z_lower, z_upper)
    value = max(parts.values())
    if not all(np.isfinite(v) for v in parts.values()):
        value = np.inf
    return value, parts
