import os
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import numpy as np

if TYPE_CHECKING:
    import cProfile


def as_vector(value, size: int, name: str = "value") -> np.ndarray:
    """Broadcast a number or array to a float vector of length ``size``.

    Raises:
        ValueError: If ``value`` cannot be broadcast to ``(size,)``.
    """
    arr = np.asarray(value, dtype=float)
    if arr.size == size and arr.ndim <= 1:
        return arr.reshape(size).copy()
    if arr.size == 1:
        return np.full(size, arr.item())
    raise ValueError(f"{name} with shape {arr.shape} does not fit shape ({size},)")


def project(value: np.ndarray, lower: np.ndarray, upper: np.ndarray) -> np.ndarray:
    return np.minimum(np.maximum(value, lower), upper)


def profiling_start(enabled: bool) -> "Optional[cProfile.Profile]":
    """Return a running profiler when ``enabled``, else None."""
    if not enabled:
        return None
    import cProfile

    profiler = cProfile.Profile()
    profiler.enable()
    return profiler


def profiling_end(profiler: "Optional[cProfile.Profile]", phase: str):
    """Stop ``profiler`` and dump it to ``profiling/<timestamp>_<phase>.prof``.

    The dump can be browsed with snakeviz.
    """
    if profiler is None:
        return
    profiler.disable()
    os.makedirs("profiling", exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    profiler.dump_stats(os.path.join("profiling", f"{stamp}_{phase}.prof"))
