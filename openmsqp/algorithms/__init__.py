"""Newton-type algorithms for the multiple-shooting NLP.

All algorithms inherit from :class:`Algorithm`:

```python
class Algorithm(ABC):
    @abstractmethod
    def start(self, z0) -> AlgorithmState:
        '''Evaluate the initial iterate and return a fresh state.'''
        ...

    @abstractmethod
    def step(self, state, full_step=False) -> SolverStatus:
        '''Execute one iteration, updating the state in place.'''
        ...
```

:class:`AlgorithmState` holds the iterate, the multipliers and the
globalization state. The status moves through
``INIT -> ITERATING -> {CONVERGED | MAX_ITER_REACHED | DIVERGED | TIMED_OUT}``;
the iteration budget and the deadline are enforced by the caller.

Current Implementations:
    - :class:`SQPAlgorithm`: line-search SQP with an L1 merit function
"""

from .base import Algorithm, AlgorithmState, Multipliers
from .kkt import kkt_components, kkt_residual
from .merit import armijo_accepts, directional_derivative, merit_value, update_penalty
from .sqp import SQPAlgorithm

__all__ = [
    # Base class
    "Algorithm",
    "AlgorithmState",
    "Multipliers",
    # Globalization
    "armijo_accepts",
    "directional_derivative",
    "kkt_components",
    "kkt_residual",
    "merit_value",
    "update_penalty",
    # SQP algorithm
    "SQPAlgorithm",
]
