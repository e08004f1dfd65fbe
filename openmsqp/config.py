from dataclasses import dataclass, field
from typing import Dict, Optional

INTEGRATORS = ("rk", "diffrax")
RK_ORDERS = (3, 4, 5)
ERROR_CONTROL = ("all", "states")
INITIAL_GUESS_STRATEGIES = ("interpolate", "zero", "simulate")
QP_KINDS = ("condensing", "cvxpy")
HESSIANS = ("exact", "gauss_newton", "block_bfgs")
MODES = ("full_convergence", "real_time_single_iteration")


def _check_choice(name, value, choices):
    if value not in choices:
        raise ValueError(f"Unknown {name} {value!r}, expected one of {list(choices)}")


def _check_positive(name, value):
    if not value > 0:
        raise ValueError(f"{name} must be positive, got {value!r}")


@dataclass
class DiscretizationConfig:

    def __init__(
        self,
        n: int = 20,
        integrator: str = "rk",
        order: int = 5,
        solver: str = "Dopri5",
        rtol: float = 1e-8,
        atol: float = 1e-10,
        max_substeps: int = 1000,
        initial_substeps: int = 4,
        error_control: str = "all",
        initial_guess: str = "interpolate",
    ):
        """
        Configuration class for the multiple-shooting transcription.

        This class defines the shooting grid and how each shooting interval is
        integrated together with its sensitivities.

        Main arguments:
        These are the arguments most commonly used day-to-day.

        Args:
            n (int): Number of shooting intervals N. The decision vector holds N+1 state
                nodes and N control nodes. Defaults to 20.
            integrator (str): "rk" for the built-in embedded Runge-Kutta pairs, "diffrax" to
                integrate with [Diffrax](https://docs.kidger.site/diffrax/). The exact Hessian is
                only available with "rk". Defaults to "rk".
            order (int): Order of the "rk" pair: 3 (Bogacki-Shampine), 4 (Fehlberg) or
                5 (Dormand-Prince). Defaults to 5.
            solver (str): Diffrax solver name, only used by the "diffrax" integrator. Defaults to "Dopri5".
            initial_guess (str): "interpolate", "zero" or "simulate". Defaults to "interpolate".

        Other arguments:
        These arguments are less frequently used, and for most purposes you shouldn't need to understand these.

        Args:
            rtol (float): Relative local error tolerance. Defaults to 1e-8.
            atol (float): Absolute local error tolerance. Defaults to 1e-10.
            max_substeps (int): Sub-step budget per interval before the step adaptation is
                declared divergent. Defaults to 1000.
            initial_substeps (int): The first trial sub-step is 1/initial_substeps of the
                interval. Defaults to 4.
            error_control (str): "all" measures the local error on states, running cost and
                sensitivities, "states" only on states and running cost. Defaults to "all".
        """
        self.n = n
        self.integrator = integrator
        self.order = order
        self.solver = solver
        self.rtol = rtol
        self.atol = atol
        self.max_substeps = max_substeps
        self.initial_substeps = initial_substeps
        self.error_control = error_control
        self.initial_guess = initial_guess

        self.__post_init__()

    def __post_init__(self):
        if int(self.n) != self.n or self.n < 1:
            raise ValueError(f"Number of shooting intervals must be a positive integer, got {self.n!r}")
        self.n = int(self.n)
        _check_choice("integrator", self.integrator, INTEGRATORS)
        _check_choice("integrator order", self.order, RK_ORDERS)
        _check_choice("error control", self.error_control, ERROR_CONTROL)
        _check_choice("initial guess strategy", self.initial_guess, INITIAL_GUESS_STRATEGIES)
        _check_positive("rtol", self.rtol)
        _check_positive("atol", self.atol)
        _check_positive("max_substeps", self.max_substeps)
        _check_positive("initial_substeps", self.initial_substeps)


@dataclass
class QPConfig:

    def __init__(
        self,
        kind: str = "condensing",
        tol: float = 1e-10,
        max_iter: int = 100,
        regularization: float = 1e-12,
        solver: str = "CLARABEL",
        solver_args: Optional[Dict] = None,
    ):
        """
        Configuration class for the QP subproblem solver.

        Main arguments:
        These are the arguments most commonly used day-to-day.

        Args:
            kind (str): "condensing" eliminates the state steps and solves the dense QP with a
                primal-dual interior-point method. "cvxpy" hands the sparse full-space QP to
                [CVXPY](https://www.cvxpy.org/). Defaults to "condensing".
            solver (str): CVXPY solver name, only used when kind is "cvxpy". Defaults to "CLARABEL".

        Other arguments:
        These arguments are less frequently used, and for most purposes you shouldn't need to understand these.

        Args:
            tol (float): Interior-point termination tolerance. Defaults to 1e-10.
            max_iter (int): Interior-point iteration limit. Defaults to 100.
            regularization (float): Primal-dual regularization of the reduced KKT system. Defaults to 1e-12.
            solver_args (dict, optional): Extra keyword arguments for the CVXPY solver. Defaults to {}.
        """
        self.kind = kind
        self.tol = tol
        self.max_iter = max_iter
        self.regularization = regularization
        self.solver = solver
        self.solver_args = solver_args if solver_args is not None else {}

        self.__post_init__()

    def __post_init__(self):
        _check_choice("QP solver kind", self.kind, QP_KINDS)
        _check_positive("QP tolerance", self.tol)
        _check_positive("QP max_iter", self.max_iter)
        if self.regularization < 0:
            raise ValueError("QP regularization must be non-negative")


@dataclass
class SQPConfig:

    def __init__(
        self,
        max_iterations: int = 100,
        kkt_tol: float = 1e-6,
        hessian: str = "exact",
        hessian_regularization: float = 1e-8,
        armijo: float = 1e-4,
        backtrack: float = 0.5,
        alpha_min: float = 1e-8,
        kkt_acceptance: float = 0.5,
        merit_penalty: float = 1.0,
        divergence_threshold: float = 1e12,
        time_limit: Optional[float] = None,
        mode: str = "full_convergence",
    ):
        """
        Configuration class for the Sequential Quadratic Programming (SQP) iteration.

        Main arguments:
        These are the arguments most commonly used day-to-day.

        Args:
            max_iterations (int): Iteration budget; exhausting it ends the solve with
                MAX_ITER_REACHED. Defaults to 100.
            kkt_tol (float): Convergence tolerance on the KKT residual. Defaults to 1e-6.
            hessian (str): "exact", "gauss_newton" or "block_bfgs". Defaults to "exact".
            time_limit (float, optional): Wall-clock budget in seconds; on expiry the best
                iterate is returned as TIMED_OUT. Defaults to None (no limit).
            mode (str): "full_convergence" iterates until a terminal status,
                "real_time_single_iteration" performs one full-step iteration per solve() call,
                warm-started from the previous call. Defaults to "full_convergence".

        Other arguments:
        These arguments are less frequently used, and for most purposes you shouldn't need to understand these.

        Args:
            hessian_regularization (float): Smallest eigenvalue kept in each Hessian element. Defaults to 1e-8.
            armijo (float): Sufficient decrease constant of the merit line search. Defaults to 1e-4.
            backtrack (float): Step length reduction factor. Defaults to 0.5.
            alpha_min (float): Smallest step length before the solve is declared DIVERGED. Defaults to 1e-8.
            kkt_acceptance (float): A full step is also accepted when it reduces the KKT residual
                below this fraction of the current one. Defaults to 0.5.
            merit_penalty (float): Initial L1 merit penalty weight. Defaults to 1.0.
            divergence_threshold (float): KKT residual above which the solve is DIVERGED. Defaults to 1e12.
        """
        self.max_iterations = max_iterations
        self.kkt_tol = kkt_tol
        self.hessian = hessian
        self.hessian_regularization = hessian_regularization
        self.armijo = armijo
        self.backtrack = backtrack
        self.alpha_min = alpha_min
        self.kkt_acceptance = kkt_acceptance
        self.merit_penalty = merit_penalty
        self.divergence_threshold = divergence_threshold
        self.time_limit = time_limit
        self.mode = mode

        self.__post_init__()

    def __post_init__(self):
        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 1:
            raise ValueError(f"max_iterations must be a positive integer, got {self.max_iterations!r}")
        self.max_iterations = int(self.max_iterations)
        _check_positive("kkt_tol", self.kkt_tol)
        _check_choice("Hessian approximation", self.hessian, HESSIANS)
        _check_choice("mode", self.mode, MODES)
        if self.hessian_regularization < 0:
            raise ValueError("hessian_regularization must be non-negative")
        if not 0 < self.armijo < 0.5:
            raise ValueError("armijo must lie in (0, 0.5)")
        if not 0 < self.backtrack < 1:
            raise ValueError("backtrack must lie in (0, 1)")
        if not 0 < self.kkt_acceptance < 1:
            raise ValueError("kkt_acceptance must lie in (0, 1)")
        _check_positive("alpha_min", self.alpha_min)
        _check_positive("merit_penalty", self.merit_penalty)
        _check_positive("divergence_threshold", self.divergence_threshold)
        if self.time_limit is not None:
            _check_positive("time_limit", self.time_limit)


@dataclass
class PropagationConfig:
    def __init__(self, inter_sample: int = 10):
        """
        Configuration class for propagation settings.

        This class defines how densely the nonlinear dynamics are re-simulated with the
        optimal control sequence in post-processing.

        Args:
            inter_sample (int): Number of samples per shooting interval, end point included. Defaults to 10.
        """
        self.inter_sample = inter_sample

        self.__post_init__()

    def __post_init__(self):
        if int(self.inter_sample) != self.inter_sample or self.inter_sample < 1:
            raise ValueError(f"inter_sample must be a positive integer, got {self.inter_sample!r}")
        self.inter_sample = int(self.inter_sample)


@dataclass
class DevConfig:

    def __init__(self, printing: bool = True, profiling: bool = False, workers: int = 1):
        """
        Configuration class for development settings.

        This class defines the parameters used for development and debugging purposes.

        Args:
            printing (bool): Whether to print the iteration table. Defaults to True.
            profiling (bool): Whether to wrap initialize() and solve() in cProfile. Defaults to False.
            workers (int): Threads used to integrate the shooting intervals; 1 integrates them
                sequentially. Defaults to 1.
        """
        self.printing = printing
        self.profiling = profiling
        self.workers = workers

        self.__post_init__()

    def __post_init__(self):
        if int(self.workers) != self.workers or self.workers < 1:
            raise ValueError(f"workers must be a positive integer, got {self.workers!r}")
        self.workers = int(self.workers)


@dataclass
class Config:
    dis: DiscretizationConfig = field(default_factory=DiscretizationConfig)
    qp: QPConfig = field(default_factory=QPConfig)
    sqp: SQPConfig = field(default_factory=SQPConfig)
    prp: PropagationConfig = field(default_factory=PropagationConfig)
    dev: DevConfig = field(default_factory=DevConfig)

    def __post_init__(self):
        if self.sqp.hessian == "exact" and self.dis.integrator != "rk":
            raise ValueError(
                "The exact Hessian replays the built-in Runge-Kutta steps; "
                "use integrator='rk' or choose hessian='gauss_newton' or 'block_bfgs'"
            )

    @classmethod
    def from_options(
        cls,
        N: int = 20,
        integrator_order: int = 5,
        integrator_tolerance: float = 1e-8,
        qp_solver_kind: str = "condensing",
        kkt_tolerance: float = 1e-6,
        max_iterations: int = 100,
        initial_guess_strategy: str = "interpolate",
        mode: str = "full_convergence",
        **kwargs,
    ) -> "Config":
        """Build a configuration from the enumerated solve options.

        ``integrator_tolerance`` sets the relative tolerance and, scaled by 1e-2,
        the absolute one. Any further keyword argument is set on the nested
        config that declares it, e.g. ``hessian="gauss_newton"`` or ``printing=False``.
        """
        dis = DiscretizationConfig(
            n=N,
            order=integrator_order,
            rtol=integrator_tolerance,
            atol=integrator_tolerance * 1e-2,
            initial_guess=initial_guess_strategy,
        )
        qp = QPConfig(kind=qp_solver_kind)
        sqp = SQPConfig(max_iterations=max_iterations, kkt_tol=kkt_tolerance, mode=mode)
        prp = PropagationConfig()
        dev = DevConfig()
        for key, value in kwargs.items():
            for sub in (dis, qp, sqp, prp, dev):
                if key in vars(sub):
                    setattr(sub, key, value)
                    break
            else:
                raise ValueError(f"Unknown configuration option {key!r}")
        for sub in (dis, qp, sqp, prp, dev):
            sub.__post_init__()
        return cls(dis=dis, qp=qp, sqp=sqp, prp=prp, dev=dev)
