import queue
import threading
import time
from typing import Optional

from openmsqp import io
from openmsqp.algorithms import AlgorithmState, SQPAlgorithm
from openmsqp.config import Config
from openmsqp.discretization import DecisionLayout, ShootingGrid, initial_guess
from openmsqp.dynamics import ShootingDynamics
from openmsqp.integrators import get_integrator
from openmsqp.model import ProblemModel, ValidatedProblem
from openmsqp.nlp import NLPAssembler, NLPEvaluator, get_hessian
from openmsqp.propagation import propagate_trajectory_results
from openmsqp.results import OptimizationResults, SolverStatus, format_result
from openmsqp.solvers import get_qp_solver
from openmsqp.utils import profiling_end, profiling_start

RESUMABLE = (SolverStatus.MAX_ITER_REACHED, SolverStatus.TIMED_OUT)


class Problem:
    def __init__(self, model: ProblemModel, config: Optional[Config] = None):
        """
        The primary class in charge of transcribing and solving an optimal control problem

        Args:
            model (ProblemModel): The problem definition. It is validated here and can
                no longer be modified afterwards.
            config (Config, optional): Solver configuration. Defaults to ``Config()``.
                Settings may still be changed between ``__init__`` and ``initialize()``.

        Raises:
            ProblemDefinitionError: The model is ill-posed; no numeric work is started.

        Example:
            >>> problem = Problem(model, Config.from_options(N=20))
            >>> problem.initialize()
            >>> result = problem.solve()
            >>> result = problem.post_process(result)
        """
        self.model = model
        self.settings = config if config is not None else Config()
        self.problem: ValidatedProblem = model.validate()

        # Built in initialize() so that settings can still be changed
        self.grid: Optional[ShootingGrid] = None
        self.layout: Optional[DecisionLayout] = None
        self.integrator = None
        self.evaluator: Optional[NLPEvaluator] = None
        self.assembler: Optional[NLPAssembler] = None
        self.algorithm = SQPAlgorithm()

        # Set up emitter & thread only if printing is enabled
        if self.settings.dev.printing:
            self.print_queue = queue.Queue()
            self.emitter_function = lambda data: self.print_queue.put(data)
            self.print_thread = threading.Thread(
                target=io.intermediate,
                args=(self.print_queue, self.settings),
                daemon=True,
            )
            self.print_thread.start()
        else:
            # no-op emitter; nothing ever gets queued or printed
            self.print_queue = None
            self.emitter_function = lambda data: None

        self.timing_init = None
        self.timing_solve = None
        self.timing_post = None

        # Solver state (created fresh for each solve)
        self._z0 = None
        self._state: Optional[AlgorithmState] = None

    @property
    def state(self) -> Optional[AlgorithmState]:
        """Current solver state, or None before initialize()."""
        return self._state

    @property
    def printing(self) -> bool:
        return self.print_queue is not None and self.settings.dev.printing

    def initialize(self):
        if self.printing:
            io.intro()
            io.print_problem_summary(self.settings, self.problem)

        pr = profiling_start(self.settings.dev.profiling)

        t_0_init = time.time()
        # Re-check settings that may have been modified after __init__
        self.settings.dis.__post_init__()
        self.settings.qp.__post_init__()
        self.settings.sqp.__post_init__()
        self.settings.prp.__post_init__()
        self.settings.dev.__post_init__()
        self.settings.__post_init__()

        N = self.settings.dis.n
        problem = self.problem
        self.grid = ShootingGrid(problem, N)
        self.layout = DecisionLayout(problem.n_x, problem.n_u, problem.n_p, N)

        dynamics = ShootingDynamics(problem, N)
        self.integrator = get_integrator(dynamics, self.settings.dis)
        self.evaluator = NLPEvaluator(
            problem, dynamics, self.integrator, self.layout, workers=self.settings.dev.workers
        )
        z_lower, z_upper = self.layout.bounds(problem)
        self.assembler = NLPAssembler(self.layout, z_lower, z_upper)
        hessian = get_hessian(
            self.settings.sqp.hessian, self.layout, self.settings.sqp, self.evaluator, problem, self.grid
        )
        self.algorithm.initialize(
            self.evaluator,
            hessian,
            get_qp_solver(self.settings.qp),
            self.assembler,
            self.settings,
            self.emitter_function,
        )

        self._z0 = initial_guess(problem, self.grid, self.settings.dis.initial_guess, self.integrator)

        # The first evaluation also compiles the jax functions
        if self.printing:
            print("Evaluating the initial guess...")
        self._state = self.algorithm.start(self._z0)
        if self.printing:
            print("✓ Initial guess evaluated")

        self.timing_init = time.time() - t_0_init
        if self.printing:
            print("Total Initialization Time: ", self.timing_init)

        profiling_end(pr, "initialize")

    def reset(self):
        """Reset solver state to run the same problem again.

        The initial guess is evaluated again and any quasi-Newton information
        is discarded; the compiled functions are preserved.

        Raises:
            ValueError: If initialize() has not been called yet.

        Example:
            >>> problem.initialize()
            >>> result1 = problem.solve()
            >>> problem.reset()  # Reset to initial guess
            >>> result2 = problem.solve()  # Run again from scratch
        """
        if self._state is None:
            raise ValueError("Problem has not been initialized. Call initialize() first")

        self._state = self.algorithm.start(self._z0)

        # Reset timing
        self.timing_solve = None
        self.timing_post = None

    def step(self) -> dict:
        """Performs a single SQP iteration.

        In real-time mode the full step is taken without globalization and an
        unconverged iterate is reported as TIMED_OUT, as solve() does.

        Returns:
            dict: Dictionary containing convergence status and current state
        """
        if self._state is None:
            raise ValueError("Problem has not been initialized. Call initialize() first")

        state = self._state
        if state.status in RESUMABLE:
            state.status = SolverStatus.ITERATING
        if not state.terminal:
            if self.settings.sqp.mode == "real_time_single_iteration":
                self._real_time_step(state)
            else:
                self.algorithm.step(state)

        return {
            "converged": state.status == SolverStatus.CONVERGED,
            "status": state.status,
            "iteration": state.k,
            "kkt_residual": state.kkt,
            "objective": state.objective,
        }

    def _iterate(self, k_max: int, time_limit: Optional[float], t_start: float) -> SolverStatus:
        state = self._state
        while not state.terminal:
            if state.k >= k_max:
                state.status = SolverStatus.MAX_ITER_REACHED
                break
            if time_limit is not None and time.time() - t_start >= time_limit:
                state.status = SolverStatus.TIMED_OUT
                break
            self.algorithm.step(state)
        return state.status

    def _real_time_iteration(self, k_max: int) -> SolverStatus:
        state = self._state
        if state.terminal:
            return state.status
        if state.k >= k_max:
            state.status = SolverStatus.MAX_ITER_REACHED
            return state.status
        return self._real_time_step(state)

    def _real_time_step(self, state) -> SolverStatus:
        if self.algorithm.step(state, full_step=True) == SolverStatus.ITERATING:
            state.status = SolverStatus.TIMED_OUT
        return state.status

    def solve(
        self, max_iterations: Optional[int] = None, time_limit: Optional[float] = None
    ) -> OptimizationResults:
        """Run the SQP iteration until a terminal status.

        Args:
            max_iterations (int, optional): Overrides ``settings.sqp.max_iterations``.
                Iterations of earlier solve() calls count towards the budget.
            time_limit (float, optional): Overrides ``settings.sqp.time_limit``.

        Returns:
            OptimizationResults: The last accepted iterate and its diagnostics.
        """
        if self._state is None:
            raise ValueError("Problem has not been initialized. Call initialize() before solve()")

        sqp = self.settings.sqp
        k_max = max_iterations if max_iterations is not None else sqp.max_iterations
        time_limit = time_limit if time_limit is not None else sqp.time_limit

        state = self._state
        if state.status in RESUMABLE:
            state.status = SolverStatus.ITERATING

        pr = profiling_start(self.settings.dev.profiling)

        t_0_solve = time.time()
        # Print top header for solver results
        if self.printing:
            io.header()

        if sqp.mode == "real_time_single_iteration":
            status = self._real_time_iteration(k_max)
        else:
            status = self._iterate(k_max, time_limit, t_0_solve)

        self.timing_solve = time.time() - t_0_solve

        # Print bottom footer for solver results as well as total computation time
        if self.printing:
            self.print_queue.join()
            io.footer(str(status), self.timing_solve)

        profiling_end(pr, "solve")

        result = format_result(
            self.problem, self.grid, self.layout, state, status, self.assembler.z_lower, self.assembler.z_upper
        )
        result.timing["initialize"] = self.timing_init
        result.timing["solve"] = self.timing_solve
        return result

    def post_process(self, result: OptimizationResults) -> OptimizationResults:
        """Re-simulate the solution on a dense grid (``t_full``, ``x_full``, ``u_full``)."""
        if self.integrator is None:
            raise ValueError("Problem has not been initialized. Call initialize() first")

        pr = profiling_start(self.settings.dev.profiling)

        self.settings.prp.__post_init__()
        t_0_post = time.time()
        result = propagate_trajectory_results(self.settings, result, self.integrator, self.grid, self.layout)
        self.timing_post = time.time() - t_0_post
        result.timing["post_process"] = self.timing_post

        # Print results summary
        if self.printing:
            io.print_results_summary(result, self.timing_post, self.timing_init, self.timing_solve)

        profiling_end(pr, "postprocess")
        return result


def solve(model: ProblemModel, config: Optional[Config] = None) -> OptimizationResults:
    """Validate, initialize and solve ``model`` in one call."""
    problem = Problem(model, config)
    problem.initialize()
    return problem.solve()
