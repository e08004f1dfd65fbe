"""Sequential quadratic programming on the multiple-shooting NLP.

Each iteration integrates every interval at the current iterate (done by the
previous iteration's acceptance test), assembles and solves the structured QP,
and globalizes the step with a backtracking line search on the L1 merit
function. Multipliers are moved towards the QP multipliers by the accepted
step length and the KKT residual decides convergence.
"""

import time
import warnings
from typing import Callable, Optional

import numpy as np

from openmsqp.algorithms import merit as merit_fn
from openmsqp.algorithms.base import Algorithm, AlgorithmState, Multipliers
from openmsqp.algorithms.kkt import kkt_residual
from openmsqp.config import Config
from openmsqp.errors import IntegrationError, QPInfeasible
from openmsqp.nlp.assembler import NLPAssembler
from openmsqp.nlp.evaluation import Evaluation, NLPEvaluator
from openmsqp.nlp.hessian import HessianApproximation
from openmsqp.results import IterationRecord, SolverStatus
from openmsqp.solvers.base import QPSolution, QPSolver


class SQPAlgorithm(Algorithm):
    """Line-search SQP with an L1 merit function.

    Example:
        Driving the iteration by hand::

            algorithm = SQPAlgorithm()
            algorithm.initialize(evaluator, hessian, qp_solver, assembler, settings, emitter)
            state = algorithm.start(z0)
            while not state.terminal:
                algorithm.step(state)
    """

    def __init__(self):
        """Initialize with unset infrastructure.

        Call initialize() before start() or step().
        """
        self._evaluator: Optional[NLPEvaluator] = None
        self._hessian: Optional[HessianApproximation] = None
        self._qp_solver: Optional[QPSolver] = None
        self._assembler: Optional[NLPAssembler] = None
        self._settings: Optional[Config] = None
        self._emitter: Callable = lambda data: None

    def initialize(
        self,
        evaluator: NLPEvaluator,
        hessian: HessianApproximation,
        qp_solver: QPSolver,
        assembler: NLPAssembler,
        settings: Config,
        emitter: Callable = None,
    ) -> None:
        self._evaluator = evaluator
        self._hessian = hessian
        self._qp_solver = qp_solver
        self._assembler = assembler
        self._settings = settings
        if emitter is not None:
            self._emitter = emitter

    @property
    def layout(self):
        return self._evaluator.layout

    @property
    def z_lower(self) -> np.ndarray:
        return self._assembler.z_lower

    @property
    def z_upper(self) -> np.ndarray:
        return self._assembler.z_upper

    def _check_initialized(self):
        if self._evaluator is None:
            raise RuntimeError(
                "SQPAlgorithm used before initialize(). "
                "Call initialize() first to set up the evaluator and solvers."
            )

    def _kkt(self, evaluation: Evaluation, multipliers: Multipliers) -> float:
        value, _ = kkt_residual(evaluation, self.layout, multipliers, self.z_lower, self.z_upper)
        return value

    def _merit(self, evaluation: Evaluation, penalty: float) -> float:
        return merit_fn.merit_value(evaluation, penalty, self.z_lower, self.z_upper)

    def _evaluate(self, z, derivatives: bool):
        """Evaluate ``z``; ``(None, elapsed)`` when integration fails."""
        t0 = time.time()
        try:
            evaluation = self._evaluator.evaluate(z, derivatives=derivatives)
        except IntegrationError:
            evaluation = None
        return evaluation, time.time() - t0

    def _status(self, kkt: float) -> SolverStatus:
        if not np.isfinite(kkt) or kkt > self._settings.sqp.divergence_threshold:
            return SolverStatus.DIVERGED
        if kkt <= self._settings.sqp.kkt_tol:
            return SolverStatus.CONVERGED
        return SolverStatus.ITERATING

    def start(self, z0: np.ndarray) -> AlgorithmState:
        self._check_initialized()
        self._hessian.reset()
        z0 = np.asarray(z0, dtype=float).copy()
        state = AlgorithmState(
            k=0,
            z=z0,
            multipliers=Multipliers.zeros(self.layout, self._evaluator.row_counts),
            penalty=self._settings.sqp.merit_penalty,
        )
        evaluation, _ = self._evaluate(z0, derivatives=True)
        if evaluation is None:
            warnings.warn("Integration failed at the initial guess")
            state.status = SolverStatus.DIVERGED
            return state
        state.evaluation = evaluation
        state.merit = self._merit(evaluation, state.penalty)
        state.kkt = self._kkt(evaluation, state.multipliers)
        state.status = self._status(state.kkt)
        return state

    def _solve_qp(self, state: AlgorithmState):
        """Solve the QP at the current iterate, relaxing the reported row once."""
        blocks = self._hessian.blocks(state.evaluation, state.multipliers)
        qp = self._assembler.build(state.evaluation, blocks)
        try:
            return self._qp_solver.solve(qp)
        except QPInfeasible as e:
            warnings.warn(f"QP subproblem infeasible ({e}); retrying with row {e.row} relaxed")
            try:
                return self._qp_solver.solve(qp.relaxed(e.row))
            except QPInfeasible as e2:
                warnings.warn(f"QP subproblem still infeasible after relaxation ({e2})")
                return None

    def step(self, state: AlgorithmState, full_step: bool = False) -> SolverStatus:
        """Execute one SQP iteration.

        Args:
            state: Mutable solver state (modified in place)
            full_step: Take ``alpha = 1`` without the line search, as in the
                real-time iteration

        Returns:
            The status after the iteration. ``state`` only moves to a new
            iterate when a step was accepted.
        """
        self._check_initialized()
        if state.evaluation is None:
            state.status = SolverStatus.DIVERGED
            return state.status

        sqp = self._settings.sqp
        state.status = SolverStatus.ITERATING

        t0 = time.time()
        solution: Optional[QPSolution] = self._solve_qp(state)
        qp_time = time.time() - t0
        if solution is None:
            state.status = SolverStatus.DIVERGED
            self._record(state, 0.0, 0, 0.0, qp_time)
            return state.status

        qp_multipliers = Multipliers(solution.continuity, solution.rows, solution.bounds)
        state.penalty = merit_fn.update_penalty(state.penalty, qp_multipliers.max_abs())
        phi = self._merit(state.evaluation, state.penalty)
        derivative = merit_fn.directional_derivative(
            state.evaluation, solution.dz, state.penalty, self.z_lower, self.z_upper
        )
        noise = 10.0 * self._settings.dis.rtol * (1.0 + abs(phi))

        # Full step, evaluated with derivatives for the next iteration
        alpha = 1.0
        evaluation, integration_time = self._evaluate(state.z + solution.dz, derivatives=True)
        accepted = None
        if evaluation is not None:
            multipliers = qp_multipliers
            if full_step:
                accepted = (evaluation, multipliers)
            else:
                phi_trial = self._merit(evaluation, state.penalty)
                kkt_trial = self._kkt(evaluation, multipliers)
                if merit_fn.armijo_accepts(phi_trial, phi, alpha, derivative, sqp.armijo, noise) or (
                    np.isfinite(kkt_trial) and kkt_trial <= sqp.kkt_acceptance * state.kkt
                ):
                    accepted = (evaluation, multipliers)
        elif full_step:
            warnings.warn("Integration failed at the full step")

        # Backtracking on the merit function
        while accepted is None and not full_step:
            alpha *= sqp.backtrack
            if alpha < sqp.alpha_min:
                break
            trial, elapsed = self._evaluate(state.z + alpha * solution.dz, derivatives=False)
            integration_time += elapsed
            if trial is None:
                continue
            phi_trial = self._merit(trial, state.penalty)
            if merit_fn.armijo_accepts(phi_trial, phi, alpha, derivative, sqp.armijo, noise):
                evaluation, elapsed = self._evaluate(trial.z, derivatives=True)
                integration_time += elapsed
                if evaluation is None:
                    continue
                accepted = (evaluation, state.multipliers.blend(qp_multipliers, alpha))

        if accepted is None:
            state.status = SolverStatus.DIVERGED
            self._record(state, 0.0, solution.iterations, integration_time, qp_time)
            return state.status

        evaluation, multipliers = accepted
        self._hessian.update(state.evaluation, evaluation, multipliers)
        state.z = evaluation.z
        state.evaluation = evaluation
        state.multipliers = multipliers
        state.alpha = alpha
        state.merit = self._merit(evaluation, state.penalty)
        state.kkt = self._kkt(evaluation, multipliers)
        state.status = self._status(state.kkt)
        self._record(state, alpha, solution.iterations, integration_time, qp_time)
        return state.status

    def _record(self, state: AlgorithmState, alpha, qp_iterations, integration_time, qp_time):
        state.k += 1
        evaluation = state.evaluation
        record = IterationRecord(
            iteration=state.k,
            kkt_residual=state.kkt,
            objective=evaluation.objective,
            infeasibility=evaluation.infeasibility(self.z_lower, self.z_upper),
            step_length=alpha,
            merit=state.merit,
            penalty=state.penalty,
            qp_iterations=int(qp_iterations),
            integration_time=integration_time,
            qp_time=qp_time,
            status=state.status,
        )
        state.records.append(record)
        self._emitter(
            {
                "iter": record.iteration,
                "kkt": record.kkt_residual,
                "objective": record.objective,
                "infeasibility": record.infeasibility,
                "alpha": record.step_length,
                "merit": record.merit,
                "qp_iterations": record.qp_iterations,
                "integration_time": integration_time * 1000.0,
                "qp_time": qp_time * 1000.0,
                "status": str(record.status),
            }
        )
