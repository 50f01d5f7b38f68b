"""Reference Newton-Raphson solver for models expressed as residual functions."""

import logging
import typing

import numpy as np
from scipy.sparse import csr_array
from scipy.sparse.linalg import bicgstab, spsolve

from pacer.config import Config
from pacer.errors import SolverError
from pacer.protocols import (
    AquiferCoordinator,
    Communicator,
    SerialCommunicator,
    SubStepRequest,
    SubStepResult,
    WellCoordinator,
)

__all__ = ["NonlinearModel", "NewtonSolver", "newton_solver_factory", "solve_linear_system"]

logger = logging.getLogger(__name__)


class NonlinearModel(typing.Protocol):
    """Discretized equations, ``R(x, x_old, dt) = 0``, on this process's partition."""

    def residual(
        self, state: np.ndarray, previous_state: np.ndarray, step_size: float
    ) -> np.ndarray: ...

    def jacobian(
        self, state: np.ndarray, previous_state: np.ndarray, step_size: float
    ) -> typing.Any:
        """Jacobian of the residual, dense or sparse."""
        ...

    def validate_well_constraints(self, state: np.ndarray, step_size: float) -> None:
        """Re-evaluate which well constraints are active before a sub-step."""
        ...


def solve_linear_system(
    jacobian: typing.Any,
    rhs: np.ndarray,
    max_iterations: int,
    rtol: float = 1e-8,
) -> typing.Tuple[np.ndarray, int]:
    """
    Solves J·x = b with BiCGSTAB, falling back to a direct solve.

    :param jacobian: Dense or sparse matrix J.
    :param rhs: Right-hand side vector b.
    :param max_iterations: Iteration limit for BiCGSTAB.
    :param rtol: Relative tolerance for BiCGSTAB.
    :return: A tuple of the solution and the number of linear iterations used.
    :raises SolverError: If neither solver produces a finite solution.
    """
    matrix = csr_array(jacobian)
    iterations = 0

    def _count(_: np.ndarray) -> None:
        nonlocal iterations
        iterations += 1

    b_norm = float(np.linalg.norm(rhs))
    solution, info = bicgstab(
        matrix,
        rhs,
        rtol=rtol,
        atol=max(1e-14, rtol * b_norm),
        maxiter=max_iterations,
        callback=_count,
    )
    if info == 0 and np.all(np.isfinite(solution)):
        return np.asarray(solution, dtype=float), iterations

    logger.debug(
        f"BiCGSTAB failed to converge within {max_iterations} iterations (info={info}). "
        "Falling back to direct solver."
    )
    try:
        solution = spsolve(matrix.tocsc(), rhs)
    except Exception as exc:
        raise SolverError(f"Direct solver failed: {exc}") from exc

    solution = np.atleast_1d(np.asarray(solution, dtype=float))
    if not np.all(np.isfinite(solution)):
        raise SolverError("Linear solve produced non-finite values")
    return solution, iterations


class NewtonSolver:
    """
    Newton-Raphson solver for a `NonlinearModel`.

    Convergence is judged on the global infinity norm of the residual, so
    every process takes the same decision.
    """

    def __init__(
        self,
        model: NonlinearModel,
        max_iterations: int = 30,
        tolerance: float = 1e-9,
        communicator: typing.Optional[Communicator] = None,
        linear_max_iterations: int = 200,
    ) -> None:
        self.model = model
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.communicator = communicator or SerialCommunicator()
        self.linear_max_iterations = linear_max_iterations

    def begin_report_step(self) -> None:
        logger.debug("Nonlinear solver starting report step")

    def end_report_step(self) -> None:
        logger.debug("Nonlinear solver finished report step")

    def _residual_norm(self, residual: np.ndarray) -> float:
        local = float(np.max(np.abs(residual))) if residual.size else 0.0
        if not np.isfinite(local):
            local = np.inf
        return self.communicator.max(local)

    def attempt_substep(
        self, state: np.ndarray, step_size: float, request: SubStepRequest
    ) -> SubStepResult[np.ndarray]:
        previous_state = np.asarray(state, dtype=float)
        if request.validate_well_constraints:
            self.model.validate_well_constraints(previous_state, step_size)

        x = previous_state.copy()
        newton_iterations = 0
        linear_iterations = 0
        residual = self.model.residual(x, previous_state, step_size)
        residual_norm = self._residual_norm(residual)
        while (
            residual_norm >= self.tolerance
            and np.isfinite(residual_norm)
            and newton_iterations < self.max_iterations
        ):
            jacobian = self.model.jacobian(x, previous_state, step_size)
            update = None
            try:
                update, iterations = solve_linear_system(
                    jacobian, -residual, max_iterations=self.linear_max_iterations
                )
                linear_iterations += iterations
            except SolverError as exc:
                logger.debug(f"Linear solver failed at Newton iteration {newton_iterations}: {exc}")

            if not self.communicator.all_converged(update is not None):
                return SubStepResult(
                    success=False,
                    newton_iterations=newton_iterations,
                    linear_iterations=linear_iterations,
                    message=f"Linear solver failure during Newton iteration {newton_iterations}",
                )

            x = x + update
            newton_iterations += 1
            residual = self.model.residual(x, previous_state, step_size)
            residual_norm = self._residual_norm(residual)
            logger.debug(
                f"Newton iteration {newton_iterations}: residual norm = {residual_norm:.4e}"
            )

        converged = bool(np.isfinite(residual_norm) and residual_norm < self.tolerance)
        if not converged:
            return SubStepResult(
                success=False,
                newton_iterations=newton_iterations,
                linear_iterations=linear_iterations,
                message=(
                    f"Newton solver did not converge in {newton_iterations} iterations. "
                    f"Final residual norm: {residual_norm:.4e}"
                ),
            )
        return SubStepResult(
            success=True,
            state=x,
            newton_iterations=newton_iterations,
            linear_iterations=linear_iterations,
        )


def newton_solver_factory(
    model_builder: typing.Callable[[WellCoordinator, AquiferCoordinator], NonlinearModel],
    config: Config,
    communicator: typing.Optional[Communicator] = None,
) -> typing.Callable[[WellCoordinator, AquiferCoordinator], NewtonSolver]:
    """
    Solver factory building a `NewtonSolver` with the configured iteration
    limit and tolerance.

    :param model_builder: Builds the model for a report step from the
        simulator's well and aquifer coordinators.
    :param config: Run configuration holding `nl_maxiter` and `nl_tolerance`.
    :param communicator: Collective operations across processes.
    """

    def _factory(
        well_coordinator: WellCoordinator, aquifer_coordinator: AquiferCoordinator
    ) -> NewtonSolver:
        return NewtonSolver(
            model=model_builder(well_coordinator, aquifer_coordinator),
            max_iterations=config.nl_maxiter,
            tolerance=config.nl_tolerance,
            communicator=communicator,
        )

    return _factory
