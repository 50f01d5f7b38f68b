"""
Adaptive sub-stepping of report steps.

A report step is split into sub-steps that the nonlinear solver can
converge. Failed sub-steps are cut and retried; converged ones let the
suggested step size grow for the next attempt.
"""

import logging
import typing

import attrs

from pacer.config import TimeStepConfig
from pacer.errors import SolverError, StepSizeError, ValidationError
from pacer.protocols import NonlinearSolver, StateT, SubStepRequest, SubStepResult
from pacer.reports import FailureReport, SimulatorReport, StepReport
from pacer.schedule import WELL_EVENTS, ScheduleEvent, Tuning
from pacer.timing import SECONDS_PER_DAY, SimulationTimer, Stopwatch

__all__ = [
    "ControllerState",
    "SubStepPlan",
    "IntervalResult",
    "AdaptiveTimeStepping",
    "step_without_substeps",
]

logger = logging.getLogger(__name__)

_RELATIVE_TIME_TOLERANCE = 1e-10
"""Remainders of a report step below this fraction of its length are merged into the last sub-step."""


@attrs.frozen(slots=True)
class ControllerState:
    """
    Step-size decision state of the controller.

    Updates return new states, so two controllers fed the same outcomes
    follow identical trajectories.
    """

    suggested_step_size: float
    """Size (in seconds) of the next sub-step to attempt."""
    min_step_size: float = attrs.field(validator=attrs.validators.gt(0))
    max_step_size: float = attrs.field(validator=attrs.validators.gt(0))
    growth_factor: float = attrs.field(default=2.0, validator=attrs.validators.ge(1))
    shrink_factor: float = attrs.field(
        default=0.33,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.lt(1)),
    )
    max_step_cuts: int = attrs.field(default=10, validator=attrs.validators.ge(1))
    """Maximum number of consecutive cuts within a report step."""
    max_step_after_event: typing.Optional[float] = None
    """Cap on the first sub-step of a report step with a well event."""

    def __attrs_post_init__(self) -> None:
        if self.min_step_size > self.max_step_size:
            raise ValidationError(
                f"Minimum step size {self.min_step_size} exceeds maximum step size {self.max_step_size}"
            )
        if not self.min_step_size <= self.suggested_step_size <= self.max_step_size:
            raise ValidationError(
                f"Suggested step size {self.suggested_step_size} must lie within "
                f"[{self.min_step_size}, {self.max_step_size}]"
            )

    @classmethod
    def from_config(cls, config: TimeStepConfig) -> "ControllerState":
        return cls(
            suggested_step_size=config.initial_step_size,
            min_step_size=config.min_step_size,
            max_step_size=config.max_step_size,
            growth_factor=config.growth_factor,
            shrink_factor=config.shrink_factor,
            max_step_cuts=config.max_step_cuts,
            max_step_after_event=config.max_step_after_event,
        )

    def clamp(self, step_size: float) -> float:
        return min(max(step_size, self.min_step_size), self.max_step_size)

    def with_suggested(self, step_size: float) -> "ControllerState":
        return attrs.evolve(self, suggested_step_size=self.clamp(step_size))

    def after_success(self) -> "ControllerState":
        """State after a converged sub-step: grow, bounded by the maximum."""
        return attrs.evolve(
            self,
            suggested_step_size=min(
                self.suggested_step_size * self.growth_factor, self.max_step_size
            ),
        )

    def after_failure(self, attempted_step_size: float) -> "ControllerState":
        """State after a failed sub-step: shrink, bounded by the minimum."""
        return attrs.evolve(
            self,
            suggested_step_size=max(
                attempted_step_size * self.shrink_factor, self.min_step_size
            ),
        )

    def with_tuning(self, tuning: Tuning) -> "ControllerState":
        """State with bounds and factors taken from a schedule tuning record."""
        suggested = (
            tuning.initial_step_size
            if tuning.initial_step_size is not None
            else self.suggested_step_size
        )
        return ControllerState(
            suggested_step_size=min(
                max(suggested, tuning.min_step_size), tuning.max_step_size
            ),
            min_step_size=tuning.min_step_size,
            max_step_size=tuning.max_step_size,
            growth_factor=tuning.growth_factor,
            shrink_factor=tuning.shrink_factor,
            max_step_cuts=self.max_step_cuts,
            max_step_after_event=(
                tuning.max_step_after_event
                if tuning.max_step_after_event is not None
                else self.max_step_after_event
            ),
        )


@attrs.frozen(slots=True)
class SubStepPlan:
    """A sub-step the controller is about to attempt."""

    report_step: int
    index: int
    """Attempt index within the report step, retries included."""
    step_size: float
    """Sub-step size in seconds. Never exceeds the remaining report-step time."""
    truncated: bool = False
    """Whether the size was cut down to end exactly on the report-step boundary."""


@attrs.frozen(slots=True)
class IntervalResult(typing.Generic[StateT]):
    """Outcome of solving one report step."""

    report: SimulatorReport
    """Telemetry of the accepted sub-steps."""
    failure_report: FailureReport
    """Telemetry of the rejected sub-steps."""
    state: StateT
    """Physical state at the end of the report step."""
    accepted_step_sizes: typing.Tuple[float, ...] = ()
    """
    Sizes of the accepted sub-steps, in order.

    The last one is the time left to the report-step boundary, so the report
    step always ends exactly on the boundary. Summing the sizes may still
    differ from the report-step length by floating-point rounding.
    """


def _attempt(
    solver: NonlinearSolver[StateT],
    state: StateT,
    plan: SubStepPlan,
    request: SubStepRequest,
) -> typing.Tuple[SubStepResult[StateT], float]:
    stopwatch = Stopwatch().start()
    try:
        result = solver.attempt_substep(state, plan.step_size, request)
    except SolverError as exc:
        result = SubStepResult(success=False, message=str(exc))
    return result, stopwatch.stop()


class AdaptiveTimeStepping:
    """
    Splits report steps into sub-steps the nonlinear solver can converge.

    The controller runs identically on every process. Only its logging is
    restricted by `terminal_output`.
    """

    def __init__(self, state: ControllerState, terminal_output: bool = True) -> None:
        self.state = state
        self.terminal_output = terminal_output
        self._failure_report = FailureReport()

    @classmethod
    def from_config(
        cls, config: TimeStepConfig, terminal_output: bool = True
    ) -> "AdaptiveTimeStepping":
        return cls(ControllerState.from_config(config), terminal_output=terminal_output)

    @classmethod
    def from_tuning(
        cls, tuning: Tuning, config: TimeStepConfig, terminal_output: bool = True
    ) -> "AdaptiveTimeStepping":
        state = ControllerState.from_config(config).with_tuning(tuning)
        return cls(state, terminal_output=terminal_output)

    @property
    def suggested_next_step(self) -> float:
        """Size (in seconds) of the next sub-step to attempt."""
        return self.state.suggested_step_size

    def set_suggested_next_step(self, step_size: float) -> None:
        """Seed the suggested step size, e.g. from restart data."""
        if not step_size > 0.0:
            raise ValidationError(f"Suggested step size must be positive, got {step_size}")
        self.state = self.state.with_suggested(step_size)
        if self.state.suggested_step_size != step_size and self.terminal_output:
            logger.warning(
                f"Suggested step size {step_size} is outside [{self.state.min_step_size}, "
                f"{self.state.max_step_size}], using {self.state.suggested_step_size} instead"
            )

    def update_tuning(self, tuning: Tuning) -> None:
        """Reconfigure bounds and factors from a schedule tuning record."""
        self.state = self.state.with_tuning(tuning)
        if self.terminal_output:
            logger.debug(f"Step controller retuned: {self.state}")

    @property
    def failure_report(self) -> FailureReport:
        """Rejected sub-steps of the most recent report step."""
        return self._failure_report

    def plan(
        self,
        report_step: int,
        index: int,
        remaining: float,
        interval_length: float,
        after_event: bool = False,
    ) -> SubStepPlan:
        """Plan the next sub-step of a report step with `remaining` seconds left."""
        step_size = self.state.suggested_step_size
        if after_event and self.state.max_step_after_event is not None:
            step_size = min(step_size, self.state.max_step_after_event)

        if remaining - step_size <= _RELATIVE_TIME_TOLERANCE * interval_length:
            return SubStepPlan(
                report_step=report_step,
                index=index,
                step_size=remaining,
                truncated=step_size != remaining,
            )
        return SubStepPlan(report_step=report_step, index=index, step_size=step_size)

    def step(
        self,
        timer: SimulationTimer,
        solver: NonlinearSolver[StateT],
        state: StateT,
        events: typing.AbstractSet[ScheduleEvent] = frozenset(),
    ) -> IntervalResult[StateT]:
        """
        Solve the current report step of `timer`, sub-stepping as needed.

        :param timer: Timer positioned at the report step to solve. It is not advanced.
        :param solver: Nonlinear solver for the report step.
        :param state: Physical state at the start of the report step.
        :param events: Schedule events active at the report step.
        :return: Reports of the accepted and rejected sub-steps, and the final state.
        :raises StepSizeError: If a failed sub-step cannot be cut without going
            below the minimum step size, or too many consecutive cuts are needed.
        """
        report_step = timer.current_step
        interval_length = timer.current_step_length
        events = frozenset(events)
        well_event = not events.isdisjoint(WELL_EVENTS)

        report = SimulatorReport()
        failure_report = FailureReport()
        accepted: typing.List[float] = []
        accepted_time = 0.0
        attempt = 0
        cuts = 0
        total_cuts = 0

        while True:
            remaining = interval_length - accepted_time
            first_substep = not accepted
            plan = self.plan(
                report_step=report_step,
                index=attempt,
                remaining=remaining,
                interval_length=interval_length,
                after_event=well_event and first_substep,
            )
            request = SubStepRequest(
                report_step=report_step,
                substep=attempt,
                events=events,
                validate_well_constraints=well_event and first_substep,
            )
            if self.terminal_output:
                logger.debug(
                    f"Report step {report_step}, sub-step {attempt}: attempting "
                    f"{plan.step_size / SECONDS_PER_DAY:.6f} days "
                    f"({remaining / SECONDS_PER_DAY:.6f} days remaining)"
                )

            result, solve_time = _attempt(solver, state, plan, request)
            attempt += 1
            step_report = StepReport(
                step_size=plan.step_size,
                solve_time=solve_time,
                newton_iterations=result.newton_iterations,
                linear_iterations=result.linear_iterations,
                converged=result.success,
                cuts=cuts,
            )

            if result.success:
                state = typing.cast(StateT, result.state)
                report += step_report
                accepted.append(plan.step_size)
                cuts = 0
                if plan.step_size == remaining:
                    # Land exactly on the report-step boundary
                    accepted_time = interval_length
                else:
                    accepted_time += plan.step_size
                self.state = self.state.after_success()
                if self.terminal_output:
                    logger.info(
                        f"Sub-step {len(accepted)} of report step {report_step} converged: "
                        f"dt = {plan.step_size / SECONDS_PER_DAY:.6f} days, "
                        f"{result.newton_iterations} Newton / {result.linear_iterations} linear iterations. "
                        f"Next suggested dt = {self.state.suggested_step_size / SECONDS_PER_DAY:.6f} days"
                    )
                if accepted_time >= interval_length:
                    break
                continue

            failure_report += step_report
            cuts += 1
            if self.terminal_output:
                logger.warning(
                    f"Sub-step of {plan.step_size / SECONDS_PER_DAY:.6f} days failed at report step "
                    f"{report_step}. {result.message or ''}".rstrip()
                )
            shrunk_step_size = plan.step_size * self.state.shrink_factor
            if (
                shrunk_step_size < self.state.min_step_size
                or cuts >= self.state.max_step_cuts
            ):
                self._failure_report = failure_report
                reason = (
                    f"and cutting it to {shrunk_step_size} seconds would go below the "
                    f"minimum step size {self.state.min_step_size}"
                    if shrunk_step_size < self.state.min_step_size
                    else f"after {cuts} consecutive step cuts"
                )
                raise StepSizeError(
                    f"Report step {report_step} could not be solved: sub-step of "
                    f"{plan.step_size} seconds failed {reason}. {result.message or ''}".rstrip(),
                    report_step=report_step,
                    step_size=plan.step_size,
                )

            total_cuts += 1
            self.state = self.state.after_failure(plan.step_size)
            if self.terminal_output:
                logger.info(
                    f"Retrying report step {report_step} with dt = "
                    f"{self.state.suggested_step_size / SECONDS_PER_DAY:.6f} days"
                )

        report += SimulatorReport(report_steps=1, step_cuts=total_cuts)
        self._failure_report = failure_report
        return IntervalResult(
            report=report,
            failure_report=failure_report,
            state=state,
            accepted_step_sizes=tuple(accepted),
        )


def step_without_substeps(
    timer: SimulationTimer,
    solver: NonlinearSolver[StateT],
    state: StateT,
    events: typing.AbstractSet[ScheduleEvent] = frozenset(),
    terminal_output: bool = True,
) -> IntervalResult[StateT]:
    """
    Solve the current report step of `timer` as a single sub-step.

    :raises StepSizeError: If the solver does not converge. There is no retry.
    """
    report_step = timer.current_step
    interval_length = timer.current_step_length
    events = frozenset(events)
    plan = SubStepPlan(report_step=report_step, index=0, step_size=interval_length)
    request = SubStepRequest(
        report_step=report_step,
        substep=0,
        events=events,
        validate_well_constraints=not events.isdisjoint(WELL_EVENTS),
    )
    result, solve_time = _attempt(solver, state, plan, request)
    step_report = StepReport(
        step_size=interval_length,
        solve_time=solve_time,
        newton_iterations=result.newton_iterations,
        linear_iterations=result.linear_iterations,
        converged=result.success,
    )
    if not result.success:
        raise StepSizeError(
            f"Report step {report_step} failed to converge without sub-stepping. "
            f"{result.message or ''}".rstrip(),
            report_step=report_step,
            step_size=interval_length,
        )

    report = SimulatorReport.from_step(step_report) + SimulatorReport(report_steps=1)
    if terminal_output:
        logger.info(
            f"Report step {report_step} converged in {result.newton_iterations} Newton / "
            f"{result.linear_iterations} linear iterations ({solve_time:.4f}s)"
        )
    return IntervalResult(
        report=report,
        failure_report=FailureReport(),
        state=typing.cast(StateT, result.state),
        accepted_step_sizes=(interval_length,),
    )
