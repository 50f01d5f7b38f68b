"""Run a simulation over the report steps of a reporting schedule."""

import logging
import typing

import attrs

from pacer.config import Config
from pacer.errors import SimulationError, StepSizeError, ValidationError
from pacer.output import NullOutput, OutputSink
from pacer.protocols import (
    AquiferCoordinator,
    NullCoordinator,
    SolverFactory,
    WellCoordinator,
)
from pacer.reports import FailureReport, SimulatorReport
from pacer.restart import RestartSource, try_load_restart
from pacer.schedule import ReportingSchedule, ScheduleEvent
from pacer.stepping import AdaptiveTimeStepping, IntervalResult, step_without_substeps
from pacer.timing import SECONDS_PER_DAY, SimulationTimer, Stopwatch

__all__ = ["Simulator", "run"]

logger = logging.getLogger(__name__)


BALANCE_BANNER = """
                              **************************************************************************
  Balance  at{days:>10.2f}  Days *{title:>30}                                          *
  Report {report_step:>4}    {date}  *                                             PACER              *
                              **************************************************************************"""


class Simulator:
    """
    Drives a run over the report steps of a schedule.

    Every process of a distributed run executes the same control flow;
    `is_coordinator` only decides which process logs.
    """

    def __init__(
        self,
        config: Config,
        schedule: ReportingSchedule,
        solver_factory: SolverFactory,
        initial_state: typing.Any,
        well_coordinator: typing.Optional[WellCoordinator] = None,
        aquifer_coordinator: typing.Optional[AquiferCoordinator] = None,
        output: typing.Optional[OutputSink] = None,
        restart_source: typing.Optional[RestartSource] = None,
        is_coordinator: bool = True,
        title: str = "",
    ) -> None:
        """
        :param config: Simulation run configuration and parameters.
        :param schedule: Report steps, events and tuning records.
        :param solver_factory: Builds the nonlinear solver for each report step.
        :param initial_state: Physical state at simulation time zero.
        :param well_coordinator: Well model, advanced once per report step.
        :param aquifer_coordinator: Aquifer model, advanced once per report step.
        :param output: Where snapshots are written.
        :param restart_source: Where restart data is loaded from, if `config.restart` is set.
        :param is_coordinator: Whether this process emits terminal output.
        :param title: Case title used in the balance banner.
        """
        self.config = config
        self.schedule = schedule
        self.solver_factory = solver_factory
        self.state = initial_state
        self.well_coordinator = well_coordinator or NullCoordinator()
        self.aquifer_coordinator = aquifer_coordinator or NullCoordinator()
        self.output = output or NullOutput()
        self.restart_source = restart_source
        self.terminal_output = config.terminal_output and is_coordinator
        self.title = title
        self.controller: typing.Optional[AdaptiveTimeStepping] = None
        self._failure_report = FailureReport()

    @property
    def failure_report(self) -> FailureReport:
        """Rejected sub-steps of the whole run."""
        return self._failure_report

    def _build_controller(self, timer: SimulationTimer) -> typing.Optional[AdaptiveTimeStepping]:
        timestep_config = self.config.timestep
        if not timestep_config.adaptive:
            return None
        tuning = self.schedule.get_tuning(timer.current_step) if self.config.use_tuning else None
        if tuning is not None:
            return AdaptiveTimeStepping.from_tuning(
                tuning, timestep_config, terminal_output=self.terminal_output
            )
        return AdaptiveTimeStepping.from_config(
            timestep_config, terminal_output=self.terminal_output
        )

    def _log_report_step(self, timer: SimulationTimer) -> None:
        date = timer.current_datetime
        message = (
            f"Report step {timer.current_step:2d}/{timer.num_steps} at day "
            f"{timer.elapsed_time / SECONDS_PER_DAY:.4f}/{timer.total_time / SECONDS_PER_DAY:.4f}"
        )
        if date is not None:
            message += f", date = {date:%d-%b-%Y}"
        logger.info(message)

    def _log_balance(self, timer: SimulationTimer) -> None:
        date = timer.current_datetime
        logger.info(
            BALANCE_BANNER.format(
                days=timer.elapsed_time / SECONDS_PER_DAY,
                title=self.title[:30],
                report_step=timer.current_step,
                date=f"{date:%d %b %Y}" if date is not None else "",
            )
        )

    def _write_output(
        self,
        timer: SimulationTimer,
        total_stopwatch: Stopwatch,
        next_step_size: typing.Optional[float],
    ) -> float:
        if not self.config.output:
            return 0.0
        stopwatch = Stopwatch().start()
        self.output.write_snapshot(
            state=self.state,
            elapsed_time=timer.elapsed_time,
            is_substep=False,
            wall_clock_time=total_stopwatch.secs_since_start(),
            next_step_size=next_step_size,
            report_step=timer.current_step,
            well_data=self.well_coordinator.report(),
        )
        return stopwatch.stop()

    def _active_events(self, report_step: int) -> typing.FrozenSet[ScheduleEvent]:
        events = self.schedule.events_at(report_step)
        if not self.config.use_tuning:
            events = events - {ScheduleEvent.TUNING_CHANGE}
        return events

    def run(self, timer: typing.Optional[SimulationTimer] = None) -> SimulatorReport:
        """
        Run successive report steps until `timer.done()`.

        :param timer: Timer over `schedule`. A resumed run starts at the restart
            report step when no timer is given.
        :return: Report with the timing and convergence data of the run.
        :raises StepSizeError: If a report step cannot be solved without cutting
            sub-steps below the minimum size.
        :raises SimulationError: If anything else fails during a report step.
        """
        self._failure_report = FailureReport()
        restart_hint = try_load_restart(
            self.restart_source, self.config.restart, terminal_output=self.terminal_output
        )
        if restart_hint is not None:
            if restart_hint.state is not None:
                self.state = restart_hint.state
            self.well_coordinator.init_from_restart(restart_hint.payload)
            if timer is None:
                timer = SimulationTimer(self.schedule, current_step=restart_hint.report_step)
        if timer is None:
            timer = SimulationTimer(self.schedule)
        elif timer.schedule != self.schedule:
            raise ValidationError("The timer must traverse the simulator's schedule")

        solver_stopwatch = Stopwatch()
        total_stopwatch = Stopwatch().start()

        self.controller = self._build_controller(timer)
        if self.controller is not None and restart_hint is not None:
            if restart_hint.suggested_step_size is not None:
                self.controller.set_suggested_next_step(restart_hint.suggested_step_size)

        if self.terminal_output:
            logger.info("Starting simulation run...")
            logger.debug(f"Total simulation time: {timer.total_time} seconds")
            logger.debug(f"Report steps: {timer.num_steps}")
            logger.debug(f"Adaptive sub-stepping: {self.controller is not None}")
            logger.debug(f"Output interval: every {self.config.output_interval} report steps")

        report = SimulatorReport()
        while not timer.done():
            if self.terminal_output:
                logger.debug(timer.report())

            report_step = timer.current_step
            solver_stopwatch.start()
            self.well_coordinator.begin_report_step(report_step)
            self.aquifer_coordinator.begin_report_step(report_step)
            solver = self.solver_factory(self.well_coordinator, self.aquifer_coordinator)

            if timer.initial_step:
                # Initial state, before anything is simulated
                report += SimulatorReport(
                    output_write_time=self._write_output(timer, total_stopwatch, None)
                )

            if self.terminal_output:
                self._log_report_step(timer)

            events = self._active_events(report_step)
            try:
                solver.begin_report_step()
                if self.controller is not None:
                    if ScheduleEvent.TUNING_CHANGE in events:
                        tuning = self.schedule.get_tuning(report_step)
                        if tuning is not None:
                            self.controller.update_tuning(tuning)
                    result: IntervalResult[typing.Any] = self.controller.step(
                        timer, solver, self.state, events
                    )
                else:
                    result = step_without_substeps(
                        timer,
                        solver,
                        self.state,
                        events,
                        terminal_output=self.terminal_output,
                    )
                    if self.terminal_output:
                        logger.info(result.report.summary())
                solver.end_report_step()
                self.well_coordinator.end_report_step()
                self.aquifer_coordinator.end_report_step()
            except StepSizeError as exc:
                if self.controller is not None:
                    self._failure_report += self.controller.failure_report
                if self.terminal_output:
                    logger.error(str(exc))
                raise
            except Exception as exc:
                raise SimulationError(
                    f"Simulation failed at report step {report_step} due to error: {exc}"
                ) from exc

            self.state = result.state
            report += result.report
            self._failure_report += result.failure_report

            step_solver_time = solver_stopwatch.stop()
            report += SimulatorReport(solver_time=step_solver_time)

            timer.advance()
            if self.terminal_output:
                self._log_balance(timer)

            next_step_size = (
                self.controller.suggested_next_step if self.controller is not None else None
            )
            report += SimulatorReport(
                output_write_time=self._write_output(timer, total_stopwatch, next_step_size)
            )
            if self.terminal_output:
                logger.debug(
                    f"Report step took {step_solver_time:.4f} seconds; "
                    f"total solver time {report.solver_time:.4f} seconds."
                )

        report = attrs.evolve(
            report, total_time=total_stopwatch.stop(), converged=True
        )
        if self.terminal_output:
            logger.info(
                f"Simulation completed successfully after {report.report_steps} report steps"
            )
        return report


def run(
    config: Config,
    schedule: ReportingSchedule,
    solver_factory: SolverFactory,
    initial_state: typing.Any,
    **kwargs: typing.Any,
) -> SimulatorReport:
    """
    Convenience wrapper building a `Simulator` and running it to completion.

    :param kwargs: Further `Simulator` arguments (coordinators, output, restart source, ...).
    """
    simulator = Simulator(
        config=config,
        schedule=schedule,
        solver_factory=solver_factory,
        initial_state=initial_state,
        **kwargs,
    )
    return simulator.run()
