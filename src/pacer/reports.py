"""Per-sub-step and aggregate timing/convergence telemetry."""

import typing

import attrs

from pacer.stores import StoreSerializable

__all__ = ["StepReport", "SimulatorReport", "FailureReport"]


@attrs.frozen(slots=True)
class StepReport(StoreSerializable):
    """Telemetry for a single sub-step attempt."""

    step_size: float
    """Sub-step size (in seconds) that was attempted."""
    solve_time: float = 0.0
    """Wall-clock time (in seconds) spent in the nonlinear solver."""
    newton_iterations: int = 0
    """Nonlinear iterations used by the attempt."""
    linear_iterations: int = 0
    """Linear iterations used by the attempt."""
    converged: bool = True
    """Whether the attempt converged."""
    cuts: int = 0
    """Number of step-size cuts consumed before this attempt."""


@attrs.frozen(slots=True)
class SimulatorReport(StoreSerializable):
    """
    Aggregate telemetry over many sub-step attempts.

    Reports merge with ``+``, which sums every numeric field and AND-s the
    `converged` flags, so merging is associative and commutative. A report
    holding only rejected attempts is used as a failure report.
    """

    simulated_time: float = 0.0
    """Simulation time (in seconds) covered by the aggregated attempts."""
    solve_time: float = 0.0
    """Wall-clock time spent in the nonlinear solver by the aggregated attempts."""
    solver_time: float = 0.0
    """Wall-clock time spent solving whole report steps, as measured by the driver."""
    output_write_time: float = 0.0
    """Wall-clock time spent writing output snapshots."""
    total_time: float = 0.0
    """Total wall-clock time of the run."""
    newton_iterations: int = 0
    linear_iterations: int = 0
    substeps: int = 0
    """Number of aggregated sub-step attempts."""
    step_cuts: int = 0
    """Number of step-size cuts (rejected attempts followed by a retry)."""
    report_steps: int = 0
    """Number of report steps covered."""
    converged: bool = True
    """Whether everything aggregated here converged."""

    @classmethod
    def from_step(cls, step: StepReport) -> "SimulatorReport":
        """Aggregate report holding a single sub-step attempt."""
        return cls(
            simulated_time=step.step_size if step.converged else 0.0,
            solve_time=step.solve_time,
            newton_iterations=step.newton_iterations,
            linear_iterations=step.linear_iterations,
            substeps=1,
            converged=step.converged,
        )

    def __add__(
        self, other: typing.Union["SimulatorReport", StepReport]
    ) -> "SimulatorReport":
        if isinstance(other, StepReport):
            other = SimulatorReport.from_step(other)
        if not isinstance(other, SimulatorReport):
            return NotImplemented
        return SimulatorReport(
            simulated_time=self.simulated_time + other.simulated_time,
            solve_time=self.solve_time + other.solve_time,
            solver_time=self.solver_time + other.solver_time,
            output_write_time=self.output_write_time + other.output_write_time,
            total_time=self.total_time + other.total_time,
            newton_iterations=self.newton_iterations + other.newton_iterations,
            linear_iterations=self.linear_iterations + other.linear_iterations,
            substeps=self.substeps + other.substeps,
            step_cuts=self.step_cuts + other.step_cuts,
            report_steps=self.report_steps + other.report_steps,
            converged=self.converged and other.converged,
        )

    def __radd__(self, other: typing.Any) -> "SimulatorReport":
        # Allows `sum(reports)`
        if other == 0:
            return self
        return self.__add__(other)

    def summary(self) -> str:
        """Multi-line, human-readable summary."""
        return "\n".join(
            [
                f"Total time (seconds):         {self.total_time:.4f}",
                f"Solver time (seconds):        {self.solver_time:.4f}",
                f"Nonlinear solve time (s):     {self.solve_time:.4f}",
                f"Output write time (seconds):  {self.output_write_time:.4f}",
                f"Report steps:                 {self.report_steps}",
                f"Sub-steps:                    {self.substeps}",
                f"Step cuts:                    {self.step_cuts}",
                f"Newton iterations:            {self.newton_iterations}",
                f"Linear iterations:            {self.linear_iterations}",
                f"Converged:                    {self.converged}",
            ]
        )


FailureReport = SimulatorReport
"""Aggregate of rejected sub-step attempts only (wasted work)."""
