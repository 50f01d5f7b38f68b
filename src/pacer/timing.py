from datetime import datetime, timedelta
import time
import typing

import attrs

from pacer.errors import TimingError, ValidationError

if typing.TYPE_CHECKING:
    from pacer.schedule import ReportingSchedule

__all__ = ["Time", "SimulationTimer", "Stopwatch", "SECONDS_PER_DAY"]

SECONDS_PER_DAY = 86400.0


def Time(
    milliseconds: float = 0,
    seconds: float = 0,
    minutes: float = 0,
    hours: float = 0,
    days: float = 0,
    weeks: float = 0,
) -> float:
    """
    Expresses time components as total seconds.

    :param milliseconds: Number of milliseconds.
    :param seconds: Number of seconds.
    :param minutes: Number of minutes.
    :param hours: Number of hours.
    :param days: Number of days.
    :param weeks: Number of weeks.
    :return: Total time in seconds.
    """
    delta = timedelta(
        weeks=weeks,
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        milliseconds=milliseconds,
    )
    return delta.total_seconds()


@attrs.define
class Stopwatch:
    """Wall-clock stopwatch, in seconds."""

    _started_at: typing.Optional[float] = attrs.field(init=False, default=None)
    _stopped_at: typing.Optional[float] = attrs.field(init=False, default=None)

    def start(self) -> "Stopwatch":
        self._started_at = time.perf_counter()
        self._stopped_at = None
        return self

    def stop(self) -> float:
        """Stops the stopwatch and returns the seconds since `start()`."""
        if self._started_at is None:
            raise TimingError("Stopwatch was stopped before it was started")
        self._stopped_at = time.perf_counter()
        return self._stopped_at - self._started_at

    def secs_since_start(self) -> float:
        """Seconds since `start()`, up to `stop()` if the stopwatch was stopped."""
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else time.perf_counter()
        return end - self._started_at


@attrs.define
class SimulationTimer:
    """
    Cursor over the report steps of a `ReportingSchedule`.

    The timer only moves in whole report steps. Sub-stepping within a
    report step is the business of the step controller.
    """

    schedule: "ReportingSchedule"
    """The reporting schedule being traversed."""
    current_step: int = attrs.field(default=0, validator=attrs.validators.ge(0))
    """Index of the report step currently being solved (0-indexed)."""
    elapsed_time: float = attrs.field(init=False, default=0.0)
    """Simulation time (in seconds) at the start of the current report step."""

    def __attrs_post_init__(self) -> None:
        if self.current_step > self.schedule.num_steps:
            raise ValidationError(
                f"Report step {self.current_step} is beyond the schedule's "
                f"{self.schedule.num_steps} report steps"
            )
        self.elapsed_time = self.schedule.boundaries[self.current_step]

    @property
    def num_steps(self) -> int:
        """Total number of report steps."""
        return self.schedule.num_steps

    @property
    def total_time(self) -> float:
        """Total simulation time in seconds."""
        return self.schedule.total_time

    @property
    def initial_step(self) -> bool:
        """Whether the timer is still at the first report step of the schedule."""
        return self.current_step == 0

    @property
    def current_step_length(self) -> float:
        """Length (in seconds) of the current report step."""
        if self.done():
            raise TimingError("No report step left, the simulation is done")
        return self.schedule.step_length(self.current_step)

    @property
    def time_remaining(self) -> float:
        """Calculates the remaining simulation time in seconds."""
        return max(self.total_time - self.elapsed_time, 0.0)

    @property
    def current_datetime(self) -> typing.Optional[datetime]:
        """Calendar date of the current elapsed time, if the schedule has a start date."""
        if self.schedule.start_date is None:
            return None
        return self.schedule.start_date + timedelta(seconds=self.elapsed_time)

    def done(self) -> bool:
        """
        Checks if the simulation has reached its end criteria.

        If True, simulation has reached it ends.
        """
        return self.current_step >= self.num_steps

    def advance(self) -> None:
        """Moves to the next report step boundary."""
        if self.done():
            raise TimingError("Cannot advance past the last report step")

        # Take the boundary from the schedule rather than summing lengths,
        # so every process lands on bit-identical times.
        self.current_step += 1
        self.elapsed_time = self.schedule.boundaries[self.current_step]

    def report(self) -> str:
        """One-line summary of the timer position."""
        days = self.elapsed_time / SECONDS_PER_DAY
        total_days = self.total_time / SECONDS_PER_DAY
        percent_complete = (
            (self.elapsed_time / self.total_time) * 100.0 if self.total_time else 100.0
        )
        return (
            f"Report step {self.current_step}/{self.num_steps} - "
            f"day {days:.4f}/{total_days:.4f} ({percent_complete:.2f}%)"
        )
