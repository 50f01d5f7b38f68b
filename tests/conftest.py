"""Shared fixtures and fake collaborators for the test suite."""

import typing

import attrs
import numpy as np
import pytest

from pacer import (
    Config,
    ReportingSchedule,
    SubStepRequest,
    SubStepResult,
    Time,
    TimeStepConfig,
)


DAY = Time(days=1)


@attrs.define
class Attempt:
    """A recorded call to `ScriptedSolver.attempt_substep`."""

    state: typing.Any
    step_size: float
    request: SubStepRequest


class ScriptedSolver:
    """
    Fake nonlinear solver.

    Sub-steps larger than `max_converging_step` fail. If `outcomes` is given,
    it is consumed one attempt at a time instead. The state is a float that
    is advanced by the step size.
    """

    def __init__(
        self,
        max_converging_step: float = float("inf"),
        outcomes: typing.Optional[typing.Iterable[bool]] = None,
        events_log: typing.Optional[typing.List[str]] = None,
    ) -> None:
        self.max_converging_step = max_converging_step
        self.outcomes = list(outcomes) if outcomes is not None else None
        self.attempts: typing.List[Attempt] = []
        self.events_log = events_log if events_log is not None else []

    def begin_report_step(self) -> None:
        self.events_log.append("solver.begin")

    def end_report_step(self) -> None:
        self.events_log.append("solver.end")

    def attempt_substep(
        self, state: float, step_size: float, request: SubStepRequest
    ) -> SubStepResult[float]:
        self.attempts.append(Attempt(state=state, step_size=step_size, request=request))
        if self.outcomes is not None:
            success = self.outcomes.pop(0)
        else:
            success = step_size <= self.max_converging_step
        if not success:
            return SubStepResult(
                success=False, newton_iterations=7, linear_iterations=70, message="diverged"
            )
        return SubStepResult(
            success=True, state=state + step_size, newton_iterations=3, linear_iterations=30
        )

    @property
    def step_sizes(self) -> typing.List[float]:
        return [attempt.step_size for attempt in self.attempts]


class RecordingCoordinator:
    """Well/aquifer coordinator recording the calls it receives."""

    def __init__(self, name: str, events_log: typing.List[str]) -> None:
        self.name = name
        self.events_log = events_log
        self.restart_payload = None

    def begin_report_step(self, report_step: int) -> None:
        self.events_log.append(f"{self.name}.begin({report_step})")

    def end_report_step(self) -> None:
        self.events_log.append(f"{self.name}.end")

    def init_from_restart(self, payload: typing.Any) -> None:
        self.restart_payload = payload
        self.events_log.append(f"{self.name}.init_from_restart")

    def report(self) -> typing.Mapping[str, typing.Any]:
        return {"name": self.name}


class RecordingOutput:
    """Output sink keeping every snapshot it is given."""

    def __init__(self) -> None:
        self.snapshots: typing.List[typing.Dict[str, typing.Any]] = []

    def write_snapshot(self, **kwargs: typing.Any) -> None:
        self.snapshots.append(kwargs)


class LinearDecayModel:
    """
    Implicit Euler discretization of ``dx/dt = -k * x``.

    ``R(x) = x - x_old + dt * k * x``; linear, so Newton converges in one iteration.
    """

    def __init__(self, rate: float = 1e-6) -> None:
        self.rate = rate
        self.validated: typing.List[float] = []

    def residual(self, state: np.ndarray, previous_state: np.ndarray, step_size: float) -> np.ndarray:
        return state - previous_state + step_size * self.rate * state

    def jacobian(self, state: np.ndarray, previous_state: np.ndarray, step_size: float) -> np.ndarray:
        return np.eye(state.size) * (1.0 + step_size * self.rate)

    def validate_well_constraints(self, state: np.ndarray, step_size: float) -> None:
        self.validated.append(step_size)


class CubicModel:
    """
    ``R(x) = x**3 - x_old - dt * c``, solved from the previous state.

    Nonlinear, so Newton needs several iterations.
    """

    def __init__(self, source: float = 1e-5) -> None:
        self.source = source

    def residual(self, state: np.ndarray, previous_state: np.ndarray, step_size: float) -> np.ndarray:
        return state**3 - previous_state - step_size * self.source

    def jacobian(self, state: np.ndarray, previous_state: np.ndarray, step_size: float) -> np.ndarray:
        return np.diag(3.0 * state**2)

    def validate_well_constraints(self, state: np.ndarray, step_size: float) -> None:
        pass


@pytest.fixture
def events_log() -> typing.List[str]:
    return []


@pytest.fixture
def ten_day_schedule() -> ReportingSchedule:
    return ReportingSchedule(step_lengths=[10 * DAY])


@pytest.fixture
def three_step_schedule() -> ReportingSchedule:
    return ReportingSchedule(step_lengths=[10 * DAY, 20 * DAY, 30 * DAY])


@pytest.fixture
def timestep_config() -> TimeStepConfig:
    return TimeStepConfig(
        initial_step_size=10 * DAY,
        min_step_size=0.5 * DAY,
        max_step_size=30 * DAY,
        growth_factor=2.0,
        shrink_factor=0.5,
    )


@pytest.fixture
def config(timestep_config: TimeStepConfig) -> Config:
    return Config(timestep=timestep_config)
