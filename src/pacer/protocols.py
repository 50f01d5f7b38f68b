"""Capabilities the simulation driver expects from its collaborators."""

import typing

import attrs

from pacer.schedule import WELL_EVENTS, ScheduleEvent

if typing.TYPE_CHECKING:
    from pacer.restart import RestartPayload

__all__ = [
    "StateT",
    "SubStepRequest",
    "SubStepResult",
    "NonlinearSolver",
    "SolverFactory",
    "SubModelCoordinator",
    "WellCoordinator",
    "AquiferCoordinator",
    "NullCoordinator",
    "Communicator",
    "SerialCommunicator",
]

StateT = typing.TypeVar("StateT")
"""The (opaque) physical state advanced by the nonlinear solver."""


@attrs.frozen(slots=True)
class SubStepRequest:
    """What the nonlinear solver is asked to do, besides the step size."""

    report_step: int
    """Index of the report step the sub-step belongs to."""
    substep: int
    """Index of the attempt within the report step (0-indexed, retries included)."""
    events: typing.FrozenSet[ScheduleEvent] = frozenset()
    """Schedule events active at the report step."""
    validate_well_constraints: bool = False
    """Whether well constraints must be re-validated before solving this sub-step."""

    @property
    def has_well_event(self) -> bool:
        return not self.events.isdisjoint(WELL_EVENTS)


@attrs.frozen(slots=True)
class SubStepResult(typing.Generic[StateT]):
    """Outcome of one sub-step attempt."""

    success: bool
    """Whether the solver converged. Must be the same on every process."""
    state: typing.Optional[StateT] = None
    """The new physical state, if the solver converged."""
    newton_iterations: int = 0
    linear_iterations: int = 0
    message: typing.Optional[str] = None
    """A message providing additional information about the result."""


class NonlinearSolver(typing.Protocol[StateT]):
    """Solves the discretized equations over one sub-step."""

    def begin_report_step(self) -> None: ...

    def end_report_step(self) -> None: ...

    def attempt_substep(
        self, state: StateT, step_size: float, request: SubStepRequest
    ) -> SubStepResult[StateT]:
        """
        Try to converge a new state `step_size` seconds after `state`.

        Must be deterministic given identical inputs on every process, and the
        returned `success` flag must be the result of a collective decision.
        """
        ...


class SubModelCoordinator(typing.Protocol):
    """A physical sub-model advanced once per report step."""

    def begin_report_step(self, report_step: int) -> None: ...

    def end_report_step(self) -> None: ...


class WellCoordinator(SubModelCoordinator, typing.Protocol):
    def init_from_restart(self, payload: "RestartPayload") -> None: ...

    def report(self) -> typing.Mapping[str, typing.Any]:
        """Well data to include in output snapshots."""
        ...


class AquiferCoordinator(SubModelCoordinator, typing.Protocol):
    pass


SolverFactory = typing.Callable[
    [WellCoordinator, AquiferCoordinator], NonlinearSolver[typing.Any]
]
"""Builds the nonlinear solver for a report step from the sub-model coordinators."""


class NullCoordinator:
    """Coordinator for runs without wells or aquifers."""

    def begin_report_step(self, report_step: int) -> None:
        pass

    def end_report_step(self) -> None:
        pass

    def init_from_restart(self, payload: "RestartPayload") -> None:
        pass

    def report(self) -> typing.Mapping[str, typing.Any]:
        return {}


class Communicator(typing.Protocol):
    """Collective operations across the processes sharing a partitioned domain."""

    def all_converged(self, converged: bool) -> bool:
        """Global logical AND of the local convergence flags."""
        ...

    def max(self, value: float) -> float:
        """Global maximum of a local value."""
        ...


class SerialCommunicator:
    """`Communicator` for a single process."""

    def all_converged(self, converged: bool) -> bool:
        return converged

    def max(self, value: float) -> float:
        return value
