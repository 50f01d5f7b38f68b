"""Reporting schedule: report-step boundaries, schedule events and tuning records."""

from datetime import datetime
import enum
import itertools
import typing

import attrs

from pacer.errors import ValidationError
from pacer.stores import StoreSerializable

__all__ = [
    "ScheduleEvent",
    "WELL_EVENTS",
    "Tuning",
    "ReportingSchedule",
]


class ScheduleEvent(str, enum.Enum):
    """Discrete events a schedule can attach to a report step."""

    NEW_WELL = "new_well"
    WELL_STATUS_CHANGE = "well_status_change"
    PRODUCTION_UPDATE = "production_update"
    INJECTION_UPDATE = "injection_update"
    TUNING_CHANGE = "tuning_change"


WELL_EVENTS: typing.FrozenSet[ScheduleEvent] = frozenset(
    {
        ScheduleEvent.NEW_WELL,
        ScheduleEvent.WELL_STATUS_CHANGE,
        ScheduleEvent.PRODUCTION_UPDATE,
        ScheduleEvent.INJECTION_UPDATE,
    }
)
"""Events that change the well constraints the nonlinear solver must honour."""


@attrs.frozen
class Tuning(StoreSerializable):
    """Step-size control parameters requested by the schedule."""

    max_step_size: float = attrs.field(validator=attrs.validators.gt(0))
    """Maximum sub-step size in seconds."""
    min_step_size: float = attrs.field(validator=attrs.validators.gt(0))
    """Minimum sub-step size in seconds."""
    growth_factor: float = attrs.field(default=3.0, validator=attrs.validators.ge(1))
    """Growth factor applied after a converged sub-step."""
    shrink_factor: float = attrs.field(
        default=0.3,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.lt(1)),
    )
    """Shrink factor applied after a failed sub-step."""
    initial_step_size: typing.Optional[float] = attrs.field(
        default=None, validator=attrs.validators.optional(attrs.validators.gt(0))
    )
    """If set, the suggested step size is reset to this value when the tuning takes effect."""
    max_step_after_event: typing.Optional[float] = attrs.field(
        default=None, validator=attrs.validators.optional(attrs.validators.gt(0))
    )
    """Cap on the first sub-step after a well event."""

    def __attrs_post_init__(self) -> None:
        if self.min_step_size > self.max_step_size:
            raise ValidationError(
                f"Tuning minimum step size {self.min_step_size} exceeds maximum {self.max_step_size}"
            )


def _convert_step_lengths(value: typing.Iterable[float]) -> typing.Tuple[float, ...]:
    return tuple(float(length) for length in value)


def _convert_events(
    value: typing.Mapping[int, typing.Iterable[typing.Union[str, ScheduleEvent]]],
) -> typing.Dict[int, typing.Tuple[ScheduleEvent, ...]]:
    return {
        int(index): tuple(
            sorted({ScheduleEvent(event) for event in events}, key=lambda e: e.value)
        )
        for index, events in value.items()
    }


def _convert_tunings(
    value: typing.Mapping[int, typing.Union[Tuning, typing.Mapping[str, typing.Any]]],
) -> typing.Dict[int, Tuning]:
    return {
        int(index): tuning if isinstance(tuning, Tuning) else Tuning.load(tuning)
        for index, tuning in value.items()
    }


def _validate_step_lengths(
    instance: typing.Any, attribute: typing.Any, value: typing.Tuple[float, ...]
) -> None:
    if not value:
        raise ValidationError("A reporting schedule needs at least one report step")
    for index, length in enumerate(value):
        if not length > 0.0:
            raise ValidationError(
                f"Report step {index} has non-positive length {length}"
            )


@attrs.frozen
class ReportingSchedule(StoreSerializable):
    """
    Ordered report steps with the events and tuning records attached to them.

    Report step ``i`` spans ``[boundaries[i], boundaries[i + 1]]`` seconds.
    """

    step_lengths: typing.Tuple[float, ...] = attrs.field(
        converter=_convert_step_lengths, validator=_validate_step_lengths
    )
    """Length of each report step in seconds."""
    start_date: typing.Optional[datetime] = None
    """Calendar date of simulation time zero."""
    events: typing.Dict[int, typing.Tuple[ScheduleEvent, ...]] = attrs.field(
        factory=dict, converter=_convert_events
    )
    """Events keyed by report-step index."""
    tunings: typing.Dict[int, Tuning] = attrs.field(
        factory=dict, converter=_convert_tunings
    )
    """Tuning records keyed by the report-step index they take effect at."""
    boundaries: typing.Tuple[float, ...] = attrs.field(init=False)
    """Cumulative report-step boundaries in seconds, starting at 0."""

    @boundaries.default
    def _compute_boundaries(self) -> typing.Tuple[float, ...]:
        return tuple(itertools.accumulate(self.step_lengths, initial=0.0))

    def __attrs_post_init__(self) -> None:
        for label, mapping in (("Event", self.events), ("Tuning", self.tunings)):
            for index in mapping:
                if not 0 <= index < self.num_steps:
                    raise ValidationError(
                        f"{label} at report step {index} is outside the schedule's "
                        f"{self.num_steps} report steps"
                    )

    @classmethod
    def from_dates(
        cls,
        dates: typing.Sequence[datetime],
        events: typing.Optional[typing.Mapping[int, typing.Iterable[ScheduleEvent]]] = None,
        tunings: typing.Optional[typing.Mapping[int, Tuning]] = None,
    ) -> "ReportingSchedule":
        """
        Build a schedule from report dates. The first date is the start date.

        :param dates: Strictly increasing report dates, including the start date.
        :param events: Events keyed by report-step index.
        :param tunings: Tuning records keyed by report-step index.
        """
        if len(dates) < 2:
            raise ValidationError("At least a start date and one report date are required")
        lengths = [
            (later - earlier).total_seconds() for earlier, later in zip(dates, dates[1:])
        ]
        return cls(
            step_lengths=lengths,
            start_date=dates[0],
            events=events or {},
            tunings=tunings or {},
        )

    @property
    def num_steps(self) -> int:
        """Number of report steps."""
        return len(self.step_lengths)

    @property
    def total_time(self) -> float:
        """Total simulation time in seconds."""
        return self.boundaries[-1]

    def step_length(self, index: int) -> float:
        """Length (in seconds) of report step `index`."""
        return self.step_lengths[index]

    def events_at(self, index: int) -> typing.FrozenSet[ScheduleEvent]:
        """Events active at report step `index`."""
        return frozenset(self.events.get(index, ()))

    def has_event(self, event: ScheduleEvent, index: int) -> bool:
        return event in self.events.get(index, ())

    def get_tuning(self, index: int) -> typing.Optional[Tuning]:
        """The tuning record in effect at report step `index`, if any."""
        effective = [i for i in self.tunings if i <= index]
        if not effective:
            return None
        return self.tunings[max(effective)]
