"""Resuming a run from persisted state and step-size hints."""

from os import PathLike
import logging
import typing

import attrs

from pacer.errors import RestartError
from pacer.output import Snapshot
from pacer.stores import DataStore, store_for

__all__ = [
    "NEXT_STEP_KEY",
    "RestartPayload",
    "RestartHint",
    "RestartSource",
    "StoreRestartSource",
    "try_load_restart",
]

logger = logging.getLogger(__name__)

NEXT_STEP_KEY = "next_step_size"
"""Extra restart field holding the suggested size (in seconds) of the next sub-step."""


@attrs.frozen
class RestartPayload:
    """Raw data returned by a restart source."""

    report_step: int = 0
    """Report step to resume from."""
    state: typing.Optional[typing.Any] = None
    """Physical state to resume from, if one was persisted."""
    extra: typing.Dict[str, typing.Tuple[float, ...]] = attrs.field(factory=dict)
    """Extra scalar fields, keyed by name."""
    well_data: typing.Dict[str, typing.Any] = attrs.field(factory=dict)
    """Persisted well data, for the well coordinator."""

    def has_extra(self, key: str) -> bool:
        return key in self.extra

    def get_extra(self, key: str) -> typing.Tuple[float, ...]:
        return self.extra[key]


@attrs.frozen
class RestartHint:
    """What a resumed run starts from."""

    payload: RestartPayload
    suggested_step_size: typing.Optional[float] = None
    """Suggested size of the first sub-step. None if unknown."""

    @property
    def state(self) -> typing.Optional[typing.Any]:
        return self.payload.state

    @property
    def report_step(self) -> int:
        return self.payload.report_step


class RestartSource(typing.Protocol):
    def load_restart(self, requested_fields: typing.Sequence[str]) -> RestartPayload:
        """
        Load restart data. Requested extra fields that were never persisted
        are simply missing from the payload.
        """
        ...


class StoreRestartSource:
    """
    Restart source reading the last snapshot written by a `StoreOutputWriter`.
    """

    def __init__(
        self,
        store: typing.Union[DataStore[Snapshot], str, PathLike],
        state_loader: typing.Optional[typing.Callable[[typing.Any], typing.Any]] = None,
    ) -> None:
        """
        :param store: Store, or path to a JSON/YAML file, holding snapshots.
        :param state_loader: Rebuilds a physical state from its stored form.
        """
        if not isinstance(store, DataStore):
            store = store_for(store)
        self.store = store
        self.state_loader = state_loader

    def load_restart(self, requested_fields: typing.Sequence[str]) -> RestartPayload:
        snapshots = list(self.store.load(Snapshot))
        if not snapshots:
            raise RestartError(f"No snapshot to restart from in {self.store!r}")

        snapshot = max(snapshots, key=lambda s: (s.report_step, s.elapsed_time))
        extra: typing.Dict[str, typing.Tuple[float, ...]] = {}
        if NEXT_STEP_KEY in requested_fields and snapshot.next_step_size is not None:
            extra[NEXT_STEP_KEY] = (snapshot.next_step_size,)

        state = snapshot.state
        if state is not None and self.state_loader is not None:
            state = self.state_loader(state)
        return RestartPayload(
            report_step=snapshot.report_step,
            state=state,
            extra=extra,
            well_data=dict(snapshot.well_data),
        )


def try_load_restart(
    source: typing.Optional[RestartSource],
    requested: bool,
    terminal_output: bool = True,
) -> typing.Optional[RestartHint]:
    """
    Load the restart hint if a resume was requested.

    A missing step-size field is not fatal: the run resumes with an unknown
    suggested step size, and the step controller keeps its configured initial
    step, so the resumed run may deviate from the original one.

    :param source: Where to load restart data from.
    :param requested: Whether a resume was requested.
    :param terminal_output: Whether to log about the loaded hint.
    :return: The restart hint, or None if no resume was requested.
    :raises RestartError: If a resume was requested without a source, or the
        persisted data is malformed.
    """
    if not requested:
        return None
    if source is None:
        raise RestartError("A restart was requested but no restart source was given")

    payload = source.load_restart([NEXT_STEP_KEY])
    suggested_step_size: typing.Optional[float] = None
    if payload.has_extra(NEXT_STEP_KEY):
        values = payload.get_extra(NEXT_STEP_KEY)
        if len(values) != 1:
            raise RestartError(
                f"Restart field {NEXT_STEP_KEY!r} must hold exactly one value, got {len(values)}"
            )
        if values[0] > 0.0:
            suggested_step_size = float(values[0])
        elif terminal_output:
            logger.debug(
                f"Restart field {NEXT_STEP_KEY!r} holds {values[0]}, step size is unknown"
            )
    elif terminal_output:
        logger.warning(
            f"Restart data is missing the {NEXT_STEP_KEY!r} field, restart run may deviate from original run."
        )
    return RestartHint(payload=payload, suggested_step_size=suggested_step_size)
