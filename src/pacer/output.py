"""Output snapshots written at report-step boundaries."""

from os import PathLike
from pathlib import Path
import logging
import typing

import attrs

from pacer.stores import DataStore, StoreSerializable, store_for

if typing.TYPE_CHECKING:
    from pacer.config import Config

__all__ = ["Snapshot", "OutputSink", "StoreOutputWriter", "NullOutput"]

logger = logging.getLogger(__name__)


@attrs.frozen
class Snapshot(StoreSerializable):
    """The state of a run at a report-step boundary."""

    report_step: int
    """Number of report steps completed when the snapshot was taken (0 for the initial state)."""
    elapsed_time: float
    """Simulation time in seconds."""
    is_substep: bool = False
    """Whether the snapshot was taken inside a report step."""
    wall_clock_time: float = 0.0
    """Wall-clock seconds since the run started."""
    next_step_size: typing.Optional[float] = None
    """
    Suggested size (in seconds) of the next sub-step, kept for resuming.

    None if unknown, e.g. for the initial state or a non-adaptive run.
    """
    state: typing.Optional[typing.Any] = None
    """The physical state."""
    well_data: typing.Dict[str, typing.Any] = attrs.field(factory=dict)
    """Well data reported by the well coordinator."""


class OutputSink(typing.Protocol):
    def write_snapshot(
        self,
        state: typing.Any,
        elapsed_time: float,
        is_substep: bool,
        wall_clock_time: float,
        next_step_size: typing.Optional[float],
        report_step: int,
        well_data: typing.Optional[typing.Mapping[str, typing.Any]] = None,
    ) -> None:
        """Persist a snapshot. Failures propagate to the driver."""
        ...


class NullOutput:
    """Output sink that discards every snapshot."""

    def write_snapshot(self, *args: typing.Any, **kwargs: typing.Any) -> None:
        pass


class StoreOutputWriter:
    """
    Writes snapshots to a `DataStore`.

    Snapshots are kept in memory and the whole series is re-dumped on every
    write, so the store always holds a complete, loadable record. Snapshots
    already in the store are kept, so a resumed run extends the series of the
    run it resumes. Writing a report step drops stored snapshots from that
    report step onwards.
    """

    def __init__(
        self,
        store: typing.Union[DataStore[Snapshot], str, PathLike],
        enabled: bool = True,
        interval: int = 1,
        num_steps: typing.Optional[int] = None,
    ) -> None:
        """
        :param store: Store, or path to a JSON/YAML file, to write snapshots to.
        :param enabled: Whether to write anything at all.
        :param interval: Write every n-th report step. The initial state and the
            last report step are always written.
        :param num_steps: Number of report steps in the run, used to detect the last one.
        """
        if not isinstance(store, DataStore):
            store = store_for(store)
        self.store = store
        self.enabled = enabled
        self.interval = max(int(interval), 1)
        self.num_steps = num_steps
        self.snapshots: typing.List[Snapshot] = self._load_existing()

    def _load_existing(self) -> typing.List[Snapshot]:
        filepath = getattr(self.store, "filepath", None)
        if filepath is None or not Path(filepath).is_file():
            return []
        snapshots = sorted(self.store.load(Snapshot), key=lambda s: s.report_step)
        logger.debug(f"Found {len(snapshots)} existing snapshots in {self.store!r}")
        return snapshots

    @classmethod
    def from_config(
        cls,
        store: typing.Union[DataStore[Snapshot], str, PathLike],
        config: "Config",
        num_steps: typing.Optional[int] = None,
    ) -> "StoreOutputWriter":
        """Writer honouring the `output` and `output_interval` settings of a `Config`."""
        return cls(
            store,
            enabled=config.output,
            interval=config.output_interval,
            num_steps=num_steps,
        )

    def should_write(self, report_step: int) -> bool:
        if not self.enabled:
            return False
        if report_step == 0 or report_step % self.interval == 0:
            return True
        return self.num_steps is not None and report_step >= self.num_steps

    def write_snapshot(
        self,
        state: typing.Any,
        elapsed_time: float,
        is_substep: bool,
        wall_clock_time: float,
        next_step_size: typing.Optional[float],
        report_step: int,
        well_data: typing.Optional[typing.Mapping[str, typing.Any]] = None,
    ) -> None:
        if not self.should_write(report_step):
            logger.debug(f"Skipping output for report step {report_step}")
            return

        snapshot = Snapshot(
            report_step=report_step,
            elapsed_time=elapsed_time,
            is_substep=is_substep,
            wall_clock_time=wall_clock_time,
            next_step_size=next_step_size,
            state=state,
            well_data=dict(well_data or {}),
        )
        self.snapshots = [s for s in self.snapshots if s.report_step < report_step]
        self.snapshots.append(snapshot)
        self.store.dump(self.snapshots)
        logger.debug(
            f"Wrote snapshot for report step {report_step} at elapsed time {elapsed_time} to {self.store!r}"
        )
