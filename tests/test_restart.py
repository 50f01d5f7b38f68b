import logging

import numpy as np
import pytest

from pacer import (
    NEXT_STEP_KEY,
    Config,
    RestartError,
    RestartPayload,
    SimulationTimer,
    Simulator,
    Snapshot,
    StoreOutputWriter,
    StoreRestartSource,
    try_load_restart,
)

from conftest import DAY, RecordingCoordinator, ScriptedSolver


class StaticRestartSource:
    def __init__(self, payload: RestartPayload) -> None:
        self.payload = payload
        self.requested = None

    def load_restart(self, requested_fields):
        self.requested = list(requested_fields)
        return self.payload


class TestTryLoadRestart:
    def test_not_requested(self):
        source = StaticRestartSource(RestartPayload())
        assert try_load_restart(source, requested=False) is None
        assert source.requested is None

    def test_requested_without_source(self):
        with pytest.raises(RestartError):
            try_load_restart(None, requested=True)

    def test_hint_is_loaded(self):
        source = StaticRestartSource(
            RestartPayload(report_step=2, state=5.0, extra={NEXT_STEP_KEY: (3 * DAY,)})
        )
        hint = try_load_restart(source, requested=True)

        assert source.requested == [NEXT_STEP_KEY]
        assert hint.suggested_step_size == 3 * DAY
        assert hint.report_step == 2
        assert hint.state == 5.0

    def test_missing_hint_warns(self, caplog):
        source = StaticRestartSource(RestartPayload(report_step=1))
        with caplog.at_level(logging.WARNING, logger="pacer.restart"):
            hint = try_load_restart(source, requested=True)

        assert hint is not None
        assert hint.suggested_step_size is None
        assert "restart run may deviate from original run" in caplog.text

    def test_non_positive_hint_is_unknown(self):
        source = StaticRestartSource(RestartPayload(extra={NEXT_STEP_KEY: (-1.0,)}))
        assert try_load_restart(source, requested=True).suggested_step_size is None

    def test_malformed_hint(self):
        source = StaticRestartSource(RestartPayload(extra={NEXT_STEP_KEY: (1.0, 2.0)}))
        with pytest.raises(RestartError):
            try_load_restart(source, requested=True)


class TestSimulatorRestart:
    def test_restart_seeds_suggested_step(self, three_step_schedule, events_log):
        config = Config(restart=True)
        source = StaticRestartSource(
            RestartPayload(
                report_step=1,
                state=10 * DAY,
                extra={NEXT_STEP_KEY: (4 * DAY,)},
                well_data={"PROD-1": "open"},
            )
        )
        wells = RecordingCoordinator("wells", events_log)
        solver = ScriptedSolver()
        simulator = Simulator(
            config=config,
            schedule=three_step_schedule,
            solver_factory=lambda w, a: solver,
            initial_state=0.0,
            well_coordinator=wells,
            restart_source=source,
        )

        report = simulator.run()

        assert solver.step_sizes[0] == 4 * DAY
        assert solver.attempts[0].state == 10 * DAY
        assert report.report_steps == 2
        assert wells.restart_payload.well_data == {"PROD-1": "open"}
        assert events_log[0] == "wells.init_from_restart"

    def test_restart_without_hint_uses_initial_step(self, three_step_schedule, caplog):
        config = Config(restart=True)
        source = StaticRestartSource(RestartPayload(report_step=1, state=10 * DAY))
        solver = ScriptedSolver()
        simulator = Simulator(
            config=config,
            schedule=three_step_schedule,
            solver_factory=lambda w, a: solver,
            initial_state=0.0,
            restart_source=source,
        )

        with caplog.at_level(logging.WARNING, logger="pacer"):
            simulator.run()

        assert solver.step_sizes[0] == config.timestep.initial_step_size
        assert "may deviate" in caplog.text

    def test_resume_matches_uninterrupted_run(self, config, three_step_schedule, tmp_path):
        def make_solver():
            return ScriptedSolver(max_converging_step=7 * DAY)

        full_solver = make_solver()
        Simulator(
            config=config,
            schedule=three_step_schedule,
            solver_factory=lambda w, a: full_solver,
            initial_state=0.0,
        ).run()

        # Interrupted run: stops after the first report step
        path = tmp_path / "snapshots.json"
        first_solver = make_solver()
        writer = StoreOutputWriter(path)
        Simulator(
            config=config,
            schedule=three_step_schedule,
            solver_factory=lambda w, a: first_solver,
            initial_state=0.0,
            output=writer,
        ).run(_timer_over_first_step(three_step_schedule))

        resumed_solver = make_solver()
        Simulator(
            config=Config(restart=True, timestep=config.timestep),
            schedule=three_step_schedule,
            solver_factory=lambda w, a: resumed_solver,
            initial_state=0.0,
            restart_source=StoreRestartSource(path, state_loader=float),
        ).run()

        assert first_solver.step_sizes + resumed_solver.step_sizes == full_solver.step_sizes

    def test_resumed_run_extends_snapshot_series(self, config, three_step_schedule, tmp_path):
        path = tmp_path / "snapshots.json"
        Simulator(
            config=config,
            schedule=three_step_schedule,
            solver_factory=lambda w, a: ScriptedSolver(),
            initial_state=0.0,
            output=StoreOutputWriter(path),
        ).run(_timer_over_first_step(three_step_schedule))

        Simulator(
            config=Config(restart=True, timestep=config.timestep),
            schedule=three_step_schedule,
            solver_factory=lambda w, a: ScriptedSolver(),
            initial_state=0.0,
            output=StoreOutputWriter(path),
            restart_source=StoreRestartSource(path, state_loader=float),
        ).run()

        snapshots = list(StoreOutputWriter(path).store.load(Snapshot))
        assert [s.report_step for s in snapshots] == [0, 1, 2, 3]
        assert snapshots[0].next_step_size is None
        assert all(s.next_step_size is not None for s in snapshots[1:])

    def test_rerun_replaces_later_snapshots(self, config, three_step_schedule, tmp_path):
        path = tmp_path / "snapshots.json"
        for _ in range(2):
            Simulator(
                config=config,
                schedule=three_step_schedule,
                solver_factory=lambda w, a: ScriptedSolver(),
                initial_state=0.0,
                output=StoreOutputWriter(path),
            ).run()

        snapshots = StoreOutputWriter(path).snapshots
        assert [s.report_step for s in snapshots] == [0, 1, 2, 3]


def _timer_over_first_step(schedule):
    class FirstStepTimer(SimulationTimer):
        def done(self):
            return self.current_step >= 1

    return FirstStepTimer(schedule)


class TestStoreRestartSource:
    def test_round_trip_through_yaml(self, tmp_path):
        path = tmp_path / "run.yaml"
        writer = StoreOutputWriter(path)
        writer.write_snapshot(
            state=np.array([1.0, 2.0]),
            elapsed_time=0.0,
            is_substep=False,
            wall_clock_time=0.1,
            next_step_size=None,
            report_step=0,
        )
        writer.write_snapshot(
            state=np.array([3.0, 4.0]),
            elapsed_time=10 * DAY,
            is_substep=False,
            wall_clock_time=0.2,
            next_step_size=2 * DAY,
            report_step=1,
            well_data={"INJ-1": 1.5},
        )

        payload = StoreRestartSource(path, state_loader=np.asarray).load_restart(
            [NEXT_STEP_KEY]
        )

        assert payload.report_step == 1
        np.testing.assert_array_equal(payload.state, [3.0, 4.0])
        assert payload.get_extra(NEXT_STEP_KEY) == (2 * DAY,)
        assert payload.well_data == {"INJ-1": 1.5}

    def test_unrequested_field_is_omitted(self, tmp_path):
        path = tmp_path / "run.json"
        StoreOutputWriter(path).write_snapshot(
            state=None,
            elapsed_time=0.0,
            is_substep=False,
            wall_clock_time=0.0,
            next_step_size=DAY,
            report_step=0,
        )
        payload = StoreRestartSource(path).load_restart([])
        assert not payload.has_extra(NEXT_STEP_KEY)

    def test_initial_snapshot_has_no_hint(self, tmp_path):
        path = tmp_path / "run.json"
        StoreOutputWriter(path).write_snapshot(
            state=None,
            elapsed_time=0.0,
            is_substep=False,
            wall_clock_time=0.0,
            next_step_size=None,
            report_step=0,
        )
        payload = StoreRestartSource(path).load_restart([NEXT_STEP_KEY])
        assert not payload.has_extra(NEXT_STEP_KEY)

    def test_empty_store(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_bytes(b"")
        with pytest.raises(RestartError):
            StoreRestartSource(path).load_restart([NEXT_STEP_KEY])
