from datetime import datetime

import pytest

from pacer import ReportingSchedule, ScheduleEvent, Tuning, ValidationError

from conftest import DAY


class TestReportingSchedule:
    def test_boundaries(self, three_step_schedule):
        assert three_step_schedule.boundaries == (0.0, 10 * DAY, 30 * DAY, 60 * DAY)
        assert three_step_schedule.num_steps == 3
        assert three_step_schedule.total_time == 60 * DAY
        assert three_step_schedule.step_length(1) == 20 * DAY

    def test_from_dates(self):
        schedule = ReportingSchedule.from_dates(
            [datetime(2020, 1, 1), datetime(2020, 1, 11), datetime(2020, 2, 1)],
            events={1: [ScheduleEvent.NEW_WELL]},
        )
        assert schedule.step_lengths == (10 * DAY, 21 * DAY)
        assert schedule.start_date == datetime(2020, 1, 1)
        assert schedule.has_event(ScheduleEvent.NEW_WELL, 1)
        assert not schedule.has_event(ScheduleEvent.NEW_WELL, 0)

    def test_from_dates_needs_two_dates(self):
        with pytest.raises(ValidationError):
            ReportingSchedule.from_dates([datetime(2020, 1, 1)])

    @pytest.mark.parametrize("lengths", [[], [DAY, 0.0], [-DAY]])
    def test_invalid_step_lengths(self, lengths):
        with pytest.raises(ValidationError):
            ReportingSchedule(step_lengths=lengths)

    def test_events_are_parsed_from_strings(self):
        schedule = ReportingSchedule(
            step_lengths=[DAY, DAY],
            events={"1": ["production_update", "tuning_change"]},
        )
        assert schedule.events_at(1) == {
            ScheduleEvent.PRODUCTION_UPDATE,
            ScheduleEvent.TUNING_CHANGE,
        }
        assert schedule.events_at(0) == frozenset()

    def test_event_outside_schedule(self):
        with pytest.raises(ValidationError):
            ReportingSchedule(step_lengths=[DAY], events={3: [ScheduleEvent.NEW_WELL]})

    def test_tuning_in_effect(self):
        early = Tuning(max_step_size=5 * DAY, min_step_size=DAY)
        late = Tuning(max_step_size=2 * DAY, min_step_size=DAY)
        schedule = ReportingSchedule(step_lengths=[DAY] * 4, tunings={1: early, 3: late})

        assert schedule.get_tuning(0) is None
        assert schedule.get_tuning(1) == early
        assert schedule.get_tuning(2) == early
        assert schedule.get_tuning(3) == late

    def test_tuning_bounds(self):
        with pytest.raises(ValidationError):
            Tuning(max_step_size=DAY, min_step_size=2 * DAY)

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "schedule.yaml"
        path.write_text(
            "step_lengths: [864000, 1728000]\n"
            "start_date: 2020-01-01\n"
            "events:\n"
            "  1: [new_well, tuning_change]\n"
            "tunings:\n"
            "  1:\n"
            "    max_step_size: 86400\n"
            "    min_step_size: 3600\n"
        )

        schedule = ReportingSchedule.from_file(path)

        assert schedule.start_date == datetime(2020, 1, 1)
        assert schedule.total_time == 30 * DAY
        assert schedule.events_at(1) == {ScheduleEvent.NEW_WELL, ScheduleEvent.TUNING_CHANGE}
        assert schedule.get_tuning(1).max_step_size == DAY

    def test_json_round_trip(self, tmp_path):
        schedule = ReportingSchedule(
            step_lengths=[DAY, 2 * DAY],
            start_date=datetime(2020, 1, 1, 12),
            events={0: [ScheduleEvent.WELL_STATUS_CHANGE]},
            tunings={1: Tuning(max_step_size=DAY, min_step_size=60.0)},
        )
        path = tmp_path / "schedule.json"
        schedule.to_file(path)
        assert ReportingSchedule.from_file(path) == schedule
