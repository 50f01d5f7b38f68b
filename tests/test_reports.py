import pytest

from pacer import FailureReport, SimulatorReport, StepReport


def _reports():
    return [
        SimulatorReport(simulated_time=1.0, solve_time=0.5, newton_iterations=3, substeps=1),
        SimulatorReport(solver_time=2.0, linear_iterations=40, step_cuts=2, converged=False),
        SimulatorReport(output_write_time=0.25, report_steps=1, substeps=4),
    ]


def test_merge_sums_fields_and_ands_convergence():
    a, b, c = _reports()
    merged = a + b + c

    assert merged.simulated_time == 1.0
    assert merged.solve_time == 0.5
    assert merged.solver_time == 2.0
    assert merged.output_write_time == 0.25
    assert merged.newton_iterations == 3
    assert merged.linear_iterations == 40
    assert merged.substeps == 5
    assert merged.step_cuts == 2
    assert merged.report_steps == 1
    assert not merged.converged


def test_merge_is_associative_and_commutative():
    a, b, c = _reports()
    assert (a + b) + c == a + (b + c)
    assert a + b == b + a
    assert sum([a, b, c]) == a + b + c


def test_empty_report_is_identity():
    a, _, _ = _reports()
    assert a + SimulatorReport() == a
    assert SimulatorReport().converged


def test_adding_step_reports():
    report = SimulatorReport()
    report += StepReport(step_size=10.0, solve_time=0.1, newton_iterations=4, linear_iterations=12)

    assert report.simulated_time == 10.0
    assert report.substeps == 1
    assert report.newton_iterations == 4
    assert report.converged


def test_failed_step_covers_no_time():
    failures = FailureReport() + StepReport(step_size=10.0, newton_iterations=30, converged=False)

    assert failures.simulated_time == 0.0
    assert failures.newton_iterations == 30
    assert not failures.converged


def test_cannot_add_unrelated_types():
    with pytest.raises(TypeError):
        SimulatorReport() + 1.0


def test_summary_lists_counters():
    summary = SimulatorReport(newton_iterations=12, step_cuts=3).summary()
    assert "Newton iterations:            12" in summary
    assert "Step cuts:                    3" in summary
