from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from assesscam.cli.run import ReplayApp, main
from assesscam.config.loader import default_config
from assesscam.demo.replay import load_scenario, parse_scenario
from assesscam.engine.types import RunState, StepOutcome
from assesscam.protocols.catalog import TestType as CatalogTestType

ROOT = Path(__file__).resolve().parents[2]
SCENARIO_DIR = ROOT / "scenarios"
EXAMPLE_CONFIG = ROOT / "config" / "example.yaml"


def _outcomes(summary) -> dict:
    return {detail.label: detail.outcome for detail in summary.per_step_detail}


def test_objects_scenario_end_to_end() -> None:
    output = io.StringIO()
    scenario = load_scenario(SCENARIO_DIR / "objects_demo.json")
    app = ReplayApp(default_config(), scenario, CatalogTestType.OBJECTS, output=output)

    summary = app.run()

    assert summary is not None
    assert summary.run_state is RunState.COMPLETE
    assert _outcomes(summary) == {
        "Detect Person": StepOutcome.SUCCESS,
        "Detect Bottle": StepOutcome.SUCCESS,
        "Detect Cup": StepOutcome.SUCCESS,
        "Detect Cell Phone": StepOutcome.SUCCESS,
        "Detect Laptop": StepOutcome.TIMED_OUT,
    }
    details = {detail.label: detail for detail in summary.per_step_detail}
    assert details["Detect Person"].elapsed_seconds == pytest.approx(1.5)
    assert details["Detect Cup"].elapsed_seconds == pytest.approx(1.0)
    assert details["Detect Laptop"].elapsed_seconds == pytest.approx(10.0)
    assert summary.successful_steps == 4
    assert not summary.overall_success
    assert app.dispatcher.failed_frames == 1
    assert "xDetect Laptop" in output.getvalue()


def test_chair_stand_scenario_scores_repetitions() -> None:
    scenario = load_scenario(SCENARIO_DIR / "chair_stand_demo.json")
    app = ReplayApp(default_config(), scenario, CatalogTestType.CHAIR_STAND, show_status=False)

    summary = app.run()

    assert summary is not None
    assert summary.overall_success
    assert summary.run_state is RunState.COMPLETE
    chair_stand = summary.chair_stand
    assert chair_stand is not None
    assert chair_stand.completed_repetitions == 3
    assert chair_stand.total_time_s == pytest.approx(11.0)
    assert chair_stand.repetition_times_s == pytest.approx([3.5, 3.5])
    assert chair_stand.sppb_score == 4
    assert chair_stand.performance_grade == "Excellent"


def test_scenario_ending_early_stops_the_run() -> None:
    scenario = parse_scenario(
        {
            "version": "1",
            "frames": [
                {
                    "t_ms": 0,
                    "repeat": 2,
                    "every_ms": 500,
                    "detections": {"objects": [{"label": "person", "confidence": 0.9}]},
                }
            ],
        }
    )
    app = ReplayApp(default_config(), scenario, CatalogTestType.OBJECTS, show_status=False)

    summary = app.run()

    assert summary is not None
    assert summary.run_state is RunState.STOPPED
    assert summary.per_step_detail[0].outcome is StepOutcome.PENDING
    assert summary.per_step_detail[0].hit_count == 2
    assert summary.per_step_detail[0].elapsed_seconds == pytest.approx(0.5)


def test_mock_test_uses_canned_detections() -> None:
    scenario = parse_scenario(
        {"version": "1", "frames": [{"t_ms": 0, "repeat": 3, "every_ms": 500}]}
    )
    app = ReplayApp(default_config(), scenario, CatalogTestType.MOCK, show_status=False)

    summary = app.run()

    assert summary is not None
    assert summary.overall_success
    assert summary.per_step_detail[0].hit_count == 2


def test_all_sources_failing_returns_none() -> None:
    scenario = parse_scenario(
        {"version": "1", "init_fail": ["objects"], "frames": [{"t_ms": 0}]}
    )
    app = ReplayApp(default_config(), scenario, CatalogTestType.OBJECTS, show_status=False)

    assert app.run() is None
    assert app.orchestrator.run_state is RunState.NOT_STARTED


def test_cli_writes_summary_and_results_log(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    out_dir = tmp_path / "results"
    exit_code = main(
        [
            "--config",
            str(EXAMPLE_CONFIG),
            "--scenario",
            str(SCENARIO_DIR / "objects_demo.json"),
            "--no-status",
            "--out",
            str(out_dir),
        ]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["test_type"] == "objects"
    assert payload["successful_steps"] == 4
    files = list(out_dir.glob("*.jsonl"))
    assert len(files) == 1
    record = json.loads(files[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["run_id"] == "objects_demo"


def test_cli_lists_test_types(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--list"]) == 0

    listing = capsys.readouterr().out
    for test_type in CatalogTestType:
        assert test_type.value in listing


def test_cli_rejects_bad_inputs(tmp_path: Path) -> None:
    missing = tmp_path / "missing.json"
    untyped = tmp_path / "untyped.json"
    untyped.write_text(json.dumps({"version": "1", "frames": []}), encoding="utf-8")

    assert main(["--config", str(EXAMPLE_CONFIG), "--scenario", str(missing)]) == 2
    assert main(["--config", str(EXAMPLE_CONFIG), "--scenario", str(untyped)]) == 2
    assert (
        main(["--config", str(EXAMPLE_CONFIG), "--scenario", str(untyped), "--test", "juggling"])
        == 2
    )


def test_cli_reports_unavailable_sources(tmp_path: Path) -> None:
    scenario = tmp_path / "dead.json"
    scenario.write_text(
        json.dumps({"version": "1", "test_type": "objects", "init_fail": ["objects"], "frames": [{"t_ms": 0}]}),
        encoding="utf-8",
    )

    assert main(["--config", str(EXAMPLE_CONFIG), "--scenario", str(scenario), "--no-status"]) == 3
