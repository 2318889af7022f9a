from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from assesscam.config.loader import ConfigError, StepOverride, load_config
from assesscam.engine.types import EvaluatorKind
from assesscam.evaluators.base import EvaluatorError
from assesscam.protocols.catalog import (
    TestType as CatalogTestType,
    apply_overrides,
    build_evaluator,
    build_steps,
    describe,
    hits_for,
    parse_test_type,
    source_names,
)


def _write_config(tmp_path: Path, tests: dict, interval_ms: float = 500) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "config_version": "catalog-test",
                "dispatcher": {"initial_interval_ms": interval_ms},
                "tests": tests,
            }
        ),
        encoding="utf-8",
    )
    return path


def test_hits_for_rounds_and_floors() -> None:
    assert hits_for(2.0) == 4
    assert hits_for(1.0, 250.0) == 4
    assert hits_for(0.1) == 1
    with pytest.raises(ValueError):
        hits_for(1.0, 0.0)


def test_parse_test_type() -> None:
    assert parse_test_type(" Chair_Stand ") is CatalogTestType.CHAIR_STAND
    assert parse_test_type(CatalogTestType.GAIT) is CatalogTestType.GAIT
    with pytest.raises(ValueError) as exc:
        parse_test_type("juggling")
    assert "juggling" in str(exc.value)


def test_object_steps() -> None:
    steps = build_steps("objects")

    assert [step.label for step in steps] == [
        "Detect Person",
        "Detect Bottle",
        "Detect Cup",
        "Detect Cell Phone",
        "Detect Laptop",
    ]
    assert [step.required_hit_count for step in steps] == [4, 2, 2, 2, 2]
    assert all(step.evaluator is EvaluatorKind.LABEL for step in steps)
    assert all(step.max_duration_seconds == pytest.approx(10.0) for step in steps)


def test_medication_steps_in_intake_order() -> None:
    steps = build_steps("avmed")

    assert [step.target_condition for step in steps] == [
        "pill",
        "pill on tongue",
        "no pill on tongue",
        "drink water",
        "no pill under tongue",
    ]
    assert all(step.sources == ("objects", "face") for step in steps)
    assert all(step.instruction_ref and step.instruction_ref.endswith(".mp4") for step in steps)
    assert steps[3].required_hit_count == 6
    assert steps[3].confidence_threshold == pytest.approx(0.65)


def test_chair_stand_steps() -> None:
    steps = build_steps("chair_stand")

    assert [step.evaluator for step in steps] == [
        EvaluatorKind.ANY_DETECTION,
        EvaluatorKind.LABEL,
        EvaluatorKind.LANDMARKS,
        EvaluatorKind.REPETITION,
        EvaluatorKind.CONSTANT,
    ]
    assert steps[3].required_hit_count == 3
    assert steps[3].max_duration_seconds == pytest.approx(120.0)
    assert source_names(steps) == ("objects", "pose")


@pytest.mark.parametrize("test_type", ["balance", "gait"])
def test_pose_hold_tests_read_pose_only(test_type: str) -> None:
    steps = build_steps(test_type)

    assert len(steps) == 3
    assert source_names(steps) == ("pose",)
    assert all(step.instruction_text for step in steps)


def test_interval_from_config_scales_quotas(tmp_path: Path) -> None:
    config = load_config(_write_config(tmp_path, {}, interval_ms=250))

    steps = build_steps("objects", config)

    assert steps[0].required_hit_count == 8
    assert steps[0].frame_interval_ms == pytest.approx(250.0)


def test_config_overrides_are_applied(tmp_path: Path) -> None:
    config = load_config(
        _write_config(
            tmp_path,
            {
                "chair_stand": {
                    "steps": {
                        "Chair Stand Test": {"required_hit_count": 5, "max_duration_seconds": 60},
                        "Results Analysis": {"max_duration_seconds": "untimed"},
                    }
                }
            },
        )
    )

    steps = {step.label: step for step in build_steps("chair_stand", config)}

    assert steps["Chair Stand Test"].required_hit_count == 5
    assert steps["Chair Stand Test"].max_duration_seconds == pytest.approx(60.0)
    assert steps["Results Analysis"].max_duration_seconds is None
    assert steps["Chair Detection"].required_hit_count == 2


def test_unknown_override_label_raises() -> None:
    with pytest.raises(ConfigError) as exc:
        apply_overrides(build_steps("mock"), {"Nope": StepOverride(required_hit_count=1)})
    assert "Nope" in str(exc.value)


def test_build_evaluator_registers_used_kinds_only() -> None:
    suite = build_evaluator("objects")

    assert suite.strategy_for(EvaluatorKind.LABEL) is not None
    with pytest.raises(EvaluatorError):
        suite.strategy_for(EvaluatorKind.REPETITION)


def test_chair_stand_evaluator_uses_configured_debounce(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump({"config_version": "debounce", "analysis": {"debounce_ms": 800}}),
        encoding="utf-8",
    )

    suite = build_evaluator("chair_stand", load_config(path))

    assert suite.strategy_for(EvaluatorKind.REPETITION).debounce_ms == pytest.approx(800.0)
    assert "repetitions" in suite.metrics()


def test_every_test_type_is_described() -> None:
    for test_type in CatalogTestType:
        description = describe(test_type)
        assert description.test_type is test_type
        assert description.display_name
        assert build_steps(test_type)
