from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from assesscam.config.loader import (
    VALID_TEST_TYPES,
    ConfigError,
    default_config,
    load_config,
)

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "config" / "example.yaml"


def _base_config_dict() -> dict:
    return {
        "config_version": "test-001",
        "dispatcher": {
            "initial_interval_ms": 400,
            "min_interval_ms": 150,
            "max_interval_ms": 2000,
            "latency_samples": 5,
            "latency_multiplier": 1.5,
            "change_threshold": 0.2,
            "adaptive": True,
        },
        "analysis": {"debounce_ms": 500},
        "tests": {
            "objects": {"steps": {"Detect Person": {"required_hit_count": 2, "confidence_threshold": 0.6}}},
        },
    }


def _write_config(tmp_path: Path, data: dict, name: str = "config.yaml") -> Path:
    config_path = tmp_path / name
    config_path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return config_path


def test_load_config_success(tmp_path: Path) -> None:
    cfg = load_config(_write_config(tmp_path, _base_config_dict()))

    assert cfg.config_version == "test-001"
    assert cfg.dispatcher.initial_interval_ms == pytest.approx(400.0)
    assert cfg.dispatcher.latency_samples == 5
    assert cfg.analysis.debounce_ms == pytest.approx(500.0)
    override = cfg.overrides_for("objects")["Detect Person"]
    assert override.required_hit_count == 2
    assert override.confidence_threshold == pytest.approx(0.6)
    assert override.max_duration_seconds is None
    assert not override.untimed
    assert cfg.overrides_for("gait") == {}


def test_load_json_config(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(_base_config_dict()), encoding="utf-8")

    assert load_config(path).config_version == "test-001"


def test_sections_are_optional(tmp_path: Path) -> None:
    cfg = load_config(_write_config(tmp_path, {"config_version": "minimal"}))

    assert cfg.dispatcher == default_config().dispatcher
    assert cfg.analysis.debounce_ms == pytest.approx(500.0)
    assert cfg.tests == {}


def test_example_config_is_valid() -> None:
    cfg = load_config(EXAMPLE_CONFIG)

    assert cfg.overrides_for("chair_stand")["Chair Stand Test"].required_hit_count == 5


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_unparseable_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("config_version: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_version_raises(tmp_path: Path) -> None:
    data = _base_config_dict()
    data.pop("config_version")

    with pytest.raises(ConfigError) as exc:
        load_config(_write_config(tmp_path, data))
    assert "config_version" in str(exc.value)


def test_inverted_interval_bounds_raise(tmp_path: Path) -> None:
    data = _base_config_dict()
    data["dispatcher"]["min_interval_ms"] = 3000

    with pytest.raises(ConfigError):
        load_config(_write_config(tmp_path, data))


def test_initial_interval_outside_bounds_raises(tmp_path: Path) -> None:
    data = _base_config_dict()
    data["dispatcher"]["initial_interval_ms"] = 100

    with pytest.raises(ConfigError) as exc:
        load_config(_write_config(tmp_path, data))
    assert "initial_interval_ms" in str(exc.value)


def test_negative_debounce_raises(tmp_path: Path) -> None:
    data = _base_config_dict()
    data["analysis"]["debounce_ms"] = -1

    with pytest.raises(ConfigError):
        load_config(_write_config(tmp_path, data))


def test_unknown_test_type_raises(tmp_path: Path) -> None:
    data = _base_config_dict()
    data["tests"]["juggling"] = {"steps": {}}

    with pytest.raises(ConfigError) as exc:
        load_config(_write_config(tmp_path, data))
    assert "juggling" in str(exc.value)


def test_override_requires_steps_mapping(tmp_path: Path) -> None:
    data = _base_config_dict()
    data["tests"]["gait"] = {"steps": ["Normal Pace Walk"]}

    with pytest.raises(ConfigError):
        load_config(_write_config(tmp_path, data))


def test_untimed_override(tmp_path: Path) -> None:
    data = _base_config_dict()
    data["tests"]["balance"] = {"steps": {"Tandem Stand": {"max_duration_seconds": "untimed"}}}

    override = load_config(_write_config(tmp_path, data)).overrides_for("balance")["Tandem Stand"]

    assert override.untimed
    assert override.max_duration_seconds is None


@pytest.mark.parametrize(
    "entry",
    [
        {"confidence_threshold": 1.5},
        {"required_hit_count": -1},
        {"required_hit_count": True},
        {"max_duration_seconds": 0},
        {"frame_interval_ms": "fast"},
    ],
)
def test_invalid_override_values_raise(tmp_path: Path, entry: dict) -> None:
    data = _base_config_dict()
    data["tests"]["objects"]["steps"]["Detect Person"] = entry

    with pytest.raises(ConfigError):
        load_config(_write_config(tmp_path, data))


def test_valid_test_types_cover_catalog() -> None:
    from assesscam.protocols.catalog import TestType

    assert set(VALID_TEST_TYPES) == {item.value for item in TestType}
