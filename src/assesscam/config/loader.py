"""Config loader with schema validation for dispatcher, analysis, and per-test overrides."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

VALID_TEST_TYPES = ("objects", "avmed", "chair_stand", "balance", "gait", "mock")


class ConfigError(ValueError):
    """Raised when a configuration file fails validation."""


@dataclass(frozen=True)
class DispatcherConfig:
    initial_interval_ms: float = 500.0
    min_interval_ms: float = 150.0
    max_interval_ms: float = 2000.0
    latency_samples: int = 10
    latency_multiplier: float = 1.5
    change_threshold: float = 0.2
    adaptive: bool = True


@dataclass(frozen=True)
class AnalysisConfig:
    debounce_ms: float = 500.0


@dataclass(frozen=True)
class StepOverride:
    required_hit_count: Optional[int] = None
    max_duration_seconds: Optional[float] = None
    untimed: bool = False
    confidence_threshold: Optional[float] = None
    frame_interval_ms: Optional[float] = None


@dataclass(frozen=True)
class Config:
    source: Optional[Path]
    config_version: str
    dispatcher: DispatcherConfig
    analysis: AnalysisConfig
    tests: Dict[str, Dict[str, StepOverride]] = field(default_factory=dict)

    def overrides_for(self, test_type: str) -> Dict[str, StepOverride]:
        return dict(self.tests.get(test_type, {}))


def default_config() -> Config:
    return Config(
        source=None,
        config_version="default",
        dispatcher=DispatcherConfig(),
        analysis=AnalysisConfig(),
    )


def load_config(path: str | Path) -> Config:
    """Load and validate a YAML/JSON config file."""
    source = Path(path)
    if not source.exists():
        raise ConfigError(f"Config file not found: {source}")

    data = _deserialize(source)
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")
    return _parse_config(data, source)


def _deserialize(source: Path) -> Any:
    text = source.read_text(encoding="utf-8")
    suffix = source.suffix.lower()
    try:
        if suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not parse {source}: {exc}") from exc


def _parse_config(data: Dict[str, Any], source: Path) -> Config:
    config_version = _require_str(data, "config_version")

    dispatcher_section = _optional_dict(data, "dispatcher")
    defaults = DispatcherConfig()
    dispatcher = DispatcherConfig(
        initial_interval_ms=_coerce_float(
            dispatcher_section.get("initial_interval_ms", defaults.initial_interval_ms),
            "dispatcher.initial_interval_ms",
            minimum=0.0,
        ),
        min_interval_ms=_coerce_float(
            dispatcher_section.get("min_interval_ms", defaults.min_interval_ms),
            "dispatcher.min_interval_ms",
            minimum=0.0,
        ),
        max_interval_ms=_coerce_float(
            dispatcher_section.get("max_interval_ms", defaults.max_interval_ms),
            "dispatcher.max_interval_ms",
            minimum=0.0,
        ),
        latency_samples=_coerce_int(
            dispatcher_section.get("latency_samples", defaults.latency_samples),
            "dispatcher.latency_samples",
            minimum=1,
        ),
        latency_multiplier=_coerce_float(
            dispatcher_section.get("latency_multiplier", defaults.latency_multiplier),
            "dispatcher.latency_multiplier",
            minimum=0.0,
        ),
        change_threshold=_coerce_float(
            dispatcher_section.get("change_threshold", defaults.change_threshold),
            "dispatcher.change_threshold",
            minimum=0.0,
            maximum=1.0,
        ),
        adaptive=bool(dispatcher_section.get("adaptive", defaults.adaptive)),
    )
    if dispatcher.min_interval_ms > dispatcher.max_interval_ms:
        raise ConfigError("dispatcher.min_interval_ms must be <= dispatcher.max_interval_ms")
    if not dispatcher.min_interval_ms <= dispatcher.initial_interval_ms <= dispatcher.max_interval_ms:
        raise ConfigError("dispatcher.initial_interval_ms must lie within [min_interval_ms, max_interval_ms]")

    analysis_section = _optional_dict(data, "analysis")
    debounce = analysis_section.get("debounce_ms", AnalysisConfig.debounce_ms)
    if isinstance(debounce, bool) or not isinstance(debounce, (int, float)) or debounce < 0:
        raise ConfigError("'analysis.debounce_ms' must be a number >= 0")
    analysis = AnalysisConfig(debounce_ms=float(debounce))

    tests_section = _optional_dict(data, "tests")
    tests: Dict[str, Dict[str, StepOverride]] = {}
    for test_type, block in tests_section.items():
        if test_type not in VALID_TEST_TYPES:
            raise ConfigError(f"Unknown test type '{test_type}' in tests block")
        steps_block = _require_dict(block if isinstance(block, dict) else {}, "steps", prefix=f"tests.{test_type}")
        overrides: Dict[str, StepOverride] = {}
        for label, entry in steps_block.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"tests.{test_type}.steps['{label}'] must be a mapping")
            overrides[str(label)] = _parse_override(entry, f"tests.{test_type}.steps['{label}']")
        tests[test_type] = overrides

    return Config(
        source=source,
        config_version=config_version,
        dispatcher=dispatcher,
        analysis=analysis,
        tests=tests,
    )


def _parse_override(entry: Dict[str, Any], field_name: str) -> StepOverride:
    duration = entry.get("max_duration_seconds")
    untimed = duration == "untimed"
    return StepOverride(
        required_hit_count=_optional_int(
            entry.get("required_hit_count"), f"{field_name}.required_hit_count", minimum=0
        ),
        max_duration_seconds=None
        if untimed or duration is None
        else _coerce_float(duration, f"{field_name}.max_duration_seconds", minimum=0.0),
        untimed=untimed,
        confidence_threshold=None
        if entry.get("confidence_threshold") is None
        else _coerce_float(
            entry["confidence_threshold"],
            f"{field_name}.confidence_threshold",
            minimum=0.0,
            maximum=1.0,
            inclusive_minimum=True,
        ),
        frame_interval_ms=None
        if entry.get("frame_interval_ms") is None
        else _coerce_float(entry["frame_interval_ms"], f"{field_name}.frame_interval_ms", minimum=0.0),
    )


def _optional_dict(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = obj.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} block must be a mapping if provided")
    return value


def _require_dict(obj: Dict[str, Any], key: str, prefix: Optional[str] = None) -> Dict[str, Any]:
    value = obj.get(key)
    if not isinstance(value, dict):
        name = f"{prefix}.{key}" if prefix else key
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _require_str(obj: Dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{key}' must be a non-empty string")
    return value


def _coerce_int(value: Any, field_name: str, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field_name}' must be an integer, not boolean")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{field_name}' must be an integer") from exc
    if minimum is not None and parsed < minimum:
        raise ConfigError(f"'{field_name}' must be >= {minimum}")
    return parsed


def _optional_int(value: Any, field_name: str, minimum: Optional[int] = None) -> Optional[int]:
    if value in (None, ""):
        return None
    return _coerce_int(value, field_name, minimum=minimum)


def _coerce_float(
    value: Any,
    field_name: str,
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    inclusive_minimum: bool = False,
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{field_name}' must be a number")
    result = float(value)
    if minimum is not None:
        if inclusive_minimum and result < minimum:
            raise ConfigError(f"'{field_name}' must be >= {minimum}")
        if not inclusive_minimum and result <= minimum:
            raise ConfigError(f"'{field_name}' must be greater than {minimum}")
    if maximum is not None and result > maximum:
        raise ConfigError(f"'{field_name}' must be <= {maximum}")
    return result


__all__ = [
    "AnalysisConfig",
    "Config",
    "ConfigError",
    "DispatcherConfig",
    "StepOverride",
    "VALID_TEST_TYPES",
    "default_config",
    "load_config",
]
