"""Deterministic scenario loader and replay harness.

A scenario is a JSON document listing timestamped frames together with the
detections each named source reports for that frame:

.. code-block:: json

    {
      "version": "1",
      "test_type": "objects",
      "width": 64,
      "height": 48,
      "init_fail": ["face"],
      "frames": [
        {"t_ms": 0, "detections": {"objects": [{"label": "person", "confidence": 0.9}]}},
        {"t_ms": 500, "repeat": 4, "every_ms": 500, "fail": ["pose"]},
        {"t_ms": 2500, "empty": true}
      ]
    }

``repeat``/``every_ms`` expand one entry into evenly spaced copies, ``fail``
makes the named sources raise for that frame, and ``empty`` submits a frame
with no pixel data.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from assesscam.engine.types import DetectionResult, Frame
from assesscam.sources.base import DetectionSource, SourceInitError

LOGGER = logging.getLogger(__name__)


class ScenarioError(ValueError):
    """Raised when a replay scenario fails validation."""


@dataclass(frozen=True)
class ScenarioFrame:
    t_ms: int
    detections: Dict[str, Tuple[DetectionResult, ...]] = field(default_factory=dict)
    fail: Tuple[str, ...] = ()
    empty: bool = False

    @property
    def timestamp(self) -> float:
        return self.t_ms / 1000.0


@dataclass(frozen=True)
class Scenario:
    version: str
    frames: List[ScenarioFrame]
    test_type: Optional[str] = None
    width: int = 4
    height: int = 4
    init_fail: Tuple[str, ...] = ()

    @property
    def duration_ms(self) -> int:
        return self.frames[-1].t_ms if self.frames else 0


def load_scenario(path: str | Path) -> Scenario:
    scenario_path = Path(path)
    if not scenario_path.exists():
        raise ScenarioError(f"Scenario not found: {scenario_path}")
    try:
        data = json.loads(scenario_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ScenarioError(f"Scenario {scenario_path} is not valid JSON: {exc}") from exc
    return parse_scenario(data)


def parse_scenario(data: Any) -> Scenario:
    if not isinstance(data, dict):
        raise ScenarioError("Scenario root must be a JSON object")

    version = data.get("version")
    if not isinstance(version, str) or not version.strip():
        raise ScenarioError("Scenario must include a string 'version'")
    test_type = data.get("test_type")
    if test_type is not None and not isinstance(test_type, str):
        raise ScenarioError("'test_type' must be a string when provided")
    width = _require_positive_int(data, "width", default=4)
    height = _require_positive_int(data, "height", default=4)
    init_fail = _string_tuple(data.get("init_fail", []), "init_fail")

    frames_block = data.get("frames")
    if not isinstance(frames_block, list):
        raise ScenarioError("Scenario 'frames' must be an array")

    frames: List[ScenarioFrame] = []
    for entry in frames_block:
        if not isinstance(entry, dict):
            raise ScenarioError("Each frame entry must be an object")
        frames.extend(_expand_frame(entry))

    for previous, current in zip(frames, frames[1:]):
        if current.t_ms < previous.t_ms:
            raise ScenarioError(f"Frame timestamps must not decrease ({current.t_ms} after {previous.t_ms})")

    return Scenario(
        version=version,
        frames=frames,
        test_type=test_type,
        width=width,
        height=height,
        init_fail=init_fail,
    )


def _expand_frame(entry: Dict[str, Any]) -> List[ScenarioFrame]:
    t_ms = _require_positive_int(entry, "t_ms", allow_zero=True)
    repeat = _require_positive_int(entry, "repeat", default=1)
    every_ms = _require_positive_int(entry, "every_ms", default=0, allow_zero=True)
    if repeat > 1 and every_ms <= 0:
        raise ScenarioError("'every_ms' must be > 0 when 'repeat' is greater than 1")

    detections_block = entry.get("detections", {})
    if not isinstance(detections_block, dict):
        raise ScenarioError("'detections' must map source names to arrays")
    detections: Dict[str, Tuple[DetectionResult, ...]] = {}
    for source, items in detections_block.items():
        if not isinstance(items, list):
            raise ScenarioError(f"detections for '{source}' must be an array")
        try:
            detections[str(source)] = tuple(DetectionResult.from_dict(item) for item in items)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ScenarioError(f"Invalid detection for '{source}' at t_ms={t_ms}: {exc}") from exc

    fail = _string_tuple(entry.get("fail", []), "fail")
    empty = bool(entry.get("empty", False))
    return [
        ScenarioFrame(t_ms=t_ms + index * every_ms, detections=detections, fail=fail, empty=empty)
        for index in range(repeat)
    ]


class ReplayClock:
    """Scenario time; the current frame is what replay sources report from."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = start_ms
        self._current: Optional[ScenarioFrame] = None

    def __call__(self) -> float:
        return self.now

    @property
    def now(self) -> float:
        return self._now_ms / 1000.0

    @property
    def current(self) -> Optional[ScenarioFrame]:
        return self._current

    def advance(self, frame: ScenarioFrame) -> None:
        self._now_ms = frame.t_ms
        self._current = frame


class ReplaySource(DetectionSource):
    """Detection source that reports the scenario's detections for the current frame."""

    def __init__(self, name: str, clock: ReplayClock, *, fail_init: bool = False) -> None:
        super().__init__()
        self.name = name
        self._clock = clock
        self._fail_init = fail_init
        self.frames_processed = 0

    def _load(self) -> None:
        if self._fail_init:
            raise SourceInitError(self.name, "initialization failure requested by scenario")

    def process_frame(self, data: Any, height: int, width: int) -> List[DetectionResult]:
        frame = self._clock.current
        self.frames_processed += 1
        if frame is None:
            return []
        if self.name in frame.fail:
            raise RuntimeError(f"simulated failure at t_ms={frame.t_ms}")
        return list(frame.detections.get(self.name, ()))


def build_sources(scenario: Scenario, names: Tuple[str, ...], clock: ReplayClock) -> Dict[str, ReplaySource]:
    return {
        name: ReplaySource(name, clock, fail_init=name in scenario.init_fail)
        for name in names
    }


def iter_frames(scenario: Scenario, clock: ReplayClock) -> Iterator[Frame]:
    """Advance the clock through the scenario, yielding one raw frame per entry."""

    for entry in scenario.frames:
        clock.advance(entry)
        if entry.empty:
            data: Any = b""
        else:
            data = np.zeros((scenario.height, scenario.width, 3), dtype=np.uint8)
        yield Frame(
            data=data,
            height=scenario.height,
            width=scenario.width,
            timestamp=entry.timestamp,
            metadata={"t_ms": entry.t_ms},
        )


def summarize_sources(scenario: Scenario) -> Mapping[str, int]:
    """Count frames carrying at least one detection, per source."""

    counts: Dict[str, int] = {}
    for entry in scenario.frames:
        for source, detections in entry.detections.items():
            if detections:
                counts[source] = counts.get(source, 0) + 1
    return counts


def _require_positive_int(
    obj: Dict[str, Any],
    key: str,
    *,
    default: Optional[int] = None,
    allow_zero: bool = False,
) -> int:
    value = obj.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ScenarioError(f"'{key}' must be an integer")
    minimum = 0 if allow_zero else 1
    if value < minimum:
        raise ScenarioError(f"'{key}' must be >= {minimum}")
    return value


def _string_tuple(value: Any, key: str) -> Tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ScenarioError(f"'{key}' must be an array of strings")
    return tuple(value)


__all__ = [
    "ReplayClock",
    "ReplaySource",
    "Scenario",
    "ScenarioError",
    "ScenarioFrame",
    "build_sources",
    "iter_frames",
    "load_scenario",
    "parse_scenario",
    "summarize_sources",
]
