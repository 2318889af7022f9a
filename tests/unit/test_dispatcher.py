from __future__ import annotations

import logging
import threading
from typing import List, Sequence

import numpy as np
import pytest

from assesscam.engine.types import DetectionResult, Frame
from assesscam.sources.base import DetectionSource
from assesscam.sources.cache import DetectionCache
from assesscam.sources.dispatcher import FrameConversionError, FrameDispatcher, coerce_frame
from assesscam.sources.interval import AdaptiveIntervalCalculator
from assesscam.sources.mock import MockDetectionSource


class _QueueSource(DetectionSource):
    """Returns the next queued result list on each frame."""

    def __init__(self, name: str, results: Sequence[Sequence[DetectionResult]]) -> None:
        super().__init__()
        self.name = name
        self._results = [list(result) for result in results]

    def process_frame(self, data, height, width) -> List[DetectionResult]:
        if not self._results:
            return []
        return self._results.pop(0)


class _BlockingSource(DetectionSource):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name
        self.release = threading.Event()
        self.entered = threading.Event()
        self.calls = 0

    def process_frame(self, data, height, width) -> List[DetectionResult]:
        self.calls += 1
        self.entered.set()
        self.release.wait(timeout=5.0)
        return [DetectionResult(label="person", confidence=0.9)]


class _ExplodingSource(DetectionSource):
    name = "broken"

    def process_frame(self, data, height, width) -> List[DetectionResult]:
        raise RuntimeError("tensor shape mismatch")


class _SteppingClock:
    def __init__(self, step: float) -> None:
        self._now = 0.0
        self._step = step

    def __call__(self) -> float:
        value = self._now
        self._now += self._step
        return value


def _frame() -> Frame:
    return Frame(data=np.zeros((4, 4, 3), dtype=np.uint8), height=4, width=4)


def _ready(*sources: DetectionSource) -> None:
    for source in sources:
        source.initialize()


def test_second_result_replaces_first_without_residue() -> None:
    first = [DetectionResult(label="pill", confidence=0.8), DetectionResult(label="cup", confidence=0.7)]
    second = [DetectionResult(label="mouth", confidence=0.9)]
    source = _QueueSource("objects", [first, second, []])
    _ready(source)
    dispatcher = FrameDispatcher({"objects": source}, adaptive=False)

    dispatcher.submit_frame(_frame())
    dispatcher.submit_frame(_frame())
    assert [d.label for d in dispatcher.cache.get("objects")] == ["mouth"]

    dispatcher.submit_frame(_frame())
    assert dispatcher.cache.get("objects") == []
    assert dispatcher.cache.version("objects") == 3


def test_busy_source_drops_new_frames() -> None:
    source = _BlockingSource("pose")
    _ready(source)
    dispatcher = FrameDispatcher.threaded({"pose": source}, adaptive=False)
    try:
        assert dispatcher.submit_frame(_frame()) == ["pose"]
        assert source.entered.wait(timeout=5.0)
        assert dispatcher.is_in_flight("pose")

        assert dispatcher.submit_frame(_frame()) == []
        assert dispatcher.dropped_frames == 1

        source.release.set()
        assert dispatcher.wait_idle(timeout=5.0)
        assert [d.label for d in dispatcher.cache.get("pose")] == ["person"]
        assert source.calls == 1
    finally:
        source.release.set()
        dispatcher.shutdown(wait_for_workers=True)


def test_source_failure_is_logged_and_cached_empty(caplog: pytest.LogCaptureFixture) -> None:
    broken = _ExplodingSource()
    healthy = MockDetectionSource(name="objects")
    _ready(broken, healthy)
    dispatcher = FrameDispatcher({"broken": broken, "objects": healthy}, adaptive=False)
    dispatcher.cache.replace("broken", [DetectionResult(label="stale", confidence=0.9)])

    with caplog.at_level(logging.WARNING):
        accepted = dispatcher.submit_frame(_frame())

    assert accepted == ["broken", "objects"]
    assert dispatcher.cache.get("broken") == []
    assert {d.label for d in dispatcher.cache.get("objects")} == {"pill", "person"}
    assert dispatcher.failed_frames == 1
    assert "broken" in caplog.text
    assert not dispatcher.is_in_flight("broken")


def test_invalid_frame_clears_selected_sources() -> None:
    source = MockDetectionSource(name="objects")
    _ready(source)
    dispatcher = FrameDispatcher({"objects": source}, adaptive=False)
    dispatcher.submit_frame(_frame())

    accepted = dispatcher.submit_frame(Frame(data=b"", height=4, width=4))

    assert accepted == []
    assert dispatcher.cache.get("objects") == []
    assert source.frames_processed == 1


def test_uninitialized_sources_are_skipped() -> None:
    ready = MockDetectionSource(name="objects")
    idle = MockDetectionSource(name="pose")
    ready.initialize()
    dispatcher = FrameDispatcher({"objects": ready, "pose": idle}, adaptive=False)

    assert dispatcher.submit_frame(_frame()) == ["objects"]
    assert idle.frames_processed == 0


def test_selection_limits_sources_and_ignores_unknown_names() -> None:
    objects = MockDetectionSource(name="objects")
    pose = MockDetectionSource(name="pose")
    _ready(objects, pose)
    dispatcher = FrameDispatcher({"objects": objects, "pose": pose}, adaptive=False)

    assert dispatcher.submit_frame(_frame(), ["pose", "face"]) == ["pose"]
    assert objects.frames_processed == 0
    assert pose.frames_processed == 1


def test_slow_sources_raise_the_interval() -> None:
    source = MockDetectionSource(name="objects")
    _ready(source)
    dispatcher = FrameDispatcher({"objects": source}, interval_ms=500.0, clock=_SteppingClock(1.0))

    for _ in range(3):
        dispatcher.submit_frame(_frame())

    assert dispatcher.frame_processing_interval_ms == pytest.approx(1500.0)


def test_fast_sources_lower_the_interval_to_the_floor() -> None:
    source = MockDetectionSource(name="objects")
    _ready(source)
    dispatcher = FrameDispatcher({"objects": source}, interval_ms=500.0, clock=_SteppingClock(0.001))

    for _ in range(3):
        dispatcher.submit_frame(_frame())

    assert dispatcher.frame_processing_interval_ms == pytest.approx(150.0)


def test_interval_setter_is_clamped() -> None:
    dispatcher = FrameDispatcher({}, adaptive=False)

    dispatcher.frame_processing_interval_ms = 10_000
    assert dispatcher.frame_processing_interval_ms == pytest.approx(2000.0)
    dispatcher.frame_processing_interval_ms = 1
    assert dispatcher.frame_processing_interval_ms == pytest.approx(150.0)


def test_shutdown_is_idempotent_and_rejects_frames() -> None:
    source = MockDetectionSource(name="objects")
    _ready(source)
    dispatcher = FrameDispatcher.threaded({"objects": source})

    dispatcher.shutdown(wait_for_workers=True)
    dispatcher.shutdown()

    assert dispatcher.submit_frame(_frame()) == []


def test_shutdown_waits_for_running_frames() -> None:
    source = _BlockingSource("pose")
    _ready(source)
    dispatcher = FrameDispatcher.threaded({"pose": source}, adaptive=False)
    assert dispatcher.submit_frame(_frame()) == ["pose"]
    assert source.entered.wait(timeout=5.0)

    releaser = threading.Timer(0.05, source.release.set)
    releaser.start()
    try:
        dispatcher.shutdown(wait_for_workers=True)
    finally:
        releaser.cancel()
        source.release.set()

    assert not dispatcher.is_in_flight("pose")
    assert [d.label for d in dispatcher.cache.get("pose")] == ["person"]


def test_calculator_waits_for_enough_samples() -> None:
    calculator = AdaptiveIntervalCalculator()
    calculator.add_sample(900.0)
    calculator.add_sample(900.0)

    assert calculator.recommend(500.0) == pytest.approx(500.0)

    calculator.add_sample(900.0)
    assert calculator.recommend(500.0) == pytest.approx(1350.0)


def test_calculator_ignores_small_changes() -> None:
    calculator = AdaptiveIntervalCalculator()
    for _ in range(3):
        calculator.add_sample(360.0)

    assert calculator.recommend(500.0) == pytest.approx(500.0)


def test_calculator_rejects_inverted_bounds() -> None:
    with pytest.raises(ValueError):
        AdaptiveIntervalCalculator(min_interval_ms=500.0, max_interval_ms=100.0)


def test_cache_snapshot_is_read_only_and_detached() -> None:
    cache = DetectionCache(["objects"])
    cache.replace("objects", [DetectionResult(label="pill", confidence=0.9)])

    snapshot = cache.snapshot()
    cache.replace("objects", [])

    assert [d.label for d in snapshot["objects"]] == ["pill"]
    with pytest.raises(TypeError):
        snapshot["objects"] = ()  # type: ignore[index]


@pytest.mark.parametrize(
    "frame",
    [
        Frame(data=None, height=4, width=4),
        Frame(data=b"\x00" * 48, height=0, width=4),
        Frame(data=np.zeros((2, 2, 3), dtype=np.uint8), height=4, width=4),
    ],
)
def test_coerce_frame_rejects_bad_frames(frame: Frame) -> None:
    with pytest.raises(FrameConversionError):
        coerce_frame(frame)


def test_coerce_frame_accepts_raw_bytes() -> None:
    array = coerce_frame(Frame(data=b"\x01" * 48, height=4, width=4))

    assert array.size == 48
