"""Frame dispatcher that routes raw frames to detection sources."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

import numpy as np

from assesscam.engine.types import DetectionResult, Frame
from assesscam.sources.base import DetectionSource
from assesscam.sources.cache import DetectionCache
from assesscam.sources.interval import AdaptiveIntervalCalculator

LOGGER = logging.getLogger(__name__)


class FrameConversionError(ValueError):
    """Raised when upstream frame data is empty or malformed."""


def coerce_frame(frame: Frame) -> np.ndarray:
    """Validate raw frame data and return it as a numpy view."""

    if frame.height <= 0 or frame.width <= 0:
        raise FrameConversionError(f"invalid frame size {frame.width}x{frame.height}")
    data = frame.data
    if data is None:
        raise FrameConversionError("frame has no data")
    if isinstance(data, (bytes, bytearray, memoryview)):
        array = np.frombuffer(data, dtype=np.uint8)
    else:
        array = np.asarray(data)
    if array.size == 0:
        raise FrameConversionError("frame buffer is empty")
    if array.ndim >= 2 and tuple(array.shape[:2]) != (frame.height, frame.width):
        raise FrameConversionError(
            f"frame shape {tuple(array.shape[:2])} does not match {frame.height}x{frame.width}"
        )
    return array


class FrameDispatcher:
    """Routes frames to sources with at most one frame in flight per source.

    Without an executor every source runs synchronously in the caller's
    thread; with one, sources run concurrently and the cache is updated from
    the worker threads.
    """

    def __init__(
        self,
        sources: Mapping[str, DetectionSource],
        *,
        cache: Optional[DetectionCache] = None,
        executor: Optional[Executor] = None,
        interval_ms: float = 500.0,
        calculator: Optional[AdaptiveIntervalCalculator] = None,
        adaptive: bool = True,
        clock: Optional[Callable[[], float]] = None,
        owns_executor: bool = False,
    ) -> None:
        self._sources: Dict[str, DetectionSource] = dict(sources)
        self._cache = cache or DetectionCache(self._sources.keys())
        self._executor = executor
        self._owns_executor = owns_executor
        self._calculator = calculator or AdaptiveIntervalCalculator()
        self._adaptive = adaptive
        self._clock = clock or time.perf_counter
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()
        self._futures: Dict[str, Future] = {}
        self._warned_uninitialized: Set[str] = set()
        self._interval_ms = self._calculator.clamp(interval_ms)
        self._closed = False
        self.frames_submitted = 0
        self.dropped_frames = 0
        self.failed_frames = 0

    @classmethod
    def threaded(
        cls,
        sources: Mapping[str, DetectionSource],
        *,
        max_workers: Optional[int] = None,
        **kwargs,
    ) -> "FrameDispatcher":
        workers = max_workers or max(1, len(sources))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="assesscam-source")
        return cls(sources, executor=executor, owns_executor=True, **kwargs)

    @property
    def cache(self) -> DetectionCache:
        return self._cache

    @property
    def sources(self) -> Mapping[str, DetectionSource]:
        return dict(self._sources)

    @property
    def frame_processing_interval_ms(self) -> float:
        return self._interval_ms

    @frame_processing_interval_ms.setter
    def frame_processing_interval_ms(self, value: float) -> None:
        self._interval_ms = self._calculator.clamp(value)

    @property
    def calculator(self) -> AdaptiveIntervalCalculator:
        return self._calculator

    def is_in_flight(self, name: str) -> bool:
        with self._lock:
            return name in self._in_flight

    def submit_frame(self, frame: Frame, sources: Optional[Iterable[str]] = None) -> List[str]:
        """Hand a frame to the selected sources; returns the names that accepted it."""

        if self._closed:
            return []
        selected = self._select(sources)
        self.frames_submitted += 1
        try:
            coerce_frame(frame)
        except FrameConversionError as exc:
            LOGGER.debug("Treating invalid frame as empty: %s", exc)
            for name in selected:
                self._cache.replace(name, [])
            return []

        accepted: List[str] = []
        for name in selected:
            source = self._sources[name]
            if not source.is_initialized:
                if name not in self._warned_uninitialized:
                    LOGGER.warning("Skipping detection source '%s'; it is not initialized", name)
                    self._warned_uninitialized.add(name)
                continue
            with self._lock:
                if name in self._in_flight:
                    self.dropped_frames += 1
                    continue
                self._in_flight.add(name)
            accepted.append(name)
            if self._executor is None:
                self._run(name, source, frame)
                continue
            try:
                future = self._executor.submit(self._run, name, source, frame)
            except RuntimeError as exc:
                LOGGER.debug("Executor rejected frame for '%s': %s", name, exc)
                with self._lock:
                    self._in_flight.discard(name)
                accepted.remove(name)
                continue
            with self._lock:
                if name in self._in_flight:
                    self._futures[name] = future
        return accepted

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until in-flight work finishes; returns False on timeout."""

        with self._lock:
            pending = list(self._futures.values())
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, *, wait_for_workers: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            pending = list(self._futures.values())
            self._futures.clear()
        running = [future for future in pending if not future.cancel()]
        if wait_for_workers and running:
            wait(running)
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=wait_for_workers, cancel_futures=True)

    def _select(self, sources: Optional[Iterable[str]]) -> List[str]:
        if sources is None:
            return list(self._sources)
        selected: List[str] = []
        for name in sources:
            if name not in self._sources:
                LOGGER.debug("No detection source registered as '%s'", name)
                continue
            if name not in selected:
                selected.append(name)
        return selected

    def _run(self, name: str, source: DetectionSource, frame: Frame) -> None:
        started = self._clock()
        try:
            detections: List[DetectionResult] = list(
                source.process_frame(frame.data, frame.height, frame.width) or []
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            LOGGER.warning("Detection source '%s' failed: %s", name, exc)
            detections = []
            with self._lock:
                self.failed_frames += 1
        try:
            self._cache.replace(name, detections)
            self._record_latency((self._clock() - started) * 1000.0)
        finally:
            with self._lock:
                self._in_flight.discard(name)
                self._futures.pop(name, None)

    def _record_latency(self, latency_ms: float) -> None:
        self._calculator.add_sample(latency_ms)
        if not self._adaptive:
            return
        current = self._interval_ms
        recommended = self._calculator.recommend(current)
        if recommended != current:
            LOGGER.debug(
                "Adjusting frame interval %.0fms -> %.0fms (avg latency %.1fms)",
                current,
                recommended,
                self._calculator.average_latency_ms,
            )
            self._interval_ms = recommended


__all__ = ["FrameConversionError", "FrameDispatcher", "coerce_frame"]
