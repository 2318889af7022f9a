"""Test orchestrator: the step state machine driving a guided assessment."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from assesscam.engine.types import (
    DetectionResult,
    EvaluatorKind,
    Frame,
    RunState,
    Step,
    StepOutcome,
    StepProgress,
)
from assesscam.evaluators.base import StepEvaluator
from assesscam.results.aggregator import ResultSummary, aggregate_results
from assesscam.sources.base import SourceInitError
from assesscam.sources.dispatcher import FrameDispatcher

LOGGER = logging.getLogger(__name__)


def _default_now() -> float:
    return time.monotonic()


class TestEventType(str, Enum):
    __test__ = False

    TEST_UPDATED = "test_updated"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    TEST_COMPLETED = "test_completed"
    TEST_STOPPED = "test_stopped"


@dataclass(frozen=True)
class TestEvent:
    __test__ = False

    event_type: TestEventType
    timestamp: Optional[float]
    step_index: Optional[int]
    step_label: Optional[str]
    details: Dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> Optional[bool]:
        value = self.details.get("success")
        return value if isinstance(value, bool) else None


TestListener = Callable[[TestEvent], None]


class CallbackListener:
    """Adapts the event channel to plain update/step/complete callbacks."""

    def __init__(
        self,
        *,
        on_test_update: Optional[Callable[[], None]] = None,
        on_step_complete: Optional[Callable[[bool], None]] = None,
        on_test_complete: Optional[Callable[[], None]] = None,
        on_test_stopped: Optional[Callable[[], None]] = None,
    ) -> None:
        self._on_test_update = on_test_update
        self._on_step_complete = on_step_complete
        self._on_test_complete = on_test_complete
        self._on_test_stopped = on_test_stopped

    def __call__(self, event: TestEvent) -> None:
        if event.event_type is TestEventType.TEST_UPDATED and self._on_test_update:
            self._on_test_update()
        elif event.event_type is TestEventType.STEP_COMPLETED and self._on_step_complete:
            self._on_step_complete(bool(event.success))
        elif event.event_type is TestEventType.TEST_COMPLETED and self._on_test_complete:
            self._on_test_complete()
        elif event.event_type is TestEventType.TEST_STOPPED and self._on_test_stopped:
            self._on_test_stopped()


@dataclass(frozen=True)
class InitializationReport:
    ready: Tuple[str, ...]
    failed: Mapping[str, SourceInitError]
    blocked_steps: Tuple[str, ...]

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.ready


class TestOrchestrator:
    """Sequences steps, counts hits per tick, and emits lifecycle events.

    Every public operation takes one re-entrant lock, so ``stop_test`` may be
    called from any thread while frames are being processed.
    """

    __test__ = False

    def __init__(
        self,
        steps: Sequence[Step],
        evaluator: StepEvaluator,
        dispatcher: FrameDispatcher,
        callback: Optional[TestListener] = None,
        *,
        now_fn: Optional[Callable[[], float]] = None,
        test_type: Optional[str] = None,
    ) -> None:
        self._steps: Tuple[Step, ...] = tuple(steps)
        self._evaluator = evaluator
        self._dispatcher = dispatcher
        self._listeners: List[TestListener] = [callback] if callback else []
        self._now = now_fn or _default_now
        self._test_type = test_type
        self._lock = threading.RLock()
        self._state = RunState.NOT_STARTED
        self._index = 0
        self._progress: List[StepProgress] = [StepProgress() for _ in self._steps]
        self._report: Optional[InitializationReport] = None
        self._disposed = False

    # ------------------------------------------------------------------
    # Lifecycle

    def subscribe(self, listener: TestListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def initialize(self) -> InitializationReport:
        """Initialize every detection source and report which ones failed."""

        with self._lock:
            if self._disposed:
                raise RuntimeError("orchestrator has been disposed")
            ready: List[str] = []
            failed: Dict[str, SourceInitError] = {}
            for name, source in self._dispatcher.sources.items():
                try:
                    source.initialize()
                except SourceInitError as exc:
                    LOGGER.error("Detection source '%s' failed to initialize: %s", name, exc)
                    failed[name] = exc
                    continue
                ready.append(name)
            blocked = tuple(
                step.label for step in self._steps if self._is_blocked(step, ready)
            )
            for label in blocked:
                LOGGER.warning("Step '%s' has no initialized detection source and cannot succeed", label)
            self._report = InitializationReport(ready=tuple(ready), failed=failed, blocked_steps=blocked)
            return self._report

    def start_test(self, now: Optional[float] = None) -> None:
        with self._lock:
            if self._disposed:
                return
            if self._report is None:
                raise RuntimeError("initialize() must be called before start_test()")
            if self._report.all_failed:
                raise RuntimeError("every detection source failed to initialize")
            if self._state in (RunState.RUNNING, RunState.COMPLETE):
                LOGGER.debug("start_test ignored in state %s", self._state.value)
                return
            timestamp = self._resolve(now)
            self._evaluator.reset()
            self._progress = [StepProgress() for _ in self._steps]
            self._index = 0
            self._state = RunState.RUNNING
            LOGGER.info("Test started (type=%s steps=%d)", self._test_type, len(self._steps))
            if not self._steps:
                self._state = RunState.COMPLETE
                self._emit(TestEventType.TEST_UPDATED, timestamp, None, {"reason": "started"})
                self._emit(TestEventType.TEST_COMPLETED, timestamp, None, {})
                return
            self._activate(0, timestamp)
            self._emit(TestEventType.TEST_UPDATED, timestamp, 0, {"reason": "started"})
            self._emit_step_started(0, timestamp)

    def stop_test(self, now: Optional[float] = None) -> bool:
        """Halt evaluation; the run becomes STOPPED and can be restarted cleanly."""

        return self._stop(now, forced=False)

    def force_stop_test(self, now: Optional[float] = None) -> bool:
        return self._stop(now, forced=True)

    def reset_test(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._evaluator.reset()
            self._progress = [StepProgress() for _ in self._steps]
            self._index = 0
            self._state = RunState.NOT_STARTED
            self._emit(TestEventType.TEST_UPDATED, None, None, {"reason": "reset"})

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            if self._state is RunState.RUNNING:
                self._state = RunState.STOPPED
                self._progress[self._index].is_active = False
            self._listeners.clear()
        # Sources are torn down only after their in-flight frames finish.
        self._dispatcher.shutdown(wait_for_workers=True)
        for name, source in self._dispatcher.sources.items():
            try:
                source.dispose()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                LOGGER.warning("Failed to dispose detection source '%s': %s", name, exc)

    # ------------------------------------------------------------------
    # Frame and tick processing

    def process_frame(self, frame: Frame, now: Optional[float] = None) -> bool:
        """Route a frame to the current step's sources, then run one tick."""

        with self._lock:
            if self._disposed or self._state is not RunState.RUNNING:
                return False
            step = self._steps[self._index]
            selection = step.sources
        accepted = self._dispatcher.submit_frame(frame, selection)
        met = self.tick(now)
        with self._lock:
            if not self._disposed:
                self._emit(
                    TestEventType.TEST_UPDATED,
                    now,
                    self._current_index_or_none(),
                    {"reason": "detections", "sources": list(accepted)},
                )
        return met

    def tick(self, now: Optional[float] = None) -> bool:
        """Evaluate the active step once against the latest detections."""

        with self._lock:
            if self._disposed or self._state is not RunState.RUNNING:
                return False
            index = self._index
            step = self._steps[index]
            progress = self._progress[index]
            if not progress.is_active:
                return False
            timestamp = self._resolve(now)
            if progress.started_at is None:
                progress.started_at = timestamp

            met = self._evaluate(step, timestamp)
            if met:
                progress.hit_count += 1
                self._emit(
                    TestEventType.TEST_UPDATED,
                    timestamp,
                    index,
                    {
                        "reason": "hit",
                        "hit_count": progress.hit_count,
                        "required_hits": step.required_hits,
                    },
                )

            # Reaching the quota wins over a timer that expires on the same tick.
            if progress.hit_count >= step.required_hits:
                self._finish_step(index, StepOutcome.SUCCESS, timestamp)
            elif step.is_timed and timestamp - progress.started_at >= float(step.max_duration_seconds):
                self._finish_step(index, StepOutcome.TIMED_OUT, timestamp)
            return met

    # ------------------------------------------------------------------
    # Read-only accessors

    @property
    def test_steps(self) -> Tuple[Step, ...]:
        return self._steps

    @property
    def test_type(self) -> Optional[str]:
        return self._test_type

    @property
    def current_step_index(self) -> int:
        with self._lock:
            return self._index

    @property
    def current_step(self) -> Optional[Step]:
        with self._lock:
            if self._index < len(self._steps):
                return self._steps[self._index]
            return None

    @property
    def run_state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.run_state is RunState.RUNNING

    @property
    def is_complete(self) -> bool:
        return self.run_state is RunState.COMPLETE

    @property
    def initialization_report(self) -> Optional[InitializationReport]:
        return self._report

    @property
    def frame_processing_interval_ms(self) -> float:
        return self._dispatcher.frame_processing_interval_ms

    def get_detections(self, source: str) -> List[DetectionResult]:
        return self._dispatcher.cache.get(source)

    def progress(self, index: int) -> StepProgress:
        with self._lock:
            return replace(self._progress[index])

    def snapshot(self) -> List[StepProgress]:
        with self._lock:
            return [replace(progress) for progress in self._progress]

    def get_results(self, now: Optional[float] = None) -> ResultSummary:
        with self._lock:
            return aggregate_results(
                self._steps,
                [replace(progress) for progress in self._progress],
                test_type=self._test_type,
                run_state=self._state,
                metrics=self._evaluator.metrics(),
                now=now,
            )

    # ------------------------------------------------------------------
    # Internals

    def _stop(self, now: Optional[float], *, forced: bool) -> bool:
        with self._lock:
            if self._disposed or self._state is not RunState.RUNNING:
                return False
            timestamp = self._resolve(now)
            progress = self._progress[self._index]
            progress.is_active = False
            if progress.started_at is not None:
                progress.ended_at = timestamp
            self._state = RunState.STOPPED
            LOGGER.info(
                "Test %s at step %d",
                "force-stopped" if forced else "stopped",
                self._index,
            )
            self._emit(TestEventType.TEST_STOPPED, timestamp, self._index, {"forced": forced})
            self._emit(TestEventType.TEST_UPDATED, timestamp, self._index, {"reason": "stopped"})
            return True

    def _activate(self, index: int, timestamp: Optional[float]) -> None:
        step = self._steps[index]
        progress = self._progress[index]
        progress.is_active = True
        progress.started_at = timestamp
        self._dispatcher.frame_processing_interval_ms = step.frame_interval_ms

    def _finish_step(self, index: int, outcome: StepOutcome, timestamp: float) -> None:
        step = self._steps[index]
        progress = self._progress[index]
        progress.is_active = False
        progress.outcome = outcome
        progress.ended_at = timestamp
        success = outcome is StepOutcome.SUCCESS
        LOGGER.info(
            "Step %d '%s' %s (hits=%d/%d elapsed=%.2fs)",
            index,
            step.label,
            outcome.value,
            progress.hit_count,
            step.required_hits,
            progress.elapsed() or 0.0,
        )

        next_index = index + 1
        finished = next_index >= len(self._steps)
        self._index = next_index
        if finished:
            self._state = RunState.COMPLETE
        else:
            # The next step's timer starts on the first tick that evaluates it.
            self._activate(next_index, None)

        self._emit(TestEventType.TEST_UPDATED, timestamp, index, {"reason": "step_completed"})
        self._emit(
            TestEventType.STEP_COMPLETED,
            timestamp,
            index,
            {"success": success, "outcome": outcome.value, "hit_count": progress.hit_count},
        )
        if finished:
            LOGGER.info("Test complete (type=%s)", self._test_type)
            self._emit(TestEventType.TEST_COMPLETED, timestamp, None, {})
        else:
            self._emit_step_started(next_index, timestamp)

    def _evaluate(self, step: Step, timestamp: float) -> bool:
        snapshot = self._dispatcher.cache.snapshot()
        try:
            return bool(self._evaluator.evaluate(snapshot, step, timestamp))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            LOGGER.error("Evaluator error on step '%s': %s", step.label, exc)
            return False

    def _emit_step_started(self, index: int, timestamp: Optional[float]) -> None:
        step = self._steps[index]
        self._emit(
            TestEventType.STEP_STARTED,
            timestamp,
            index,
            {
                "instruction_ref": step.instruction_ref,
                "instruction_text": step.instruction_text,
                "required_hits": step.required_hits,
                "max_duration_seconds": step.max_duration_seconds,
            },
        )

    def _emit(
        self,
        event_type: TestEventType,
        timestamp: Optional[float],
        step_index: Optional[int],
        details: Dict[str, object],
    ) -> None:
        if self._disposed:
            return
        label = None
        if step_index is not None and step_index < len(self._steps):
            label = self._steps[step_index].label
        event = TestEvent(
            event_type=event_type,
            timestamp=timestamp,
            step_index=step_index,
            step_label=label,
            details=dict(details),
        )
        for listener in list(self._listeners):
            listener(event)

    def _current_index_or_none(self) -> Optional[int]:
        if self._index < len(self._steps):
            return self._index
        return None

    def _is_blocked(self, step: Step, ready: Sequence[str]) -> bool:
        if step.evaluator is EvaluatorKind.CONSTANT:
            return False
        return not any(name in ready for name in step.sources)

    def _resolve(self, now: Optional[float]) -> float:
        return float(now) if now is not None else self._now()


__all__ = [
    "CallbackListener",
    "InitializationReport",
    "TestEvent",
    "TestEventType",
    "TestListener",
    "TestOrchestrator",
]
