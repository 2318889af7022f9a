"""Evaluator base classes deciding whether a step's condition holds on a tick."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterator, Mapping, Optional

from assesscam.engine.types import DetectionResult, DetectionSnapshot, EvaluatorKind, Step


class EvaluatorError(RuntimeError):
    """Raised when an evaluator cannot compute a decision for a tick."""


class StepEvaluator(ABC):
    """Pure decision function over (cache snapshot, step, private state)."""

    def reset(self) -> None:
        """Clear private state; called when a run starts or is reset."""

    def metrics(self) -> Dict[str, object]:
        """Analysis results worth reporting alongside the step outcomes."""

        return {}

    @abstractmethod
    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        """Return True when the step's condition is met on this tick."""


class Debouncer:
    """Accepts an event only if the previous accepted one is old enough."""

    def __init__(self, window_ms: float = 500.0) -> None:
        if window_ms < 0:
            raise ValueError("debounce window must be >= 0")
        self.window_ms = float(window_ms)
        self._last_accepted: Optional[float] = None

    def accept(self, now: float) -> bool:
        if self._last_accepted is not None:
            elapsed_ms = (now - self._last_accepted) * 1000.0
            if elapsed_ms < self.window_ms:
                return False
        self._last_accepted = now
        return True

    def reset(self) -> None:
        self._last_accepted = None


def iter_detections(snapshot: DetectionSnapshot, step: Step) -> Iterator[DetectionResult]:
    """Yield usable detections from every source the step reads."""

    for name in step.sources:
        for detection in snapshot.get(name, ()):
            if detection.is_sentinel:
                continue
            yield detection


class EvaluatorSuite(StepEvaluator):
    """Dispatches each step to the strategy registered for its evaluator tag."""

    def __init__(self, strategies: Mapping[EvaluatorKind, StepEvaluator]) -> None:
        self._strategies = dict(strategies)

    def strategy_for(self, kind: EvaluatorKind) -> StepEvaluator:
        try:
            return self._strategies[kind]
        except KeyError as exc:
            raise EvaluatorError(f"No evaluator registered for {kind.value}") from exc

    def reset(self) -> None:
        for strategy in self._strategies.values():
            strategy.reset()

    def metrics(self) -> Dict[str, object]:
        merged: Dict[str, object] = {}
        for strategy in self._strategies.values():
            merged.update(strategy.metrics())
        return merged

    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        return self.strategy_for(step.evaluator).evaluate(snapshot, step, now)


__all__ = ["Debouncer", "EvaluatorError", "EvaluatorSuite", "StepEvaluator", "iter_detections"]
