"""Presence-based evaluators for object detector output.

Covers the three detection-only cases used by the catalog:

- any usable detection at all (camera/setup validation),
- a single label at or above the step's confidence threshold,
- combinations of label groups that must be jointly present or absent,
  used by the medication-adherence steps where absence of the pill is the
  success criterion.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Mapping, Optional, Set, Tuple

from assesscam.engine.types import DetectionSnapshot, Step
from assesscam.evaluators.base import StepEvaluator, iter_detections


def _normalize(label: str) -> str:
    return label.strip().lower()


def confident_labels(snapshot: DetectionSnapshot, step: Step) -> Set[str]:
    """Labels seen at or above the step threshold across the step's sources."""

    threshold = step.confidence_threshold
    return {
        _normalize(detection.label)
        for detection in iter_detections(snapshot, step)
        if detection.confidence >= threshold
    }


class AnyDetectionEvaluator(StepEvaluator):
    """Met when any source of the step produced a usable detection."""

    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        return any(True for _ in iter_detections(snapshot, step))


class LabelThresholdEvaluator(StepEvaluator):
    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        target = _normalize(step.target_condition)
        return target in confident_labels(snapshot, step)


@dataclass(frozen=True)
class PresenceRule:
    """Each entry of ``all_of`` is a group of alternative labels that must be
    present; no label of any ``none_of`` group may be present. A rule with
    no ``all_of`` group never matches."""

    all_of: Tuple[FrozenSet[str], ...] = ()
    none_of: Tuple[FrozenSet[str], ...] = ()

    @classmethod
    def build(
        cls,
        all_of: Iterable[Iterable[str]] = (),
        none_of: Iterable[Iterable[str]] = (),
    ) -> "PresenceRule":
        return cls(
            all_of=tuple(frozenset(_normalize(label) for label in group) for group in all_of),
            none_of=tuple(frozenset(_normalize(label) for label in group) for group in none_of),
        )

    def matches(self, labels: Set[str]) -> bool:
        for group in self.all_of:
            if not group & labels:
                return False
        for group in self.none_of:
            if group & labels:
                return False
        return bool(self.all_of)


class CompositePresenceEvaluator(StepEvaluator):
    """Looks up a PresenceRule by target condition; falls back to a plain label match."""

    def __init__(self, rules: Mapping[str, PresenceRule]) -> None:
        self._rules = {_normalize(key): rule for key, rule in rules.items()}

    def rule_for(self, target_condition: str) -> Optional[PresenceRule]:
        return self._rules.get(_normalize(target_condition))

    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        labels = confident_labels(snapshot, step)
        rule = self.rule_for(step.target_condition)
        if rule is None:
            return _normalize(step.target_condition) in labels
        return rule.matches(labels)


class ConstantEvaluator(StepEvaluator):
    """Always returns the same decision; used for passive analysis steps."""

    def __init__(self, value: bool = True) -> None:
        self._value = value

    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        return self._value


__all__ = [
    "AnyDetectionEvaluator",
    "CompositePresenceEvaluator",
    "ConstantEvaluator",
    "LabelThresholdEvaluator",
    "PresenceRule",
    "confident_labels",
]
