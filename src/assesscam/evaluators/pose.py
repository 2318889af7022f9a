"""Pose-landmark evaluators and the chair-stand repetition analysis.

Pose sources report each body landmark as a detection whose label is the
landmark name (``left_hip``, ``right_knee`` ...) and whose box origin is the
normalized landmark position.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Protocol, Sequence

import numpy as np

from assesscam.engine.types import DetectionBox, DetectionSnapshot, Step
from assesscam.evaluators.base import Debouncer, StepEvaluator, iter_detections

LOGGER = logging.getLogger(__name__)

TRACKED_LANDMARKS = (
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_shoulder",
    "right_shoulder",
    "left_ankle",
    "right_ankle",
)
CHAIR_STAND_LANDMARKS = (
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_shoulder",
    "right_shoulder",
)
_HIP_KNEE = ("left_hip", "right_hip", "left_knee", "right_knee")

SIT_TO_STAND_DEG = 125.0
STAND_TO_SIT_DEG = 120.0
ANGLE_CHANGE_DEG = 2.0
PHASE_WINDOW = 10
MIN_PHASE_HISTORY = 6
SMOOTHNESS_WINDOW = 10

SITTING = "sitting"
SIT_TO_STAND = "sit_to_stand"
STANDING = "standing"
STAND_TO_SIT = "stand_to_sit"
TRANSITIONING = "transitioning"
INVALID = "invalid"
_CYCLE = (SITTING, SIT_TO_STAND, STANDING, STAND_TO_SIT)


def extract_landmarks(snapshot: DetectionSnapshot, step: Step) -> Dict[str, DetectionBox]:
    landmarks: Dict[str, DetectionBox] = {}
    for detection in iter_detections(snapshot, step):
        if detection.label in TRACKED_LANDMARKS:
            landmarks[detection.label] = detection.box
    return landmarks


class LandmarkPresenceEvaluator(StepEvaluator):
    """Met when every required landmark is visible."""

    def __init__(self, required: Sequence[str] = CHAIR_STAND_LANDMARKS) -> None:
        self._required = tuple(required)

    def missing(self, snapshot: DetectionSnapshot, step: Step) -> List[str]:
        landmarks = extract_landmarks(snapshot, step)
        return [name for name in self._required if name not in landmarks]

    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        return not self.missing(snapshot, step)


@dataclass(frozen=True)
class RepetitionUpdate:
    hip_angle: float
    phase: str
    completed_repetitions: int
    rep_detected: bool

    @classmethod
    def invalid(cls, completed: int = 0) -> "RepetitionUpdate":
        return cls(hip_angle=0.0, phase=INVALID, completed_repetitions=completed, rep_detected=False)


@dataclass
class RepetitionMetrics:
    completed_repetitions: int = 0
    total_time_s: float = 0.0
    repetition_times_s: List[float] = field(default_factory=list)
    movement_smoothness: float = 0.0

    @property
    def average_repetition_time_s(self) -> float:
        if not self.repetition_times_s:
            return 0.0
        return float(np.mean(self.repetition_times_s))


class RepetitionSignal(Protocol):
    def update(self, landmarks: Dict[str, DetectionBox], timestamp: float) -> RepetitionUpdate:
        ...

    def metrics(self) -> RepetitionMetrics:
        ...

    def reset(self) -> None:
        ...


class RepetitionCounter:
    """Counts sit-stand-sit cycles from a stream of hip/knee/shoulder landmarks."""

    def __init__(self) -> None:
        self._angles: Deque[float] = deque(maxlen=SMOOTHNESS_WINDOW + 1)
        self._phases: Deque[str] = deque(maxlen=64)
        self._completed = 0
        self._first_ts: Optional[float] = None
        self._rep_start_ts: Optional[float] = None
        self._rep_times: List[float] = []
        self._total_time = 0.0
        self._smoothness = 0.0

    def update(self, landmarks: Dict[str, DetectionBox], timestamp: float) -> RepetitionUpdate:
        if any(name not in landmarks for name in _HIP_KNEE):
            return RepetitionUpdate.invalid(self._completed)
        angle = hip_angle(landmarks)
        if angle is None:
            return RepetitionUpdate.invalid(self._completed)

        previous = self._angles[-1] if self._angles else angle
        self._angles.append(angle)
        phase = classify_phase(angle, previous)
        self._phases.append(phase)
        detected = self._detect_repetition(phase, timestamp)
        self._update_timing(timestamp)
        LOGGER.debug("hip_angle=%.1f previous=%.1f phase=%s", angle, previous, phase)
        return RepetitionUpdate(
            hip_angle=angle,
            phase=phase,
            completed_repetitions=self._completed,
            rep_detected=detected,
        )

    def metrics(self) -> RepetitionMetrics:
        return RepetitionMetrics(
            completed_repetitions=self._completed,
            total_time_s=self._total_time,
            repetition_times_s=list(self._rep_times),
            movement_smoothness=self._smoothness,
        )

    def reset(self) -> None:
        self._angles.clear()
        self._phases.clear()
        self._completed = 0
        self._first_ts = None
        self._rep_start_ts = None
        self._rep_times.clear()
        self._total_time = 0.0
        self._smoothness = 0.0

    def _detect_repetition(self, phase: str, timestamp: float) -> bool:
        if len(self._phases) < MIN_PHASE_HISTORY or phase != SITTING:
            return False
        recent = set(list(self._phases)[-PHASE_WINDOW:])
        if not all(name in recent for name in _CYCLE):
            return False
        self._completed += 1
        if self._rep_start_ts is not None:
            self._rep_times.append(max(0.0, timestamp - self._rep_start_ts))
        self._rep_start_ts = timestamp
        LOGGER.debug("Counted repetition #%d at %.3f", self._completed, timestamp)
        # Forget the cycle so it cannot be counted twice.
        self._phases.clear()
        return True

    def _update_timing(self, timestamp: float) -> None:
        if self._first_ts is None:
            self._first_ts = timestamp
        self._total_time = max(0.0, timestamp - self._first_ts)
        if len(self._angles) > SMOOTHNESS_WINDOW:
            recent = np.asarray(list(self._angles)[-SMOOTHNESS_WINDOW:], dtype=float)
            variance = float(np.var(recent))
            self._smoothness = 1.0 - float(np.clip(variance / 1000.0, 0.0, 1.0))


def hip_angle(landmarks: Dict[str, DetectionBox]) -> Optional[float]:
    """Approximate hip flexion (90 sitting .. 180 standing) from landmark heights."""

    try:
        hip_y = (landmarks["left_hip"].y + landmarks["right_hip"].y) / 2.0
        knee_y = (landmarks["left_knee"].y + landmarks["right_knee"].y) / 2.0
    except KeyError:
        return None
    shoulder_y = hip_y - 0.2
    left_shoulder = landmarks.get("left_shoulder")
    right_shoulder = landmarks.get("right_shoulder")
    if left_shoulder is not None and right_shoulder is not None:
        shoulder_y = (left_shoulder.y + right_shoulder.y) / 2.0

    torso = abs(hip_y - shoulder_y)
    if torso == 0:
        return None
    ratio = abs(knee_y - hip_y) / torso
    return 90.0 + float(np.clip(ratio * 90.0, 0.0, 90.0))


def classify_phase(angle: float, previous: float) -> str:
    change = angle - previous
    if angle > SIT_TO_STAND_DEG:
        return SIT_TO_STAND if change > ANGLE_CHANGE_DEG else STANDING
    if angle < STAND_TO_SIT_DEG:
        return STAND_TO_SIT if change < -ANGLE_CHANGE_DEG else SITTING
    if change > ANGLE_CHANGE_DEG:
        return SIT_TO_STAND
    if change < -ANGLE_CHANGE_DEG:
        return STAND_TO_SIT
    return TRANSITIONING


class RepetitionEvaluator(StepEvaluator):
    """Turns debounced repetition events into hits, one per physical repetition.

    Reported metrics count only the repetitions the debouncer accepted, so they
    agree with the step's hit count.
    """

    def __init__(
        self,
        counter: Optional[RepetitionSignal] = None,
        *,
        debounce_ms: float = 500.0,
    ) -> None:
        self._counter: RepetitionSignal = counter or RepetitionCounter()
        self._debouncer = Debouncer(debounce_ms)
        self._accepted: List[float] = []

    @property
    def counter(self) -> RepetitionSignal:
        return self._counter

    @property
    def debounce_ms(self) -> float:
        return self._debouncer.window_ms

    def reset(self) -> None:
        self._counter.reset()
        self._debouncer.reset()
        self._accepted.clear()

    def metrics(self) -> Dict[str, object]:
        signal = self._counter.metrics()
        intervals = np.diff(np.asarray(self._accepted, dtype=float)) if len(self._accepted) > 1 else []
        return {
            "repetitions": RepetitionMetrics(
                completed_repetitions=len(self._accepted),
                total_time_s=signal.total_time_s,
                repetition_times_s=[float(value) for value in intervals],
                movement_smoothness=signal.movement_smoothness,
            )
        }

    def evaluate(self, snapshot: DetectionSnapshot, step: Step, now: float) -> bool:
        landmarks = extract_landmarks(snapshot, step)
        if not landmarks:
            return False
        update = self._counter.update(landmarks, now)
        if not update.rep_detected:
            return False
        if not self._debouncer.accept(now):
            LOGGER.debug("Suppressed repetition event inside %.0fms debounce window", self.debounce_ms)
            return False
        self._accepted.append(now)
        return True


__all__ = [
    "CHAIR_STAND_LANDMARKS",
    "LandmarkPresenceEvaluator",
    "RepetitionCounter",
    "RepetitionEvaluator",
    "RepetitionMetrics",
    "RepetitionSignal",
    "RepetitionUpdate",
    "TRACKED_LANDMARKS",
    "classify_phase",
    "extract_landmarks",
    "hip_angle",
]
