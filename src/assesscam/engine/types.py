"""Shared dataclasses and enums used across sources, evaluators, and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


class DetectionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"


class EvaluatorKind(str, Enum):
    ANY_DETECTION = "ANY_DETECTION"
    LABEL = "LABEL"
    COMPOSITE = "COMPOSITE"
    LANDMARKS = "LANDMARKS"
    REPETITION = "REPETITION"
    CONSTANT = "CONSTANT"


class StepOutcome(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    TIMED_OUT = "TIMED_OUT"


class RunState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class DetectionBox:
    """Normalized bounding box, all values in [0, 1]."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectionBox":
        return cls(
            x=float(data.get("x", 0.0) or 0.0),
            y=float(data.get("y", 0.0) or 0.0),
            width=float(data.get("width", 0.0) or 0.0),
            height=float(data.get("height", 0.0) or 0.0),
        )


_SENTINEL_BOX = DetectionBox(x=0.5, y=0.5, width=0.1, height=0.1)


@dataclass(frozen=True)
class DetectionResult:
    label: str
    confidence: float
    box: DetectionBox = _SENTINEL_BOX
    status: DetectionStatus = DetectionStatus.SUCCESS

    def __post_init__(self) -> None:
        clamped = min(1.0, max(0.0, float(self.confidence)))
        object.__setattr__(self, "confidence", clamped)

    @classmethod
    def error(cls, source: str, message: str) -> "DetectionResult":
        return cls(label=f"{source} Error: {message}", confidence=0.0, status=DetectionStatus.FAILURE)

    @classmethod
    def warning(cls, source: str, message: str) -> "DetectionResult":
        return cls(label=f"{source} Warning: {message}", confidence=0.0, status=DetectionStatus.WARNING)

    @property
    def is_error(self) -> bool:
        return self.status is DetectionStatus.FAILURE or "Error:" in self.label

    @property
    def is_warning(self) -> bool:
        return self.status is DetectionStatus.WARNING or "Warning:" in self.label

    @property
    def is_sentinel(self) -> bool:
        return self.is_error or self.is_warning

    def to_dict(self) -> Dict[str, object]:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "box": self.box.to_dict(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectionResult":
        box_block = data.get("box") or {}
        if not isinstance(box_block, Mapping):
            raise ValueError("detection 'box' must be a mapping")
        status_value = data.get("status", DetectionStatus.SUCCESS.value)
        return cls(
            label=str(data.get("label", "")),
            confidence=float(data.get("confidence", 0.0) or 0.0),
            box=DetectionBox.from_dict(box_block),
            status=DetectionStatus(status_value),
        )


@dataclass(frozen=True)
class Frame:
    """Opaque raw frame handed to detection sources."""

    data: Any
    height: int
    width: int
    timestamp: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Step:
    """Immutable description of one assessment stage."""

    label: str
    target_condition: str
    evaluator: EvaluatorKind = EvaluatorKind.LABEL
    sources: Tuple[str, ...] = ("objects",)
    instruction_ref: Optional[str] = None
    instruction_text: Optional[str] = None
    max_duration_seconds: Optional[float] = 10.0
    confidence_threshold: float = 0.5
    required_hit_count: int = 1
    frame_interval_ms: float = 500.0

    def __post_init__(self) -> None:
        if not self.label.strip():
            raise ValueError("Step label must be a non-empty string")
        if isinstance(self.sources, str):
            object.__setattr__(self, "sources", (self.sources,))
        else:
            object.__setattr__(self, "sources", tuple(self.sources))
        if not self.sources:
            raise ValueError(f"Step '{self.label}' must read from at least one source")
        if self.required_hit_count < 0:
            raise ValueError(f"Step '{self.label}' required_hit_count must be >= 0")
        if self.max_duration_seconds is not None and self.max_duration_seconds <= 0:
            raise ValueError(f"Step '{self.label}' max_duration_seconds must be > 0 or None")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(f"Step '{self.label}' confidence_threshold must be within [0, 1]")
        if self.frame_interval_ms <= 0:
            raise ValueError(f"Step '{self.label}' frame_interval_ms must be > 0")

    @property
    def is_timed(self) -> bool:
        return self.max_duration_seconds is not None

    @property
    def required_hits(self) -> int:
        # A zero quota still needs one confirming hit.
        return max(1, self.required_hit_count)


@dataclass
class StepProgress:
    hit_count: int = 0
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    is_active: bool = False
    outcome: StepOutcome = StepOutcome.PENDING

    @property
    def is_done(self) -> bool:
        return self.outcome is not StepOutcome.PENDING

    def elapsed(self, now: Optional[float] = None) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.ended_at if self.ended_at is not None else now
        if end is None:
            return None
        return max(0.0, end - self.started_at)


DetectionSnapshot = Mapping[str, Sequence[DetectionResult]]


__all__ = [
    "DetectionBox",
    "DetectionResult",
    "DetectionSnapshot",
    "DetectionStatus",
    "EvaluatorKind",
    "Frame",
    "RunState",
    "Step",
    "StepOutcome",
    "StepProgress",
]
