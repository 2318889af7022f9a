"""SPPB chair-stand scoring derived from repetition metrics."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List

from assesscam.evaluators.pose import RepetitionMetrics

# Upper bounds (seconds) for scores 4, 3, 2 and 1.
SCORE_THRESHOLDS_S = (11.19, 13.69, 16.69, 60.0)
GRADES = {
    4: "Excellent",
    3: "Good",
    2: "Fair",
    1: "Poor",
}
UNABLE_TO_COMPLETE = "Unable to Complete"


def sppb_score(completed_repetitions: int, total_time_s: float) -> int:
    """Score 0-4; any completed repetition inside 60 s earns at least 1."""

    if completed_repetitions < 1:
        return 0
    for score, limit in zip((4, 3, 2, 1), SCORE_THRESHOLDS_S):
        if total_time_s <= limit:
            return score
    return 0


def performance_grade(score: int) -> str:
    return GRADES.get(score, UNABLE_TO_COMPLETE)


@dataclass(frozen=True)
class ChairStandMetrics:
    completed_repetitions: int
    total_time_s: float
    average_repetition_time_s: float
    movement_smoothness: float
    repetition_times_s: List[float] = field(default_factory=list)
    sppb_score: int = 0
    performance_grade: str = UNABLE_TO_COMPLETE

    @classmethod
    def from_repetitions(cls, metrics: RepetitionMetrics) -> "ChairStandMetrics":
        score = sppb_score(metrics.completed_repetitions, metrics.total_time_s)
        return cls(
            completed_repetitions=metrics.completed_repetitions,
            total_time_s=metrics.total_time_s,
            average_repetition_time_s=metrics.average_repetition_time_s,
            movement_smoothness=metrics.movement_smoothness,
            repetition_times_s=list(metrics.repetition_times_s),
            sppb_score=score,
            performance_grade=performance_grade(score),
        )

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


__all__ = ["ChairStandMetrics", "GRADES", "SCORE_THRESHOLDS_S", "performance_grade", "sppb_score"]
