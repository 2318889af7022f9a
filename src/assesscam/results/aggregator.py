"""Summarize per-step outcomes of a run into a results record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from assesscam.engine.types import RunState, Step, StepOutcome, StepProgress
from assesscam.evaluators.pose import RepetitionMetrics
from assesscam.results.sppb import ChairStandMetrics


@dataclass(frozen=True)
class StepDetail:
    label: str
    outcome: StepOutcome
    hit_count: int
    required_hit_count: int
    elapsed_seconds: Optional[float]

    @property
    def success(self) -> bool:
        return self.outcome is StepOutcome.SUCCESS

    def to_dict(self) -> Dict[str, object]:
        return {
            "label": self.label,
            "outcome": self.outcome.value,
            "success": self.success,
            "hit_count": self.hit_count,
            "required_hit_count": self.required_hit_count,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass(frozen=True)
class ResultSummary:
    total_steps: int
    successful_steps: int
    per_step_detail: List[StepDetail]
    overall_success: bool
    test_type: Optional[str] = None
    run_state: RunState = RunState.COMPLETE
    metrics: Dict[str, object] = field(default_factory=dict)

    @property
    def compliance_pct(self) -> float:
        if self.total_steps <= 0:
            return 0.0
        return self.successful_steps / self.total_steps * 100.0

    @property
    def chair_stand(self) -> Optional[ChairStandMetrics]:
        value = self.metrics.get("chair_stand")
        return value if isinstance(value, ChairStandMetrics) else None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "test_type": self.test_type,
            "run_state": self.run_state.value,
            "total_steps": self.total_steps,
            "successful_steps": self.successful_steps,
            "overall_success": self.overall_success,
            "compliance_pct": self.compliance_pct,
            "per_step_detail": [detail.to_dict() for detail in self.per_step_detail],
        }
        if self.metrics:
            payload["metrics"] = {
                key: value.to_dict() if hasattr(value, "to_dict") else value
                for key, value in self.metrics.items()
            }
        return payload


def aggregate_results(
    steps: Sequence[Step],
    progress: Sequence[StepProgress],
    *,
    test_type: Optional[str] = None,
    run_state: RunState = RunState.COMPLETE,
    metrics: Optional[Mapping[str, object]] = None,
    now: Optional[float] = None,
) -> ResultSummary:
    """Build a ResultSummary without touching the progress records."""

    if len(steps) != len(progress):
        raise ValueError("steps and progress must have the same length")

    details: List[StepDetail] = []
    for step, entry in zip(steps, progress):
        details.append(
            StepDetail(
                label=step.label,
                outcome=entry.outcome,
                hit_count=entry.hit_count,
                required_hit_count=step.required_hits,
                elapsed_seconds=entry.elapsed(now),
            )
        )
    successful = sum(1 for detail in details if detail.success)
    return ResultSummary(
        total_steps=len(details),
        successful_steps=successful,
        per_step_detail=details,
        overall_success=successful == len(details),
        test_type=test_type,
        run_state=run_state,
        metrics=_convert_metrics(metrics or {}),
    )


def _convert_metrics(metrics: Mapping[str, object]) -> Dict[str, object]:
    converted: Dict[str, object] = {}
    for key, value in metrics.items():
        if isinstance(value, RepetitionMetrics):
            converted["chair_stand"] = ChairStandMetrics.from_repetitions(value)
        else:
            converted[key] = value
    return converted


__all__ = ["ResultSummary", "StepDetail", "aggregate_results"]
