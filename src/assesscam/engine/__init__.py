"""Engine data model. The orchestrator lives in ``assesscam.engine.orchestrator``."""

from assesscam.engine.types import (
	DetectionBox,
	DetectionResult,
	DetectionSnapshot,
	DetectionStatus,
	EvaluatorKind,
	Frame,
	RunState,
	Step,
	StepOutcome,
	StepProgress,
)

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
