"""Step evaluators deciding whether a step's condition holds on a tick."""

from assesscam.evaluators.base import Debouncer, EvaluatorError, EvaluatorSuite, StepEvaluator, iter_detections
from assesscam.evaluators.pose import (
	LandmarkPresenceEvaluator,
	RepetitionCounter,
	RepetitionEvaluator,
	RepetitionMetrics,
)
from assesscam.evaluators.presence import (
	AnyDetectionEvaluator,
	CompositePresenceEvaluator,
	ConstantEvaluator,
	LabelThresholdEvaluator,
	PresenceRule,
)

__all__ = [
	"AnyDetectionEvaluator",
	"CompositePresenceEvaluator",
	"ConstantEvaluator",
	"Debouncer",
	"EvaluatorError",
	"EvaluatorSuite",
	"LabelThresholdEvaluator",
	"LandmarkPresenceEvaluator",
	"PresenceRule",
	"RepetitionCounter",
	"RepetitionEvaluator",
	"RepetitionMetrics",
	"StepEvaluator",
	"iter_detections",
]
