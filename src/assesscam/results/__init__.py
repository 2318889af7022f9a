"""Result aggregation, SPPB scoring, and result persistence."""

from assesscam.results.aggregator import ResultSummary, StepDetail, aggregate_results
from assesscam.results.sppb import ChairStandMetrics, performance_grade, sppb_score
from assesscam.results.store import ResultLogger, load_result_records

__all__ = [
	"ChairStandMetrics",
	"ResultLogger",
	"ResultSummary",
	"StepDetail",
	"aggregate_results",
	"load_result_records",
	"performance_grade",
	"sppb_score",
]
