"""Detection sources, the shared detection cache, and frame dispatch."""

from assesscam.sources.base import DetectionSource, SourceInitError
from assesscam.sources.cache import DetectionCache
from assesscam.sources.dispatcher import FrameConversionError, FrameDispatcher, coerce_frame
from assesscam.sources.interval import AdaptiveIntervalCalculator
from assesscam.sources.mock import MockDetectionSource

__all__ = [
	"AdaptiveIntervalCalculator",
	"DetectionCache",
	"DetectionSource",
	"FrameConversionError",
	"FrameDispatcher",
	"MockDetectionSource",
	"SourceInitError",
	"coerce_frame",
]
