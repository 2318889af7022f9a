"""Mock detection source for development without a camera model."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from assesscam.engine.types import DetectionBox, DetectionResult
from assesscam.sources.base import DetectionSource

DEFAULT_MOCK_DETECTIONS = (
    DetectionResult(label="pill", confidence=0.85, box=DetectionBox(x=0.3, y=0.4, width=0.1, height=0.1)),
    DetectionResult(label="person", confidence=0.95, box=DetectionBox(x=0.2, y=0.1, width=0.6, height=0.8)),
)


class MockDetectionSource(DetectionSource):
    """Always returns the same predefined detections."""

    name = "mock"

    def __init__(self, detections: Optional[Sequence[DetectionResult]] = None, *, name: str = "mock") -> None:
        super().__init__()
        self.name = name
        self._detections = list(detections if detections is not None else DEFAULT_MOCK_DETECTIONS)
        self.frames_processed = 0

    def process_frame(self, data: Any, height: int, width: int) -> List[DetectionResult]:
        if not self.is_initialized:
            raise RuntimeError(f"{self.name} source not initialized")
        self.frames_processed += 1
        return list(self._detections)


__all__ = ["DEFAULT_MOCK_DETECTIONS", "MockDetectionSource"]
