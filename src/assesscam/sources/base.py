"""Detection source interface consumed by the frame dispatcher."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List

from assesscam.engine.types import DetectionResult


class SourceInitError(RuntimeError):
    """Raised when a detection source fails to initialize."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class DetectionSource(ABC):
    """External provider of per-frame labeled detections."""

    name: str = "source"

    def __init__(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Prepare the source; raise SourceInitError on failure."""

        try:
            self._load()
        except SourceInitError:
            self._initialized = False
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._initialized = False
            raise SourceInitError(self.name, str(exc)) from exc
        self._initialized = True

    @abstractmethod
    def process_frame(self, data: Any, height: int, width: int) -> List[DetectionResult]:
        """Return detections for one frame."""

    def dispose(self) -> None:
        self._initialized = False

    def _load(self) -> None:
        """Hook for subclasses that need to load models or open connections."""


__all__ = ["DetectionSource", "SourceInitError"]
