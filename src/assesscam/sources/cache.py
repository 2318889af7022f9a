"""Per-source cache of the most recent detection lists."""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from assesscam.engine.types import DetectionResult


class DetectionCache:
    """Latest complete detection list per source key.

    Each slot is replaced wholesale; readers never see a merge of two frames.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None) -> None:
        self._lock = threading.Lock()
        self._slots: Dict[str, Tuple[DetectionResult, ...]] = {key: () for key in keys or ()}
        self._versions: Dict[str, int] = {key: 0 for key in self._slots}

    def replace(self, key: str, detections: Sequence[DetectionResult]) -> None:
        frozen = tuple(detections)
        with self._lock:
            self._slots[key] = frozen
            self._versions[key] = self._versions.get(key, 0) + 1

    def get(self, key: str) -> List[DetectionResult]:
        with self._lock:
            return list(self._slots.get(key, ()))

    def version(self, key: str) -> int:
        with self._lock:
            return self._versions.get(key, 0)

    def snapshot(self) -> Mapping[str, Tuple[DetectionResult, ...]]:
        with self._lock:
            return MappingProxyType(dict(self._slots))


__all__ = ["DetectionCache"]
