"""Append result summaries to daily JSONL files."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from assesscam.results.aggregator import ResultSummary

LOGGER = logging.getLogger(__name__)


class ResultLogger:
    """Persists ResultSummary payloads, one JSON object per line."""

    def __init__(self, log_dir: str | Path = "logs/results") -> None:
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def write(
        self,
        summary: ResultSummary,
        *,
        run_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> Path:
        stamp = recorded_at or datetime.now(tz=timezone.utc)
        record: Dict[str, object] = {
            "run_id": run_id,
            "recorded_ts": stamp.isoformat().replace("+00:00", "Z"),
        }
        record.update(summary.to_dict())
        target = self._log_dir / f"{stamp.strftime('%Y-%m-%d')}.jsonl"
        line = json.dumps(record, separators=(",", ":"))
        with target.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.write("\n")
        LOGGER.debug("Wrote result record for %s to %s", summary.test_type, target)
        return target


def load_result_records(log_dir: Path) -> List[Dict[str, object]]:
    if not log_dir.exists():
        LOGGER.warning("Results directory %s not found", log_dir)
        return []
    records: List[Dict[str, object]] = []
    for path in sorted(log_dir.glob("*.jsonl")):
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    LOGGER.warning("Skipping invalid result line in %s: %s", path, exc)
    return records


__all__ = ["ResultLogger", "load_result_records"]
