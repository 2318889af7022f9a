"""Console status reporter for assessment step progress."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, TextIO

from assesscam.engine.orchestrator import TestEvent, TestEventType
from assesscam.engine.types import Step, StepOutcome

ACTIVE = "ACTIVE"
PENDING = StepOutcome.PENDING.value
STOPPED = "STOPPED"
LABEL_WIDTH = 26


def _default_now() -> float:
    return time.monotonic()


@dataclass
class _RowState:
    label: str
    required_hits: int
    state: str = PENDING
    hit_count: int = 0


class ConsoleStatusReporter:
    """Renders the STEP | STATE | HITS grid, throttled to the refresh interval."""

    def __init__(
        self,
        steps: Sequence[Step],
        *,
        refresh_interval: float = 0.5,
        output: Optional[TextIO] = None,
        now_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        if not steps:
            raise ValueError("ConsoleStatusReporter requires at least one step")
        self._rows: List[_RowState] = [_RowState(step.label, step.required_hits) for step in steps]
        self._output = output or sys.stdout
        self._refresh_interval = max(0.1, float(refresh_interval))
        self._now = now_fn or _default_now
        self._active_index: Optional[int] = None
        self._last_render: Optional[float] = None
        self._dirty = False

    def __call__(self, event: TestEvent) -> None:
        self.handle_event(event)

    def handle_event(self, event: TestEvent) -> None:
        """Consume orchestrator events to update the grid."""

        kind = event.event_type
        row = self._row_for(event.step_index)
        if kind is TestEventType.TEST_UPDATED:
            reason = event.details.get("reason")
            if reason in ("started", "reset"):
                self._reset_rows()
            elif reason == "hit" and row is not None:
                hits = event.details.get("hit_count")
                if isinstance(hits, int):
                    row.hit_count = hits
                self._dirty = True
        elif kind is TestEventType.STEP_STARTED and row is not None:
            row.state = ACTIVE
            self._active_index = event.step_index
            self._dirty = True
        elif kind is TestEventType.STEP_COMPLETED and row is not None:
            outcome = event.details.get("outcome")
            row.state = str(outcome) if outcome else PENDING
            hits = event.details.get("hit_count")
            if isinstance(hits, int):
                row.hit_count = hits
            self._active_index = None
            self._dirty = True
        elif kind is TestEventType.TEST_STOPPED:
            if row is not None and row.state == ACTIVE:
                row.state = STOPPED
            self._active_index = None
            self._render(force=True)
            return
        elif kind is TestEventType.TEST_COMPLETED:
            self._active_index = None
            self._render(force=True)
            return
        self._render()

    def force_render(self) -> None:
        """Render immediately regardless of throttling."""

        self._render(force=True)

    def _render(self, *, force: bool = False) -> None:
        if not self._dirty and not force:
            return
        now = self._now()
        if not force and self._last_render is not None and now - self._last_render < self._refresh_interval:
            return
        self._output.write("\n".join(self._build_lines()) + "\n")
        self._output.flush()
        self._dirty = False
        self._last_render = now

    def _build_lines(self) -> List[str]:
        header = f"{'STEP':<{LABEL_WIDTH}} | {'STATE':<9} | HITS"
        lines = [header, "-" * len(header)]
        for index, row in enumerate(self._rows):
            marker = self._marker_for(index, row)
            label = f"{marker}{row.label}"[:LABEL_WIDTH]
            hits = f"{min(row.hit_count, 999):03d}/{min(row.required_hits, 999):03d}"
            lines.append(f"{label:<{LABEL_WIDTH}} | {row.state:<9} | {hits}")
        return lines

    def _marker_for(self, index: int, row: _RowState) -> str:
        if row.state == StepOutcome.SUCCESS.value:
            return "*"
        if row.state == StepOutcome.TIMED_OUT.value:
            return "x"
        if self._active_index == index:
            return ">"
        return " "

    def _row_for(self, index: Optional[int]) -> Optional[_RowState]:
        if index is None or not 0 <= index < len(self._rows):
            return None
        return self._rows[index]

    def _reset_rows(self) -> None:
        self._active_index = None
        for row in self._rows:
            row.state = PENDING
            row.hit_count = 0
        self._dirty = True


__all__ = ["ConsoleStatusReporter"]
