"""Per-tick metrics for the SolRelay scheduler.

Records what each loop iteration did and how long each step took:
  {tick_number, started_at, completed_at, steps, missions created/succeeded/failed, emails sent}

Feeds the ``tick`` CLI summary and the health surface.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger("solrelay.orchestrator.metrics")


@dataclass
class StepMetric:
    """Timing for one step within a tick."""
    name: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class TickRecord:
    """Aggregated result of one scheduler iteration."""
    tick_number: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    steps: list[StepMetric] = field(default_factory=list)
    candidates: int = 0
    missions_created: int = 0
    create_errors: int = 0
    missions_succeeded: int = 0
    missions_skipped: int = 0
    missions_failed: int = 0
    missions_retried: int = 0
    missions_blocked: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    stale_recovered: int = 0
    emails_recovered: int = 0
    skipped_reason: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def slowest_step(self) -> Optional[str]:
        if not self.steps:
            return None
        return max(self.steps, key=lambda s: s.duration_seconds).name

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        data["steps"] = [
            {"name": s.name, "duration_seconds": round(s.duration_seconds, 4), "error": s.error}
            for s in self.steps
        ]
        data["duration_seconds"] = round(self.duration_seconds, 4)
        return data


class TickMetrics:
    """Keeps the most recent tick records in memory."""

    def __init__(self, history: int = 50):
        self._ticks: deque[TickRecord] = deque(maxlen=history)
        self._current: Optional[TickRecord] = None

    def start_tick(self, tick_number: int, now: datetime) -> TickRecord:
        record = TickRecord(tick_number=tick_number, started_at=now)
        self._current = record
        self._ticks.append(record)
        return record

    def start_step(self, name: str, now: datetime) -> StepMetric:
        step = StepMetric(name=name, started_at=now)
        if self._current:
            self._current.steps.append(step)
        return step

    def complete_step(self, step: StepMetric, now: datetime, error: Optional[str] = None) -> None:
        step.completed_at = now
        step.error = error
        step.duration_seconds = (now - step.started_at).total_seconds()

    def complete_tick(self, now: datetime) -> Optional[TickRecord]:
        if self._current is None:
            return None
        record = self._current
        record.completed_at = now
        self._current = None
        logger.info(
            "Tick #%d complete: created=%d succeeded=%d failed=%d emails=%d duration=%.2fs slowest=%s",
            record.tick_number,
            record.missions_created,
            record.missions_succeeded,
            record.missions_failed,
            record.emails_sent,
            record.duration_seconds,
            record.slowest_step or "none",
        )
        return record

    def get_latest(self) -> Optional[TickRecord]:
        return self._ticks[-1] if self._ticks else None

    def get_summary(self) -> dict:
        if not self._ticks:
            return {"recorded_ticks": 0}
        completed = [t for t in self._ticks if t.completed_at is not None]
        return {
            "recorded_ticks": len(self._ticks),
            "missions_created": sum(t.missions_created for t in self._ticks),
            "missions_succeeded": sum(t.missions_succeeded for t in self._ticks),
            "missions_failed": sum(t.missions_failed for t in self._ticks),
            "emails_sent": sum(t.emails_sent for t in self._ticks),
            "avg_duration_seconds": round(
                sum(t.duration_seconds for t in completed) / len(completed), 4
            ) if completed else 0.0,
        }
