"""Scheduler loop for the SolRelay agent.

Each tick runs five steps strictly in order:
  triggers → create missions → claim & execute → drain email → recover stale

and then persists the loop statistics to ``agent_state`` for the health
surface. Ticks fire on a fixed interval. A tick that would start while the
previous one is still in flight is skipped, never queued.

A candidate that fails to insert is logged and counted; the rest of the
tick carries on. Stale recovery covers missions stuck in ``running`` and
emails stuck in ``sending``.

Retry policy: a mission whose executor raises is released back to its
queue status with ``scheduled_for`` pushed out by the retry backoff, until
``max_mission_attempts`` is reached; then it fails for good.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, Optional

from src.core.config import SchedulerConfig
from src.core.exceptions import ExecutorNotFoundError
from src.core.models import Mission, MissionOutcome, MissionStatus, MissionType, utc_now
from src.db.repository import Repository
from src.mail.dispatcher import EmailDispatcher
from src.orchestrator.cap_gates import CapGateEvaluator
from src.orchestrator.executors import ExecutorRegistry
from src.orchestrator.lease import SchedulerLease
from src.orchestrator.lifecycle import MissionLifecycle
from src.orchestrator.metrics import TickMetrics, TickRecord
from src.orchestrator.triggers import TriggerEvaluator

logger = logging.getLogger("solrelay.orchestrator.loop")

LAST_LOOP_STATE_KEY = "last_loop"


@dataclass
class SchedulerState:
    """In-process loop statistics. Persisted after every tick."""
    loop_count: int = 0
    last_loop_at: Optional[datetime] = None
    is_running: bool = False
    missions_created: int = 0
    missions_succeeded: int = 0
    missions_failed: int = 0
    reminders_queued: int = 0
    reclaims_processed: int = 0
    emails_sent: int = 0
    errors: int = 0
    skipped_ticks: int = 0

    def stats(self) -> dict[str, int]:
        data = asdict(self)
        for key in ("loop_count", "last_loop_at", "is_running"):
            data.pop(key)
        return data

    def to_dict(self) -> dict[str, Any]:
        return {
            "loop_count": self.loop_count,
            "last_loop_at": self.last_loop_at.isoformat() if self.last_loop_at else None,
            "is_running": self.is_running,
            "stats": self.stats(),
        }


class SchedulerLoop:
    """Fixed-interval driver for the mission pipeline.

    Injected dependencies:
        repository: Database access.
        triggers: Produces admitted candidate missions.
        cap_gates: Re-checks missions that were created unapproved.
        lifecycle: Mission state machine.
        executors: Mission type → executor.
        dispatcher: Email queue drain.
        config: Scheduler configuration.
        lease: Optional single-instance lease, renewed every tick.
        metrics: Per-tick metrics collector.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: Repository,
        triggers: TriggerEvaluator,
        cap_gates: CapGateEvaluator,
        lifecycle: MissionLifecycle,
        executors: ExecutorRegistry,
        dispatcher: EmailDispatcher,
        config: SchedulerConfig,
        lease: Optional[SchedulerLease] = None,
        metrics: Optional[TickMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.triggers = triggers
        self.cap_gates = cap_gates
        self.lifecycle = lifecycle
        self.executors = executors
        self.dispatcher = dispatcher
        self.config = config
        self.lease = lease
        self.metrics = metrics or TickMetrics()
        self.clock = clock
        self.state = SchedulerState()
        self._tick_lock = threading.Lock()

    # -------------------------------------------------------------------
    # Driving
    # -------------------------------------------------------------------

    def run_forever(self, stop_event: threading.Event) -> None:
        """Tick every poll interval until ``stop_event`` is set.

        Missed ticks are dropped: if a tick overruns the interval, the next
        one starts at the following interval boundary.
        """
        interval = self.config.poll_interval_seconds
        logger.info(
            "Scheduler started (interval=%.1fs, batch=%d, dry_run=%s)",
            interval, self.config.mission_batch_size, self.config.dry_run,
        )
        next_at = time.monotonic()
        try:
            while not stop_event.is_set():
                try:
                    self.tick()
                except Exception:
                    self.state.errors += 1
                    logger.exception("Tick failed")

                next_at += interval
                now = time.monotonic()
                if now > next_at:
                    missed = int((now - next_at) // interval) + 1
                    self.state.skipped_ticks += missed
                    next_at += missed * interval
                    logger.warning("Tick overran the interval, dropped %d tick(s)", missed)
                stop_event.wait(max(next_at - time.monotonic(), 0.0))
        finally:
            if self.lease is not None and self.lease.held:
                self.lease.release()
            logger.info("Scheduler stopped after %d tick(s)", self.state.loop_count)

    def tick(self) -> Optional[TickRecord]:
        """Run one iteration. Returns None when the tick was skipped."""
        if not self._tick_lock.acquire(blocking=False):
            self.state.skipped_ticks += 1
            logger.warning("Previous tick still in flight, skipping")
            return None
        try:
            return self._run_tick()
        finally:
            self.state.is_running = False
            self._tick_lock.release()

    # -------------------------------------------------------------------
    # Tick steps
    # -------------------------------------------------------------------

    def _run_tick(self) -> Optional[TickRecord]:
        if self.lease is not None and not self.lease.acquire():
            self.state.skipped_ticks += 1
            logger.info("Lease held by another scheduler, skipping tick")
            return None

        self.state.is_running = True
        record = self.metrics.start_tick(self.state.loop_count + 1, self.clock())

        with self._step("triggers"):
            candidates = self.triggers.evaluate()
            record.candidates = len(candidates)

        with self._step("create"):
            for candidate in candidates:
                try:
                    self.lifecycle.create(candidate)
                except Exception:
                    logger.exception(
                        "Failed to create %s mission for transfer %s",
                        candidate.type, candidate.transfer_id,
                    )
                    record.create_errors += 1
                    self.state.errors += 1
                    continue
                record.missions_created += 1
            self.state.missions_created += record.missions_created

        with self._step("execute"):
            for mission in self.lifecycle.fetch_pending(self.config.mission_batch_size):
                self._process_mission(mission, record)

        with self._step("email"):
            drained = self.dispatcher.drain()
            record.emails_sent = drained.sent
            record.emails_failed = drained.failed
            self.state.emails_sent += drained.sent

        with self._step("stale"):
            recovered = self.lifecycle.recover_stale(self.config.stale_minutes)
            record.stale_recovered = len(recovered)
            self.state.missions_failed += len(recovered)
            record.emails_recovered = len(self.dispatcher.recover_stale())

        now = self.clock()
        self.state.loop_count += 1
        self.state.last_loop_at = now
        self.repository.set_state(LAST_LOOP_STATE_KEY, self.state.to_dict(), now)
        return self.metrics.complete_tick(now)

    @contextmanager
    def _step(self, name: str) -> Iterator[None]:
        step = self.metrics.start_step(name, self.clock())
        try:
            yield
        except Exception as e:
            self.metrics.complete_step(step, self.clock(), error=str(e))
            raise
        self.metrics.complete_step(step, self.clock())

    def _process_mission(self, mission: Mission, record: TickRecord) -> None:
        if mission.status == MissionStatus.PENDING and not self._admit_pending(mission, record):
            return

        claimed = self.lifecycle.claim(mission)
        if claimed is None:
            return

        try:
            outcome = self.executors.execute(claimed)
        except ExecutorNotFoundError as e:
            logger.error("Mission %s: %s", claimed.short_id, e)
            self.lifecycle.fail(claimed, str(e))
            self._count_failed(record)
            return
        except Exception as e:
            logger.exception("Mission %s (%s) raised", claimed.short_id, claimed.type)
            self._handle_failure(claimed, f"{type(e).__name__}: {e}", record)
            return

        self.lifecycle.succeed(claimed, outcome.to_output())
        self._count_succeeded(claimed, outcome, record)

    def _admit_pending(self, mission: Mission, record: TickRecord) -> bool:
        """Cap-gate a mission that was created without approval.

        A denial blocks it. A gate that asks for review leaves it pending
        and pushes it out by the retry backoff so it stops occupying the
        batch; the ``approve`` command pulls it forward again.
        """
        context: dict[str, Any] = {}
        if mission.transfer_id is not None:
            transfer = self.repository.get_transfer(mission.transfer_id)
            if transfer is not None:
                context["transfer"] = transfer

        decision = self.cap_gates.check(mission.type, context)
        if not decision.ok:
            self.lifecycle.block(mission, decision.reason or "Cap gate denied")
            record.missions_blocked += 1
            return False
        if decision.needs_approval:
            retry_at = self.clock() + timedelta(seconds=self.config.retry_backoff_seconds)
            self.repository.reschedule_mission(mission.id, retry_at)
            logger.debug("Mission %s awaiting approval", mission.short_id)
            return False
        return True

    def _handle_failure(self, mission: Mission, error: str, record: TickRecord) -> None:
        if self.lifecycle.is_exhausted(mission):
            self.lifecycle.fail(mission, error)
            self._count_failed(record)
            return
        backoff = timedelta(seconds=self.config.retry_backoff_seconds)
        self.lifecycle.release_for_retry(mission, error, backoff)
        record.missions_retried += 1

    def _count_failed(self, record: TickRecord) -> None:
        record.missions_failed += 1
        self.state.missions_failed += 1

    def _count_succeeded(self, mission: Mission, outcome: MissionOutcome, record: TickRecord) -> None:
        self.state.missions_succeeded += 1
        if outcome.skipped:
            record.missions_skipped += 1
            logger.info("Mission %s skipped: %s", mission.short_id, outcome.reason)
            return
        record.missions_succeeded += 1
        if mission.type == MissionType.SEND_REMINDER.value:
            self.state.reminders_queued += 1
        elif mission.type == MissionType.AUTO_RECLAIM.value:
            self.state.reclaims_processed += 1
