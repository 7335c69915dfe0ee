"""Mission state machine for the SolRelay agent.

Manages legal status transitions for missions and enforces the state graph.
Missions flow: pending → approved → running → succeeded | failed
with blocked reachable from pending/approved (cap gate rejection) and
running → failed forced by stale recovery.

Every transition is a conditional write in the repository. When the guard
does not hold (someone else claimed the mission, it already finished) the
repository returns None and this module reports that instead of raising.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from src.core.exceptions import InvalidTransitionError
from src.core.models import CandidateMission, Mission, MissionStatus, utc_now
from src.db.repository import Repository

logger = logging.getLogger("solrelay.orchestrator.lifecycle")

# Legal state transitions: each key maps to the set of states it can move to
VALID_TRANSITIONS: dict[MissionStatus, set[MissionStatus]] = {
    MissionStatus.PENDING: {
        MissionStatus.APPROVED,
        MissionStatus.RUNNING,
        MissionStatus.BLOCKED,
        MissionStatus.FAILED,
    },
    MissionStatus.APPROVED: {MissionStatus.RUNNING, MissionStatus.BLOCKED, MissionStatus.FAILED},
    # running → pending/approved is the retry release
    MissionStatus.RUNNING: {
        MissionStatus.SUCCEEDED,
        MissionStatus.FAILED,
        MissionStatus.PENDING,
        MissionStatus.APPROVED,
    },
    MissionStatus.BLOCKED: set(),    # Terminal, requires manual intervention
    MissionStatus.SUCCEEDED: set(),  # Terminal
    MissionStatus.FAILED: set(),     # Terminal
}


class MissionLifecycle:
    """Owns mission creation, claiming, resolution and stale recovery.

    Single-instance assumption: ``claim`` is the only guard against double
    execution. Mission creation is not deduplicated across processes, so
    only one scheduler may run against a store (see SchedulerLease).
    """

    def __init__(
        self,
        repository: Repository,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.max_attempts = max_attempts
        self.clock = clock

    @staticmethod
    def can_transition(from_status: MissionStatus, to_status: MissionStatus) -> bool:
        """Check if a transition is legal."""
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    def _require(self, mission: Mission, to_status: MissionStatus) -> None:
        if not self.can_transition(mission.status, to_status):
            raise InvalidTransitionError(str(mission.id), mission.status.value, to_status.value)

    # -------------------------------------------------------------------
    # Creation & selection
    # -------------------------------------------------------------------

    def create(
        self,
        candidate: CandidateMission,
        scheduled_for: Optional[datetime] = None,
        parent_mission_id: Optional[uuid.UUID] = None,
    ) -> Mission:
        """Persist a candidate. Auto-approved candidates start in approved."""
        now = self.clock()
        mission = Mission(
            type=candidate.type,
            source=candidate.source,
            status=MissionStatus.APPROVED if candidate.auto_approve else MissionStatus.PENDING,
            priority=candidate.priority,
            scheduled_for=scheduled_for or now,
            input_data=dict(candidate.input_data),
            transfer_id=candidate.transfer_id,
            parent_mission_id=parent_mission_id,
            approved_at=now if candidate.auto_approve else None,
            created_at=now,
        )
        self.repository.create_mission(mission)
        logger.info(
            "Created mission %s (%s, status=%s, source=%s)",
            mission.short_id, mission.type, mission.status.value, mission.source,
        )
        return mission

    def fetch_pending(self, limit: int = 10) -> list[Mission]:
        """Ready missions in (priority ASC, scheduled_for ASC) order."""
        return self.repository.get_pending_missions(self.clock(), self.max_attempts, limit)

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------

    def claim(self, mission: Mission) -> Optional[Mission]:
        """Atomically move a mission into running. None if already claimed."""
        claimed = self.repository.claim_mission(mission.id, self.clock(), self.max_attempts)
        if claimed is None:
            logger.info("Mission %s already claimed", mission.short_id)
            return None
        logger.info("Mission %s: %s → running (attempt %d)",
                    claimed.short_id, mission.status.value, claimed.attempts)
        return claimed

    def succeed(self, mission: Mission, output_data: dict[str, Any]) -> Optional[Mission]:
        self._require(mission, MissionStatus.SUCCEEDED)
        done = self.repository.complete_mission(mission.id, output_data, self.clock())
        if done is None:
            logger.warning("Mission %s was no longer running at completion", mission.short_id)
        return done

    def fail(self, mission: Mission, error: str) -> Optional[Mission]:
        self._require(mission, MissionStatus.FAILED)
        failed = self.repository.fail_mission(mission.id, error, self.clock())
        if failed is not None:
            logger.info("Mission %s: %s → failed (%s)", mission.short_id, mission.status.value, error)
        return failed

    def release_for_retry(self, mission: Mission, error: str, backoff: timedelta) -> Optional[Mission]:
        """Return a running mission to its queue with the error recorded."""
        released = self.repository.release_mission(mission.id, error, self.clock() + backoff)
        if released is not None:
            logger.info(
                "Mission %s: running → %s for retry (attempt %d/%d)",
                mission.short_id, released.status.value, released.attempts, self.max_attempts,
            )
        return released

    def block(self, mission: Mission, reason: str) -> Optional[Mission]:
        self._require(mission, MissionStatus.BLOCKED)
        blocked = self.repository.block_mission(mission.id, reason)
        if blocked is not None:
            logger.info("Mission %s: %s → blocked (%s)", mission.short_id, mission.status.value, reason)
        return blocked

    def approve(self, mission: Mission) -> Optional[Mission]:
        """Manual-review path: pending → approved."""
        self._require(mission, MissionStatus.APPROVED)
        return self.repository.approve_mission(mission.id, self.clock())

    def is_exhausted(self, mission: Mission) -> bool:
        return mission.attempts >= self.max_attempts

    # -------------------------------------------------------------------
    # Self-healing
    # -------------------------------------------------------------------

    def recover_stale(self, stale_minutes: int = 30) -> list[Mission]:
        """Force-fail missions stuck in running longer than the stale window."""
        now = self.clock()
        recovered = self.repository.recover_stale_missions(
            started_before=now - timedelta(minutes=stale_minutes),
            error=f"Stale: no progress for {stale_minutes} minutes",
            now=now,
        )
        if recovered:
            logger.warning(
                "Recovered %d stale mission(s): %s",
                len(recovered), ", ".join(m.short_id for m in recovered),
            )
        return recovered
