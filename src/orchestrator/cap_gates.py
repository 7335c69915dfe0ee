"""Cap gate evaluator — admission control for autonomous missions.

Every candidate mission passes through ``check`` before it is created.
A gate never raises for a denial: it returns ``GateDecision(ok=False)``
and the candidate is simply dropped. The evaluator keeps no counters of
its own; rates are read from the repository on each call, so the store
stays the only shared state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from src.core.config import CapGateConfig
from src.core.models import EntityType, GateDecision, MissionType, Transfer, utc_now
from src.db.repository import Repository

logger = logging.getLogger("solrelay.orchestrator.cap_gates")


class CapGateEvaluator:
    """Per-mission-type admission rules.

    Injected dependencies:
        repository: Counter and block-list reads.
        config: Daily/hourly/per-minute caps and the reclaim feature flag.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: Repository,
        config: CapGateConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.config = config
        self.clock = clock
        self._gates: dict[str, Callable[[dict[str, Any]], GateDecision]] = {
            MissionType.SEND_REMINDER.value: self._check_send_reminder,
            MissionType.AUTO_RECLAIM.value: self._check_auto_reclaim,
            MissionType.INVESTIGATE_ABUSE.value: self._check_investigate_abuse,
        }

    def check(self, mission_type: str, context: Optional[dict[str, Any]] = None) -> GateDecision:
        """Decide whether a mission of ``mission_type`` may be created now."""
        gate = self._gates.get(mission_type)
        if gate is None:
            if self.config.unknown_mission_policy == "deny":
                return GateDecision.deny(f"Unknown mission type: {mission_type}")
            return GateDecision.allow()

        decision = gate(context or {})
        if not decision.ok:
            logger.debug("Cap gate denied %s: %s", mission_type, decision.reason)
        return decision

    def check_email_send(self) -> GateDecision:
        """Independent hourly check used by the email dispatcher before each send."""
        hourly = self.repository.count_emails_sent_last_hour(self.clock())
        if hourly >= self.config.max_reminders_per_hour:
            return GateDecision.deny(
                f"Hourly email limit reached ({self.config.max_reminders_per_hour})"
            )
        return GateDecision.allow()

    # -------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------

    def _check_send_reminder(self, context: dict[str, Any]) -> GateDecision:
        now = self.clock()

        today = self.repository.count_today_missions_by_type(MissionType.SEND_REMINDER.value, now)
        if today >= self.config.max_reminders_per_day:
            return GateDecision.deny(
                f"Daily reminder limit reached ({self.config.max_reminders_per_day})"
            )

        email_gate = self.check_email_send()
        if not email_gate.ok:
            return email_gate

        transfer: Optional[Transfer] = context.get("transfer")
        if transfer is not None:
            if transfer.reminders_sent >= self.config.max_reminders_per_transfer:
                return GateDecision.deny(
                    f"Max reminders per transfer reached ({self.config.max_reminders_per_transfer})"
                )
            if self.repository.is_blocked(EntityType.EMAIL, transfer.email, now):
                return GateDecision.deny("Recipient email is blocked")

        return GateDecision.allow()

    def _check_auto_reclaim(self, context: dict[str, Any]) -> GateDecision:
        if not self.config.reclaim_enabled:
            return GateDecision.deny("Auto-reclaim is disabled")

        open_reclaims = self.repository.count_open_missions_by_type(MissionType.AUTO_RECLAIM.value)
        if open_reclaims >= self.config.max_reclaims_per_minute:
            return GateDecision.deny(
                f"Rate limit: {self.config.max_reclaims_per_minute} reclaims/minute"
            )
        return GateDecision.allow()

    def _check_investigate_abuse(self, context: dict[str, Any]) -> GateDecision:
        return GateDecision.allow(needs_approval=True)

    def describe(self) -> dict[str, Any]:
        """Current gate configuration, for the health surface."""
        return self.config.model_dump()
