"""Trigger evaluator — turns transfer state into candidate missions.

Rules are loaded from ``TriggersConfig`` and grouped by condition type:

    transfer_age          reminders by transfer age window (24h, 48h)
    transfer_expiry_soon  final notice before expiry
    transfer_expired      reclaim after expiry

Rule classes are evaluated independently and concatenated. Within a rule,
transfers come back oldest first (soonest/oldest expiry for the expiry
rules). Evaluation is read-only against transfers; every candidate is
admitted by the cap gate evaluator before it is returned.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from src.core.config import TriggerRuleConfig, TriggersConfig
from src.core.models import CandidateMission, Transfer, utc_now
from src.db.repository import Repository
from src.orchestrator.cap_gates import CapGateEvaluator

logger = logging.getLogger("solrelay.orchestrator.triggers")


class TriggerEvaluator:
    """Scans transfers against the configured rules.

    Injected dependencies:
        repository: Read-only transfer queries and mission dedup lookups.
        cap_gates: Admission control applied to each candidate.
        config: Trigger rule definitions.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: Repository,
        cap_gates: CapGateEvaluator,
        config: TriggersConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.cap_gates = cap_gates
        self.config = config
        self.clock = clock
        self._selectors: dict[str, Callable[[TriggerRuleConfig, datetime], list[Transfer]]] = {
            "transfer_age": self._select_by_age,
            "transfer_expiry_soon": self._select_expiring_soon,
            "transfer_expired": self._select_expired,
        }

    def evaluate(self) -> list[CandidateMission]:
        """Return admitted candidates for every enabled rule."""
        now = self.clock()
        candidates: list[CandidateMission] = []
        for rule in self.config.enabled_rules():
            selector = self._selectors.get(rule.condition_type)
            if selector is None:
                logger.warning("Rule '%s' has unknown condition type '%s'", rule.name, rule.condition_type)
                continue
            transfers = selector(rule, now)
            admitted = self._admit(rule, transfers, now)
            if transfers:
                logger.debug(
                    "Rule '%s': %d matched, %d admitted", rule.name, len(transfers), len(admitted)
                )
            candidates.extend(admitted)
        return candidates

    def _admit(
        self, rule: TriggerRuleConfig, transfers: list[Transfer], now: datetime
    ) -> list[CandidateMission]:
        admitted: list[CandidateMission] = []
        cooldown_cutoff = now - timedelta(seconds=rule.cooldown_seconds)
        for transfer in transfers:
            if self.repository.has_recent_mission(
                transfer.id, rule.mission_type, rule.mission_source, cooldown_cutoff
            ):
                continue
            decision = self.cap_gates.check(rule.mission_type, {"transfer": transfer})
            if not decision.ok:
                continue
            admitted.append(
                CandidateMission(
                    type=rule.mission_type,
                    transfer_id=transfer.id,
                    input_data=dict(rule.mission_params),
                    auto_approve=rule.auto_approve and not decision.needs_approval,
                    source=rule.mission_source,
                    priority=rule.priority,
                )
            )
        return admitted

    # -------------------------------------------------------------------
    # Selectors
    # -------------------------------------------------------------------

    def _select_by_age(self, rule: TriggerRuleConfig, now: datetime) -> list[Transfer]:
        return self.repository.get_transfers_by_age(
            now=now,
            min_age=timedelta(hours=rule.min_hours),
            max_age=timedelta(hours=rule.max_hours) if rule.max_hours is not None else None,
            reminders_sent=rule.reminders_sent,
            statuses=rule.statuses,
            limit=rule.limit,
        )

    def _select_expiring_soon(self, rule: TriggerRuleConfig, now: datetime) -> list[Transfer]:
        return self.repository.get_transfers_expiring_within(
            now=now,
            window=timedelta(hours=rule.hours_until_expiry),
            max_reminders=rule.max_reminders,
            statuses=rule.statuses,
            limit=rule.limit,
        )

    def _select_expired(self, rule: TriggerRuleConfig, now: datetime) -> list[Transfer]:
        return self.repository.get_transfers_expired_for_reclaim(
            now=now,
            grace=timedelta(hours=rule.grace_hours),
            max_reclaim_attempts=rule.max_reclaim_attempts,
            statuses=rule.statuses,
            limit=rule.limit,
        )
