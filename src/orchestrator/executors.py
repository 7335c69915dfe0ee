"""Mission executors for the SolRelay agent.

An executor receives a claimed (running) mission and returns a
``MissionOutcome``. Conditions that make the work pointless (transfer
already claimed, not yet expired) are reported as skips, not errors: the
loop records a skip as a successful completion. Anything raised from an
executor counts as a failed attempt.

Executors only queue email; delivery happens in the dispatcher.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from src.core.exceptions import ExecutorNotFoundError, TransferNotFoundError
from src.core.models import (
    MAX_REMINDERS_PER_TRANSFER,
    Mission,
    MissionOutcome,
    MissionType,
    QueuedEmail,
    Transfer,
    TransferStatus,
    mask_email,
    utc_now,
)
from src.db.repository import Repository
from src.mail.templates import parse_reminder_type, render_reminder

logger = logging.getLogger("solrelay.orchestrator.executors")

Executor = Callable[[Mission], MissionOutcome]

_REMINDABLE = {TransferStatus.PENDING, TransferStatus.CONFIRMED}
_RECLAIM_DONE = {TransferStatus.CLAIMED, TransferStatus.RECLAIMED}


class ExecutorRegistry:
    """Maps mission type to the callable that performs it.

    Injected dependencies:
        repository: Transfer reads/stamps, email queue and audit events.
        frontend_url: Base URL for claim links in reminder emails.
        dry_run: When set, executors report what they would do and write nothing.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: Repository,
        frontend_url: str,
        dry_run: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.frontend_url = frontend_url
        self.dry_run = dry_run
        self.clock = clock
        self._executors: dict[str, Executor] = {
            MissionType.SEND_REMINDER.value: self.send_reminder,
            MissionType.AUTO_RECLAIM.value: self.auto_reclaim,
            MissionType.INVESTIGATE_ABUSE.value: self.investigate_abuse,
        }

    def register(self, mission_type: str, executor: Executor) -> None:
        if mission_type in self._executors:
            logger.info("Replacing executor for mission type '%s'", mission_type)
        self._executors[mission_type] = executor

    def get(self, mission_type: str) -> Optional[Executor]:
        return self._executors.get(mission_type)

    def execute(self, mission: Mission) -> MissionOutcome:
        executor = self.get(mission.type)
        if executor is None:
            raise ExecutorNotFoundError(mission.type)
        return executor(mission)

    @property
    def mission_types(self) -> list[str]:
        return sorted(self._executors)

    def _load_transfer(self, mission: Mission) -> Transfer:
        if mission.transfer_id is None:
            raise TransferNotFoundError("<none>")
        transfer = self.repository.get_transfer(mission.transfer_id)
        if transfer is None:
            raise TransferNotFoundError(str(mission.transfer_id))
        return transfer

    # -------------------------------------------------------------------
    # send_reminder
    # -------------------------------------------------------------------

    def send_reminder(self, mission: Mission) -> MissionOutcome:
        transfer = self._load_transfer(mission)

        if transfer.status not in _REMINDABLE:
            return MissionOutcome.skip(f"Transfer status is {transfer.status.value}")
        if transfer.claimed_at is not None:
            return MissionOutcome.skip("Transfer already claimed")
        if transfer.reminders_sent >= MAX_REMINDERS_PER_TRANSFER:
            return MissionOutcome.skip("Reminder limit reached for transfer")

        reminder_type = parse_reminder_type(mission.input_data.get("reminder_type"))

        if self.dry_run:
            logger.info(
                "[dry-run] Would send %s reminder to %s", reminder_type.value, mask_email(transfer.email)
            )
            return MissionOutcome(data={"dry_run": True, "reminder_type": reminder_type.value})

        now = self.clock()
        subject, html_body = render_reminder(transfer, reminder_type, self.frontend_url, now)
        email = QueuedEmail(
            to_email=transfer.email,
            subject=subject,
            html_body=html_body,
            email_type=f"reminder_{reminder_type.value}",
            scheduled_for=now,
            transfer_id=transfer.id,
            mission_id=mission.id,
            created_at=now,
        )
        # Counter, email row and event commit together or not at all.
        updated = self.repository.record_reminder_and_queue(
            transfer.id,
            email,
            {"reminder_type": reminder_type.value, "email": mask_email(transfer.email)},
            now,
            cap=MAX_REMINDERS_PER_TRANSFER,
        )
        if updated is None:
            return MissionOutcome.skip("Reminder limit reached for transfer")

        logger.info(
            "Queued %s reminder for transfer %s (%d/%d)",
            reminder_type.value, str(transfer.id)[:8], updated.reminders_sent, MAX_REMINDERS_PER_TRANSFER,
        )
        return MissionOutcome(
            data={
                "email_id": str(email.id),
                "reminder_type": reminder_type.value,
                "reminders_sent": updated.reminders_sent,
            }
        )

    # -------------------------------------------------------------------
    # auto_reclaim
    # -------------------------------------------------------------------

    def auto_reclaim(self, mission: Mission) -> MissionOutcome:
        """Flag an expired transfer for manual reclaim.

        The on-chain reclaim needs the sender's signature, so the agent
        records the need and leaves the transaction to the sender.
        """
        transfer = self._load_transfer(mission)
        now = self.clock()

        if transfer.status in _RECLAIM_DONE or transfer.claimed_at or transfer.reclaimed_at:
            return MissionOutcome.skip(f"Transfer already {transfer.status.value}")
        if not transfer.is_expired(now):
            return MissionOutcome.skip("Transfer has not expired yet")

        if self.dry_run:
            logger.info("[dry-run] Would flag transfer %s for reclaim", str(transfer.id)[:8])
            return MissionOutcome(data={"dry_run": True})

        updated = self.repository.increment_reclaim_attempts(transfer.id, now)
        attempts = updated.reclaim_attempts if updated else transfer.reclaim_attempts + 1
        self.repository.mark_transfer_expired(
            transfer.id,
            {"reclaim_needed": True, "reclaim_logged_at": now.isoformat()},
        )
        self.repository.emit_event(
            "reclaim_needed",
            {
                "sender_pubkey": transfer.sender_pubkey,
                "amount": transfer.amount,
                "token": transfer.token,
                "reclaim_attempts": attempts,
            },
            transfer_id=transfer.id,
            mission_id=mission.id,
            source="agent",
        )
        logger.info("Transfer %s flagged for manual reclaim (attempt %d)", str(transfer.id)[:8], attempts)
        return MissionOutcome(
            data={"status": "logged_for_manual_reclaim", "reclaim_attempts": attempts}
        )

    # -------------------------------------------------------------------
    # investigate_abuse
    # -------------------------------------------------------------------

    def investigate_abuse(self, mission: Mission) -> MissionOutcome:
        self.repository.emit_event(
            "abuse_investigation_logged",
            {"input": mission.input_data},
            transfer_id=mission.transfer_id,
            mission_id=mission.id,
            source="agent",
        )
        return MissionOutcome(data={"status": "logged"})
