"""Email queue drain for the SolRelay agent.

Each call to ``drain`` takes up to ``batch_size`` due rows from the
``email_queue`` table and hands them to the provider one at a time. The
hourly send cap is re-checked before every message, independently of the
cap gate that admitted the reminder mission.

A row is claimed with a conditional ``pending → sending`` update, so a row
that some other drain already took is skipped. Failures go back to
``pending`` with exponential backoff until ``max_attempts`` is reached.
Rows stranded in ``sending`` by an interrupted drain are released by
``recover_stale``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.core.config import EmailConfig
from src.core.exceptions import MailError
from src.core.models import QueuedEmail, mask_email, utc_now
from src.db.repository import Repository
from src.mail.client import ResendClient
from src.orchestrator.cap_gates import CapGateEvaluator
from src.orchestrator.health_monitor import HealthMonitor

logger = logging.getLogger("solrelay.mail.dispatcher")

DEV_MODE_PROVIDER_ID = "dev-mode"


@dataclass
class DrainResult:
    sent: int = 0
    failed: int = 0
    retried: int = 0
    deferred: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "retried": self.retried,
            "deferred": self.deferred,
        }


class EmailDispatcher:
    """Drains queued emails through the provider.

    With no provider client configured, sends are simulated: the row is
    marked sent with provider id ``dev-mode`` and nothing leaves the process.
    """

    def __init__(
        self,
        repository: Repository,
        cap_gates: CapGateEvaluator,
        client: Optional[ResendClient],
        config: EmailConfig,
        clock: Callable[[], datetime] = utc_now,
        health_monitor: Optional[HealthMonitor] = None,
    ):
        self.repository = repository
        self.cap_gates = cap_gates
        self.client = client
        self.config = config
        self.clock = clock
        self.health_monitor = health_monitor

    def drain(self) -> DrainResult:
        result = DrainResult()
        if self.health_monitor is not None and self.health_monitor.is_circuit_breaker_open:
            logger.warning("Email drain skipped: mail circuit breaker open")
            return result

        due = self.repository.get_pending_emails(
            self.clock(), self.config.max_attempts, self.config.batch_size
        )
        for index, email in enumerate(due):
            gate = self.cap_gates.check_email_send()
            if not gate.ok:
                result.deferred = len(due) - index
                logger.info("Email drain paused: %s (%d deferred)", gate.reason, result.deferred)
                break

            claimed = self.repository.mark_email_sending(email.id, self.clock())
            if claimed is None:
                continue
            self._deliver(claimed, result)

        if result.sent or result.failed or result.retried:
            logger.info(
                "Email drain: %d sent, %d retried, %d failed",
                result.sent, result.retried, result.failed,
            )
        return result

    def _deliver(self, email: QueuedEmail, result: DrainResult) -> None:
        try:
            if self.client is None:
                provider_id = DEV_MODE_PROVIDER_ID
                logger.info("[dev] Would send '%s' to %s", email.subject, mask_email(email.to_email))
            else:
                provider_id = self.client.send(email.to_email, email.subject, email.html_body)
                if self.health_monitor is not None:
                    self.health_monitor.record_mail_success()
        except MailError as e:
            self._handle_failure(email, str(e), result)
            return
        except Exception as e:
            logger.exception("Unexpected error sending email %s", email.id)
            self._handle_failure(email, f"{type(e).__name__}: {e}", result)
            return

        now = self.clock()
        self.repository.mark_email_sent(email.id, provider_id, now)
        self.repository.emit_event(
            "email_sent",
            {
                "email_id": str(email.id),
                "to": mask_email(email.to_email),
                "type": email.email_type,
                "provider_id": provider_id,
            },
            transfer_id=email.transfer_id,
            mission_id=email.mission_id,
            source="email_dispatcher",
        )
        result.sent += 1

    def _handle_failure(self, email: QueuedEmail, error: str, result: DrainResult) -> None:
        if self.health_monitor is not None:
            self.health_monitor.record_mail_failure()
        # email.attempts already includes the attempt that just failed
        if email.attempts < self.config.max_attempts:
            retry_at = self.clock() + self.retry_delay(email.attempts)
            self.repository.reschedule_email(email.id, error, retry_at)
            logger.warning(
                "Email %s failed (attempt %d/%d), retrying at %s: %s",
                email.id, email.attempts, self.config.max_attempts, retry_at.isoformat(), error,
            )
            result.retried += 1
        else:
            self.repository.mark_email_failed(email.id, error)
            logger.error("Email %s failed permanently: %s", email.id, error)
            result.failed += 1

    def recover_stale(self) -> list[QueuedEmail]:
        """Release rows left in ``sending`` by a drain that never finished.

        A row claimed more than ``sending_timeout_minutes`` ago goes back to
        ``pending`` if it has attempts left, otherwise it is failed.
        """
        now = self.clock()
        timeout = self.config.sending_timeout_minutes
        recovered = self.repository.recover_stale_emails(
            claimed_before=now - timedelta(minutes=timeout),
            max_attempts=self.config.max_attempts,
            error=f"Stale: still sending after {timeout} minutes",
            now=now,
        )
        for email in recovered:
            logger.warning("Recovered stale email %s -> %s", email.id, email.status.value)
        return recovered

    def retry_delay(self, attempts: int) -> timedelta:
        """Backoff before the next attempt: base, 2x base, 4x base, ..."""
        exponent = max(attempts - 1, 0)
        return timedelta(seconds=self.config.retry_backoff_seconds * (2 ** exponent))
