"""Health monitor for the SolRelay agent.

Runs at the end of each scheduler tick and on demand from the health
surface. Checks:
1. Database reachability
2. Missions stuck in running past the stale window
3. Loop freshness: the last completed tick is not older than a few intervals
4. Mail provider circuit breaker: consecutive delivery failures
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.core.config import SchedulerConfig
from src.core.models import MissionStatus, utc_now
from src.db.repository import Repository

logger = logging.getLogger("solrelay.orchestrator.health_monitor")

# A tick older than this many poll intervals marks the loop as stalled
STALL_INTERVALS = 3
CIRCUIT_BREAKER_THRESHOLD = 3


class HealthCheck:
    """Result of a single health check."""

    def __init__(
        self,
        check_name: str,
        passed: bool,
        message: str = "",
        remediation: str | None = None,
    ):
        self.check_name = check_name
        self.passed = passed
        self.message = message
        self.remediation = remediation

    def to_dict(self) -> dict:
        data = {"check": self.check_name, "passed": self.passed, "message": self.message}
        if self.remediation:
            data["remediation"] = self.remediation
        return data


class HealthMonitor:
    """Anomaly detection for the scheduler.

    Injected dependencies:
        repository: Database access for mission queries.
        config: Scheduler configuration for the stale window and poll interval.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: Repository,
        config: SchedulerConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.config = config
        self.clock = clock
        self._consecutive_mail_failures = 0
        self._circuit_breaker_until: Optional[datetime] = None

    def run_checks(self, last_loop_at: Optional[datetime] = None) -> list[HealthCheck]:
        """Run all health checks. Returns list of check results."""
        database = self._check_database()
        checks = [database]
        if database.passed:
            checks.append(self._check_stale_missions())
        checks.append(self._check_loop_freshness(last_loop_at))
        checks.append(self._check_circuit_breaker())

        failed = [c for c in checks if not c.passed]
        if failed:
            logger.warning(
                "Health checks: %d/%d failed: %s",
                len(failed), len(checks),
                ", ".join(c.check_name for c in failed),
            )
        else:
            logger.debug("Health checks: all %d passed", len(checks))
        return checks

    def _check_database(self) -> HealthCheck:
        if self.repository.ping():
            return HealthCheck("database", passed=True, message="Database reachable")
        return HealthCheck(
            "database",
            passed=False,
            message="Database unreachable",
            remediation="Check DATABASE_URL and PostgreSQL availability",
        )

    def _check_stale_missions(self) -> HealthCheck:
        """Find missions running longer than the stale window."""
        cutoff = self.clock() - timedelta(minutes=self.config.stale_minutes)
        running = self.repository.list_missions(status=MissionStatus.RUNNING, limit=500)
        stale = [m for m in running if m.started_at is not None and m.started_at < cutoff]

        if not stale:
            return HealthCheck(
                "stale_missions", passed=True, message=f"{len(running)} mission(s) running"
            )
        return HealthCheck(
            "stale_missions",
            passed=False,
            message=f"{len(stale)} stale mission(s): {', '.join(m.short_id for m in stale)}",
            remediation="Stale recovery runs at the end of every tick",
        )

    def _check_loop_freshness(self, last_loop_at: Optional[datetime]) -> HealthCheck:
        if last_loop_at is None:
            return HealthCheck("loop_freshness", passed=True, message="No tick completed yet")
        limit = timedelta(seconds=self.config.poll_interval_seconds * STALL_INTERVALS)
        age = self.clock() - last_loop_at
        if age <= limit:
            return HealthCheck(
                "loop_freshness", passed=True, message=f"Last tick {age.total_seconds():.0f}s ago"
            )
        return HealthCheck(
            "loop_freshness",
            passed=False,
            message=f"Last tick {age.total_seconds():.0f}s ago (limit {limit.total_seconds():.0f}s)",
            remediation="Check scheduler logs for a hung tick or lost lease",
        )

    def _check_circuit_breaker(self) -> HealthCheck:
        if not self.is_circuit_breaker_open:
            return HealthCheck("mail_circuit_breaker", passed=True, message="Circuit breaker closed")
        return HealthCheck(
            "mail_circuit_breaker",
            passed=False,
            message=f"Circuit breaker open after {self._consecutive_mail_failures} consecutive mail failures",
            remediation="Check the mail provider status and RESEND_API_KEY",
        )

    def record_mail_success(self) -> None:
        """Reset the failure counter after a successful delivery."""
        self._consecutive_mail_failures = 0
        if self._circuit_breaker_until is not None:
            self._circuit_breaker_until = None
            logger.info("Mail circuit breaker closed after successful delivery")

    def record_mail_failure(self) -> None:
        """Opens the breaker after three consecutive failures."""
        self._consecutive_mail_failures += 1
        if (
            self._consecutive_mail_failures >= CIRCUIT_BREAKER_THRESHOLD
            and self._circuit_breaker_until is None
        ):
            # 30s per failure, capped at 5 minutes
            cooldown_seconds = min(30 * self._consecutive_mail_failures, 300)
            self._circuit_breaker_until = self.clock() + timedelta(seconds=cooldown_seconds)
            logger.warning("Mail circuit breaker OPENED, cooling down for %ds", cooldown_seconds)

    @property
    def is_circuit_breaker_open(self) -> bool:
        if self._circuit_breaker_until is None:
            return False
        if self.clock() > self._circuit_breaker_until:
            self._circuit_breaker_until = None
            self._consecutive_mail_failures = 0
            logger.info("Mail circuit breaker reset after cooldown")
            return False
        return True
