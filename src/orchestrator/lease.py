"""Single-scheduler lease.

Mission creation is not deduplicated across processes, so only one
scheduler may drive a store at a time. The lease is a row in
``agent_leases`` renewed at the start of every tick; another instance can
take it over only after it lapses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from src.core.exceptions import DatabaseError, LeaseError
from src.core.models import utc_now
from src.db.repository import Repository

logger = logging.getLogger("solrelay.orchestrator.lease")


class SchedulerLease:
    def __init__(
        self,
        repository: Repository,
        name: str,
        holder: str,
        ttl_seconds: int = 120,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.name = name
        self.holder = holder
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        """Take or renew the lease. False when another holder owns it."""
        try:
            acquired = self.repository.acquire_lease(self.name, self.holder, self.clock(), self.ttl)
        except DatabaseError as e:
            self._held = False
            raise LeaseError(f"Could not acquire lease '{self.name}': {e}") from e
        if acquired and not self._held:
            logger.info("Lease '%s' acquired by %s", self.name, self.holder)
        elif not acquired and self._held:
            logger.warning("Lease '%s' lost by %s", self.name, self.holder)
        elif not acquired:
            logger.debug("Lease '%s' held by another instance", self.name)
        self._held = acquired
        return acquired

    def release(self) -> None:
        if self.repository.release_lease(self.name, self.holder):
            logger.info("Lease '%s' released by %s", self.name, self.holder)
        self._held = False
