"""Component factory for the SolRelay agent.

Creates and wires all components (database, repository, cap gates,
triggers, lifecycle, executors, mail client, dispatcher, lease, loop) so
the CLI and the health server receive fully-initialized dependencies.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from src.core.config import AppConfig, load_config
from src.core.models import utc_now
from src.db.engine import DatabaseEngine
from src.db.repository import Repository
from src.mail.client import ResendClient
from src.mail.dispatcher import EmailDispatcher
from src.orchestrator.cap_gates import CapGateEvaluator
from src.orchestrator.executors import ExecutorRegistry
from src.orchestrator.health_monitor import HealthMonitor
from src.orchestrator.lease import SchedulerLease
from src.orchestrator.lifecycle import MissionLifecycle
from src.orchestrator.loop import SchedulerLoop
from src.orchestrator.metrics import TickMetrics
from src.orchestrator.triggers import TriggerEvaluator

logger = logging.getLogger("solrelay.factory")


@dataclass
class ComponentBundle:
    """Container for all initialized components.

    The factory builds the bundle once; the CLI hands references to the
    loop and the health server.
    """

    config: AppConfig
    repository: Repository
    cap_gates: CapGateEvaluator
    triggers: TriggerEvaluator
    lifecycle: MissionLifecycle
    executors: ExecutorRegistry
    dispatcher: EmailDispatcher
    health_monitor: HealthMonitor
    loop: SchedulerLoop
    db_engine: Optional[DatabaseEngine] = None
    mail_client: Optional[ResendClient] = None
    lease: Optional[SchedulerLease] = None


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class ComponentFactory:
    """Factory for creating and wiring all SolRelay components.

    Usage:
        bundle = ComponentFactory.create(config_dir=Path("config"))
        bundle.loop.tick()
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        initialize_schema: bool = False,
    ) -> ComponentBundle:
        """Load config, connect to PostgreSQL and wire everything on top."""
        logger.info("Initializing components...")

        config = load_config(config_dir=config_dir, env=env)
        logger.info("Config loaded (env=%s, %d trigger rules)", config.environment, len(config.triggers.rules))

        db_engine = DatabaseEngine(config.database)
        if initialize_schema:
            db_engine.initialize_schema()
            logger.info("Database schema initialized")

        bundle = ComponentFactory.wire(config, Repository(db_engine))
        bundle.db_engine = db_engine
        return bundle

    @staticmethod
    def wire(
        config: AppConfig,
        repository: Repository,
        clock: Callable[[], datetime] = utc_now,
        mail_client: Optional[ResendClient] = None,
    ) -> ComponentBundle:
        """Build the scheduler graph over an existing repository.

        Without an explicit ``mail_client`` one is created only when an API
        key is configured; otherwise the dispatcher runs in dev mode.
        """
        if mail_client is None and config.email.delivery_enabled:
            mail_client = ResendClient(config=config.email)
            logger.info("Mail client configured (base_url=%s)", config.email.base_url)
        elif mail_client is None:
            logger.warning("RESEND_API_KEY not set, emails will be simulated")

        scheduler = config.scheduler
        cap_gates = CapGateEvaluator(repository, config.cap_gates, clock=clock)
        triggers = TriggerEvaluator(repository, cap_gates, config.triggers, clock=clock)
        lifecycle = MissionLifecycle(repository, max_attempts=scheduler.max_mission_attempts, clock=clock)
        executors = ExecutorRegistry(
            repository, config.email.frontend_url, dry_run=scheduler.dry_run, clock=clock
        )
        health_monitor = HealthMonitor(repository, scheduler, clock=clock)
        dispatcher = EmailDispatcher(
            repository, cap_gates, mail_client, config.email, clock=clock, health_monitor=health_monitor
        )

        lease = None
        if scheduler.lease_enabled:
            lease = SchedulerLease(
                repository,
                name=scheduler.lease_name,
                holder=scheduler.instance_id or default_instance_id(),
                ttl_seconds=scheduler.lease_ttl_seconds,
                clock=clock,
            )

        loop = SchedulerLoop(
            repository=repository,
            triggers=triggers,
            cap_gates=cap_gates,
            lifecycle=lifecycle,
            executors=executors,
            dispatcher=dispatcher,
            config=scheduler,
            lease=lease,
            metrics=TickMetrics(),
            clock=clock,
        )

        logger.info("All components initialized")
        return ComponentBundle(
            config=config,
            repository=repository,
            cap_gates=cap_gates,
            triggers=triggers,
            lifecycle=lifecycle,
            executors=executors,
            dispatcher=dispatcher,
            health_monitor=health_monitor,
            loop=loop,
            mail_client=mail_client,
            lease=lease,
        )

    @staticmethod
    def close(bundle: ComponentBundle) -> None:
        """Cleanly shut down all components."""
        if bundle.lease is not None and bundle.lease.held:
            bundle.lease.release()
        if bundle.mail_client is not None:
            bundle.mail_client.close()
        if bundle.db_engine is not None:
            bundle.db_engine.close()
        logger.info("All components shut down")
