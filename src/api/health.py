"""Read-only HTTP health surface for the SolRelay agent.

    GET /health   loop state, in-process counters, cap-gate settings, checks
    GET /stats    the above plus live counts read from the store

Served by uvicorn on a daemon thread next to the scheduler loop.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.core.config import AppConfig
from src.core.models import MissionStatus, MissionType
from src.db.repository import Repository
from src.orchestrator.health_monitor import HealthMonitor
from src.orchestrator.loop import SchedulerLoop

logger = logging.getLogger("solrelay.api.health")


def create_health_app(
    loop: SchedulerLoop,
    repository: Repository,
    config: AppConfig,
    health_monitor: Optional[HealthMonitor] = None,
) -> FastAPI:
    """Build the FastAPI app over a running scheduler."""
    app = FastAPI(title="SolRelay Agent", docs_url=None, redoc_url=None, openapi_url=None)

    def _base_payload() -> dict[str, Any]:
        state = loop.state.to_dict()
        payload: dict[str, Any] = {
            "status": "ok",
            "environment": config.environment,
            "loop_count": state["loop_count"],
            "last_loop_at": state["last_loop_at"],
            "is_running": state["is_running"],
            "stats": state["stats"],
            "cap_gates": loop.cap_gates.describe(),
            "email_enabled": config.email.delivery_enabled,
            "dry_run": config.scheduler.dry_run,
            "reclaim_enabled": config.cap_gates.reclaim_enabled,
            "lease_held": loop.lease.held if loop.lease is not None else None,
        }
        latest = loop.metrics.get_latest()
        if latest is not None:
            payload["last_tick"] = latest.to_dict()
        return payload

    @app.get("/health")
    def health() -> JSONResponse:
        payload = _base_payload()
        if health_monitor is not None:
            checks = health_monitor.run_checks(loop.state.last_loop_at)
            payload["checks"] = [c.to_dict() for c in checks]
            if not all(c.passed for c in checks):
                payload["status"] = "degraded"
        return JSONResponse(payload)

    @app.get("/stats")
    def stats() -> JSONResponse:
        payload = _base_payload()
        try:
            now = loop.clock()
            summary = repository.get_mission_status_summary()
            payload["pending_missions"] = summary.get(MissionStatus.PENDING.value, 0) + summary.get(
                MissionStatus.APPROVED.value, 0
            )
            payload["missions_by_status"] = summary
            payload["today_reminders"] = repository.count_today_missions_by_type(
                MissionType.SEND_REMINDER.value, now
            )
            payload["emails_sent_today"] = repository.count_emails_sent_today(now)
            payload["metrics"] = loop.metrics.get_summary()
        except Exception as e:
            logger.error("Stats query failed: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse(payload)

    return app


class HealthServer:
    """Runs the health app with uvicorn on a daemon thread."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 3002):
        self.host = host
        self.port = port
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
        )
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.run, name="solrelay-health", daemon=True
        )
        self._thread.start()
        logger.info("Health endpoint listening on http://%s:%d/health", self.host, self.port)

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
