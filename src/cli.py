"""CLI entrypoint for the SolRelay agent."""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import click

from src.core.exceptions import RelayError

_MISSION_STATUSES = ("pending", "approved", "blocked", "running", "succeeded", "failed")


def _setup_logging(verbose: bool = False, config_dir: Path | None = None, env: str | None = None) -> None:
    """Apply logging configuration from the YAML cascade."""
    from src.core.config import load_config

    try:
        config = load_config(config_dir=config_dir, env=env)
        level_name = config.logging.level
        fmt = config.logging.format
    except RelayError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    required=False,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Config directory (default: <project>/config).",
)
@click.option("--env", required=False, default=None, help="Config overlay environment (e.g. test).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Path | None, env: str | None) -> None:
    """SolRelay autonomous mission scheduler."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_dir"] = config_dir
    ctx.obj["env"] = env
    _setup_logging(verbose=verbose, config_dir=config_dir, env=env)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema (idempotent)."""
    from src.core.config import load_config
    from src.db.engine import DatabaseEngine

    try:
        config = load_config(config_dir=ctx.obj["config_dir"], env=ctx.obj["env"])
        engine = DatabaseEngine(config.database)
        try:
            engine.initialize_schema()
        finally:
            engine.close()
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Schema initialized on {config.database.host}:{config.database.port}/{config.database.dbname}")


@cli.command("run")
@click.option("--no-health", is_flag=True, default=False, help="Do not start the HTTP health endpoint.")
@click.pass_context
def run(ctx: click.Context, no_health: bool) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    from src.api.health import HealthServer, create_health_app

    component_factory = _load_component_factory()
    try:
        bundle = component_factory.create(config_dir=ctx.obj["config_dir"], env=ctx.obj["env"])
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc

    config = bundle.config
    stop_event = threading.Event()

    def _shutdown(signum: int, frame: Any) -> None:
        click.echo(click.style(f"\nReceived signal {signum}, shutting down...", fg="yellow"))
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    server: Optional[HealthServer] = None
    if config.health.enabled and not no_health:
        app = create_health_app(bundle.loop, bundle.repository, config, bundle.health_monitor)
        server = HealthServer(app, host=config.health.host, port=config.health.port)
        server.start()

    click.echo(
        click.style("SolRelay agent starting", bold=True) + "\n"
        f"  Environment:   {config.environment}\n"
        f"  Poll interval: {config.scheduler.poll_interval_ms}ms\n"
        f"  Email:         {'enabled' if config.email.delivery_enabled else 'dev mode'}\n"
        f"  Dry run:       {config.scheduler.dry_run}\n"
        f"  Reclaim:       {config.cap_gates.reclaim_enabled}"
    )
    try:
        bundle.loop.run_forever(stop_event)
    finally:
        if server is not None:
            server.stop()
        component_factory.close(bundle)

    state = bundle.loop.state
    click.echo(
        click.style("\nStopped.", bold=True) + "\n"
        f"  Ticks:             {state.loop_count}\n"
        f"  Missions created:  {state.missions_created}\n"
        f"  Missions failed:   {state.missions_failed}\n"
        f"  Emails sent:       {state.emails_sent}"
    )


@cli.command("tick")
@click.pass_context
def tick(ctx: click.Context) -> None:
    """Run exactly one scheduler iteration and print its summary."""
    component_factory = _load_component_factory()
    bundle = None
    try:
        bundle = component_factory.create(config_dir=ctx.obj["config_dir"], env=ctx.obj["env"])
        record = bundle.loop.tick()
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        if bundle is not None:
            component_factory.close(bundle)

    if record is None:
        raise click.ClickException("Tick skipped: the scheduler lease is held by another instance.")
    _echo_json(record.to_dict())


@cli.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Print persisted loop stats and mission/transfer counts."""
    from src.core.models import MissionType

    from src.orchestrator.loop import LAST_LOOP_STATE_KEY

    repo_ctx = _open_repo_context(ctx.obj["config_dir"], ctx.obj["env"])
    try:
        now = datetime.now(UTC)
        _echo_json(
            {
                "last_loop": repo_ctx.repository.get_state(LAST_LOOP_STATE_KEY),
                "missions": repo_ctx.repository.get_mission_status_summary(),
                "transfers": repo_ctx.repository.get_transfer_status_summary(),
                "today_reminders": repo_ctx.repository.count_today_missions_by_type(
                    MissionType.SEND_REMINDER.value, now
                ),
                "emails_sent_last_hour": repo_ctx.repository.count_emails_sent_last_hour(now),
            }
        )
    finally:
        _close_repo_context(repo_ctx)


# ---------------------------------------------------------------------------
# Missions (manual review path)
# ---------------------------------------------------------------------------

@cli.command("missions")
@click.option("--status", "status_filter", required=False, type=click.Choice(_MISSION_STATUSES))
@click.option("--limit", required=False, type=int, default=50, show_default=True)
@click.pass_context
def missions(ctx: click.Context, status_filter: str | None, limit: int) -> None:
    """List missions, newest first."""
    from src.core.models import MissionStatus

    repo_ctx = _open_repo_context(ctx.obj["config_dir"], ctx.obj["env"])
    try:
        rows = repo_ctx.repository.list_missions(
            status=MissionStatus(status_filter) if status_filter else None, limit=limit
        )
    finally:
        _close_repo_context(repo_ctx)

    if not rows:
        click.echo("No missions.")
        return
    for m in rows:
        line = f"{m.id}  {m.status.value:<9}  {m.type:<17}  src={m.source}  attempts={m.attempts}"
        if m.blocked_reason:
            line += f"  blocked: {m.blocked_reason}"
        elif m.error:
            line += f"  error: {m.error[:80]}"
        click.echo(line)


@cli.command("approve")
@click.option("--mission-id", required=True, help="Mission ID waiting in pending.")
@click.pass_context
def approve(ctx: click.Context, mission_id: str) -> None:
    """Approve a pending mission so the next tick can run it."""
    mission_uuid = _parse_uuid(mission_id, "mission_id")
    repo_ctx = _open_repo_context(ctx.obj["config_dir"], ctx.obj["env"])
    try:
        mission = repo_ctx.repository.approve_mission(mission_uuid, datetime.now(UTC))
        if mission is None:
            _raise_not_pending(repo_ctx, mission_uuid, "approved")
        click.echo(f"Approved mission {mission.id} ({mission.type}) -> {mission.status.value}")
    finally:
        _close_repo_context(repo_ctx)


@cli.command("block-mission")
@click.option("--mission-id", required=True, help="Mission ID in pending or approved.")
@click.option("--reason", required=True, help="Why the mission is blocked.")
@click.pass_context
def block_mission(ctx: click.Context, mission_id: str, reason: str) -> None:
    """Block a queued mission permanently."""
    mission_uuid = _parse_uuid(mission_id, "mission_id")
    repo_ctx = _open_repo_context(ctx.obj["config_dir"], ctx.obj["env"])
    try:
        mission = repo_ctx.repository.block_mission(mission_uuid, reason)
        if mission is None:
            _raise_not_pending(repo_ctx, mission_uuid, "blocked")
        click.echo(f"Blocked mission {mission.id} ({mission.type}): {reason}")
    finally:
        _close_repo_context(repo_ctx)


# ---------------------------------------------------------------------------
# Blocked entities
# ---------------------------------------------------------------------------

@cli.command("block")
@click.option("--type", "entity_type", required=True, type=click.Choice(["email", "wallet"]))
@click.option("--value", required=True, help="Email address or wallet pubkey.")
@click.option("--reason", required=True)
@click.option("--hours", required=False, type=float, default=None, help="Block duration; permanent if omitted.")
@click.pass_context
def block(ctx: click.Context, entity_type: str, value: str, reason: str, hours: float | None) -> None:
    """Block an email or wallet from receiving agent actions."""
    from src.core.models import BlockedEntity, EntityType

    now = datetime.now(UTC)
    entity = BlockedEntity(
        entity_type=EntityType(entity_type),
        entity_value=value,
        reason=reason,
        blocked_by="cli",
        blocked_until=now + timedelta(hours=hours) if hours else None,
        blocked_at=now,
    )
    repo_ctx = _open_repo_context(ctx.obj["config_dir"], ctx.obj["env"])
    try:
        repo_ctx.repository.block_entity(entity)
    finally:
        _close_repo_context(repo_ctx)
    until = entity.blocked_until.isoformat() if entity.blocked_until else "permanent"
    click.echo(f"Blocked {entity.entity_type.value} {entity.entity_value} ({until})")


@cli.command("unblock")
@click.option("--type", "entity_type", required=True, type=click.Choice(["email", "wallet"]))
@click.option("--value", required=True)
@click.pass_context
def unblock(ctx: click.Context, entity_type: str, value: str) -> None:
    """Remove a block."""
    from src.core.models import EntityType

    repo_ctx = _open_repo_context(ctx.obj["config_dir"], ctx.obj["env"])
    try:
        removed = repo_ctx.repository.unblock_entity(EntityType(entity_type), value)
    finally:
        _close_repo_context(repo_ctx)
    if not removed:
        raise click.ClickException(f"No block found for {entity_type} {value}")
    click.echo(f"Unblocked {entity_type} {value.lower()}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@dataclass
class _RepoContext:
    config: Any
    repository: Any
    db_engine: Any


def _open_repo_context(config_dir: Path | None = None, env: str | None = None) -> _RepoContext:
    from src.core.config import load_config
    from src.db.engine import DatabaseEngine
    from src.db.repository import Repository

    try:
        config = load_config(config_dir=config_dir, env=env)
        db_engine = DatabaseEngine(config.database)
    except RelayError as exc:
        raise click.ClickException(str(exc)) from exc
    return _RepoContext(config=config, repository=Repository(db_engine), db_engine=db_engine)


def _close_repo_context(ctx: _RepoContext) -> None:
    ctx.db_engine.close()


def _load_component_factory():
    from src.core.factory import ComponentFactory

    return ComponentFactory


def _raise_not_pending(ctx: _RepoContext, mission_id: UUID, action: str) -> None:
    existing = ctx.repository.get_mission(mission_id)
    if existing is None:
        raise click.ClickException(f"Mission not found: {mission_id}")
    raise click.ClickException(
        f"Mission {mission_id} is in status {existing.status.value}; it cannot be {action}."
    )


def _parse_uuid(raw: str | None, field_name: str) -> UUID:
    if raw is None:
        raise click.ClickException(f"Missing required UUID value for {field_name}")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise click.ClickException(f"Invalid UUID for {field_name}: {raw}") from exc


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=True, default=str))


def main() -> None:
    """Entry point used by the `solrelay` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=False)
    cli()


if __name__ == "__main__":
    main()
