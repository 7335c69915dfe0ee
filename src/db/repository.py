"""Data access layer for the SolRelay agent.

All SQL queries live here. The scheduler never writes raw SQL; it calls
Repository methods that return Pydantic models. Every time-dependent query
takes an explicit ``now`` so the scheduler clock stays injectable.

Conditional writes (mission claim, email claim, reminder counter, transfer
stamps, lease) are ``UPDATE ... WHERE <guard> RETURNING *`` statements:
the guard is evaluated by PostgreSQL at write time, so two callers racing on
the same row cannot both succeed. The reminder counter shares a transaction
with the email and event rows it produces.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from src.core.models import (
    BlockedEntity,
    EmailStatus,
    EntityType,
    Event,
    Mission,
    MissionStatus,
    QueuedEmail,
    Transfer,
    TransferStatus,
)
from src.db.engine import DatabaseEngine


def _day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class Repository:
    """Data access layer wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    # -------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------

    def create_transfer(self, transfer: Transfer) -> Transfer:
        self.engine.execute(
            """INSERT INTO transfers
               (id, email, email_hash, claim_code_hash, amount, token, sender_pubkey,
                transfer_pubkey, status, created_at, expires_at, reminders_sent, metadata)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(transfer.id),
                transfer.email,
                transfer.email_hash,
                transfer.claim_code_hash,
                transfer.amount,
                transfer.token,
                transfer.sender_pubkey,
                transfer.transfer_pubkey,
                transfer.status.value,
                transfer.created_at,
                transfer.expires_at,
                transfer.reminders_sent,
                json.dumps(transfer.metadata),
            ],
        )
        return transfer

    def get_transfer(self, transfer_id: uuid.UUID) -> Optional[Transfer]:
        row = self.engine.fetch_one("SELECT * FROM transfers WHERE id = %s", [str(transfer_id)])
        if row is None:
            return None
        return _row_to_transfer(row)

    def get_transfers_by_age(
        self,
        now: datetime,
        min_age: timedelta,
        max_age: Optional[timedelta],
        reminders_sent: Optional[int],
        statuses: list[str],
        limit: int,
    ) -> list[Transfer]:
        """Unexpired transfers created inside (now - max_age, now - min_age), oldest first."""
        clauses = ["status = ANY(%s)", "created_at < %s", "expires_at > %s"]
        params: list[Any] = [statuses, now - min_age, now]
        if max_age is not None:
            clauses.append("created_at > %s")
            params.append(now - max_age)
        if reminders_sent is not None:
            clauses.append("reminders_sent = %s")
            params.append(reminders_sent)
        params.append(limit)
        rows = self.engine.fetch_all(
            f"""SELECT * FROM transfers
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at ASC
                LIMIT %s""",
            params,
        )
        return [_row_to_transfer(r) for r in rows]

    def get_transfers_expiring_within(
        self,
        now: datetime,
        window: timedelta,
        max_reminders: int,
        statuses: list[str],
        limit: int,
    ) -> list[Transfer]:
        rows = self.engine.fetch_all(
            """SELECT * FROM transfers
               WHERE status = ANY(%s)
                 AND reminders_sent < %s
                 AND expires_at > %s
                 AND expires_at < %s
               ORDER BY expires_at ASC
               LIMIT %s""",
            [statuses, max_reminders, now, now + window, limit],
        )
        return [_row_to_transfer(r) for r in rows]

    def get_transfers_expired_for_reclaim(
        self,
        now: datetime,
        grace: timedelta,
        max_reclaim_attempts: int,
        statuses: list[str],
        limit: int,
    ) -> list[Transfer]:
        rows = self.engine.fetch_all(
            """SELECT * FROM transfers
               WHERE status = ANY(%s)
                 AND expires_at < %s
                 AND claimed_at IS NULL
                 AND reclaimed_at IS NULL
                 AND reclaim_attempts < %s
               ORDER BY expires_at ASC
               LIMIT %s""",
            [statuses, now - grace, max_reclaim_attempts, limit],
        )
        return [_row_to_transfer(r) for r in rows]

    def record_reminder_and_queue(
        self,
        transfer_id: uuid.UUID,
        email: QueuedEmail,
        event_data: dict[str, Any],
        now: datetime,
        cap: int = 3,
    ) -> Optional[Transfer]:
        """Stamp a reminder, queue its email and record ``reminder_scheduled`` atomically.

        Returns None (and writes nothing) when the transfer is already at the
        reminder cap. If the email or event insert fails, the counter bump is
        rolled back with it, so a retried mission starts from the same count.
        """
        with self.engine.transaction() as cur:
            cur.execute(
                """UPDATE transfers
                   SET reminders_sent = reminders_sent + 1, last_reminder_at = %s
                   WHERE id = %s AND reminders_sent < %s
                   RETURNING *""",
                [now, str(transfer_id), cap],
            )
            row = cur.fetchone()
            if row is None:
                return None
            transfer = _row_to_transfer(row)
            cur.execute(_INSERT_EMAIL_SQL, _email_params(email))
            event = Event(
                event_type="reminder_scheduled",
                source="agent",
                data={**event_data, "reminders_sent": transfer.reminders_sent},
                transfer_id=transfer_id,
                mission_id=email.mission_id,
                created_at=now,
            )
            cur.execute(_INSERT_EVENT_SQL, _event_params(event))
        return transfer

    def increment_reclaim_attempts(self, transfer_id: uuid.UUID, now: datetime) -> Optional[Transfer]:
        row = self.engine.fetch_one(
            """UPDATE transfers
               SET reclaim_attempts = reclaim_attempts + 1, last_reclaim_attempt_at = %s
               WHERE id = %s
               RETURNING *""",
            [now, str(transfer_id)],
        )
        return _row_to_transfer(row) if row else None

    def mark_transfer_confirmed(
        self, transfer_id: uuid.UUID, transfer_pubkey: Optional[str], now: datetime
    ) -> Optional[Transfer]:
        row = self.engine.fetch_one(
            """UPDATE transfers
               SET status = 'confirmed', transfer_pubkey = COALESCE(%s, transfer_pubkey),
                   confirmed_at = %s
               WHERE id = %s AND status = 'pending'
               RETURNING *""",
            [transfer_pubkey, now, str(transfer_id)],
        )
        return _row_to_transfer(row) if row else None

    def mark_transfer_claimed(self, transfer_id: uuid.UUID, now: datetime) -> Optional[Transfer]:
        """Stamp claimed_at once; refused if already claimed or reclaimed."""
        row = self.engine.fetch_one(
            """UPDATE transfers
               SET status = 'claimed', claimed_at = %s
               WHERE id = %s
                 AND status IN ('pending', 'confirmed')
                 AND claimed_at IS NULL AND reclaimed_at IS NULL
               RETURNING *""",
            [now, str(transfer_id)],
        )
        return _row_to_transfer(row) if row else None

    def mark_transfer_expired(
        self, transfer_id: uuid.UUID, metadata: dict[str, Any]
    ) -> Optional[Transfer]:
        """Move a live transfer to expired, merging metadata."""
        row = self.engine.fetch_one(
            """UPDATE transfers
               SET status = 'expired', metadata = metadata || %s::jsonb
               WHERE id = %s
                 AND status IN ('pending', 'confirmed')
                 AND claimed_at IS NULL AND reclaimed_at IS NULL
               RETURNING *""",
            [json.dumps(metadata), str(transfer_id)],
        )
        return _row_to_transfer(row) if row else None

    def mark_transfer_reclaimed(self, transfer_id: uuid.UUID, now: datetime) -> Optional[Transfer]:
        """Stamp reclaimed_at once; refused if already claimed or reclaimed."""
        row = self.engine.fetch_one(
            """UPDATE transfers
               SET status = 'reclaimed', reclaimed_at = %s
               WHERE id = %s
                 AND status IN ('pending', 'confirmed', 'expired')
                 AND claimed_at IS NULL AND reclaimed_at IS NULL
               RETURNING *""",
            [now, str(transfer_id)],
        )
        return _row_to_transfer(row) if row else None

    def get_transfer_status_summary(self) -> dict[str, int]:
        rows = self.engine.fetch_all(
            "SELECT status, COUNT(*) AS cnt FROM transfers GROUP BY status"
        )
        return {str(row["status"]): int(row["cnt"]) for row in rows}

    # -------------------------------------------------------------------
    # Missions
    # -------------------------------------------------------------------

    def create_mission(self, mission: Mission) -> Mission:
        self.engine.execute(
            """INSERT INTO missions
               (id, type, source, status, priority, scheduled_for, input_data,
                transfer_id, parent_mission_id, attempts, approved_at, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            [
                str(mission.id),
                mission.type,
                mission.source,
                mission.status.value,
                mission.priority,
                mission.scheduled_for,
                json.dumps(mission.input_data),
                str(mission.transfer_id) if mission.transfer_id else None,
                str(mission.parent_mission_id) if mission.parent_mission_id else None,
                mission.attempts,
                mission.approved_at,
                mission.created_at,
            ],
        )
        return mission

    def get_mission(self, mission_id: uuid.UUID) -> Optional[Mission]:
        row = self.engine.fetch_one("SELECT * FROM missions WHERE id = %s", [str(mission_id)])
        if row is None:
            return None
        return _row_to_mission(row)

    def get_pending_missions(self, now: datetime, max_attempts: int, limit: int) -> list[Mission]:
        """Missions ready to run: pending/approved, due, under the attempt cap."""
        rows = self.engine.fetch_all(
            """SELECT * FROM missions
               WHERE status IN ('pending', 'approved')
                 AND scheduled_for <= %s
                 AND attempts < %s
               ORDER BY priority ASC, scheduled_for ASC
               LIMIT %s""",
            [now, max_attempts, limit],
        )
        return [_row_to_mission(r) for r in rows]

    def claim_mission(self, mission_id: uuid.UUID, now: datetime, max_attempts: int) -> Optional[Mission]:
        """Atomic compare-and-set into running. None means someone else has it."""
        row = self.engine.fetch_one(
            """UPDATE missions
               SET status = 'running', started_at = %s, attempts = attempts + 1
               WHERE id = %s
                 AND status IN ('pending', 'approved')
                 AND attempts < %s
               RETURNING *""",
            [now, str(mission_id), max_attempts],
        )
        return _row_to_mission(row) if row else None

    def complete_mission(
        self, mission_id: uuid.UUID, output_data: dict[str, Any], now: datetime
    ) -> Optional[Mission]:
        row = self.engine.fetch_one(
            """UPDATE missions
               SET status = 'succeeded', completed_at = %s, output_data = %s
               WHERE id = %s AND status = 'running'
               RETURNING *""",
            [now, json.dumps(output_data, default=str), str(mission_id)],
        )
        return _row_to_mission(row) if row else None

    def fail_mission(self, mission_id: uuid.UUID, error: str, now: datetime) -> Optional[Mission]:
        row = self.engine.fetch_one(
            """UPDATE missions
               SET status = 'failed', completed_at = %s, error = %s
               WHERE id = %s AND status IN ('pending', 'approved', 'running')
               RETURNING *""",
            [now, error, str(mission_id)],
        )
        return _row_to_mission(row) if row else None

    def release_mission(
        self, mission_id: uuid.UUID, error: str, retry_at: datetime
    ) -> Optional[Mission]:
        """Hand a running mission back to its queue status for another attempt."""
        row = self.engine.fetch_one(
            """UPDATE missions
               SET status = CASE WHEN approved_at IS NULL THEN 'pending' ELSE 'approved' END,
                   error = %s, scheduled_for = %s, started_at = NULL
               WHERE id = %s AND status = 'running'
               RETURNING *""",
            [error, retry_at, str(mission_id)],
        )
        return _row_to_mission(row) if row else None

    def block_mission(self, mission_id: uuid.UUID, reason: str) -> Optional[Mission]:
        row = self.engine.fetch_one(
            """UPDATE missions
               SET status = 'blocked', blocked_reason = %s
               WHERE id = %s AND status IN ('pending', 'approved')
               RETURNING *""",
            [reason, str(mission_id)],
        )
        return _row_to_mission(row) if row else None

    def approve_mission(self, mission_id: uuid.UUID, now: datetime) -> Optional[Mission]:
        row = self.engine.fetch_one(
            """UPDATE missions
               SET status = 'approved', approved_at = %s,
                   scheduled_for = LEAST(scheduled_for, %s)
               WHERE id = %s AND status = 'pending'
               RETURNING *""",
            [now, now, str(mission_id)],
        )
        return _row_to_mission(row) if row else None

    def reschedule_mission(self, mission_id: uuid.UUID, scheduled_for: datetime) -> Optional[Mission]:
        row = self.engine.fetch_one(
            """UPDATE missions
               SET scheduled_for = %s
               WHERE id = %s AND status IN ('pending', 'approved')
               RETURNING *""",
            [scheduled_for, str(mission_id)],
        )
        return _row_to_mission(row) if row else None

    def recover_stale_missions(
        self, started_before: datetime, error: str, now: datetime
    ) -> list[Mission]:
        """Force-fail every running mission started before the cutoff, in one statement."""
        rows = self.engine.fetch_all(
            """UPDATE missions
               SET status = 'failed', error = %s, completed_at = %s
               WHERE status = 'running' AND started_at < %s
               RETURNING *""",
            [error, now, started_before],
        )
        return [_row_to_mission(r) for r in rows]

    def count_open_missions_by_type(self, mission_type: str) -> int:
        row = self.engine.fetch_one(
            """SELECT COUNT(*) AS cnt FROM missions
               WHERE type = %s AND status IN ('pending', 'approved', 'running')""",
            [mission_type],
        )
        return int(row["cnt"]) if row else 0

    def count_succeeded_missions_since(self, mission_type: str, since: datetime) -> int:
        row = self.engine.fetch_one(
            """SELECT COUNT(*) AS cnt FROM missions
               WHERE type = %s AND status = 'succeeded' AND completed_at >= %s""",
            [mission_type, since],
        )
        return int(row["cnt"]) if row else 0

    def count_today_missions_by_type(self, mission_type: str, now: datetime) -> int:
        return self.count_succeeded_missions_since(mission_type, _day_start(now))

    def has_recent_mission(
        self,
        transfer_id: uuid.UUID,
        mission_type: str,
        source: str,
        created_after: datetime,
    ) -> bool:
        """True if the transfer has an open mission of this type, or one from this source since the cutoff."""
        row = self.engine.fetch_one(
            """SELECT COUNT(*) AS cnt FROM missions
               WHERE transfer_id = %s AND type = %s
                 AND (status IN ('pending', 'approved', 'running')
                      OR (source = %s AND created_at > %s))""",
            [str(transfer_id), mission_type, source, created_after],
        )
        return (int(row["cnt"]) if row else 0) > 0

    def list_missions(self, status: Optional[MissionStatus] = None, limit: int = 50) -> list[Mission]:
        if status is None:
            rows = self.engine.fetch_all(
                "SELECT * FROM missions ORDER BY created_at DESC LIMIT %s", [limit]
            )
        else:
            rows = self.engine.fetch_all(
                "SELECT * FROM missions WHERE status = %s ORDER BY created_at DESC LIMIT %s",
                [status.value, limit],
            )
        return [_row_to_mission(r) for r in rows]

    def get_mission_status_summary(self) -> dict[str, int]:
        rows = self.engine.fetch_all(
            "SELECT status, COUNT(*) AS cnt FROM missions GROUP BY status"
        )
        return {str(row["status"]): int(row["cnt"]) for row in rows}

    # -------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------

    def emit_event(
        self,
        event_type: str,
        data: dict[str, Any],
        transfer_id: Optional[uuid.UUID] = None,
        mission_id: Optional[uuid.UUID] = None,
        source: str = "system",
    ) -> Event:
        event = Event(
            event_type=event_type,
            source=source,
            data=data,
            transfer_id=transfer_id,
            mission_id=mission_id,
        )
        self.engine.execute(_INSERT_EVENT_SQL, _event_params(event))
        return event

    def get_unprocessed_events(self, limit: int = 100) -> list[Event]:
        rows = self.engine.fetch_all(
            """SELECT * FROM events WHERE processed = false
               ORDER BY created_at ASC LIMIT %s""",
            [limit],
        )
        return [Event(**r) for r in rows]

    def mark_event_processed(self, event_id: uuid.UUID, now: datetime) -> None:
        self.engine.execute(
            "UPDATE events SET processed = true, processed_at = %s WHERE id = %s",
            [now, str(event_id)],
        )

    # -------------------------------------------------------------------
    # Email queue
    # -------------------------------------------------------------------

    def queue_email(self, email: QueuedEmail) -> QueuedEmail:
        self.engine.execute(_INSERT_EMAIL_SQL, _email_params(email))
        return email

    def get_email(self, email_id: uuid.UUID) -> Optional[QueuedEmail]:
        row = self.engine.fetch_one("SELECT * FROM email_queue WHERE id = %s", [str(email_id)])
        return QueuedEmail(**row) if row else None

    def get_pending_emails(self, now: datetime, max_attempts: int, limit: int) -> list[QueuedEmail]:
        rows = self.engine.fetch_all(
            """SELECT * FROM email_queue
               WHERE status = 'pending' AND scheduled_for <= %s AND attempts < %s
               ORDER BY scheduled_for ASC
               LIMIT %s""",
            [now, max_attempts, limit],
        )
        return [QueuedEmail(**r) for r in rows]

    def mark_email_sending(self, email_id: uuid.UUID, now: datetime) -> Optional[QueuedEmail]:
        row = self.engine.fetch_one(
            """UPDATE email_queue
               SET status = 'sending', attempts = attempts + 1, claimed_at = %s
               WHERE id = %s AND status = 'pending'
               RETURNING *""",
            [now, str(email_id)],
        )
        return QueuedEmail(**row) if row else None

    def recover_stale_emails(
        self, claimed_before: datetime, max_attempts: int, error: str, now: datetime
    ) -> list[QueuedEmail]:
        """Release rows stuck in ``sending`` since before the cutoff.

        Rows with attempts left go back to ``pending`` and are due at once;
        the rest are failed.
        """
        rows = self.engine.fetch_all(
            """UPDATE email_queue
               SET status = CASE WHEN attempts < %s THEN 'pending' ELSE 'failed' END,
                   scheduled_for = CASE WHEN attempts < %s THEN %s ELSE scheduled_for END,
                   error = %s
               WHERE status = 'sending' AND claimed_at < %s
               RETURNING *""",
            [max_attempts, max_attempts, now, error, claimed_before],
        )
        return [QueuedEmail(**r) for r in rows]

    def mark_email_sent(self, email_id: uuid.UUID, provider_id: str, now: datetime) -> None:
        self.engine.execute(
            """UPDATE email_queue
               SET status = 'sent', sent_at = %s, provider_id = %s, error = NULL
               WHERE id = %s""",
            [now, provider_id, str(email_id)],
        )

    def mark_email_failed(self, email_id: uuid.UUID, error: str) -> None:
        self.engine.execute(
            "UPDATE email_queue SET status = 'failed', error = %s WHERE id = %s",
            [error, str(email_id)],
        )

    def reschedule_email(self, email_id: uuid.UUID, error: str, retry_at: datetime) -> None:
        self.engine.execute(
            """UPDATE email_queue
               SET status = 'pending', error = %s, scheduled_for = %s
               WHERE id = %s AND status = 'sending'""",
            [error, retry_at, str(email_id)],
        )

    def count_emails_sent_since(self, since: datetime) -> int:
        row = self.engine.fetch_one(
            "SELECT COUNT(*) AS cnt FROM email_queue WHERE status = %s AND sent_at >= %s",
            [EmailStatus.SENT.value, since],
        )
        return int(row["cnt"]) if row else 0

    def count_emails_sent_last_hour(self, now: datetime) -> int:
        return self.count_emails_sent_since(now - timedelta(hours=1))

    def count_emails_sent_today(self, now: datetime) -> int:
        return self.count_emails_sent_since(_day_start(now))

    # -------------------------------------------------------------------
    # Blocked entities
    # -------------------------------------------------------------------

    def is_blocked(self, entity_type: EntityType, value: str, now: datetime) -> bool:
        row = self.engine.fetch_one(
            """SELECT 1 AS hit FROM blocked_entities
               WHERE entity_type = %s AND entity_value = %s
                 AND (blocked_until IS NULL OR blocked_until > %s)""",
            [entity_type.value, value.lower(), now],
        )
        return row is not None

    def block_entity(self, entity: BlockedEntity) -> BlockedEntity:
        self.engine.execute(
            """INSERT INTO blocked_entities
               (entity_type, entity_value, reason, blocked_by, blocked_until, blocked_at)
               VALUES (%s, %s, %s, %s, %s, %s)
               ON CONFLICT (entity_type, entity_value) DO UPDATE
               SET reason = EXCLUDED.reason, blocked_by = EXCLUDED.blocked_by,
                   blocked_until = EXCLUDED.blocked_until, blocked_at = EXCLUDED.blocked_at""",
            [
                entity.entity_type.value,
                entity.entity_value,
                entity.reason,
                entity.blocked_by,
                entity.blocked_until,
                entity.blocked_at,
            ],
        )
        return entity

    def unblock_entity(self, entity_type: EntityType, value: str) -> bool:
        affected = self.engine.execute(
            "DELETE FROM blocked_entities WHERE entity_type = %s AND entity_value = %s",
            [entity_type.value, value.lower()],
        )
        return affected > 0

    # -------------------------------------------------------------------
    # Agent state & lease
    # -------------------------------------------------------------------

    def ping(self) -> bool:
        return self.engine.ping()

    def get_state(self, key: str) -> Optional[dict[str, Any]]:
        row = self.engine.fetch_one("SELECT value FROM agent_state WHERE key = %s", [key])
        return row["value"] if row else None

    def set_state(self, key: str, value: dict[str, Any], now: datetime) -> None:
        self.engine.execute(
            """INSERT INTO agent_state (key, value, updated_at)
               VALUES (%s, %s, %s)
               ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at""",
            [key, json.dumps(value, default=str), now],
        )

    def acquire_lease(self, name: str, holder: str, now: datetime, ttl: timedelta) -> bool:
        """Take or renew the named lease. Succeeds for the current holder or when the lease lapsed."""
        row = self.engine.fetch_one(
            """INSERT INTO agent_leases (name, holder, acquired_at, expires_at)
               VALUES (%s, %s, %s, %s)
               ON CONFLICT (name) DO UPDATE
               SET holder = EXCLUDED.holder,
                   acquired_at = CASE WHEN agent_leases.holder = EXCLUDED.holder
                                      THEN agent_leases.acquired_at ELSE EXCLUDED.acquired_at END,
                   expires_at = EXCLUDED.expires_at
               WHERE agent_leases.holder = EXCLUDED.holder OR agent_leases.expires_at < %s
               RETURNING holder""",
            [name, holder, now, now + ttl, now],
        )
        return row is not None and row["holder"] == holder

    def release_lease(self, name: str, holder: str) -> bool:
        affected = self.engine.execute(
            "DELETE FROM agent_leases WHERE name = %s AND holder = %s",
            [name, holder],
        )
        return affected > 0


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

def _row_to_transfer(row: dict) -> Transfer:
    data = dict(row)
    data["status"] = TransferStatus(data["status"])
    data["metadata"] = data.get("metadata") or {}
    return Transfer(**data)


def _row_to_mission(row: dict) -> Mission:
    data = dict(row)
    data["status"] = MissionStatus(data["status"])
    data["input_data"] = data.get("input_data") or {}
    return Mission(**data)


_INSERT_EMAIL_SQL = """INSERT INTO email_queue
   (id, to_email, subject, html_body, text_body, email_type, status,
    scheduled_for, transfer_id, mission_id, created_at)
   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)"""

_INSERT_EVENT_SQL = """INSERT INTO events
   (id, event_type, source, data, transfer_id, mission_id, created_at)
   VALUES (%s, %s, %s, %s, %s, %s, %s)"""


def _email_params(email: QueuedEmail) -> list[Any]:
    return [
        str(email.id),
        email.to_email,
        email.subject,
        email.html_body,
        email.text_body,
        email.email_type,
        email.status.value,
        email.scheduled_for,
        str(email.transfer_id) if email.transfer_id else None,
        str(email.mission_id) if email.mission_id else None,
        email.created_at,
    ]


def _event_params(event: Event) -> list[Any]:
    return [
        str(event.id),
        event.event_type,
        event.source,
        json.dumps(event.data, default=str),
        str(event.transfer_id) if event.transfer_id else None,
        str(event.mission_id) if event.mission_id else None,
        event.created_at,
    ]
