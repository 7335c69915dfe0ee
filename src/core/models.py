"""All Pydantic data models for the SolRelay agent.

Defines the data contracts used across the scheduler, the repository and
the mail dispatcher. Every table row and every value passed between the
trigger evaluator, cap gates and executors has a model here.
"""

from __future__ import annotations

import enum
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field

TRANSFER_TTL = timedelta(hours=72)
MAX_REMINDERS_PER_TRANSFER = 3


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    RECLAIMED = "reclaimed"


class MissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED = "blocked"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class MissionType(str, enum.Enum):
    SEND_REMINDER = "send_reminder"
    AUTO_RECLAIM = "auto_reclaim"
    INVESTIGATE_ABUSE = "investigate_abuse"


class EmailStatus(str, enum.Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class EntityType(str, enum.Enum):
    EMAIL = "email"
    WALLET = "wallet"


class ReminderType(str, enum.Enum):
    FIRST = "first"
    URGENT = "urgent"
    FINAL = "final"


# Monotonic: a transfer never moves back once stamped
TRANSFER_TRANSITIONS: dict[TransferStatus, set[TransferStatus]] = {
    TransferStatus.PENDING: {
        TransferStatus.CONFIRMED,
        TransferStatus.CLAIMED,
        TransferStatus.EXPIRED,
        TransferStatus.RECLAIMED,
    },
    TransferStatus.CONFIRMED: {
        TransferStatus.CLAIMED,
        TransferStatus.EXPIRED,
        TransferStatus.RECLAIMED,
    },
    TransferStatus.EXPIRED: {TransferStatus.RECLAIMED},
    TransferStatus.CLAIMED: set(),
    TransferStatus.RECLAIMED: set(),
}

OPEN_MISSION_STATUSES: tuple[MissionStatus, ...] = (
    MissionStatus.PENDING,
    MissionStatus.APPROVED,
    MissionStatus.RUNNING,
)


# ---------------------------------------------------------------------------
# Database row models
# ---------------------------------------------------------------------------

class Transfer(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    email: str
    email_hash: Optional[str] = None
    claim_code_hash: Optional[str] = None
    amount: float
    token: str = "SOL"
    sender_pubkey: str
    transfer_pubkey: Optional[str] = None
    status: TransferStatus = TransferStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    reminders_sent: int = Field(default=0, ge=0, le=MAX_REMINDERS_PER_TRANSFER)
    last_reminder_at: Optional[datetime] = None
    reclaim_attempts: int = 0
    last_reclaim_attempt_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    reclaimed_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        if self.expires_at is None:
            self.expires_at = self.created_at + TRANSFER_TTL

    def age(self, now: datetime) -> timedelta:
        return now - self.created_at

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def can_transition(self, to_status: TransferStatus) -> bool:
        return to_status in TRANSFER_TRANSITIONS.get(self.status, set())


class Mission(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    type: str
    source: str = "trigger"
    status: MissionStatus = MissionStatus.PENDING
    priority: int = 5
    scheduled_for: datetime = Field(default_factory=utc_now)
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    blocked_reason: Optional[str] = None
    transfer_id: Optional[uuid.UUID] = None
    parent_mission_id: Optional[uuid.UUID] = None
    attempts: int = 0
    approved_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def short_id(self) -> str:
        return str(self.id)[:8]


class Event(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    event_type: str
    source: str = "system"
    data: dict[str, Any] = Field(default_factory=dict)
    transfer_id: Optional[uuid.UUID] = None
    mission_id: Optional[uuid.UUID] = None
    processed: bool = False
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class QueuedEmail(BaseModel):
    id: uuid.UUID = Field(default_factory=_new_uuid)
    to_email: str
    subject: str
    html_body: str
    text_body: Optional[str] = None
    email_type: str = "notification"
    status: EmailStatus = EmailStatus.PENDING
    attempts: int = 0
    scheduled_for: datetime = Field(default_factory=utc_now)
    transfer_id: Optional[uuid.UUID] = None
    mission_id: Optional[uuid.UUID] = None
    provider_id: Optional[str] = None
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class BlockedEntity(BaseModel):
    entity_type: EntityType
    entity_value: str
    reason: str
    blocked_by: str = "system"
    blocked_until: Optional[datetime] = None
    blocked_at: datetime = Field(default_factory=utc_now)

    def model_post_init(self, __context: Any) -> None:
        self.entity_value = self.entity_value.lower()

    def is_active(self, now: datetime) -> bool:
        return self.blocked_until is None or self.blocked_until > now


# ---------------------------------------------------------------------------
# Scheduler value models
# ---------------------------------------------------------------------------

class CandidateMission(BaseModel):
    """A mission proposed by a trigger rule, not yet persisted."""
    type: str
    transfer_id: Optional[uuid.UUID] = None
    input_data: dict[str, Any] = Field(default_factory=dict)
    auto_approve: bool = True
    source: str = "trigger"
    priority: int = 5


class GateDecision(BaseModel):
    """Cap gate verdict. A denial is a value, never an exception."""
    ok: bool
    reason: Optional[str] = None
    needs_approval: bool = False

    @classmethod
    def allow(cls, needs_approval: bool = False) -> GateDecision:
        return cls(ok=True, needs_approval=needs_approval)

    @classmethod
    def deny(cls, reason: str) -> GateDecision:
        return cls(ok=False, reason=reason)


class MissionOutcome(BaseModel):
    """What an executor reports back for a claimed mission."""
    skipped: bool = False
    reason: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def skip(cls, reason: str) -> MissionOutcome:
        return cls(skipped=True, reason=reason)

    def to_output(self) -> dict[str, Any]:
        if self.skipped:
            return {"skipped": True, "reason": self.reason}
        return {"success": True, **self.data}


_EMAIL_MASK = re.compile(r"(.{2}).*(@.*)")


def mask_email(address: str) -> str:
    """Mask a recipient address for audit payloads: ``ab***@domain``."""
    return _EMAIL_MASK.sub(r"\1***\2", address)
