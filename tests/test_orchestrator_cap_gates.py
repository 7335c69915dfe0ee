"""Tests for src/orchestrator/cap_gates.py — mission admission control."""

import uuid
from datetime import timedelta

import pytest

from src.core.config import CapGateConfig
from src.core.models import (
    BlockedEntity,
    EmailStatus,
    EntityType,
    Mission,
    MissionStatus,
    QueuedEmail,
)
from src.orchestrator.cap_gates import CapGateEvaluator


def _succeeded_reminder(repo, when):
    repo.create_mission(
        Mission(
            type="send_reminder",
            status=MissionStatus.SUCCEEDED,
            created_at=when,
            completed_at=when,
        )
    )


def _sent_email(repo, when):
    repo.queue_email(
        QueuedEmail(
            to_email="x@example.com",
            subject="s",
            html_body="b",
            status=EmailStatus.SENT,
            sent_at=when,
        )
    )


@pytest.fixture
def gates(memory_repo, clock):
    def _build(**overrides) -> CapGateEvaluator:
        return CapGateEvaluator(memory_repo, CapGateConfig(**overrides), clock=clock)
    return _build


class TestSendReminderGate:
    def test_allows_under_caps(self, gates, make_transfer):
        transfer = make_transfer(hours_ago=25)
        decision = gates().check("send_reminder", {"transfer": transfer})
        assert decision.ok is True
        assert decision.needs_approval is False

    def test_daily_cap(self, gates, memory_repo, clock):
        for _ in range(2):
            _succeeded_reminder(memory_repo, clock.now - timedelta(minutes=5))
        decision = gates(max_reminders_per_day=2).check("send_reminder")
        assert decision.ok is False
        assert decision.reason == "Daily reminder limit reached (2)"

    def test_daily_cap_counts_only_today(self, gates, memory_repo, clock):
        _succeeded_reminder(memory_repo, clock.now - timedelta(days=1))
        assert gates(max_reminders_per_day=1).check("send_reminder").ok is True

    def test_hourly_email_cap(self, gates, memory_repo, clock):
        for _ in range(3):
            _sent_email(memory_repo, clock.now - timedelta(minutes=10))
        decision = gates(max_reminders_per_hour=3).check("send_reminder")
        assert decision.ok is False
        assert "Hourly" in decision.reason

    def test_hourly_window_slides(self, gates, memory_repo, clock):
        for _ in range(3):
            _sent_email(memory_repo, clock.now - timedelta(minutes=10))
        evaluator = gates(max_reminders_per_hour=3)
        assert evaluator.check_email_send().ok is False
        clock.advance(minutes=51)
        assert evaluator.check_email_send().ok is True

    def test_per_transfer_cap(self, gates, make_transfer):
        transfer = make_transfer(hours_ago=71, reminders_sent=3)
        decision = gates().check("send_reminder", {"transfer": transfer})
        assert decision.ok is False
        assert "per transfer" in decision.reason

    def test_blocked_recipient(self, gates, memory_repo, make_transfer):
        transfer = make_transfer(hours_ago=25, email="Spammer@Example.com")
        memory_repo.block_entity(
            BlockedEntity(entity_type=EntityType.EMAIL, entity_value="spammer@example.com", reason="abuse")
        )
        decision = gates().check("send_reminder", {"transfer": transfer})
        assert decision.ok is False
        assert decision.reason == "Recipient email is blocked"

    def test_expired_block_does_not_deny(self, gates, memory_repo, make_transfer, clock):
        transfer = make_transfer(hours_ago=25)
        memory_repo.block_entity(
            BlockedEntity(
                entity_type=EntityType.EMAIL,
                entity_value=transfer.email,
                reason="temp",
                blocked_until=clock.now - timedelta(seconds=1),
            )
        )
        assert gates().check("send_reminder", {"transfer": transfer}).ok is True


class TestAutoReclaimGate:
    def test_disabled_by_default(self, gates):
        decision = gates().check("auto_reclaim")
        assert decision.ok is False
        assert decision.reason == "Auto-reclaim is disabled"

    def test_open_reclaims_rate_limited(self, gates, memory_repo, clock):
        for status in (MissionStatus.PENDING, MissionStatus.APPROVED, MissionStatus.RUNNING):
            memory_repo.create_mission(
                Mission(type="auto_reclaim", status=status, transfer_id=uuid.uuid4(), created_at=clock.now)
            )
        evaluator = gates(reclaim_enabled=True, max_reclaims_per_minute=3)
        decision = evaluator.check("auto_reclaim")
        assert decision.ok is False
        assert decision.reason == "Rate limit: 3 reclaims/minute"

    def test_finished_reclaims_do_not_count(self, gates, memory_repo, clock):
        memory_repo.create_mission(
            Mission(type="auto_reclaim", status=MissionStatus.SUCCEEDED, created_at=clock.now)
        )
        assert gates(reclaim_enabled=True, max_reclaims_per_minute=1).check("auto_reclaim").ok is True


class TestOtherTypes:
    def test_investigate_abuse_needs_approval(self, gates):
        decision = gates().check("investigate_abuse")
        assert decision.ok is True
        assert decision.needs_approval is True

    def test_unknown_type_allowed_by_default(self, gates):
        assert gates().check("teleport").ok is True

    def test_unknown_type_denied_by_policy(self, gates):
        decision = gates(unknown_mission_policy="deny").check("teleport")
        assert decision.ok is False
        assert "teleport" in decision.reason

    def test_describe_reports_config(self, gates):
        described = gates(max_reminders_per_day=7).describe()
        assert described["max_reminders_per_day"] == 7
        assert described["reclaim_enabled"] is False
