"""Tests for src/db/repository.py — data access layer.

Requires a running PostgreSQL instance. Skipped if unavailable.
All tests use real database operations against rows with fresh ids, so
counts are compared before/after rather than absolutely.
"""

import threading
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from src.core.exceptions import DatabaseError
from src.core.models import (
    BlockedEntity,
    EmailStatus,
    EntityType,
    Mission,
    MissionStatus,
    QueuedEmail,
    Transfer,
    TransferStatus,
)

from tests.conftest import requires_postgres


def _now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@pytest.fixture
def transfer(repository):
    t = Transfer(
        email=f"user-{uuid.uuid4().hex[:6]}@example.com",
        amount=1.25,
        sender_pubkey="SenderPubkey",
        created_at=_now() - timedelta(hours=30),
    )
    return repository.create_transfer(t)


@requires_postgres
class TestTransfers:
    def test_create_and_get(self, repository, transfer):
        fetched = repository.get_transfer(transfer.id)
        assert fetched is not None
        assert fetched.email == transfer.email
        assert fetched.amount == pytest.approx(1.25)
        assert fetched.expires_at == transfer.created_at + timedelta(hours=72)
        assert fetched.status == TransferStatus.PENDING

    def test_get_missing(self, repository):
        assert repository.get_transfer(uuid.uuid4()) is None

    def test_age_window_selection(self, repository, transfer):
        now = _now()
        hits = repository.get_transfers_by_age(
            now, timedelta(hours=24), timedelta(hours=48), 0, ["pending"], 1000
        )
        assert transfer.id in {t.id for t in hits}

        misses = repository.get_transfers_by_age(
            now, timedelta(hours=48), timedelta(hours=70), 1, ["pending"], 1000
        )
        assert transfer.id not in {t.id for t in misses}

    def _reminder_email(self, transfer, **kw) -> QueuedEmail:
        return QueuedEmail(
            to_email=transfer.email,
            subject="Reminder",
            html_body="<p>hi</p>",
            email_type="reminder_first",
            transfer_id=transfer.id,
            **kw,
        )

    def test_record_reminder_caps_at_three(self, repository, transfer):
        now = _now()
        emails = []
        for expected in (1, 2, 3):
            email = self._reminder_email(transfer)
            updated = repository.record_reminder_and_queue(transfer.id, email, {"reminder_type": "first"}, now)
            assert updated is not None
            assert updated.reminders_sent == expected
            emails.append(email)

        extra = self._reminder_email(transfer)
        assert repository.record_reminder_and_queue(transfer.id, extra, {}, now) is None
        assert repository.get_transfer(transfer.id).reminders_sent == 3
        assert all(repository.get_email(e.id) is not None for e in emails)
        assert repository.get_email(extra.id) is None

    def test_record_reminder_rolled_back_with_failed_insert(self, repository, transfer):
        # mission_id must reference a mission row, so the email insert fails
        email = self._reminder_email(transfer, mission_id=uuid.uuid4())
        with pytest.raises(DatabaseError):
            repository.record_reminder_and_queue(transfer.id, email, {}, _now())

        stored = repository.get_transfer(transfer.id)
        assert stored.reminders_sent == 0
        assert stored.last_reminder_at is None
        assert repository.get_email(email.id) is None

    def test_claim_and_reclaim_are_exclusive(self, repository, transfer):
        now = _now()
        assert repository.mark_transfer_claimed(transfer.id, now) is not None
        assert repository.mark_transfer_claimed(transfer.id, now) is None
        assert repository.mark_transfer_reclaimed(transfer.id, now) is None
        fetched = repository.get_transfer(transfer.id)
        assert fetched.claimed_at is not None
        assert fetched.reclaimed_at is None

    def test_mark_expired_merges_metadata(self, repository, transfer):
        updated = repository.mark_transfer_expired(transfer.id, {"reclaim_needed": True})
        assert updated.status == TransferStatus.EXPIRED
        assert updated.metadata["reclaim_needed"] is True
        assert repository.mark_transfer_reclaimed(transfer.id, _now()) is not None

    def test_confirm(self, repository, transfer):
        confirmed = repository.mark_transfer_confirmed(transfer.id, "TransferPda", _now())
        assert confirmed.status == TransferStatus.CONFIRMED
        assert confirmed.transfer_pubkey == "TransferPda"
        assert repository.mark_transfer_confirmed(transfer.id, None, _now()) is None


@requires_postgres
class TestMissions:
    def _mission(self, repository, transfer, **kw) -> Mission:
        now = _now()
        m = Mission(
            type="send_reminder",
            source="test",
            transfer_id=transfer.id,
            scheduled_for=now - timedelta(seconds=1),
            created_at=now,
            **kw,
        )
        return repository.create_mission(m)

    def test_claim_is_exclusive_under_concurrency(self, repository, transfer, db_config):
        from src.db.engine import DatabaseEngine
        from src.db.repository import Repository

        mission = self._mission(repository, transfer, status=MissionStatus.APPROVED)
        repos = [Repository(DatabaseEngine(db_config)) for _ in range(4)]
        barrier = threading.Barrier(len(repos))
        results = []

        def _claim(repo):
            barrier.wait()
            results.append(repo.claim_mission(mission.id, _now(), 3))

        threads = [threading.Thread(target=_claim, args=(r,)) for r in repos]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        for r in repos:
            r.engine.close()

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].status == MissionStatus.RUNNING
        assert winners[0].attempts == 1

    def test_claim_respects_attempt_cap(self, repository, transfer):
        mission = self._mission(repository, transfer, attempts=3)
        assert repository.claim_mission(mission.id, _now(), 3) is None

    def test_complete_only_from_running(self, repository, transfer):
        mission = self._mission(repository, transfer)
        assert repository.complete_mission(mission.id, {"success": True}, _now()) is None
        repository.claim_mission(mission.id, _now(), 3)
        done = repository.complete_mission(mission.id, {"success": True}, _now())
        assert done.status == MissionStatus.SUCCEEDED
        assert done.output_data == {"success": True}

    def test_release_returns_to_queue_status(self, repository, transfer):
        mission = self._mission(repository, transfer, status=MissionStatus.APPROVED, approved_at=_now())
        repository.claim_mission(mission.id, _now(), 3)
        retry_at = _now() + timedelta(minutes=1)
        released = repository.release_mission(mission.id, "boom", retry_at)
        assert released.status == MissionStatus.APPROVED
        assert released.error == "boom"
        assert released.started_at is None
        assert released.scheduled_for == retry_at

    def test_recover_stale(self, repository, transfer):
        mission = self._mission(repository, transfer)
        long_ago = _now() - timedelta(hours=2)
        repository.claim_mission(mission.id, long_ago, 3)
        recovered = repository.recover_stale_missions(_now() - timedelta(minutes=30), "Stale", _now())
        assert mission.id in {m.id for m in recovered}
        assert repository.get_mission(mission.id).status == MissionStatus.FAILED

    def test_approve_pulls_schedule_forward(self, repository, transfer):
        mission = self._mission(repository, transfer)
        repository.reschedule_mission(mission.id, _now() + timedelta(hours=1))
        approved = repository.approve_mission(mission.id, _now())
        assert approved.status == MissionStatus.APPROVED
        assert approved.scheduled_for <= _now()

    def test_has_recent_mission(self, repository, transfer):
        cutoff = _now() - timedelta(hours=4)
        assert not repository.has_recent_mission(transfer.id, "send_reminder", "test", cutoff)
        self._mission(repository, transfer)
        assert repository.has_recent_mission(transfer.id, "send_reminder", "other", cutoff)

    def test_block_and_summary(self, repository, transfer):
        mission = self._mission(repository, transfer)
        blocked = repository.block_mission(mission.id, "Daily reminder limit reached (100)")
        assert blocked.status == MissionStatus.BLOCKED
        assert blocked.blocked_reason.startswith("Daily")
        assert repository.get_mission_status_summary().get("blocked", 0) >= 1


@requires_postgres
class TestEmailQueue:
    def _queue(self, repository, transfer) -> QueuedEmail:
        return repository.queue_email(
            QueuedEmail(
                to_email=transfer.email,
                subject="Reminder",
                html_body="<p>hi</p>",
                transfer_id=transfer.id,
                scheduled_for=_now() - timedelta(seconds=1),
            )
        )

    def test_sending_claim_is_conditional(self, repository, transfer):
        email = self._queue(repository, transfer)
        claimed = repository.mark_email_sending(email.id, _now())
        assert claimed.status == EmailStatus.SENDING
        assert claimed.attempts == 1
        assert repository.mark_email_sending(email.id, _now()) is None

    def test_sent_counts(self, repository, transfer):
        now = _now()
        before = repository.count_emails_sent_last_hour(now)
        email = self._queue(repository, transfer)
        repository.mark_email_sending(email.id, _now())
        repository.mark_email_sent(email.id, "re_1", now)
        assert repository.count_emails_sent_last_hour(now) == before + 1
        assert repository.get_email(email.id).provider_id == "re_1"

    def test_reschedule_and_fail(self, repository, transfer):
        email = self._queue(repository, transfer)
        repository.mark_email_sending(email.id, _now())
        repository.reschedule_email(email.id, "500", _now() + timedelta(minutes=5))
        e = repository.get_email(email.id)
        assert e.status == EmailStatus.PENDING
        assert e.error == "500"

        repository.mark_email_sending(email.id, _now())
        repository.mark_email_failed(email.id, "gave up")
        assert repository.get_email(email.id).status == EmailStatus.FAILED

    def test_recover_stale_sending(self, repository, transfer):
        now = _now()
        stranded = self._queue(repository, transfer)
        repository.mark_email_sending(stranded.id, now - timedelta(minutes=20))
        fresh = self._queue(repository, transfer)
        repository.mark_email_sending(fresh.id, now)

        recovered = repository.recover_stale_emails(now - timedelta(minutes=10), 3, "Stale", now)
        assert stranded.id in {e.id for e in recovered}
        assert fresh.id not in {e.id for e in recovered}

        e = repository.get_email(stranded.id)
        assert e.status == EmailStatus.PENDING
        assert e.scheduled_for == now
        assert e.error == "Stale"
        assert repository.get_email(fresh.id).status == EmailStatus.SENDING

    def test_recover_stale_sending_fails_exhausted_row(self, repository, transfer):
        now = _now()
        email = self._queue(repository, transfer)
        repository.mark_email_sending(email.id, now - timedelta(minutes=20))
        repository.recover_stale_emails(now - timedelta(minutes=10), 1, "Stale", now)
        assert repository.get_email(email.id).status == EmailStatus.FAILED


@requires_postgres
class TestBlockedEntitiesAndState:
    def test_block_unblock(self, repository):
        value = f"Spam-{uuid.uuid4().hex[:6]}@Example.com"
        now = _now()
        repository.block_entity(BlockedEntity(entity_type=EntityType.EMAIL, entity_value=value, reason="spam"))
        assert repository.is_blocked(EntityType.EMAIL, value, now) is True
        assert repository.unblock_entity(EntityType.EMAIL, value) is True
        assert repository.is_blocked(EntityType.EMAIL, value, now) is False
        assert repository.unblock_entity(EntityType.EMAIL, value) is False

    def test_expired_block_ignored(self, repository):
        value = f"old-{uuid.uuid4().hex[:6]}@example.com"
        now = _now()
        repository.block_entity(
            BlockedEntity(
                entity_type=EntityType.EMAIL,
                entity_value=value,
                reason="temp",
                blocked_until=now - timedelta(minutes=1),
            )
        )
        assert repository.is_blocked(EntityType.EMAIL, value, now) is False

    def test_state_round_trip(self, repository):
        key = f"test-{uuid.uuid4().hex[:6]}"
        repository.set_state(key, {"loop_count": 3}, _now())
        repository.set_state(key, {"loop_count": 4}, _now())
        assert repository.get_state(key) == {"loop_count": 4}

    def test_lease_exclusive_until_expiry(self, repository):
        name = f"lease-{uuid.uuid4().hex[:6]}"
        now = _now()
        ttl = timedelta(seconds=60)
        assert repository.acquire_lease(name, "a", now, ttl) is True
        assert repository.acquire_lease(name, "b", now, ttl) is False
        assert repository.acquire_lease(name, "a", now + timedelta(seconds=30), ttl) is True
        assert repository.acquire_lease(name, "b", now + timedelta(seconds=120), ttl) is True
        assert repository.release_lease(name, "a") is False
        assert repository.release_lease(name, "b") is True
