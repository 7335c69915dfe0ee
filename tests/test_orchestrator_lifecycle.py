"""Tests for src/orchestrator/lifecycle.py — mission state machine."""

import threading
from datetime import timedelta

import pytest

from src.core.exceptions import InvalidTransitionError
from src.core.models import CandidateMission, MissionStatus
from src.orchestrator.lifecycle import VALID_TRANSITIONS, MissionLifecycle


@pytest.fixture
def lifecycle(memory_repo, clock):
    return MissionLifecycle(memory_repo, max_attempts=3, clock=clock)


def _candidate(**kw) -> CandidateMission:
    return CandidateMission(type="send_reminder", source="trigger_24h", **kw)


class TestTransitions:
    def test_terminal_states(self):
        for status in (MissionStatus.SUCCEEDED, MissionStatus.FAILED, MissionStatus.BLOCKED):
            assert VALID_TRANSITIONS[status] == set()

    @pytest.mark.parametrize("from_status,to_status,expected", [
        (MissionStatus.PENDING, MissionStatus.APPROVED, True),
        (MissionStatus.APPROVED, MissionStatus.RUNNING, True),
        (MissionStatus.RUNNING, MissionStatus.SUCCEEDED, True),
        (MissionStatus.RUNNING, MissionStatus.APPROVED, True),
        (MissionStatus.APPROVED, MissionStatus.SUCCEEDED, False),
        (MissionStatus.SUCCEEDED, MissionStatus.RUNNING, False),
        (MissionStatus.BLOCKED, MissionStatus.APPROVED, False),
    ])
    def test_can_transition(self, from_status, to_status, expected):
        assert MissionLifecycle.can_transition(from_status, to_status) is expected

    def test_succeed_from_approved_raises(self, lifecycle):
        mission = lifecycle.create(_candidate())
        with pytest.raises(InvalidTransitionError):
            lifecycle.succeed(mission, {"success": True})

    def test_approve_terminal_raises(self, lifecycle):
        mission = lifecycle.create(_candidate(auto_approve=False))
        blocked = lifecycle.block(mission, "Daily reminder limit reached (100)")
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve(blocked)


class TestCreate:
    def test_auto_approved(self, lifecycle, memory_repo, clock):
        mission = lifecycle.create(_candidate(input_data={"reminder_type": "first"}))
        stored = memory_repo.get_mission(mission.id)
        assert stored.status == MissionStatus.APPROVED
        assert stored.approved_at == clock.now
        assert stored.scheduled_for == clock.now
        assert stored.input_data == {"reminder_type": "first"}

    def test_manual_review_stays_pending(self, lifecycle):
        mission = lifecycle.create(_candidate(auto_approve=False))
        assert mission.status == MissionStatus.PENDING
        assert mission.approved_at is None

    def test_fetch_pending_ordering(self, lifecycle, clock):
        low = lifecycle.create(_candidate(priority=9))
        high = lifecycle.create(_candidate(priority=1))
        later = lifecycle.create(_candidate(priority=1), scheduled_for=clock.now + timedelta(minutes=5))
        ready = lifecycle.fetch_pending(10)
        assert [m.id for m in ready] == [high.id, low.id]
        clock.advance(minutes=5)
        assert [m.id for m in lifecycle.fetch_pending(10)] == [high.id, later.id, low.id]


class TestClaim:
    def test_claim_increments_attempts(self, lifecycle, clock):
        mission = lifecycle.create(_candidate())
        claimed = lifecycle.claim(mission)
        assert claimed.status == MissionStatus.RUNNING
        assert claimed.attempts == 1
        assert claimed.started_at == clock.now

    def test_second_claim_returns_none(self, lifecycle):
        mission = lifecycle.create(_candidate())
        assert lifecycle.claim(mission) is not None
        assert lifecycle.claim(mission) is None

    def test_concurrent_claims_have_one_winner(self, lifecycle):
        mission = lifecycle.create(_candidate())
        barrier = threading.Barrier(8)
        results = []

        def _claim():
            barrier.wait()
            results.append(lifecycle.claim(mission))

        threads = [threading.Thread(target=_claim) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r is not None) == 1

    def test_attempt_cap(self, lifecycle, clock):
        mission = lifecycle.create(_candidate())
        for _ in range(3):
            claimed = lifecycle.claim(mission)
            assert claimed is not None
            lifecycle.release_for_retry(claimed, "boom", timedelta(0))
        assert lifecycle.claim(mission) is None
        assert lifecycle.fetch_pending(10) == []


class TestResolution:
    def test_succeed_records_output(self, lifecycle, memory_repo):
        claimed = lifecycle.claim(lifecycle.create(_candidate()))
        done = lifecycle.succeed(claimed, {"success": True, "email_id": "e1"})
        assert done.status == MissionStatus.SUCCEEDED
        assert memory_repo.get_mission(claimed.id).output_data["email_id"] == "e1"

    def test_release_keeps_approval(self, lifecycle, clock):
        claimed = lifecycle.claim(lifecycle.create(_candidate()))
        released = lifecycle.release_for_retry(claimed, "ValueError: x", timedelta(seconds=60))
        assert released.status == MissionStatus.APPROVED
        assert released.scheduled_for == clock.now + timedelta(seconds=60)
        assert released.error == "ValueError: x"

    def test_release_of_unapproved_returns_to_pending(self, lifecycle):
        claimed = lifecycle.claim(lifecycle.create(_candidate(auto_approve=False)))
        released = lifecycle.release_for_retry(claimed, "err", timedelta(0))
        assert released.status == MissionStatus.PENDING

    def test_is_exhausted(self, lifecycle):
        mission = lifecycle.create(_candidate())
        assert lifecycle.is_exhausted(mission) is False
        mission.attempts = 3
        assert lifecycle.is_exhausted(mission) is True

    def test_approve_pulls_schedule_forward(self, lifecycle, memory_repo, clock):
        mission = lifecycle.create(_candidate(auto_approve=False))
        memory_repo.reschedule_mission(mission.id, clock.now + timedelta(hours=1))
        approved = lifecycle.approve(mission)
        assert approved.status == MissionStatus.APPROVED
        assert approved.scheduled_for == clock.now


class TestStaleRecovery:
    def test_stuck_running_mission_failed(self, lifecycle, memory_repo, clock):
        claimed = lifecycle.claim(lifecycle.create(_candidate()))
        clock.advance(minutes=31)
        recovered = lifecycle.recover_stale(30)
        assert [m.id for m in recovered] == [claimed.id]
        stored = memory_repo.get_mission(claimed.id)
        assert stored.status == MissionStatus.FAILED
        assert stored.error == "Stale: no progress for 30 minutes"

    def test_recent_running_mission_untouched(self, lifecycle, clock):
        lifecycle.claim(lifecycle.create(_candidate()))
        clock.advance(minutes=29)
        assert lifecycle.recover_stale(30) == []
