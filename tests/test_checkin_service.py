"""Tests for check-in scheduling, sweeps and submissions."""

import random
from datetime import date, datetime, timedelta

import pytest

from trustcircle.db.repository import VerificationRepository
from trustcircle.services.checkin_service import (
    MAX_STORED_POINTS,
    CheckinService,
    ScheduleGenerator,
    SchedulePolicy,
)
from trustcircle.services.notification_service import GRANTED_PAYLOAD
from trustcircle.services.touch_gesture_service import TouchPoint

START = date(2026, 3, 1)
NOW = datetime(2026, 3, 5, 10, 0, 0)


@pytest.fixture
def service(gate, notifier):
    return CheckinService(policy=SchedulePolicy(), gate=gate, notifier=notifier, rng=random.Random(42))


def sent_challenge(repo, device_id, number, sent_at):
    """Create a challenge and move it to sent; returns its id."""
    repo.upsert_challenges(device_id, [(number, sent_at - timedelta(minutes=1))])
    challenge = [c for c in repo.list_challenges(device_id) if c.challenge_number == number][0]
    assert repo.mark_challenge_sent(challenge.id, sent_at)
    return challenge.id


def straight_swipe(count=8, duration_ms=150.0):
    step = duration_ms / (count - 1)
    return [TouchPoint(i * 10, 0, i * step) for i in range(count)]


class TestScheduleGenerator:
    @pytest.mark.parametrize("seed", [0, 1, 7, 42, 2026])
    def test_distinct_days_inside_window(self, seed):
        schedule = ScheduleGenerator(random.Random(seed), window_days=14).generate(START, 3)

        assert [number for number, _ in schedule] == [1, 2, 3]
        days = [when.date() for _, when in schedule]
        assert len(set(days)) == 3
        assert all(START <= d <= START + timedelta(days=13) for d in days)

    @pytest.mark.parametrize("seed", range(10))
    def test_times_fall_in_morning_or_evening(self, seed):
        for _, when in ScheduleGenerator(random.Random(seed)).generate(START, 5):
            assert 9 <= when.hour < 11 or 17 <= when.hour < 20

    def test_same_seed_same_schedule(self):
        first = ScheduleGenerator(random.Random(3)).generate(START, 3)
        second = ScheduleGenerator(random.Random(3)).generate(START, 3)
        assert first == second

    def test_whole_window(self):
        schedule = ScheduleGenerator(random.Random(1), window_days=14).generate(START, 14)
        assert sorted(when.date() for _, when in schedule) == [START + timedelta(days=i) for i in range(14)]


class TestScheduleCheckins:
    def test_schedules_default_count(self, repo, service, make_device):
        make_device(start=START)

        outcome = service.schedule_checkins(repo, "dev-1")

        assert outcome.success and outcome.scheduled == 3
        challenges = repo.list_challenges("dev-1")
        assert [c.challenge_number for c in challenges] == [1, 2, 3]
        assert all(c.status == "pending" for c in challenges)

    def test_second_call_is_a_no_op(self, repo, service, make_device):
        make_device(start=START)
        service.schedule_checkins(repo, "dev-1")

        outcome = service.schedule_checkins(repo, "dev-1")

        assert outcome.success and outcome.already_scheduled
        assert outcome.scheduled == 0
        assert service.list_checkins(repo, "dev-1")["total"] == 3

    def test_rejects_unknown_device(self, repo, service):
        assert service.schedule_checkins(repo, "ghost").reason == "device_not_found"

    def test_rejects_non_verifying_device(self, repo, service, make_device):
        make_device(status="active")
        assert service.schedule_checkins(repo, "dev-1").reason == "device_not_verifying"

    @pytest.mark.parametrize("count", [0, 15])
    def test_rejects_bad_count(self, repo, service, make_device, count):
        make_device()
        assert service.schedule_checkins(repo, "dev-1", count=count).reason == "invalid_checkin_count"

    @pytest.mark.parametrize("seed", range(25))
    def test_racing_schedulers_never_mix_schedules(self, db, gate, notifier, make_device, seed):
        make_device(start=START)
        winner = CheckinService(policy=SchedulePolicy(), gate=gate, notifier=notifier, rng=random.Random(seed))
        loser = CheckinService(policy=SchedulePolicy(), gate=gate, notifier=notifier, rng=random.Random(seed + 1000))
        winner_repo = VerificationRepository(db)

        class SchedulesFirstElsewhere(VerificationRepository):
            """Both requests pass the existence check before either writes."""

            def has_challenges(self, device_id):
                seen = super().has_challenges(device_id)
                winner.schedule_checkins(winner_repo, device_id)
                return seen

        outcome = loser.schedule_checkins(SchedulesFirstElsewhere(db), "dev-1")

        assert outcome.success and outcome.already_scheduled
        assert outcome.scheduled == 0
        challenges = winner_repo.list_challenges("dev-1")
        assert [c.challenge_number for c in challenges] == [1, 2, 3]
        assert len({c.scheduled_at.date() for c in challenges}) == 3
        expected = ScheduleGenerator(random.Random(seed)).generate(START, 3)
        assert [(c.challenge_number, c.scheduled_at) for c in challenges] == expected

    def test_requested_count_becomes_the_requirement(self, repo, service, make_device, human_trace):
        make_device(start=START)

        outcome = service.schedule_checkins(repo, "dev-1", count=5)

        assert outcome.scheduled == 5
        device = repo.get_device("dev-1")
        assert device.checkins_required == 5

        device.checkins_completed = 4
        repo.db.commit()
        sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))
        sent_challenge(repo, "dev-1", 2, NOW - timedelta(minutes=4))

        fifth = service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)
        beyond = service.submit_checkin(repo, "dev-1", *human_trace, now=NOW + timedelta(minutes=1))

        assert (fifth.checkins_completed, fifth.checkins_required) == (5, 5)
        assert beyond.passed
        assert beyond.checkins_completed == 5
        assert repo.get_device("dev-1").checkins_completed == 5

    def test_no_op_call_keeps_the_requirement(self, repo, service, make_device):
        make_device(start=START)
        service.schedule_checkins(repo, "dev-1", count=4)

        service.schedule_checkins(repo, "dev-1", count=2)

        assert repo.get_device("dev-1").checkins_required == 4


class TestSweeps:
    def test_dispatch_sends_due_challenges_once(self, repo, service, notifier, make_device):
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW - timedelta(hours=1))])
        repo.upsert_challenges("dev-1", [(2, NOW + timedelta(days=2))])
        repo.upsert_challenges("dev-1", [(3, NOW - timedelta(hours=25))])

        first = service.run_dispatch_sweep(repo, NOW)
        second = service.run_dispatch_sweep(repo, NOW + timedelta(minutes=1))

        assert (first.selected, first.sent) == (1, 1)
        assert (second.selected, second.sent) == (0, 0)
        statuses = {c.challenge_number: c.status for c in repo.list_challenges("dev-1")}
        assert statuses == {1: "sent", 2: "pending", 3: "pending"}
        assert len(notifier.sent) == 1

    def test_overlapping_dispatch_marks_once(self, repo, make_device):
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW - timedelta(minutes=5))])
        challenge_id = repo.list_challenges("dev-1")[0].id

        assert repo.mark_challenge_sent(challenge_id, NOW)
        assert not repo.mark_challenge_sent(challenge_id, NOW)

    def test_delivery_failure_still_counts_as_sent(self, repo, gate, failing_notifier, make_device):
        service = CheckinService(policy=SchedulePolicy(), gate=gate, notifier=failing_notifier)
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW - timedelta(minutes=5))])

        result = service.run_dispatch_sweep(repo, NOW)

        assert (result.sent, result.delivery_failures) == (1, 1)
        assert repo.list_challenges("dev-1")[0].status == "sent"

    def test_expiry_sweep(self, repo, service, make_device):
        make_device()
        sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=31))
        sent_challenge(repo, "dev-1", 2, NOW - timedelta(minutes=10))
        repo.upsert_challenges("dev-1", [(3, NOW - timedelta(hours=25))])

        result = service.run_expiry_sweep(repo, NOW)
        again = service.run_expiry_sweep(repo, NOW)

        assert (result.expired_sent, result.expired_pending) == (1, 1)
        assert (again.expired_sent, again.expired_pending) == (0, 0)
        statuses = {c.challenge_number: c.status for c in repo.list_challenges("dev-1")}
        assert statuses == {1: "expired", 2: "sent", 3: "expired"}


class TestSubmitCheckin:
    def test_human_trace_completes_challenge(self, repo, service, make_device, human_trace):
        make_device()
        challenge_id = sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))

        outcome = service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)

        assert outcome.success and outcome.passed
        assert outcome.challenge_id == challenge_id
        assert outcome.checkins_completed == 1
        challenge = repo.get_challenge("dev-1", challenge_id)
        assert challenge.status == "completed"
        assert challenge.is_human is True
        assert challenge.completed_at == NOW
        assert len(challenge.touch_points) == len(human_trace[0])

    def test_retry_does_not_double_count(self, repo, service, make_device, human_trace):
        make_device()
        challenge_id = sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))
        service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)

        retry = service.submit_checkin(repo, "dev-1", *human_trace, challenge_id=challenge_id, now=NOW)

        assert retry.success and retry.passed
        assert retry.reason == "already_resolved"
        assert repo.get_device("dev-1").checkins_completed == 1

    def test_scripted_trace_fails_challenge(self, repo, service, make_device):
        make_device()
        challenge_id = sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))

        outcome = service.submit_checkin(repo, "dev-1", straight_swipe(), 150, now=NOW)

        assert outcome.success and not outcome.passed
        assert "too_fast" in outcome.flags
        assert repo.get_challenge("dev-1", challenge_id).status == "failed"
        assert repo.get_device("dev-1").checkins_completed == 0

    def test_late_answer_expires_challenge(self, repo, service, make_device, human_trace):
        make_device()
        challenge_id = sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=31))

        outcome = service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)

        assert not outcome.success
        assert outcome.expired
        assert outcome.reason == "challenge_expired"
        assert repo.get_challenge("dev-1", challenge_id).status == "expired"
        assert repo.get_device("dev-1").checkins_completed == 0

    def test_no_open_challenge(self, repo, service, make_device, human_trace):
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW + timedelta(days=1))])
        assert service.submit_checkin(repo, "dev-1", *human_trace, now=NOW).reason == "no_pending_challenge"

    def test_unsent_challenge_is_not_open(self, repo, service, make_device, human_trace):
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW + timedelta(days=1))])
        challenge_id = repo.list_challenges("dev-1")[0].id

        outcome = service.submit_checkin(repo, "dev-1", *human_trace, challenge_id=challenge_id, now=NOW)

        assert outcome.reason == "challenge_not_open"

    def test_unknown_challenge(self, repo, service, make_device, human_trace):
        make_device()
        outcome = service.submit_checkin(repo, "dev-1", *human_trace, challenge_id=999, now=NOW)
        assert outcome.reason == "challenge_not_found"

    def test_other_devices_challenge_is_not_found(self, repo, service, make_device, human_trace):
        make_device("dev-1")
        make_device("dev-2")
        challenge_id = sent_challenge(repo, "dev-2", 1, NOW - timedelta(minutes=5))

        outcome = service.submit_checkin(repo, "dev-1", *human_trace, challenge_id=challenge_id, now=NOW)

        assert outcome.reason == "challenge_not_found"
        assert repo.get_challenge("dev-2", challenge_id).status == "sent"

    def test_missing_touch_data(self, repo, service, make_device):
        make_device()
        assert service.submit_checkin(repo, "dev-1", [], 0, now=NOW).reason == "missing_touch_data"

    def test_frozen_device_rejected(self, repo, service, make_device, human_trace):
        make_device(status="frozen")
        sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))
        assert service.submit_checkin(repo, "dev-1", *human_trace, now=NOW).reason == "device_not_active"

    def test_completed_checkins_are_capped(self, repo, service, make_device, human_trace):
        make_device(status="active", checkins=3)
        sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))

        outcome = service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)

        assert outcome.passed
        assert outcome.checkins_completed == 3
        assert repo.get_device("dev-1").checkins_completed == 3

    def test_stored_points_are_truncated(self, repo, service, make_device):
        make_device()
        challenge_id = sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))

        service.submit_checkin(repo, "dev-1", straight_swipe(count=150, duration_ms=3000), 3000, now=NOW)

        assert len(repo.get_challenge("dev-1", challenge_id).touch_points) == MAX_STORED_POINTS

    def test_final_checkin_activates_device(self, repo, service, notifier, make_device, human_trace):
        make_device(nights=14, movement_days=10, checkins=1)
        sent_challenge(repo, "dev-1", 2, NOW - timedelta(minutes=5))

        outcome = service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)

        assert outcome.checkins_completed == 2
        assert repo.get_device("dev-1").status == "active"
        assert GRANTED_PAYLOAD["title"] in notifier.titles()

    def test_list_checkins_counts(self, repo, service, make_device, human_trace):
        make_device()
        sent_challenge(repo, "dev-1", 1, NOW - timedelta(minutes=5))
        repo.upsert_challenges("dev-1", [(2, NOW + timedelta(days=2))])
        repo.upsert_challenges("dev-1", [(3, NOW + timedelta(days=4))])
        service.submit_checkin(repo, "dev-1", *human_trace, now=NOW)

        summary = service.list_checkins(repo, "dev-1")

        assert (summary["completed"], summary["pending"], summary["total"]) == (1, 2, 3)
