"""Tests for the verification repository against SQLite."""

from datetime import date, datetime, timedelta

import pytest

from trustcircle.db.models import CorrelationScore

DAY = date(2026, 3, 10)
NOW = datetime(2026, 3, 10, 12, 0, 0)


class TestAtomicIncrement:
    def test_daily_counter_moves_once_per_date(self, repo, make_device):
        make_device()

        assert repo.atomic_increment("dev-1", "nights_confirmed", on_date=DAY) == 1
        assert repo.atomic_increment("dev-1", "nights_confirmed", on_date=DAY) is None
        assert repo.atomic_increment("dev-1", "nights_confirmed", on_date=DAY + timedelta(days=1)) == 2

        device = repo.get_device("dev-1")
        assert device.nights_confirmed == 2
        assert device.last_night_credit_date == DAY + timedelta(days=1)

    def test_older_date_is_not_credited(self, repo, make_device):
        make_device()
        repo.atomic_increment("dev-1", "movement_days_confirmed", on_date=DAY)
        assert repo.atomic_increment("dev-1", "movement_days_confirmed", on_date=DAY - timedelta(days=1)) is None

    def test_guards_are_per_counter(self, repo, make_device):
        make_device()
        assert repo.atomic_increment("dev-1", "nights_confirmed", on_date=DAY) == 1
        assert repo.atomic_increment("dev-1", "movement_days_confirmed", on_date=DAY) == 1

    def test_checkins_stop_at_required(self, repo, make_device):
        make_device(checkins=2)
        assert repo.atomic_increment("dev-1", "checkins_completed") == 3
        assert repo.atomic_increment("dev-1", "checkins_completed") is None
        assert repo.get_device("dev-1").checkins_completed == 3

    def test_unknown_device(self, repo):
        assert repo.atomic_increment("ghost", "checkins_completed") is None

    def test_unknown_counter(self, repo, make_device):
        make_device()
        with pytest.raises(ValueError):
            repo.atomic_increment("dev-1", "status")

    def test_daily_counter_needs_a_date(self, repo, make_device):
        make_device()
        with pytest.raises(ValueError):
            repo.atomic_increment("dev-1", "nights_confirmed")


class TestDevicesAndStatus:
    def test_create_is_insert_once(self, repo, zone_id):
        repo.ensure_zone(zone_id)
        repo.ensure_zone(zone_id)

        assert repo.create_device("dev-1", zone_id, "paid", DAY, 3)
        assert not repo.create_device("dev-1", zone_id, "subsidized", DAY, 3)
        assert repo.get_device("dev-1").subscription_class == "paid"

    def test_transition_is_compare_and_set(self, repo, make_device):
        make_device()

        assert repo.transition_status("dev-1", "verifying", "active", None, NOW)
        assert not repo.transition_status("dev-1", "verifying", "frozen", "late", NOW)

        device = repo.get_device("dev-1")
        assert device.status == "active"
        assert device.status_changed_at == NOW


class TestScores:
    def test_upsert_overwrites_same_day(self, repo, make_device):
        make_device()

        repo.upsert_daily_score("dev-1", DAY, 0.9, ["nighttime_movement"], NOW)
        repo.upsert_daily_score("dev-1", DAY, 0.7, ["impossible_trajectory"], NOW + timedelta(hours=1))

        assert repo.db.query(CorrelationScore).count() == 1
        score = repo.get_daily_score("dev-1", DAY)
        assert score.trust_score == pytest.approx(0.7)
        assert score.flags == {"impossible_trajectory": True}

    def test_average_over_window(self, repo, make_device):
        make_device()
        repo.upsert_daily_score("dev-1", DAY - timedelta(days=20), 0.1, [], NOW)
        repo.upsert_daily_score("dev-1", DAY - timedelta(days=1), 0.6, [], NOW)
        repo.upsert_daily_score("dev-1", DAY, 1.0, [], NOW)

        assert repo.average_trust_score("dev-1", DAY - timedelta(days=14)) == pytest.approx(0.8)

    def test_average_without_scores(self, repo, make_device):
        make_device()
        assert repo.average_trust_score("dev-1", DAY) == 1.0


class TestObservations:
    def test_recent_presence_newest_first(self, repo, make_device, home_cells):
        make_device()
        repo.log_presence("dev-1", home_cells[0], True, NOW - timedelta(minutes=90))
        repo.log_presence("dev-1", home_cells[1], True, NOW - timedelta(minutes=10))
        repo.log_presence("dev-1", home_cells[0], True, NOW - timedelta(hours=5))

        records = repo.lookup_recent_presence("dev-1", NOW - timedelta(hours=2))

        assert [r.geocell for r in records] == [home_cells[1], home_cells[0]]

    def test_movement_count_only_counts_detected_reports(self, repo, make_device, home_cells):
        make_device()
        repo.log_movement("dev-1", True, home_cells[0], NOW - timedelta(days=1))
        repo.log_movement("dev-1", False, home_cells[0], NOW - timedelta(hours=1))
        repo.log_movement("dev-1", True, home_cells[1], NOW - timedelta(hours=1))
        repo.log_movement("dev-1", True, home_cells[0], NOW - timedelta(days=4))

        assert repo.lookup_recent_movement("dev-1", home_cells[0], NOW - timedelta(days=3)) == 1


class TestChallenges:
    def test_upsert_keeps_existing_row(self, repo, make_device):
        make_device()
        assert repo.upsert_challenges("dev-1", [(1, NOW)]) == 1
        assert repo.upsert_challenges("dev-1", [(1, NOW + timedelta(days=1))]) == 0

        challenges = repo.list_challenges("dev-1")
        assert len(challenges) == 1
        assert challenges[0].scheduled_at == NOW

    def test_batch_sets_requirement_with_the_rows(self, repo, make_device):
        make_device()
        schedule = [(n, NOW + timedelta(days=n)) for n in range(1, 6)]

        assert repo.upsert_challenges("dev-1", schedule, checkins_required=5) == 5
        assert repo.get_device("dev-1").checkins_required == 5

    def test_partially_conflicting_batch_leaves_requirement(self, repo, make_device):
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW)])

        created = repo.upsert_challenges(
            "dev-1", [(1, NOW + timedelta(days=1)), (2, NOW + timedelta(days=2))], checkins_required=2
        )

        assert created == 1
        assert repo.get_device("dev-1").checkins_required == 3
        assert repo.list_challenges("dev-1")[0].scheduled_at == NOW

    def test_empty_batch(self, repo, make_device):
        make_device()
        assert repo.upsert_challenges("dev-1", [], checkins_required=4) == 0
        assert repo.get_device("dev-1").checkins_required == 3

    def test_complete_only_from_sent(self, repo, make_device):
        make_device()
        repo.upsert_challenges("dev-1", [(1, NOW)])
        challenge_id = repo.list_challenges("dev-1")[0].id
        metrics = {"straightness": 0.9, "speed_variance": 0.2, "jitter": 0.5, "duration": 800}

        assert not repo.complete_challenge(challenge_id, True, metrics, [], [], NOW)
        repo.mark_challenge_sent(challenge_id, NOW)
        assert repo.complete_challenge(challenge_id, True, metrics, [], [], NOW)
        assert not repo.complete_challenge(challenge_id, False, metrics, ["too_fast"], [], NOW)

        challenge = repo.get_challenge("dev-1", challenge_id)
        assert challenge.status == "completed"
        assert challenge.duration_ms == 800
        assert not repo.expire_challenge(challenge_id)
