"""
Check-in Service - Randomized liveness challenges

Responsibilities:
- schedule: pick N distinct days out of the verification window and a random
  time in the morning (09:00-10:59) or evening (17:00-19:59) window for each
- dispatch sweep: push due challenges and mark them sent
- expiry sweep: close challenges that were not answered in time
- submit: classify the touch trace for an open challenge and credit the
  device on a human verdict

Scheduling is idempotent (existence check, with the (device, number) unique
constraint as backstop). Sweeps only move rows with WHERE status = X updates,
so two overlapping runs never double-send or double-expire.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from trustcircle.config import settings, Settings
from trustcircle.db.repository import VerificationRepository
from trustcircle.services.activation_gate import activation_gate_service, ActivationGateService
from trustcircle.services.device_status import is_accepting_signals, DeviceStatus
from trustcircle.services.notification_service import notification_service, NotificationService
from trustcircle.services.touch_gesture_service import TouchPoint, classify_touch_trace
from trustcircle.timeutils import from_local, to_local, utcnow

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "expired")
MAX_STORED_POINTS = 100

# (first hour, number of hours) for each daily window
MORNING_WINDOW = (9, 2)
EVENING_WINDOW = (17, 3)


@dataclass(frozen=True)
class SchedulePolicy:
    window_days: int = 14
    default_count: int = 3
    answer_window: timedelta = timedelta(minutes=30)
    dispatch_max_age: timedelta = timedelta(hours=24)
    dispatch_batch_size: int = 100

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "SchedulePolicy":
        return cls(
            window_days=s.CHECKIN_WINDOW_DAYS,
            default_count=s.CHECKIN_DEFAULT_COUNT,
            answer_window=timedelta(minutes=s.CHECKIN_ANSWER_WINDOW_MIN),
            dispatch_max_age=timedelta(hours=s.CHECKIN_DISPATCH_MAX_AGE_HOURS),
            dispatch_batch_size=s.CHECKIN_DISPATCH_BATCH_SIZE,
        )


class ScheduleGenerator:
    """Pure schedule generation over an injected random source."""

    def __init__(self, rng: Optional[random.Random] = None, window_days: int = 14):
        self.rng = rng or random.SystemRandom()
        self.window_days = window_days

    def pick_days(self, count: int) -> List[int]:
        """Distinct day numbers in 1..window_days, ascending."""
        return sorted(self.rng.sample(range(1, self.window_days + 1), count))

    def pick_time(self) -> Tuple[int, int]:
        first_hour, span = EVENING_WINDOW if self.rng.random() < 0.5 else MORNING_WINDOW
        return first_hour + self.rng.randrange(span), self.rng.randrange(60)

    def generate(self, start_date: date, count: int) -> List[Tuple[int, datetime]]:
        """
        (challenge_number, scheduled_at) pairs. scheduled_at is the local wall
        clock converted to naive UTC; day 1 is the start date.
        """
        schedule = []
        for number, day in enumerate(self.pick_days(count), start=1):
            hour, minute = self.pick_time()
            local = datetime.combine(start_date + timedelta(days=day - 1), datetime.min.time()).replace(
                hour=hour, minute=minute
            )
            schedule.append((number, from_local(local)))
        return schedule


@dataclass
class ScheduleOutcome:
    success: bool
    scheduled: int = 0
    already_scheduled: bool = False
    reason: Optional[str] = None


@dataclass
class CheckinOutcome:
    success: bool
    passed: bool = False
    confidence: float = 0.0
    flags: List[str] = field(default_factory=list)
    checkins_completed: int = 0
    checkins_required: int = 0
    challenge_id: Optional[int] = None
    challenge_status: Optional[str] = None
    expired: bool = False
    reason: Optional[str] = None


@dataclass
class SweepResult:
    selected: int = 0
    sent: int = 0
    delivery_failures: int = 0
    expired_sent: int = 0
    expired_pending: int = 0


class CheckinService:
    """Schedules, dispatches, expires and verifies liveness challenges"""

    def __init__(
        self,
        policy: Optional[SchedulePolicy] = None,
        gate: ActivationGateService = activation_gate_service,
        notifier: NotificationService = notification_service,
        rng: Optional[random.Random] = None
    ):
        self.policy = policy or SchedulePolicy.from_settings()
        self.gate = gate
        self.notifier = notifier
        self.rng = rng

    def schedule_checkins(
        self,
        repo: VerificationRepository,
        device_id: str,
        start_date: Optional[date] = None,
        count: Optional[int] = None
    ) -> ScheduleOutcome:
        """Create challenges 1..count for a verifying device; no-op if any exist."""
        count = self.policy.default_count if count is None else count
        if not 1 <= count <= self.policy.window_days:
            return ScheduleOutcome(success=False, reason="invalid_checkin_count")

        device = repo.get_device(device_id)
        if not device:
            return ScheduleOutcome(success=False, reason="device_not_found")
        if device.status != DeviceStatus.VERIFYING.value:
            return ScheduleOutcome(success=False, reason="device_not_verifying")

        if repo.has_challenges(device_id):
            return ScheduleOutcome(success=True, already_scheduled=True)

        start_date = start_date or device.verification_start_date
        generator = ScheduleGenerator(self.rng, self.policy.window_days)
        schedule = list(generator.generate(start_date, count))
        created = repo.upsert_challenges(device_id, schedule, checkins_required=count)

        logger.info(f"Scheduled {created} check-ins for {device_id} from {start_date}")
        return ScheduleOutcome(success=True, scheduled=created, already_scheduled=created == 0)

    def list_checkins(self, repo: VerificationRepository, device_id: str) -> Dict[str, Any]:
        challenges = repo.list_challenges(device_id)
        completed = sum(1 for c in challenges if c.status == "completed")
        pending = sum(1 for c in challenges if c.status in ("pending", "sent"))
        return {
            "challenges": challenges,
            "completed": completed,
            "pending": pending,
            "total": len(challenges),
        }

    def submit_checkin(
        self,
        repo: VerificationRepository,
        device_id: str,
        points: Sequence[TouchPoint],
        duration_ms: float,
        challenge_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> CheckinOutcome:
        """Verify a touch trace against the device's open challenge."""
        now = now or utcnow()

        if not points:
            return CheckinOutcome(success=False, reason="missing_touch_data")

        device = repo.get_device(device_id)
        if not device:
            return CheckinOutcome(success=False, reason="device_not_found")
        if not is_accepting_signals(device.status):
            return CheckinOutcome(success=False, reason="device_not_active")

        checkins_required = device.checkins_required
        checkins_completed = device.checkins_completed

        if challenge_id is not None:
            challenge = repo.get_challenge(device_id, challenge_id)
            if not challenge:
                return CheckinOutcome(success=False, reason="challenge_not_found")
        else:
            challenge = repo.latest_sent_challenge(device_id)
            if not challenge:
                return CheckinOutcome(success=False, reason="no_pending_challenge")

        challenge_id = challenge.id

        if challenge.status in TERMINAL_STATUSES:
            return self._resolved_outcome(challenge, checkins_completed, checkins_required)

        if challenge.status != "sent":
            return CheckinOutcome(
                success=False,
                challenge_id=challenge_id,
                challenge_status=challenge.status,
                reason="challenge_not_open"
            )

        if challenge.sent_at and now - challenge.sent_at > self.policy.answer_window:
            repo.expire_challenge(challenge_id)
            logger.info(f"Challenge {challenge_id} for {device_id} answered after the window; expired")
            return CheckinOutcome(
                success=False,
                expired=True,
                challenge_id=challenge_id,
                challenge_status="expired",
                checkins_completed=checkins_completed,
                checkins_required=checkins_required,
                reason="challenge_expired"
            )

        verdict = classify_touch_trace(points, duration_ms)
        stored_points = [{"x": p.x, "y": p.y, "t": p.t} for p in points[:MAX_STORED_POINTS]]

        won = repo.complete_challenge(
            challenge_id, verdict.is_human, verdict.metrics, verdict.flags, stored_points, now
        )
        if not won:
            # Another submission resolved it first
            challenge = repo.get_challenge(device_id, challenge_id)
            return self._resolved_outcome(challenge, checkins_completed, checkins_required)

        if verdict.is_human:
            new_value = repo.atomic_increment(device_id, "checkins_completed")
            if new_value is not None:
                checkins_completed = new_value
                self.gate.reevaluate(
                    repo, device, to_local(now).date(), now,
                    fresh={"checkins_completed": new_value}
                )

        logger.info(
            f"Check-in {challenge_id} for {device_id}: human={verdict.is_human} "
            f"confidence={verdict.confidence:.2f} flags={verdict.flags}"
        )
        return CheckinOutcome(
            success=True,
            passed=verdict.is_human,
            confidence=verdict.confidence,
            flags=verdict.flags,
            checkins_completed=checkins_completed,
            checkins_required=checkins_required,
            challenge_id=challenge_id,
            challenge_status="completed" if verdict.is_human else "failed",
        )

    def _resolved_outcome(self, challenge, checkins_completed: int, checkins_required: int) -> CheckinOutcome:
        """Terminal challenges are reported as-is; retries are no-ops."""
        return CheckinOutcome(
            success=True,
            passed=challenge.status == "completed",
            flags=list(challenge.flags or []),
            checkins_completed=checkins_completed,
            checkins_required=checkins_required,
            challenge_id=challenge.id,
            challenge_status=challenge.status,
            expired=challenge.status == "expired",
            reason="already_resolved",
        )

    def run_dispatch_sweep(self, repo: VerificationRepository, now: Optional[datetime] = None) -> SweepResult:
        """Send every pending challenge that is due and under the max age."""
        now = now or utcnow()
        due = repo.select_due_challenges(
            now, now - self.policy.dispatch_max_age, self.policy.dispatch_batch_size
        )
        targets = [(c.id, c.device_id) for c in due]
        result = SweepResult(selected=len(targets))

        for challenge_id, device_id in targets:
            if not repo.mark_challenge_sent(challenge_id, now):
                continue
            result.sent += 1
            delivery = self.notifier.send_checkin_challenge(device_id, challenge_id)
            if not delivery.get("success"):
                # Still counts as sent; the user can answer from the app
                result.delivery_failures += 1

        logger.info(f"Dispatch sweep: {result.sent}/{result.selected} sent, {result.delivery_failures} delivery failures")
        return result

    def run_expiry_sweep(self, repo: VerificationRepository, now: Optional[datetime] = None) -> SweepResult:
        """Expire unanswered sent challenges and pending ones too old to send."""
        now = now or utcnow()
        result = SweepResult(
            expired_sent=repo.expire_stale_sent(now - self.policy.answer_window),
            expired_pending=repo.expire_stale_pending(now - self.policy.dispatch_max_age),
        )
        logger.info(f"Expiry sweep: {result.expired_sent} sent, {result.expired_pending} pending expired")
        return result


# Singleton instance
checkin_service = CheckinService()
