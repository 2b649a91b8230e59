"""
Verification Repository - storage operations required by the engine

Every mutation runs in a single transaction that is committed at once, so a
request that times out never leaves a half-applied change behind. Counters
only move via UPDATE ... SET c = c + 1 RETURNING c; status and challenge
changes are guarded by a WHERE status predicate so concurrent requests and
overlapping sweeps cannot apply the same transition twice.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from trustcircle.db.models import (
    Zone, DeviceSubject, PresenceObservation, MovementObservation,
    CorrelationScore, CheckinChallenge
)
from trustcircle.timeutils import to_local

logger = logging.getLogger(__name__)

# counter column -> once-per-day guard column (None = no daily guard)
COUNTER_GUARDS = {
    "nights_confirmed": "last_night_credit_date",
    "movement_days_confirmed": "last_movement_credit_date",
    "checkins_completed": None,
}

PRESENCE_LOOKUP_LIMIT = 10


@dataclass(frozen=True)
class PresenceRecord:
    geocell: Optional[str]
    observed_at: datetime


class VerificationRepository:
    """SQLAlchemy-backed store for devices, observations, scores and challenges"""

    def __init__(self, db: Session):
        self.db = db

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    # ============================================================
    # DEVICES & ZONES
    # ============================================================

    def get_device(self, device_id: str) -> Optional[DeviceSubject]:
        return self.db.query(DeviceSubject).filter(
            DeviceSubject.device_id == device_id
        ).first()

    def ensure_zone(self, zone_id: str, zone_name: Optional[str] = None) -> None:
        stmt = self._insert(Zone).values(zone_id=zone_id, zone_name=zone_name, resident_count=0)
        self.db.execute(stmt.on_conflict_do_nothing(index_elements=["zone_id"]))
        self.db.commit()

    def create_device(
        self,
        device_id: str,
        zone_id: str,
        subscription_class: str,
        start_date: date,
        checkins_required: int
    ) -> bool:
        """Insert a verifying device; returns False if it already existed."""
        stmt = self._insert(DeviceSubject).values(
            device_id=device_id,
            zone_id=zone_id,
            status="verifying",
            subscription_class=subscription_class,
            verification_start_date=start_date,
            nights_confirmed=0,
            movement_days_confirmed=0,
            checkins_completed=0,
            checkins_required=checkins_required,
        ).on_conflict_do_nothing(index_elements=["device_id"])
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def atomic_increment(
        self,
        device_id: str,
        counter: str,
        on_date: Optional[date] = None
    ) -> Optional[int]:
        """
        Increment a device counter and return its new value.

        Daily counters carry a guard column so a device earns at most one
        credit per calendar date; check-ins are capped at checkins_required.
        Returns None when the guard blocked the increment (or the device
        does not exist).
        """
        if counter not in COUNTER_GUARDS:
            raise ValueError(f"Unknown counter: {counter}")

        column = getattr(DeviceSubject, counter)
        values: Dict[str, Any] = {counter: column + 1}
        stmt = update(DeviceSubject).where(DeviceSubject.device_id == device_id)

        guard = COUNTER_GUARDS[counter]
        if guard is not None:
            if on_date is None:
                raise ValueError(f"{counter} requires on_date")
            guard_column = getattr(DeviceSubject, guard)
            stmt = stmt.where(or_(guard_column.is_(None), guard_column < on_date))
            values[guard] = on_date
        else:
            stmt = stmt.where(DeviceSubject.checkins_completed < DeviceSubject.checkins_required)

        stmt = (
            stmt.values(values)
            .returning(column)
            .execution_options(synchronize_session=False)
        )
        new_value = self.db.execute(stmt).scalar_one_or_none()
        self.db.commit()
        return new_value

    def transition_status(
        self,
        device_id: str,
        from_status: str,
        to_status: str,
        reason: Optional[str],
        now: datetime
    ) -> bool:
        """Compare-and-set the device status; False if another writer moved it first."""
        updated = self.db.query(DeviceSubject).filter(
            DeviceSubject.device_id == device_id,
            DeviceSubject.status == from_status
        ).update(
            {"status": to_status, "status_reason": reason, "status_changed_at": now},
            synchronize_session=False
        )
        self.db.commit()
        return updated == 1

    def increment_zone_residents(self, zone_id: str) -> Optional[int]:
        stmt = (
            update(Zone)
            .where(Zone.zone_id == zone_id)
            .values(resident_count=Zone.resident_count + 1)
            .returning(Zone.resident_count)
            .execution_options(synchronize_session=False)
        )
        new_value = self.db.execute(stmt).scalar_one_or_none()
        self.db.commit()
        return new_value

    # ============================================================
    # OBSERVATIONS
    # ============================================================

    def log_movement(
        self,
        device_id: str,
        movement_detected: bool,
        geocell: Optional[str],
        observed_at: datetime,
        observation_date: Optional[date] = None
    ) -> None:
        """observation_date is the local calendar date of the report."""
        self.db.add(MovementObservation(
            device_id=device_id,
            observation_date=observation_date or to_local(observed_at).date(),
            movement_detected=movement_detected,
            geocell=geocell,
            observed_at=observed_at
        ))
        self.db.commit()

    def log_presence(
        self,
        device_id: str,
        geocell: Optional[str],
        in_zone: bool,
        observed_at: datetime,
        observation_date: Optional[date] = None
    ) -> None:
        """observation_date is the local calendar date of the report."""
        self.db.add(PresenceObservation(
            device_id=device_id,
            observation_date=observation_date or to_local(observed_at).date(),
            geocell=geocell,
            in_zone=in_zone,
            observed_at=observed_at
        ))
        self.db.commit()

    def lookup_recent_presence(self, device_id: str, since: datetime) -> List[PresenceRecord]:
        """Presence observations since a moment, newest first."""
        rows = self.db.query(PresenceObservation).filter(
            PresenceObservation.device_id == device_id,
            PresenceObservation.observed_at >= since
        ).order_by(PresenceObservation.observed_at.desc()).limit(PRESENCE_LOOKUP_LIMIT).all()
        return [PresenceRecord(geocell=row.geocell, observed_at=row.observed_at) for row in rows]

    def lookup_recent_movement(self, device_id: str, geocell: str, since: datetime) -> int:
        """Count movement-detected reports from one geocell since a moment."""
        return self.db.query(func.count(MovementObservation.id)).filter(
            MovementObservation.device_id == device_id,
            MovementObservation.geocell == geocell,
            MovementObservation.movement_detected.is_(True),
            MovementObservation.observed_at >= since
        ).scalar() or 0

    def latest_movement(self, device_id: str, on_date: date) -> Optional[MovementObservation]:
        return self.db.query(MovementObservation).filter(
            MovementObservation.device_id == device_id,
            MovementObservation.observation_date == on_date
        ).order_by(MovementObservation.observed_at.desc()).first()

    # ============================================================
    # CORRELATION SCORES
    # ============================================================

    def upsert_daily_score(
        self,
        device_id: str,
        score_date: date,
        score: float,
        flags: Iterable[str],
        calculated_at: datetime
    ) -> None:
        """One row per (device, date); recomputation overwrites."""
        stmt = self._insert(CorrelationScore).values(
            device_id=device_id,
            score_date=score_date,
            trust_score=score,
            flags={flag: True for flag in flags},
            calculated_at=calculated_at
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["device_id", "score_date"],
            set_={
                "trust_score": stmt.excluded.trust_score,
                "flags": stmt.excluded.flags,
                "calculated_at": stmt.excluded.calculated_at,
            }
        )
        self.db.execute(stmt)
        self.db.commit()

    def get_daily_score(self, device_id: str, score_date: date) -> Optional[CorrelationScore]:
        return self.db.query(CorrelationScore).filter(
            CorrelationScore.device_id == device_id,
            CorrelationScore.score_date == score_date
        ).first()

    def average_trust_score(self, device_id: str, since: date) -> float:
        """Mean trust score since a date; 1.0 when no scores exist."""
        avg = self.db.query(func.avg(CorrelationScore.trust_score)).filter(
            CorrelationScore.device_id == device_id,
            CorrelationScore.score_date >= since
        ).scalar()
        return float(avg) if avg is not None else 1.0

    # ============================================================
    # CHECK-IN CHALLENGES
    # ============================================================

    def has_challenges(self, device_id: str) -> bool:
        return self.db.query(CheckinChallenge.id).filter(
            CheckinChallenge.device_id == device_id
        ).first() is not None

    def upsert_challenges(
        self,
        device_id: str,
        schedule: List[Tuple[int, datetime]],
        checkins_required: Optional[int] = None
    ) -> int:
        """
        Insert pending challenges in one statement and one transaction.

        Existing (device, number) rows win, so a concurrent scheduler either
        lands its whole schedule or none of it. When every row is new and
        checkins_required is given, the device's requirement is set in the
        same transaction.
        """
        if not schedule:
            return 0
        stmt = self._insert(CheckinChallenge).values([
            {
                "device_id": device_id,
                "challenge_number": number,
                "scheduled_at": scheduled_at,
                "status": "pending",
            }
            for number, scheduled_at in schedule
        ]).on_conflict_do_nothing(index_elements=["device_id", "challenge_number"])
        try:
            created = self.db.execute(stmt).rowcount
            if checkins_required is not None and created == len(schedule):
                self.db.execute(
                    update(DeviceSubject)
                    .where(DeviceSubject.device_id == device_id)
                    .values(checkins_required=checkins_required)
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return created

    def list_challenges(self, device_id: str) -> List[CheckinChallenge]:
        return self.db.query(CheckinChallenge).filter(
            CheckinChallenge.device_id == device_id
        ).order_by(CheckinChallenge.challenge_number).all()

    def get_challenge(self, device_id: str, challenge_id: int) -> Optional[CheckinChallenge]:
        return self.db.query(CheckinChallenge).filter(
            CheckinChallenge.id == challenge_id,
            CheckinChallenge.device_id == device_id
        ).first()

    def latest_sent_challenge(self, device_id: str) -> Optional[CheckinChallenge]:
        return self.db.query(CheckinChallenge).filter(
            CheckinChallenge.device_id == device_id,
            CheckinChallenge.status == "sent"
        ).order_by(CheckinChallenge.sent_at.desc()).first()

    def select_due_challenges(self, now: datetime, oldest: datetime, limit: int) -> List[CheckinChallenge]:
        return self.db.query(CheckinChallenge).filter(
            CheckinChallenge.status == "pending",
            CheckinChallenge.scheduled_at <= now,
            CheckinChallenge.scheduled_at >= oldest
        ).order_by(CheckinChallenge.scheduled_at).limit(limit).all()

    def mark_challenge_sent(self, challenge_id: int, now: datetime) -> bool:
        updated = self.db.query(CheckinChallenge).filter(
            CheckinChallenge.id == challenge_id,
            CheckinChallenge.status == "pending"
        ).update({"status": "sent", "sent_at": now}, synchronize_session=False)
        self.db.commit()
        return updated == 1

    def expire_challenge(self, challenge_id: int) -> bool:
        updated = self.db.query(CheckinChallenge).filter(
            CheckinChallenge.id == challenge_id,
            CheckinChallenge.status == "sent"
        ).update({"status": "expired"}, synchronize_session=False)
        self.db.commit()
        return updated == 1

    def complete_challenge(
        self,
        challenge_id: int,
        passed: bool,
        metrics: Dict[str, float],
        flags: List[str],
        touch_points: List[Dict[str, float]],
        now: datetime
    ) -> bool:
        """Record the verdict on a sent challenge; False if it already left 'sent'."""
        updated = self.db.query(CheckinChallenge).filter(
            CheckinChallenge.id == challenge_id,
            CheckinChallenge.status == "sent"
        ).update({
            "status": "completed" if passed else "failed",
            "completed_at": now,
            "is_human": passed,
            "straightness": metrics.get("straightness"),
            "speed_variance": metrics.get("speed_variance"),
            "jitter": metrics.get("jitter"),
            "duration_ms": metrics.get("duration"),
            "flags": flags,
            "touch_points": touch_points,
        }, synchronize_session=False)
        self.db.commit()
        return updated == 1

    def expire_stale_sent(self, sent_before: datetime) -> int:
        updated = self.db.query(CheckinChallenge).filter(
            CheckinChallenge.status == "sent",
            CheckinChallenge.sent_at < sent_before
        ).update({"status": "expired"}, synchronize_session=False)
        self.db.commit()
        return updated

    def expire_stale_pending(self, scheduled_before: datetime) -> int:
        updated = self.db.query(CheckinChallenge).filter(
            CheckinChallenge.status == "pending",
            CheckinChallenge.scheduled_at < scheduled_before
        ).update({"status": "expired"}, synchronize_session=False)
        self.db.commit()
        return updated
