"""
SQLAlchemy ORM Models for TrustCircle Verification Engine
"""
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime,
    ForeignKey, Date, JSON, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from trustcircle.db.database import Base

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Zone(Base):
    __tablename__ = "zones"

    zone_id = Column(String(32), primary_key=True)  # H3 region cell
    zone_name = Column(String(255))
    resident_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    devices = relationship("DeviceSubject", back_populates="zone")


class DeviceSubject(Base):
    __tablename__ = "device_subjects"

    device_id = Column(String(128), primary_key=True)
    zone_id = Column(String(32), ForeignKey("zones.zone_id"), nullable=False)
    status = Column(String(20), nullable=False, default="verifying")  # verifying, active, frozen, revoked
    subscription_class = Column(String(20), nullable=False, default="paid")  # paid, subsidized
    verification_start_date = Column(Date, nullable=False)

    nights_confirmed = Column(Integer, nullable=False, default=0)
    movement_days_confirmed = Column(Integer, nullable=False, default=0)
    checkins_completed = Column(Integer, nullable=False, default=0)
    checkins_required = Column(Integer, nullable=False, default=3)

    # Once-per-day guards for the atomic counter increments
    last_night_credit_date = Column(Date)
    last_movement_credit_date = Column(Date)

    status_reason = Column(String(255))
    status_changed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        Index('idx_device_subjects_status', 'status'),
        Index('idx_device_subjects_zone', 'zone_id'),
    )

    zone = relationship("Zone", back_populates="devices")
    challenges = relationship("CheckinChallenge", back_populates="device")


class PresenceObservation(Base):
    __tablename__ = "presence_observations"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(128), ForeignKey("device_subjects.device_id", ondelete="CASCADE"), nullable=False)
    observation_date = Column(Date, nullable=False)
    geocell = Column(String(32))
    in_zone = Column(Boolean, default=False)
    observed_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_presence_device_observed', 'device_id', 'observed_at'),
    )


class MovementObservation(Base):
    __tablename__ = "movement_observations"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(128), ForeignKey("device_subjects.device_id", ondelete="CASCADE"), nullable=False)
    observation_date = Column(Date, nullable=False)
    movement_detected = Column(Boolean, nullable=False)
    geocell = Column(String(32))
    observed_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_movement_device_date', 'device_id', 'observation_date'),
        Index('idx_movement_device_cell', 'device_id', 'geocell', 'observed_at'),
    )


class CorrelationScore(Base):
    __tablename__ = "correlation_scores"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(128), ForeignKey("device_subjects.device_id", ondelete="CASCADE"), nullable=False)
    score_date = Column(Date, nullable=False)
    trust_score = Column(Float, nullable=False, default=1.0)
    flags = Column(JSONType, default=dict)
    calculated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint('device_id', 'score_date', name='unique_device_score_date'),
    )


class CheckinChallenge(Base):
    __tablename__ = "checkin_challenges"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(128), ForeignKey("device_subjects.device_id", ondelete="CASCADE"), nullable=False)
    challenge_number = Column(Integer, nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime)
    completed_at = Column(DateTime)
    status = Column(String(20), nullable=False, default="pending")  # pending, sent, completed, expired, failed
    is_human = Column(Boolean)

    # Summarized touch metrics
    straightness = Column(Float)
    speed_variance = Column(Float)
    jitter = Column(Float)
    duration_ms = Column(Float)
    flags = Column(JSONType)
    touch_points = Column(JSONType)

    __table_args__ = (
        UniqueConstraint('device_id', 'challenge_number', name='unique_device_challenge'),
        Index('idx_checkin_status_scheduled', 'status', 'scheduled_at'),
    )

    device = relationship("DeviceSubject", back_populates="challenges")
