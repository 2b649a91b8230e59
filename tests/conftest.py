"""Pytest configuration and fixtures."""

import os

# Must be set before trustcircle.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOCAL_TIMEZONE"] = "UTC"
os.environ["PUSH_GATEWAY_URL"] = ""

from datetime import date
from typing import Optional

import h3
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trustcircle.db import models  # noqa: F401  (registers tables)
from trustcircle.db.database import Base
from trustcircle.db.repository import VerificationRepository
from trustcircle.services.activation_gate import ActivationGateService, ActivationPolicy
from trustcircle.services.touch_gesture_service import TouchPoint

NYC = (40.7128, -74.0060)
LOS_ANGELES = (34.0522, -118.2437)

# A trace with natural wobble and uneven speed (straightness ~0.96,
# speed CV ~0.23, jitter 1.0, 500 ms)
HUMAN_TRACE = [
    TouchPoint(0, 0, 0),
    TouchPoint(20, 3, 40),
    TouchPoint(45, 1, 100),
    TouchPoint(70, 6, 180),
    TouchPoint(100, 2, 240),
    TouchPoint(125, 7, 330),
    TouchPoint(150, 3, 420),
    TouchPoint(180, 0, 500),
]
HUMAN_DURATION_MS = 500


class RecordingNotifier:
    """Stands in for the push gateway and remembers what was sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def dispatch(self, device_id, payload, tag=None):
        self.sent.append({"device_id": device_id, "payload": payload, "tag": tag})
        return {"success": not self.fail, "device_id": device_id}

    def send_checkin_challenge(self, device_id, challenge_id):
        return self.dispatch(device_id, {"title": "Quick verify", "challenge_id": challenge_id}, f"checkin-{challenge_id}")

    def titles(self):
        return [entry["payload"]["title"] for entry in self.sent]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return VerificationRepository(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gate(notifier):
    return ActivationGateService(policy=ActivationPolicy(), notifier=notifier)


@pytest.fixture
def zone_id():
    return h3.cell_to_parent(h3.latlng_to_cell(NYC[0], NYC[1], 7), 4)


@pytest.fixture
def home_cells(zone_id):
    """Two distinct fine cells inside the zone."""
    children = sorted(h3.cell_to_children(zone_id, 7))
    return children[0], children[1]


@pytest.fixture
def far_cell():
    return h3.latlng_to_cell(LOS_ANGELES[0], LOS_ANGELES[1], 7)


@pytest.fixture
def make_device(repo, zone_id):
    """Create a device directly in the store with the given counters."""

    def _make(
        device_id: str = "dev-1",
        status: str = "verifying",
        nights: int = 0,
        movement_days: int = 0,
        checkins: int = 0,
        start: Optional[date] = None,
    ):
        repo.ensure_zone(zone_id)
        repo.create_device(device_id, zone_id, "paid", start or date(2026, 3, 1), checkins_required=3)
        device = repo.get_device(device_id)
        device.status = status
        device.nights_confirmed = nights
        device.movement_days_confirmed = movement_days
        device.checkins_completed = checkins
        repo.db.commit()
        return repo.get_device(device_id)

    return _make


@pytest.fixture
def human_trace():
    return list(HUMAN_TRACE), HUMAN_DURATION_MS


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)
