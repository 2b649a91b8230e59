"""
Device Service - Enrollment, lookup and revocation of verification subjects
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from trustcircle.db.repository import VerificationRepository
from trustcircle.services.activation_gate import activation_gate_service, ActivationGateService
from trustcircle.services.checkin_service import checkin_service, CheckinService
from trustcircle.services.device_status import Trigger
from trustcircle.services.geocell_service import geocell_service, GeocellService
from trustcircle.timeutils import to_local, utcnow

logger = logging.getLogger(__name__)


class SubscriptionClass(str, Enum):
    PAID = "paid"
    SUBSIDIZED = "subsidized"


@dataclass
class DeviceOutcome:
    success: bool
    device: Optional[Any] = None
    created: bool = False
    checkins_scheduled: int = 0
    status: Optional[str] = None
    reason: Optional[str] = None


class DeviceService:
    """Service for managing the lifecycle entry and exit points of a device"""

    def __init__(
        self,
        gate: ActivationGateService = activation_gate_service,
        checkins: CheckinService = checkin_service,
        geocells: GeocellService = geocell_service
    ):
        self.gate = gate
        self.checkins = checkins
        self.geocells = geocells

    def enroll_device(
        self,
        repo: VerificationRepository,
        device_id: str,
        zone_id: str,
        subscription_class: str,
        start_date: Optional[date] = None,
        now: Optional[datetime] = None
    ) -> DeviceOutcome:
        """Create a verifying device and schedule its check-ins (idempotent)."""
        now = now or utcnow()

        try:
            subscription_class = SubscriptionClass(subscription_class).value
        except ValueError:
            return DeviceOutcome(success=False, reason="invalid_subscription_class")

        if not self.geocells.is_valid_region(zone_id):
            return DeviceOutcome(success=False, reason="invalid_zone")

        start_date = start_date or to_local(now).date()

        repo.ensure_zone(zone_id)
        created = repo.create_device(
            device_id, zone_id, subscription_class, start_date,
            checkins_required=self.checkins.policy.default_count
        )

        scheduled = self.checkins.schedule_checkins(repo, device_id, start_date)
        if created:
            logger.info(f"Enrolled device {device_id} in zone {zone_id} ({subscription_class})")

        device = repo.get_device(device_id)
        return DeviceOutcome(
            success=True,
            device=device,
            created=created,
            checkins_scheduled=scheduled.scheduled,
            status=device.status,
        )

    def get_device_summary(
        self,
        repo: VerificationRepository,
        device_id: str,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        now = now or utcnow()
        device = repo.get_device(device_id)
        if not device:
            return None
        today = to_local(now).date()
        latest = repo.latest_movement(device_id, today)
        return {
            "device_id": device.device_id,
            "zone_id": device.zone_id,
            "status": device.status,
            "status_reason": device.status_reason,
            "subscription_class": device.subscription_class,
            "verification_start_date": device.verification_start_date,
            "nights_confirmed": device.nights_confirmed,
            "movement_days_confirmed": device.movement_days_confirmed,
            "checkins_completed": device.checkins_completed,
            "checkins_required": device.checkins_required,
            "average_trust_score": round(
                self.gate.average_trust(repo, device_id, today), 4
            ),
            "moved_today": latest.movement_detected if latest else None,
            "last_movement_at": latest.observed_at if latest else None,
        }

    def revoke_device(
        self,
        repo: VerificationRepository,
        device_id: str,
        now: Optional[datetime] = None
    ) -> DeviceOutcome:
        """Operator revocation; revoked is terminal."""
        now = now or utcnow()
        device = repo.get_device(device_id)
        if not device:
            return DeviceOutcome(success=False, reason="device_not_found")

        result = self.gate.apply(repo, device, Trigger.REVOKE, now)
        return DeviceOutcome(success=True, device=device, status=result.status)


# Singleton instance
device_service = DeviceService()
