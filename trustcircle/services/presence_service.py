"""
Presence Service - Nightly in-zone presence checks

A presence fix inside the device's zone earns one confirmed night per
calendar date. Every fix (in zone or not) is logged, since the correlation
scorer compares movement reports against recent presence.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from trustcircle.db.repository import VerificationRepository
from trustcircle.services.activation_gate import activation_gate_service, ActivationGateService
from trustcircle.services.device_status import is_accepting_signals
from trustcircle.services.geocell_service import geocell_service, GeocellService, GEOCODE_UNAVAILABLE
from trustcircle.timeutils import to_local, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PresenceOutcome:
    success: bool
    confirmed: bool = False
    nights_confirmed: int = 0
    activated: bool = False
    status: Optional[str] = None
    reason: Optional[str] = None


class PresenceService:
    """Records presence fixes and credits confirmed nights"""

    def __init__(
        self,
        gate: ActivationGateService = activation_gate_service,
        geocells: GeocellService = geocell_service
    ):
        self.gate = gate
        self.geocells = geocells

    def record_presence(
        self,
        repo: VerificationRepository,
        device_id: str,
        geocell: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        now: Optional[datetime] = None
    ) -> PresenceOutcome:
        now = now or utcnow()
        today = to_local(now).date()

        if geocell is None and (lat is None or lon is None):
            return PresenceOutcome(success=False, reason="missing_location")

        device = repo.get_device(device_id)
        if not device:
            return PresenceOutcome(success=False, reason="device_not_found")
        if not is_accepting_signals(device.status):
            return PresenceOutcome(
                success=False,
                status=device.status,
                nights_confirmed=device.nights_confirmed,
                reason="device_not_active"
            )

        if geocell is None:
            geocell = self.geocells.cell_for(lat, lon)

        region = self.geocells.region_of(geocell)
        in_zone = region is not None and region == device.zone_id
        nights = device.nights_confirmed

        repo.log_presence(device_id, geocell, in_zone, now, today)

        outcome = PresenceOutcome(success=True, confirmed=in_zone, nights_confirmed=nights)
        if region is None:
            # Not penalized, just not credited
            logger.warning(f"Presence for {device_id} could not be placed in a region")
            outcome.reason = GEOCODE_UNAVAILABLE

        if in_zone:
            new_value = repo.atomic_increment(device_id, "nights_confirmed", on_date=today)
            if new_value is not None:
                outcome.nights_confirmed = new_value
                activated = self.gate.reevaluate(
                    repo, device, today, now, fresh={"nights_confirmed": new_value}
                )
                outcome.activated = bool(activated and activated.applied)

        outcome.status = device.status
        return outcome


# Singleton instance
presence_service = PresenceService()
