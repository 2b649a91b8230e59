"""
Movement Service - Handles client movement checks

Flow for one report:
log observation -> correlation score -> upsert daily score ->
freeze on a suspicious score, otherwise credit the movement day (once per
date, only when movement was detected and the score clears the trust floor)
-> re-run the activation gate with the freshly returned counter.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from trustcircle.db.repository import VerificationRepository
from trustcircle.services.activation_gate import activation_gate_service, ActivationGateService
from trustcircle.services.correlation_service import correlation_scorer, CorrelationScorer
from trustcircle.services.device_status import is_accepting_signals, FREEZE_REASON
from trustcircle.services.geocell_service import geocell_service, GeocellService
from trustcircle.timeutils import to_local, utcnow

logger = logging.getLogger(__name__)


@dataclass
class MovementOutcome:
    success: bool
    movement_days_confirmed: int = 0
    trust_score: Optional[float] = None
    flags: List[str] = field(default_factory=list)
    skipped_checks: List[str] = field(default_factory=list)
    frozen: bool = False
    activated: bool = False
    status: Optional[str] = None
    reason: Optional[str] = None


class MovementService:
    """Records movement reports and drives scoring and status changes"""

    def __init__(
        self,
        scorer: CorrelationScorer = correlation_scorer,
        gate: ActivationGateService = activation_gate_service,
        geocells: GeocellService = geocell_service
    ):
        self.scorer = scorer
        self.gate = gate
        self.geocells = geocells

    def record_movement(
        self,
        repo: VerificationRepository,
        device_id: str,
        movement_detected: bool,
        geocell: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        now: Optional[datetime] = None
    ) -> MovementOutcome:
        """
        Record one movement check.

        The coarse location is either a geocell id or a lat/lon pair that is
        bucketed here; an unresolvable location is treated as absent.
        """
        now = now or utcnow()
        today = to_local(now).date()

        device = repo.get_device(device_id)
        if not device:
            return MovementOutcome(success=False, reason="device_not_found")
        if not is_accepting_signals(device.status):
            return MovementOutcome(
                success=False,
                status=device.status,
                movement_days_confirmed=device.movement_days_confirmed,
                reason="device_not_active"
            )

        if geocell is None:
            geocell = self.geocells.cell_for(lat, lon)

        movement_days = device.movement_days_confirmed

        # Logged first so the current report counts toward the stationary check
        repo.log_movement(device_id, movement_detected, geocell, now, today)

        correlation = self.scorer.score(repo, device_id, movement_detected, geocell, now)
        repo.upsert_daily_score(device_id, today, correlation.score, correlation.flags, now)

        outcome = MovementOutcome(
            success=True,
            movement_days_confirmed=movement_days,
            trust_score=correlation.score,
            flags=correlation.flags,
            skipped_checks=correlation.skipped_checks,
        )

        frozen = self.gate.freeze_if_suspicious(repo, device, correlation.score, now)
        if frozen is not None:
            if frozen.applied:
                logger.warning(f"Device {device_id} scored {correlation.score} {correlation.flags}; frozen")
                outcome.frozen = True
                outcome.reason = FREEZE_REASON
            # Reloaded after the compare-and-set commit
            outcome.status = device.status
            return outcome

        if movement_detected and correlation.score >= self.gate.policy.min_average_trust:
            new_value = repo.atomic_increment(device_id, "movement_days_confirmed", on_date=today)
            if new_value is not None:
                outcome.movement_days_confirmed = new_value
                activated = self.gate.reevaluate(
                    repo, device, today, now, fresh={"movement_days_confirmed": new_value}
                )
                outcome.activated = bool(activated and activated.applied)

        outcome.status = device.status
        return outcome


# Singleton instance
movement_service = MovementService()
