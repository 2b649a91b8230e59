"""
Activation Gate - Combines counters and trust into status transitions

Two rules:
1. Activation: a verifying device with enough nights, movement days and
   completed check-ins, and a trailing average trust score at or above the
   floor, becomes active.
2. Freeze: any single daily score under the freeze ceiling freezes a
   verifying or active device, whatever its counters say.

The gate only decides. The device status state machine names the target
status and side effects; the repository applies the change with a
compare-and-set on the current status, so a re-evaluation with unchanged
counters (or a racing duplicate request) cannot fire the transition twice.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from trustcircle.config import settings, Settings
from trustcircle.db.repository import VerificationRepository
from trustcircle.services.device_status import (
    DeviceStatus, Trigger, SideEffect, Transition, transition
)
from trustcircle.services.notification_service import (
    notification_service, NotificationService,
    GRANTED_PAYLOAD, FROZEN_PAYLOAD, REVOKED_PAYLOAD
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivationPolicy:
    """Thresholds for activation and freezing"""
    min_nights: int = 14
    min_movement_days: int = 10
    min_checkins: int = 2
    min_average_trust: float = 0.70
    trust_window_days: int = 14
    freeze_score_ceiling: float = 0.30

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "ActivationPolicy":
        return cls(
            min_nights=s.ACTIVATION_MIN_NIGHTS,
            min_movement_days=s.ACTIVATION_MIN_MOVEMENT_DAYS,
            min_checkins=s.ACTIVATION_MIN_CHECKINS,
            min_average_trust=s.ACTIVATION_MIN_TRUST,
            trust_window_days=s.ACTIVATION_TRUST_WINDOW_DAYS,
            freeze_score_ceiling=s.FREEZE_SCORE_CEILING,
        )

    def evaluate(self, counters: "DeviceCounters", average_trust: float) -> "GateDecision":
        average_trust = round(average_trust, 4)
        unmet = []
        if counters.nights_confirmed < self.min_nights:
            unmet.append("nights_confirmed")
        if counters.movement_days_confirmed < self.min_movement_days:
            unmet.append("movement_days_confirmed")
        if counters.checkins_completed < self.min_checkins:
            unmet.append("checkins_completed")
        if average_trust < self.min_average_trust:
            unmet.append("average_trust")
        return GateDecision(passed=not unmet, unmet=unmet, average_trust=average_trust)

    def should_freeze(self, score: float) -> bool:
        return score < self.freeze_score_ceiling


@dataclass(frozen=True)
class DeviceCounters:
    nights_confirmed: int = 0
    movement_days_confirmed: int = 0
    checkins_completed: int = 0

    @classmethod
    def from_device(cls, device, fresh: Optional[Dict[str, int]] = None) -> "DeviceCounters":
        """Snapshot device counters, preferring freshly returned increment values."""
        counters = cls(
            nights_confirmed=device.nights_confirmed or 0,
            movement_days_confirmed=device.movement_days_confirmed or 0,
            checkins_completed=device.checkins_completed or 0,
        )
        if fresh:
            counters = replace(counters, **{k: v for k, v in fresh.items() if v is not None})
        return counters


@dataclass(frozen=True)
class GateDecision:
    passed: bool
    unmet: List[str] = field(default_factory=list)
    average_trust: float = 1.0


@dataclass(frozen=True)
class AppliedTransition:
    transition: Transition
    applied: bool

    @property
    def status(self) -> str:
        target = self.transition.to_status if self.applied else self.transition.from_status
        return target.value


class ActivationGateService:
    """Evaluates the activation and freeze rules and applies resulting transitions."""

    def __init__(
        self,
        policy: Optional[ActivationPolicy] = None,
        notifier: NotificationService = notification_service
    ):
        self.policy = policy or ActivationPolicy.from_settings()
        self.notifier = notifier

    def average_trust(self, repo: VerificationRepository, device_id: str, today: date) -> float:
        since = today - timedelta(days=self.policy.trust_window_days)
        try:
            return repo.average_trust_score(device_id, since)
        except Exception as e:
            logger.warning(f"Trust average unavailable for {device_id}, using 1.0: {e}")
            repo.db.rollback()
            return 1.0

    def reevaluate(
        self,
        repo: VerificationRepository,
        device,
        today: date,
        now: datetime,
        fresh: Optional[Dict[str, int]] = None
    ) -> Optional[AppliedTransition]:
        """
        Re-run the activation rule after a counter moved.

        Returns None when the device is not verifying or the thresholds are
        not yet met.
        """
        if device.status != DeviceStatus.VERIFYING.value:
            return None

        counters = DeviceCounters.from_device(device, fresh)
        decision = self.policy.evaluate(counters, self.average_trust(repo, device.device_id, today))
        if not decision.passed:
            logger.debug(f"Activation not met for {device.device_id}: {decision.unmet}")
            return None

        return self.apply(repo, device, Trigger.ACTIVATION_PASSED, now)

    def freeze_if_suspicious(
        self,
        repo: VerificationRepository,
        device,
        score: float,
        now: datetime
    ) -> Optional[AppliedTransition]:
        """Freeze on a single score below the ceiling; None if the score is acceptable."""
        if not self.policy.should_freeze(score):
            return None
        return self.apply(repo, device, Trigger.SUSPICIOUS_SCORE, now)

    def apply(
        self,
        repo: VerificationRepository,
        device,
        trigger: Trigger,
        now: datetime
    ) -> AppliedTransition:
        """Run the state machine and persist its decision with a status compare-and-set."""
        decided = transition(DeviceStatus(device.status), trigger)
        if not decided.changed:
            return AppliedTransition(transition=decided, applied=False)

        won = repo.transition_status(
            device.device_id,
            decided.from_status.value,
            decided.to_status.value,
            decided.reason,
            now
        )
        if not won:
            logger.info(f"Device {device.device_id} left {decided.from_status.value} concurrently; skipping {trigger.value}")
            return AppliedTransition(transition=decided, applied=False)

        logger.info(
            f"Device {device.device_id}: {decided.from_status.value} -> {decided.to_status.value} ({trigger.value})"
        )
        self._apply_side_effects(repo, device, decided.side_effects)
        return AppliedTransition(transition=decided, applied=True)

    def _apply_side_effects(self, repo: VerificationRepository, device, effects: List[SideEffect]) -> None:
        for effect in effects:
            if effect == SideEffect.GRANT_ACCESS:
                residents = repo.increment_zone_residents(device.zone_id)
                logger.info(f"Zone {device.zone_id} residents now {residents}")
                self.notifier.dispatch(device.device_id, GRANTED_PAYLOAD)
            elif effect == SideEffect.FREEZE_DEVICE:
                self.notifier.dispatch(device.device_id, FROZEN_PAYLOAD)
            elif effect == SideEffect.REVOKE_ACCESS:
                self.notifier.dispatch(device.device_id, REVOKED_PAYLOAD)


# Singleton instance
activation_gate_service = ActivationGateService()
