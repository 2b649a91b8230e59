"""
Movement-Presence Correlation Scorer - Spoofing signals for movement reports

Runs every time a device reports a movement check. Produces a daily trust
score in [0.0, 1.0] and the set of named flags that lowered it.

Checks (fixed, additive deductions from 1.0):
- impossible_trajectory: region jump since a presence fix under 30 minutes old
- stationary_with_movement: one geocell keeps claiming movement
- nighttime_movement: movement reported between 02:00 and 05:00 local time

Geometry and history lookups fail open: when a check cannot be evaluated it
is skipped and its outcome name is recorded in skipped_checks, never
penalized.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from trustcircle.config import settings, Settings
from trustcircle.services.geocell_service import geocell_service, GeocellService, GEOCODE_UNAVAILABLE
from trustcircle.timeutils import to_local

logger = logging.getLogger(__name__)

HISTORY_UNAVAILABLE = "history_unavailable"
NO_LOCATION = "no_location"


@dataclass(frozen=True)
class CorrelationWeights:
    """Deductions and windows used by the scorer"""
    trajectory_penalty: float = 0.30
    stationary_penalty: float = 0.20
    nighttime_penalty: float = 0.10
    presence_lookback: timedelta = timedelta(hours=2)
    trajectory_window: timedelta = timedelta(minutes=30)
    stationary_lookback: timedelta = timedelta(days=3)
    stationary_min_reports: int = 3
    night_start_hour: int = 2
    night_end_hour: int = 5

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "CorrelationWeights":
        return cls(
            trajectory_penalty=s.CORRELATION_TRAJECTORY_PENALTY,
            stationary_penalty=s.CORRELATION_STATIONARY_PENALTY,
            nighttime_penalty=s.CORRELATION_NIGHTTIME_PENALTY,
            presence_lookback=timedelta(minutes=s.CORRELATION_PRESENCE_LOOKBACK_MIN),
            trajectory_window=timedelta(minutes=s.CORRELATION_TRAJECTORY_WINDOW_MIN),
            stationary_lookback=timedelta(days=s.CORRELATION_STATIONARY_LOOKBACK_DAYS),
            stationary_min_reports=s.CORRELATION_STATIONARY_MIN_REPORTS,
            night_start_hour=s.CORRELATION_NIGHT_START_HOUR,
            night_end_hour=s.CORRELATION_NIGHT_END_HOUR,
        )


@dataclass
class CorrelationResult:
    score: float
    flags: List[str] = field(default_factory=list)
    skipped_checks: List[str] = field(default_factory=list)


class CorrelationScorer:
    """
    Correlates a movement report with the device's recent history.

    `history` is any object exposing lookup_recent_presence(device_id, since)
    and lookup_recent_movement(device_id, geocell, since), normally the
    VerificationRepository.
    """

    def __init__(
        self,
        weights: Optional[CorrelationWeights] = None,
        geocells: GeocellService = geocell_service
    ):
        self.weights = weights or CorrelationWeights.from_settings()
        self.geocells = geocells

    def score(
        self,
        history,
        device_id: str,
        movement_detected: bool,
        geocell: Optional[str],
        now: datetime
    ) -> CorrelationResult:
        """Score one movement report. `now` is naive UTC."""
        result = CorrelationResult(score=1.0)

        # A negative report carries no fraud signal
        if not movement_detected:
            return result

        if geocell:
            self._check_trajectory(history, device_id, geocell, now, result)
            self._check_stationary(history, device_id, geocell, now, result)
        else:
            result.skipped_checks.append(NO_LOCATION)

        self._check_nighttime(now, result)

        result.score = round(min(max(result.score, 0.0), 1.0), 4)
        return result

    def _check_trajectory(self, history, device_id, geocell, now, result) -> None:
        try:
            presence = history.lookup_recent_presence(device_id, now - self.weights.presence_lookback)
        except Exception as e:
            logger.warning(f"Presence lookup failed for {device_id}, skipping trajectory check: {e}")
            result.skipped_checks.append(HISTORY_UNAVAILABLE)
            return

        if not presence:
            return

        latest = presence[0]
        if not latest.geocell or latest.geocell == geocell:
            return

        previous_region = self.geocells.region_of(latest.geocell)
        current_region = self.geocells.region_of(geocell)
        if previous_region is None or current_region is None:
            logger.warning(f"Region unavailable for {device_id}, skipping trajectory check")
            result.skipped_checks.append(GEOCODE_UNAVAILABLE)
            return

        if previous_region != current_region and now - latest.observed_at < self.weights.trajectory_window:
            result.flags.append("impossible_trajectory")
            result.score -= self.weights.trajectory_penalty

    def _check_stationary(self, history, device_id, geocell, now, result) -> None:
        try:
            count = history.lookup_recent_movement(device_id, geocell, now - self.weights.stationary_lookback)
        except Exception as e:
            logger.warning(f"Movement lookup failed for {device_id}, skipping stationary check: {e}")
            result.skipped_checks.append(HISTORY_UNAVAILABLE)
            return

        if count >= self.weights.stationary_min_reports:
            result.flags.append("stationary_with_movement")
            result.score -= self.weights.stationary_penalty

    def _check_nighttime(self, now, result) -> None:
        hour = to_local(now).hour
        if self.weights.night_start_hour <= hour < self.weights.night_end_hour:
            result.flags.append("nighttime_movement")
            result.score -= self.weights.nighttime_penalty


# Singleton instance
correlation_scorer = CorrelationScorer()
