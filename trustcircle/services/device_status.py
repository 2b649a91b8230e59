"""
Device Status State Machine

Lifecycle of a verification subject:

    verifying --activation_passed--> active
    verifying | active --suspicious_score--> frozen
    any non-revoked --revoke--> revoked (terminal)

frozen -> active is never automatic; an external process resumes frozen
devices. transition() is a pure decision over (status, trigger): counters
are updated before it runs, so the same inputs always give the same answer
and retries cannot double-fire a side effect.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class DeviceStatus(str, Enum):
    VERIFYING = "verifying"
    ACTIVE = "active"
    FROZEN = "frozen"
    REVOKED = "revoked"


class Trigger(str, Enum):
    ACTIVATION_PASSED = "activation_passed"
    SUSPICIOUS_SCORE = "suspicious_score"
    REVOKE = "revoke"


class SideEffect(str, Enum):
    GRANT_ACCESS = "grant_access"
    FREEZE_DEVICE = "freeze_device"
    REVOKE_ACCESS = "revoke_access"


FREEZE_REASON = "Suspicious activity detected"

# (from_status, trigger) -> (to_status, side effects, reason)
TRANSITIONS = {
    (DeviceStatus.VERIFYING, Trigger.ACTIVATION_PASSED): (
        DeviceStatus.ACTIVE, [SideEffect.GRANT_ACCESS], None
    ),
    (DeviceStatus.VERIFYING, Trigger.SUSPICIOUS_SCORE): (
        DeviceStatus.FROZEN, [SideEffect.FREEZE_DEVICE], FREEZE_REASON
    ),
    (DeviceStatus.ACTIVE, Trigger.SUSPICIOUS_SCORE): (
        DeviceStatus.FROZEN, [SideEffect.FREEZE_DEVICE], FREEZE_REASON
    ),
    (DeviceStatus.VERIFYING, Trigger.REVOKE): (
        DeviceStatus.REVOKED, [SideEffect.REVOKE_ACCESS], "Revoked"
    ),
    (DeviceStatus.ACTIVE, Trigger.REVOKE): (
        DeviceStatus.REVOKED, [SideEffect.REVOKE_ACCESS], "Revoked"
    ),
    (DeviceStatus.FROZEN, Trigger.REVOKE): (
        DeviceStatus.REVOKED, [SideEffect.REVOKE_ACCESS], "Revoked"
    ),
}


@dataclass(frozen=True)
class Transition:
    from_status: DeviceStatus
    to_status: DeviceStatus
    side_effects: List[SideEffect] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status


def transition(current: DeviceStatus, trigger: Trigger) -> Transition:
    """Decide the next status for a trigger; unlisted pairs are no-ops."""
    current = DeviceStatus(current)
    trigger = Trigger(trigger)

    entry = TRANSITIONS.get((current, trigger))
    if entry is None:
        return Transition(from_status=current, to_status=current)

    to_status, side_effects, reason = entry
    return Transition(
        from_status=current,
        to_status=to_status,
        side_effects=list(side_effects),
        reason=reason,
    )


def is_accepting_signals(status: str) -> bool:
    """Frozen and revoked devices no longer feed the engine."""
    return status in (DeviceStatus.VERIFYING.value, DeviceStatus.ACTIVE.value)
