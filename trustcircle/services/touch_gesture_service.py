"""
Touch Gesture Classifier - Human vs. scripted liveness traces

Scores a short touch interaction (ordered x/y/t samples) on three geometric
metrics and decides whether it looks like a human finger:

- straightness: humans wobble off the start-end line, scripts draw it exactly
- speed variance: humans accelerate and decelerate, scripts move at one speed
- jitter: humans produce many tiny heading changes

Output: is_human, confidence in [0.0, 1.0], metrics, flags.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

MIN_POINTS = 5
MIN_SPEED_SAMPLES = 3

# Flag thresholds
THRESHOLDS = {
    "min_duration_ms": 200,
    "max_duration_ms": 10000,
    "max_straightness": 0.98,
    "min_straightness": 0.70,
    "min_speed_variance": 0.05,
    "min_jitter": 0.05,
}

# Human indicator ranges
HUMAN_RANGES = {
    "straightness": (0.70, 0.98),
    "speed_variance_min": 0.10,
    "jitter_min": 0.03,
    "duration_ms": (200, 10000),
}

# Confidence bonus per satisfied indicator
CONFIDENCE_BASE = 0.5
CONFIDENCE_BONUS = {
    "straightness": 0.15,
    "speed": 0.15,
    "jitter": 0.10,
    "duration": 0.10,
}

JITTER_MIN_ANGLE = 0.01
JITTER_MAX_ANGLE = 0.5
JITTER_SCALE = 10


@dataclass(frozen=True)
class TouchPoint:
    x: float
    y: float
    t: float


@dataclass
class GestureVerdict:
    is_human: bool
    confidence: float
    metrics: Dict[str, float]
    flags: List[str] = field(default_factory=list)


def calculate_straightness(points: Sequence[TouchPoint]) -> float:
    """1.0 for a perfect line, lower as interior points stray from it."""
    if len(points) < 3:
        return 1.0

    start, end = points[0], points[-1]
    line_length = math.hypot(end.x - start.x, end.y - start.y)
    if line_length == 0:
        return 1.0

    total_deviation = 0.0
    for point in points[1:-1]:
        numerator = abs(
            (end.y - start.y) * point.x
            - (end.x - start.x) * point.y
            + end.x * start.y
            - end.y * start.x
        )
        total_deviation += numerator / line_length

    avg_deviation = total_deviation / (len(points) - 2)
    return max(0.0, 1.0 - (avg_deviation / line_length) * 2)


def calculate_speed_variance(points: Sequence[TouchPoint]) -> float:
    """Coefficient of variation of point-to-point speed, clamped to [0, 1]."""
    speeds = []
    for prev, curr in zip(points, points[1:]):
        dt = curr.t - prev.t
        if dt > 0:
            speeds.append(math.hypot(curr.x - prev.x, curr.y - prev.y) / dt)

    if len(speeds) < MIN_SPEED_SAMPLES:
        return 0.0

    speeds_arr = np.asarray(speeds, dtype=float)
    mean = float(speeds_arr.mean())
    if mean <= 0:
        return 0.0
    return min(float(speeds_arr.std()) / mean, 1.0)


def calculate_jitter(points: Sequence[TouchPoint]) -> float:
    """Average small heading change between consecutive triplets, scaled to [0, 1]."""
    if len(points) < MIN_POINTS:
        return 0.0

    total = 0.0
    for prev, mid, curr in zip(points, points[1:], points[2:]):
        angle1 = math.atan2(mid.y - prev.y, mid.x - prev.x)
        angle2 = math.atan2(curr.y - mid.y, curr.x - mid.x)
        delta = abs(angle2 - angle1)
        if JITTER_MIN_ANGLE < delta < JITTER_MAX_ANGLE:
            total += delta

    avg = total / (len(points) - 2)
    return min(avg * JITTER_SCALE, 1.0)


def classify_touch_trace(points: Sequence[TouchPoint], duration_ms: float) -> GestureVerdict:
    """Decide whether a touch trace came from a human."""
    if len(points) < MIN_POINTS:
        return GestureVerdict(
            is_human=False,
            confidence=0.0,
            metrics={"straightness": 0.0, "speed_variance": 0.0, "jitter": 0.0, "duration": duration_ms},
            flags=["insufficient_data"],
        )

    straightness = calculate_straightness(points)
    speed_variance = calculate_speed_variance(points)
    jitter = calculate_jitter(points)

    flags = []
    if duration_ms < THRESHOLDS["min_duration_ms"]:
        flags.append("too_fast")
    if duration_ms > THRESHOLDS["max_duration_ms"]:
        flags.append("too_slow")
    if straightness > THRESHOLDS["max_straightness"]:
        flags.append("too_straight")
    if straightness < THRESHOLDS["min_straightness"]:
        flags.append("too_curved")
    if speed_variance < THRESHOLDS["min_speed_variance"]:
        flags.append("constant_speed")
    if jitter < THRESHOLDS["min_jitter"]:
        flags.append("no_jitter")

    low, high = HUMAN_RANGES["straightness"]
    min_duration, max_duration = HUMAN_RANGES["duration_ms"]
    indicators = {
        "straightness": low <= straightness <= high,
        "speed": speed_variance >= HUMAN_RANGES["speed_variance_min"],
        "jitter": jitter >= HUMAN_RANGES["jitter_min"],
        "duration": min_duration <= duration_ms <= max_duration,
    }

    # Majority of indicators is not enough if two or more flags fired
    is_human = sum(indicators.values()) >= 3 and len(flags) <= 1

    confidence = CONFIDENCE_BASE + sum(
        CONFIDENCE_BONUS[name] for name, satisfied in indicators.items() if satisfied
    )

    return GestureVerdict(
        is_human=is_human,
        confidence=min(confidence, 1.0),
        metrics={
            "straightness": straightness,
            "speed_variance": speed_variance,
            "jitter": jitter,
            "duration": duration_ms,
        },
        flags=flags,
    )
