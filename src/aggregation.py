"""Aggregation and grading engine module.

Pure calculation functions with no I/O or side effects. Turns every Sample
recorded for one feed over a window into a single FeedAggregate.
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from models import VEHICLE_FIELDS, FeedAggregate, FieldAggregate, Sample

# Payload shape of the published aggregate document
SCHEMA_VERSION = 1
# Scoring formula (weights, uptime definition, grade bands)
ALGORITHM_VERSION = 1

# Weight of each field's average support in the overall score. Fields that
# identify routes, stops and sequencing weigh more; cosmetic and identity
# fields weigh less or nothing.
FIELD_WEIGHTS: Dict[str, float] = {
    "trip_id": 2.0,
    "route_id": 2.0,
    "direction_id": 1.0,
    "vehicle_id": 1.0,
    "vehicle_label": 0.5,
    "license_plate": 0.0,
    "wheelchair_accessible": 0.5,
    "bearing": 1.0,
    "speed": 1.0,
    "odometer": 0.5,
    "current_stop_sequence": 2.0,
    "stop_id": 2.0,
    "current_status": 1.0,
    "timestamp": 1.0,
    "congestion_level": 0.5,
    "occupancy_status": 2.0,
    "occupancy_percentage": 1.0,
    "multi_carriage_details": 0.5,
}

# Always applied when any samples exist; must stay the largest weight.
UPTIME_WEIGHT = 3.0

GRADE_BANDS = (
    (0.95, "A+"),
    (0.90, "A"),
    (0.80, "B"),
    (0.65, "C"),
    (0.40, "D"),
)


def grade(p: float) -> str:
    """Convert a support or score fraction into a letter grade.

    Band lower bounds are inclusive: grade(0.95) == "A+", grade(0.40) == "D".

    Example:
        >>> grade(0.85)
        'B'
    """
    for threshold, letter in GRADE_BANDS:
        if p >= threshold:
            return letter
    return "F"


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for empty input."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def population_stddev(values: Sequence[float], avg: Optional[float] = None) -> float:
    """Population standard deviation; 0.0 for empty input."""
    if not values:
        return 0.0
    if avg is None:
        avg = mean(values)
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def window_minutes(samples: Sequence[Sample]) -> int:
    """Whole minutes between the earliest and latest sample; 0 below two samples."""
    if len(samples) < 2:
        return 0
    timestamps = [s.timestamp for s in samples]
    span = max(timestamps) - min(timestamps)
    return int(span.total_seconds() // 60)


def aggregate_feed(
    feed_id: str, samples: Sequence[Sample], now: Optional[datetime] = None
) -> FeedAggregate:
    """Aggregate one feed's samples into a FeedAggregate.

    Uptime counts samples without an error tag; service time counts samples
    with at least one vehicle. Per-field average support is the mean of the
    per-sample ratios presence/vehicles, taken only over samples with
    vehicles > 0. It is not sum(presence)/sum(vehicles); the two differ when
    vehicle counts vary and the published grades depend on the former.

    Args:
        feed_id: Feed identifier, copied verbatim into the result
        samples: Every sample in the window, in arrival order
        now: Timestamp for last_updated (defaults to current UTC time)

    Returns:
        FeedAggregate
    """
    if now is None:
        now = datetime.now(timezone.utc)

    total = len(samples)
    successful = sum(1 for s in samples if not s.is_error)
    in_service = [s for s in samples if s.vehicles > 0]

    uptime = successful / total if total else 0.0
    service_time = len(in_service) / total if total else 0.0
    avg_vehicles = mean([float(s.vehicles) for s in in_service])

    series: Dict[str, List[float]] = {}
    for sample in in_service:
        for name, _ in VEHICLE_FIELDS:
            series.setdefault(name, []).append(
                sample.presence(name) / sample.vehicles
            )

    fields: Dict[str, FieldAggregate] = {}
    weighted_total = 0.0
    weight_sum = 0.0

    for name, _ in VEHICLE_FIELDS:
        values = series.get(name)
        if not values:
            continue

        avg = mean(values)
        fields[name] = FieldAggregate(
            avg_support=avg,
            stddev=population_stddev(values, avg),
            grade=grade(avg),
        )

        weight = FIELD_WEIGHTS[name]
        weighted_total += avg * weight
        weight_sum += weight

    if total:
        weighted_total += uptime * UPTIME_WEIGHT
        weight_sum += UPTIME_WEIGHT

    overall = weighted_total / weight_sum if weight_sum else 0.0

    return FeedAggregate(
        schema_version=SCHEMA_VERSION,
        algorithm_version=ALGORITHM_VERSION,
        feed_id=feed_id,
        last_updated=now,
        window_minutes=window_minutes(samples),
        avg_vehicles=avg_vehicles,
        uptime_percent=uptime,
        service_time_percent=service_time,
        fields=fields,
        overall_score=overall,
        overall_grade=grade(overall),
    )
