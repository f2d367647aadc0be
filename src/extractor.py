"""Field-completeness extraction module.

Pure function from a decoded FeedMessage to a Sample. No I/O or side effects.
"""

from datetime import datetime
from typing import Any, Dict

from models import Sample

# VehicleDescriptor.WheelchairAccessible.NO_VALUE
WHEELCHAIR_NO_VALUE = 0


def _has(message: Any, field_name: str) -> bool:
    """HasField that tolerates fields missing from the installed schema."""
    if field_name not in message.DESCRIPTOR.fields_by_name:
        return False
    return message.HasField(field_name)


def extract_sample(feed_message: Any, timestamp: datetime) -> Sample:
    """Count entity types and optional vehicle-position field presence.

    wheelchair_accessible is the one two-tier field: it is present only
    when set and not equal to NO_VALUE.

    Args:
        feed_message: Decoded gtfs_realtime_pb2.FeedMessage
        timestamp: Time the sample was taken (UTC)

    Returns:
        Sample with all counts populated and no error tag
    """
    counts: Dict[str, int] = {
        "total_entities": len(feed_message.entity),
        "vehicles": 0,
        "trip_updates": 0,
        "alerts": 0,
        "shapes": 0,
        "stops": 0,
        "trip_modifications": 0,
    }
    present: Dict[str, int] = {}

    def bump(name: str) -> None:
        present[name] = present.get(name, 0) + 1

    for entity in feed_message.entity:
        if _has(entity, "trip_update"):
            counts["trip_updates"] += 1
        if _has(entity, "alert"):
            counts["alerts"] += 1
        if _has(entity, "shape"):
            counts["shapes"] += 1
        if _has(entity, "stop"):
            counts["stops"] += 1
        if _has(entity, "trip_modifications"):
            counts["trip_modifications"] += 1

        if not _has(entity, "vehicle"):
            continue

        counts["vehicles"] += 1
        vehicle = entity.vehicle

        if _has(vehicle, "trip"):
            for name in ("trip_id", "route_id", "direction_id"):
                if _has(vehicle.trip, name):
                    bump(name)

        if _has(vehicle, "vehicle"):
            descriptor = vehicle.vehicle
            if _has(descriptor, "id"):
                bump("vehicle_id")
            if _has(descriptor, "label"):
                bump("vehicle_label")
            if _has(descriptor, "license_plate"):
                bump("license_plate")
            if (
                _has(descriptor, "wheelchair_accessible")
                and descriptor.wheelchair_accessible != WHEELCHAIR_NO_VALUE
            ):
                bump("wheelchair_accessible")

        if _has(vehicle, "position"):
            for name in ("bearing", "speed", "odometer"):
                if _has(vehicle.position, name):
                    bump(name)

        for name in (
            "current_stop_sequence",
            "stop_id",
            "current_status",
            "timestamp",
            "congestion_level",
            "occupancy_status",
            "occupancy_percentage",
        ):
            if _has(vehicle, name):
                bump(name)

        if (
            "multi_carriage_details" in vehicle.DESCRIPTOR.fields_by_name
            and len(vehicle.multi_carriage_details) > 0
        ):
            bump("multi_carriage_details")

    return Sample(
        timestamp=timestamp,
        **counts,
        **{f"with_{name}": count for name, count in present.items()},
    )
