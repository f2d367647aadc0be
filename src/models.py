"""Data model module.

Plain dataclasses shared by the scheduler, the row store, the aggregation
engine and the publisher. No I/O happens here.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union


# (output name, Sample attribute) for every optional vehicle-position field
# whose completeness is tracked. Order is the column order of the row store
# and of the raw CSV export.
VEHICLE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("trip_id", "with_trip_id"),
    ("route_id", "with_route_id"),
    ("direction_id", "with_direction_id"),
    ("vehicle_id", "with_vehicle_id"),
    ("vehicle_label", "with_vehicle_label"),
    ("license_plate", "with_license_plate"),
    ("wheelchair_accessible", "with_wheelchair_accessible"),
    ("bearing", "with_bearing"),
    ("speed", "with_speed"),
    ("odometer", "with_odometer"),
    ("current_stop_sequence", "with_current_stop_sequence"),
    ("stop_id", "with_stop_id"),
    ("current_status", "with_current_status"),
    ("timestamp", "with_timestamp"),
    ("congestion_level", "with_congestion_level"),
    ("occupancy_status", "with_occupancy_status"),
    ("occupancy_percentage", "with_occupancy_percentage"),
    ("multi_carriage_details", "with_multi_carriage_details"),
)

ENTITY_COUNTS: Tuple[str, ...] = (
    "total_entities",
    "vehicles",
    "trip_updates",
    "alerts",
    "shapes",
    "stops",
    "trip_modifications",
)


@dataclass(frozen=True)
class NoAuth:
    """Feed is public."""


@dataclass(frozen=True)
class HeaderAuth:
    """API key is sent in the named HTTP header."""
    header_name: str


@dataclass(frozen=True)
class UrlParamAuth:
    """API key is appended as the named query parameter."""
    param_name: str


FeedAuth = Union[NoAuth, HeaderAuth, UrlParamAuth]


@dataclass(frozen=True)
class FeedDescriptor:
    """Catalog metadata for one upstream vehicle-position feed."""
    id: str
    name: str
    url: Optional[str] = None
    auth: FeedAuth = NoAuth()
    status: Optional[str] = None

    @property
    def requires_auth(self) -> bool:
        return not isinstance(self.auth, NoAuth)

    @property
    def is_deprecated(self) -> bool:
        return self.status == "deprecated"


@dataclass(frozen=True)
class Sample:
    """Field-completeness counts captured from one poll of one feed.

    Each ``with_*`` attribute counts the vehicle-position entities that
    populated that optional field. Error-tagged samples carry zero counts.
    """
    timestamp: datetime
    total_entities: int = 0
    vehicles: int = 0
    trip_updates: int = 0
    alerts: int = 0
    shapes: int = 0
    stops: int = 0
    trip_modifications: int = 0

    with_trip_id: int = 0
    with_route_id: int = 0
    with_direction_id: int = 0
    with_vehicle_id: int = 0
    with_vehicle_label: int = 0
    with_license_plate: int = 0
    with_wheelchair_accessible: int = 0
    with_bearing: int = 0
    with_speed: int = 0
    with_odometer: int = 0
    with_current_stop_sequence: int = 0
    with_stop_id: int = 0
    with_current_status: int = 0
    with_timestamp: int = 0
    with_congestion_level: int = 0
    with_occupancy_status: int = 0
    with_occupancy_percentage: int = 0
    with_multi_carriage_details: int = 0

    error_type: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_error(
        cls, error_type: str, error_message: str, timestamp: datetime
    ) -> "Sample":
        """Build an error-tagged sample with every count at zero."""
        return cls(
            timestamp=timestamp,
            error_type=error_type,
            error_message=error_message,
        )

    @property
    def is_error(self) -> bool:
        return self.error_type is not None

    def presence(self, field_name: str) -> int:
        """Return the presence count for an output field name (e.g. "route_id")."""
        return getattr(self, f"with_{field_name}")


SAMPLE_COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(Sample))


@dataclass
class FieldAggregate:
    avg_support: float
    stddev: float
    grade: str


@dataclass
class FeedAggregate:
    """Quality report for one feed over one window of samples."""
    schema_version: int
    algorithm_version: int
    feed_id: str
    last_updated: datetime
    window_minutes: int
    avg_vehicles: float
    uptime_percent: float
    service_time_percent: float
    fields: Dict[str, FieldAggregate]
    overall_score: float
    overall_grade: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "algorithm_version": self.algorithm_version,
            "feed_id": self.feed_id,
            "last_updated": self.last_updated.isoformat(),
            "window_minutes": self.window_minutes,
            "entity_stats": {
                "avg_vehicles": self.avg_vehicles,
                "uptime_percent": self.uptime_percent,
                "service_time_percent": self.service_time_percent,
            },
            "fields": {
                name: {
                    "avg_support": agg.avg_support,
                    "stddev": agg.stddev,
                    "grade": agg.grade,
                }
                for name, agg in self.fields.items()
            },
            "overall": {"score": self.overall_score, "grade": self.overall_grade},
        }


@dataclass
class FeedIndexEntry:
    feed_id: str
    overall_grade: str
    overall_score: float
    uptime_percent: float

    @classmethod
    def from_aggregate(cls, aggregate: FeedAggregate) -> "FeedIndexEntry":
        return cls(
            feed_id=aggregate.feed_id,
            overall_grade=aggregate.overall_grade,
            overall_score=aggregate.overall_score,
            uptime_percent=aggregate.uptime_percent,
        )


@dataclass
class FeedIndex:
    """Run-wide summary of every aggregate published in one cycle."""
    generated_at: datetime
    feeds: List[FeedIndexEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "feeds": [
                {
                    "feed_id": entry.feed_id,
                    "overall_grade": entry.overall_grade,
                    "overall_score": entry.overall_score,
                    "uptime_percent": entry.uptime_percent,
                }
                for entry in self.feeds
            ],
        }
