"""Tests for extractor.py and decoder.py modules."""

import pytest
from datetime import datetime, timezone

from google.transit import gtfs_realtime_pb2

import decoder
import extractor
from decoder import DecodeError


NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def make_feed() -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = 1773489600
    return feed


def add_vehicle(feed, entity_id: str, **fields):
    """Append a vehicle entity with the given optional fields populated."""
    entity = feed.entity.add()
    entity.id = entity_id
    vehicle = entity.vehicle
    # Mark the vehicle submessage present even when no field is given
    vehicle.SetInParent()

    for name in ("trip_id", "route_id", "direction_id"):
        if name in fields:
            setattr(vehicle.trip, name, fields[name])
    for name, attr in (("vehicle_id", "id"), ("vehicle_label", "label"),
                       ("license_plate", "license_plate")):
        if name in fields:
            setattr(vehicle.vehicle, attr, fields[name])
    if "bearing" in fields or "speed" in fields:
        vehicle.position.latitude = 41.38
        vehicle.position.longitude = 2.17
        for name in ("bearing", "speed"):
            if name in fields:
                setattr(vehicle.position, name, fields[name])
    for name in ("stop_id", "current_stop_sequence", "timestamp"):
        if name in fields:
            setattr(vehicle, name, fields[name])
    return entity


class TestDecodeFeed:
    """Tests for protobuf decoding."""

    def test_decodes_serialized_feed(self):
        feed = make_feed()
        add_vehicle(feed, "v1", route_id="R1")

        message = decoder.decode_feed(feed.SerializeToString())

        assert len(message.entity) == 1
        assert message.entity[0].vehicle.trip.route_id == "R1"

    def test_malformed_payload_raises_decode_error(self):
        with pytest.raises(DecodeError, match="Malformed"):
            decoder.decode_feed(b"\xff\xff\xff\xff not protobuf")


class TestEntityCounts:
    """Tests for entity-type counting."""

    def test_counts_entity_types(self):
        feed = make_feed()
        add_vehicle(feed, "v1")
        add_vehicle(feed, "v2")
        trip_entity = feed.entity.add()
        trip_entity.id = "t1"
        trip_entity.trip_update.trip.trip_id = "T1"
        alert_entity = feed.entity.add()
        alert_entity.id = "a1"
        alert_entity.alert.SetInParent()

        sample = extractor.extract_sample(feed, NOW)

        assert sample.total_entities == 4
        assert sample.vehicles == 2
        assert sample.trip_updates == 1
        assert sample.alerts == 1
        assert sample.timestamp == NOW
        assert sample.error_type is None

    def test_empty_feed_yields_zero_counts(self):
        sample = extractor.extract_sample(make_feed(), NOW)

        assert sample.total_entities == 0
        assert sample.vehicles == 0
        assert sample.with_route_id == 0
        assert not sample.is_error


class TestFieldPresence:
    """Tests for optional vehicle-position field presence."""

    def test_counts_populated_fields(self):
        feed = make_feed()
        add_vehicle(
            feed, "v1",
            trip_id="T1", route_id="R1", direction_id=1,
            vehicle_id="bus-1", vehicle_label="101",
            bearing=90.0, speed=8.5,
            stop_id="S1", current_stop_sequence=4, timestamp=1773489600,
        )
        add_vehicle(feed, "v2", route_id="R2", vehicle_id="bus-2")

        sample = extractor.extract_sample(feed, NOW)

        assert sample.vehicles == 2
        assert sample.with_route_id == 2
        assert sample.with_vehicle_id == 2
        assert sample.with_trip_id == 1
        assert sample.with_direction_id == 1
        assert sample.with_vehicle_label == 1
        assert sample.with_bearing == 1
        assert sample.with_speed == 1
        assert sample.with_stop_id == 1
        assert sample.with_current_stop_sequence == 1
        assert sample.with_timestamp == 1
        assert sample.with_license_plate == 0
        assert sample.with_odometer == 0
        # vehicle descriptor is set on both but wheelchair_accessible on neither
        assert sample.with_wheelchair_accessible == 0

    def test_presence_counts_never_exceed_vehicles(self):
        feed = make_feed()
        for i in range(5):
            add_vehicle(feed, f"v{i}", route_id="R", stop_id="S", speed=1.0)
        trip_entity = feed.entity.add()
        trip_entity.id = "t1"
        trip_entity.trip_update.trip.trip_id = "T1"

        sample = extractor.extract_sample(feed, NOW)

        for name in ("route_id", "stop_id", "speed", "trip_id"):
            assert sample.presence(name) <= sample.vehicles

    def test_explicit_zero_value_counts_as_present(self):
        """Presence is field-set, not truthiness."""
        feed = make_feed()
        add_vehicle(feed, "v1", direction_id=0, current_stop_sequence=0)

        sample = extractor.extract_sample(feed, NOW)

        assert sample.with_direction_id == 1
        assert sample.with_current_stop_sequence == 1

    def test_occupancy_and_status_enums(self):
        feed = make_feed()
        entity = add_vehicle(feed, "v1")
        entity.vehicle.current_status = gtfs_realtime_pb2.VehiclePosition.STOPPED_AT
        entity.vehicle.occupancy_status = gtfs_realtime_pb2.VehiclePosition.FULL
        entity.vehicle.congestion_level = gtfs_realtime_pb2.VehiclePosition.RUNNING_SMOOTHLY

        sample = extractor.extract_sample(feed, NOW)

        assert sample.with_current_status == 1
        assert sample.with_occupancy_status == 1
        assert sample.with_congestion_level == 1


class TestWheelchairAccessible:
    """Tests for the NO_VALUE rule on wheelchair_accessible."""

    @pytest.fixture(autouse=True)
    def require_field(self):
        fields = gtfs_realtime_pb2.VehicleDescriptor.DESCRIPTOR.fields_by_name
        if "wheelchair_accessible" not in fields:
            pytest.skip("installed bindings predate wheelchair_accessible")

    def test_accessible_value_counts(self):
        feed = make_feed()
        entity = add_vehicle(feed, "v1")
        entity.vehicle.vehicle.wheelchair_accessible = 1

        sample = extractor.extract_sample(feed, NOW)

        assert sample.with_wheelchair_accessible == 1

    def test_no_value_does_not_count(self):
        feed = make_feed()
        entity = add_vehicle(feed, "v1")
        entity.vehicle.vehicle.wheelchair_accessible = extractor.WHEELCHAIR_NO_VALUE

        sample = extractor.extract_sample(feed, NOW)

        assert sample.with_wheelchair_accessible == 0


class TestMultiCarriageDetails:
    """Tests for the repeated multi_carriage_details field."""

    @pytest.fixture(autouse=True)
    def require_field(self):
        fields = gtfs_realtime_pb2.VehiclePosition.DESCRIPTOR.fields_by_name
        if "multi_carriage_details" not in fields:
            pytest.skip("installed bindings predate multi_carriage_details")

    def test_non_empty_details_count(self):
        feed = make_feed()
        entity = add_vehicle(feed, "v1")
        carriage = entity.vehicle.multi_carriage_details.add()
        carriage.id = "car-1"
        add_vehicle(feed, "v2")

        sample = extractor.extract_sample(feed, NOW)

        assert sample.with_multi_carriage_details == 1
