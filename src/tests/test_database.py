"""Tests for database.py module."""

import pytest
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from database import (
    init_db,
    get_connection,
    append_sample,
    read_samples,
    delete_samples,
    get_feed_ids_for_date,
    get_stored_dates,
    count_samples,
    run_incremental_vacuum,
)
from models import Sample
from storage import StorageError


T0 = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)


class TestInitDb:
    """Tests for database initialization."""

    def test_samples_table_exists_after_init(self, db_conn):
        """Verify the samples table is created."""
        cursor = db_conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='samples'"
        )
        assert cursor.fetchone() is not None

    def test_init_is_idempotent(self, db_path, db_conn):
        """Re-initializing an existing database keeps its rows."""
        append_sample(db_conn, "feed-a", Sample(timestamp=T0, vehicles=3))

        second = init_db(db_path)
        try:
            assert count_samples(second, "feed-a", "2026-03-14") == 1
        finally:
            second.close()

    def test_pragma_journal_mode_wal(self, db_conn):
        """Verify WAL mode is enabled."""
        cursor = db_conn.execute("PRAGMA journal_mode")
        assert cursor.fetchone()[0] in ("wal", "memory")

    def test_pragma_synchronous_normal(self, db_conn):
        """Verify synchronous mode is NORMAL."""
        cursor = db_conn.execute("PRAGMA synchronous")
        assert cursor.fetchone()[0] == 1  # NORMAL = 1

    def test_pragma_auto_vacuum_incremental(self, db_conn):
        """Verify auto_vacuum is INCREMENTAL."""
        cursor = db_conn.execute("PRAGMA auto_vacuum")
        assert cursor.fetchone()[0] == 2  # INCREMENTAL = 2


class TestAppendAndRead:
    """Tests for appending and reading sample partitions."""

    def test_appended_sample_reads_back_with_all_counts(self, db_conn):
        sample = Sample(
            timestamp=T0,
            total_entities=12,
            vehicles=10,
            trip_updates=2,
            with_route_id=9,
            with_wheelchair_accessible=4,
            with_multi_carriage_details=1,
        )
        append_sample(db_conn, "feed-a", sample)

        rows = read_samples(db_conn, "feed-a", "2026-03-14")

        assert rows == [sample]

    def test_error_sample_keeps_error_fields(self, db_conn):
        sample = Sample.from_error("fetch_error", "timeout after 10s", T0)
        append_sample(db_conn, "feed-a", sample)

        [row] = read_samples(db_conn, "feed-a", "2026-03-14")

        assert row.error_type == "fetch_error"
        assert row.error_message == "timeout after 10s"
        assert row.vehicles == 0

    def test_rows_keep_arrival_order(self, db_conn):
        """Rows come back in append order, not timestamp order."""
        later = Sample(timestamp=T0 + timedelta(minutes=5), vehicles=2)
        earlier = Sample(timestamp=T0, vehicles=1)
        append_sample(db_conn, "feed-a", later)
        append_sample(db_conn, "feed-a", earlier)

        rows = read_samples(db_conn, "feed-a", "2026-03-14")

        assert [r.vehicles for r in rows] == [2, 1]

    def test_partitioned_by_utc_day(self, db_conn):
        append_sample(db_conn, "feed-a", Sample(timestamp=T0, vehicles=1))
        append_sample(
            db_conn, "feed-a", Sample(timestamp=T0 + timedelta(days=1), vehicles=2)
        )

        assert len(read_samples(db_conn, "feed-a", "2026-03-14")) == 1
        assert len(read_samples(db_conn, "feed-a", "2026-03-15")) == 1

    def test_partitioned_by_feed(self, db_conn):
        append_sample(db_conn, "feed-a", Sample(timestamp=T0, vehicles=1))
        append_sample(db_conn, "feed-b", Sample(timestamp=T0, vehicles=2))

        assert [s.vehicles for s in read_samples(db_conn, "feed-a", "2026-03-14")] == [1]
        assert [s.vehicles for s in read_samples(db_conn, "feed-b", "2026-03-14")] == [2]

    def test_append_is_durable_for_other_connections(self, db_path, db_conn):
        """append_sample commits immediately."""
        append_sample(db_conn, "feed-a", Sample(timestamp=T0, vehicles=1))

        other = get_connection(db_path)
        try:
            assert count_samples(other, "feed-a", "2026-03-14") == 1
        finally:
            other.close()

    def test_append_failure_raises_storage_error(self):
        conn = MagicMock()
        conn.execute.side_effect = sqlite3.OperationalError("database is locked")

        with pytest.raises(StorageError, match="feed-a"):
            append_sample(conn, "feed-a", Sample(timestamp=T0))

    def test_read_missing_partition_is_empty(self, db_conn):
        assert read_samples(db_conn, "nope", "2026-03-14") == []


class TestDeleteSamples:
    """Tests for partition deletion."""

    def test_delete_removes_only_that_partition(self, db_conn):
        append_sample(db_conn, "feed-a", Sample(timestamp=T0, vehicles=1))
        append_sample(db_conn, "feed-a", Sample(timestamp=T0, vehicles=1))
        append_sample(db_conn, "feed-b", Sample(timestamp=T0, vehicles=1))
        append_sample(
            db_conn, "feed-a", Sample(timestamp=T0 + timedelta(days=1), vehicles=1)
        )

        deleted = delete_samples(db_conn, "feed-a", "2026-03-14")

        assert deleted == 2
        assert count_samples(db_conn, "feed-a", "2026-03-14") == 0
        assert count_samples(db_conn, "feed-b", "2026-03-14") == 1
        assert count_samples(db_conn, "feed-a", "2026-03-15") == 1

    def test_delete_missing_partition_returns_zero(self, db_conn):
        assert delete_samples(db_conn, "nope", "2026-03-14") == 0


class TestPartitionQueries:
    """Tests for partition discovery queries."""

    def test_get_feed_ids_for_date_sorted_and_distinct(self, db_conn):
        for feed_id in ("feed-c", "feed-a", "feed-c"):
            append_sample(db_conn, feed_id, Sample(timestamp=T0))

        assert get_feed_ids_for_date(db_conn, "2026-03-14") == ["feed-a", "feed-c"]

    def test_get_stored_dates_excludes_bound(self, db_conn):
        for days in (0, 1, 2):
            append_sample(
                db_conn, "feed-a", Sample(timestamp=T0 + timedelta(days=days))
            )

        assert get_stored_dates(db_conn, "2026-03-16") == ["2026-03-14", "2026-03-15"]

    def test_get_stored_dates_empty(self, db_conn):
        assert get_stored_dates(db_conn, "2026-03-16") == []


class TestIncrementalVacuum:
    """Tests for incremental vacuum."""

    def test_run_incremental_vacuum_completes(self, db_conn):
        """Verify incremental vacuum runs without error."""
        run_incremental_vacuum(db_conn, pages=10)

    def test_run_incremental_vacuum_invalid_pages_raises(self, db_conn):
        """Verify validation rejects invalid pages values."""
        with pytest.raises(ValueError, match="pages must be a positive integer"):
            run_incremental_vacuum(db_conn, pages=0)

        with pytest.raises(ValueError, match="pages must be a positive integer"):
            run_incremental_vacuum(db_conn, pages="100")  # type: ignore
