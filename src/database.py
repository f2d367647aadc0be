"""Database module for SQLite operations.

All SQL operations are isolated here. No other module writes SQL.

The samples table is an append-only row store partitioned by
(feed_id, sample_date). Rows keep arrival order through the autoincrement
id and are only ever deleted as a whole partition, after the day's
aggregate has been published.
"""

import sqlite3
from datetime import datetime
from typing import List

from models import ENTITY_COUNTS, VEHICLE_FIELDS, Sample
from storage import StorageError


_COUNT_COLUMNS = list(ENTITY_COUNTS) + [attr for _, attr in VEHICLE_FIELDS]
_SAMPLE_COLUMNS = ["sampled_at"] + _COUNT_COLUMNS + ["error_type", "error_message"]


def init_db(path: str) -> sqlite3.Connection:
    """Initialize database with tables and PRAGMAs.

    Args:
        path: Path to the SQLite database file (use ':memory:' for in-memory)

    Returns:
        sqlite3.Connection: Database connection with row factory set
    """
    conn = _create_connection(path)

    count_columns = ",\n            ".join(
        f"{column} INTEGER NOT NULL DEFAULT 0" for column in _COUNT_COLUMNS
    )
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS samples (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            feed_id TEXT NOT NULL,
            sample_date TEXT NOT NULL,
            sampled_at TEXT NOT NULL,
            {count_columns},
            error_type TEXT,
            error_message TEXT
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_samples_partition
        ON samples (feed_id, sample_date, id)
    """)

    conn.commit()
    return conn


def _create_connection(path: str) -> sqlite3.Connection:
    """Create a new database connection with proper settings.

    Args:
        path: Path to the SQLite database file

    Returns:
        sqlite3.Connection: Database connection with row factory and PRAGMAs set
    """
    conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row

    # Set required PRAGMAs
    conn.execute("PRAGMA auto_vacuum=INCREMENTAL")
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.commit()

    return conn


def get_connection(path: str) -> sqlite3.Connection:
    """Get a new database connection.

    Args:
        path: Path to the SQLite database file

    Returns:
        sqlite3.Connection: New database connection with row factory and PRAGMAs set
    """
    return _create_connection(path)


def append_sample(conn: sqlite3.Connection, feed_id: str, sample: Sample) -> None:
    """Append one sample to its (feed, UTC day) partition and commit.

    The insert and commit happen together so a row is either fully durable
    or absent.

    Args:
        conn: Database connection
        feed_id: Feed identifier
        sample: The sample to record

    Raises:
        StorageError: If the row cannot be written
    """
    values = [sample.timestamp.isoformat()]
    values.extend(getattr(sample, column) for column in _COUNT_COLUMNS)
    values.extend([sample.error_type, sample.error_message])

    placeholders = ", ".join("?" for _ in range(len(_SAMPLE_COLUMNS) + 2))
    try:
        conn.execute(
            f"""INSERT INTO samples (feed_id, sample_date, {", ".join(_SAMPLE_COLUMNS)})
                VALUES ({placeholders})""",
            [feed_id, sample.timestamp.date().isoformat()] + values,
        )
        conn.commit()
    except sqlite3.Error as e:
        try:
            conn.rollback()
        except sqlite3.Error:
            pass
        raise StorageError(f"Failed to append sample for feed {feed_id}: {e}") from e


def read_samples(conn: sqlite3.Connection, feed_id: str, sample_date: str) -> List[Sample]:
    """Read every sample in a (feed, day) partition in arrival order.

    Args:
        conn: Database connection
        feed_id: Feed identifier
        sample_date: ISO date (YYYY-MM-DD)

    Returns:
        List of Sample
    """
    cursor = conn.execute(
        f"""SELECT {", ".join(_SAMPLE_COLUMNS)} FROM samples
            WHERE feed_id = ? AND sample_date = ?
            ORDER BY id""",
        (feed_id, sample_date),
    )
    samples = []
    for row in cursor.fetchall():
        samples.append(
            Sample(
                timestamp=datetime.fromisoformat(row["sampled_at"]),
                error_type=row["error_type"],
                error_message=row["error_message"],
                **{column: row[column] for column in _COUNT_COLUMNS},
            )
        )
    return samples


def delete_samples(conn: sqlite3.Connection, feed_id: str, sample_date: str) -> int:
    """Delete a whole (feed, day) partition and commit.

    Args:
        conn: Database connection
        feed_id: Feed identifier
        sample_date: ISO date (YYYY-MM-DD)

    Returns:
        Number of rows deleted
    """
    cursor = conn.execute(
        "DELETE FROM samples WHERE feed_id = ? AND sample_date = ?",
        (feed_id, sample_date),
    )
    conn.commit()
    return cursor.rowcount


def get_feed_ids_for_date(conn: sqlite3.Connection, sample_date: str) -> List[str]:
    """Get all feeds that have rows for a day.

    Args:
        conn: Database connection
        sample_date: ISO date (YYYY-MM-DD)

    Returns:
        Sorted list of feed ids
    """
    cursor = conn.execute(
        "SELECT DISTINCT feed_id FROM samples WHERE sample_date = ? ORDER BY feed_id",
        (sample_date,),
    )
    return [row[0] for row in cursor.fetchall()]


def get_stored_dates(conn: sqlite3.Connection, before: str) -> List[str]:
    """Get every day with stored rows strictly before the given day.

    Args:
        conn: Database connection
        before: ISO date (YYYY-MM-DD), exclusive upper bound

    Returns:
        Ascending list of ISO dates
    """
    cursor = conn.execute(
        """SELECT DISTINCT sample_date FROM samples
           WHERE sample_date < ? ORDER BY sample_date""",
        (before,),
    )
    return [row[0] for row in cursor.fetchall()]


def count_samples(conn: sqlite3.Connection, feed_id: str, sample_date: str) -> int:
    """Count the rows in a (feed, day) partition."""
    cursor = conn.execute(
        "SELECT COUNT(*) FROM samples WHERE feed_id = ? AND sample_date = ?",
        (feed_id, sample_date),
    )
    return cursor.fetchone()[0]


def run_incremental_vacuum(conn: sqlite3.Connection, pages: int = 100) -> None:
    """Run incremental vacuum to reclaim disk space.

    Args:
        conn: Database connection
        pages: Number of pages to vacuum

    Raises:
        ValueError: If pages is not a positive integer
    """
    if not isinstance(pages, int) or pages <= 0:
        raise ValueError(f"pages must be a positive integer, got {pages!r}")
    conn.execute(f"PRAGMA incremental_vacuum({pages})")
    conn.commit()
