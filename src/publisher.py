"""Rollover publisher module.

Turns a finished day's sample partitions into published aggregate documents
and a run-wide index. Consumed rows are deleted only after the index is
stored, so any publish failure leaves them for the next rollover pass.
"""

import asyncio
import csv
import gzip
import io
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

import aggregation
import database
from models import SAMPLE_COLUMNS, FeedAggregate, FeedIndex, FeedIndexEntry, Sample
from storage import StorageError


logger = logging.getLogger(__name__)

INDEX_KEY = "aggregates/feeds.json"
JSON_CONTENT_TYPE = "application/json"


def aggregate_key(feed_id: str) -> str:
    return f"aggregates/feeds/{feed_id}.json"


def raw_rows_key(feed_id: str, sample_date: str, gzipped: bool) -> str:
    key = f"agency_id={feed_id}/date={sample_date}.csv"
    return f"{key}.gz" if gzipped else key


def samples_to_csv(samples: Iterable[Sample]) -> bytes:
    """Serialize samples as CSV with a header row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(SAMPLE_COLUMNS)
    for sample in samples:
        row = []
        for column in SAMPLE_COLUMNS:
            value = getattr(sample, column)
            if isinstance(value, datetime):
                value = value.isoformat()
            row.append("" if value is None else value)
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


class Publisher:
    """Publishes per-feed aggregates and the feed index for closed days.

    Each document is published with a single put. A feed's rows are deleted
    only after both its aggregate and the day's index have been acknowledged;
    any failed put leaves the rows for the next rollover pass over the same day.
    SQLite work runs in a worker thread so sampling tasks are not blocked.
    """

    def __init__(
        self,
        db_conn: sqlite3.Connection,
        object_store: Any,
        upload_raw: bool = True,
        gzip_raw: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            db_conn: SQLite connection holding the sample rows, used from a
                worker thread and not shared with the scheduler
            object_store: Durable store with put(key, body, content_type)
            upload_raw: Also publish each feed's raw rows as CSV
            gzip_raw: Gzip-compress the raw CSV
            clock: Returns the current UTC time (injectable for tests)
        """
        self._db_conn = db_conn
        self._store = object_store
        self._upload_raw = upload_raw
        self._gzip_raw = gzip_raw
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()

    async def _put(self, key: str, body: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._store.put, key, body, content_type)

    async def publish_days(self, sample_dates: List[str]) -> None:
        """Publish each closed day in order.

        Raises:
            StorageError: If an index publish fails; later days are not attempted
        """
        for sample_date in sample_dates:
            await self.publish_day(sample_date)

    async def publish_day(self, sample_date: str) -> Optional[FeedIndex]:
        """Aggregate and publish every feed with rows for one day.

        Args:
            sample_date: ISO date (YYYY-MM-DD) of a closed day

        Returns:
            The published FeedIndex, or None if no feed had rows or every
            aggregate put failed

        Raises:
            StorageError: If the index cannot be published
        """
        async with self._lock:
            return await self._publish_day(sample_date)

    async def _db(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(func, self._db_conn, *args)

    async def _publish_day(self, sample_date: str) -> Optional[FeedIndex]:
        logger.info(f"Publishing aggregates for {sample_date}")
        feed_ids = await self._db(database.get_feed_ids_for_date, sample_date)
        if not feed_ids:
            logger.info(f"No stored samples for {sample_date}, nothing to publish")
            return None

        entries: List[FeedIndexEntry] = []
        failed: List[str] = []

        for feed_id in feed_ids:
            samples = await self._db(database.read_samples, feed_id, sample_date)
            if not samples:
                continue

            aggregate = aggregation.aggregate_feed(feed_id, samples, now=self._clock())

            try:
                await self._publish_feed(feed_id, sample_date, samples, aggregate)
            except StorageError as e:
                failed.append(feed_id)
                logger.error(
                    f"Failed to publish {feed_id} for {sample_date}, "
                    f"keeping {len(samples)} rows for retry: {e}"
                )
                continue

            entries.append(FeedIndexEntry.from_aggregate(aggregate))

        if not entries:
            # Keep the previous index rather than replacing it with an empty one
            logger.error(
                f"No aggregate for {sample_date} was published, "
                f"leaving {INDEX_KEY} unchanged"
            )
            return None

        index = FeedIndex(generated_at=self._clock(), feeds=entries)
        try:
            await self._put(
                INDEX_KEY,
                json.dumps(index.to_dict()).encode("utf-8"),
                JSON_CONTENT_TYPE,
            )
        except StorageError as e:
            logger.error(
                f"Failed to publish feed index for {sample_date}, "
                f"keeping rows of {len(entries)} feeds for retry: {e}"
            )
            raise

        # Rows are consumed only once both the aggregate and the index are stored
        for entry in entries:
            deleted = await self._db(database.delete_samples, entry.feed_id, sample_date)
            logger.debug(f"Deleted {deleted} rows for {entry.feed_id} on {sample_date}")
        await self._db(database.run_incremental_vacuum, 100)

        kept = 0
        for feed_id in failed:
            kept += await self._db(database.count_samples, feed_id, sample_date)
        logger.info(
            f"Published {len(entries)} aggregates for {sample_date} "
            f"({len(failed)} failed, {kept} rows kept for retry)"
        )
        return index

    async def _publish_feed(
        self,
        feed_id: str,
        sample_date: str,
        samples: List[Sample],
        aggregate: FeedAggregate,
    ) -> None:
        if self._upload_raw:
            body = samples_to_csv(samples)
            content_type = "text/csv"
            if self._gzip_raw:
                body = gzip.compress(body)
                content_type = "application/gzip"
            await self._put(
                raw_rows_key(feed_id, sample_date, self._gzip_raw), body, content_type
            )

        await self._put(
            aggregate_key(feed_id),
            json.dumps(aggregate.to_dict()).encode("utf-8"),
            JSON_CONTENT_TYPE,
        )
        logger.info(
            f"Published {feed_id}: grade {aggregate.overall_grade} "
            f"(score {aggregate.overall_score:.3f}, uptime {aggregate.uptime_percent:.2%})"
        )
