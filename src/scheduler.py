"""Sampling scheduler module.

Polls every active feed once per round with bounded concurrency, records
one Sample per feed per round, and hands closed UTC days to the publisher.
"""

import asyncio
import logging
import sqlite3
import threading
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Set

import database
import decoder
import extractor
from decoder import DecodeError
from fetcher import FetchError
from models import FeedDescriptor, Sample
from storage import StorageError

logger = logging.getLogger(__name__)


class Scheduler:
    """Runs sampling rounds across all active feeds.

    Rounds run back to back with interval_seconds elapsed between the end of
    one round and the start of the next. An admission gate allows at most
    `concurrency` fetch+decode+record operations in flight across all feeds.
    SQLite writes run in a worker thread, one at a time.
    The last rollover date is owned by this instance.
    """

    def __init__(
        self,
        feeds: Sequence[FeedDescriptor],
        db_conn: sqlite3.Connection,
        fetcher: Any,
        publisher: Any = None,
        concurrency: int = 5,
        interval_seconds: float = 60,
        rounds: int = 0,
        decode: Callable[[bytes], Any] = decoder.decode_feed,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            feeds: Active feeds, fixed for the run
            db_conn: SQLite connection for the sample row store
            fetcher: Object with async fetch(feed) -> bytes
            publisher: Object with async publish_days(dates), or None to skip rollover
            concurrency: Maximum operations in flight (C)
            interval_seconds: Pause between rounds (T)
            rounds: Number of rounds to run, 0 = until cancelled (N)
            decode: Payload decoder raising DecodeError
            clock: Returns the current UTC time (injectable for tests)
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency!r}")
        self._feeds = list(feeds)
        self._db_conn = db_conn
        self._db_lock = threading.Lock()
        self._fetcher = fetcher
        self._publisher = publisher
        self._concurrency = concurrency
        self._interval_seconds = interval_seconds
        self._rounds = rounds
        self._decode = decode
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._gate: Optional[asyncio.Semaphore] = None
        self._last_rollover_date: Optional[date] = None
        self._handoff_tasks: Set[asyncio.Task] = set()

    @property
    def last_rollover_date(self) -> Optional[date]:
        return self._last_rollover_date

    async def run(self, shutdown_event: asyncio.Event) -> int:
        """Run rounds until the round limit is reached or shutdown is requested.

        Args:
            shutdown_event: Set to stop after the current round

        Returns:
            Number of rounds completed
        """
        if self._rounds == 0:
            logger.info(
                f"Sampling {len(self._feeds)} feeds every {self._interval_seconds}s "
                f"until cancelled"
            )
        else:
            logger.info(
                f"Collecting {self._rounds} round(s) of {len(self._feeds)} feeds "
                f"every {self._interval_seconds}s"
            )

        completed = 0
        try:
            while not shutdown_event.is_set():
                self.check_rollover()
                await self.run_round(completed + 1)
                completed += 1

                if self._rounds and completed >= self._rounds:
                    break

                logger.debug(f"Waiting {self._interval_seconds}s until next round")
                try:
                    await asyncio.wait_for(
                        shutdown_event.wait(), timeout=self._interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.wait_for_handoffs()

        logger.info(f"Sampling stopped after {completed} round(s)")
        return completed

    def check_rollover(self) -> None:
        """Hand off closed days once per UTC date change.

        Every stored day strictly before today is closed: rounds only write
        to today's partition, so nothing can still write to those days. The
        lookup and handoff run as a background task so the round about to
        start is not delayed.
        """
        today = self._clock().date()
        if self._last_rollover_date is not None and today <= self._last_rollover_date:
            return

        self._last_rollover_date = today
        if self._publisher is None:
            return

        task = asyncio.create_task(self._hand_off(today))
        self._handoff_tasks.add(task)
        task.add_done_callback(self._handoff_tasks.discard)

    async def _hand_off(self, today: date) -> None:
        closed_dates = await asyncio.to_thread(self._stored_dates_before, today)
        if not closed_dates:
            return

        logger.info(f"Day rollover to {today}: handing off {', '.join(closed_dates)}")
        try:
            await self._publisher.publish_days(closed_dates)
        except StorageError as e:
            logger.error(f"Failed to publish closed days {closed_dates}: {e}")
        except Exception:
            logger.exception(f"Unhandled exception publishing closed days {closed_dates}")
        else:
            logger.info(f"Published closed days {', '.join(closed_dates)}")

    def _stored_dates_before(self, today: date) -> List[str]:
        with self._db_lock:
            return database.get_stored_dates(self._db_conn, today.isoformat())

    async def wait_for_handoffs(self) -> None:
        """Wait for every in-flight rollover handoff to finish."""
        if self._handoff_tasks:
            await asyncio.gather(*list(self._handoff_tasks), return_exceptions=True)

    async def run_round(self, round_number: int) -> List[Optional[Sample]]:
        """Poll every feed once.

        Args:
            round_number: 1-based round counter for logging

        Returns:
            Recorded Sample per feed, in feed order (None where recording failed)
        """
        if self._gate is None:
            self._gate = asyncio.Semaphore(self._concurrency)

        label = f"{round_number}" if not self._rounds else f"{round_number} of {self._rounds}"
        logger.info(f"Round {label} starting ({len(self._feeds)} feeds)")

        results = await asyncio.gather(
            *(self._poll_feed(feed) for feed in self._feeds),
            return_exceptions=True,
        )

        recorded: List[Optional[Sample]] = []
        ok = failed = 0
        for feed, result in zip(self._feeds, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    f"Unhandled exception polling feed {feed.id}",
                    exc_info=(type(result), result, result.__traceback__),
                )
                result = None
            if result is None or result.is_error:
                failed += 1
            else:
                ok += 1
            recorded.append(result)

        logger.info(f"Round {label} complete: {ok} ok, {failed} failed")
        return recorded

    async def _poll_feed(self, feed: FeedDescriptor) -> Optional[Sample]:
        async with self._gate:
            sample = await self._sample_feed(feed)
            try:
                await asyncio.to_thread(self._record, feed.id, sample)
            except StorageError as e:
                logger.error(f"Failed to record sample for {feed.id}: {e}")
                return None
            return sample

    def _record(self, feed_id: str, sample: Sample) -> None:
        # One transaction at a time on the shared connection
        with self._db_lock:
            database.append_sample(self._db_conn, feed_id, sample)

    async def _sample_feed(self, feed: FeedDescriptor) -> Sample:
        """Fetch, decode and extract one feed.

        Every failure becomes an error sample so the feed still records one
        row for the round. Anything other than FetchError or DecodeError is
        logged with its traceback.
        """
        timestamp = self._clock()

        try:
            payload = await self._fetcher.fetch(feed)
        except FetchError as e:
            logger.error(f"Failed to fetch feed {feed.id}: {e}")
            return Sample.from_error("fetch_error", str(e), timestamp)
        except Exception as e:
            logger.exception(f"Unexpected error fetching feed {feed.id}")
            return Sample.from_error("fetch_error", str(e) or type(e).__name__, timestamp)

        try:
            message = self._decode(payload)
            sample = extractor.extract_sample(message, timestamp)
        except DecodeError as e:
            logger.error(f"Failed to decode feed {feed.id}: {e}")
            return Sample.from_error("decode_error", str(e), timestamp)
        except Exception as e:
            logger.exception(f"Unexpected error decoding feed {feed.id}")
            return Sample.from_error("decode_error", str(e) or type(e).__name__, timestamp)

        logger.debug(f"Sampled {feed.id} - {feed.name}: {sample.vehicles} vehicles")
        return sample
