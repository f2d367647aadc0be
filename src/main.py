"""Main entry point module.

Handles CLI arguments, startup wiring, signal handling, and clean shutdown.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import date
from typing import Any, List, Mapping, Optional

import aiohttp

import catalog
import config as config_module
import database
import keystore
import storage
from fetcher import FeedFetcher, FetchError
from publisher import Publisher
from scheduler import Scheduler


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GTFS-Realtime feed quality monitor")
    parser.add_argument(
        "--config", required=True, help="Path to configuration YAML file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Sample all active feeds")
    run_parser.add_argument(
        "--rounds",
        type=int,
        default=None,
        help="Override sampling.rounds (0 = run until interrupted)",
    )

    aggregate_parser = subparsers.add_parser(
        "aggregate", help="Publish aggregates for one stored day"
    )
    aggregate_parser.add_argument(
        "--date", required=True, type=date.fromisoformat, help="Day to publish (YYYY-MM-DD)"
    )

    subparsers.add_parser("list-feeds", help="Summarize the feed catalog")
    return parser


def get_refresh_token(cfg: config_module.Config) -> str:
    """Read the catalog refresh token from the configured environment variable.

    Raises:
        ConfigError: If the variable is unset or empty
    """
    token = os.environ.get(cfg.catalog.refresh_token_env)
    if not token:
        raise config_module.ConfigError(
            f"{cfg.catalog.refresh_token_env} must be set in the environment"
        )
    return token


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set shutdown_event on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, handle_signal, signum)
        except NotImplementedError:
            # Windows event loops do not support add_signal_handler
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(shutdown_event.set))


async def run_sampling(cfg: config_module.Config, db_conn: Any, rounds: int) -> int:
    """Discover feeds, resolve keys, and run the scheduler.

    Returns:
        Number of rounds completed
    """
    refresh_token = get_refresh_token(cfg)

    async with aiohttp.ClientSession() as session:
        feed_catalog = catalog.MobilityDataCatalog(
            session,
            refresh_token,
            base_url=cfg.catalog.base_url,
            timeout_seconds=cfg.catalog.timeout_seconds,
        )
        logger.info("Fetching feed list from catalog...")
        feeds = await feed_catalog.list_feeds()

        resolved_keys: Mapping[str, str] = {}
        if cfg.keys.config_path:
            references = keystore.load_key_config(cfg.keys.config_path)
            resolved_keys = await keystore.resolve_keys(
                keystore.SsmKeyStore(), references
            )

        active_feeds = catalog.select_active_feeds(
            feeds, resolved_keys, cfg.exclude.feeds
        )
        auth_count = sum(1 for f in active_feeds if f.requires_auth)
        logger.info(
            f"Found {len(active_feeds)} feeds to process "
            f"({auth_count} authenticated, excluding deprecated)"
        )

        # Rollover publishing runs beside sampling on its own connection
        publisher_conn = database.get_connection(cfg.database.path)
        try:
            publisher = Publisher(
                publisher_conn,
                storage.build_object_store(cfg.storage),
                upload_raw=cfg.storage.upload_raw,
                gzip_raw=cfg.storage.gzip_raw,
            )
            fetcher = FeedFetcher(
                session, resolved_keys, timeout_seconds=cfg.sampling.request_timeout_seconds
            )
            scheduler = Scheduler(
                active_feeds,
                db_conn,
                fetcher,
                publisher=publisher,
                concurrency=cfg.sampling.concurrency,
                interval_seconds=cfg.sampling.interval_seconds,
                rounds=rounds,
            )

            shutdown_event = asyncio.Event()
            install_signal_handlers(shutdown_event)
            return await scheduler.run(shutdown_event)
        finally:
            publisher_conn.close()


async def run_aggregate(cfg: config_module.Config, db_conn: Any, day: date) -> None:
    """Publish aggregates and the index for one stored day."""
    publisher = Publisher(
        db_conn,
        storage.build_object_store(cfg.storage),
        upload_raw=cfg.storage.upload_raw,
        gzip_raw=cfg.storage.gzip_raw,
    )
    await publisher.publish_day(day.isoformat())


async def run_list_feeds(cfg: config_module.Config) -> None:
    """Log a summary of the catalog."""
    refresh_token = get_refresh_token(cfg)
    async with aiohttp.ClientSession() as session:
        feed_catalog = catalog.MobilityDataCatalog(
            session,
            refresh_token,
            base_url=cfg.catalog.base_url,
            timeout_seconds=cfg.catalog.timeout_seconds,
        )
        feeds = await feed_catalog.list_feeds()

    for feed in feeds:
        lock = "auth" if feed.requires_auth else "open"
        url = "url" if feed.url else "no-url"
        logger.info(f"[{lock}] [{url}] [{feed.status or 'active'}] {feed.id} - {feed.name}")

    processable = catalog.select_active_feeds(feeds, {}, cfg.exclude.feeds)
    logger.info("Summary:")
    logger.info(f"  Total feeds: {len(feeds)}")
    logger.info(f"  Deprecated: {sum(1 for f in feeds if f.is_deprecated)}")
    logger.info(f"  Auth required: {sum(1 for f in feeds if f.requires_auth)}")
    logger.info(f"  No URL: {sum(1 for f in feeds if not f.url)}")
    logger.info(f"  Processable without keys: {len(processable)}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown)
    """
    args = build_parser().parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)

    # Load configuration first
    try:
        cfg = config_module.load_config(args.config)
        logger.info(f"Configuration loaded from {args.config}")
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.command == "list-feeds":
        try:
            asyncio.run(run_list_feeds(cfg))
        except (config_module.ConfigError, FetchError) as e:
            logger.error(str(e))
            return 1
        return 0

    # Initialize database
    try:
        db_conn = database.init_db(cfg.database.path)
        logger.info(f"Database initialized at {cfg.database.path}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        if args.command == "aggregate":
            asyncio.run(run_aggregate(cfg, db_conn, args.date))
        else:
            rounds = cfg.sampling.rounds if args.rounds is None else args.rounds
            if rounds < 0:
                logger.error("--rounds must be >= 0")
                return 1
            asyncio.run(run_sampling(cfg, db_conn, rounds))
    except (config_module.ConfigError, FetchError, storage.StorageError) as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        db_conn.close()

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
