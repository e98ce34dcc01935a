#!/usr/bin/env python3
"""
XBurn Indexer - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
One executable for every way the indexer is operated.

- Compatible with PM2 / systemd process management
- Handles SIGINT / SIGTERM gracefully: in-flight batches
  finish, nothing is cancelled mid-write
- Exits non-zero only when startup fails (no database, no
  usable chain configuration)

============================================================
USAGE
============================================================
    python app.py --mode run --create-schema
    python app.py --mode backfill --chain-id 8453 --end-block 7400000
    python app.py --mode validate
    python app.py --mode analytics

Environment (a .env file is loaded if present):
    DATABASE_URL, BASE_RPC_URL, START_BLOCK_BASE,
    POLL_INTERVAL_SECONDS, CONFIRMATION_BUFFER, LOG_LEVEL

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError
from indexer.analytics import AnalyticsEngine
from indexer.config import IndexerConfig, set_config
from indexer.manager import ChainManager
from storage.database import Database, DatabaseConfig, DatabaseError


MODES = ("run", "backfill", "validate", "analytics")


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Log level name
        log_format: "json" or "text"
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("xburn_indexer")


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="xburn-indexer",
        description="XEN burn and XBurn position indexer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  run        - Listen to every enabled chain, refresh analytics and
               run the validation schedule until stopped
  backfill   - Index historical blocks and exit
  validate   - Run gap detection and reconciliation once and exit
  analytics  - Recompute every metric once and exit
        """,
    )
    parser.add_argument(
        "--mode", "-m",
        choices=MODES,
        default="run",
        help="Runtime mode (default: run)",
    )
    parser.add_argument(
        "--chain-id",
        type=int,
        metavar="ID",
        help="Restrict backfill/validate to one chain",
    )
    parser.add_argument(
        "--end-block",
        type=int,
        metavar="BLOCK",
        help="Last block to backfill (default: head minus confirmation buffer)",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before starting",
    )
    parser.add_argument(
        "--backfill",
        action="store_true",
        help="In run mode, backfill every chain before listening",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format (default: text)",
    )
    return parser


# ============================================================
# MODES
# ============================================================

def _selected_chains(manager: ChainManager, chain_id: Optional[int]) -> list[int]:
    if chain_id is None:
        return manager.registry.chain_ids()
    if chain_id not in manager.registry:
        raise ConfigurationError(f"Chain {chain_id} is not configured or not enabled", chain_id=chain_id)
    return [chain_id]


async def run_forever(manager: ChainManager, analytics: AnalyticsEngine, config: IndexerConfig) -> None:
    logger = logging.getLogger(__name__)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    if config.backfill_on_start:
        for chain_id in manager.registry.chain_ids():
            report = await manager.run_backfill(chain_id)
            logger.info(f"Backfill report: {report.to_dict()}")

    await analytics.refresh_startup()
    analytics.start_schedule()
    manager.start_validation_schedule()

    logger.info("Indexer running (Ctrl+C to stop)")
    await stop.wait()
    logger.info("Shutdown requested")
    await analytics.stop_schedule()


async def run_application(args: argparse.Namespace, config: IndexerConfig) -> int:
    """
    Run the selected mode.

    Returns:
        Exit code
    """
    logger = logging.getLogger(__name__)

    database = Database(DatabaseConfig.from_env())
    try:
        await database.connect()
        if args.create_schema:
            await database.create_schema()
    except DatabaseError as e:
        logger.error(f"Database unavailable: {e}")
        return 1

    manager = ChainManager(database, config)
    analytics = AnalyticsEngine(database, config.analytics)

    try:
        await manager.initialize(start_listeners=args.mode == "run")

        if args.mode == "run":
            await run_forever(manager, analytics, config)
        elif args.mode == "backfill":
            for chain_id in _selected_chains(manager, args.chain_id):
                report = await manager.run_backfill(chain_id, args.end_block)
                print(json.dumps(report.to_dict(), indent=2))
        elif args.mode == "validate":
            for chain_id in _selected_chains(manager, args.chain_id):
                await manager.validator.detect_block_gaps(chain_id)
                await manager.validator.run_weekly_reconciliation(chain_id)
        elif args.mode == "analytics":
            metrics = await analytics.refresh_startup()
            print(json.dumps({name: str(value) for name, value in sorted(metrics.items())}, indent=2))
        return 0

    except ConfigurationError as e:
        logger.error(e.to_log_format())
        return 1
    finally:
        await manager.shutdown()
        await database.disconnect()


def main() -> int:
    """Main entry point."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args()

    config = IndexerConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.backfill:
        config.backfill_on_start = True
    set_config(config)

    logger = setup_logging(config.log_level, args.log_format)
    logger.info(f"Starting xburn-indexer in {args.mode} mode")

    try:
        return asyncio.run(run_application(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
