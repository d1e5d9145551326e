"""Command line entry point: ``catalog-sync <command>``."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

import orjson
import structlog

from catalog_sync.infrastructure.logging import configure_logging
from catalog_sync.services.reconciliation import SyncEngine, open_sync_engine
from catalog_sync.services.webhooks import WebhookDispatcher

logger = structlog.get_logger()

STAGES = {
    "full": SyncEngine.run_full_sync,
    "categories": SyncEngine.sync_categories,
    "products": SyncEngine.sync_products,
    "images": SyncEngine.sync_images,
    "stock": SyncEngine.sync_stock_levels,
}


async def run_command(command: str, event_file: Path | None = None) -> Any:
    log = logger.bind(trigger="cli", command=command)
    async with open_sync_engine(dedicated_database=True) as engine:
        if command == "event":
            event = orjson.loads(event_file.read_bytes())
            return await WebhookDispatcher(engine).dispatch(event, log)
        return await STAGES[command](engine, log=log)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-sync", description="Synchronize the ERP catalog into the local cache"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("full", help="Run every synchronization stage")
    subparsers.add_parser("categories", help="Synchronize categories only")
    subparsers.add_parser("products", help="Synchronize products, links and variants")
    subparsers.add_parser("images", help="Synchronize image metadata")
    subparsers.add_parser("stock", help="Synchronize stock levels")
    event = subparsers.add_parser("event", help="Apply one webhook event from a JSON file")
    event.add_argument("event_file", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        result = asyncio.run(run_command(args.command, getattr(args, "event_file", None)))
    except Exception as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 1
    if isinstance(result, dict):
        logger.info("Command finished", command=args.command, result=result)
    else:
        logger.info("Command finished", command=args.command)
    return 0


if __name__ == "__main__":
    sys.exit(main())
