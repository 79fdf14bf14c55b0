#!/usr/bin/env python3
"""
Cardboom Pricing - Job Runner CLI

Usage:
    cardboom-pricing ingest --source ebay [--category pokemon] [--limit 100] [--ids ID ...]
    cardboom-pricing schedule --mode max_throughput [--batch-size 50] [--delay-ms 150]
    cardboom-pricing aggregate [--category pokemon] [--limit 500]
    cardboom-pricing init-db
    cardboom-pricing serve [--port 8000]

Job commands print the run summary as JSON. Exit code 1 on configuration errors.
Intended for cron / one-off runs; the HTTP API triggers the same jobs.
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from cardboom_pricing.core.config import PricingRules, settings
from cardboom_pricing.core.database import init_models
from cardboom_pricing.core.exceptions import ConfigurationError
from cardboom_pricing.jobs.price_ingestion import run_price_ingestion_job
from cardboom_pricing.jobs.price_scheduler import run_price_scheduler_job
from cardboom_pricing.schemas.ingestion import IngestRequest
from cardboom_pricing.schemas.scheduler import SchedulerRunRequest
from cardboom_pricing.services.price_aggregation import PriceAggregator

logger = logging.getLogger("cardboom_pricing.cli")

SCHEDULER_MODES = [
    "max_throughput",
    "high_priority",
    "medium_priority",
    "low_priority",
    "full_sync",
    "auto",
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cardboom-pricing",
        description="Cardboom pricing engine jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest price events from a source")
    ingest.add_argument("--source", required=True, choices=["ebay", "cardmarket", "pricecharting"])
    ingest.add_argument("--category", help="Only items of this category")
    ingest.add_argument("--limit", type=int, default=settings.INGEST_DEFAULT_LIMIT, help="Max items")
    ingest.add_argument("--ids", nargs="+", help="Explicit market item ids")

    schedule = subparsers.add_parser("schedule", help="Run one scheduler batch")
    schedule.add_argument("--mode", default="auto", choices=SCHEDULER_MODES)
    schedule.add_argument("--batch-size", type=int, default=settings.SCHEDULER_BATCH_SIZE)
    schedule.add_argument("--delay-ms", type=int, default=settings.SCHEDULER_DELAY_MS)

    aggregate = subparsers.add_parser("aggregate", help="Blend recent price events into catalog prices")
    aggregate.add_argument("--category", help="Only items of this category")
    aggregate.add_argument("--limit", type=int, default=500, help="Max items")

    subparsers.add_parser("init-db", help="Create all tables")

    serve = subparsers.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None, help="Defaults to $PORT or 8000")
    return parser


async def run_command(args: argparse.Namespace) -> Dict[str, Any]:
    if args.command == "ingest":
        request = IngestRequest(
            source=args.source,
            category=args.category,
            limit=args.limit,
            market_item_ids=args.ids,
        )
        return await run_price_ingestion_job(request)

    if args.command == "schedule":
        request = SchedulerRunRequest(mode=args.mode, batch_size=args.batch_size, delay_ms=args.delay_ms)
        return await run_price_scheduler_job(request)

    if args.command == "aggregate":
        aggregator = PriceAggregator(PricingRules.from_settings(settings))
        return await aggregator.run(category=args.category, limit=args.limit)

    if args.command == "init-db":
        await init_models()
        return {"success": True, "status": "tables created"}

    raise ValueError(f"Unknown command: {args.command}")


def _read_port() -> int:
    """Fetch and validate the PORT environment variable."""
    value = os.environ.get("PORT", "8000")
    try:
        return int(value)
    except ValueError as exc:
        raise SystemExit(f"Invalid PORT '{value}': {exc}") from exc


def serve(host: str, port: Optional[int]) -> None:
    import uvicorn

    uvicorn.run("cardboom_pricing.main:app", host=host, port=port or _read_port())


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "serve":
        serve(args.host, args.port)
        return 0

    try:
        summary = asyncio.run(run_command(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        print(json.dumps({"success": False, "error": e.message}))
        return 1

    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
