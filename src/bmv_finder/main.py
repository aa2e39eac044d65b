"""Command-line entry point: updates, full loads, ad-hoc queries and the web server."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from bmv_finder.config import Settings
from bmv_finder.db import SaleQueries, initialize_schema, migrate_legacy_prices, open_store
from bmv_finder.ingest import ConflictPolicy, UpdateCoordinator, run_full_load
from bmv_finder.logging import configure_logging, get_logger
from bmv_finder.models import UpdateResult

logger = get_logger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _report(result: UpdateResult) -> int:
    """Print the result as the final line of output and map it to an exit code."""
    print(result.model_dump_json(by_alias=True))
    return 0 if result.success else 1


async def run_update(settings: Settings) -> int:
    store = open_store(settings)
    try:
        result = await UpdateCoordinator(store, settings).run_update()
    finally:
        await store.close()
    return _report(result)


async def run_load(settings: Settings, source: str | None, policy: ConflictPolicy) -> int:
    store = open_store(settings)
    try:
        result = await run_full_load(
            store, settings, source, policy=policy, timeout=settings.update_timeout_seconds
        )
    finally:
        await store.close()
    return _report(result)


async def run_search(settings: Settings, query: str, limit: int) -> int:
    store = open_store(settings)
    try:
        await initialize_schema(store)
        sales = await SaleQueries(store).search(query, limit)
    finally:
        await store.close()
    _print_json([s.model_dump(mode="json", by_alias=True) for s in sales])
    logger.info("search_complete", query=query, results=len(sales))
    return 0


async def run_trend(settings: Settings, query: str) -> int:
    store = open_store(settings)
    try:
        await initialize_schema(store)
        points = await SaleQueries(store).trend(query)
    finally:
        await store.close()
    _print_json([p.model_dump(mode="json", by_alias=True) for p in points])
    return 0


async def run_migrate(settings: Settings) -> int:
    store = open_store(settings)
    try:
        copied = await migrate_legacy_prices(store)
    finally:
        await store.close()
    _print_json({"migrated": copied})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BMV Finder - UK Land Registry sold prices and below-market-value estimates"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines (default in production)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("update", help="Apply the latest monthly Price Paid update")

    load = sub.add_parser("load", help="Load a complete Price Paid file (path or URL)")
    load.add_argument(
        "source",
        nargs="?",
        default=None,
        help="Local CSV (optionally .gz) or URL; defaults to the configured full dataset",
    )
    load.add_argument(
        "--policy",
        choices=[p.value for p in ConflictPolicy],
        default=ConflictPolicy.REPLACE.value,
        help="How to treat ids that are already stored",
    )

    search = sub.add_parser("search", help="Search sold prices by postcode or area")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=None)

    trend = sub.add_parser("trend", help="Yearly average prices for a postcode or area")
    trend.add_argument("query")

    sub.add_parser("migrate-legacy", help="Copy rows from the legacy prices table")
    sub.add_parser("serve", help="Start the JSON API server")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except Exception as e:
        configure_logging(json_output=args.json_logs)
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from BMV_FINDER_* environment variables or a .env file.")
        sys.exit(1)

    configure_logging(
        json_output=args.json_logs or settings.is_production,
        level=logging.DEBUG if args.debug else logging.INFO,
    )
    logger.info("starting_bmv_finder", command=args.command, environment=settings.environment)

    if args.command == "serve":
        import uvicorn

        from bmv_finder.web.app import create_app

        app = create_app(settings)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
        return

    if args.command == "update":
        code = asyncio.run(run_update(settings))
    elif args.command == "load":
        code = asyncio.run(run_load(settings, args.source, ConflictPolicy(args.policy)))
    elif args.command == "search":
        limit = args.limit if args.limit is not None else settings.search_default_limit
        code = asyncio.run(run_search(settings, args.query, limit))
    elif args.command == "trend":
        code = asyncio.run(run_trend(settings, args.query))
    else:
        code = asyncio.run(run_migrate(settings))
    sys.exit(code)


if __name__ == "__main__":
    main()
