#!/usr/bin/env python3
"""
Sentiment Ingestion Service - CLI Entry Point

Operator commands for the read-through proxy, coverage tracking and
backfill, plus the HTTP server.
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, List, Optional

from core.services.ingestion_service import IngestionService
from ingest.errors import IngestError
from ingest.utils.structured_logging import get_logger


def parse_args(argv: Optional[List[str]] = None):
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description='Sentiment data ingestion: proxy, coverage and backfill',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch a quote through the cache and circuit breaker
  %(prog)s quote AAPL --range 7D

  # Re-ingest one day (messages, analytics and price, forced)
  %(prog)s trigger NVDA 2025-01-10 --type all

  # Fill the last 30 days of gaps
  %(prog)s backfill TSLA --days 30 --max-dates 5

  # Serve the REST API with the scheduler
  %(prog)s serve --scheduler
        """
    )

    parser.add_argument(
        '--memory',
        action='store_true',
        default=os.getenv('STORAGE_BACKEND', '').lower() == 'memory',
        help='Use in-memory storage instead of PostgreSQL (default: $STORAGE_BACKEND=memory)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARN', 'ERROR'],
        default=os.getenv('LOG_LEVEL', 'INFO'),
        help='Set logging level (default: INFO)'
    )

    sub = parser.add_subparsers(dest='command', required=True)

    quote = sub.add_parser('quote', help='Fetch a price quote through the proxy')
    quote.add_argument('symbol')
    quote.add_argument('--range', dest='time_range', default='1D',
                       help='Time range token: 1H, 6H, 1D, 24H, 7D, 30D (default: 1D)')

    trigger = sub.add_parser('trigger', help='Run one ingestion job')
    trigger.add_argument('symbol')
    trigger.add_argument('date', help='Date (YYYY-MM-DD)')
    trigger.add_argument('--type', default='all', choices=['messages', 'analytics', 'price', 'all'])

    coverage = sub.add_parser('coverage', help='Show stored coverage for a month')
    coverage.add_argument('symbol')
    coverage.add_argument('--year', type=int, required=True)
    coverage.add_argument('--month', type=int, required=True)

    refresh = sub.add_parser('refresh', help='Recompute coverage flags')
    refresh.add_argument('symbol')
    refresh.add_argument('--days', type=int, default=None)
    refresh.add_argument('--dates', type=str, default=None, help='Comma-separated dates')

    gaps = sub.add_parser('gaps', help='List business days with missing data')
    gaps.add_argument('symbol')
    gaps.add_argument('--days', type=int, default=30)

    backfill = sub.add_parser('backfill', help='Detect and fill gaps')
    backfill.add_argument('symbol')
    backfill.add_argument('--days', type=int, default=30)
    backfill.add_argument('--max-dates', type=int, default=None)

    sub.add_parser('sweep', help='Re-run ingestion jobs whose lease expired')

    reset = sub.add_parser('reset', help='Clear the ingestion status of a record')
    reset.add_argument('symbol')
    reset.add_argument('date')

    sub.add_parser('cleanup', help='Delete expired cache rows and old history')

    serve = sub.add_parser('serve', help='Run the REST API')
    serve.add_argument('--host', default=os.getenv('API_HOST', '0.0.0.0'))
    serve.add_argument('--port', type=int, default=int(os.getenv('API_PORT', '8000')))
    serve.add_argument('--scheduler', action='store_true', help='Start scheduled jobs')

    return parser.parse_args(argv)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_command(args, service: IngestionService) -> int:
    """Execute a non-server subcommand. Returns the process exit code."""
    if args.command == 'quote':
        result = await service.quote(args.symbol, args.time_range)
        _print({'status': result.status_code, 'headers': result.headers, 'body': result.body})
        return 0 if result.status_code == 200 else 1

    if args.command == 'trigger':
        result = await service.trigger_ingestion(args.symbol, args.date, args.type)
        _print(result.to_dict())
        return 0

    if args.command == 'coverage':
        records = await service.get_coverage(args.symbol, args.year, args.month)
        _print([r.to_dict() for r in records])
        return 0

    if args.command == 'refresh':
        dates = [d.strip() for d in args.dates.split(',')] if args.dates else None
        records = await service.refresh_coverage(args.symbol, dates=dates, days=args.days)
        _print([r.to_dict() for r in records])
        return 0

    if args.command == 'gaps':
        windows = await service.detect_gaps(args.symbol, args.days)
        _print([w.to_dict() for w in windows])
        return 0

    if args.command == 'backfill':
        summary = await service.backfill_gaps(args.symbol, args.days, args.max_dates)
        _print(summary.to_dict())
        return 0 if summary.failed == 0 else 1

    if args.command == 'sweep':
        _print({'recovered': await service.recover_stale_runs()})
        return 0

    if args.command == 'reset':
        record = await service.reset_status(args.symbol, args.date)
        _print(record.to_dict() if record else None)
        return 0 if record else 1

    if args.command == 'cleanup':
        _print(await asyncio.to_thread(service.cleanup))
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def serve(args) -> int:
    import uvicorn

    from api.rest.app import create_app

    service = IngestionService(use_memory=args.memory)
    app = create_app(service, enable_scheduler=args.scheduler)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower().replace('warn', 'warning'))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    level = logging.WARNING if args.log_level == 'WARN' else getattr(logging, args.log_level)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logger = get_logger(__name__, level=level)

    if args.command == 'serve':
        return serve(args)

    try:
        service = IngestionService(use_memory=args.memory)
    except Exception as e:
        logger.error("service_init_failed", error=str(e))
        return 1

    try:
        return asyncio.run(run_command(args, service))
    except (IngestError, ValueError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        return 1
    finally:
        service.close()


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
