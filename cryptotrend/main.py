"""
Cryptotrend entry point.

Usage::

    python -m cryptotrend.main once
    python -m cryptotrend.main once --start 2024-01-01 --end 2024-06-30
    python -m cryptotrend.main once --no-fetch
    python -m cryptotrend.main daemon --daily-at 00:15
    python -m cryptotrend.main daemon --interval 60

Exit codes: 0 full or partial success, 1 no asset succeeded, 2 run lock held.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import List, Optional

from cryptotrend.config.settings import Settings, get_settings
from cryptotrend.core.exceptions import ConfigurationError, CryptotrendError
from cryptotrend.pipeline.cycle import TradingCycle
from cryptotrend.scheduler.daemon import EXIT_NO_SUCCESS, DaemonScheduler
from cryptotrend.scheduler.triggers import TriggerMode

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root handler once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  %(name)-32s  %(levelname)-7s  %(message)s",
    )


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cryptotrend",
        description="Crypto trend-following data, signal and backtest pipeline",
    )
    parser.add_argument("--out-dir", type=str, default=None, help="Output directory")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    once = sub.add_parser("once", help="Run a single cycle and exit")
    once.add_argument("--no-fetch", action="store_true", default=False,
                      help="Skip acquisition, recompute from persisted series")
    once.add_argument("--start", type=_parse_date, default=None, help="First date (YYYY-MM-DD)")
    once.add_argument("--end", type=_parse_date, default=None, help="Last date (YYYY-MM-DD)")

    daemon = sub.add_parser("daemon", help="Run cycles on a schedule until stopped")
    trigger = daemon.add_mutually_exclusive_group()
    trigger.add_argument("--daily-at", type=str, default=None, help="Local time HH:MM")
    trigger.add_argument("--interval", type=float, default=None, help="Minutes between cycles")
    daemon.add_argument("--max-cycles", type=int, default=None, help=argparse.SUPPRESS)

    return parser.parse_args(argv)


def _apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    updates = {}
    if args.out_dir:
        out_dir = args.out_dir.rstrip("/")
        updates["out_dir"] = out_dir
        updates["lock_file"] = f"{out_dir}/.cryptotrend.lock"
    if args.log_level:
        updates["log_level"] = args.log_level
    return base.model_copy(update=updates) if updates else base


async def run_once(settings: Settings, args: argparse.Namespace) -> int:
    cycle = TradingCycle(settings, fetch=not args.no_fetch, start=args.start, end=args.end)
    if args.no_fetch:
        # Recomputing from persisted series does not touch the store
        result = await cycle.run()
        return result.exit_code

    scheduler = DaemonScheduler(cycle.run, settings=settings)
    outcome = await scheduler.run_once(tolerate_missing=False)
    return outcome.exit_code


async def run_daemon(settings: Settings, args: argparse.Namespace) -> int:
    if args.daily_at:
        trigger = TriggerMode.daily(args.daily_at)
    elif args.interval is not None:
        trigger = TriggerMode.every(args.interval)
    else:
        trigger = TriggerMode.from_settings(settings)

    cycle = TradingCycle(settings)
    scheduler = DaemonScheduler(cycle.run, settings=settings, trigger=trigger)
    await scheduler.run_forever(max_cycles=args.max_cycles)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run Cryptotrend; returns the process exit code."""
    args = _parse_args(argv)
    settings = _apply_overrides(get_settings(), args)
    setup_logging(settings.log_level)

    try:
        if args.command == "once":
            return asyncio.run(run_once(settings, args))
        return asyncio.run(run_daemon(settings, args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_NO_SUCCESS
    except CryptotrendError as e:
        logger.error(f"Run failed: {e}")
        return EXIT_NO_SUCCESS
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_NO_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
