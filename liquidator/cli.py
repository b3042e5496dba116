"""Command-line interface for the liquidation engine."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .config import load_config
from .errors import ConfigurationError, ReadError
from .logging_setup import configure_logging
from .services import Monitor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_STARTUP_FAILURE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="defi-liquidator",
        description="Lending protocol liquidation opportunity engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Evaluate and rank opportunities without submitting transactions",
    )
    parser.add_argument(
        "--subscribe",
        action="append",
        default=[],
        metavar="ADDRESS",
        help="Monitor this borrower regardless of health factor (repeatable)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Run a single monitoring cycle")
    sub.add_parser("positions", help="Show watched positions and their status")
    sub.add_parser("report", help="Send a position and execution report")

    monitor_parser = sub.add_parser("monitor", help="Continuous monitoring loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Check interval in seconds (overrides config)",
    )

    return parser


def _install_signal_handlers(monitor: Monitor) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.stop)
        except NotImplementedError:
            # Not available on Windows event loops.
            pass


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command and return the process exit code."""
    configure_logging(args.log_level)

    try:
        config = load_config(args.config, dry_run=args.dry_run)
        monitor = Monitor(config)
        await monitor.initialize()
        for address in args.subscribe:
            await monitor.subscribe(address)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_STARTUP_FAILURE
    except ReadError as e:
        logger.error("Data source unreachable at startup: %s", e)
        return EXIT_STARTUP_FAILURE

    if args.command == "check":
        result = await monitor.run_cycle()
        if result is not None:
            logger.info(
                "Execution %s: %s",
                "settled" if result.success else "failed",
                result.reference or result.error,
            )
    elif args.command == "positions":
        statuses = await monitor.position_statuses()
        print(monitor.format_positions(statuses))
    elif args.command == "report":
        print(await monitor.generate_report())
    elif args.command == "monitor":
        _install_signal_handlers(monitor)
        await monitor.run_continuous(args.interval)
    else:
        build_parser().print_help()
        return EXIT_USAGE

    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_USAGE)

    sys.exit(asyncio.run(_run(args)))
