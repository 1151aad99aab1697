# main.py

"""Entry point for the ordercache application (TUI or headless CLI)."""

import argparse
import asyncio
import logging
import sys

from ordercache.config.logging_config import setup_logging

logger = logging.getLogger("ordercache.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="ordercache",
        description="Order cache and hybrid order search.",
        epilog=(
            "Status types: fulfillment (unfulfilled, fulfilled, "
            "partially_fulfilled, canceled), payment (paid, unpaid, "
            "refunded, ...)."
        ),
    )
    parser.add_argument(
        "query",
        nargs="?",
        default=None,
        help="Search query. Omit to launch the interactive TUI.",
    )
    parser.add_argument(
        "--status",
        default=None,
        metavar="TYPE:VALUE",
        help="Status-only search, e.g. fulfillment:unfulfilled.",
    )
    parser.add_argument(
        "--count",
        default=None,
        metavar="EMAILS",
        help="Comma-separated customer e-mails to count orders for.",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        default=False,
        help="Run a connectivity health check on the order service.",
    )
    return parser


def _run_tui() -> None:
    """Launch the interactive Textual TUI."""
    from ordercache.ui.app import OrderSearchApp

    try:
        app = OrderSearchApp()
        app.run()
    except Exception:
        logger.critical("Fatal error during TUI run", exc_info=True)
        raise
    finally:
        logger.info("ordercache TUI shutting down")


def _run_cli(args: argparse.Namespace) -> None:
    """Run a headless command and exit with its code."""
    from ordercache.cli.runner import (
        cli_counts,
        cli_search,
        cli_status_search,
        run_health_check,
    )

    if args.health:
        exit_code = asyncio.run(run_health_check())
    elif args.count is not None:
        exit_code = asyncio.run(cli_counts(args.count, args.output_format))
    elif args.status is not None:
        exit_code = asyncio.run(
            cli_status_search(args.status, args.output_format)
        )
    else:
        exit_code = asyncio.run(cli_search(args.query, args.output_format))
    sys.exit(exit_code)


def main() -> None:
    """Route to TUI (no args) or headless CLI."""
    args = _build_parser().parse_args()
    use_tui = (
        args.query is None
        and args.status is None
        and args.count is None
        and not args.health
    )

    log_file = setup_logging(console=not use_tui)
    logger.info("ordercache starting, log file: %s", log_file)

    if use_tui:
        _run_tui()
    else:
        _run_cli(args)


if __name__ == "__main__":
    main()
