# main.py

"""Entry point for the deal_tracker service (price check, server, user actions)."""

import argparse
import asyncio
import logging
import sys

from deal_tracker.config.logging_config import setup_logging

logger = logging.getLogger("deal_tracker.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="deal_tracker",
        description="Track product prices and alert owners on price drops.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser(
        "check-prices",
        help="Run one price check over every tracked product.",
    )
    check.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Output format (default: table).",
    )

    serve = commands.add_parser(
        "serve", help="Serve the HTTP price check trigger.",
    )
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    add = commands.add_parser("add", help="Track a product URL.")
    add.add_argument("url", help="Product page URL.")
    add.add_argument("--user", required=True, dest="user_id")
    add.add_argument(
        "--email",
        default=None,
        help="Contact address for price-drop alerts.",
    )

    delete = commands.add_parser("delete", help="Stop tracking a product.")
    delete.add_argument("product_id", type=int)
    delete.add_argument("--user", required=True, dest="user_id")

    listing = commands.add_parser("list", help="List tracked products.")
    listing.add_argument("--user", required=True, dest="user_id")
    listing.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Output format (default: table).",
    )

    history = commands.add_parser(
        "history", help="Show a product's price history.",
    )
    history.add_argument("product_id", type=int)
    history.add_argument("--user", required=True, dest="user_id")

    return parser


def main() -> None:
    """Route to the requested command and exit with its status."""
    args = _build_parser().parse_args()

    log_file = setup_logging(args.command)
    logger.info(
        "deal_tracker %s starting, log file: %s", args.command, log_file,
    )

    from deal_tracker.cli import runner

    if args.command == "check-prices":
        exit_code = asyncio.run(
            runner.run_price_check(args.output_format)
        )
    elif args.command == "serve":
        exit_code = runner.run_serve(args.host, args.port)
    elif args.command == "add":
        exit_code = runner.run_add(args.user_id, args.url, args.email)
    elif args.command == "delete":
        exit_code = runner.run_delete(args.user_id, args.product_id)
    elif args.command == "list":
        exit_code = runner.run_list(args.user_id, args.output_format)
    else:
        exit_code = runner.run_history(args.user_id, args.product_id)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
