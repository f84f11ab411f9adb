# This module is the operator CLI for the booking core.
# It creates tables or checks connectivity, and prints aggregate statistics as JSON.
# Every command opens an application context and releases it before exiting.

from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from src.common.logging import configure_logging
from src.common.runtime import install_shutdown_handlers, open_app_context

LOGGER = logging.getLogger("manage")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Roadside mechanic booking core utilities")
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("init-db", help="Create marketplace tables and indexes")
    subcommands.add_parser("check-db", help="Verify the database is reachable")
    stats = subcommands.add_parser("stats", help="Service request statistics")
    stats.add_argument("--mechanic-id", default=None, help="Restrict statistics to one mechanic")
    subcommands.add_parser("customer-stats", help="Customer account statistics")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    with open_app_context(apply_ddl=args.command == "init-db") as context:
        install_shutdown_handlers(context)
        if args.command == "init-db":
            return 0, {"status": "ok", "tables": "created"}
        if args.command == "check-db":
            reachable = context.database.can_connect()
            return (0 if reachable else 1), {"status": "ok" if reachable else "unreachable"}
        if args.command == "stats":
            return 0, context.requests.statistics(mechanic_id=args.mechanic_id).to_dict()
        return 0, context.accounts.customer_statistics().to_dict()


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)
    exit_code, result = run(args)
    print(json.dumps(result, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
