"""Command-line entry point: ``python -m themesync <command>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from themesync.app import Components, build_components
from themesync.config import get_settings
from themesync.logging import get_logger, setup_logging
from themesync.server import serve_forever

log = get_logger("themesync.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="themesync",
        description="Keep a deployed theme directory in sync with a GitHub branch.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the webhook and admin HTTP server")
    sub.add_parser("status", help="Show configuration and snapshot status")
    sub.add_parser("check", help="Check whether a newer commit is available")
    sub.add_parser("update", help="Install the latest commit now")
    sub.add_parser("snapshots", help="List stored snapshots")

    restore = sub.add_parser("restore", help="Restore the theme from a snapshot")
    restore.add_argument("name")
    delete = sub.add_parser("delete", help="Delete a snapshot")
    delete.add_argument("name")

    test = sub.add_parser("test-connection", help="Check that a repository is reachable")
    test.add_argument("repo_url")

    sub.add_parser("regenerate-secret", help="Generate a new webhook secret")
    log_cmd = sub.add_parser("log", help="Show recent activity")
    log_cmd.add_argument("--count", type=int, default=10)
    sub.add_parser("clear-log", help="Clear the activity log")
    sub.add_parser("uninstall", help="Remove stored configuration, log and cache")
    return parser


def _commands(args: argparse.Namespace) -> dict[str, Callable[[Components], Awaitable[Any] | Any]]:
    return {
        "status": lambda c: c.actions.status(),
        "check": lambda c: c.actions.check_for_updates(),
        "update": lambda c: c.actions.update(),
        "snapshots": lambda c: c.actions.list_snapshots(),
        "restore": lambda c: c.actions.restore(args.name),
        "delete": lambda c: c.actions.delete(args.name),
        "test-connection": lambda c: c.actions.test_connection(args.repo_url),
        "regenerate-secret": lambda c: c.actions.regenerate_webhook_secret(),
        "log": lambda c: c.actions.recent_log(args.count),
        "clear-log": lambda c: c.actions.clear_log(),
        "uninstall": lambda c: c.actions.uninstall(),
    }


async def run(args: argparse.Namespace) -> int:
    components = build_components(get_settings())
    try:
        if args.command == "serve":
            await serve_forever(components.server())
            return 0

        outcome = _commands(args)[args.command](components)
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        print(json.dumps(outcome, indent=2, default=str))
        return 0 if outcome.get("success") else 1
    finally:
        await components.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_settings())
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        log.info("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
