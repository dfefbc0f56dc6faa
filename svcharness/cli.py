"""The harness command line."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from . import daemon_status, env, start, status, stop, validate

_VERSION = "0.1.0"
_DEFAULT_CONFIG = "services.yaml"


def _add_config(parser: argparse.ArgumentParser, default: object) -> None:
    parser.add_argument(
        "-c", "--config", default=default, help="Configuration file path"
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for every harness command."""
    parser = argparse.ArgumentParser(
        prog="harness",
        description="Graph Network Harness - Service orchestration tool",
    )
    parser.add_argument("-V", "--version", action="version", version=f"harness {_VERSION}")
    _add_config(parser, _DEFAULT_CONFIG)

    commands = parser.add_subparsers(dest="command", required=True)

    def command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = commands.add_parser(name, help=help_text)
        _add_config(sub, argparse.SUPPRESS)
        return sub

    validate_cmd = command("validate", "Validate configuration file")
    validate_cmd.add_argument(
        "-s", "--strict", action="store_true",
        help="Strict mode - fail on missing environment variables",
    )

    start_cmd = command("start", "Start services")
    start_cmd.add_argument("services", nargs="*", help="Services to start (empty means all)")

    stop_cmd = command("stop", "Stop services")
    stop_cmd.add_argument("services", nargs="*", help="Services to stop (empty means all)")
    stop_cmd.add_argument(
        "-f", "--force", action="store_true",
        help="Force stop even if dependents are running",
    )
    stop_cmd.add_argument(
        "-t", "--timeout", type=int, default=None,
        help="Timeout in seconds to wait for services to stop",
    )

    status_cmd = command("status", "Show service status")
    status_cmd.add_argument(
        "-f", "--format", default="table", help="Output format (table or json)"
    )
    status_cmd.add_argument(
        "-w", "--watch", action="store_true", help="Watch mode - continuously update status"
    )
    status_cmd.add_argument(
        "-d", "--detailed", action="store_true", help="Show detailed information"
    )

    daemon_cmd = command("daemon", "Daemon management commands")
    daemon_commands = daemon_cmd.add_subparsers(dest="daemon_command", required=True)
    daemon_commands.add_parser("status", help="Check daemon status")

    env_cmd = command("env", "Environment variable management")
    env_commands = env_cmd.add_subparsers(dest="env_command", required=True)
    env_set = env_commands.add_parser("set", help="Set environment variables in the daemon")
    env_set.add_argument("variables", nargs="*", help="Variables in KEY=VALUE format")
    env_get = env_commands.add_parser("get", help="Get environment variables from the daemon")
    env_get.add_argument("names", nargs="*", help="Variable names to get (empty for all)")

    return parser


def _dispatch(args: argparse.Namespace) -> None:
    if args.command == "validate":
        validate.run(args.config, args.strict)
    elif args.command == "start":
        asyncio.run(start.run(args.config, args.services))
    elif args.command == "stop":
        asyncio.run(stop.run(args.config, args.services, args.force, args.timeout))
    elif args.command == "status":
        asyncio.run(status.run(args.config, args.format, args.watch, args.detailed))
    elif args.command == "daemon":
        asyncio.run(daemon_status.daemon_status())
    elif args.env_command == "set":
        asyncio.run(env.set_variables(args.variables))
    else:
        asyncio.run(env.get_variables(args.names))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the harness command line; return the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        _dispatch(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())