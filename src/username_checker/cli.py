"""
Command-line interface for the username checker service.

This module provides the main CLI entry point with commands for:
- serve: Run the HTTP service
- check: Check a single username for availability
- self-test: Verify store connectivity and login

Configuration always comes from the environment (and a .env file).
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from . import __version__
from .audit_logger import AuditLogger
from .checker import AvailabilityChecker
from .config import SystemConfig, load_config_from_env
from .exceptions import ConfigError, SessionFatalError
from .models import CheckFailure
from .self_test import SelfTest, format_self_test_result
from .store import KeyValueStore


EXIT_AVAILABLE = 0
EXIT_TAKEN_OR_ERROR = 1
EXIT_FATAL = 2


def _load_config() -> Optional[SystemConfig]:
    try:
        return load_config_from_env()
    except ConfigError as e:
        print("Invalid environment variables:", file=sys.stderr)
        for error in e.details.get("errors", []):
            print(f"  - {error}", file=sys.stderr)
        return None


def _create_logger(config: SystemConfig, verbose: bool) -> AuditLogger:
    level = "debug" if verbose else config.logging.level
    return AuditLogger.from_config(level, config.logging.output_format)


async def check_single_username(
    username: str,
    config: SystemConfig,
    identity: Optional[str] = None,
    verbose: bool = False,
) -> int:
    """
    Check a single username and print the result as JSON.

    Args:
        username: Username to check
        config: System configuration
        identity: Rate-limit identity to charge
        verbose: Enable debug logging

    Returns:
        Exit code (0 available, 1 taken or failed, 2 login failure)
    """
    logger = _create_logger(config, verbose)
    store = KeyValueStore.from_config(config.store)
    try:
        async with AvailabilityChecker.from_config(config, store, logger=logger) as checker:
            try:
                result = await checker.check_username(username, identity)
            except SessionFatalError as e:
                print(json.dumps({"username": username, "error": e.to_dict()}), file=sys.stderr)
                return EXIT_FATAL
    finally:
        await store.close()

    if isinstance(result, CheckFailure):
        output = {
            "username": username,
            "error": result.kind.value,
            "status": result.status_code,
            "retryAfter": result.retry_after_seconds,
        }
        print(json.dumps(output))
        return EXIT_TAKEN_OR_ERROR

    print(json.dumps({
        "username": username,
        "available": result.available,
        "cached": result.from_cache,
    }))
    return EXIT_AVAILABLE if result.available else EXIT_TAKEN_OR_ERROR


async def run_self_test(config: SystemConfig, probe: bool = False, verbose: bool = False) -> int:
    """Run the startup self-test and print a summary."""
    logger = _create_logger(config, verbose)
    store = KeyValueStore.from_config(config.store)
    try:
        async with AvailabilityChecker.from_config(config, store, logger=logger) as checker:
            result = await SelfTest(
                config,
                store,
                checker.session_manager,
                logger=logger,
                probe_session=probe,
            ).run()
    finally:
        await store.close()

    print(format_self_test_result(result))
    return 0 if result.success else 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command."""
    config = _load_config()
    if config is None:
        return 1

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    from .server import run

    run(config)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    config = _load_config()
    if config is None:
        return 1

    return asyncio.run(check_single_username(
        username=args.username,
        config=config,
        identity=args.identity,
        verbose=args.verbose,
    ))


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    config = _load_config()
    if config is None:
        return 1

    return asyncio.run(run_self_test(config, probe=args.probe, verbose=args.verbose))


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="username-checker",
        description="Username availability proxy with a shared authenticated session",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'serve' command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service",
    )
    serve_parser.add_argument(
        "--host",
        help="Bind address (default: HOST or 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port", "-p",
        type=int,
        help="Port (default: PORT or 8080)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # 'check' command
    check_parser = subparsers.add_parser(
        "check",
        help="Check a single username for availability",
    )
    check_parser.add_argument(
        "username",
        help="Username to check",
    )
    check_parser.add_argument(
        "--identity",
        default="cli",
        help="Rate-limit identity to charge (default: cli)",
    )
    check_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    check_parser.set_defaults(func=cmd_check)

    # 'self-test' command
    self_test_parser = subparsers.add_parser(
        "self-test",
        help="Verify store connectivity and login",
    )
    self_test_parser.add_argument(
        "--probe",
        action="store_true",
        help="Also confirm the session with one origin request",
    )
    self_test_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    self_test_parser.set_defaults(func=cmd_self_test)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
