"""Command-line interface for grocery-sync.

Commands:

- ``sync``    run one synchronization attempt
- ``status``  show pending local changes and the last sync time
- ``login``   sign in and store the session
- ``logout``  clear the stored session
- ``init``    write a starter config file

Exit codes follow the sync outcome so a scheduler (cron, systemd timer)
can decide whether to retry: 0 success, 1 retryable failure, 2 fatal
failure.
"""

import argparse
import json
import logging
import os
import sys
from getpass import getpass

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import (
    LoggingConfig,
    UnifiedConfig,
    build_config,
    yaml_fallbacks,
)
from .core.client import SyncClient
from .exceptions import RpcError, UnauthorizedError
from .logger import setup_logging
from .session import SessionStore
from .store import SQLiteStore
from .sync import (
    SyncEngine,
    SyncOutcome,
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RETRYABLE = 1
EXIT_FATAL = 2

_OUTCOME_EXIT = {
    SyncOutcome.SUCCESS: EXIT_OK,
    SyncOutcome.RETRYABLE_FAILURE: EXIT_RETRYABLE,
    SyncOutcome.FATAL_FAILURE: EXIT_FATAL,
}


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grocery-sync",
        description="Offline-first sync client for grocery lists, items and stores",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sign in once; the session is stored in .grocery_sync/session.json
  grocery-sync --url https://grocery.example.com login alice

  # Preview, then run a sync
  grocery-sync sync --dry-run
  grocery-sync sync

  # From cron: log to a file, exit code drives retries
  grocery-sync sync --cron --log-file /var/log/grocery-sync.log
        """,
    )
    parser.add_argument(
        "--url",
        help="Override server URL (takes precedence over GROCERY_SYNC_URL and config files)",
    )
    parser.add_argument("--db", help="Override SQLite database path")
    parser.add_argument(
        "--state-dir", help="Override directory holding session.json"
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this file (overrides logging.file from config)",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Log line format (default: logging.format from config, else text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"grocery-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Run one synchronization attempt")
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be uploaded without contacting the server",
    )
    sync.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    sync.add_argument(
        "--cron",
        action="store_true",
        help="Unattended mode: log to file only",
    )

    sub.add_parser("status", help="Show pending changes and last sync")

    login = sub.add_parser("login", help="Sign in and store the session")
    login.add_argument("username")
    login.add_argument(
        "--password",
        help="Password (visible in process list -- prefer GROCERY_SYNC_PASSWORD)",
    )

    sub.add_parser("logout", help="Clear the stored session")
    sub.add_parser("init", help="Write a starter config file")
    return parser


def load_runtime_config(
    args: argparse.Namespace, unified: UnifiedConfig
) -> Config:
    """Resolve configuration: CLI > env > .env > YAML > defaults."""
    return load_config(
        url=args.url,
        db_path=args.db,
        state_dir=args.state_dir,
        insecure=args.insecure,
        debug=args.debug,
        yaml_fallbacks=yaml_fallbacks(unified),
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_sync(args: argparse.Namespace, config: Config) -> int:
    sessions = SessionStore(config.state_dir)
    session = sessions.load()
    client = SyncClient(config, session)

    with SQLiteStore(config.db_path) as store:
        engine = SyncEngine(
            store=store,
            client=client,
            session=session,
            inter_phase_delay=config.inter_phase_delay,
            on_session_change=sessions.save,
        )
        report = engine.run(dry_run=args.dry_run)

    if not args.dry_run:
        # Tokens may have been refreshed or cleared during the attempt.
        sessions.save(session)

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif args.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))
    return _OUTCOME_EXIT[report.outcome]


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    session = SessionStore(config.state_dir).load()
    with SQLiteStore(config.db_path) as store:
        pending = {
            "lists": len(store.lists.list_pending_sync()),
            "items": len(store.items.list_pending_sync()),
            "stores": len(store.stores.list_pending_sync()),
            "deletions": len(store.tombstones.list_unacknowledged()),
        }

    user = session.username if session.is_logged_in() else None
    print(f"Server:    {config.server_url}")
    print(f"User:      {user or '(not logged in)'}")
    print(f"Last sync: {session.last_sync or 'never'}")
    print("Pending:   " + ", ".join(f"{v} {k}" for k, v in pending.items()))
    return EXIT_OK


def cmd_login(args: argparse.Namespace, config: Config) -> int:
    password = args.password or os.getenv("GROCERY_SYNC_PASSWORD")
    if not password:
        password = getpass(f"Password for {args.username}: ")

    sessions = SessionStore(config.state_dir)
    session = sessions.load()
    client = SyncClient(config, session)
    try:
        client.login(args.username, password)
    except UnauthorizedError:
        _stderr_print("ERROR: Invalid username or password.")
        return EXIT_FATAL
    except RpcError as e:
        _stderr_print(f"ERROR: Login failed: {e}")
        return EXIT_RETRYABLE

    sessions.save(session)
    print(f"Logged in as {session.username}")
    return EXIT_OK


def cmd_logout(args: argparse.Namespace, config: Config) -> int:
    sessions = SessionStore(config.state_dir)
    session = sessions.load()
    SyncClient(config, session).logout()
    sessions.save(session)
    print("Logged out")
    return EXIT_OK


_COMMANDS = {
    "sync": cmd_sync,
    "status": cmd_status,
    "login": cmd_login,
    "logout": cmd_logout,
}


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command and return the exit code."""
    args = build_parser().parse_args(argv)

    mode = "cron" if getattr(args, "cron", False) else "cli"

    if args.command == "init":
        configure_logging(args, mode, LoggingConfig())
        path = ensure_config()
        print(f"Config file: {path}")
        return EXIT_OK

    load_dotenv()
    try:
        unified = build_config(load_hierarchical_config())
    except ValueError as e:
        configure_logging(args, mode, LoggingConfig())
        return _config_error(e)

    configure_logging(args, mode, unified.logging)
    try:
        config = load_runtime_config(args, unified)
    except ValueError as e:
        return _config_error(e)

    return _COMMANDS[args.command](args, config)


def configure_logging(
    args: argparse.Namespace, mode: str, settings: LoggingConfig
) -> None:
    """Set up logging from the flags, then the config file's ``logging:``."""
    setup_logging(
        mode=mode,
        debug=args.debug,
        log_file=args.log_file or settings.file,
        debug_format=args.log_format or settings.format,
        level=settings.level,
    )


def _config_error(e: ValueError) -> int:
    logger.error("Configuration error: %s", e)
    _stderr_print(f"ERROR: Configuration error: {e}")
    return EXIT_FATAL


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(EXIT_RETRYABLE)


if __name__ == "__main__":
    run()
