"""Command-line interface for tmbackup.

Commands:
- init: Mark a directory as a backup location
- backup: Create a Time Machine like snapshot of a source directory
- diff: Show the differences between two backups
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from tmbackup import __version__
from tmbackup.backup import BackupContext, run_backup
from tmbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
)
from tmbackup.destination import parse_destination
from tmbackup.errors import EXIT_CONFIG_ERROR, EXIT_INTERRUPTED, EXIT_SUCCESS, BackupError
from tmbackup.logger import LoggingError, setup_logging
from tmbackup.marker import MarkerStore
from tmbackup.sync import run_diff


EXIT_GENERAL_ERROR = 1

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="tmbackup",
        description="Time Machine like backups with rsync and hard links",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to config file (default: ~/.config/tmbackup/config.toml)",
        metavar="PATH",
    )
    parser.add_argument(
        "--syslog", "-s",
        action="store_true",
        help="Log output to syslogd",
    )
    parser.add_argument(
        "--keep-expired", "-k",
        action="store_true",
        help="Do not delete expired backups until they can be reused by "
             "subsequent backups or the backup location runs out of space",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Increase verbosity",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser(
        "init",
        help="Initialize a backup location by creating a backup marker file",
    )
    init_parser.add_argument(
        "backup_location",
        help="Backup location, local path or user@host:path",
    )
    init_parser.add_argument(
        "--local-time",
        action="store_true",
        help="Name all backups using local time; by default backups are named using UTC",
    )

    backup_parser = subparsers.add_parser(
        "backup",
        help="Create a Time Machine like backup",
    )
    backup_parser.add_argument("src_location", help="Source directory")
    backup_parser.add_argument(
        "backup_location",
        help="Backup location, local path or user@host:path",
    )
    backup_parser.add_argument(
        "exclude_file",
        nargs="?",
        help="File with patterns to exclude from the backup",
    )

    diff_parser = subparsers.add_parser(
        "diff",
        help="Show differences between two backups",
    )
    diff_parser.add_argument("backup1")
    diff_parser.add_argument("backup2")

    return parser


def load_config(config_path: Optional[Path]) -> Optional[Configuration]:
    """
    Load configuration from file.

    Returns None and prints error on failure.
    """
    try:
        return parse_config(config_path)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None


def _ssh_options(config: Configuration) -> dict:
    identity = config.ssh.identity_file
    return {
        "ssh_port": config.ssh.port,
        "identity_file": str(identity) if identity is not None else None,
    }


def cmd_init(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'init' command - create the backup marker."""
    destination = parse_destination(args.backup_location)
    store = MarkerStore(destination, destination.runner(**_ssh_options(config)))

    if store.exists():
        logger.error(f"{store.marker_path} already exists - backup location is already initialized.")
        return EXIT_GENERAL_ERROR

    try:
        store.initialize(use_local_time=args.local_time)
    except BackupError as e:
        logger.error(str(e))
        return e.exit_code
    return EXIT_SUCCESS


def cmd_backup(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'backup' command - run one backup."""
    source = args.src_location.rstrip("/") or "/"
    for arg in (source, args.backup_location, args.exclude_file):
        if arg and "'" in arg:
            logger.error("Arguments may not have any single quote characters.")
            return EXIT_GENERAL_ERROR

    context = BackupContext(
        source=source,
        destination=parse_destination(args.backup_location),
        exclusion_file=args.exclude_file,
        keep_expired=args.keep_expired or config.keep_expired,
        verbose=args.verbose,
        **_ssh_options(config),
    )
    result = run_backup(context)
    return result.exit_code


def cmd_diff(args: argparse.Namespace, config: Configuration) -> int:
    """Execute the 'diff' command - show differences between two backups."""
    returncode = run_diff(args.backup1, args.backup2)
    return EXIT_SUCCESS if returncode == 0 else EXIT_GENERAL_ERROR


def main(argv: list = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_SUCCESS

    config = load_config(args.config)
    if config is None:
        return EXIT_CONFIG_ERROR

    try:
        setup_logging(config.logging, verbose=args.verbose, syslog=args.syslog)
    except LoggingError as e:
        print(f"Logging error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    # Dispatch to command handler
    try:
        if args.command == "init":
            return cmd_init(args, config)
        elif args.command == "backup":
            return cmd_backup(args, config)
        elif args.command == "diff":
            return cmd_diff(args, config)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return EXIT_GENERAL_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
