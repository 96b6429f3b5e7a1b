"""Command-line interface for certvault."""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

from tqdm import tqdm

from certvault.cli.formatters import format_as_json, format_rows
from certvault.core.config import StorageConfig
from certvault.core.constants import VALID_LOG_FORMATS, VALID_LOG_LEVELS
from certvault.core.exceptions import CertVaultError
from certvault.core.locks import marker_age_seconds
from certvault.core.locks.staleness import marker_is_stale
from certvault.core.logging import flush_logging_handlers, setup_logging
from certvault.core.version import __version__
from certvault.storage import FileStorage

TQDM_BAR_FORMAT = "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}]"
OUTPUT_FORMATS = ("table", "json", "csv")

logger = logging.getLogger(__name__)


def _positive_float(value: str) -> float:
    """Argparse type for a strictly positive float."""
    f = float(value)
    if f <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {f}")
    return f


def _exit_error(msg: str) -> NoReturn:
    print(f"Error: {msg}", file=sys.stderr)
    flush_logging_handlers()
    sys.exit(1)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        prog="certvault",
        description="certvault - filesystem storage for credentials and certificates with cross-process locks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Store a certificate read from a file, holding its lock while writing
  certvault store certificates/example.com.crt --file ./example.com.crt --lock

  # Print a stored value
  certvault load certificates/example.com.crt

  # List everything under a prefix
  certvault list certificates --recursive --format json

  # Show lock markers and reclaim stale ones
  certvault locks
  certvault prune-locks --dry-run

  # Run a command while holding a lock (other processes wait)
  certvault run renew/example.com --timeout 60 -- ./renew.sh example.com
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", help="Storage root directory (default: $CERTVAULT_HOME or XDG data dir)")
    parser.add_argument("--log-level", type=str.upper, choices=VALID_LOG_LEVELS, help="Logging level")
    parser.add_argument("--log-format", choices=VALID_LOG_FORMATS, default="text", help="Log output format")
    parser.add_argument("--log-file", help="Also write logs to this rotating log file")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print errors; disable progress bars")
    parser.add_argument(
        "--stale-threshold",
        type=_positive_float,
        metavar="SECONDS",
        help="Age after which a lock marker is considered abandoned (default: 7200)",
    )
    parser.add_argument(
        "--poll-interval",
        type=_positive_float,
        metavar="SECONDS",
        help="Delay between lock polls while waiting (default: 1.0)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    store = subparsers.add_parser("store", help="Store a value (read from --file or stdin)")
    store.add_argument("key")
    store.add_argument("--file", type=Path, help="Read the value from this file instead of stdin")
    store.add_argument("--lock", action="store_true", help="Hold the key's lock while writing")
    store.add_argument("--timeout", type=_positive_float, metavar="SECONDS", help="Lock wait limit")

    load = subparsers.add_parser("load", help="Write a stored value to stdout")
    load.add_argument("key")

    delete = subparsers.add_parser("delete", help="Delete a key")
    delete.add_argument("key")

    exists = subparsers.add_parser("exists", help="Exit 0 if the key exists, 1 otherwise")
    exists.add_argument("key")

    stat = subparsers.add_parser("stat", help="Show metadata for a key")
    stat.add_argument("key")
    stat.add_argument("--format", choices=OUTPUT_FORMATS, default="table")

    list_parser = subparsers.add_parser("list", help="List keys under a prefix")
    list_parser.add_argument("prefix", nargs="?", default="")
    list_parser.add_argument("--recursive", "-r", action="store_true", help="Descend into sub-keys")
    list_parser.add_argument("--format", choices=OUTPUT_FORMATS, default="table")

    locks = subparsers.add_parser("locks", help="Show lock markers in the storage root")
    locks.add_argument("--format", choices=OUTPUT_FORMATS, default="table")

    prune = subparsers.add_parser("prune-locks", help="Remove stale lock markers")
    prune.add_argument("--dry-run", action="store_true", help="Report stale markers without removing them")

    run = subparsers.add_parser("run", help="Run a command while holding a lock")
    run.add_argument("key")
    run.add_argument("--timeout", type=_positive_float, metavar="SECONDS", help="Lock wait limit")
    run.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run (prefix with --)")

    return parser.parse_args(argv)


# ==================== COMMANDS ====================


def cmd_store(storage: FileStorage, args: argparse.Namespace) -> int:
    if args.file is not None:
        try:
            value = args.file.read_bytes()
        except OSError as e:
            _exit_error(f"Cannot read {args.file}: {e}")
    else:
        value = sys.stdin.buffer.read()

    if args.lock:
        with storage.locked(args.key, timeout=args.timeout):
            storage.store(args.key, value)
    else:
        storage.store(args.key, value)
    logger.info("Stored %d bytes at '%s'", len(value), args.key)
    return 0


def cmd_load(storage: FileStorage, args: argparse.Namespace) -> int:
    sys.stdout.buffer.write(storage.load(args.key))
    sys.stdout.flush()
    return 0


def cmd_delete(storage: FileStorage, args: argparse.Namespace) -> int:
    storage.delete(args.key)
    logger.info("Deleted '%s'", args.key)
    return 0


def cmd_exists(storage: FileStorage, args: argparse.Namespace) -> int:
    return 0 if storage.exists(args.key) else 1


def cmd_stat(storage: FileStorage, args: argparse.Namespace) -> int:
    info = storage.stat(args.key)
    row = {
        "key": info.key,
        "size": info.size,
        "modified": info.modified.isoformat(),
        "is_terminal": info.is_terminal,
    }
    if args.format == "json":
        print(format_as_json(row))
    else:
        print(format_rows(args.format, f"Key '{info.key}':", "keys", list(row), [row]))
    return 0


def cmd_list(storage: FileStorage, args: argparse.Namespace) -> int:
    keys = storage.list(args.prefix, recursive=args.recursive)
    rows = [{"key": key} for key in keys]
    where = f" under '{args.prefix}'" if args.prefix else ""
    print(format_rows(args.format, f"Found {len(keys)} key(s){where}:", "keys", ["key"], rows))
    return 0


def _describe_marker(storage: FileStorage, path: Path) -> dict:
    info = storage.locker.backend.read_info(path)
    age = marker_age_seconds(path)
    return {
        "key": info.key if info else "",
        "marker": path.name,
        "age_seconds": round(age, 1) if age is not None else "",
        "stale": marker_is_stale(path, storage.locker.stale_threshold_seconds),
        "pid": info.pid if info else "",
        "host": info.host if info else "",
        "acquired_at": info.acquired_at if info else "",
    }


def cmd_locks(storage: FileStorage, args: argparse.Namespace) -> int:
    rows = [_describe_marker(storage, path) for path in storage.locker.backend.iter_markers()]
    columns = ["key", "marker", "age_seconds", "stale", "pid", "host", "acquired_at"]
    print(format_rows(args.format, f"Found {len(rows)} lock marker(s) in {storage.lock_dir()}:", "locks", columns, rows))
    return 0


def cmd_prune_locks(storage: FileStorage, args: argparse.Namespace) -> int:
    backend = storage.locker.backend
    threshold = storage.locker.stale_threshold_seconds
    markers = backend.iter_markers()
    removed: list[str] = []
    failures = 0
    with tqdm(
        total=len(markers),
        desc="Checking lock markers",
        unit="marker",
        bar_format=TQDM_BAR_FORMAT,
        leave=False,
        disable=args.quiet,
    ) as pbar:
        for path in markers:
            if marker_is_stale(path, threshold):
                if args.dry_run:
                    removed.append(path.name)
                else:
                    try:
                        if backend.remove(path):
                            removed.append(path.name)
                            logger.warning("Removed stale lock marker %s", path)
                    except OSError as e:
                        failures += 1
                        logger.error("Cannot remove stale lock marker %s: %s", path, e)
            pbar.update(1)

    verb = "Would remove" if args.dry_run else "Removed"
    if not args.quiet:
        print(f"{verb} {len(removed)} stale lock marker(s) of {len(markers)}")
        for name in removed:
            print(f"  {name}")
    return 1 if failures else 0


def cmd_run(storage: FileStorage, args: argparse.Namespace) -> int:
    cmd = list(args.cmd)
    if cmd and cmd[0] == "--":
        cmd = cmd[1:]
    if not cmd:
        _exit_error("run requires a command after '--'")

    with storage.locked(args.key, timeout=args.timeout):
        logger.info("Holding lock '%s' while running: %s", args.key, " ".join(cmd))
        try:
            completed = subprocess.run(cmd, check=False)
        except OSError as e:
            _exit_error(f"Cannot run {cmd[0]}: {e}")
    if completed.returncode < 0:
        # Killed by a signal; report it the way a shell does.
        return 128 - completed.returncode
    return completed.returncode


COMMANDS = {
    "store": cmd_store,
    "load": cmd_load,
    "delete": cmd_delete,
    "exists": cmd_exists,
    "stat": cmd_stat,
    "list": cmd_list,
    "locks": cmd_locks,
    "prune-locks": cmd_prune_locks,
    "run": cmd_run,
}


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the script"""
    args = parse_arguments(argv)

    try:
        config = StorageConfig.from_args(args)
    except CertVaultError as e:
        _exit_error(str(e))
    setup_logging(config.log, quiet=args.quiet)

    storage = FileStorage(config.root, config=config)
    handler = COMMANDS[args.command]
    started = datetime.now(UTC)
    try:
        code = handler(storage, args)
    except CertVaultError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        _exit_error(str(e))
    except KeyboardInterrupt:
        failed = storage.unlock_all_obtained()
        if failed:
            logger.error("Could not release locks: %s", ", ".join(failed))
        print("Interrupted", file=sys.stderr)
        sys.exit(130)
    finally:
        logger.debug("Command %s finished in %.3fs", args.command, (datetime.now(UTC) - started).total_seconds())
        flush_logging_handlers()
    sys.exit(code)


if __name__ == "__main__":
    main()
