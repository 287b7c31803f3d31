from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
import threading

from tqdm import tqdm

from backr.config import (
    DEFAULT_REGEX,
    DEFAULT_THREADS,
    BackupSettings,
    build_settings,
    load_config,
    resolve_destination_root,
)
from backr.models import TransferOutcome
from backr.run_service import EXIT_INVALID_CONFIG, RunSummary, run_backup


METADATA_NOTE = (
    "Note: when copying from a Linux/Unix filesystem (ext4, apfs, ...) to a Windows one "
    "(ntfs), file permissions may not be replicated. The file contents are still "
    "transferred and such files are not reported as failures."
)


class _ProgressBar:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bar = tqdm(total=0, desc="Backup", unit="file", dynamic_ncols=True, file=sys.stderr)

    def discovered(self, total: int) -> None:
        with self._lock:
            self._bar.total = total
            self._bar.refresh()

    def completed(self, outcome: TransferOutcome) -> None:
        with self._lock:
            self._bar.update(1)

    def close(self) -> None:
        with self._lock:
            self._bar.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="backr", description="Backs up user data.", epilog=METADATA_NOTE)
    parser.add_argument("-c", "--config", type=Path, help="YAML or JSON settings file")
    parser.add_argument(
        "-d",
        "--destination",
        type=Path,
        help="The path to the location you want the data saved to",
    )
    parser.add_argument(
        "-s",
        "--source",
        type=Path,
        help="The path to the user directory you want to back up (default: current directory)",
    )

    selection = parser.add_mutually_exclusive_group()
    selection.add_argument(
        "-r",
        "--regex",
        help=f"Only back up files whose path matches this regex (default: {DEFAULT_REGEX})",
    )
    selection.add_argument(
        "-a",
        "--backup-all",
        action="store_true",
        default=None,
        help="Back up all files found, overriding the regex",
    )

    parser.add_argument(
        "-x",
        "--exclude",
        action="append",
        dest="excludes",
        metavar="PATTERN",
        help="Gitignore-style pattern, relative to the source, to leave out (repeatable)",
    )
    parser.add_argument(
        "-u",
        "--update",
        action="store_true",
        default=None,
        help="Keep destination files that are as new or newer than the source instead of overwriting",
    )
    parser.add_argument(
        "-t",
        "--threads",
        type=int,
        metavar="NUM",
        help=f"Number of threads used to back up files (default: {DEFAULT_THREADS})",
    )

    output = parser.add_mutually_exclusive_group()
    output.add_argument("-p", "--progress", action="store_true", help="Display a progress bar during the backup")
    output.add_argument("-q", "--quiet", action="store_true", help="Do not print to stdout")

    parser.add_argument(
        "-l",
        "--output_file",
        "--log",
        dest="output_file",
        type=Path,
        metavar="FILE_PATH",
        help="Where failed paths are written (default: <destination>/<source name>/backr_log.txt)",
    )
    parser.add_argument(
        "-L",
        "--force-log",
        action="store_true",
        default=None,
        help="Write a log even if there are no errors to report",
    )
    parser.add_argument("--debug", action="store_true", help="Log every file decision")
    return parser


def _configure_logging(quiet: bool, debug: bool) -> None:
    logger = logging.getLogger("backr")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False

    if debug:
        logger.setLevel(logging.DEBUG)
    elif quiet:
        logger.setLevel(logging.ERROR)
    else:
        logger.setLevel(logging.WARNING)


def _settings_from_args(args: argparse.Namespace) -> BackupSettings:
    file_values = load_config(args.config) if args.config else {}
    overrides = {
        "source": args.source,
        "destination": args.destination,
        "regex": args.regex,
        "backup_all": args.backup_all,
        "update": args.update,
        "threads": args.threads,
        "output_file": args.output_file,
        "force_log": args.force_log,
        "excludes": args.excludes,
    }
    return build_settings(file_values, overrides)


def _print_summary(summary: RunSummary) -> None:
    transferred = summary.copied + summary.metadata_skipped
    print(f"** Files discovered: {summary.discovered}")
    print(f"** Files backed up: {transferred}")
    if summary.up_to_date:
        print(f"** Files already up to date: {summary.up_to_date}")
    print(f"** Total errors: {len(summary.failures)}")
    if summary.log_written:
        print(f"** Log written to {summary.log_file}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(quiet=args.quiet, debug=args.debug)

    try:
        settings = _settings_from_args(args)
    except ValueError as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    if not args.quiet:
        try:
            destination_root = resolve_destination_root(settings)
        except ValueError as exc:
            print(f"Invalid config: {exc}", file=sys.stderr)
            return EXIT_INVALID_CONFIG
        print(f"** Backing up {settings.source} to {destination_root}")

    progress = _ProgressBar() if args.progress else None
    try:
        exit_code, summary = run_backup(
            settings,
            on_discovered=progress.discovered if progress else None,
            on_outcome=progress.completed if progress else None,
        )
    finally:
        if progress is not None:
            progress.close()

    if exit_code != EXIT_INVALID_CONFIG and not args.quiet:
        _print_summary(summary)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
