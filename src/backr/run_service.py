from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import logging

from backr.backup_engine import BackupEngine, DiscoveredCallback, OutcomeCallback
from backr.config import BackupSettings, build_policy, resolve_destination_root, resolve_log_file
from backr.failure_log import write_failure_log


EXIT_SUCCESS = 0
EXIT_RUNTIME_OR_CONFIG_ERROR = 1
EXIT_PARTIAL_FAILURES = 2
EXIT_INVALID_CONFIG = 3


@dataclass(slots=True)
class RunSummary:
    source: Path | None = None
    destination: Path | None = None
    discovered: int = 0
    copied: int = 0
    up_to_date: int = 0
    metadata_skipped: int = 0
    failed: int = 0
    traversal_failed: int = 0
    failures: set[Path] = field(default_factory=set)
    log_file: Path | None = None
    log_written: bool = False

    @property
    def partial_failures(self) -> bool:
        return bool(self.failures)


def _write_log(summary: RunSummary, log_file: Path, force_log: bool, log: logging.Logger) -> bool:
    try:
        summary.log_written = write_failure_log(summary.failures, log_file, force=force_log)
    except (OSError, ValueError) as exc:
        log.error("Failed to create log file %s: %s", log_file, exc)
        log.error("Dumping failed paths instead")
        for path in sorted(summary.failures):
            log.error("%s", path)
        return False

    if summary.log_written:
        log.info("Wrote log to %s", log_file)
    else:
        log.info("There are no errors to report, so creating a log will be skipped")
    return True


def run_backup(
    settings: BackupSettings,
    on_discovered: DiscoveredCallback | None = None,
    on_outcome: OutcomeCallback | None = None,
    logger: logging.Logger | None = None,
) -> tuple[int, RunSummary]:
    log = logger or logging.getLogger("backr.run")

    try:
        policy = build_policy(settings)
        destination_root = resolve_destination_root(settings)
        log_file = resolve_log_file(settings)
        engine = BackupEngine(
            settings.source,
            destination_root,
            policy,
            on_discovered=on_discovered,
            on_outcome=on_outcome,
        )
        engine.prepare()
    except ValueError as exc:
        log.error("Config error: %s", exc)
        return EXIT_INVALID_CONFIG, RunSummary(source=settings.source)

    log.info("%s is being used as the source directory", settings.source)
    log.info("%s is being used as the destination directory", destination_root)

    failures = engine.run()
    stats = engine.stats
    summary = RunSummary(
        source=settings.source,
        destination=destination_root,
        discovered=engine.discovered,
        copied=stats.copied,
        up_to_date=stats.up_to_date,
        metadata_skipped=stats.metadata_skipped,
        failed=stats.failed,
        traversal_failed=stats.traversal_failed,
        failures=failures,
        log_file=log_file,
    )

    if summary.metadata_skipped:
        log.warning(
            "%s file(s) were copied but their permissions could not be replicated; "
            "the file contents were transferred",
            summary.metadata_skipped,
        )

    if not _write_log(summary, log_file, settings.force_log, log):
        return EXIT_RUNTIME_OR_CONFIG_ERROR, summary

    exit_code = EXIT_PARTIAL_FAILURES if summary.partial_failures else EXIT_SUCCESS
    return exit_code, summary
