from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Callable

from backr.config import BackupPolicy
from backr.failure_log import FailureLog
from backr.filter_engine import EntryClassifier, entry_from_dir_entry
from backr.models import BackupStats, Decision, PathEntry, TransferOutcome


log = logging.getLogger("backr.engine")

Dispatch = Callable[[PathEntry, Path], None]
OutcomeCallback = Callable[[TransferOutcome], None]
DiscoveredCallback = Callable[[int], None]


class EngineState(str, Enum):
    IDLE = "idle"
    WALKING = "walking"
    DRAINING = "draining"
    DONE = "done"


def destination_for(source_path: Path, source_root: Path, destination_root: Path) -> Path:
    return destination_root / source_path.relative_to(source_root)


def _describe(exc: OSError) -> str:
    return exc.strerror or str(exc) or type(exc).__name__


def _scan_directory(directory: Path) -> list[os.DirEntry[str]]:
    with os.scandir(directory) as entries:
        return list(entries)


def _copy_content(source_file: Path, destination_file: Path) -> None:
    shutil.copyfile(source_file, destination_file)


def _copy_metadata(source_file: Path, destination_file: Path) -> bool:
    try:
        shutil.copystat(source_file, destination_file)
    except OSError as exc:
        log.debug("Could not copy permissions of %s: %s", source_file, exc)
        return False
    return True


def _safe_copy(source_file: Path, destination_file: Path) -> bool:
    destination_file.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        delete=False, dir=str(destination_file.parent), prefix=".backr-", suffix=".part"
    ) as tmp:
        tmp_path = Path(tmp.name)
    try:
        _copy_content(source_file, tmp_path)
        metadata_copied = _copy_metadata(source_file, tmp_path)
        tmp_path.replace(destination_file)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
    return metadata_copied


def _destination_is_current(entry: PathEntry, destination_file: Path) -> bool:
    try:
        destination_stat = destination_file.stat()
    except FileNotFoundError:
        return False
    return destination_stat.st_mtime_ns >= entry.mtime_ns


def copy_one(entry: PathEntry, destination: Path, policy: BackupPolicy) -> TransferOutcome:
    try:
        if policy.update_existing and _destination_is_current(entry, destination):
            return TransferOutcome.up_to_date(entry.path)
        metadata_copied = _safe_copy(entry.path, destination)
    except OSError as exc:
        return TransferOutcome.failure(entry.path, _describe(exc))
    return TransferOutcome.copied(entry.path, metadata_copied=metadata_copied)


class Walker:
    def __init__(self, classifier: EntryClassifier, failures: FailureLog, dispatch: Dispatch) -> None:
        self._classifier = classifier
        self._failures = failures
        self._dispatch = dispatch

    def _record_directory_failure(self, directory: Path, exc: OSError) -> None:
        log.warning("Failed to read %s: %s", directory, _describe(exc))
        self._failures.record(TransferOutcome.traversal_failure(directory, _describe(exc)))

    def walk(self, source_root: Path, destination_root: Path) -> int:
        dispatched = 0
        pending: list[Path] = [source_root]

        while pending:
            directory = pending.pop()
            try:
                dir_entries = _scan_directory(directory)
            except OSError as exc:
                self._record_directory_failure(directory, exc)
                continue

            for dir_entry in dir_entries:
                entry = entry_from_dir_entry(dir_entry)
                decision = self._classifier.classify(entry)
                if decision is Decision.SKIP:
                    log.debug("Skipping %s", entry.path)
                    continue

                target = destination_for(entry.path, source_root, destination_root)
                if decision is Decision.DESCEND:
                    try:
                        target.mkdir(parents=True, exist_ok=True)
                    except OSError as exc:
                        self._record_directory_failure(entry.path, exc)
                        continue
                    pending.append(entry.path)
                else:
                    self._dispatch(entry, target)
                    dispatched += 1

        return dispatched


class BackupEngine:
    def __init__(
        self,
        source_root: Path,
        destination_root: Path,
        policy: BackupPolicy,
        on_discovered: DiscoveredCallback | None = None,
        on_outcome: OutcomeCallback | None = None,
    ) -> None:
        self.source_root = source_root
        self.destination_root = destination_root
        self.policy = policy
        self.state = EngineState.IDLE
        self.failures = FailureLog()
        self._classifier = EntryClassifier(policy, source_root)
        self._on_discovered = on_discovered
        self._on_outcome = on_outcome
        self._discovered = 0
        self._prepared = False

    @property
    def discovered(self) -> int:
        return self._discovered

    @property
    def completed(self) -> int:
        return self.failures.completed

    @property
    def stats(self) -> BackupStats:
        return self.failures.stats()

    def _validate_paths(self) -> None:
        source_resolved = self.source_root.resolve()
        destination_resolved = self.destination_root.resolve()

        if not source_resolved.is_dir():
            raise ValueError(f"Source directory does not exist or is not a directory: {self.source_root}")

        if source_resolved == destination_resolved:
            raise ValueError(f"Invalid mapping: source and destination are equal: {self.source_root}")

        if destination_resolved.is_relative_to(source_resolved):
            raise ValueError(
                f"Invalid mapping: destination is inside source, which can recurse: {self.destination_root}"
            )

    def _check_permissions(self) -> None:
        try:
            _scan_directory(self.source_root)
        except OSError as exc:
            raise ValueError(f"Failed to read the source directory {self.source_root}: {_describe(exc)}") from exc

        try:
            self.destination_root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=str(self.destination_root), prefix=".backr-probe-"):
                pass
        except OSError as exc:
            raise ValueError(
                f"You do not have write permissions for {self.destination_root}: {_describe(exc)}"
            ) from exc

    def prepare(self) -> None:
        if self.state is not EngineState.IDLE:
            raise RuntimeError(f"BackupEngine cannot be prepared in state {self.state.value}")
        self._validate_paths()
        self._check_permissions()
        self._prepared = True

    def _dispatch_to(self, pool: ThreadPoolExecutor) -> Dispatch:
        def dispatch(entry: PathEntry, destination: Path) -> None:
            self._discovered += 1
            if self._on_discovered is not None:
                self._on_discovered(self._discovered)
            pool.submit(self._transfer, entry, destination)

        return dispatch

    def _transfer(self, entry: PathEntry, destination: Path) -> None:
        try:
            outcome = copy_one(entry, destination, self.policy)
        except Exception as exc:
            log.exception("Unexpected error copying %s", entry.path)
            outcome = TransferOutcome.failure(entry.path, str(exc) or type(exc).__name__)

        if outcome.failed:
            log.warning("Failed to copy %s -> %s: %s", entry.path, destination, outcome.reason)
        else:
            log.debug("%s %s", outcome.status.value, entry.path)

        self.failures.record(outcome)
        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception:
                log.exception("Progress callback failed for %s", entry.path)

    def run(self) -> set[Path]:
        if self.state is not EngineState.IDLE:
            raise RuntimeError(f"BackupEngine cannot run in state {self.state.value}")
        if not self._prepared:
            self.prepare()

        self.state = EngineState.WALKING
        log.info(
            "Backing up %s -> %s with %s worker(s)",
            self.source_root,
            self.destination_root,
            self.policy.worker_count,
        )
        with ThreadPoolExecutor(
            max_workers=self.policy.worker_count, thread_name_prefix="backr-copy"
        ) as pool:
            walker = Walker(self._classifier, self.failures, self._dispatch_to(pool))
            walker.walk(self.source_root, self.destination_root)

        self.state = EngineState.DRAINING
        failures = self.failures.drain()

        self.state = EngineState.DONE
        log.info("Backup finished: %s file(s) discovered, %s failure(s)", self._discovered, len(failures))
        return failures
