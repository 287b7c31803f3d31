from __future__ import annotations

import os
from pathlib import Path
import threading
from typing import Iterable

from backr.models import BackupStats, TransferOutcome


class FailureLog:
    """Failed source paths collected from the walker and every copy worker.

    All mutation goes through one lock. Once the pool has joined, ``drain``
    hands the final set to the caller.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failures: dict[Path, str] = {}
        self._stats = BackupStats()
        self._drained = False

    def record(self, outcome: TransferOutcome) -> None:
        with self._lock:
            if self._drained:
                raise RuntimeError("FailureLog has already been drained")
            self._stats.absorb(outcome)
            if outcome.failed:
                self._failures.setdefault(outcome.source, outcome.reason or "unknown error")

    @property
    def completed(self) -> int:
        with self._lock:
            return self._stats.completed

    def stats(self) -> BackupStats:
        with self._lock:
            snapshot = self._stats
            return BackupStats(
                copied=snapshot.copied,
                up_to_date=snapshot.up_to_date,
                metadata_skipped=snapshot.metadata_skipped,
                failed=snapshot.failed,
                traversal_failed=snapshot.traversal_failed,
            )

    def reasons(self) -> dict[Path, str]:
        with self._lock:
            return dict(self._failures)

    def drain(self) -> set[Path]:
        with self._lock:
            if self._drained:
                raise RuntimeError("FailureLog has already been drained")
            self._drained = True
            return set(self._failures)


def write_failure_log(failures: Iterable[Path], log_file: Path, force: bool = False) -> bool:
    # Raw filesystem bytes, so names that are not valid UTF-8 round-trip.
    lines = sorted(os.fsencode(path) for path in failures)
    if not lines and not force:
        return False

    log_file.parent.mkdir(parents=True, exist_ok=True)
    log_file.write_bytes(b"".join(line + b"\n" for line in lines))
    return True
