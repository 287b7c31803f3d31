from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    OTHER = "other"


class Decision(str, Enum):
    DESCEND = "descend"
    COPY = "copy"
    SKIP = "skip"


class OutcomeStatus(str, Enum):
    COPIED = "copied"
    UP_TO_DATE = "up_to_date"
    COPIED_WITHOUT_METADATA = "copied_without_metadata"
    FAILED = "failed"
    TRAVERSAL_FAILED = "traversal_failed"


FAILURE_STATUSES = frozenset({OutcomeStatus.FAILED, OutcomeStatus.TRAVERSAL_FAILED})


@dataclass(frozen=True, slots=True)
class PathEntry:
    path: Path
    kind: EntryKind
    size: int = 0
    mtime_ns: int = 0
    mode: int = 0


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    source: Path
    status: OutcomeStatus
    reason: str | None = None

    @property
    def failed(self) -> bool:
        return self.status in FAILURE_STATUSES

    @classmethod
    def copied(cls, source: Path, metadata_copied: bool = True) -> "TransferOutcome":
        status = OutcomeStatus.COPIED if metadata_copied else OutcomeStatus.COPIED_WITHOUT_METADATA
        return cls(source=source, status=status)

    @classmethod
    def up_to_date(cls, source: Path) -> "TransferOutcome":
        return cls(source=source, status=OutcomeStatus.UP_TO_DATE)

    @classmethod
    def failure(cls, source: Path, reason: str) -> "TransferOutcome":
        return cls(source=source, status=OutcomeStatus.FAILED, reason=reason)

    @classmethod
    def traversal_failure(cls, source: Path, reason: str) -> "TransferOutcome":
        return cls(source=source, status=OutcomeStatus.TRAVERSAL_FAILED, reason=reason)


@dataclass(slots=True)
class BackupStats:
    copied: int = 0
    up_to_date: int = 0
    metadata_skipped: int = 0
    failed: int = 0
    traversal_failed: int = 0

    @property
    def completed(self) -> int:
        return self.copied + self.up_to_date + self.metadata_skipped + self.failed

    def absorb(self, outcome: TransferOutcome) -> None:
        if outcome.status is OutcomeStatus.COPIED:
            self.copied += 1
        elif outcome.status is OutcomeStatus.UP_TO_DATE:
            self.up_to_date += 1
        elif outcome.status is OutcomeStatus.COPIED_WITHOUT_METADATA:
            self.metadata_skipped += 1
        elif outcome.status is OutcomeStatus.FAILED:
            self.failed += 1
        else:
            self.traversal_failed += 1
