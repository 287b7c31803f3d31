from __future__ import annotations

import os
from pathlib import Path
import re
import stat
from typing import Iterable

import pathspec

from backr.config import BackupPolicy, compile_pattern
from backr.models import Decision, EntryKind, PathEntry


class PathMatcher:
    def __init__(self, pattern: str | re.Pattern[str]) -> None:
        self._pattern = compile_pattern(pattern) if isinstance(pattern, str) else pattern

    def matches(self, path: Path | str) -> bool:
        return self._pattern.search(os.fspath(path)) is not None


class ExcludeEngine:
    def __init__(self, source_root: Path, patterns: Iterable[str] = ()) -> None:
        self._source_root = source_root
        lines = [pattern for pattern in patterns if pattern.strip()]
        self._spec = pathspec.GitIgnoreSpec.from_lines(lines)
        self._empty = not lines

    def is_excluded(self, path: Path, is_dir: bool = False) -> bool:
        if self._empty:
            return False
        try:
            relative = path.relative_to(self._source_root)
        except ValueError:
            return False
        unix_path = relative.as_posix()
        candidate = f"{unix_path}/" if is_dir and not unix_path.endswith("/") else unix_path
        return self._spec.match_file(candidate)


def _kind_from_mode(mode: int) -> EntryKind:
    if stat.S_ISDIR(mode):
        return EntryKind.DIRECTORY
    if stat.S_ISREG(mode):
        return EntryKind.FILE
    return EntryKind.OTHER


def _entry_from_stat(path: Path, stat_result: os.stat_result) -> PathEntry:
    return PathEntry(
        path=path,
        kind=_kind_from_mode(stat_result.st_mode),
        size=stat_result.st_size,
        mtime_ns=stat_result.st_mtime_ns,
        mode=stat.S_IMODE(stat_result.st_mode),
    )


def entry_from_dir_entry(dir_entry: os.DirEntry[str]) -> PathEntry:
    path = Path(dir_entry.path)
    try:
        stat_result = dir_entry.stat(follow_symlinks=False)
    except OSError:
        return PathEntry(path=path, kind=EntryKind.OTHER)
    return _entry_from_stat(path, stat_result)


def entry_from_path(path: Path) -> PathEntry:
    try:
        stat_result = path.lstat()
    except OSError:
        return PathEntry(path=path, kind=EntryKind.OTHER)
    return _entry_from_stat(path, stat_result)


def classify_entry(
    entry: PathEntry,
    policy: BackupPolicy,
    matcher: PathMatcher | None,
    excludes: ExcludeEngine | None = None,
) -> Decision:
    if entry.kind is EntryKind.DIRECTORY:
        if excludes is not None and excludes.is_excluded(entry.path, is_dir=True):
            return Decision.SKIP
        return Decision.DESCEND

    if entry.kind is not EntryKind.FILE:
        return Decision.SKIP

    if excludes is not None and excludes.is_excluded(entry.path):
        return Decision.SKIP

    if policy.copy_all:
        return Decision.COPY
    if matcher is not None and matcher.matches(entry.path):
        return Decision.COPY
    return Decision.SKIP


class EntryClassifier:
    def __init__(self, policy: BackupPolicy, source_root: Path) -> None:
        self.policy = policy
        self.matcher = None if policy.copy_all else PathMatcher(policy.pattern)
        self.excludes = ExcludeEngine(source_root, policy.excludes)

    def classify(self, entry: PathEntry) -> Decision:
        return classify_entry(entry, self.policy, self.matcher, self.excludes)
