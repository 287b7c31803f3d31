import os
from pathlib import Path
import threading

import pytest

from backr.failure_log import FailureLog, write_failure_log
from backr.models import TransferOutcome


def test_successes_are_not_recorded_as_failures() -> None:
    failure_log = FailureLog()

    failure_log.record(TransferOutcome.copied(Path("/src/a.txt")))
    failure_log.record(TransferOutcome.up_to_date(Path("/src/b.txt")))
    failure_log.record(TransferOutcome.copied(Path("/src/c.txt"), metadata_copied=False))

    assert failure_log.completed == 3
    assert failure_log.drain() == set()


def test_concurrent_records_lose_nothing() -> None:
    failure_log = FailureLog()
    barrier = threading.Barrier(8)

    def worker(worker_id: int) -> None:
        barrier.wait()
        for index in range(250):
            path = Path(f"/src/{worker_id}/{index}.txt")
            if index % 5 == 0:
                failure_log.record(TransferOutcome.failure(path, "disk full"))
            else:
                failure_log.record(TransferOutcome.copied(path))

    threads = [threading.Thread(target=worker, args=(worker_id,)) for worker_id in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = failure_log.stats()
    failures = failure_log.drain()

    assert len(failures) == 8 * 50
    assert stats.failed == 8 * 50
    assert stats.copied == 8 * 200
    assert stats.completed == 8 * 250


def test_same_path_is_kept_once() -> None:
    failure_log = FailureLog()
    path = Path("/src/dup.txt")

    failure_log.record(TransferOutcome.failure(path, "first"))
    failure_log.record(TransferOutcome.failure(path, "second"))

    assert failure_log.reasons() == {path: "first"}
    assert failure_log.drain() == {path}


def test_traversal_failures_do_not_count_as_completions() -> None:
    failure_log = FailureLog()

    failure_log.record(TransferOutcome.traversal_failure(Path("/src/locked"), "Permission denied"))

    assert failure_log.completed == 0
    assert failure_log.drain() == {Path("/src/locked")}


def test_drain_is_final() -> None:
    failure_log = FailureLog()
    failure_log.drain()

    with pytest.raises(RuntimeError):
        failure_log.drain()
    with pytest.raises(RuntimeError):
        failure_log.record(TransferOutcome.copied(Path("/src/late.txt")))


def test_write_failure_log_one_path_per_line(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "backr_log.txt"

    written = write_failure_log({Path("/src/b.txt"), Path("/src/a.txt")}, log_file)

    assert written is True
    assert log_file.read_text(encoding="utf-8").splitlines() == [
        str(Path("/src/a.txt")),
        str(Path("/src/b.txt")),
    ]


def test_write_failure_log_skips_empty_set_unless_forced(tmp_path: Path) -> None:
    log_file = tmp_path / "backr_log.txt"

    assert write_failure_log(set(), log_file) is False
    assert not log_file.exists()

    assert write_failure_log(set(), log_file, force=True) is True
    assert log_file.read_text(encoding="utf-8") == ""


@pytest.mark.skipif(os.name != "posix", reason="needs byte-oriented file names")
def test_write_failure_log_keeps_undecodable_names(tmp_path: Path) -> None:
    log_file = tmp_path / "backr_log.txt"
    raw_name = b"/src/Documents/caf\xe9.txt"

    written = write_failure_log({Path(os.fsdecode(raw_name))}, log_file)

    assert written is True
    assert log_file.read_bytes() == raw_name + b"\n"
