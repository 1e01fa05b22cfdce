from __future__ import annotations

import json
import logging
import os
import socket
from datetime import UTC, datetime, timedelta

import allure
import pytest

from issue_pilot.coordination import (
    LockHeartbeat,
    LockNotHeldError,
    TaskLockCoordinator,
    WorkerIdentity,
    claim_task,
    heartbeat,
    load_task_lock,
    release_task,
)
from issue_pilot.coordination.task_locks import pid_is_running, task_lock_path
from issue_pilot.state.files import load_json

pytestmark = [
    allure.epic("Coordination"),
    allure.feature("Task Locks"),
]

T0 = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
STALE_AFTER = timedelta(minutes=120)
WORKER_A = WorkerIdentity(session_id="session-a", pid=1111, hostname="worker-a", worker_id=1)
WORKER_B = WorkerIdentity(session_id="session-b", pid=2222, hostname="worker-b", worker_id=2)


def _coordinator(state_dir, clock, *, hostname="worker-a", alive=True) -> TaskLockCoordinator:
    return TaskLockCoordinator(
        state_dir,
        stale_after=STALE_AFTER,
        clock=clock,
        process_alive=lambda pid: alive,
        hostname=hostname,
    )


def test_claim_writes_lock_document(state_dir, clock) -> None:
    result = _coordinator(state_dir, clock).claim(42, WORKER_A)

    assert result.acquired is True
    assert result.reason == "acquired"
    assert load_json(task_lock_path(state_dir, 42)) == {
        "issue_number": 42,
        "session_id": "session-a",
        "pid": 1111,
        "hostname": "worker-a",
        "locked_at": "2026-10-18T12:00:00.000Z",
        "last_heartbeat": "2026-10-18T12:00:00.000Z",
        "worker_id": 1,
    }


def test_claim_by_same_session_refreshes_heartbeat(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(42, WORKER_A)
    clock.advance(minutes=5)

    result = coordinator.claim(42, WORKER_A)

    assert result.acquired is True
    assert result.reason == "refreshed"
    assert result.lock.last_heartbeat == "2026-10-18T12:05:00.000Z"
    assert result.lock.locked_at == "2026-10-18T12:00:00.000Z"


def test_claim_by_other_live_session_is_refused(state_dir, clock) -> None:
    _coordinator(state_dir, clock).claim(42, WORKER_A)
    clock.advance(minutes=30)
    observer = _coordinator(state_dir, clock, hostname="worker-b")

    result = observer.claim(42, WORKER_B)

    assert result.acquired is False
    assert result.reason == "already_locked"
    assert result.lock.session_id == "session-a"
    assert observer.is_locked_by_other(42, "session-b") is True
    assert observer.is_locked_by_other(42, "session-a") is False


def test_stale_lock_is_reclaimed_by_other_worker(state_dir, clock_at, caplog) -> None:
    clock_a = clock_at(T0)
    _coordinator(state_dir, clock_a).claim(42, WORKER_A)

    clock_b = clock_at(T0 + STALE_AFTER + timedelta(seconds=1))
    worker_b = _coordinator(state_dir, clock_b, hostname="worker-b")
    with caplog.at_level(logging.WARNING):
        result = worker_b.claim(42, WORKER_B)

    assert result.acquired is True
    assert result.reason == "reclaimed"
    assert load_task_lock(state_dir, 42).pid == 2222
    assert "Reclaiming abandoned lock for issue #42" in caplog.text


def test_heartbeat_exactly_at_threshold_is_not_stale(state_dir, clock_at) -> None:
    _coordinator(state_dir, clock_at(T0)).claim(42, WORKER_A)
    observer = _coordinator(state_dir, clock_at(T0 + STALE_AFTER), hostname="worker-b")

    assert observer.claim(42, WORKER_B).reason == "already_locked"


def test_reclaim_can_be_declined(state_dir, clock_at) -> None:
    _coordinator(state_dir, clock_at(T0)).claim(42, WORKER_A)
    observer = _coordinator(state_dir, clock_at(T0 + timedelta(days=1)), hostname="worker-b")

    result = observer.claim(42, WORKER_B, reclaim_abandoned=False)

    assert result.acquired is False
    assert result.reason == "stale_lock"
    assert load_task_lock(state_dir, 42).session_id == "session-a"


def test_lock_of_dead_local_process_is_abandoned(state_dir, clock) -> None:
    _coordinator(state_dir, clock).claim(42, WORKER_A)
    same_host = _coordinator(state_dir, clock, hostname="worker-a", alive=False)
    successor = WorkerIdentity(session_id="session-c", pid=3333, hostname="worker-a")

    result = same_host.claim(42, successor)

    assert result.reason == "reclaimed"
    assert load_task_lock(state_dir, 42).session_id == "session-c"


def test_dead_pid_on_other_host_is_not_abandoned(state_dir, clock) -> None:
    _coordinator(state_dir, clock).claim(42, WORKER_A)
    remote = _coordinator(state_dir, clock, hostname="worker-b", alive=False)

    assert remote.claim(42, WORKER_B).reason == "already_locked"


def test_heartbeat_requires_held_lock(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)

    with pytest.raises(LockNotHeldError):
        coordinator.heartbeat(42, "session-a")

    coordinator.claim(42, WORKER_A)
    with pytest.raises(LockNotHeldError, match="session-a"):
        coordinator.heartbeat(42, "session-b")


def test_heartbeat_never_moves_backwards(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(42, WORKER_A)
    clock.advance(minutes=10)
    coordinator.heartbeat(42, "session-a")
    clock.advance(minutes=-30)

    lock = coordinator.heartbeat(42, "session-a")

    assert lock.last_heartbeat == "2026-10-18T12:10:00.000Z"
    assert load_task_lock(state_dir, 42).last_heartbeat == "2026-10-18T12:10:00.000Z"


def test_heartbeat_preserves_unknown_fields(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(42, WORKER_A)
    path = task_lock_path(state_dir, 42)
    document = load_json(path)
    document["branch"] = "feature/issue-42"
    path.write_text(json.dumps(document), "utf-8")

    clock.advance(seconds=30)
    coordinator.heartbeat(42)

    assert load_json(path)["branch"] == "feature/issue-42"


def test_release_respects_ownership(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(42, WORKER_A)

    assert coordinator.release(42, "session-b") is False
    assert task_lock_path(state_dir, 42).exists()
    assert coordinator.release(42, "session-a") is True
    assert not task_lock_path(state_dir, 42).exists()
    assert coordinator.release(42, "session-a") is True


def test_corrupt_lock_reads_as_absent_and_can_be_claimed(state_dir, clock) -> None:
    path = task_lock_path(state_dir, 7)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", "utf-8")
    coordinator = _coordinator(state_dir, clock)

    assert coordinator.read(7) is None
    assert coordinator.claim(7, WORKER_A).reason == "acquired"


def test_invalid_lock_document_reads_as_absent(state_dir, clock) -> None:
    path = task_lock_path(state_dir, 7)
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"issue_number": 7, "pid": 0}), "utf-8")

    assert _coordinator(state_dir, clock).read(7) is None


def test_list_find_and_cleanup_stale_locks(state_dir, clock_at) -> None:
    old_clock = clock_at(T0 - timedelta(hours=3))
    _coordinator(state_dir, old_clock).claim(9, WORKER_A)
    clock = clock_at(T0)
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(3, WORKER_A)
    coordinator.claim(12, WORKER_B)
    (state_dir / "locks" / "issue-5.lock").write_text("garbage", "utf-8")
    (state_dir / "locks" / "notes.txt").write_text("ignore me", "utf-8")

    infos = coordinator.list_locks()

    assert [info.issue_number for info in infos] == [3, 9, 12]
    assert [info.issue_number for info in coordinator.find_stale()] == [9]
    assert infos[1].heartbeat_age_seconds == 3 * 3600
    assert coordinator.cleanup_stale() == 1
    assert [info.issue_number for info in coordinator.list_locks()] == [3, 12]


def test_release_all_for_session(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(1, WORKER_A)
    coordinator.claim(2, WORKER_A)
    coordinator.claim(3, WORKER_B)

    assert coordinator.release_all_for_session("session-a") == 2
    assert [info.issue_number for info in coordinator.list_locks()] == [3]


def test_list_locks_without_directory(state_dir, clock) -> None:
    assert _coordinator(state_dir, clock).list_locks() == []


def test_heartbeat_scheduler_waits_for_interval(state_dir, clock) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(42, WORKER_A)
    beat = LockHeartbeat(coordinator, 42, "session-a", timedelta(seconds=30), clock)

    clock.advance(seconds=10)
    assert beat.beat_if_due() is False
    assert load_task_lock(state_dir, 42).last_heartbeat == "2026-10-18T12:00:00.000Z"

    clock.advance(seconds=20)
    assert beat.beat_if_due() is True
    assert load_task_lock(state_dir, 42).last_heartbeat == "2026-10-18T12:00:30.000Z"

    clock.advance(seconds=5)
    assert beat.beat_if_due() is False


def test_module_level_helpers(state_dir, clock) -> None:
    identity = WorkerIdentity(session_id="local", pid=os.getpid(), hostname=socket.gethostname())

    assert claim_task(42, state_dir, identity, clock=clock) is True
    assert claim_task(42, state_dir, WORKER_B, clock=clock) is False
    clock.advance(minutes=1)
    heartbeat(42, state_dir, "local", clock=clock)
    assert load_task_lock(state_dir, 42).last_heartbeat == "2026-10-18T12:01:00.000Z"
    assert release_task(42, state_dir, "local") is True
    assert load_task_lock(state_dir, 42) is None


def test_current_identity_describes_this_process() -> None:
    identity = WorkerIdentity.current(worker_id=3, repo_name="acme/widgets")

    assert identity.pid == os.getpid()
    assert identity.hostname == socket.gethostname()
    assert identity.session_id.startswith(f"{identity.hostname}-{identity.pid}-")
    assert identity.worker_id == 3
    assert WorkerIdentity.current().session_id != WorkerIdentity.current().session_id


def test_own_process_is_running() -> None:
    assert pid_is_running(os.getpid()) is True


@pytest.mark.parametrize("stamp", ["2026-13-45T12:00:00.000Z", "2026-10-18T12:00:00junk"])
def test_lock_with_impossible_heartbeat_does_not_break_others(state_dir, clock, stamp) -> None:
    coordinator = _coordinator(state_dir, clock)
    coordinator.claim(2, WORKER_B)
    path = task_lock_path(state_dir, 1)
    document = {**load_json(task_lock_path(state_dir, 2)), "issue_number": 1}
    document["last_heartbeat"] = stamp
    path.write_text(json.dumps(document), "utf-8")

    assert coordinator.read(1) is None
    assert [info.issue_number for info in coordinator.list_locks()] == [2]
    assert coordinator.find_stale() == []
    assert coordinator.is_locked_by_other(1, "session-a") is False
    assert coordinator.claim(1, WORKER_A).reason == "acquired"
    assert load_task_lock(state_dir, 1).session_id == "session-a"


def test_unparseable_heartbeat_counts_as_stale(state_dir, clock) -> None:
    lock = _coordinator(state_dir, clock).claim(42, WORKER_A).lock
    lock.last_heartbeat = "not a time"

    assert _coordinator(state_dir, clock).is_stale(lock) is True
