"""Advisory per-issue task locks with heartbeat-based staleness detection.

A worker claims an issue by writing ``locks/issue-<n>.lock`` and keeps the
claim alive by rewriting ``last_heartbeat``. Another worker treats the lock
as abandoned once the heartbeat is older than ``stale_after`` or when the
holder ran on the same host and its process is gone, and may then delete
and reclaim it.

There is no fencing token. A holder that was presumed dead but is still
running can keep writing after another worker reclaimed its issue; callers
rely on the remote operations themselves being retried and idempotent.
"""

from __future__ import annotations

import logging
import os
import re
import socket
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from issue_pilot.common import Clock, from_iso, parse_iso_or_none, to_iso, utc_now
from issue_pilot.coordination.models import TaskLock, TaskLockInfo, WorkerIdentity
from issue_pilot.diagnostics import NULL_DIAGNOSTICS, DiagnosticsSink
from issue_pilot.state.files import atomic_write_json, read_json_or_none, remove_file
from issue_pilot.state.schema import SchemaValidator
from issue_pilot.state.schemas import TASK_LOCK

logger = logging.getLogger(__name__)

LOCKS_DIRNAME = "locks"
DEFAULT_STALE_AFTER = timedelta(minutes=120)

_LOCK_NAME = re.compile(r"^issue-(\d+)\.lock$")


class LockNotHeldError(RuntimeError):
    """Heartbeat requested for a lock the caller does not hold."""


@dataclass(slots=True, frozen=True)
class ClaimResult:
    """Outcome of one claim attempt.

    ``reason`` is one of ``acquired``, ``refreshed``, ``reclaimed``,
    ``already_locked`` or ``stale_lock``.
    """

    acquired: bool
    lock: TaskLock | None
    reason: str


def pid_is_running(pid: int) -> bool:
    """Best-effort liveness probe for a local process id."""

    if os.name == "nt":
        # Signal 0 is not a probe on Windows; assume alive.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def task_lock_path(state_dir: Path, issue_number: int) -> Path:
    return state_dir / LOCKS_DIRNAME / f"issue-{issue_number}.lock"


class TaskLockCoordinator:
    """Claim, heartbeat and release task locks under one state directory."""

    def __init__(  # noqa: PLR0913
        self,
        state_dir: Path,
        *,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        clock: Clock = utc_now,
        diagnostics: DiagnosticsSink | None = None,
        process_alive: Callable[[int], bool] = pid_is_running,
        hostname: str | None = None,
    ) -> None:
        self.state_dir = state_dir
        self.stale_after = stale_after
        self._clock = clock
        self._diagnostics = diagnostics or NULL_DIAGNOSTICS
        self._validator = SchemaValidator(self._diagnostics)
        self._process_alive = process_alive
        self._hostname = hostname or socket.gethostname()

    @property
    def locks_dir(self) -> Path:
        return self.state_dir / LOCKS_DIRNAME

    def path_for(self, issue_number: int) -> Path:
        return task_lock_path(self.state_dir, issue_number)

    def read(self, issue_number: int) -> TaskLock | None:
        """Load one lock; ``None`` when absent, unreadable or irrecoverably invalid."""

        path = self.path_for(issue_number)
        raw = read_json_or_none(path)
        if raw is None:
            return None
        result = self._validator.validate(raw, TASK_LOCK, recover=True, file_path=str(path))
        if not result.valid or result.data is None:
            return None
        return TaskLock.from_dict(result.data)

    def is_stale(self, lock: TaskLock, now: datetime | None = None) -> bool:
        """Heartbeat older than ``stale_after``; an unparseable heartbeat is stale."""

        last_beat = parse_iso_or_none(lock.last_heartbeat)
        if last_beat is None:
            return True
        now = now or self._clock()
        return now - last_beat > self.stale_after

    def is_abandoned(self, lock: TaskLock, now: datetime | None = None) -> bool:
        if self.is_stale(lock, now):
            return True
        return lock.hostname == self._hostname and not self._process_alive(lock.pid)

    def claim(
        self,
        issue_number: int,
        identity: WorkerIdentity,
        *,
        reclaim_abandoned: bool = True,
    ) -> ClaimResult:
        now = self._clock()
        existing = self.read(issue_number)
        if existing is None:
            return ClaimResult(True, self._write_fresh(issue_number, identity, now), "acquired")

        if existing.session_id == identity.session_id:
            return ClaimResult(True, self._touch(existing, now), "refreshed")

        if not self.is_abandoned(existing, now):
            return ClaimResult(False, existing, "already_locked")

        if not reclaim_abandoned:
            return ClaimResult(False, existing, "stale_lock")

        logger.warning(
            "Reclaiming abandoned lock for issue #%d (session=%s pid=%d host=%s heartbeat=%s)",
            issue_number,
            existing.session_id,
            existing.pid,
            existing.hostname,
            existing.last_heartbeat,
        )
        self._diagnostics.emit(
            f"Removed abandoned lock for issue #{issue_number} held by {existing.session_id}",
        )
        remove_file(self.path_for(issue_number))
        return ClaimResult(True, self._write_fresh(issue_number, identity, now), "reclaimed")

    def heartbeat(self, issue_number: int, session_id: str | None = None) -> TaskLock:
        """Refresh ``last_heartbeat``; it never moves backwards."""

        existing = self.read(issue_number)
        if existing is None:
            raise LockNotHeldError(f"No lock held for issue #{issue_number}.")
        if session_id is not None and existing.session_id != session_id:
            raise LockNotHeldError(
                f"Lock for issue #{issue_number} is held by session {existing.session_id}.",
            )
        return self._touch(existing, self._clock())

    def release(self, issue_number: int, session_id: str | None = None) -> bool:
        """Delete the lock; refuse only when another session owns it."""

        if session_id is not None:
            existing = self.read(issue_number)
            if existing is not None and existing.session_id != session_id:
                logger.warning(
                    "Not releasing lock for issue #%d: owned by session %s",
                    issue_number,
                    existing.session_id,
                )
                return False
        remove_file(self.path_for(issue_number))
        return True

    def force_release(self, issue_number: int) -> bool:
        return remove_file(self.path_for(issue_number))

    def list_locks(self) -> list[TaskLockInfo]:
        """Every readable lock, sorted by issue number.

        Each file is parsed on its own so one corrupt lock does not hide the rest.
        """

        if not self.locks_dir.is_dir():
            return []
        now = self._clock()
        infos: list[TaskLockInfo] = []
        for path in self.locks_dir.iterdir():
            match = _LOCK_NAME.match(path.name)
            if match is None:
                continue
            lock = self.read(int(match.group(1)))
            if lock is None:
                continue
            infos.append(self._info(lock, now))
        infos.sort(key=lambda info: info.issue_number)
        return infos

    def find_stale(self) -> list[TaskLockInfo]:
        return [info for info in self.list_locks() if info.is_stale]

    def cleanup_stale(self) -> int:
        removed = 0
        for info in self.find_stale():
            if self.force_release(info.issue_number):
                logger.info(
                    "Removed stale lock for issue #%d (heartbeat %.0fs old)",
                    info.issue_number,
                    info.heartbeat_age_seconds,
                )
                removed += 1
        return removed

    def is_locked_by_other(self, issue_number: int, session_id: str) -> bool:
        existing = self.read(issue_number)
        if existing is None or existing.session_id == session_id:
            return False
        return not self.is_abandoned(existing)

    def release_all_for_session(self, session_id: str) -> int:
        released = 0
        for info in self.list_locks():
            if info.session_id == session_id and self.force_release(info.issue_number):
                released += 1
        return released

    def _write_fresh(self, issue_number: int, identity: WorkerIdentity, now: datetime) -> TaskLock:
        stamp = to_iso(now)
        lock = TaskLock(
            issue_number=issue_number,
            session_id=identity.session_id,
            pid=identity.pid,
            hostname=identity.hostname,
            locked_at=stamp,
            last_heartbeat=stamp,
            worker_id=identity.worker_id,
            repo_name=identity.repo_name,
        )
        atomic_write_json(self.path_for(issue_number), lock.to_dict())
        return lock

    def _touch(self, lock: TaskLock, now: datetime) -> TaskLock:
        lock.last_heartbeat = to_iso(max(now, from_iso(lock.last_heartbeat)))
        atomic_write_json(self.path_for(lock.issue_number), lock.to_dict())
        return lock

    def _info(self, lock: TaskLock, now: datetime) -> TaskLockInfo:
        return TaskLockInfo(
            issue_number=lock.issue_number,
            session_id=lock.session_id,
            pid=lock.pid,
            hostname=lock.hostname,
            lock_age_seconds=(now - from_iso(lock.locked_at)).total_seconds(),
            heartbeat_age_seconds=(now - from_iso(lock.last_heartbeat)).total_seconds(),
            is_stale=self.is_stale(lock, now),
            worker_id=lock.worker_id,
            repo_name=lock.repo_name,
        )


class LockHeartbeat:
    """Cooperative heartbeat scheduler for long-running work.

    The holder calls :meth:`beat_if_due` at its I/O boundaries; the lock is
    rewritten only once ``interval`` has elapsed since the last beat.
    """

    def __init__(
        self,
        coordinator: TaskLockCoordinator,
        issue_number: int,
        session_id: str,
        interval: timedelta = timedelta(seconds=30),
        clock: Clock = utc_now,
    ) -> None:
        self.coordinator = coordinator
        self.issue_number = issue_number
        self.session_id = session_id
        self.interval = interval
        self._clock = clock
        self._last_beat = clock()

    def beat_if_due(self) -> bool:
        now = self._clock()
        if now - self._last_beat < self.interval:
            return False
        self.coordinator.heartbeat(self.issue_number, self.session_id)
        self._last_beat = now
        return True


def claim_task(
    issue_number: int,
    state_dir: Path,
    identity: WorkerIdentity | None = None,
    *,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    clock: Clock = utc_now,
    diagnostics: DiagnosticsSink | None = None,
) -> bool:
    coordinator = TaskLockCoordinator(
        state_dir,
        stale_after=stale_after,
        clock=clock,
        diagnostics=diagnostics,
    )
    return coordinator.claim(issue_number, identity or WorkerIdentity.current()).acquired


def heartbeat(
    issue_number: int,
    state_dir: Path,
    session_id: str | None = None,
    *,
    clock: Clock = utc_now,
) -> None:
    TaskLockCoordinator(state_dir, clock=clock).heartbeat(issue_number, session_id)


def release_task(issue_number: int, state_dir: Path, session_id: str | None = None) -> bool:
    return TaskLockCoordinator(state_dir).release(issue_number, session_id)


def load_task_lock(
    state_dir: Path,
    issue_number: int,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> TaskLock | None:
    return TaskLockCoordinator(state_dir, diagnostics=diagnostics).read(issue_number)
