"""Human approval gates stored as ``approval-<issue>.lock`` files."""

from __future__ import annotations

import getpass
import logging
import re
from pathlib import Path
from typing import Any

from issue_pilot.common import Clock, to_iso, utc_now
from issue_pilot.coordination.models import ApprovalLock
from issue_pilot.diagnostics import DiagnosticsSink
from issue_pilot.state.files import (
    StateFileError,
    atomic_write_json,
    read_json_or_none,
    remove_file,
)
from issue_pilot.state.schema import SchemaValidator
from issue_pilot.state.schemas import APPROVAL_LOCK
from issue_pilot.state.store import load_progress, progress_path, save_progress

logger = logging.getLogger(__name__)

_APPROVAL_NAME = re.compile(r"^approval-(\d+)\.lock$")

APPROVAL_HISTORY_LIMIT = 100


class ApprovalStateError(RuntimeError):
    """The approval lock is no longer pending."""


class ApprovalNotFoundError(LookupError):
    """No approval lock matches the request."""


def approval_lock_path(state_dir: Path, issue_number: int) -> Path:
    return state_dir / f"approval-{issue_number}.lock"


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def load_approval_lock(
    state_dir: Path,
    issue_number: int,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> ApprovalLock | None:
    path = approval_lock_path(state_dir, issue_number)
    raw = read_json_or_none(path)
    if raw is None:
        return None
    result = SchemaValidator(diagnostics).validate(
        raw,
        APPROVAL_LOCK,
        recover=True,
        file_path=str(path),
    )
    if not result.valid or result.data is None:
        return None
    return ApprovalLock.from_dict(result.data)


def list_approval_locks(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> list[ApprovalLock]:
    """Readable approval locks in issue order; corrupt files are skipped one by one."""

    if not state_dir.is_dir():
        return []
    numbers = sorted(
        int(match.group(1))
        for match in (_APPROVAL_NAME.match(path.name) for path in state_dir.iterdir())
        if match is not None
    )
    locks: list[ApprovalLock] = []
    for number in numbers:
        lock = load_approval_lock(state_dir, number, diagnostics=diagnostics)
        if lock is not None:
            locks.append(lock)
    return locks


def find_pending_approval(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> ApprovalLock | None:
    """First pending lock, without assuming there is only one."""

    for lock in list_approval_locks(state_dir, diagnostics=diagnostics):
        if lock.is_pending:
            return lock
    return None


def create_approval_lock(  # noqa: PLR0913
    state_dir: Path,
    issue_number: int,
    phase: str,
    *,
    issue_title: str | None = None,
    branch: str | None = None,
    files_changed: int | None = None,
    insertions: int | None = None,
    deletions: int | None = None,
    clock: Clock = utc_now,
) -> ApprovalLock:
    """Start a new approval cycle, replacing any earlier lock for the issue."""

    lock = ApprovalLock(
        status="pending",
        created_at=to_iso(clock()),
        issue_number=issue_number,
        phase=phase,
        issue_title=issue_title,
        branch=branch,
        files_changed=files_changed,
        insertions=insertions,
        deletions=deletions,
    )
    _write(state_dir, lock)
    return lock


def approve(
    state_dir: Path,
    *,
    issue_number: int | None = None,
    approver: str,
    comment: str | None = None,
    clock: Clock = utc_now,
) -> ApprovalLock:
    lock = _pending_target(state_dir, issue_number)
    lock.status = "approved"
    lock.approver = approver
    lock.approved_at = to_iso(clock())
    lock.comment = comment
    _write(state_dir, lock)
    logger.info("Approved issue #%d (%s) by %s", lock.issue_number, lock.phase, approver)
    record_decision(state_dir, lock, comment, clock=clock)
    return lock


def reject(
    state_dir: Path,
    *,
    issue_number: int | None = None,
    approver: str,
    feedback: str | None = None,
    clock: Clock = utc_now,
) -> ApprovalLock:
    lock = _pending_target(state_dir, issue_number)
    lock.status = "rejected"
    lock.approver = approver
    lock.rejected_at = to_iso(clock())
    lock.feedback = feedback
    _write(state_dir, lock)
    logger.info("Rejected issue #%d (%s) by %s", lock.issue_number, lock.phase, approver)
    record_decision(state_dir, lock, feedback, clock=clock)
    return lock


def record_decision(
    state_dir: Path,
    lock: ApprovalLock,
    comment: str | None = None,
    *,
    clock: Clock = utc_now,
) -> bool:
    """Append the decision on ``lock`` to ``approval_history`` in the progress file.

    Only the newest ``APPROVAL_HISTORY_LIMIT`` entries are kept. Failures are
    logged and reported as ``False``; the decision itself is already persisted.
    """

    entry: dict[str, Any] = {
        "issue_number": lock.issue_number,
        "phase": lock.phase,
        "action": lock.status,
        "timestamp": to_iso(clock()),
    }
    if comment is not None:
        entry["comment"] = comment
    try:
        progress = load_progress(state_dir)
        if progress is None:
            if progress_path(state_dir).exists():
                raise StateFileError(f"{progress_path(state_dir)} is unreadable or invalid")
            progress = {"status": "idle"}
        history = [*(progress.get("approval_history") or []), entry]
        progress["approval_history"] = history[-APPROVAL_HISTORY_LIMIT:]
        save_progress(state_dir, progress, clock=clock)
    except (OSError, StateFileError) as exc:
        logger.warning(
            "Could not record %s decision for issue #%d in approval history: %s",
            lock.status,
            lock.issue_number,
            exc,
        )
        return False
    return True


def remove_approval_lock(state_dir: Path, issue_number: int) -> bool:
    return remove_file(approval_lock_path(state_dir, issue_number))


def _pending_target(state_dir: Path, issue_number: int | None) -> ApprovalLock:
    if issue_number is None:
        lock = find_pending_approval(state_dir)
        if lock is None:
            raise ApprovalNotFoundError("No pending approval found.")
        return lock

    lock = load_approval_lock(state_dir, issue_number)
    if lock is None:
        raise ApprovalNotFoundError(f"No approval lock found for issue #{issue_number}.")
    if not lock.is_pending:
        raise ApprovalStateError(
            f"Approval for issue #{issue_number} is already {lock.status}.",
        )
    return lock


def _write(state_dir: Path, lock: ApprovalLock) -> None:
    path = approval_lock_path(state_dir, lock.issue_number)
    document = lock.to_dict()
    result = SchemaValidator().validate(document, APPROVAL_LOCK, recover=False, file_path=str(path))
    if not result.valid:
        details = "; ".join(f"{issue.path}: {issue.message}" for issue in result.errors)
        raise StateFileError(f"Refusing to write invalid approval lock {path}: {details}")
    atomic_write_json(path, document)
