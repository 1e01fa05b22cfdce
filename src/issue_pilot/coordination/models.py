"""Typed views over the lock documents kept in the state directory."""

from __future__ import annotations

import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

_TASK_LOCK_KEYS = frozenset(
    {
        "issue_number",
        "session_id",
        "pid",
        "hostname",
        "locked_at",
        "last_heartbeat",
        "worker_id",
        "repo_name",
    },
)
_PAUSE_LOCK_KEYS = frozenset({"paused_at", "reason", "resume_at"})
_APPROVAL_LOCK_KEYS = frozenset(
    {
        "status",
        "created_at",
        "issue_number",
        "issue_title",
        "branch",
        "phase",
        "files_changed",
        "insertions",
        "deletions",
        "approver",
        "approved_at",
        "rejected_at",
        "comment",
        "feedback",
    },
)


def _extra(payload: dict[str, Any], known: frozenset[str]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if key not in known}


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


@dataclass(slots=True, frozen=True)
class WorkerIdentity:
    """Who is claiming a lock."""

    session_id: str
    pid: int
    hostname: str
    worker_id: int | None = None
    repo_name: str | None = None

    @classmethod
    def current(
        cls,
        *,
        session_id: str | None = None,
        worker_id: int | None = None,
        repo_name: str | None = None,
    ) -> WorkerIdentity:
        hostname = socket.gethostname()
        pid = os.getpid()
        if session_id is None:
            session_id = f"{hostname}-{pid}-{int(time.time())}-{uuid.uuid4().hex[:8]}"
        return cls(
            session_id=session_id,
            pid=pid,
            hostname=hostname,
            worker_id=worker_id,
            repo_name=repo_name,
        )


@dataclass(slots=True)
class TaskLock:
    issue_number: int
    session_id: str
    pid: int
    hostname: str
    locked_at: str
    last_heartbeat: str
    worker_id: int | None = None
    repo_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TaskLock:
        worker_id = payload.get("worker_id")
        return cls(
            issue_number=int(payload["issue_number"]),
            session_id=str(payload["session_id"]),
            pid=int(payload["pid"]),
            hostname=str(payload["hostname"]),
            locked_at=str(payload["locked_at"]),
            last_heartbeat=str(payload["last_heartbeat"]),
            worker_id=int(worker_id) if worker_id is not None else None,
            repo_name=payload.get("repo_name"),
            extra=_extra(payload, _TASK_LOCK_KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            **_compact(
                {
                    "issue_number": self.issue_number,
                    "session_id": self.session_id,
                    "pid": self.pid,
                    "hostname": self.hostname,
                    "locked_at": self.locked_at,
                    "last_heartbeat": self.last_heartbeat,
                    "worker_id": self.worker_id,
                    "repo_name": self.repo_name,
                },
            ),
        }


@dataclass(slots=True, frozen=True)
class TaskLockInfo:
    """Listing row for one task lock."""

    issue_number: int
    session_id: str
    pid: int
    hostname: str
    lock_age_seconds: float
    heartbeat_age_seconds: float
    is_stale: bool
    worker_id: int | None = None
    repo_name: str | None = None


@dataclass(slots=True)
class PauseLock:
    paused_at: str
    reason: str | None = None
    resume_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PauseLock:
        return cls(
            paused_at=str(payload["paused_at"]),
            reason=payload.get("reason"),
            resume_at=payload.get("resume_at"),
            extra=_extra(payload, _PAUSE_LOCK_KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            **_compact(
                {"paused_at": self.paused_at, "reason": self.reason, "resume_at": self.resume_at},
            ),
        }


@dataclass(slots=True)
class ApprovalLock:
    """One approval cycle for an issue.

    ``pending`` is the only non-terminal status; a new cycle replaces the
    file with a fresh pending lock.
    """

    status: str
    created_at: str
    issue_number: int
    phase: str
    issue_title: str | None = None
    branch: str | None = None
    files_changed: int | None = None
    insertions: int | None = None
    deletions: int | None = None
    approver: str | None = None
    approved_at: str | None = None
    rejected_at: str | None = None
    comment: str | None = None
    feedback: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ApprovalLock:
        return cls(
            status=str(payload["status"]),
            created_at=str(payload["created_at"]),
            issue_number=int(payload["issue_number"]),
            phase=str(payload["phase"]),
            issue_title=payload.get("issue_title"),
            branch=payload.get("branch"),
            files_changed=_optional_int(payload.get("files_changed")),
            insertions=_optional_int(payload.get("insertions")),
            deletions=_optional_int(payload.get("deletions")),
            approver=payload.get("approver"),
            approved_at=payload.get("approved_at"),
            rejected_at=payload.get("rejected_at"),
            comment=payload.get("comment"),
            feedback=payload.get("feedback"),
            extra=_extra(payload, _APPROVAL_LOCK_KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            **_compact(
                {
                    "status": self.status,
                    "created_at": self.created_at,
                    "issue_number": self.issue_number,
                    "phase": self.phase,
                    "issue_title": self.issue_title,
                    "branch": self.branch,
                    "files_changed": self.files_changed,
                    "insertions": self.insertions,
                    "deletions": self.deletions,
                    "approver": self.approver,
                    "approved_at": self.approved_at,
                    "rejected_at": self.rejected_at,
                    "comment": self.comment,
                    "feedback": self.feedback,
                },
            ),
        }


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None
