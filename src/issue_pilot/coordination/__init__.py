"""Lock-file coordination between cooperating worker processes."""

from issue_pilot.coordination.approvals import (
    ApprovalNotFoundError,
    ApprovalStateError,
    approve,
    create_approval_lock,
    find_pending_approval,
    list_approval_locks,
    load_approval_lock,
    reject,
    record_decision,
    remove_approval_lock,
)
from issue_pilot.coordination.models import (
    ApprovalLock,
    PauseLock,
    TaskLock,
    TaskLockInfo,
    WorkerIdentity,
)
from issue_pilot.coordination.pause import (
    auto_resume_if_due,
    is_paused,
    load_pause_lock,
    pause,
    resume,
)
from issue_pilot.coordination.task_locks import (
    ClaimResult,
    LockHeartbeat,
    LockNotHeldError,
    TaskLockCoordinator,
    claim_task,
    heartbeat,
    load_task_lock,
    release_task,
)

__all__ = [
    "ApprovalLock",
    "ApprovalNotFoundError",
    "ApprovalStateError",
    "ClaimResult",
    "LockHeartbeat",
    "LockNotHeldError",
    "PauseLock",
    "TaskLock",
    "TaskLockCoordinator",
    "TaskLockInfo",
    "WorkerIdentity",
    "approve",
    "auto_resume_if_due",
    "claim_task",
    "create_approval_lock",
    "find_pending_approval",
    "heartbeat",
    "is_paused",
    "list_approval_locks",
    "load_approval_lock",
    "load_pause_lock",
    "load_task_lock",
    "pause",
    "reject",
    "release_task",
    "record_decision",
    "remove_approval_lock",
    "resume",
]
