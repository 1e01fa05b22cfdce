"""Schemas for every persisted entity kind, plus lookup by name."""

from __future__ import annotations

import re
from typing import Any

from issue_pilot.diagnostics import DiagnosticsSink
from issue_pilot.state.schema import (
    NO_DEFAULT,
    EntitySchema,
    FieldSpec,
    FieldType,
    SchemaValidator,
    ValidationResult,
)

MAX_COST_USD = 1_000
MAX_DURATION_SECS = 7 * 24 * 60 * 60
MAX_TASKS = 10_000
MAX_ITERATIONS = 100

DATA_BOUNDS: dict[str, int] = {
    "max_cost_usd": MAX_COST_USD,
    "max_duration_secs": MAX_DURATION_SECS,
    "max_tasks": MAX_TASKS,
    "max_iterations": MAX_ITERATIONS,
}

TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")

PROGRESS_STATUSES = ("idle", "in_progress", "paused", "stopped", "error", "awaiting_approval")
TASK_OUTCOMES = ("completed", "failed")
APPROVAL_STATUSES = ("pending", "approved", "rejected")
APPROVAL_PHASES = ("pre_task", "phase1", "phase2")


def _timestamp(*, required: bool = True) -> FieldSpec:
    return FieldSpec(
        type=FieldType.STRING,
        required=required,
        pattern=TIMESTAMP_PATTERN,
        timestamp=True,
    )


def _count(
    *,
    required: bool = True,
    minimum: int = 0,
    maximum: int | None = None,
    default: Any = NO_DEFAULT,
) -> FieldSpec:
    return FieldSpec(
        type=FieldType.NUMBER,
        required=required,
        min=minimum,
        max=maximum,
        integer=True,
        default=default,
    )


def _text(*, required: bool = False) -> FieldSpec:
    return FieldSpec(type=FieldType.STRING, required=required)


SESSION_STATS = EntitySchema(
    name="SessionStats",
    fields={
        "session_id": FieldSpec(
            type=FieldType.STRING,
            required=True,
            min_length=1,
            max_length=256,
        ),
        "started_at": _timestamp(),
        "ended_at": _timestamp(),
        "duration_secs": _count(maximum=MAX_DURATION_SECS, default=0),
        "tasks_attempted": _count(maximum=MAX_TASKS, default=0),
        "tasks_completed": _count(maximum=MAX_TASKS, default=0),
        "successful_tasks": FieldSpec(type=FieldType.ARRAY, required=True, default=[]),
        "failed_tasks": FieldSpec(type=FieldType.ARRAY, required=True, default=[]),
        "total_cost_usd": FieldSpec(
            type=FieldType.NUMBER,
            required=True,
            min=0,
            max=MAX_COST_USD,
            default=0,
        ),
        "auto_merge_mode": FieldSpec(type=FieldType.BOOLEAN, required=True, default=False),
        "auto_merges": _count(maximum=MAX_TASKS, default=0),
        "repo": FieldSpec(
            type=FieldType.STRING,
            required=True,
            min_length=1,
            default="unknown/unknown",
        ),
    },
)

TASK_METRICS = EntitySchema(
    name="TaskMetrics",
    fields={
        "issue_number": _count(minimum=1),
        "started_at": _timestamp(),
        "completed_at": _timestamp(required=False),
        "duration_secs": _count(maximum=MAX_DURATION_SECS, default=0),
        "status": FieldSpec(type=FieldType.STRING, required=True, enum=TASK_OUTCOMES),
        "iterations": _count(maximum=MAX_ITERATIONS, default=1),
        "cost_usd": FieldSpec(
            type=FieldType.NUMBER,
            required=True,
            min=0,
            max=MAX_COST_USD,
            default=0,
        ),
        "failure_reason": _text(),
        "failure_phase": _text(),
        "category": _text(),
        "retry_count": _count(required=False, default=0),
        "phases": FieldSpec(type=FieldType.OBJECT),
        "tokens": FieldSpec(type=FieldType.OBJECT),
        "error_recovery_time_secs": _count(required=False, maximum=MAX_DURATION_SECS),
        "files_modified": _count(required=False),
        "lines_changed": _count(required=False),
    },
)

METRICS_DATA = EntitySchema(
    name="MetricsData",
    fields={
        "version": FieldSpec(type=FieldType.STRING, required=True, min_length=1, default="1.0"),
        "last_updated": _timestamp(),
        "retention_days": _count(minimum=1, maximum=3650, default=30),
        "tasks": FieldSpec(type=FieldType.ARRAY, required=True, default=[]),
    },
)

TASK_LOCK = EntitySchema(
    name="TaskLock",
    fields={
        "issue_number": _count(minimum=1),
        "session_id": FieldSpec(
            type=FieldType.STRING,
            required=True,
            min_length=1,
            max_length=256,
        ),
        "pid": _count(minimum=1),
        "hostname": FieldSpec(
            type=FieldType.STRING,
            required=True,
            min_length=1,
            max_length=256,
        ),
        "locked_at": _timestamp(),
        "last_heartbeat": _timestamp(),
        "worker_id": _count(required=False),
        "repo_name": FieldSpec(type=FieldType.STRING, min_length=1),
    },
)

PROGRESS = EntitySchema(
    name="Progress",
    fields={
        "status": FieldSpec(type=FieldType.STRING, required=True, enum=PROGRESS_STATUSES),
        "current_task": FieldSpec(
            type=FieldType.OBJECT,
            properties={
                "id": FieldSpec(type=FieldType.STRING, required=True, min_length=1),
                "title": _text(required=True),
                "branch": _text(required=True),
                "started_at": _timestamp(),
            },
        ),
        "session": FieldSpec(
            type=FieldType.OBJECT,
            properties={
                "started_at": _timestamp(),
                "tasks_completed": _count(maximum=MAX_TASKS),
                "total_cost_usd": FieldSpec(
                    type=FieldType.NUMBER,
                    required=True,
                    min=0,
                    max=MAX_COST_USD,
                ),
            },
        ),
        "last_updated": _timestamp(),
        "phase": _text(),
        "iteration": FieldSpec(
            type=FieldType.OBJECT,
            properties={
                "current": _count(maximum=MAX_ITERATIONS),
                "max": _count(minimum=1, maximum=MAX_ITERATIONS),
            },
        ),
        "recent_tools": FieldSpec(type=FieldType.ARRAY),
        "approval_history": FieldSpec(type=FieldType.ARRAY),
        "parallel_mode": FieldSpec(type=FieldType.BOOLEAN),
        "parallel_workers": FieldSpec(type=FieldType.ARRAY),
        "parallel_session": FieldSpec(type=FieldType.OBJECT),
    },
)

PAUSE_LOCK = EntitySchema(
    name="PauseLock",
    fields={
        "paused_at": _timestamp(),
        "reason": _text(),
        "resume_at": _timestamp(required=False),
    },
)

APPROVAL_LOCK = EntitySchema(
    name="ApprovalLock",
    fields={
        "status": FieldSpec(type=FieldType.STRING, required=True, enum=APPROVAL_STATUSES),
        "created_at": _timestamp(),
        "issue_number": _count(minimum=1),
        "issue_title": _text(),
        "branch": _text(),
        "phase": FieldSpec(type=FieldType.STRING, required=True, enum=APPROVAL_PHASES),
        "files_changed": _count(required=False),
        "insertions": _count(required=False),
        "deletions": _count(required=False),
        "approver": _text(),
        "approved_at": _timestamp(required=False),
        "rejected_at": _timestamp(required=False),
        "comment": _text(),
        "feedback": _text(),
    },
)

_SCHEMAS: dict[str, EntitySchema] = {
    schema.name: schema
    for schema in (
        SESSION_STATS,
        TASK_METRICS,
        METRICS_DATA,
        TASK_LOCK,
        PROGRESS,
        PAUSE_LOCK,
        APPROVAL_LOCK,
    )
}


def schema_names() -> tuple[str, ...]:
    return tuple(_SCHEMAS)


def get_schema(name: str) -> EntitySchema:
    """Look up a registered schema; raises ``KeyError`` for unknown names."""

    try:
        return _SCHEMAS[name]
    except KeyError:
        raise KeyError(f"Unknown schema: {name!r}") from None


def validate(
    data: Any,
    schema_name: str,
    *,
    recover: bool = True,
    file_path: str | None = None,
    diagnostics: DiagnosticsSink | None = None,
) -> ValidationResult:
    """Validate ``data`` against the registered schema called ``schema_name``."""

    return SchemaValidator(diagnostics).validate(
        data,
        get_schema(schema_name),
        recover=recover,
        file_path=file_path,
    )
