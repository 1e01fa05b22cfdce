"""Loaders and savers for session stats, task metrics and progress documents."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from issue_pilot.common import Clock, parse_iso_or_none, to_iso, utc_now
from issue_pilot.diagnostics import DiagnosticsSink
from issue_pilot.state.files import StateFileError, atomic_write_json, read_json_or_none
from issue_pilot.state.schema import EntitySchema, SchemaValidator
from issue_pilot.state.schemas import METRICS_DATA, PROGRESS, SESSION_STATS, TASK_METRICS

SESSION_STATS_FILE = "session-stats.json"
TASK_METRICS_FILE = "task-metrics.json"
PROGRESS_FILE = "progress.json"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def session_stats_path(state_dir: Path) -> Path:
    return state_dir / SESSION_STATS_FILE


def task_metrics_path(state_dir: Path) -> Path:
    return state_dir / TASK_METRICS_FILE


def progress_path(state_dir: Path) -> Path:
    return state_dir / PROGRESS_FILE


def load_session_stats(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> list[dict[str, Any]]:
    """Load session records, dropping entries that cannot be recovered."""

    path = session_stats_path(state_dir)
    raw = read_json_or_none(path)
    if raw is None:
        return []
    result = SchemaValidator(diagnostics).validate_array(
        raw,
        SESSION_STATS,
        recover=True,
        file_path=str(path),
    )
    return result.data


def save_session_stats(state_dir: Path, sessions: list[dict[str, Any]]) -> None:
    validator = SchemaValidator()
    for index, session in enumerate(sessions):
        _require_valid(validator, session, SESSION_STATS, f"{SESSION_STATS_FILE}[{index}]")
    atomic_write_json(session_stats_path(state_dir), sessions)


def append_session_stats(
    state_dir: Path,
    session: dict[str, Any],
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> list[dict[str, Any]]:
    """Append one session record and rewrite the whole file."""

    sessions = load_session_stats(state_dir, diagnostics=diagnostics)
    sessions.append(session)
    save_session_stats(state_dir, sessions)
    return sessions


def most_recent_session(sessions: list[dict[str, Any]]) -> dict[str, Any] | None:
    if not sessions:
        return None
    return max(sessions, key=_started_at)


def _started_at(session: dict[str, Any]) -> datetime:
    return parse_iso_or_none(str(session.get("started_at", ""))) or _EPOCH


def load_metrics_data(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> dict[str, Any] | None:
    """Load the metrics container with its task records validated and recovered."""

    path = task_metrics_path(state_dir)
    raw = read_json_or_none(path)
    if raw is None:
        return None
    validator = SchemaValidator(diagnostics)
    container = validator.validate(raw, METRICS_DATA, recover=True, file_path=str(path))
    if not container.valid or container.data is None:
        return None
    tasks = validator.validate_array(
        container.data["tasks"],
        TASK_METRICS,
        recover=True,
        file_path=f"{path}:tasks",
    )
    return {**container.data, "tasks": tasks.data}


def load_task_metrics(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> list[dict[str, Any]]:
    metrics = load_metrics_data(state_dir, diagnostics=diagnostics)
    return metrics["tasks"] if metrics is not None else []


def save_metrics_data(
    state_dir: Path,
    metrics: dict[str, Any],
    *,
    clock: Clock = utc_now,
) -> dict[str, Any]:
    """Stamp ``last_updated`` and persist the metrics container."""

    document = {**metrics, "last_updated": to_iso(clock())}
    validator = SchemaValidator()
    _require_valid(validator, document, METRICS_DATA, TASK_METRICS_FILE)
    for index, task in enumerate(document["tasks"]):
        _require_valid(validator, task, TASK_METRICS, f"{TASK_METRICS_FILE}:tasks[{index}]")
    atomic_write_json(task_metrics_path(state_dir), document)
    return document


def failed_task_metrics(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [metric for metric in metrics if metric.get("status") == "failed"]


def completed_task_metrics(metrics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [metric for metric in metrics if metric.get("status") == "completed"]


def load_progress(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> dict[str, Any] | None:
    path = progress_path(state_dir)
    raw = read_json_or_none(path)
    if raw is None:
        return None
    result = SchemaValidator(diagnostics).validate(
        raw,
        PROGRESS,
        recover=True,
        file_path=str(path),
    )
    return result.data if result.valid else None


def save_progress(
    state_dir: Path,
    progress: dict[str, Any],
    *,
    clock: Clock = utc_now,
) -> dict[str, Any]:
    document = {**progress, "last_updated": to_iso(clock())}
    _require_valid(SchemaValidator(), document, PROGRESS, PROGRESS_FILE)
    atomic_write_json(progress_path(state_dir), document)
    return document


def _require_valid(
    validator: SchemaValidator,
    document: Any,
    schema: EntitySchema,
    label: str,
) -> None:
    result = validator.validate(document, schema, recover=False, file_path=label)
    if result.valid:
        return
    details = "; ".join(f"{issue.path or '<root>'}: {issue.message}" for issue in result.errors)
    raise StateFileError(f"Refusing to write invalid {schema.name} to {label}: {details}")
