"""Controllers for state and coordination CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from issue_pilot.common import utc_now
from issue_pilot.config import Settings
from issue_pilot.coordination.approvals import (
    approve,
    current_user,
    find_pending_approval,
    reject,
)
from issue_pilot.coordination.pause import (
    PAUSE_LOCK_FILE,
    auto_resume_if_due,
    is_paused,
    load_pause_lock,
    pause,
    resume,
)
from issue_pilot.coordination.task_locks import TaskLockCoordinator
from issue_pilot.diagnostics import DiagnosticsSink, LoggingDiagnostics
from issue_pilot.state.files import read_json_or_none
from issue_pilot.state.schema import SchemaValidator
from issue_pilot.state.schemas import (
    APPROVAL_LOCK,
    METRICS_DATA,
    PAUSE_LOCK,
    PROGRESS,
    SESSION_STATS,
    TASK_LOCK,
    TASK_METRICS,
)
from issue_pilot.state.store import (
    PROGRESS_FILE,
    SESSION_STATS_FILE,
    TASK_METRICS_FILE,
    load_progress,
    load_session_stats,
    most_recent_session,
)


@dataclass(slots=True)
class StatusCommand:
    """CLI inputs for status command."""

    state_dir: Path | None
    verbose: bool = False


@dataclass(slots=True)
class PauseCommand:
    """CLI inputs for pause command."""

    state_dir: Path | None
    reason: str | None
    minutes: int | None
    verbose: bool = False


@dataclass(slots=True)
class ResumeCommand:
    """CLI inputs for resume command."""

    state_dir: Path | None
    verbose: bool = False


@dataclass(slots=True)
class ApproveCommand:
    """CLI inputs for approve command."""

    state_dir: Path | None
    issue_number: int | None
    message: str | None
    verbose: bool = False


@dataclass(slots=True)
class RejectCommand:
    """CLI inputs for reject command."""

    state_dir: Path | None
    issue_number: int | None
    feedback: str | None
    verbose: bool = False


@dataclass(slots=True)
class LocksListCommand:
    """CLI inputs for lock listing and cleanup."""

    state_dir: Path | None
    timeout_minutes: int | None = None
    verbose: bool = False


@dataclass(slots=True)
class LocksReleaseCommand:
    """CLI inputs for forced lock release."""

    state_dir: Path | None
    issue_number: int
    verbose: bool = False


@dataclass(slots=True)
class ValidateStateCommand:
    """CLI inputs for state validation command."""

    state_dir: Path | None
    verbose: bool = False


class CoordinationCliController:
    """Coordinates pause, approval, lock and state inspection commands."""

    def status(self, command: StatusCommand) -> list[str]:
        settings = _settings(command.state_dir)
        diagnostics = _diagnostics(settings, command.verbose)
        state_dir = settings.state_dir
        lines = [f"State directory: {state_dir}"]

        if auto_resume_if_due(state_dir):
            lines.append("Pause expired, resumed.")
        if is_paused(state_dir):
            lock = load_pause_lock(state_dir, diagnostics=diagnostics)
            if lock is None:
                lines.append("Paused: yes (unreadable pause lock)")
            else:
                lines.append(
                    f"Paused: yes since={lock.paused_at} reason={lock.reason or '-'} "
                    f"resume_at={lock.resume_at or '-'}",
                )
        else:
            lines.append("Paused: no")

        locks = _coordinator(settings, diagnostics).list_locks()
        stale_count = sum(1 for info in locks if info.is_stale)
        lines.append(f"Task locks: {len(locks)} (stale={stale_count})")
        lines.extend(
            f"  #{info.issue_number} session={info.session_id} pid={info.pid} "
            f"host={info.hostname} heartbeat_age={info.heartbeat_age_seconds:.0f}s "
            f"stale={'yes' if info.is_stale else 'no'}"
            for info in locks
        )

        pending = find_pending_approval(state_dir, diagnostics=diagnostics)
        if pending is None:
            lines.append("Pending approval: none")
        else:
            lines.append(
                f"Pending approval: #{pending.issue_number} phase={pending.phase} "
                f"title={pending.issue_title or '-'}",
            )

        progress = load_progress(state_dir, diagnostics=diagnostics)
        if progress is None:
            lines.append("Progress: -")
        else:
            task = progress.get("current_task") or {}
            lines.append(
                f"Progress: status={progress['status']} task={task.get('id', '-')} "
                f"phase={progress.get('phase') or '-'}",
            )

        session = most_recent_session(load_session_stats(state_dir, diagnostics=diagnostics))
        if session is not None:
            lines.append(
                f"Last session: {session['session_id']} started={session['started_at']} "
                f"tasks={session['tasks_completed']}/{session['tasks_attempted']} "
                f"cost=${session['total_cost_usd']:.2f}",
            )
        return lines

    def pause(self, command: PauseCommand) -> list[str]:
        settings = _settings(command.state_dir)
        diagnostics = _diagnostics(settings, command.verbose)
        auto_resume_if_due(settings.state_dir)
        if is_paused(settings.state_dir):
            existing = load_pause_lock(settings.state_dir, diagnostics=diagnostics)
            if existing is not None:
                return [f"Already paused since {existing.paused_at}."]

        resume_at = None
        if command.minutes is not None:
            resume_at = utc_now() + timedelta(minutes=command.minutes)
        lock = pause(
            settings.state_dir,
            reason=command.reason,
            resume_at=resume_at,
            diagnostics=diagnostics,
        )
        lines = [f"Paused at {lock.paused_at}."]
        if lock.reason:
            lines.append(f"Reason: {lock.reason}")
        if lock.resume_at:
            lines.append(f"Auto-resume at {lock.resume_at}.")
        return lines

    def resume(self, command: ResumeCommand) -> list[str]:
        settings = _settings(command.state_dir)
        was_paused = is_paused(settings.state_dir)
        lock = resume(settings.state_dir, diagnostics=_diagnostics(settings, command.verbose))
        if not was_paused:
            return ["Not paused."]
        if lock is None:
            return ["Resumed."]
        return [f"Resumed (paused since {lock.paused_at})."]

    def approve(self, command: ApproveCommand) -> list[str]:
        settings = _settings(command.state_dir)
        lock = approve(
            settings.state_dir,
            issue_number=command.issue_number,
            approver=current_user(),
            comment=command.message,
        )
        lines = [f"Approved issue #{lock.issue_number} ({lock.phase}) by {lock.approver}."]
        if lock.comment:
            lines.append(f"Comment: {lock.comment}")
        return lines

    def reject(self, command: RejectCommand) -> list[str]:
        settings = _settings(command.state_dir)
        lock = reject(
            settings.state_dir,
            issue_number=command.issue_number,
            approver=current_user(),
            feedback=command.feedback,
        )
        lines = [f"Rejected issue #{lock.issue_number} ({lock.phase}) by {lock.approver}."]
        if lock.feedback:
            lines.append(f"Feedback: {lock.feedback}")
        return lines

    def list_locks(self, command: LocksListCommand) -> list[str]:
        settings = _settings(command.state_dir, timeout_minutes=command.timeout_minutes)
        locks = _coordinator(settings, _diagnostics(settings, command.verbose)).list_locks()
        if not locks:
            return ["No task locks."]
        return [
            f"#{info.issue_number} session={info.session_id} pid={info.pid} "
            f"host={info.hostname} worker={info.worker_id if info.worker_id is not None else '-'} "
            f"age={info.lock_age_seconds:.0f}s heartbeat_age={info.heartbeat_age_seconds:.0f}s "
            f"stale={'yes' if info.is_stale else 'no'}"
            for info in locks
        ]

    def cleanup_locks(self, command: LocksListCommand) -> list[str]:
        settings = _settings(command.state_dir, timeout_minutes=command.timeout_minutes)
        removed = _coordinator(settings, _diagnostics(settings, command.verbose)).cleanup_stale()
        return [f"Removed stale locks: {removed}"]

    def release_lock(self, command: LocksReleaseCommand) -> list[str]:
        settings = _settings(command.state_dir)
        coordinator = _coordinator(settings, _diagnostics(settings, command.verbose))
        if coordinator.force_release(command.issue_number):
            return [f"Released lock for issue #{command.issue_number}."]
        return [f"No lock for issue #{command.issue_number}."]

    def validate_state(self, command: ValidateStateCommand) -> tuple[list[str], bool]:
        """Validate every state file without recovery; returns lines and overall validity."""

        settings = _settings(command.state_dir)
        validator = SchemaValidator(_diagnostics(settings, command.verbose))
        state_dir = settings.state_dir
        lines: list[str] = []
        all_valid = True

        targets: list[tuple[Path, str]] = [
            (state_dir / SESSION_STATS_FILE, "sessions"),
            (state_dir / TASK_METRICS_FILE, "metrics"),
            (state_dir / PROGRESS_FILE, "progress"),
            (state_dir / PAUSE_LOCK_FILE, "pause"),
        ]
        if (state_dir / "locks").is_dir():
            targets.extend(
                (path, "task_lock") for path in sorted((state_dir / "locks").glob("issue-*.lock"))
            )
        if state_dir.is_dir():
            targets.extend((path, "approval") for path in sorted(state_dir.glob("approval-*.lock")))

        for path, kind in targets:
            if not path.exists():
                continue
            raw = read_json_or_none(path)
            if raw is None:
                lines.append(f"{path}: unreadable")
                all_valid = False
                continue
            errors = _validate_document(validator, raw, kind, str(path))
            if errors:
                all_valid = False
                lines.append(f"{path}: {len(errors)} error(s)")
                lines.extend(f"  - {error}" for error in errors)
            else:
                lines.append(f"{path}: ok")

        if not lines:
            lines.append("No state files found.")
        return lines, all_valid


def _validate_document(
    validator: SchemaValidator,
    raw: object,
    kind: str,
    source: str,
) -> list[str]:
    if kind == "sessions":
        result = validator.validate_array(raw, SESSION_STATS, recover=False, file_path=source)
        issues = result.errors
    elif kind == "metrics":
        container = validator.validate(raw, METRICS_DATA, recover=False, file_path=source)
        issues = list(container.errors)
        if isinstance(raw, dict) and isinstance(raw.get("tasks"), list):
            tasks = validator.validate_array(
                raw["tasks"],
                TASK_METRICS,
                recover=False,
                file_path=f"{source}:tasks",
            )
            issues.extend(tasks.errors)
    else:
        schema = {
            "progress": PROGRESS,
            "pause": PAUSE_LOCK,
            "task_lock": TASK_LOCK,
            "approval": APPROVAL_LOCK,
        }[kind]
        issues = validator.validate(raw, schema, recover=False, file_path=source).errors
    return [f"{issue.path or '<root>'}: {issue.message}" for issue in issues]


def _settings(state_dir: Path | None, *, timeout_minutes: int | None = None) -> Settings:
    settings = Settings.from_env(state_dir=state_dir)
    if timeout_minutes is not None:
        settings.locks.timeout_minutes = timeout_minutes
    settings.validate()
    return settings


def _diagnostics(settings: Settings, verbose: bool) -> DiagnosticsSink | None:
    if verbose or settings.verbose:
        return LoggingDiagnostics()
    return None


def _coordinator(settings: Settings, diagnostics: DiagnosticsSink | None) -> TaskLockCoordinator:
    return TaskLockCoordinator(
        settings.state_dir,
        stale_after=settings.locks.stale_after,
        diagnostics=diagnostics,
    )
