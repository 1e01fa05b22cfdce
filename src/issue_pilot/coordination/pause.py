"""Global pause signal: workers stop picking up tasks while ``pause.lock`` exists."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from issue_pilot.common import Clock, from_iso, to_iso, utc_now
from issue_pilot.coordination.models import PauseLock
from issue_pilot.diagnostics import DiagnosticsSink
from issue_pilot.state.files import atomic_write_json, read_json_or_none, remove_file
from issue_pilot.state.schema import SchemaValidator
from issue_pilot.state.schemas import PAUSE_LOCK

logger = logging.getLogger(__name__)

PAUSE_LOCK_FILE = "pause.lock"


def pause_lock_path(state_dir: Path) -> Path:
    return state_dir / PAUSE_LOCK_FILE


def is_paused(state_dir: Path) -> bool:
    """Existence check only; the file body is advisory."""

    return pause_lock_path(state_dir).exists()


def load_pause_lock(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> PauseLock | None:
    path = pause_lock_path(state_dir)
    raw = read_json_or_none(path)
    if raw is None:
        return None
    result = SchemaValidator(diagnostics).validate(
        raw,
        PAUSE_LOCK,
        recover=True,
        file_path=str(path),
    )
    if not result.valid or result.data is None:
        return None
    return PauseLock.from_dict(result.data)


def pause(
    state_dir: Path,
    *,
    reason: str | None = None,
    resume_at: datetime | None = None,
    clock: Clock = utc_now,
    diagnostics: DiagnosticsSink | None = None,
) -> PauseLock:
    """Create the pause lock unless a readable one is already in place."""

    existing = load_pause_lock(state_dir, diagnostics=diagnostics)
    if existing is not None:
        return existing
    lock = PauseLock(
        paused_at=to_iso(clock()),
        reason=reason,
        resume_at=to_iso(resume_at) if resume_at is not None else None,
    )
    atomic_write_json(pause_lock_path(state_dir), lock.to_dict())
    logger.info("Paused task processing%s", f": {reason}" if reason else "")
    return lock


def resume(
    state_dir: Path,
    *,
    diagnostics: DiagnosticsSink | None = None,
) -> PauseLock | None:
    """Remove the pause lock and return what it contained."""

    existing = load_pause_lock(state_dir, diagnostics=diagnostics)
    if remove_file(pause_lock_path(state_dir)):
        logger.info("Resumed task processing")
    return existing


def auto_resume_if_due(
    state_dir: Path,
    now: datetime | None = None,
    *,
    clock: Clock = utc_now,
) -> bool:
    """Remove a pause lock whose ``resume_at`` has passed.

    Workers call this before checking :func:`is_paused`; the ``status`` and
    ``pause`` commands do the same.
    """

    lock = load_pause_lock(state_dir)
    if lock is None or lock.resume_at is None:
        return False
    if (now or clock()) < from_iso(lock.resume_at):
        return False
    remove_file(pause_lock_path(state_dir))
    logger.info("Pause expired at %s, resuming", lock.resume_at)
    return True
