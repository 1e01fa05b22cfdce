"""CLI entrypoint for issue-pilot."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from issue_pilot import __version__
from issue_pilot.coordination.approvals import ApprovalNotFoundError, ApprovalStateError
from issue_pilot.coordination.controllers import (
    ApproveCommand,
    CoordinationCliController,
    LocksListCommand,
    LocksReleaseCommand,
    PauseCommand,
    RejectCommand,
    ResumeCommand,
    StatusCommand,
    ValidateStateCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = CoordinationCliController()

_DOMAIN_ERRORS = (ApprovalNotFoundError, ApprovalStateError, ValueError)


@click.group()
@click.version_option(version=__version__, prog_name="issue-pilot")
@click.option(
    "--state-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Shared state directory (defaults to `ISSUE_PILOT_STATE_DIR` or `.issue-pilot`).",
)
@click.option("--verbose", is_flag=True, default=False, help="Print diagnostics.")
@click.pass_context
def issue_pilot(ctx: click.Context, state_dir: Path | None, verbose: bool) -> None:
    """Coordinate issue-driven workers through a shared state directory."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"state_dir": state_dir, "verbose": verbose}


@issue_pilot.command("status")
@click.pass_obj
def status(obj: dict) -> None:
    """Show pause state, task locks, pending approval and the last session."""

    command = StatusCommand(state_dir=obj["state_dir"], verbose=obj["verbose"])
    _run(lambda: CONTROLLER.status(command))


@issue_pilot.command("pause")
@click.option("--reason", default=None, help="Why processing is paused.")
@click.option(
    "--minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Resume automatically after this many minutes.",
)
@click.pass_obj
def pause_command(obj: dict, reason: str | None, minutes: int | None) -> None:
    """Stop workers from picking up new tasks."""

    _run(
        lambda: CONTROLLER.pause(
            PauseCommand(
                state_dir=obj["state_dir"],
                reason=reason,
                minutes=minutes,
                verbose=obj["verbose"],
            ),
        ),
    )


@issue_pilot.command("resume")
@click.pass_obj
def resume_command(obj: dict) -> None:
    """Remove the pause lock."""

    command = ResumeCommand(state_dir=obj["state_dir"], verbose=obj["verbose"])
    _run(lambda: CONTROLLER.resume(command))


@issue_pilot.command("approve")
@click.option(
    "--issue",
    "issue_number",
    type=click.IntRange(min=1),
    default=None,
    help="Issue number; defaults to the first pending approval.",
)
@click.option("--message", default=None, help="Optional approval comment.")
@click.pass_obj
def approve_command(obj: dict, issue_number: int | None, message: str | None) -> None:
    """Approve the pending approval (or the one for `--issue`)."""

    _run(
        lambda: CONTROLLER.approve(
            ApproveCommand(
                state_dir=obj["state_dir"],
                issue_number=issue_number,
                message=message,
                verbose=obj["verbose"],
            ),
        ),
    )


@issue_pilot.command("reject")
@click.option(
    "--issue",
    "issue_number",
    type=click.IntRange(min=1),
    default=None,
    help="Issue number; defaults to the first pending approval.",
)
@click.option("--feedback", default=None, help="What should change before approval.")
@click.pass_obj
def reject_command(obj: dict, issue_number: int | None, feedback: str | None) -> None:
    """Reject the pending approval (or the one for `--issue`)."""

    _run(
        lambda: CONTROLLER.reject(
            RejectCommand(
                state_dir=obj["state_dir"],
                issue_number=issue_number,
                feedback=feedback,
                verbose=obj["verbose"],
            ),
        ),
    )


@issue_pilot.group()
def locks() -> None:
    """Task lock inspection and maintenance."""


@locks.command("list")
@click.option(
    "--timeout-minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Staleness threshold (defaults to `ISSUE_PILOT_LOCK_TIMEOUT_MINUTES`).",
)
@click.pass_obj
def locks_list(obj: dict, timeout_minutes: int | None) -> None:
    """List task locks with heartbeat age."""

    _run(
        lambda: CONTROLLER.list_locks(
            LocksListCommand(
                state_dir=obj["state_dir"],
                timeout_minutes=timeout_minutes,
                verbose=obj["verbose"],
            ),
        ),
    )


@locks.command("cleanup")
@click.option(
    "--timeout-minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Staleness threshold (defaults to `ISSUE_PILOT_LOCK_TIMEOUT_MINUTES`).",
)
@click.pass_obj
def locks_cleanup(obj: dict, timeout_minutes: int | None) -> None:
    """Delete locks whose heartbeat is stale."""

    _run(
        lambda: CONTROLLER.cleanup_locks(
            LocksListCommand(
                state_dir=obj["state_dir"],
                timeout_minutes=timeout_minutes,
                verbose=obj["verbose"],
            ),
        ),
    )


@locks.command("release")
@click.argument("issue_number", type=click.IntRange(min=1))
@click.pass_obj
def locks_release(obj: dict, issue_number: int) -> None:
    """Force-release the lock for ISSUE_NUMBER."""

    _run(
        lambda: CONTROLLER.release_lock(
            LocksReleaseCommand(
                state_dir=obj["state_dir"],
                issue_number=issue_number,
                verbose=obj["verbose"],
            ),
        ),
    )


@issue_pilot.command("validate-state")
@click.pass_obj
def validate_state(obj: dict) -> None:
    """Check every state file against its schema without recovery."""

    try:
        lines, valid = CONTROLLER.validate_state(
            ValidateStateCommand(state_dir=obj["state_dir"], verbose=obj["verbose"]),
        )
    except _DOMAIN_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)
    if not valid:
        raise click.ClickException("State validation failed.")


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except _DOMAIN_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    issue_pilot()
