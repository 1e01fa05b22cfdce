"""Thin wrapper around the ``gh`` command-line tool with bounded retries.

The tool reports failures as unstructured text, so errors surface as
:class:`GhCommandError` whose message is the tool's stderr; the retry layer
classifies that text.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from collections.abc import Callable, Sequence
from typing import Any

from issue_pilot.resilience.retry import BackoffRetry, OnRetry, RetryPolicy

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess[str]]


class GhCommandError(RuntimeError):
    """gh invocation failed; message carries the tool's error text."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class GhClient:
    """Run gh subcommands with a per-attempt timeout."""

    def __init__(  # noqa: PLR0913
        self,
        binary: str = "gh",
        timeout_seconds: float = 10.0,
        policy: RetryPolicy | None = None,
        *,
        runner: Runner = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.policy = policy or RetryPolicy()
        self._runner = runner
        self._sleep = sleep

    def run(self, args: Sequence[str]) -> str:
        """Single attempt; returns stdout."""

        command = [self.binary, *args]
        logger.debug("Running %s", " ".join(command))
        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            raise GhCommandError(
                f"{self._describe(args)} timed out after {self.timeout_seconds:g}s",
            ) from error
        except FileNotFoundError as error:
            raise GhCommandError(f"gh executable is missing: {self.binary}") from error

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            message = stderr or (completed.stdout or "").strip()
            raise GhCommandError(
                message or f"{self._describe(args)} exited with status {completed.returncode}",
                returncode=completed.returncode,
                stderr=stderr,
            )
        return completed.stdout or ""

    def run_json(self, args: Sequence[str]) -> Any:
        return _decode(self.run(args), args)

    def run_with_retry(self, args: Sequence[str], on_retry: OnRetry | None = None) -> str:
        return self._retry(on_retry).execute(lambda: self.run(args))

    def run_json_with_retry(self, args: Sequence[str], on_retry: OnRetry | None = None) -> Any:
        return _decode(self.run_with_retry(args, on_retry), args)

    def safe_run_with_retry(self, args: Sequence[str]) -> str | None:
        """Retry like :meth:`run_with_retry` but return ``None`` on final failure."""

        return self._retry(None).execute_or_none(lambda: self.run(args))

    def _retry(self, on_retry: OnRetry | None) -> BackoffRetry:
        return BackoffRetry(self.policy, on_retry=on_retry, sleep=self._sleep)

    def _describe(self, args: Sequence[str]) -> str:
        return " ".join([self.binary, *args[:2]])


def _decode(output: str, args: Sequence[str]) -> Any:
    try:
        return json.loads(output)
    except ValueError as error:
        raise GhCommandError(f"gh {' '.join(args[:2])} returned invalid JSON: {error}") from error
