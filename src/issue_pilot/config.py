"""Runtime configuration for retries, locks and the gh wrapper."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from issue_pilot.resilience.retry import RetryPolicy


@dataclass(slots=True)
class RetrySettings:
    """Backoff limits for remote calls."""

    max_attempts: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 30_000
    jitter_ms: int = 500

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ms=self.jitter_ms,
        )


@dataclass(slots=True)
class LockSettings:
    """Task lock staleness and heartbeat cadence."""

    timeout_minutes: int = 120
    heartbeat_interval_seconds: int = 30

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.timeout_minutes)

    @property
    def heartbeat_interval(self) -> timedelta:
        return timedelta(seconds=self.heartbeat_interval_seconds)


@dataclass(slots=True)
class GhSettings:
    """How the gh command-line tool is invoked."""

    binary: str = "gh"
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    state_dir: Path = Path(".issue-pilot")
    retry: RetrySettings = field(default_factory=RetrySettings)
    locks: LockSettings = field(default_factory=LockSettings)
    gh: GhSettings = field(default_factory=GhSettings)
    verbose: bool = False

    @classmethod
    def from_env(cls, state_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local runs."""

        return cls(
            state_dir=state_dir or Path(os.getenv("ISSUE_PILOT_STATE_DIR", ".issue-pilot")),
            retry=RetrySettings(
                max_attempts=_env_int("ISSUE_PILOT_RETRY_MAX_ATTEMPTS", 3),
                base_delay_ms=_env_int("ISSUE_PILOT_RETRY_BASE_DELAY_MS", 1000),
                max_delay_ms=_env_int("ISSUE_PILOT_RETRY_MAX_DELAY_MS", 30000),
                jitter_ms=_env_int("ISSUE_PILOT_RETRY_JITTER_MS", 500),
            ),
            locks=LockSettings(
                timeout_minutes=_env_int("ISSUE_PILOT_LOCK_TIMEOUT_MINUTES", 120),
                heartbeat_interval_seconds=_env_int("ISSUE_PILOT_HEARTBEAT_INTERVAL_SECONDS", 30),
            ),
            gh=GhSettings(
                binary=os.getenv("ISSUE_PILOT_GH_BINARY", "gh"),
                timeout_seconds=_env_float("ISSUE_PILOT_GH_TIMEOUT_SECONDS", 10.0),
            ),
            verbose=_env_bool("ISSUE_PILOT_VERBOSE", False),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if self.retry.max_attempts < 1:
            raise ValueError("ISSUE_PILOT_RETRY_MAX_ATTEMPTS must be >= 1.")
        if self.retry.base_delay_ms < 0:
            raise ValueError("ISSUE_PILOT_RETRY_BASE_DELAY_MS must be >= 0.")
        if self.retry.max_delay_ms < self.retry.base_delay_ms:
            raise ValueError(
                "ISSUE_PILOT_RETRY_MAX_DELAY_MS must be >= ISSUE_PILOT_RETRY_BASE_DELAY_MS.",
            )
        if self.retry.jitter_ms < 0:
            raise ValueError("ISSUE_PILOT_RETRY_JITTER_MS must be >= 0.")
        if self.locks.timeout_minutes <= 0:
            raise ValueError("ISSUE_PILOT_LOCK_TIMEOUT_MINUTES must be > 0.")
        if self.locks.heartbeat_interval_seconds <= 0:
            raise ValueError("ISSUE_PILOT_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if not self.gh.binary.strip():
            raise ValueError("ISSUE_PILOT_GH_BINARY must not be empty.")
        if self.gh.timeout_seconds <= 0:
            raise ValueError("ISSUE_PILOT_GH_TIMEOUT_SECONDS must be > 0.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
