"""Diagnostics sinks for verbose validation and lock reporting."""

from __future__ import annotations

import logging
from typing import Protocol


class DiagnosticsSink(Protocol):
    """Receiver for human-readable diagnostic messages."""

    def emit(self, message: str) -> None:
        """Record one diagnostic line."""


class NullDiagnostics:
    """Sink that discards everything."""

    def emit(self, message: str) -> None:
        del message


class LoggingDiagnostics:
    """Forward diagnostics to a logger at DEBUG level."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("issue_pilot.diagnostics")

    def emit(self, message: str) -> None:
        self._logger.debug("%s", message)


NULL_DIAGNOSTICS = NullDiagnostics()
