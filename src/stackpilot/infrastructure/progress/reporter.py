"""Progress reporter implementations."""

from __future__ import annotations

import structlog

from stackpilot.domain.models.progress import PhaseRow
from stackpilot.domain.ports.services import ProgressReporter


logger = structlog.get_logger(__name__)


class LoggingProgressReporter(ProgressReporter):
    """Writes progress to the structured log and keeps a transcript.

    The transcript is returned to HTTP callers so they see the same step
    messages a terminal user would.
    """

    def __init__(self) -> None:
        self._current = ""
        self._rows: list[PhaseRow] = []
        self.transcript: list[str] = []

    @property
    def latest_rows(self) -> list[PhaseRow]:
        return list(self._rows)

    def start(self, message: str) -> None:
        self._current = message
        self.transcript.append(message)
        logger.info("progress_started", message=message)

    def events(self, rows: list[PhaseRow]) -> None:
        self._rows = list(rows)
        logger.info(
            "progress_updated",
            step=self._current,
            phases=[row.render() for row in rows],
        )

    def stop(self, message: str) -> None:
        if message:
            self.transcript.append(message)
        logger.info("progress_stopped", step=self._current, message=message)
        self._current = ""
