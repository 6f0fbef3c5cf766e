"""Unit tests for the logging progress reporter."""

from __future__ import annotations

from stackpilot.domain.models.progress import PhaseRow
from stackpilot.infrastructure.progress.reporter import LoggingProgressReporter


class TestLoggingProgressReporter:
    def test_transcript_records_start_and_stop(self, progress: LoggingProgressReporter) -> None:
        progress.start("Proposing infrastructure changes for the test environment.")
        progress.stop("Error!")
        assert progress.transcript == [
            "Proposing infrastructure changes for the test environment.",
            "Error!",
        ]

    def test_empty_stop_message_not_recorded(self, progress: LoggingProgressReporter) -> None:
        progress.start("Deploying frontend:v1 to test.")
        progress.stop("")
        assert progress.transcript == ["Deploying frontend:v1 to test."]

    def test_latest_rows_replaced(self, progress: LoggingProgressReporter) -> None:
        progress.events([PhaseRow(label="vpc", observed=0)])
        progress.events([PhaseRow(label="vpc", observed=1)])
        assert [row.observed for row in progress.latest_rows] == [1]
