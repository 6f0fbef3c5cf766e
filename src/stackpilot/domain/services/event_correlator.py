"""Projects raw stack events onto ordered progress phases."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence

import structlog

from stackpilot.domain.models.progress import PhaseRow, ProgressPhase
from stackpilot.domain.models.stack import EventStream, ProvisioningEvent, StreamResult
from stackpilot.infrastructure.observability.metrics import PROVISIONING_EVENTS_TOTAL


logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[list[PhaseRow]], Awaitable[None] | None]


class EventCorrelator:
    """Counts completed resources per phase.

    Each phase counts a logical resource at most once, and only once the
    resource reports a completed status. Counters never exceed the phase's
    expected count. Events that match no phase are dropped. An event is
    checked against every phase, so one resource may advance several phases.
    """

    def __init__(self, phases: Sequence[ProgressPhase]) -> None:
        self._phases = tuple(phases)
        self._seen: list[set[str]] = [set() for _ in self._phases]
        self._last_status: list[str] = ["" for _ in self._phases]
        self._event_count = 0

    @property
    def phases(self) -> tuple[ProgressPhase, ...]:
        return self._phases

    @property
    def event_count(self) -> int:
        return self._event_count

    def observe(self, event: ProvisioningEvent) -> bool:
        """Apply one event. Returns True if any row changed."""
        self._event_count += 1
        changed = False
        matched = False
        for index, phase in enumerate(self._phases):
            if not phase.matches(event):
                continue
            matched = True
            PROVISIONING_EVENTS_TOTAL.labels(phase=phase.label).inc()
            if self._last_status[index] != event.status:
                self._last_status[index] = event.status
                changed = True
            seen = self._seen[index]
            if (
                event.is_complete
                and event.logical_name not in seen
                and len(seen) < phase.expected_count
            ):
                seen.add(event.logical_name)
                changed = True
        if not matched:
            PROVISIONING_EVENTS_TOTAL.labels(phase="unmatched").inc()
            logger.debug(
                "provisioning_event_unmatched",
                resource_type=event.resource_type,
                logical_name=event.logical_name,
            )
        return changed

    def rows(self) -> list[PhaseRow]:
        """Phase rows in declared order."""
        return [
            PhaseRow(
                label=phase.label,
                observed=len(self._seen[index]),
                expected=phase.expected_count,
                last_status=self._last_status[index],
            )
            for index, phase in enumerate(self._phases)
        ]

    @property
    def all_complete(self) -> bool:
        return all(row.complete for row in self.rows())

    async def consume(
        self,
        stream: EventStream,
        on_progress: ProgressCallback | None = None,
    ) -> StreamResult:
        """Drain the stream until the watcher closes it, then return its result.

        Events queued ahead of the sentinel were produced before the
        watcher settled, so they are all applied. A terminal error is then
        re-raised; rows keep whatever progress those events produced.
        """
        while True:
            event = await stream.events.get()
            if event is None:
                break
            if self.observe(event) and on_progress is not None:
                maybe_awaitable = on_progress(self.rows())
                if maybe_awaitable is not None:
                    await maybe_awaitable

        try:
            result = await stream.result
        except Exception as e:
            logger.warning(
                "event_stream_failed",
                stack_name=stream.stack_name,
                events=self._event_count,
                error=str(e),
            )
            raise
        logger.info(
            "event_stream_closed",
            stack_name=stream.stack_name,
            status=result.status,
            events=self._event_count,
        )
        return result
