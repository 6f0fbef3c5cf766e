"""Prometheus metrics."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
)


APP_INFO = Info("stackpilot", "Stack deployment engine info")
APP_INFO.info({
    "version": "0.1.0",
    "service": "stackpilot",
})

WORKFLOW_RUNS_TOTAL = Counter(
    "stackpilot_workflow_runs_total",
    "Workflow runs by terminal outcome",
    ["workflow", "outcome"],  # outcome: done, aborted, already_provisioned
)

WORKFLOW_DURATION = Histogram(
    "stackpilot_workflow_duration_seconds",
    "Wall-clock duration of a workflow run",
    ["workflow"],
    buckets=[1, 5, 30, 60, 180, 300, 600, 1200, 1800],
)

STACK_CHANGES_TOTAL = Counter(
    "stackpilot_stack_changes_total",
    "Change sets submitted to the stack backend",
    ["mode", "result"],  # result: accepted, already_exists, rejected
)

PROVISIONING_EVENTS_TOTAL = Counter(
    "stackpilot_provisioning_events_total",
    "Provisioning events observed, by matched phase",
    ["phase"],
)
