"""Domain events package."""

from stackpilot.domain.events.workflow_events import (
    ApplicationDeployed,
    EnvironmentAlreadyProvisioned,
    EnvironmentProvisioned,
    WorkflowAborted,
)


__all__ = [
    "ApplicationDeployed",
    "EnvironmentAlreadyProvisioned",
    "EnvironmentProvisioned",
    "WorkflowAborted",
]
