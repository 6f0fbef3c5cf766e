"""Workflow domain events."""

from __future__ import annotations

from stackpilot.domain.models.base import DomainEvent


class EnvironmentProvisioned(DomainEvent):
    """Emitted when an environment stack is created, linked and stored."""

    project: str
    environment: str
    account_id: str
    region: str
    event_type: str = "environment.provisioned"


class EnvironmentAlreadyProvisioned(DomainEvent):
    """Emitted when bring-up finds the environment stack already in place."""

    project: str
    environment: str
    event_type: str = "environment.already_provisioned"


class ApplicationDeployed(DomainEvent):
    """Emitted when an application change set is applied."""

    project: str
    environment: str
    application: str
    image_tag: str
    change_set_name: str
    endpoint: str = ""
    event_type: str = "application.deployed"


class WorkflowAborted(DomainEvent):
    """Emitted when a workflow run stops on a failed step."""

    workflow: str
    step: str
    error_message: str
    event_type: str = "workflow.aborted"
