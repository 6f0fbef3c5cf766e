"""Workflow run aggregates with explicit state machines."""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from pydantic import Field

from stackpilot.domain.events.workflow_events import (
    ApplicationDeployed,
    EnvironmentAlreadyProvisioned,
    EnvironmentProvisioned,
    WorkflowAborted,
)
from stackpilot.domain.models.base import AggregateRoot, ValueObject
from stackpilot.domain.models.progress import PhaseRow
from stackpilot.domain.models.project import Environment


class WorkflowKind(str, Enum):
    ENVIRONMENT_INIT = "environment_init"
    APPLICATION_DEPLOY = "application_deploy"


class EnvironmentWorkflowState(str, Enum):
    """Environment bring-up states; each names the last step that succeeded."""

    START = "start"
    PROJECT_RESOLVED = "project_resolved"
    DNS_DELEGATED = "dns_delegated"
    CHANGE_APPLIED = "change_applied"
    EVENTS_STREAMED = "events_streamed"
    LINKED_TO_PROJECT = "linked_to_project"
    PERSISTED = "persisted"
    DONE = "done"
    ABORTED = "aborted"


_E = EnvironmentWorkflowState

ENV_WORKFLOW_TRANSITIONS: dict[EnvironmentWorkflowState, set[EnvironmentWorkflowState]] = {
    _E.START: {_E.PROJECT_RESOLVED, _E.ABORTED},
    _E.PROJECT_RESOLVED: {_E.DNS_DELEGATED, _E.CHANGE_APPLIED, _E.ABORTED},
    _E.DNS_DELEGATED: {_E.CHANGE_APPLIED, _E.ABORTED},
    # CHANGE_APPLIED -> DONE is the "stack already exists" short-circuit.
    _E.CHANGE_APPLIED: {_E.EVENTS_STREAMED, _E.DONE, _E.ABORTED},
    _E.EVENTS_STREAMED: {_E.LINKED_TO_PROJECT, _E.ABORTED},
    _E.LINKED_TO_PROJECT: {_E.PERSISTED, _E.ABORTED},
    _E.PERSISTED: {_E.DONE},
    _E.DONE: set(),
    _E.ABORTED: set(),
}


class ApplicationDeployStep(str, Enum):
    """Application deploy steps in execution order."""

    START = "start"
    ENVIRONMENT_RESOLVED = "environment_resolved"
    CREDENTIALS_CONFIGURED = "credentials_configured"
    REPOSITORY_RESOLVED = "repository_resolved"
    IMAGE_BUILT = "image_built"
    IMAGE_PUSHED = "image_pushed"
    TEMPLATE_RENDERED = "template_rendered"
    CHANGE_SET_NAMED = "change_set_named"
    CHANGE_APPLIED = "change_applied"
    ENDPOINT_RESOLVED = "endpoint_resolved"
    DONE = "done"
    ABORTED = "aborted"


_A = ApplicationDeployStep
_APP_ORDER = [step for step in ApplicationDeployStep if step != _A.ABORTED]

APP_DEPLOY_TRANSITIONS: dict[ApplicationDeployStep, set[ApplicationDeployStep]] = {
    step: {nxt, _A.ABORTED} for step, nxt in zip(_APP_ORDER, _APP_ORDER[1:])
}
APP_DEPLOY_TRANSITIONS[_A.DONE] = set()
APP_DEPLOY_TRANSITIONS[_A.ABORTED] = set()


class DeploymentResult(ValueObject):
    """Terminal outcome of one workflow run."""

    workflow: WorkflowKind
    run_id: str
    success: bool
    completed_states: list[str] = Field(default_factory=list)
    environment: Environment | None = None
    endpoint: str = ""
    change_set_name: str = ""
    image_tag: str = ""
    already_provisioned: bool = False
    failed_step: str = ""
    error: Exception | None = Field(default=None, exclude=True)

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class WorkflowRun(AggregateRoot):
    """Shared state-machine behaviour of the workflow aggregates."""

    KIND: ClassVar[WorkflowKind]
    TRANSITIONS: ClassVar[dict[Any, set[Any]]]
    ABORTED: ClassVar[Any]
    DONE: ClassVar[Any]

    project: str
    history: list[str] = Field(default_factory=list)
    failed_step: str = ""
    error_message: str = ""

    def _transition_to(self, new_state: Any) -> None:
        current = self.state  # type: ignore[attr-defined]
        valid = self.TRANSITIONS.get(current, set())
        if new_state not in valid:
            raise InvalidWorkflowTransitionError(
                f"{self.KIND.value} cannot transition from {current.value} to {new_state.value}. "
                f"Valid transitions: {sorted(s.value for s in valid)}"
            )
        self.state = new_state  # type: ignore[attr-defined]
        self.history.append(new_state.value)
        self.touch()

    def abort(self, step: str, error: BaseException) -> None:
        """Move to the aborted state, recording which step failed."""
        self.failed_step = step
        self.error_message = str(error)
        self._transition_to(self.ABORTED)
        self.add_event(WorkflowAborted(
            run_id=self.id,
            workflow=self.KIND.value,
            step=step,
            error_message=self.error_message,
        ))

    @property
    def is_terminal(self) -> bool:
        return self.state in {self.DONE, self.ABORTED}  # type: ignore[attr-defined]

    @property
    def completed_states(self) -> list[str]:
        return [s for s in self.history if s != self.ABORTED.value]


class EnvironmentBringUp(WorkflowRun):
    """One run of the environment bring-up workflow."""

    KIND: ClassVar[WorkflowKind] = WorkflowKind.ENVIRONMENT_INIT
    TRANSITIONS: ClassVar[dict[Any, set[Any]]] = ENV_WORKFLOW_TRANSITIONS
    ABORTED: ClassVar[Any] = EnvironmentWorkflowState.ABORTED
    DONE: ClassVar[Any] = EnvironmentWorkflowState.DONE

    environment_name: str
    prod: bool = False
    state: EnvironmentWorkflowState = EnvironmentWorkflowState.START
    environment: Environment | None = None
    already_provisioned: bool = False
    progress: list[PhaseRow] = Field(default_factory=list)

    def advance(self, state: EnvironmentWorkflowState) -> None:
        self._transition_to(state)

    def mark_already_provisioned(self) -> None:
        self.already_provisioned = True
        self._transition_to(EnvironmentWorkflowState.DONE)
        self.add_event(EnvironmentAlreadyProvisioned(
            run_id=self.id,
            project=self.project,
            environment=self.environment_name,
        ))

    def complete(self) -> None:
        if self.environment is None:
            raise InvalidWorkflowTransitionError(
                f"environment run {self.id} cannot complete without an environment"
            )
        self._transition_to(EnvironmentWorkflowState.DONE)
        self.add_event(EnvironmentProvisioned(
            run_id=self.id,
            project=self.project,
            environment=self.environment.name,
            account_id=self.environment.account_id,
            region=self.environment.region,
        ))

    def to_result(self, error: Exception | None = None) -> DeploymentResult:
        return DeploymentResult(
            workflow=self.KIND,
            run_id=self.id,
            success=self.state == EnvironmentWorkflowState.DONE,
            completed_states=self.completed_states,
            environment=self.environment,
            already_provisioned=self.already_provisioned,
            failed_step=self.failed_step,
            error=error,
        )


class ApplicationDeployment(WorkflowRun):
    """One run of the application deploy workflow."""

    KIND: ClassVar[WorkflowKind] = WorkflowKind.APPLICATION_DEPLOY
    TRANSITIONS: ClassVar[dict[Any, set[Any]]] = APP_DEPLOY_TRANSITIONS
    ABORTED: ClassVar[Any] = ApplicationDeployStep.ABORTED
    DONE: ClassVar[Any] = ApplicationDeployStep.DONE

    environment_name: str
    application: str
    image_tag: str = ""
    state: ApplicationDeployStep = ApplicationDeployStep.START
    environment: Environment | None = None
    repository_uri: str = ""
    change_set_name: str | None = None
    endpoint: str = ""

    def advance(self, step: ApplicationDeployStep) -> None:
        self._transition_to(step)

    def complete(self) -> None:
        self._transition_to(ApplicationDeployStep.DONE)
        self.add_event(ApplicationDeployed(
            run_id=self.id,
            project=self.project,
            environment=self.environment_name,
            application=self.application,
            image_tag=self.image_tag,
            change_set_name=self.change_set_name or "",
            endpoint=self.endpoint,
        ))

    def to_result(self, error: Exception | None = None) -> DeploymentResult:
        return DeploymentResult(
            workflow=self.KIND,
            run_id=self.id,
            success=self.state == ApplicationDeployStep.DONE,
            completed_states=self.completed_states,
            environment=self.environment,
            endpoint=self.endpoint,
            change_set_name=self.change_set_name or "",
            image_tag=self.image_tag,
            failed_step=self.failed_step,
            error=error,
        )


class InvalidWorkflowTransitionError(Exception):
    """Raised when an invalid workflow state transition is attempted."""


class WorkflowStepError(Exception):
    """A workflow step failed; chained to the underlying cause."""

    def __init__(self, step: str, resource: str, cause: BaseException) -> None:
        super().__init__(f"{step} for {resource}: {cause}")
        self.step = step
        self.resource = resource
        self.__cause__ = cause
