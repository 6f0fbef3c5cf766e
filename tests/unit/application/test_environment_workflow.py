"""Unit tests for the environment bring-up workflow."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from stackpilot.domain.models.progress import PhaseState
from stackpilot.domain.models.project import Environment, Project
from stackpilot.domain.models.stack import ChangeMode, CredentialContext, StackChangeRequest
from stackpilot.domain.models.workflow import WorkflowStepError
from stackpilot.domain.ports.repositories import (
    EnvironmentAlreadyExistsError,
    ProjectNotFoundError,
)
from stackpilot.domain.ports.services import CredentialResolutionError, StreamFailedError
from stackpilot.domain.services.change_coordinator import ChangeApplicationError
from stackpilot.domain.services.environment_workflow import (
    EnvironmentInitRequest,
    EnvironmentWorkflow,
)
from stackpilot.infrastructure.aws.simulated import (
    SimulatedDnsDelegationGrantor,
    SimulatedStackBackend,
)
from stackpilot.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from stackpilot.infrastructure.persistence.repositories.in_memory import InMemoryProjectRegistry
from stackpilot.infrastructure.progress.reporter import LoggingProgressReporter


TOOLS_ACCOUNT = "111111111111"
ENV_ACCOUNT = "222222222222"

FULL_RUN = [
    "project_resolved",
    "change_applied",
    "events_streamed",
    "linked_to_project",
    "persisted",
    "done",
]

MakeWorkflow = Callable[..., EnvironmentWorkflow]


class OrderRecordingGrantor(SimulatedDnsDelegationGrantor):
    """Records how many change sets had been submitted when delegation ran."""

    def __init__(self, backend: SimulatedStackBackend) -> None:
        super().__init__()
        self._backend = backend
        self.requests_before_grant: list[int] = []

    async def delegate_permissions(self, project: Project, account_id: str) -> None:
        self.requests_before_grant.append(len(self._backend.requests))
        await super().delegate_permissions(project, account_id)


class FailingLinkRegistry(InMemoryProjectRegistry):
    async def link_environment_to_project(
        self, project: Project, environment: Environment
    ) -> None:
        raise RuntimeError("stackset operation in progress")


def _init(project: str = "phonetool", name: str = "test", **kwargs: object) -> EnvironmentInitRequest:
    return EnvironmentInitRequest(project=project, name=name, **kwargs)  # type: ignore[arg-type]


class TestFreshEnvironment:
    @pytest.mark.asyncio
    async def test_full_bring_up(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        sample_project: Project,
        progress: LoggingProgressReporter,
    ) -> None:
        await registry.create_project(sample_project)

        result = await environment_workflow.run(_init())

        assert result.success
        assert not result.already_provisioned
        assert result.completed_states == FULL_RUN
        assert result.error is None
        env = result.environment
        assert env is not None
        assert env.account_id == TOOLS_ACCOUNT
        assert env.region == "us-west-2"
        assert env.manager_role_arn.startswith(f"arn:aws:iam::{TOOLS_ACCOUNT}:role/")
        assert env.execution_role_arn.startswith(f"arn:aws:iam::{TOOLS_ACCOUNT}:role/")
        assert progress.latest_rows
        assert all(row.state == PhaseState.COMPLETE for row in progress.latest_rows)

    @pytest.mark.asyncio
    async def test_environment_persisted_and_linked(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)

        await environment_workflow.run(_init(profile="test-env", prod=True))

        stored = await registry.get_environment("phonetool", "test")
        assert stored.account_id == ENV_ACCOUNT
        assert stored.prod
        assert await registry.list_linked_accounts("phonetool") == [(ENV_ACCOUNT, "us-west-2")]

    @pytest.mark.asyncio
    async def test_create_mode_used_for_environment_stack(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        backend: SimulatedStackBackend,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)

        await environment_workflow.run(_init())

        request = backend.requests[0]
        assert request.stack_name == "phonetool-test"
        assert request.mode == ChangeMode.CREATE
        assert request.change_set_name.startswith("phonetool-test-")

    @pytest.mark.asyncio
    async def test_provisioned_event_published(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        event_publisher: InMemoryEventPublisher,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)

        result = await environment_workflow.run(_init())

        events = event_publisher.of_type("environment.provisioned")
        assert len(events) == 1
        assert events[0]["run_id"] == result.run_id
        assert events[0]["environment"] == "test"


class TestAlreadyProvisioned:
    @pytest.mark.asyncio
    async def test_rerun_short_circuits_after_change(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        event_publisher: InMemoryEventPublisher,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)
        await environment_workflow.run(_init())

        result = await environment_workflow.run(_init())

        assert result.success
        assert result.already_provisioned
        assert result.completed_states == ["project_resolved", "change_applied", "done"]
        assert len(await registry.list_environments("phonetool")) == 1
        assert len(await registry.list_linked_accounts("phonetool")) == 1
        assert len(event_publisher.of_type("environment.already_provisioned")) == 1

    @pytest.mark.asyncio
    async def test_existing_stack_makes_no_registry_writes(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        backend: SimulatedStackBackend,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)
        await backend.apply_change(StackChangeRequest(
            stack_name="phonetool-test",
            change_set_name="phonetool-test-manual",
            template="{}",
            context=CredentialContext(),
        ))

        result = await environment_workflow.run(_init())

        assert result.success
        assert result.already_provisioned
        assert result.environment is None
        assert await registry.list_environments("phonetool") == []
        assert await registry.list_linked_accounts("phonetool") == []


class TestDnsDelegation:
    @pytest.mark.asyncio
    async def test_cross_account_delegates_once_before_apply(
        self,
        make_environment_workflow: MakeWorkflow,
        registry: InMemoryProjectRegistry,
        backend: SimulatedStackBackend,
        dns_project: Project,
    ) -> None:
        await registry.create_project(dns_project)
        grantor = OrderRecordingGrantor(backend)
        workflow = make_environment_workflow(dns_grantor=grantor)

        result = await workflow.run(_init(project="chatapp", name="prod", profile="test-env"))

        assert result.success
        assert grantor.grants == [("chatapp", ENV_ACCOUNT)]
        assert grantor.requests_before_grant == [0]
        assert result.completed_states[:3] == [
            "project_resolved",
            "dns_delegated",
            "change_applied",
        ]

    @pytest.mark.asyncio
    async def test_same_account_skips_grant(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        dns_grantor: SimulatedDnsDelegationGrantor,
        dns_project: Project,
    ) -> None:
        await registry.create_project(dns_project)

        result = await environment_workflow.run(_init(project="chatapp"))

        assert result.success
        assert dns_grantor.grants == []

    @pytest.mark.asyncio
    async def test_project_without_domain_skips_delegation(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        dns_grantor: SimulatedDnsDelegationGrantor,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)

        result = await environment_workflow.run(_init(profile="test-env"))

        assert "dns_delegated" not in result.completed_states
        assert dns_grantor.grants == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_project_aborts_before_any_change(
        self,
        environment_workflow: EnvironmentWorkflow,
        backend: SimulatedStackBackend,
        event_publisher: InMemoryEventPublisher,
    ) -> None:
        result = await environment_workflow.run(_init(project="ghost"))

        assert not result.success
        assert result.failed_step == "project_resolved"
        assert result.completed_states == []
        assert isinstance(result.error, WorkflowStepError)
        assert isinstance(result.error.__cause__, ProjectNotFoundError)
        assert backend.requests == []
        assert len(event_publisher.of_type("workflow.aborted")) == 1

    @pytest.mark.asyncio
    async def test_unknown_profile_aborts(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        backend: SimulatedStackBackend,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)

        result = await environment_workflow.run(_init(profile="nope"))

        assert result.failed_step == "project_resolved"
        assert isinstance(result.error, WorkflowStepError)
        assert isinstance(result.error.__cause__, CredentialResolutionError)
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_backend_rejection_reported(
        self,
        make_environment_workflow: MakeWorkflow,
        registry: InMemoryProjectRegistry,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)
        workflow = make_environment_workflow(
            backend=SimulatedStackBackend(fail_apply="bad template")
        )

        result = await workflow.run(_init())

        assert not result.success
        assert result.failed_step == "change_applied"
        assert isinstance(result.error, WorkflowStepError)
        assert isinstance(result.error.__cause__, ChangeApplicationError)
        assert "phonetool-test" in result.error_message
        with pytest.raises(WorkflowStepError):
            result.raise_for_error()

    @pytest.mark.asyncio
    async def test_stream_failure_keeps_partial_progress(
        self,
        make_environment_workflow: MakeWorkflow,
        registry: InMemoryProjectRegistry,
        progress: LoggingProgressReporter,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)
        workflow = make_environment_workflow(backend=SimulatedStackBackend(fail_after=6))

        result = await workflow.run(_init())

        assert not result.success
        assert result.failed_step == "events_streamed"
        assert result.completed_states == ["project_resolved", "change_applied"]
        assert isinstance(result.error, WorkflowStepError)
        cause = result.error.__cause__
        assert isinstance(cause, StreamFailedError)
        assert cause.status == "ROLLBACK_COMPLETE"
        assert progress.latest_rows
        assert not all(row.complete for row in progress.latest_rows)
        assert await registry.list_environments("phonetool") == []

    @pytest.mark.asyncio
    async def test_link_failure_leaves_stack_provisioned(
        self,
        make_environment_workflow: MakeWorkflow,
        backend: SimulatedStackBackend,
        sample_project: Project,
    ) -> None:
        registry = FailingLinkRegistry()
        await registry.create_project(sample_project)
        workflow = make_environment_workflow(registry=registry)

        result = await workflow.run(_init())

        assert result.failed_step == "linked_to_project"
        assert result.completed_states == [
            "project_resolved",
            "change_applied",
            "events_streamed",
        ]
        assert "phonetool-test" in backend.stacks
        assert await registry.list_environments("phonetool") == []

    @pytest.mark.asyncio
    async def test_persist_failure_reported_after_link(
        self,
        environment_workflow: EnvironmentWorkflow,
        registry: InMemoryProjectRegistry,
        sample_project: Project,
    ) -> None:
        await registry.create_project(sample_project)
        await registry.create_environment(Environment(
            name="test", project="phonetool", account_id=TOOLS_ACCOUNT, region="us-west-2"
        ))

        result = await environment_workflow.run(_init())

        assert result.failed_step == "persisted"
        assert isinstance(result.error, WorkflowStepError)
        assert isinstance(result.error.__cause__, EnvironmentAlreadyExistsError)
        assert await registry.list_linked_accounts("phonetool") == [(TOOLS_ACCOUNT, "us-west-2")]
