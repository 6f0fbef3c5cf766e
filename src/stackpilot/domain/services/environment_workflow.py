"""Environment bring-up workflow."""

from __future__ import annotations

import time
from typing import Any

import structlog

from stackpilot.domain.models.base import AggregateRoot, ValueObject
from stackpilot.domain.models.progress import ENVIRONMENT_PHASES, PhaseRow
from stackpilot.domain.models.project import Environment, Project
from stackpilot.domain.models.stack import (
    ChangeMode,
    CreateEnvironmentInput,
    CredentialContext,
    StreamResult,
)
from stackpilot.domain.models.workflow import (
    DeploymentResult,
    EnvironmentBringUp,
    EnvironmentWorkflowState as State,
    WorkflowStepError,
)
from stackpilot.domain.ports.repositories import ProjectRegistry
from stackpilot.domain.ports.services import (
    CredentialProvider,
    DnsDelegationGrantor,
    EventPublisher,
    IdentityResolver,
    ProgressReporter,
    StackAlreadyExistsError,
    StackBackend,
    TemplatePackager,
)
from stackpilot.domain.services.change_coordinator import ChangeCoordinator
from stackpilot.domain.services.event_correlator import EventCorrelator
from stackpilot.infrastructure.observability.metrics import (
    WORKFLOW_DURATION,
    WORKFLOW_RUNS_TOTAL,
)
from stackpilot.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)

MANAGER_ROLE_OUTPUT = "EnvironmentManagerRoleARN"
EXECUTION_ROLE_OUTPUT = "CFNExecutionRoleARN"


class EnvironmentInitRequest(ValueObject):
    project: str
    name: str
    profile: str = ""
    prod: bool = False


class EnvironmentWorkflow:
    """Brings up one environment and registers it with its project.

    Steps run in a fixed order and the run stops at the first failure. The
    only re-entry guard is the ``create`` change: if the environment stack
    already exists the run finishes successfully right after the change
    step, without streaming, linking or persisting.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        credentials: CredentialProvider,
        identity: IdentityResolver,
        backend: StackBackend,
        packager: TemplatePackager,
        dns_grantor: DnsDelegationGrantor,
        progress: ProgressReporter,
        event_publisher: EventPublisher,
        public_load_balancer: bool = True,
    ) -> None:
        self._registry = registry
        self._credentials = credentials
        self._identity = identity
        self._backend = backend
        self._coordinator = ChangeCoordinator(backend)
        self._packager = packager
        self._dns_grantor = dns_grantor
        self._progress = progress
        self._event_publisher = event_publisher
        self._public_load_balancer = public_load_balancer

    async def _publish_events(self, aggregate: AggregateRoot) -> None:
        for event in aggregate.collect_events():
            await self._event_publisher.publish(event.event_type, event.model_dump())

    async def run(self, request: EnvironmentInitRequest) -> DeploymentResult:
        run = EnvironmentBringUp(
            project=request.project,
            environment_name=request.name,
            prod=request.prod,
        )
        started = time.monotonic()
        with get_tracer().start_as_current_span("environment_init") as span:
            span.set_attribute("project", request.project)
            span.set_attribute("environment", request.name)
            error = await self._execute(run, request)
            span.set_attribute("outcome", run.state.value)

        outcome = "already_provisioned" if run.already_provisioned else run.state.value
        WORKFLOW_RUNS_TOTAL.labels(workflow=run.KIND.value, outcome=outcome).inc()
        WORKFLOW_DURATION.labels(workflow=run.KIND.value).observe(time.monotonic() - started)
        await self._publish_events(run)
        return run.to_result(error)

    async def _execute(
        self, run: EnvironmentBringUp, request: EnvironmentInitRequest
    ) -> WorkflowStepError | None:
        env_name = request.name
        step = State.PROJECT_RESOLVED
        resource = f"project {request.project}"
        correlator = EventCorrelator(ENVIRONMENT_PHASES)
        try:
            # Precondition checks; nothing is mutated before this point.
            project = await self._registry.get_project(request.project)
            env_ctx = await self._env_context(request.profile)
            tools_ctx = await self._credentials.default()
            run.advance(State.PROJECT_RESOLVED)

            if project.requires_dns_delegation:
                step, resource = State.DNS_DELEGATED, f"project {project.name}"
                await self._delegate_dns(project, env_ctx)
                run.advance(State.DNS_DELEGATED)

            step, resource = State.CHANGE_APPLIED, f"environment {env_name}"
            caller = await self._identity.get(tools_ctx)
            env_input = CreateEnvironmentInput(
                name=env_name,
                project=project.name,
                prod=request.prod,
                public_load_balancer=self._public_load_balancer,
                tools_account_principal_arn=caller.root_user_arn,
                project_dns_name=project.domain,
            )
            if await self._apply(env_input, env_ctx):
                run.advance(State.CHANGE_APPLIED)
                run.mark_already_provisioned()
                return None
            run.advance(State.CHANGE_APPLIED)

            step = State.EVENTS_STREAMED
            result = await self._stream(env_input, env_ctx, correlator)
            run.progress = correlator.rows()
            run.environment = self._environment_from(result, env_input, env_ctx)
            run.advance(State.EVENTS_STREAMED)

            env = run.environment
            step = State.LINKED_TO_PROJECT
            resource = f"account {env.account_id} region {env.region}"
            self._progress.start(
                f"Linking account {env.account_id} and region {env.region} to project {project.name}."
            )
            try:
                await self._registry.link_environment_to_project(project, env)
            except Exception:
                self._progress.stop(
                    f"Failed to link account {env.account_id} and region {env.region} "
                    f"to project {project.name}."
                )
                raise
            self._progress.stop(
                f"Linked account {env.account_id} and region {env.region} project {project.name}."
            )
            run.advance(State.LINKED_TO_PROJECT)

            step, resource = State.PERSISTED, f"environment {env.name}"
            await self._registry.create_environment(env)
            run.advance(State.PERSISTED)

            run.complete()
            logger.info(
                "environment_created",
                project=project.name,
                environment=env.name,
                account_id=env.account_id,
                region=env.region,
            )
            return None
        except Exception as e:
            if step == State.EVENTS_STREAMED:
                run.progress = correlator.rows()
            logger.warning(
                "environment_init_aborted",
                project=request.project,
                environment=env_name,
                step=step.value,
                error=str(e),
            )
            run.abort(step.value, e)
            return WorkflowStepError(step.value, resource, e)

    async def _env_context(self, profile: str) -> CredentialContext:
        if profile:
            return await self._credentials.from_profile(profile)
        return await self._credentials.default()

    async def _delegate_dns(self, project: Project, env_ctx: CredentialContext) -> None:
        env_account = await self._identity.get(env_ctx)
        # Same-account delegation needs no extra permissions.
        if env_account.account == project.account_id:
            logger.info("dns_delegation_skipped", project=project.name, account=env_account.account)
            return

        self._progress.start(
            f"Sharing DNS permissions for this project to account {env_account.account}."
        )
        try:
            await self._dns_grantor.delegate_permissions(project, env_account.account)
        except Exception:
            self._progress.stop(
                f"Failed to grant DNS permissions to account {env_account.account}."
            )
            raise
        self._progress.stop(f"Shared DNS permissions with account {env_account.account}.")

    async def _apply(self, env_input: CreateEnvironmentInput, env_ctx: CredentialContext) -> bool:
        """Apply the environment change. Returns True if the stack already existed."""
        self._progress.start(
            f"Proposing infrastructure changes for the {env_input.name} environment."
        )
        try:
            template = await self._packager.package_environment(env_input)
            await self._coordinator.apply_change(
                template=template,
                stack_name=env_input.stack_name,
                change_set_name=self._coordinator.new_change_set_name(env_input.stack_name),
                context=env_ctx,
                mode=ChangeMode.CREATE,
            )
        except StackAlreadyExistsError:
            self._progress.stop("")
            logger.info(
                "environment_already_exists",
                project=env_input.project,
                environment=env_input.name,
            )
            return True
        except Exception:
            self._progress.stop(f"Failed to accept changes for the {env_input.name} environment.")
            raise
        return False

    async def _stream(
        self,
        env_input: CreateEnvironmentInput,
        env_ctx: CredentialContext,
        correlator: EventCorrelator,
    ) -> StreamResult:
        self._progress.start(f"Creating the infrastructure for the {env_input.name} environment.")
        stream = await self._backend.stream_events(env_input.stack_name, env_ctx)

        def _render(rows: list[PhaseRow]) -> None:
            self._progress.events(rows)

        try:
            result = await correlator.consume(stream, _render)
        except Exception:
            self._progress.stop(
                f"Failed to create the infrastructure for the {env_input.name} environment."
            )
            raise
        self._progress.stop(f"Created the infrastructure for the {env_input.name} environment.")
        return result

    @staticmethod
    def _environment_from(
        result: StreamResult,
        env_input: CreateEnvironmentInput,
        env_ctx: CredentialContext,
    ) -> Environment:
        outputs: dict[str, Any] = result.outputs
        return Environment(
            name=env_input.name,
            project=env_input.project,
            account_id=result.account_id or env_ctx.account_id,
            region=result.region or env_ctx.region,
            manager_role_arn=outputs.get(MANAGER_ROLE_OUTPUT, ""),
            execution_role_arn=outputs.get(EXECUTION_ROLE_OUTPUT, ""),
            prod=env_input.prod,
        )
