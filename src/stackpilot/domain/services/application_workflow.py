"""Application deploy workflow."""

from __future__ import annotations

import time

import structlog

from stackpilot.domain.models.base import AggregateRoot, ValueObject
from stackpilot.domain.models.project import Environment
from stackpilot.domain.models.stack import (
    app_stack_name,
    app_tags,
    AppTemplateParams,
    ChangeMode,
    CredentialContext,
    repository_name,
)
from stackpilot.domain.models.workflow import (
    ApplicationDeployment,
    ApplicationDeployStep as Step,
    DeploymentResult,
    WorkflowStepError,
)
from stackpilot.domain.ports.repositories import ProjectRegistry
from stackpilot.domain.ports.services import (
    CredentialProvider,
    EndpointDescriber,
    EventPublisher,
    ImageBuilder,
    ImageRegistry,
    ProgressReporter,
    SourceVersionResolver,
    StackBackend,
    TemplatePackager,
)
from stackpilot.domain.services.change_coordinator import ChangeCoordinator
from stackpilot.infrastructure.observability.metrics import (
    WORKFLOW_DURATION,
    WORKFLOW_RUNS_TOTAL,
)
from stackpilot.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)


class AppDeployRequest(ValueObject):
    project: str
    app: str
    env: str
    image_tag: str | None = None
    dockerfile_dir: str = "."


class DeployContexts(ValueObject):
    """The three credential contexts one deploy runs under."""

    registry: CredentialContext
    env_account: CredentialContext
    project_resources: CredentialContext


class ApplicationWorkflow:
    """Builds, pushes and deploys one application image into an environment.

    A single pass that aborts on the first failing step. Nothing is undone
    on failure: an image pushed before a failed stack apply stays in the
    repository.
    Without an explicit tag the image is tagged with the version of the
    source checkout holding the Dockerfile.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        credentials: CredentialProvider,
        image_registry: ImageRegistry,
        image_builder: ImageBuilder,
        versions: SourceVersionResolver,
        packager: TemplatePackager,
        backend: StackBackend,
        endpoints: EndpointDescriber,
        progress: ProgressReporter,
        event_publisher: EventPublisher,
    ) -> None:
        self._registry = registry
        self._credentials = credentials
        self._image_registry = image_registry
        self._image_builder = image_builder
        self._versions = versions
        self._packager = packager
        self._coordinator = ChangeCoordinator(backend)
        self._endpoints = endpoints
        self._progress = progress
        self._event_publisher = event_publisher

    async def _publish_events(self, aggregate: AggregateRoot) -> None:
        for event in aggregate.collect_events():
            await self._event_publisher.publish(event.event_type, event.model_dump())

    async def run(self, request: AppDeployRequest) -> DeploymentResult:
        run = ApplicationDeployment(
            project=request.project,
            environment_name=request.env,
            application=request.app,
        )
        started = time.monotonic()
        with get_tracer().start_as_current_span("application_deploy") as span:
            span.set_attribute("project", request.project)
            span.set_attribute("environment", request.env)
            span.set_attribute("application", request.app)
            error = await self._execute(run, request)
            span.set_attribute("outcome", run.state.value)

        WORKFLOW_RUNS_TOTAL.labels(workflow=run.KIND.value, outcome=run.state.value).inc()
        WORKFLOW_DURATION.labels(workflow=run.KIND.value).observe(time.monotonic() - started)
        await self._publish_events(run)
        return run.to_result(error)

    async def _execute(
        self, run: ApplicationDeployment, request: AppDeployRequest
    ) -> WorkflowStepError | None:
        step = Step.ENVIRONMENT_RESOLVED
        resource = f"environment {request.env}"
        try:
            env = await self._registry.get_environment(request.project, request.env)
            resource = f"application {request.app}"
            await self._registry.get_application(request.project, request.app)
            run.environment = env
            run.advance(Step.ENVIRONMENT_RESOLVED)

            step = Step.CREDENTIALS_CONFIGURED
            contexts = await self._configure_contexts(env)
            run.advance(Step.CREDENTIALS_CONFIGURED)

            step = Step.REPOSITORY_RESOLVED
            resource = f"repository {repository_name(request.project, request.app)}"
            run.repository_uri = await self._image_registry.get_repository(
                repository_name(request.project, request.app), contexts.registry
            )
            run.advance(Step.REPOSITORY_RESOLVED)

            uri = run.repository_uri
            step, resource = Step.IMAGE_BUILT, f"image {uri}"
            tag = request.image_tag or await self._versions.version_tag(request.dockerfile_dir)
            run.image_tag = tag
            resource = f"image {uri}:{tag}"
            await self._image_builder.build(uri, tag, request.dockerfile_dir)
            run.advance(Step.IMAGE_BUILT)

            step = Step.IMAGE_PUSHED
            username, password = await self._image_registry.get_auth(contexts.registry)
            await self._image_builder.login(uri, username, password)
            await self._image_builder.push(uri, tag)
            run.advance(Step.IMAGE_PUSHED)

            params = AppTemplateParams(
                project=request.project,
                app=request.app,
                env=env.name,
                image_tag=tag,
                repository_uri=uri,
            )
            step, resource = Step.TEMPLATE_RENDERED, f"application {request.app}"
            template = await self._packager.package_application(
                params, contexts.project_resources
            )
            run.advance(Step.TEMPLATE_RENDERED)

            stack_name = app_stack_name(request.project, env.name, request.app)
            step, resource = Step.CHANGE_SET_NAMED, f"stack {stack_name}"
            run.change_set_name = self._coordinator.new_change_set_name(stack_name)
            run.advance(Step.CHANGE_SET_NAMED)

            step = Step.CHANGE_APPLIED
            await self._apply(template, stack_name, run, env, contexts)
            run.advance(Step.CHANGE_APPLIED)

            step, resource = Step.ENDPOINT_RESOLVED, f"application {request.app}"
            run.endpoint = await self._endpoints.uri(request.project, request.app, env.name)
            run.advance(Step.ENDPOINT_RESOLVED)

            run.complete()
            logger.info(
                "application_deployed",
                project=request.project,
                application=request.app,
                environment=env.name,
                image_tag=tag,
                endpoint=run.endpoint,
            )
            return None
        except Exception as e:
            logger.warning(
                "application_deploy_aborted",
                project=request.project,
                application=request.app,
                environment=request.env,
                step=step.value,
                error=str(e),
            )
            run.abort(step.value, e)
            return WorkflowStepError(step.value, resource, e)

    async def _configure_contexts(self, env: Environment) -> DeployContexts:
        # Registry and packaging run in the tools account, in the env's region.
        registry_ctx = await self._credentials.default_with_region(env.region)
        # The app stack lives in the environment's account.
        env_ctx = await self._credentials.from_role(env.manager_role_arn, env.region)
        project_ctx = await self._credentials.default()
        return DeployContexts(
            registry=registry_ctx,
            env_account=env_ctx,
            project_resources=project_ctx,
        )

    async def _apply(
        self,
        template: str,
        stack_name: str,
        run: ApplicationDeployment,
        env: Environment,
        contexts: DeployContexts,
    ) -> None:
        self._progress.start(f"Deploying {run.application}:{run.image_tag} to {env.name}.")
        try:
            await self._coordinator.apply_change(
                template=template,
                stack_name=stack_name,
                change_set_name=run.change_set_name or "",
                context=contexts.env_account,
                execution_role_arn=env.execution_role_arn,
                tags=app_tags(run.project, env.name, run.application),
                mode=ChangeMode.CREATE_OR_UPDATE,
            )
        except Exception:
            self._progress.stop("Error!")
            raise
        self._progress.stop("")
