"""Service dependencies for FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from stackpilot.config import get_settings, RegistryBackend, Settings
from stackpilot.domain.models.project import Application
from stackpilot.domain.models.stack import repository_name
from stackpilot.domain.ports.repositories import ProjectRegistry
from stackpilot.domain.ports.services import (
    CredentialProvider,
    DnsDelegationGrantor,
    EndpointDescriber,
    EventPublisher,
    IdentityResolver,
    ImageBuilder,
    ImageRegistry,
    ProgressReporter,
    SourceVersionResolver,
    StackBackend,
    TemplatePackager,
)
from stackpilot.domain.services.application_workflow import ApplicationWorkflow
from stackpilot.domain.services.environment_workflow import EnvironmentWorkflow
from stackpilot.infrastructure.aws.cloudformation import (
    CloudFormationDnsDelegationGrantor,
    CloudFormationEndpointDescriber,
    CloudFormationStackBackend,
)
from stackpilot.infrastructure.aws.ecr import EcrImageRegistry
from stackpilot.infrastructure.aws.identity import StsIdentityResolver
from stackpilot.infrastructure.aws.session import Boto3CredentialProvider
from stackpilot.infrastructure.aws.simulated import (
    SimulatedCredentialProvider,
    SimulatedDnsDelegationGrantor,
    SimulatedEndpointDescriber,
    SimulatedIdentityResolver,
    SimulatedImageRegistry,
    SimulatedStackBackend,
)
from stackpilot.infrastructure.docker.builder import DockerImageBuilder, SimulatedImageBuilder
from stackpilot.infrastructure.git.version import GitVersionResolver, StaticVersionResolver
from stackpilot.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from stackpilot.infrastructure.persistence.database import DatabaseManager
from stackpilot.infrastructure.persistence.repositories import (
    InMemoryProjectRegistry,
    PostgresProjectRegistry,
    UnitOfWorkProjectRegistry,
)
from stackpilot.infrastructure.templates.packager import CloudFormationTemplatePackager


class ServiceContainer:
    """Simple dependency injection container.

    Implements the Composition Root pattern: adapters are chosen once from
    settings (simulated or AWS, in-memory or Postgres registry) and each
    request gets workflows bound to its own registry and progress reporter.
    """

    _instance: ServiceContainer | None = None

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._event_publisher = InMemoryEventPublisher()
        self._packager = CloudFormationTemplatePackager(task_count=self._settings.deploy.task_count)
        self._database: DatabaseManager | None = None
        if self._settings.deploy.registry_backend == RegistryBackend.POSTGRES:
            self._database = DatabaseManager(self._settings.database)

        self._backend: StackBackend
        self._credentials: CredentialProvider
        self._identity: IdentityResolver
        self._image_registry: ImageRegistry
        self._image_builder: ImageBuilder
        self._versions: SourceVersionResolver
        self._dns_grantor: DnsDelegationGrantor
        if self._settings.deploy.simulate:
            self._backend = SimulatedStackBackend()
            self._credentials = SimulatedCredentialProvider(region=self._settings.aws.default_region)
            self._identity = SimulatedIdentityResolver()
            self._image_registry = SimulatedImageRegistry()
            self._image_builder = SimulatedImageBuilder()
            self._versions = StaticVersionResolver()
            self._dns_grantor = SimulatedDnsDelegationGrantor()
        else:
            self._backend = CloudFormationStackBackend(self._settings.aws)
            self._credentials = Boto3CredentialProvider(self._settings.aws)
            self._identity = StsIdentityResolver()
            self._image_registry = EcrImageRegistry()
            self._image_builder = DockerImageBuilder()
            self._versions = GitVersionResolver()
            self._dns_grantor = CloudFormationDnsDelegationGrantor(
                self._credentials, self._settings.aws
            )

    @classmethod
    def get_instance(cls) -> ServiceContainer:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    async def startup(self) -> None:
        if self._database is not None:
            await self._database.initialize()
            await self._database.create_schema()

    async def shutdown(self) -> None:
        if self._database is not None:
            await self._database.close()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def event_publisher(self) -> EventPublisher:
        return self._event_publisher

    @property
    def stack_backend(self) -> StackBackend:
        return self._backend

    @property
    def template_packager(self) -> TemplatePackager:
        return self._packager

    @asynccontextmanager
    async def registry(self) -> AsyncGenerator[ProjectRegistry, None]:
        """Registry for one request.

        With Postgres every registry call commits in its own session, so a
        long-running workflow holds no transaction while it polls the stack.
        """
        if self._database is None:
            yield InMemoryProjectRegistry()
            return
        yield UnitOfWorkProjectRegistry(self._postgres_registry)

    @asynccontextmanager
    async def _postgres_registry(self) -> AsyncGenerator[ProjectRegistry, None]:
        if self._database is None:
            raise RuntimeError("Registry database not configured.")
        async with self._database.session() as session:
            yield PostgresProjectRegistry(session)

    async def register_application(
        self, registry: ProjectRegistry, application: Application
    ) -> Application:
        """Record an application and, when simulating, provision its image repository."""
        created = await registry.create_application(application)
        if isinstance(self._image_registry, SimulatedImageRegistry):
            self._image_registry.add_repository(
                repository_name(application.project, application.name)
            )
        return created

    def environment_workflow(
        self, registry: ProjectRegistry, progress: ProgressReporter
    ) -> EnvironmentWorkflow:
        return EnvironmentWorkflow(
            registry=registry,
            credentials=self._credentials,
            identity=self._identity,
            backend=self._backend,
            packager=self._packager,
            dns_grantor=self._dns_grantor,
            progress=progress,
            event_publisher=self._event_publisher,
            public_load_balancer=self._settings.deploy.public_load_balancer,
        )

    def application_workflow(
        self, registry: ProjectRegistry, progress: ProgressReporter
    ) -> ApplicationWorkflow:
        return ApplicationWorkflow(
            registry=registry,
            credentials=self._credentials,
            image_registry=self._image_registry,
            image_builder=self._image_builder,
            versions=self._versions,
            packager=self._packager,
            backend=self._backend,
            endpoints=self._endpoints(registry),
            progress=progress,
            event_publisher=self._event_publisher,
        )

    def _endpoints(self, registry: ProjectRegistry) -> EndpointDescriber:
        if isinstance(self._backend, SimulatedStackBackend):
            return SimulatedEndpointDescriber(self._backend)
        return CloudFormationEndpointDescriber(registry, self._credentials, self._backend)


def get_service_container() -> ServiceContainer:
    return ServiceContainer.get_instance()
