"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from stackpilot.api.dependencies.services import ServiceContainer
from stackpilot.config import RuntimeEnvironment, Settings
from stackpilot.domain.models.project import Application, Project
from stackpilot.domain.services.application_workflow import ApplicationWorkflow
from stackpilot.domain.services.environment_workflow import EnvironmentWorkflow
from stackpilot.infrastructure.aws.simulated import (
    SimulatedCredentialProvider,
    SimulatedDnsDelegationGrantor,
    SimulatedEndpointDescriber,
    SimulatedIdentityResolver,
    SimulatedImageRegistry,
    SimulatedStackBackend,
)
from stackpilot.infrastructure.docker.builder import SimulatedImageBuilder
from stackpilot.infrastructure.git.version import StaticVersionResolver
from stackpilot.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from stackpilot.infrastructure.persistence.repositories.in_memory import InMemoryProjectRegistry
from stackpilot.infrastructure.progress.reporter import LoggingProgressReporter
from stackpilot.infrastructure.templates.packager import CloudFormationTemplatePackager


TOOLS_ACCOUNT = "111111111111"
ENV_ACCOUNT = "222222222222"


@pytest.fixture(autouse=True)
def clear_stores() -> None:
    """Clear in-memory stores and the container singleton before each test."""
    InMemoryProjectRegistry.clear()
    ServiceContainer.reset()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=RuntimeEnvironment.TESTING, debug=True)


@pytest.fixture
def registry() -> InMemoryProjectRegistry:
    return InMemoryProjectRegistry()


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def backend() -> SimulatedStackBackend:
    return SimulatedStackBackend()


@pytest.fixture
def credentials() -> SimulatedCredentialProvider:
    return SimulatedCredentialProvider(
        account_id=TOOLS_ACCOUNT,
        region="us-west-2",
        profiles={"test-env": ENV_ACCOUNT},
    )


@pytest.fixture
def identity() -> SimulatedIdentityResolver:
    return SimulatedIdentityResolver()


@pytest.fixture
def packager() -> CloudFormationTemplatePackager:
    return CloudFormationTemplatePackager()


@pytest.fixture
def dns_grantor() -> SimulatedDnsDelegationGrantor:
    return SimulatedDnsDelegationGrantor()


@pytest.fixture
def progress() -> LoggingProgressReporter:
    return LoggingProgressReporter()


@pytest.fixture
def image_builder() -> SimulatedImageBuilder:
    return SimulatedImageBuilder()


@pytest.fixture
def image_registry() -> SimulatedImageRegistry:
    return SimulatedImageRegistry({"phonetool/frontend"})


@pytest.fixture
def versions() -> StaticVersionResolver:
    return StaticVersionResolver("4f2c1e9")


@pytest.fixture
def sample_project() -> Project:
    return Project(name="phonetool", account_id=TOOLS_ACCOUNT)


@pytest.fixture
def dns_project() -> Project:
    return Project(name="chatapp", account_id=TOOLS_ACCOUNT, domain="chat.example.com")


@pytest.fixture
def sample_application() -> Application:
    return Application(name="frontend", project="phonetool")


@pytest.fixture
def make_environment_workflow(
    registry: InMemoryProjectRegistry,
    credentials: SimulatedCredentialProvider,
    identity: SimulatedIdentityResolver,
    backend: SimulatedStackBackend,
    packager: CloudFormationTemplatePackager,
    dns_grantor: SimulatedDnsDelegationGrantor,
    progress: LoggingProgressReporter,
    event_publisher: InMemoryEventPublisher,
) -> Callable[..., EnvironmentWorkflow]:
    """Build an environment workflow from the shared fixtures, with overrides."""
    def _make(**overrides: Any) -> EnvironmentWorkflow:
        params: dict[str, Any] = {
            "registry": registry,
            "credentials": credentials,
            "identity": identity,
            "backend": backend,
            "packager": packager,
            "dns_grantor": dns_grantor,
            "progress": progress,
            "event_publisher": event_publisher,
        }
        params.update(overrides)
        return EnvironmentWorkflow(**params)
    return _make


@pytest.fixture
def environment_workflow(
    make_environment_workflow: Callable[..., EnvironmentWorkflow],
) -> EnvironmentWorkflow:
    return make_environment_workflow()


@pytest.fixture
def make_application_workflow(
    registry: InMemoryProjectRegistry,
    credentials: SimulatedCredentialProvider,
    image_registry: SimulatedImageRegistry,
    image_builder: SimulatedImageBuilder,
    versions: StaticVersionResolver,
    packager: CloudFormationTemplatePackager,
    backend: SimulatedStackBackend,
    progress: LoggingProgressReporter,
    event_publisher: InMemoryEventPublisher,
) -> Callable[..., ApplicationWorkflow]:
    """Build an application workflow from the shared fixtures, with overrides."""
    def _make(**overrides: Any) -> ApplicationWorkflow:
        params: dict[str, Any] = {
            "registry": registry,
            "credentials": credentials,
            "image_registry": image_registry,
            "image_builder": image_builder,
            "versions": versions,
            "packager": packager,
            "backend": backend,
            "endpoints": SimulatedEndpointDescriber(backend),
            "progress": progress,
            "event_publisher": event_publisher,
        }
        params.update(overrides)
        return ApplicationWorkflow(**params)
    return _make


@pytest.fixture
def application_workflow(
    make_application_workflow: Callable[..., ApplicationWorkflow],
) -> ApplicationWorkflow:
    return make_application_workflow()
