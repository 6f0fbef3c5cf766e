"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from stackpilot.domain.models.progress import PhaseRow
from stackpilot.domain.models.project import Identity, Project
from stackpilot.domain.models.stack import (
    AppTemplateParams,
    CreateEnvironmentInput,
    CredentialContext,
    EventStream,
    StackChangeRequest,
)


class StackBackend(ABC):
    """Port for the change-set based stack provisioner."""

    @abstractmethod
    async def apply_change(self, request: StackChangeRequest) -> None:
        """Submit and execute a change set.

        Raises ``StackAlreadyExistsError`` when ``request.mode`` is ``create``
        and the stack exists, ``StackBackendError`` on any other rejection.
        """

    @abstractmethod
    async def stream_events(self, stack_name: str, context: CredentialContext) -> EventStream:
        """Start a background watcher for the stack and return its channels."""

    @abstractmethod
    async def describe_outputs(self, stack_name: str, context: CredentialContext) -> dict[str, str]:
        """Return the outputs of a settled stack."""


class CredentialProvider(ABC):
    """Port for resolving credential contexts."""

    @abstractmethod
    async def default(self) -> CredentialContext:
        """Context from the default credential chain."""

    @abstractmethod
    async def default_with_region(self, region: str) -> CredentialContext:
        """Default credentials pinned to a region."""

    @abstractmethod
    async def from_role(self, role_arn: str, region: str) -> CredentialContext:
        """Context obtained by assuming a role."""

    @abstractmethod
    async def from_profile(self, name: str) -> CredentialContext:
        """Context for a named profile."""


class IdentityResolver(ABC):
    """Port for resolving the caller identity of a context."""

    @abstractmethod
    async def get(self, context: CredentialContext) -> Identity:
        """Return the account and root ARN behind the context."""


class ImageRegistry(ABC):
    """Port for the container image registry."""

    @abstractmethod
    async def get_repository(self, name: str, context: CredentialContext) -> str:
        """Return the URI of an existing repository."""

    @abstractmethod
    async def get_auth(self, context: CredentialContext) -> tuple[str, str]:
        """Return (username, password) for a registry login."""


class ImageBuilder(ABC):
    """Port for building and pushing container images."""

    @abstractmethod
    async def build(self, uri: str, tag: str, dockerfile_dir: str) -> None:
        """Build an image tagged ``uri:tag``."""

    @abstractmethod
    async def login(self, uri: str, username: str, password: str) -> None:
        """Authenticate against the registry hosting ``uri``."""

    @abstractmethod
    async def push(self, uri: str, tag: str) -> None:
        """Push ``uri:tag``."""


class SourceVersionResolver(ABC):
    """Port for deriving an image tag from the source tree."""

    @abstractmethod
    async def version_tag(self, source_dir: str) -> str:
        """Return the version label of the checkout at ``source_dir``."""


class TemplatePackager(ABC):
    """Port for rendering stack templates."""

    @abstractmethod
    async def package_environment(self, env_input: CreateEnvironmentInput) -> str:
        """Render the environment stack template."""

    @abstractmethod
    async def package_application(
        self, params: AppTemplateParams, context: CredentialContext
    ) -> str:
        """Render the application stack template."""


class EndpointDescriber(ABC):
    """Port for resolving an application's public endpoint."""

    @abstractmethod
    async def uri(self, project: str, app: str, env_name: str) -> str:
        """Return the externally reachable URI of the app in the environment."""


class DnsDelegationGrantor(ABC):
    """Port for sharing the project's DNS zone with another account."""

    @abstractmethod
    async def delegate_permissions(self, project: Project, account_id: str) -> None:
        """Allow ``account_id`` to manage records under the project domain."""


class ProgressReporter(ABC):
    """Port for surfacing workflow progress."""

    @abstractmethod
    def start(self, message: str) -> None:
        """Begin a long-running step."""

    @abstractmethod
    def events(self, rows: list[PhaseRow]) -> None:
        """Render the latest phase rows."""

    @abstractmethod
    def stop(self, message: str) -> None:
        """End the current step."""


class EventPublisher(ABC):
    """Port for publishing domain events."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    @abstractmethod
    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        """Publish a batch of events."""


class StackBackendError(Exception):
    """Raised when the stack backend rejects or fails a request."""

    def __init__(self, stack_name: str, message: str) -> None:
        super().__init__(f"stack {stack_name}: {message}")
        self.stack_name = stack_name


class StackAlreadyExistsError(StackBackendError):
    """Raised by a ``create`` change when the stack is already provisioned."""

    def __init__(self, stack_name: str) -> None:
        super().__init__(stack_name, "already exists")


class StreamFailedError(StackBackendError):
    """Raised through the result channel when a stack settles in a failed state."""

    def __init__(self, stack_name: str, status: str, reason: str = "") -> None:
        detail = f"ended in {status}" + (f": {reason}" if reason else "")
        super().__init__(stack_name, detail)
        self.status = status
        self.reason = reason


class CredentialResolutionError(Exception):
    """Raised when a credential context cannot be established."""


class RepositoryNotFoundError(Exception):
    """Raised when an image repository does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"repository {name} not found")
        self.name = name


class VersionResolutionError(Exception):
    """Raised when no image tag can be derived from the source tree."""

    def __init__(self, source_dir: str, reason: str) -> None:
        super().__init__(f"cannot derive an image tag from {source_dir}: {reason}")
        self.source_dir = source_dir
        self.reason = reason
