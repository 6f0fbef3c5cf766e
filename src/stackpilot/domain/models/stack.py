"""Stack change requests, provisioning events and naming conventions."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from stackpilot.domain.models.base import utc_now, ValueObject


PROJECT_TAG_KEY = "ecs-project"
ENV_TAG_KEY = "ecs-environment"
APP_TAG_KEY = "ecs-application"

COMPLETE_STATUSES = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"})
FAILED_STACK_STATUSES = frozenset({
    "CREATE_FAILED",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_FAILED",
    "UPDATE_FAILED",
    "DELETE_COMPLETE",
    "DELETE_FAILED",
})


def env_stack_name(project: str, env: str) -> str:
    return f"{project}-{env}"


def app_stack_name(project: str, env: str, app: str) -> str:
    return f"{project}-{env}-{app}"


def repository_name(project: str, app: str) -> str:
    return f"{project}/{app}"


def app_tags(project: str, env: str, app: str) -> dict[str, str]:
    return {
        PROJECT_TAG_KEY: project,
        ENV_TAG_KEY: env,
        APP_TAG_KEY: app,
    }


def new_change_set_name(stack_name: str) -> str:
    """Change set name unique per call: the stack name plus a random uuid."""
    return f"{stack_name}-{uuid.uuid4()}"


class CredentialSource(str, Enum):
    DEFAULT = "default"
    PROFILE = "profile"
    ROLE = "role"


class CredentialContext(ValueObject):
    """Authenticated scope every backend call is made under.

    ``session`` is the SDK handle (a ``boto3.Session`` for the AWS adapters);
    simulated adapters leave it unset.
    """

    source: CredentialSource = CredentialSource.DEFAULT
    region: str = ""
    profile: str = ""
    role_arn: str = ""
    account_id: str = ""
    session: Any = Field(default=None, exclude=True, repr=False)

    @property
    def label(self) -> str:
        if self.source == CredentialSource.ROLE:
            return f"role:{self.role_arn}@{self.region}"
        if self.source == CredentialSource.PROFILE:
            return f"profile:{self.profile}@{self.region}"
        return f"default@{self.region or '-'}"


class ChangeMode(str, Enum):
    """How the backend treats an existing stack."""

    CREATE = "create"
    CREATE_OR_UPDATE = "create_or_update"


class StackChangeRequest(ValueObject):
    stack_name: str = Field(..., min_length=1)
    change_set_name: str = Field(..., min_length=1)
    template: str
    context: CredentialContext
    execution_role_arn: str = ""
    tags: dict[str, str] = Field(default_factory=dict)
    mode: ChangeMode = ChangeMode.CREATE_OR_UPDATE


class ProvisioningEvent(ValueObject):
    """One raw resource event reported by the stack backend."""

    resource_type: str
    logical_name: str
    status: str
    physical_id: str = ""
    status_reason: str = ""
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def is_complete(self) -> bool:
        return self.status in COMPLETE_STATUSES


class StreamResult(ValueObject):
    """Terminal outcome of watching a stack until it settles."""

    stack_name: str
    stack_id: str = ""
    status: str = ""
    outputs: dict[str, str] = Field(default_factory=dict)

    @property
    def account_id(self) -> str:
        # arn:aws:cloudformation:<region>:<account>:stack/<name>/<id>
        parts = self.stack_id.split(":")
        return parts[4] if len(parts) > 5 else ""

    @property
    def region(self) -> str:
        parts = self.stack_id.split(":")
        return parts[3] if len(parts) > 5 else ""


class CreateEnvironmentInput(ValueObject):
    """Parameters rendered into an environment stack template."""

    name: str
    project: str
    prod: bool = False
    public_load_balancer: bool = True
    tools_account_principal_arn: str = ""
    project_dns_name: str = ""

    @property
    def stack_name(self) -> str:
        return env_stack_name(self.project, self.name)


class AppTemplateParams(ValueObject):
    """Parameters rendered into an application stack template."""

    project: str
    app: str
    env: str
    image_tag: str
    repository_uri: str = ""

    @property
    def stack_name(self) -> str:
        return app_stack_name(self.project, self.env, self.app)

    @property
    def image(self) -> str:
        return f"{self.repository_uri}:{self.image_tag}"


class EventStream:
    """Single-producer/single-consumer channel pair for one stack watch.

    ``events`` carries provisioning events and is closed with a ``None``
    sentinel; ``result`` resolves exactly once, after the sentinel is queued.
    """

    def __init__(self, stack_name: str) -> None:
        self.stack_name = stack_name
        self.events: asyncio.Queue[ProvisioningEvent | None] = asyncio.Queue()
        self.result: asyncio.Future[StreamResult] = asyncio.get_running_loop().create_future()

    def publish(self, event: ProvisioningEvent) -> None:
        self.events.put_nowait(event)

    def close(self, result: StreamResult) -> None:
        self.events.put_nowait(None)
        if not self.result.done():
            self.result.set_result(result)

    def fail(self, error: BaseException) -> None:
        self.events.put_nowait(None)
        if not self.result.done():
            self.result.set_exception(error)
