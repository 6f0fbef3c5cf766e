"""Simulated AWS adapters for development and testing.

The simulated stack backend keeps stacks in process and replays one
``IN_PROGRESS``/``COMPLETE`` event pair per template resource, so the full
bring-up and deploy workflows run without an account or credentials.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

import structlog

from stackpilot.domain.models.project import Identity, Project
from stackpilot.domain.models.stack import (
    ChangeMode,
    CredentialContext,
    CredentialSource,
    env_stack_name,
    EventStream,
    ProvisioningEvent,
    StackChangeRequest,
    StreamResult,
)
from stackpilot.domain.ports.services import (
    CredentialProvider,
    CredentialResolutionError,
    DnsDelegationGrantor,
    EndpointDescriber,
    IdentityResolver,
    ImageRegistry,
    RepositoryNotFoundError,
    StackAlreadyExistsError,
    StackBackend,
    StackBackendError,
    StreamFailedError,
)


logger = structlog.get_logger(__name__)

DEFAULT_ACCOUNT = "123456789012"
DEFAULT_REGION = "us-west-2"


class SimulatedStack:
    """State of one simulated stack."""

    def __init__(self, request: StackChangeRequest, account: str, region: str) -> None:
        self.name = request.stack_name
        self.stack_id = (
            f"arn:aws:cloudformation:{region}:{account}:stack/{self.name}/{uuid.uuid4()}"
        )
        self.account = account
        self.region = region
        self.status = "REVIEW_IN_PROGRESS"
        self.template = request.template
        self.tags = dict(request.tags)
        self.execution_role_arn = request.execution_role_arn
        self.change_sets: list[str] = []
        self.updated = False

    @property
    def body(self) -> dict[str, Any]:
        try:
            return json.loads(self.template)
        except json.JSONDecodeError:
            return {}

    @property
    def resources(self) -> list[tuple[str, str]]:
        return [
            (logical, spec.get("Type", ""))
            for logical, spec in self.body.get("Resources", {}).items()
        ]

    def outputs(self) -> dict[str, str]:
        values: dict[str, str] = {}
        for key in self.body.get("Outputs", {}):
            if key.endswith("RoleARN"):
                values[key] = f"arn:aws:iam::{self.account}:role/{self.name}-{key[:-3]}"
            elif key.endswith("DNSName"):
                values[key] = f"{self.name}-lb-{self.account[-4:]}.{self.region}.elb.amazonaws.com"
            else:
                values[key] = f"{self.name}-{key}"
        return values


class SimulatedStackBackend(StackBackend):
    """In-process change-set backend.

    ``scripted_events`` replaces the generated events of a stack with a fixed
    sequence. ``fail_apply`` rejects every change set. ``fail_after`` fails the
    stream with ``fail_status`` after that many events were delivered.
    """

    def __init__(
        self,
        event_delay: float = 0.0,
        scripted_events: dict[str, Sequence[ProvisioningEvent]] | None = None,
        fail_apply: str | None = None,
        fail_after: int | None = None,
        fail_status: str = "ROLLBACK_COMPLETE",
    ) -> None:
        self._stacks: dict[str, SimulatedStack] = {}
        self._event_delay = event_delay
        self._scripted = dict(scripted_events or {})
        self._fail_apply = fail_apply
        self._fail_after = fail_after
        self._fail_status = fail_status
        self._watchers: set[asyncio.Task[None]] = set()
        self.requests: list[StackChangeRequest] = []

    @property
    def stacks(self) -> dict[str, SimulatedStack]:
        return dict(self._stacks)

    async def apply_change(self, request: StackChangeRequest) -> None:
        self.requests.append(request)
        existing = self._stacks.get(request.stack_name)
        if existing is not None and request.mode == ChangeMode.CREATE:
            raise StackAlreadyExistsError(request.stack_name)
        if self._fail_apply:
            raise StackBackendError(request.stack_name, self._fail_apply)

        if existing is None:
            stack = SimulatedStack(
                request,
                account=request.context.account_id or DEFAULT_ACCOUNT,
                region=request.context.region or DEFAULT_REGION,
            )
            self._stacks[stack.name] = stack
        else:
            stack = existing
            stack.template = request.template
            stack.tags = dict(request.tags)
            stack.updated = True
        stack.change_sets.append(request.change_set_name)
        stack.status = "UPDATE_IN_PROGRESS" if stack.updated else "CREATE_IN_PROGRESS"
        logger.info(
            "simulated_change_set_executed",
            stack_name=stack.name,
            change_set_name=request.change_set_name,
            mode=request.mode.value,
        )

    async def stream_events(self, stack_name: str, context: CredentialContext) -> EventStream:
        stream = EventStream(stack_name)
        stack = self._stacks.get(stack_name)
        if stack is None:
            stream.fail(StackBackendError(stack_name, "does not exist"))
            return stream

        task = asyncio.create_task(self._watch(stream, stack))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return stream

    async def describe_outputs(self, stack_name: str, context: CredentialContext) -> dict[str, str]:
        stack = self._stacks.get(stack_name)
        if stack is None:
            raise StackBackendError(stack_name, "does not exist")
        return stack.outputs()

    async def _watch(self, stream: EventStream, stack: SimulatedStack) -> None:
        events = self._scripted.get(stack.name)
        if events is None:
            events = self._generate(stack)

        for delivered, event in enumerate(events):
            if self._fail_after is not None and delivered >= self._fail_after:
                stack.status = self._fail_status
                stream.fail(StreamFailedError(stack.name, self._fail_status, "simulated failure"))
                return
            if self._event_delay:
                await asyncio.sleep(self._event_delay)
            stream.publish(event)

        stack.status = "UPDATE_COMPLETE" if stack.updated else "CREATE_COMPLETE"
        stream.close(StreamResult(
            stack_name=stack.name,
            stack_id=stack.stack_id,
            status=stack.status,
            outputs=stack.outputs(),
        ))

    @staticmethod
    def _generate(stack: SimulatedStack) -> list[ProvisioningEvent]:
        prefix = "UPDATE" if stack.updated else "CREATE"
        events: list[ProvisioningEvent] = []
        for logical, resource_type in stack.resources:
            for suffix in ("IN_PROGRESS", "COMPLETE"):
                events.append(ProvisioningEvent(
                    resource_type=resource_type,
                    logical_name=logical,
                    status=f"{prefix}_{suffix}",
                    physical_id=f"{logical.lower()}-{uuid.uuid4().hex[:8]}",
                ))
        return events


class SimulatedCredentialProvider(CredentialProvider):
    """Hands out credential contexts without touching any SDK.

    Profiles map to accounts through ``profiles``; assumed roles take the
    account from the role ARN.
    """

    def __init__(
        self,
        account_id: str = DEFAULT_ACCOUNT,
        region: str = DEFAULT_REGION,
        profiles: dict[str, str] | None = None,
    ) -> None:
        self._account_id = account_id
        self._region = region
        self._profiles = dict(profiles or {})

    async def default(self) -> CredentialContext:
        return CredentialContext(region=self._region, account_id=self._account_id)

    async def default_with_region(self, region: str) -> CredentialContext:
        return CredentialContext(region=region, account_id=self._account_id)

    async def from_role(self, role_arn: str, region: str) -> CredentialContext:
        parts = role_arn.split(":")
        if len(parts) < 6 or not parts[4]:
            raise CredentialResolutionError(f"cannot assume malformed role {role_arn!r}")
        return CredentialContext(
            source=CredentialSource.ROLE,
            region=region,
            role_arn=role_arn,
            account_id=parts[4],
        )

    async def from_profile(self, name: str) -> CredentialContext:
        if name not in self._profiles:
            raise CredentialResolutionError(f"profile {name} is not configured")
        return CredentialContext(
            source=CredentialSource.PROFILE,
            region=self._region,
            profile=name,
            account_id=self._profiles[name],
        )


class SimulatedIdentityResolver(IdentityResolver):
    async def get(self, context: CredentialContext) -> Identity:
        return Identity.for_account(context.account_id or DEFAULT_ACCOUNT)


class SimulatedImageRegistry(ImageRegistry):
    """Knows only the repositories it was given or that were added later."""

    def __init__(self, repositories: Iterable[str] = ()) -> None:
        self._repositories = set(repositories)

    def add_repository(self, name: str) -> None:
        self._repositories.add(name)
        logger.info("simulated_repository_created", repository=name)

    async def get_repository(self, name: str, context: CredentialContext) -> str:
        if name not in self._repositories:
            raise RepositoryNotFoundError(name)
        account = context.account_id or DEFAULT_ACCOUNT
        region = context.region or DEFAULT_REGION
        return f"{account}.dkr.ecr.{region}.amazonaws.com/{name}"

    async def get_auth(self, context: CredentialContext) -> tuple[str, str]:
        return "AWS", f"simulated-token-{context.account_id or DEFAULT_ACCOUNT}"


class SimulatedEndpointDescriber(EndpointDescriber):
    """Reads the load balancer DNS name from the simulated environment stack."""

    def __init__(self, backend: SimulatedStackBackend) -> None:
        self._backend = backend

    async def uri(self, project: str, app: str, env_name: str) -> str:
        stack_name = env_stack_name(project, env_name)
        outputs = await self._backend.describe_outputs(stack_name, CredentialContext())
        dns_name = outputs.get("PublicLoadBalancerDNSName")
        if not dns_name:
            raise StackBackendError(stack_name, "has no public load balancer")
        return f"http://{dns_name}"


class SimulatedDnsDelegationGrantor(DnsDelegationGrantor):
    def __init__(self) -> None:
        self.grants: list[tuple[str, str]] = []

    async def delegate_permissions(self, project: Project, account_id: str) -> None:
        self.grants.append((project.name, account_id))
        logger.info("simulated_dns_delegated", project=project.name, account_id=account_id)
