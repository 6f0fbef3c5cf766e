"""CloudFormation stack backend."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog
from botocore.exceptions import ClientError, WaiterError

from stackpilot.config import AwsSettings
from stackpilot.domain.models.base import utc_now
from stackpilot.domain.models.project import Project
from stackpilot.domain.models.stack import (
    ChangeMode,
    CredentialContext,
    env_stack_name,
    EventStream,
    FAILED_STACK_STATUSES,
    ProvisioningEvent,
    StackChangeRequest,
    StreamResult,
)
from stackpilot.domain.ports.repositories import ProjectRegistry
from stackpilot.domain.ports.services import (
    CredentialProvider,
    DnsDelegationGrantor,
    EndpointDescriber,
    StackAlreadyExistsError,
    StackBackend,
    StackBackendError,
    StreamFailedError,
)
from stackpilot.infrastructure.aws.session import client_for


logger = structlog.get_logger(__name__)

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
NO_CHANGES_REASONS = ("didn't contain changes", "No updates are to be performed")
LOAD_BALANCER_DNS_OUTPUT = "PublicLoadBalancerDNSName"
DNS_DELEGATED_ACCOUNTS_PARAM = "AppDNSDelegatedAccounts"


def _is_missing(error: ClientError) -> bool:
    return "does not exist" in error.response["Error"].get("Message", "")


def _describe_stack(client: Any, stack_name: str) -> dict[str, Any] | None:
    try:
        stacks = client.describe_stacks(StackName=stack_name)["Stacks"]
    except ClientError as e:
        if _is_missing(e):
            return None
        raise
    return stacks[0] if stacks else None


def _outputs(stack: dict[str, Any]) -> dict[str, str]:
    return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])}


class CloudFormationStackBackend(StackBackend):
    """Applies change sets and watches stacks through the CloudFormation API.

    Every SDK call runs in a worker thread. A watcher started by
    ``stream_events`` polls ``describe_stack_events`` until the stack
    settles and reports only events newer than the last executed change set.
    """

    def __init__(self, settings: AwsSettings) -> None:
        self._settings = settings
        self._executed_at: dict[str, datetime] = {}
        self._watchers: set[asyncio.Task[None]] = set()

    async def apply_change(self, request: StackChangeRequest) -> None:
        await asyncio.to_thread(self._apply_change, request)

    async def stream_events(self, stack_name: str, context: CredentialContext) -> EventStream:
        stream = EventStream(stack_name)
        since = self._executed_at.get(stack_name, utc_now())
        task = asyncio.create_task(self._watch(stream, context, since))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return stream

    async def describe_outputs(
        self, stack_name: str, context: CredentialContext
    ) -> dict[str, str]:
        client = client_for(context, "cloudformation")
        stack = await asyncio.to_thread(_describe_stack, client, stack_name)
        if stack is None:
            raise StackBackendError(stack_name, "does not exist")
        return _outputs(stack)

    def _apply_change(self, request: StackChangeRequest) -> None:
        client = client_for(request.context, "cloudformation")
        name = request.stack_name
        try:
            existing = _describe_stack(client, name)
            # A stack left in review by an unexecuted change set has no resources yet.
            exists = existing is not None and existing["StackStatus"] != "REVIEW_IN_PROGRESS"
            if exists and request.mode == ChangeMode.CREATE:
                raise StackAlreadyExistsError(name)

            kwargs: dict[str, Any] = {
                "StackName": name,
                "ChangeSetName": request.change_set_name,
                "TemplateBody": request.template,
                "ChangeSetType": "UPDATE" if exists else "CREATE",
                "Capabilities": CAPABILITIES,
                "Tags": [{"Key": k, "Value": v} for k, v in request.tags.items()],
            }
            if request.execution_role_arn:
                kwargs["RoleARN"] = request.execution_role_arn
            change_set_id = client.create_change_set(**kwargs)["Id"]

            try:
                client.get_waiter("change_set_create_complete").wait(
                    ChangeSetName=change_set_id,
                    StackName=name,
                    WaiterConfig={
                        "Delay": self._settings.change_set_wait_delay,
                        "MaxAttempts": self._settings.change_set_wait_attempts,
                    },
                )
            except WaiterError as e:
                reason = client.describe_change_set(
                    ChangeSetName=change_set_id, StackName=name
                ).get("StatusReason", str(e))
                if any(marker in reason for marker in NO_CHANGES_REASONS):
                    logger.info(
                        "change_set_empty",
                        stack_name=name,
                        change_set_name=request.change_set_name,
                    )
                    client.delete_change_set(ChangeSetName=change_set_id, StackName=name)
                    return
                raise StackBackendError(
                    name, f"change set {request.change_set_name}: {reason}"
                ) from e

            self._executed_at[name] = utc_now()
            client.execute_change_set(ChangeSetName=change_set_id, StackName=name)
        except ClientError as e:
            raise StackBackendError(name, e.response["Error"].get("Message", str(e))) from e
        logger.info(
            "change_set_executed",
            stack_name=name,
            change_set_name=request.change_set_name,
            change_set_type=kwargs["ChangeSetType"],
        )

    async def _watch(
        self, stream: EventStream, context: CredentialContext, since: datetime
    ) -> None:
        client = client_for(context, "cloudformation")
        seen: set[str] = set()
        try:
            while True:
                for event in await asyncio.to_thread(
                    self._new_events, client, stream.stack_name, since, seen
                ):
                    stream.publish(event)

                stack = await asyncio.to_thread(_describe_stack, client, stream.stack_name)
                if stack is None:
                    raise StackBackendError(stream.stack_name, "does not exist")
                status = stack["StackStatus"]
                failed = status in FAILED_STACK_STATUSES
                if failed or status.endswith("_COMPLETE"):
                    # Drain events written between the last poll and settling.
                    for event in await asyncio.to_thread(
                        self._new_events, client, stream.stack_name, since, seen
                    ):
                        stream.publish(event)
                if failed:
                    stream.fail(StreamFailedError(
                        stream.stack_name, status, stack.get("StackStatusReason", "")
                    ))
                    return
                if status.endswith("_COMPLETE"):
                    stream.close(StreamResult(
                        stack_name=stream.stack_name,
                        stack_id=stack["StackId"],
                        status=status,
                        outputs=_outputs(stack),
                    ))
                    return
                await asyncio.sleep(self._settings.event_poll_interval)
        except ClientError as e:
            message = e.response["Error"].get("Message", str(e))
            stream.fail(StackBackendError(stream.stack_name, message))
        except Exception as e:
            stream.fail(e)

    @staticmethod
    def _new_events(
        client: Any, stack_name: str, since: datetime, seen: set[str]
    ) -> list[ProvisioningEvent]:
        fresh: list[ProvisioningEvent] = []
        paginator = client.get_paginator("describe_stack_events")
        for page in paginator.paginate(StackName=stack_name):
            done = False
            for raw in page["StackEvents"]:
                if raw["Timestamp"] < since:
                    done = True
                    break
                if raw["EventId"] in seen:
                    continue
                seen.add(raw["EventId"])
                fresh.append(ProvisioningEvent(
                    resource_type=raw.get("ResourceType", ""),
                    logical_name=raw.get("LogicalResourceId", ""),
                    status=raw.get("ResourceStatus", ""),
                    physical_id=raw.get("PhysicalResourceId", ""),
                    status_reason=raw.get("ResourceStatusReason", ""),
                    timestamp=raw["Timestamp"],
                ))
            if done:
                break
        # The API returns newest first.
        fresh.reverse()
        return fresh


class CloudFormationEndpointDescriber(EndpointDescriber):
    """Reads the public load balancer DNS name from the environment stack."""

    def __init__(
        self,
        registry: ProjectRegistry,
        credentials: CredentialProvider,
        backend: StackBackend,
    ) -> None:
        self._registry = registry
        self._credentials = credentials
        self._backend = backend

    async def uri(self, project: str, app: str, env_name: str) -> str:
        env = await self._registry.get_environment(project, env_name)
        context = await self._credentials.from_role(env.manager_role_arn, env.region)
        stack_name = env_stack_name(project, env_name)
        outputs = await self._backend.describe_outputs(stack_name, context)
        dns_name = outputs.get(LOAD_BALANCER_DNS_OUTPUT)
        if not dns_name:
            raise StackBackendError(stack_name, f"has no {LOAD_BALANCER_DNS_OUTPUT} output")
        logger.info("endpoint_resolved", project=project, application=app, environment=env_name)
        return f"http://{dns_name}"


class CloudFormationDnsDelegationGrantor(DnsDelegationGrantor):
    """Adds an account to the project roles stack's delegated-accounts parameter."""

    def __init__(self, credentials: CredentialProvider, settings: AwsSettings) -> None:
        self._credentials = credentials
        self._settings = settings

    @staticmethod
    def project_stack_name(project: str) -> str:
        return f"{project}-infrastructure-roles"

    async def delegate_permissions(self, project: Project, account_id: str) -> None:
        context = await self._credentials.default()
        await asyncio.to_thread(self._delegate, project, account_id, context)

    def _delegate(self, project: Project, account_id: str, context: CredentialContext) -> None:
        client = client_for(context, "cloudformation")
        name = self.project_stack_name(project.name)
        try:
            stack = _describe_stack(client, name)
            if stack is None:
                raise StackBackendError(name, "does not exist")
            parameters = {
                p["ParameterKey"]: p.get("ParameterValue", "")
                for p in stack.get("Parameters", [])
            }
            accounts = [a for a in parameters.get(DNS_DELEGATED_ACCOUNTS_PARAM, "").split(",") if a]
            if account_id in accounts:
                return
            accounts.append(account_id)

            update_params = [
                {"ParameterKey": key, "UsePreviousValue": True}
                for key in parameters
                if key != DNS_DELEGATED_ACCOUNTS_PARAM
            ]
            update_params.append({
                "ParameterKey": DNS_DELEGATED_ACCOUNTS_PARAM,
                "ParameterValue": ",".join(accounts),
            })
            client.update_stack(
                StackName=name,
                UsePreviousTemplate=True,
                Parameters=update_params,
                Capabilities=CAPABILITIES,
            )
            client.get_waiter("stack_update_complete").wait(
                StackName=name,
                WaiterConfig={
                    "Delay": self._settings.change_set_wait_delay,
                    "MaxAttempts": self._settings.change_set_wait_attempts,
                },
            )
        except ClientError as e:
            message = e.response["Error"].get("Message", str(e))
            if any(marker in message for marker in NO_CHANGES_REASONS):
                return
            raise StackBackendError(name, message) from e
        except WaiterError as e:
            raise StackBackendError(name, f"update did not settle: {e}") from e
        logger.info("dns_delegated", project=project.name, account_id=account_id)
