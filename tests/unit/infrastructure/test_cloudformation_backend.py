"""Unit tests for the CloudFormation adapters, against stubbed clients."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import boto3
import pytest
from botocore.stub import ANY, Stubber

from stackpilot.config import AwsSettings
from stackpilot.domain.models.project import Project
from stackpilot.domain.models.stack import (
    ChangeMode,
    CredentialContext,
    ProvisioningEvent,
    StackChangeRequest,
)
from stackpilot.domain.ports.services import (
    StackAlreadyExistsError,
    StackBackendError,
    StreamFailedError,
)
from stackpilot.infrastructure.aws.cloudformation import (
    CloudFormationDnsDelegationGrantor,
    CloudFormationStackBackend,
)
from stackpilot.infrastructure.aws.simulated import SimulatedCredentialProvider


STACK = "phonetool-test"
STACK_ID = f"arn:aws:cloudformation:us-west-2:222222222222:stack/{STACK}/abc"
CHANGE_SET_ID = "arn:aws:cloudformation:us-west-2:222222222222:changeSet/cs-1/def"
CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)
# Far enough ahead that every stubbed event is newer than the watch start.
LATER = datetime(2100, 1, 1, tzinfo=timezone.utc)


class FakeSession:
    def __init__(self, client: Any) -> None:
        self._client = client

    def client(self, service: str, region_name: str | None = None) -> Any:
        return self._client


class FakeCredentials(SimulatedCredentialProvider):
    def __init__(self, client: Any) -> None:
        super().__init__()
        self._client = client

    async def default(self) -> CredentialContext:
        return CredentialContext(region="us-west-2", session=FakeSession(self._client))


@pytest.fixture
def client() -> Any:
    return boto3.client(
        "cloudformation",
        region_name="us-west-2",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(client: Any) -> Any:
    with Stubber(client) as stub:
        yield stub


@pytest.fixture
def cfn_backend() -> CloudFormationStackBackend:
    return CloudFormationStackBackend(
        AwsSettings(event_poll_interval=0, change_set_wait_delay=1, change_set_wait_attempts=1)
    )


def _context(client: Any) -> CredentialContext:
    return CredentialContext(region="us-west-2", session=FakeSession(client))


def _request(client: Any, mode: ChangeMode = ChangeMode.CREATE, **kwargs: Any) -> StackChangeRequest:
    return StackChangeRequest(
        stack_name=STACK,
        change_set_name="cs-1",
        template="{}",
        context=_context(client),
        mode=mode,
        **kwargs,
    )


def _stack(status: str, **extra: Any) -> dict[str, Any]:
    return {
        "Stacks": [{
            "StackName": STACK,
            "StackId": STACK_ID,
            "CreationTime": CREATED,
            "StackStatus": status,
            **extra,
        }],
    }


def _missing(stubber: Any) -> None:
    stubber.add_client_error(
        "describe_stacks",
        service_error_code="ValidationError",
        service_message=f"Stack with id {STACK} does not exist",
    )


def _raw_event(event_id: str, logical: str, resource_type: str, status: str) -> dict[str, Any]:
    return {
        "StackId": STACK_ID,
        "EventId": event_id,
        "StackName": STACK,
        "LogicalResourceId": logical,
        "PhysicalResourceId": f"{logical.lower()}-1",
        "ResourceType": resource_type,
        "Timestamp": LATER,
        "ResourceStatus": status,
    }


class TestApplyChange:
    @pytest.mark.asyncio
    async def test_create_executes_change_set(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        _missing(stubber)
        stubber.add_response(
            "create_change_set",
            {"Id": CHANGE_SET_ID, "StackId": STACK_ID},
            {
                "StackName": STACK,
                "ChangeSetName": "cs-1",
                "TemplateBody": "{}",
                "ChangeSetType": "CREATE",
                "Capabilities": ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"],
                "Tags": [{"Key": "ecs-project", "Value": "phonetool"}],
                "RoleARN": "arn:aws:iam::222222222222:role/exec",
            },
        )
        stubber.add_response(
            "describe_change_set",
            {"Status": "CREATE_COMPLETE"},
            {"ChangeSetName": CHANGE_SET_ID, "StackName": STACK},
        )
        stubber.add_response(
            "execute_change_set", {}, {"ChangeSetName": CHANGE_SET_ID, "StackName": STACK}
        )

        await cfn_backend.apply_change(_request(
            client,
            tags={"ecs-project": "phonetool"},
            execution_role_arn="arn:aws:iam::222222222222:role/exec",
        ))

        stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_create_on_existing_stack(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        stubber.add_response("describe_stacks", _stack("CREATE_COMPLETE"))

        with pytest.raises(StackAlreadyExistsError):
            await cfn_backend.apply_change(_request(client))

    @pytest.mark.asyncio
    async def test_stack_in_review_treated_as_new(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        stubber.add_response("describe_stacks", _stack("REVIEW_IN_PROGRESS"))
        stubber.add_response(
            "create_change_set",
            {"Id": CHANGE_SET_ID},
            {
                "StackName": STACK,
                "ChangeSetName": "cs-1",
                "TemplateBody": "{}",
                "ChangeSetType": "CREATE",
                "Capabilities": ANY,
                "Tags": [],
            },
        )
        stubber.add_response("describe_change_set", {"Status": "CREATE_COMPLETE"})
        stubber.add_response("execute_change_set", {})

        await cfn_backend.apply_change(_request(client))

        stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_update_without_changes_deletes_change_set(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        reason = "The submitted information didn't contain changes."
        stubber.add_response("describe_stacks", _stack("UPDATE_COMPLETE"))
        stubber.add_response(
            "create_change_set",
            {"Id": CHANGE_SET_ID},
            {
                "StackName": STACK,
                "ChangeSetName": "cs-1",
                "TemplateBody": "{}",
                "ChangeSetType": "UPDATE",
                "Capabilities": ANY,
                "Tags": [],
            },
        )
        stubber.add_response("describe_change_set", {"Status": "FAILED", "StatusReason": reason})
        stubber.add_response("describe_change_set", {"Status": "FAILED", "StatusReason": reason})
        stubber.add_response(
            "delete_change_set", {}, {"ChangeSetName": CHANGE_SET_ID, "StackName": STACK}
        )

        await cfn_backend.apply_change(_request(client, ChangeMode.CREATE_OR_UPDATE))

        stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_failed_change_set_rejected(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        reason = "Template format error: unsupported resource"
        _missing(stubber)
        stubber.add_response("create_change_set", {"Id": CHANGE_SET_ID})
        stubber.add_response("describe_change_set", {"Status": "FAILED", "StatusReason": reason})
        stubber.add_response("describe_change_set", {"Status": "FAILED", "StatusReason": reason})

        with pytest.raises(StackBackendError, match="Template format error"):
            await cfn_backend.apply_change(_request(client))

    @pytest.mark.asyncio
    async def test_client_error_wrapped(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        _missing(stubber)
        stubber.add_client_error(
            "create_change_set",
            service_error_code="InsufficientCapabilitiesException",
            service_message="Requires capabilities",
        )

        with pytest.raises(StackBackendError, match="Requires capabilities"):
            await cfn_backend.apply_change(_request(client))


class TestStreamEvents:
    @pytest.mark.asyncio
    async def test_events_oldest_first_then_result(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        newest_first = {
            "StackEvents": [
                _raw_event("e2", "VPC", "AWS::EC2::VPC", "CREATE_COMPLETE"),
                _raw_event("e1", "VPC", "AWS::EC2::VPC", "CREATE_IN_PROGRESS"),
            ],
        }
        stubber.add_response("describe_stack_events", newest_first)
        stubber.add_response(
            "describe_stacks",
            _stack(
                "CREATE_COMPLETE",
                Outputs=[{"OutputKey": "ClusterId", "OutputValue": "cluster-1"}],
            ),
        )
        stubber.add_response("describe_stack_events", newest_first)

        stream = await cfn_backend.stream_events(STACK, _context(client))
        events: list[ProvisioningEvent] = []
        while (event := await stream.events.get()) is not None:
            events.append(event)
        result = await stream.result

        assert [e.status for e in events] == ["CREATE_IN_PROGRESS", "CREATE_COMPLETE"]
        assert result.status == "CREATE_COMPLETE"
        assert result.account_id == "222222222222"
        assert result.outputs == {"ClusterId": "cluster-1"}

    @pytest.mark.asyncio
    async def test_old_events_skipped(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        stale = _raw_event("e0", "VPC", "AWS::EC2::VPC", "CREATE_COMPLETE")
        stale["Timestamp"] = CREATED
        stubber.add_response("describe_stack_events", {"StackEvents": [stale]})
        stubber.add_response("describe_stacks", _stack("UPDATE_COMPLETE"))
        stubber.add_response("describe_stack_events", {"StackEvents": [stale]})

        stream = await cfn_backend.stream_events(STACK, _context(client))

        assert await stream.events.get() is None
        assert (await stream.result).status == "UPDATE_COMPLETE"

    @pytest.mark.asyncio
    async def test_failed_stack_fails_stream(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        stubber.add_response(
            "describe_stack_events",
            {"StackEvents": [_raw_event("e1", "VPC", "AWS::EC2::VPC", "CREATE_FAILED")]},
        )
        stubber.add_response(
            "describe_stacks",
            _stack("ROLLBACK_COMPLETE", StackStatusReason="The following resource(s) failed"),
        )
        stubber.add_response(
            "describe_stack_events",
            {"StackEvents": [_raw_event("e1", "VPC", "AWS::EC2::VPC", "CREATE_FAILED")]},
        )

        stream = await cfn_backend.stream_events(STACK, _context(client))

        first = await stream.events.get()
        assert first is not None and first.status == "CREATE_FAILED"
        assert await stream.events.get() is None
        with pytest.raises(StreamFailedError) as excinfo:
            await stream.result
        assert excinfo.value.status == "ROLLBACK_COMPLETE"
        assert "failed" in excinfo.value.reason

    @pytest.mark.asyncio
    async def test_rollback_events_drained_before_failure(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        failed = _raw_event("e1", "VPC", "AWS::EC2::VPC", "CREATE_FAILED")
        rolled_back = _raw_event("e2", "VPC", "AWS::EC2::VPC", "DELETE_COMPLETE")
        stubber.add_response("describe_stack_events", {"StackEvents": [failed]})
        stubber.add_response("describe_stacks", _stack("ROLLBACK_COMPLETE"))
        stubber.add_response("describe_stack_events", {"StackEvents": [rolled_back, failed]})

        stream = await cfn_backend.stream_events(STACK, _context(client))
        events: list[ProvisioningEvent] = []
        while (event := await stream.events.get()) is not None:
            events.append(event)

        assert [e.status for e in events] == ["CREATE_FAILED", "DELETE_COMPLETE"]
        with pytest.raises(StreamFailedError):
            await stream.result
        stubber.assert_no_pending_responses()


class TestDescribeOutputs:
    @pytest.mark.asyncio
    async def test_outputs(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        stubber.add_response(
            "describe_stacks",
            _stack(
                "CREATE_COMPLETE",
                Outputs=[{"OutputKey": "PublicLoadBalancerDNSName", "OutputValue": "lb.example"}],
            ),
        )

        outputs = await cfn_backend.describe_outputs(STACK, _context(client))

        assert outputs == {"PublicLoadBalancerDNSName": "lb.example"}

    @pytest.mark.asyncio
    async def test_missing_stack(
        self, cfn_backend: CloudFormationStackBackend, client: Any, stubber: Any
    ) -> None:
        _missing(stubber)
        with pytest.raises(StackBackendError, match="does not exist"):
            await cfn_backend.describe_outputs(STACK, _context(client))


class TestDnsDelegationGrantor:
    @pytest.mark.asyncio
    async def test_appends_account_to_parameter(self, client: Any, stubber: Any) -> None:
        roles_stack = "chatapp-infrastructure-roles"
        stubber.add_response(
            "describe_stacks",
            {
                "Stacks": [{
                    "StackName": roles_stack,
                    "CreationTime": CREATED,
                    "StackStatus": "CREATE_COMPLETE",
                    "Parameters": [
                        {"ParameterKey": "AppDNSDelegatedAccounts", "ParameterValue": "111111111111"},
                        {"ParameterKey": "AppDomainName", "ParameterValue": "chat.example.com"},
                    ],
                }],
            },
            {"StackName": roles_stack},
        )
        stubber.add_response(
            "update_stack",
            {"StackId": STACK_ID},
            {
                "StackName": roles_stack,
                "UsePreviousTemplate": True,
                "Parameters": [
                    {"ParameterKey": "AppDomainName", "UsePreviousValue": True},
                    {
                        "ParameterKey": "AppDNSDelegatedAccounts",
                        "ParameterValue": "111111111111,222222222222",
                    },
                ],
                "Capabilities": ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"],
            },
        )
        stubber.add_response(
            "describe_stacks",
            {"Stacks": [{
                "StackName": roles_stack,
                "CreationTime": CREATED,
                "StackStatus": "UPDATE_COMPLETE",
            }]},
        )
        grantor = CloudFormationDnsDelegationGrantor(FakeCredentials(client), AwsSettings())
        project = Project(name="chatapp", account_id="111111111111", domain="chat.example.com")

        await grantor.delegate_permissions(project, "222222222222")

        stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_already_delegated_is_noop(self, client: Any, stubber: Any) -> None:
        stubber.add_response(
            "describe_stacks",
            {"Stacks": [{
                "StackName": "chatapp-infrastructure-roles",
                "CreationTime": CREATED,
                "StackStatus": "UPDATE_COMPLETE",
                "Parameters": [
                    {"ParameterKey": "AppDNSDelegatedAccounts", "ParameterValue": "222222222222"},
                ],
            }]},
        )
        grantor = CloudFormationDnsDelegationGrantor(FakeCredentials(client), AwsSettings())
        project = Project(name="chatapp", account_id="111111111111", domain="chat.example.com")

        await grantor.delegate_permissions(project, "222222222222")

        stubber.assert_no_pending_responses()
