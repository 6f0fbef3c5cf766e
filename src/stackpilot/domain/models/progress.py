"""Progress phases: logical groupings of raw provisioning events."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from pydantic import Field

from stackpilot.domain.models.base import ValueObject
from stackpilot.domain.models.stack import ProvisioningEvent


EventPredicate = Callable[[ProvisioningEvent], bool]


class PhaseState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class ProgressPhase(ValueObject):
    """A user-facing phase with its membership predicate and expected resource count."""

    label: str
    matches: EventPredicate
    expected_count: int = Field(default=1, ge=1)


class PhaseRow(ValueObject):
    """Renderable snapshot of one phase."""

    label: str
    observed: int = 0
    expected: int = 1
    last_status: str = ""

    @property
    def state(self) -> PhaseState:
        if self.observed >= self.expected:
            return PhaseState.COMPLETE
        if self.observed > 0 or self.last_status:
            return PhaseState.IN_PROGRESS
        return PhaseState.PENDING

    @property
    def complete(self) -> bool:
        return self.state == PhaseState.COMPLETE

    def render(self) -> str:
        return f"{self.label}\t[{self.state.value}]\t{self.observed}/{self.expected}"


def _type_is(*resource_types: str) -> EventPredicate:
    return lambda event: event.resource_type in resource_types


ENVIRONMENT_PHASES: tuple[ProgressPhase, ...] = (
    ProgressPhase(
        label="- Virtual private cloud for networking",
        matches=_type_is("AWS::EC2::VPC"),
        expected_count=1,
    ),
    ProgressPhase(
        label="- Internet gateway to connect the network to the internet",
        matches=_type_is("AWS::EC2::InternetGateway", "AWS::EC2::VPCGatewayAttachment"),
        expected_count=2,
    ),
    ProgressPhase(
        label="- Public subnets for internet facing services",
        matches=lambda e: e.resource_type == "AWS::EC2::Subnet"
        and e.logical_name.startswith("Public"),
        expected_count=2,
    ),
    ProgressPhase(
        label="- Private subnets for services that can't be reached from the internet",
        matches=lambda e: e.resource_type == "AWS::EC2::Subnet"
        and e.logical_name.startswith("Private"),
        expected_count=2,
    ),
    ProgressPhase(
        label="- Routing tables for services to talk with each other",
        matches=lambda e: "Route" in e.logical_name,
        expected_count=4,
    ),
    ProgressPhase(
        label="- ECS Cluster to hold your services",
        matches=_type_is("AWS::ECS::Cluster"),
        expected_count=1,
    ),
    ProgressPhase(
        label="- Application load balancer to distribute traffic",
        matches=lambda e: "LoadBalancer" in e.logical_name
        or "ElasticLoadBalancingV2" in e.resource_type,
        expected_count=4,
    ),
)
