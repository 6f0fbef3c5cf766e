"""Unit tests for progress phases and rows."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stackpilot.domain.models.progress import (
    ENVIRONMENT_PHASES,
    PhaseRow,
    PhaseState,
    ProgressPhase,
)
from stackpilot.domain.models.stack import ProvisioningEvent


def _event(resource_type: str, logical_name: str) -> ProvisioningEvent:
    return ProvisioningEvent(
        resource_type=resource_type, logical_name=logical_name, status="CREATE_COMPLETE"
    )


def _phase(label_fragment: str) -> ProgressPhase:
    return next(p for p in ENVIRONMENT_PHASES if label_fragment in p.label)


class TestPhaseRow:
    def test_pending(self) -> None:
        row = PhaseRow(label="vpc", expected=1)
        assert row.state == PhaseState.PENDING
        assert not row.complete

    def test_in_progress_on_status_only(self) -> None:
        row = PhaseRow(label="vpc", expected=1, last_status="CREATE_IN_PROGRESS")
        assert row.state == PhaseState.IN_PROGRESS

    def test_complete(self) -> None:
        row = PhaseRow(label="subnets", observed=2, expected=2, last_status="CREATE_COMPLETE")
        assert row.complete
        assert row.render() == "subnets\t[complete]\t2/2"


class TestProgressPhase:
    def test_expected_count_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ProgressPhase(label="x", matches=lambda e: True, expected_count=0)


class TestEnvironmentPhases:
    def test_declared_order(self) -> None:
        labels = [p.label for p in ENVIRONMENT_PHASES]
        assert labels[0].startswith("- Virtual private cloud")
        assert labels[-1].startswith("- Application load balancer")
        assert len(labels) == 7

    def test_subnets_split_by_logical_name(self) -> None:
        public = _phase("Public subnets")
        private = _phase("Private subnets")
        event = _event("AWS::EC2::Subnet", "PublicSubnet1")
        assert public.matches(event)
        assert not private.matches(event)
        assert private.matches(_event("AWS::EC2::Subnet", "PrivateSubnet2"))

    def test_route_resources_match_routing_phase(self) -> None:
        routing = _phase("Routing tables")
        assert routing.matches(_event("AWS::EC2::RouteTable", "PublicRouteTable"))
        assert routing.matches(
            _event("AWS::EC2::SubnetRouteTableAssociation", "PublicSubnet1RouteTableAssociation")
        )
        assert not routing.matches(_event("AWS::EC2::VPC", "VPC"))

    def test_load_balancer_phase(self) -> None:
        lb = _phase("load balancer")
        assert lb.matches(_event("AWS::EC2::SecurityGroup", "PublicLoadBalancerSecurityGroup"))
        assert lb.matches(_event("AWS::ElasticLoadBalancingV2::Listener", "HTTPListener"))
        assert not lb.matches(_event("AWS::ECS::Cluster", "Cluster"))
