"""CloudFormation template packager."""

from __future__ import annotations

import json
from typing import Any

import structlog

from stackpilot.domain.models.stack import (
    AppTemplateParams,
    CreateEnvironmentInput,
    CredentialContext,
    env_stack_name,
)
from stackpilot.domain.ports.services import TemplatePackager


logger = structlog.get_logger(__name__)

TEMPLATE_FORMAT_VERSION = "2010-09-09"


def _ref(name: str) -> dict[str, str]:
    return {"Ref": name}


def _get_att(name: str, attribute: str) -> dict[str, list[str]]:
    return {"Fn::GetAtt": [name, attribute]}


def _import(env_stack: str, export: str) -> dict[str, str]:
    return {"Fn::ImportValue": f"{env_stack}-{export}"}


def _assume_role(principal: dict[str, Any]) -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": principal,
            "Action": "sts:AssumeRole",
        }],
    }


class CloudFormationTemplatePackager(TemplatePackager):
    """Renders environment and load-balanced Fargate templates as JSON.

    Resource logical names follow the environment progress phases: subnets
    are prefixed ``Public``/``Private``, every routing resource carries
    ``Route`` in its name and every load balancer resource carries
    ``LoadBalancer``.
    """

    def __init__(self, task_count: int = 2, container_port: int = 80) -> None:
        self._task_count = task_count
        self._container_port = container_port

    async def package_environment(self, env_input: CreateEnvironmentInput) -> str:
        resources = self._network_resources()
        resources.update(self._role_resources(env_input))
        resources["Cluster"] = {"Type": "AWS::ECS::Cluster"}
        if env_input.public_load_balancer:
            resources.update(self._load_balancer_resources())

        template = {
            "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
            "Description": f"Environment {env_input.name} of project {env_input.project}",
            "Metadata": {
                "Project": env_input.project,
                "Environment": env_input.name,
                "Production": env_input.prod,
                "ProjectDNSName": env_input.project_dns_name,
            },
            "Resources": resources,
            "Outputs": self._environment_outputs(env_input),
        }
        logger.info(
            "environment_template_packaged",
            stack_name=env_input.stack_name,
            resources=len(resources),
        )
        return json.dumps(template, indent=2, sort_keys=False)

    async def package_application(
        self, params: AppTemplateParams, context: CredentialContext
    ) -> str:
        env_stack = env_stack_name(params.project, params.env)
        template = {
            "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
            "Description": f"Application {params.app} in environment {params.env}",
            "Parameters": {
                "EnvironmentName": {"Type": "String", "Default": env_stack},
                "Image": {"Type": "String", "Default": params.image},
                "TaskCount": {"Type": "Number", "Default": self._task_count},
            },
            "Resources": self._service_resources(env_stack),
        }
        logger.info(
            "application_template_packaged",
            stack_name=params.stack_name,
            image=params.image,
            context=context.label,
        )
        return json.dumps(template, indent=2, sort_keys=False)

    def _network_resources(self) -> dict[str, Any]:
        resources: dict[str, Any] = {
            "VPC": {
                "Type": "AWS::EC2::VPC",
                "Properties": {
                    "CidrBlock": "10.0.0.0/16",
                    "EnableDnsHostnames": True,
                    "EnableDnsSupport": True,
                },
            },
            "InternetGateway": {"Type": "AWS::EC2::InternetGateway"},
            "InternetGatewayAttachment": {
                "Type": "AWS::EC2::VPCGatewayAttachment",
                "Properties": {
                    "InternetGatewayId": _ref("InternetGateway"),
                    "VpcId": _ref("VPC"),
                },
            },
            "PublicRouteTable": {
                "Type": "AWS::EC2::RouteTable",
                "Properties": {"VpcId": _ref("VPC")},
            },
            "DefaultPublicRoute": {
                "Type": "AWS::EC2::Route",
                "DependsOn": "InternetGatewayAttachment",
                "Properties": {
                    "RouteTableId": _ref("PublicRouteTable"),
                    "DestinationCidrBlock": "0.0.0.0/0",
                    "GatewayId": _ref("InternetGateway"),
                },
            },
        }
        for index, zone in enumerate(("0", "1"), start=1):
            resources[f"PublicSubnet{index}"] = {
                "Type": "AWS::EC2::Subnet",
                "Properties": {
                    "VpcId": _ref("VPC"),
                    "CidrBlock": f"10.0.{index - 1}.0/24",
                    "MapPublicIpOnLaunch": True,
                    "AvailabilityZone": {"Fn::Select": [zone, {"Fn::GetAZs": ""}]},
                },
            }
            resources[f"PrivateSubnet{index}"] = {
                "Type": "AWS::EC2::Subnet",
                "Properties": {
                    "VpcId": _ref("VPC"),
                    "CidrBlock": f"10.0.{index + 1}.0/24",
                    "MapPublicIpOnLaunch": False,
                    "AvailabilityZone": {"Fn::Select": [zone, {"Fn::GetAZs": ""}]},
                },
            }
            resources[f"PublicSubnet{index}RouteTableAssociation"] = {
                "Type": "AWS::EC2::SubnetRouteTableAssociation",
                "Properties": {
                    "RouteTableId": _ref("PublicRouteTable"),
                    "SubnetId": _ref(f"PublicSubnet{index}"),
                },
            }
        return resources

    def _role_resources(self, env_input: CreateEnvironmentInput) -> dict[str, Any]:
        tools_principal = {"AWS": env_input.tools_account_principal_arn} if (
            env_input.tools_account_principal_arn
        ) else {"Service": "cloudformation.amazonaws.com"}
        return {
            "CloudformationExecutionRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "RoleName": f"{env_input.stack_name}-CFNExecutionRole",
                    "AssumeRolePolicyDocument": _assume_role(
                        {"Service": "cloudformation.amazonaws.com"}
                    ),
                    "ManagedPolicyArns": ["arn:aws:iam::aws:policy/AdministratorAccess"],
                },
            },
            "EnvironmentManagerRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "RoleName": f"{env_input.stack_name}-EnvManagerRole",
                    "AssumeRolePolicyDocument": _assume_role(tools_principal),
                    "ManagedPolicyArns": ["arn:aws:iam::aws:policy/PowerUserAccess"],
                },
            },
        }

    def _load_balancer_resources(self) -> dict[str, Any]:
        return {
            "PublicLoadBalancerSecurityGroup": {
                "Type": "AWS::EC2::SecurityGroup",
                "Properties": {
                    "GroupDescription": "Access to the public facing load balancer",
                    "VpcId": _ref("VPC"),
                    "SecurityGroupIngress": [
                        {"CidrIp": "0.0.0.0/0", "IpProtocol": "tcp", "FromPort": 80, "ToPort": 80},
                    ],
                },
            },
            "PublicLoadBalancer": {
                "Type": "AWS::ElasticLoadBalancingV2::LoadBalancer",
                "Properties": {
                    "Scheme": "internet-facing",
                    "SecurityGroups": [_get_att("PublicLoadBalancerSecurityGroup", "GroupId")],
                    "Subnets": [_ref("PublicSubnet1"), _ref("PublicSubnet2")],
                    "Type": "application",
                },
            },
            "DefaultHTTPTargetGroup": {
                "Type": "AWS::ElasticLoadBalancingV2::TargetGroup",
                "Properties": {
                    "Port": 80,
                    "Protocol": "HTTP",
                    "TargetType": "ip",
                    "VpcId": _ref("VPC"),
                },
            },
            "HTTPListener": {
                "Type": "AWS::ElasticLoadBalancingV2::Listener",
                "Properties": {
                    "DefaultActions": [
                        {"TargetGroupArn": _ref("DefaultHTTPTargetGroup"), "Type": "forward"},
                    ],
                    "LoadBalancerArn": _ref("PublicLoadBalancer"),
                    "Port": 80,
                    "Protocol": "HTTP",
                },
            },
        }

    def _environment_outputs(self, env_input: CreateEnvironmentInput) -> dict[str, Any]:
        stack = env_input.stack_name
        outputs: dict[str, Any] = {
            "VpcId": {"Value": _ref("VPC"), "Export": {"Name": f"{stack}-VpcId"}},
            "PublicSubnets": {
                "Value": {"Fn::Join": [",", [_ref("PublicSubnet1"), _ref("PublicSubnet2")]]},
                "Export": {"Name": f"{stack}-PublicSubnets"},
            },
            "PrivateSubnets": {
                "Value": {"Fn::Join": [",", [_ref("PrivateSubnet1"), _ref("PrivateSubnet2")]]},
                "Export": {"Name": f"{stack}-PrivateSubnets"},
            },
            "ClusterId": {"Value": _ref("Cluster"), "Export": {"Name": f"{stack}-ClusterId"}},
            "EnvironmentManagerRoleARN": {
                "Value": _get_att("EnvironmentManagerRole", "Arn"),
            },
            "CFNExecutionRoleARN": {
                "Value": _get_att("CloudformationExecutionRole", "Arn"),
            },
        }
        if env_input.public_load_balancer:
            outputs["PublicLoadBalancerDNSName"] = {
                "Value": _get_att("PublicLoadBalancer", "DNSName"),
            }
            outputs["PublicLoadBalancerArn"] = {
                "Value": _ref("PublicLoadBalancer"),
                "Export": {"Name": f"{stack}-PublicLoadBalancerArn"},
            }
            outputs["PublicLoadBalancerSecurityGroupId"] = {
                "Value": _get_att("PublicLoadBalancerSecurityGroup", "GroupId"),
                "Export": {"Name": f"{stack}-PublicLoadBalancerSecurityGroupId"},
            }
        return outputs

    def _service_resources(self, env_stack: str) -> dict[str, Any]:
        port = self._container_port
        ecs_tasks = {"Service": "ecs-tasks.amazonaws.com"}
        return {
            "LogGroup": {
                "Type": "AWS::Logs::LogGroup",
                "UpdateReplacePolicy": "Retain",
                "DeletionPolicy": "Retain",
            },
            "ExecutionRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {"AssumeRolePolicyDocument": _assume_role(ecs_tasks)},
            },
            "TaskRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {"AssumeRolePolicyDocument": _assume_role(ecs_tasks)},
            },
            "LogWritingPolicy": {
                "Type": "AWS::IAM::Policy",
                "Properties": {
                    "PolicyName": "LogWritingPolicy",
                    "PolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [{
                            "Effect": "Allow",
                            "Action": ["logs:CreateLogStream", "logs:PutLogEvents"],
                            "Resource": _get_att("LogGroup", "Arn"),
                        }],
                    },
                    "Roles": [_ref("ExecutionRole")],
                },
            },
            "TaskDefinition": {
                "Type": "AWS::ECS::TaskDefinition",
                "Properties": {
                    "ContainerDefinitions": [{
                        "Essential": True,
                        "Image": _ref("Image"),
                        "Name": "web",
                        "LogConfiguration": {
                            "LogDriver": "awslogs",
                            "Options": {
                                "awslogs-group": _ref("LogGroup"),
                                "awslogs-stream-prefix": "Service",
                                "awslogs-region": _ref("AWS::Region"),
                            },
                        },
                        "PortMappings": [{"ContainerPort": port, "Protocol": "tcp"}],
                    }],
                    "Cpu": "256",
                    "Memory": "512",
                    "NetworkMode": "awsvpc",
                    "RequiresCompatibilities": ["FARGATE"],
                    "ExecutionRoleArn": _get_att("ExecutionRole", "Arn"),
                    "TaskRoleArn": _get_att("TaskRole", "Arn"),
                },
            },
            "SecurityGroup": {
                "Type": "AWS::EC2::SecurityGroup",
                "Properties": {
                    "GroupDescription": {"Fn::Sub": "${AWS::StackName}-SecurityGroup"},
                    "VpcId": _import(env_stack, "VpcId"),
                },
            },
            "SecurityGroupIngress": {
                "Type": "AWS::EC2::SecurityGroupIngress",
                "Properties": {
                    "GroupId": _get_att("SecurityGroup", "GroupId"),
                    "IpProtocol": "tcp",
                    "FromPort": port,
                    "ToPort": port,
                    "SourceSecurityGroupId": _import(env_stack, "PublicLoadBalancerSecurityGroupId"),
                },
            },
            "TargetGroup": {
                "Type": "AWS::ElasticLoadBalancingV2::TargetGroup",
                "Properties": {
                    "Port": port,
                    "Protocol": "HTTP",
                    "TargetType": "ip",
                    "VpcId": _import(env_stack, "VpcId"),
                },
            },
            "Listener": {
                "Type": "AWS::ElasticLoadBalancingV2::Listener",
                "Properties": {
                    "DefaultActions": [{"TargetGroupArn": _ref("TargetGroup"), "Type": "forward"}],
                    "LoadBalancerArn": _import(env_stack, "PublicLoadBalancerArn"),
                    "Port": port,
                    "Protocol": "HTTP",
                },
            },
            "Service": {
                "Type": "AWS::ECS::Service",
                "DependsOn": ["TargetGroup", "Listener"],
                "Properties": {
                    "Cluster": _import(env_stack, "ClusterId"),
                    "TaskDefinition": _ref("TaskDefinition"),
                    "DesiredCount": _ref("TaskCount"),
                    "LaunchType": "FARGATE",
                    "HealthCheckGracePeriodSeconds": 60,
                    "DeploymentConfiguration": {
                        "MaximumPercent": 200,
                        "MinimumHealthyPercent": 50,
                    },
                    "LoadBalancers": [{
                        "ContainerName": "web",
                        "ContainerPort": port,
                        "TargetGroupArn": _ref("TargetGroup"),
                    }],
                    "NetworkConfiguration": {
                        "AwsvpcConfiguration": {
                            "AssignPublicIp": "DISABLED",
                            "SecurityGroups": [_get_att("SecurityGroup", "GroupId")],
                            "Subnets": {"Fn::Split": [",", _import(env_stack, "PrivateSubnets")]},
                        },
                    },
                },
            },
        }
