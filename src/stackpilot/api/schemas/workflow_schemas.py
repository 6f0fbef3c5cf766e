"""API schemas for project, environment and deployment endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from stackpilot.domain.models.progress import PhaseState
from stackpilot.domain.models.project import ApplicationType


NAME_PATTERN = "^[a-z][a-z0-9-]*$"


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=NAME_PATTERN)
    account_id: str = Field(..., pattern="^[0-9]{12}$")
    domain: str = ""


class ProjectResponse(BaseModel):
    name: str
    account_id: str
    domain: str
    linked_accounts: list[tuple[str, str]] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class CreateApplicationRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=NAME_PATTERN)
    type: ApplicationType = ApplicationType.LOAD_BALANCED_WEB_APP


class ApplicationResponse(BaseModel):
    name: str
    project: str
    type: ApplicationType

    model_config = {"from_attributes": True}


class CreateEnvironmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=NAME_PATTERN)
    profile: str = ""
    prod: bool = False


class EnvironmentResponse(BaseModel):
    name: str
    project: str
    account_id: str
    region: str
    manager_role_arn: str
    execution_role_arn: str
    prod: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EnvironmentListResponse(BaseModel):
    items: list[EnvironmentResponse]
    total: int


class PhaseRowResponse(BaseModel):
    label: str
    state: PhaseState
    observed: int
    expected: int
    last_status: str = ""


class EnvironmentRunResponse(BaseModel):
    run_id: str
    success: bool
    already_provisioned: bool = False
    completed_states: list[str] = Field(default_factory=list)
    environment: EnvironmentResponse | None = None
    progress: list[PhaseRowResponse] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list)


class CreateDeploymentRequest(BaseModel):
    environment: str = Field(..., min_length=1)
    image_tag: str | None = Field(default=None, min_length=1, max_length=128)
    dockerfile_dir: str = "."


class DeploymentRunResponse(BaseModel):
    run_id: str
    success: bool
    completed_states: list[str] = Field(default_factory=list)
    endpoint: str = ""
    image_tag: str = ""
    messages: list[str] = Field(default_factory=list)
