"""Environment bring-up routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from stackpilot.api.dependencies.services import get_service_container, ServiceContainer
from stackpilot.api.errors import http_error_for
from stackpilot.api.schemas.workflow_schemas import (
    CreateEnvironmentRequest,
    EnvironmentListResponse,
    EnvironmentResponse,
    EnvironmentRunResponse,
    PhaseRowResponse,
)
from stackpilot.domain.ports.repositories import ProjectNotFoundError
from stackpilot.domain.services.environment_workflow import EnvironmentInitRequest
from stackpilot.infrastructure.progress.reporter import LoggingProgressReporter


router = APIRouter(prefix="/projects/{project}/environments", tags=["environments"])


@router.post("", response_model=EnvironmentRunResponse, status_code=status.HTTP_201_CREATED)
async def create_environment(
    project: str,
    request: CreateEnvironmentRequest,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> EnvironmentRunResponse:
    """Bring up an environment and register it with the project.

    Re-running against an environment whose stack already exists succeeds
    with ``already_provisioned`` set.
    """
    progress = LoggingProgressReporter()
    async with container.registry() as registry:
        workflow = container.environment_workflow(registry, progress)
        result = await workflow.run(EnvironmentInitRequest(
            project=project,
            name=request.name,
            profile=request.profile,
            prod=request.prod,
        ))
    if not result.success:
        raise http_error_for(result)

    return EnvironmentRunResponse(
        run_id=result.run_id,
        success=result.success,
        already_provisioned=result.already_provisioned,
        completed_states=result.completed_states,
        environment=(
            EnvironmentResponse.model_validate(result.environment)
            if result.environment else None
        ),
        progress=[
            PhaseRowResponse(
                label=row.label,
                state=row.state,
                observed=row.observed,
                expected=row.expected,
                last_status=row.last_status,
            )
            for row in progress.latest_rows
        ],
        messages=progress.transcript,
    )


@router.get("", response_model=EnvironmentListResponse)
async def list_environments(
    project: str,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> EnvironmentListResponse:
    """List the environments registered under a project."""
    async with container.registry() as registry:
        try:
            await registry.get_project(project)
        except ProjectNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        environments = await registry.list_environments(project)
    return EnvironmentListResponse(
        items=[EnvironmentResponse.model_validate(e) for e in environments],
        total=len(environments),
    )
