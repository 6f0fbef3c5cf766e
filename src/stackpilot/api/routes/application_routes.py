"""Application deploy routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from stackpilot.api.dependencies.services import get_service_container, ServiceContainer
from stackpilot.api.errors import http_error_for
from stackpilot.api.schemas.workflow_schemas import (
    CreateDeploymentRequest,
    DeploymentRunResponse,
)
from stackpilot.domain.services.application_workflow import AppDeployRequest
from stackpilot.infrastructure.progress.reporter import LoggingProgressReporter


router = APIRouter(prefix="/projects/{project}/applications/{app}", tags=["deployments"])


@router.post(
    "/deployments",
    response_model=DeploymentRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def deploy_application(
    project: str,
    app: str,
    request: CreateDeploymentRequest,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> DeploymentRunResponse:
    """Build, push and deploy an application image to an environment."""
    progress = LoggingProgressReporter()
    async with container.registry() as registry:
        workflow = container.application_workflow(registry, progress)
        result = await workflow.run(AppDeployRequest(
            project=project,
            app=app,
            env=request.environment,
            image_tag=request.image_tag,
            dockerfile_dir=request.dockerfile_dir,
        ))
    if not result.success:
        raise http_error_for(result)

    return DeploymentRunResponse(
        run_id=result.run_id,
        success=result.success,
        completed_states=result.completed_states,
        endpoint=result.endpoint,
        image_tag=result.image_tag,
        messages=progress.transcript,
    )
