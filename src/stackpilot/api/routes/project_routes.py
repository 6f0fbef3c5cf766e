"""Project and application registration routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from stackpilot.api.dependencies.services import get_service_container, ServiceContainer
from stackpilot.api.schemas.workflow_schemas import (
    ApplicationResponse,
    CreateApplicationRequest,
    CreateProjectRequest,
    ProjectResponse,
)
from stackpilot.domain.models.project import Application, Project
from stackpilot.domain.ports.repositories import (
    ApplicationAlreadyExistsError,
    ProjectAlreadyExistsError,
    ProjectNotFoundError,
)


router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> ProjectResponse:
    """Register a project."""
    project = Project(name=request.name, account_id=request.account_id, domain=request.domain)
    async with container.registry() as registry:
        try:
            await registry.create_project(project)
        except ProjectAlreadyExistsError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
    return ProjectResponse.model_validate(project)


@router.get("/{project}", response_model=ProjectResponse)
async def get_project(
    project: str,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> ProjectResponse:
    """Show a project and the accounts and regions linked to it."""
    async with container.registry() as registry:
        try:
            found = await registry.get_project(project)
        except ProjectNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        linked = await registry.list_linked_accounts(project)
    return ProjectResponse(
        name=found.name,
        account_id=found.account_id,
        domain=found.domain,
        linked_accounts=linked,
    )


@router.post(
    "/{project}/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_application(
    project: str,
    request: CreateApplicationRequest,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> ApplicationResponse:
    """Register an application under a project."""
    async with container.registry() as registry:
        try:
            await registry.get_project(project)
        except ProjectNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        try:
            application = await container.register_application(
                registry, Application(name=request.name, project=project, type=request.type)
            )
        except ApplicationAlreadyExistsError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
    return ApplicationResponse.model_validate(application)
