"""Mapping of failed workflow runs to HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from stackpilot.domain.models.workflow import DeploymentResult
from stackpilot.domain.ports.repositories import (
    ApplicationAlreadyExistsError,
    ApplicationNotFoundError,
    EnvironmentAlreadyExistsError,
    EnvironmentNotFoundError,
    ProjectAlreadyExistsError,
    ProjectNotFoundError,
)
from stackpilot.domain.ports.services import CredentialResolutionError, RepositoryNotFoundError


NOT_FOUND_ERRORS = (
    ProjectNotFoundError,
    EnvironmentNotFoundError,
    ApplicationNotFoundError,
    RepositoryNotFoundError,
)

CONFLICT_ERRORS = (
    ProjectAlreadyExistsError,
    EnvironmentAlreadyExistsError,
    ApplicationAlreadyExistsError,
)


def http_error_for(result: DeploymentResult) -> HTTPException:
    """Precondition misses are 404, conflicts 409, everything else 502."""
    cause = result.error.__cause__ if result.error is not None else None
    detail = {
        "run_id": result.run_id,
        "failed_step": result.failed_step,
        "completed_states": result.completed_states,
        "error": result.error_message,
    }
    if isinstance(cause, NOT_FOUND_ERRORS):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(cause, CONFLICT_ERRORS):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(cause, CredentialResolutionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
