"""In-memory registry implementation for development and testing."""

from __future__ import annotations

from stackpilot.domain.models.project import Application, Environment, Project
from stackpilot.domain.ports.repositories import (
    ApplicationAlreadyExistsError,
    ApplicationNotFoundError,
    EnvironmentAlreadyExistsError,
    EnvironmentNotFoundError,
    ProjectAlreadyExistsError,
    ProjectNotFoundError,
    ProjectRegistry,
)


# Module-level shared stores so every registry instance built by the API
# sees the same records; clear() is the single reset point for tests.
_project_store: dict[str, Project] = {}
_environment_store: dict[tuple[str, str], Environment] = {}
_application_store: dict[tuple[str, str], Application] = {}
_link_store: dict[str, list[tuple[str, str]]] = {}


class InMemoryProjectRegistry(ProjectRegistry):
    """In-memory project registry for testing and the simulated API."""

    def __init__(self) -> None:
        self._projects = _project_store
        self._environments = _environment_store
        self._applications = _application_store
        self._links = _link_store

    async def create_project(self, project: Project) -> Project:
        if project.name in self._projects:
            raise ProjectAlreadyExistsError(project.name)
        self._projects[project.name] = project
        return project

    async def get_project(self, name: str) -> Project:
        project = self._projects.get(name)
        if project is None:
            raise ProjectNotFoundError(name)
        return project

    async def create_environment(self, environment: Environment) -> Environment:
        key = (environment.project, environment.name)
        if key in self._environments:
            raise EnvironmentAlreadyExistsError(environment.project, environment.name)
        self._environments[key] = environment
        return environment

    async def get_environment(self, project: str, name: str) -> Environment:
        environment = self._environments.get((project, name))
        if environment is None:
            raise EnvironmentNotFoundError(project, name)
        return environment

    async def list_environments(self, project: str) -> list[Environment]:
        items = [e for (p, _), e in self._environments.items() if p == project]
        return sorted(items, key=lambda e: e.created_at)

    async def link_environment_to_project(
        self, project: Project, environment: Environment
    ) -> None:
        if project.name not in self._projects:
            raise ProjectNotFoundError(project.name)
        links = self._links.setdefault(project.name, [])
        if environment.account_region not in links:
            links.append(environment.account_region)

    async def list_linked_accounts(self, project: str) -> list[tuple[str, str]]:
        return list(self._links.get(project, []))

    async def create_application(self, application: Application) -> Application:
        key = (application.project, application.name)
        if key in self._applications:
            raise ApplicationAlreadyExistsError(application.project, application.name)
        self._applications[key] = application
        return application

    async def get_application(self, project: str, name: str) -> Application:
        application = self._applications.get((project, name))
        if application is None:
            raise ApplicationNotFoundError(project, name)
        return application

    @classmethod
    def clear(cls) -> None:
        """Clear the shared stores. Used by test fixtures for isolation."""
        _project_store.clear()
        _environment_store.clear()
        _application_store.clear()
        _link_store.clear()
