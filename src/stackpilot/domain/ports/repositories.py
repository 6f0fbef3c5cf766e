"""Repository port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from stackpilot.domain.models.project import Application, Environment, Project


class ProjectRegistry(ABC):
    """Port for project, environment and application records."""

    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        """Persist a project or raise ``ProjectAlreadyExistsError``."""

    @abstractmethod
    async def get_project(self, name: str) -> Project:
        """Return a project or raise ``ProjectNotFoundError``."""

    @abstractmethod
    async def create_environment(self, environment: Environment) -> Environment:
        """Persist an environment or raise ``EnvironmentAlreadyExistsError``."""

    @abstractmethod
    async def get_environment(self, project: str, name: str) -> Environment:
        """Return an environment or raise ``EnvironmentNotFoundError``."""

    @abstractmethod
    async def list_environments(self, project: str) -> list[Environment]:
        """List environments of a project."""

    @abstractmethod
    async def link_environment_to_project(
        self, project: Project, environment: Environment
    ) -> None:
        """Extend project-wide resources to the environment's account and region."""

    @abstractmethod
    async def list_linked_accounts(self, project: str) -> list[tuple[str, str]]:
        """Return the (account, region) pairs linked to a project."""

    @abstractmethod
    async def create_application(self, application: Application) -> Application:
        """Persist an application or raise ``ApplicationAlreadyExistsError``."""

    @abstractmethod
    async def get_application(self, project: str, name: str) -> Application:
        """Return an application or raise ``ApplicationNotFoundError``."""


class ProjectNotFoundError(Exception):
    """Raised when a project is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"project {name} not found")
        self.name = name


class EnvironmentNotFoundError(Exception):
    """Raised when an environment is not registered under a project."""

    def __init__(self, project: str, name: str) -> None:
        super().__init__(f"environment {name} not found in project {project}")
        self.project = project
        self.name = name


class ApplicationNotFoundError(Exception):
    """Raised when an application is not registered under a project."""

    def __init__(self, project: str, name: str) -> None:
        super().__init__(f"application {name} not found in project {project}")
        self.project = project
        self.name = name


class EnvironmentAlreadyExistsError(Exception):
    """Raised when an environment record already exists."""

    def __init__(self, project: str, name: str) -> None:
        super().__init__(f"environment {name} already exists in project {project}")
        self.project = project
        self.name = name


class ProjectAlreadyExistsError(Exception):
    """Raised when a project name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"project {name} already exists")
        self.name = name


class ApplicationAlreadyExistsError(Exception):
    """Raised when an application is already registered under a project."""

    def __init__(self, project: str, name: str) -> None:
        super().__init__(f"application {name} already exists under project {project}")
        self.project = project
        self.name = name
