"""Project registry repository implementation."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stackpilot.domain.models.project import (
    Application,
    ApplicationType,
    Environment,
    Project,
)
from stackpilot.domain.ports.repositories import (
    ApplicationAlreadyExistsError,
    ApplicationNotFoundError,
    EnvironmentAlreadyExistsError,
    EnvironmentNotFoundError,
    ProjectAlreadyExistsError,
    ProjectNotFoundError,
    ProjectRegistry,
)
from stackpilot.infrastructure.persistence.models import (
    ApplicationORM,
    EnvironmentORM,
    ProjectLinkORM,
    ProjectORM,
)


class PostgresProjectRegistry(ProjectRegistry):
    """PostgreSQL implementation of ProjectRegistry."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_project(self, project: Project) -> Project:
        try:
            async with self._session.begin_nested():
                self._session.add(ProjectORM(
                    id=project.id,
                    name=project.name,
                    account_id=project.account_id,
                    domain=project.domain,
                ))
        except IntegrityError as e:
            raise ProjectAlreadyExistsError(project.name) from e
        return project

    async def get_project(self, name: str) -> Project:
        result = await self._session.execute(
            select(ProjectORM).where(ProjectORM.name == name)
        )
        orm = result.scalar_one_or_none()
        if orm is None:
            raise ProjectNotFoundError(name)
        return Project(
            id=orm.id,
            name=orm.name,
            account_id=orm.account_id,
            domain=orm.domain or "",
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )

    async def create_environment(self, environment: Environment) -> Environment:
        try:
            async with self._session.begin_nested():
                self._session.add(self._environment_to_orm(environment))
        except IntegrityError as e:
            raise EnvironmentAlreadyExistsError(environment.project, environment.name) from e
        return environment

    async def get_environment(self, project: str, name: str) -> Environment:
        result = await self._session.execute(
            select(EnvironmentORM).where(
                EnvironmentORM.project == project,
                EnvironmentORM.name == name,
            )
        )
        orm = result.scalar_one_or_none()
        if orm is None:
            raise EnvironmentNotFoundError(project, name)
        return self._environment_to_domain(orm)

    async def list_environments(self, project: str) -> list[Environment]:
        result = await self._session.execute(
            select(EnvironmentORM)
            .where(EnvironmentORM.project == project)
            .order_by(EnvironmentORM.created_at)
        )
        return [self._environment_to_domain(orm) for orm in result.scalars().all()]

    async def link_environment_to_project(
        self, project: Project, environment: Environment
    ) -> None:
        existing = await self._session.get(
            ProjectLinkORM, (project.name, environment.account_id, environment.region)
        )
        if existing is not None:
            return
        self._session.add(ProjectLinkORM(
            project=project.name,
            account_id=environment.account_id,
            region=environment.region,
        ))
        await self._session.flush()

    async def list_linked_accounts(self, project: str) -> list[tuple[str, str]]:
        result = await self._session.execute(
            select(ProjectLinkORM)
            .where(ProjectLinkORM.project == project)
            .order_by(ProjectLinkORM.created_at)
        )
        return [(orm.account_id, orm.region) for orm in result.scalars().all()]

    async def create_application(self, application: Application) -> Application:
        try:
            async with self._session.begin_nested():
                self._session.add(ApplicationORM(
                    id=application.id,
                    project=application.project,
                    name=application.name,
                    type=application.type.value,
                ))
        except IntegrityError as e:
            raise ApplicationAlreadyExistsError(application.project, application.name) from e
        return application

    async def get_application(self, project: str, name: str) -> Application:
        result = await self._session.execute(
            select(ApplicationORM).where(
                ApplicationORM.project == project,
                ApplicationORM.name == name,
            )
        )
        orm = result.scalar_one_or_none()
        if orm is None:
            raise ApplicationNotFoundError(project, name)
        return Application(
            id=orm.id,
            name=orm.name,
            project=orm.project,
            type=ApplicationType(orm.type),
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )

    def _environment_to_orm(self, environment: Environment) -> EnvironmentORM:
        return EnvironmentORM(
            id=environment.id,
            project=environment.project,
            name=environment.name,
            account_id=environment.account_id,
            region=environment.region,
            manager_role_arn=environment.manager_role_arn,
            execution_role_arn=environment.execution_role_arn,
            prod=environment.prod,
        )

    def _environment_to_domain(self, orm: EnvironmentORM) -> Environment:
        return Environment(
            id=orm.id,
            name=orm.name,
            project=orm.project,
            account_id=orm.account_id,
            region=orm.region,
            manager_role_arn=orm.manager_role_arn or "",
            execution_role_arn=orm.execution_role_arn or "",
            prod=orm.prod,
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )


class UnitOfWorkProjectRegistry(ProjectRegistry):
    """Opens a fresh registry unit of work for every call.

    Workflows hold their registry for the whole run, including stack event
    polling; with this wrapper no session or transaction stays open between
    registry calls.
    """

    def __init__(
        self, open_registry: Callable[[], AbstractAsyncContextManager[ProjectRegistry]]
    ) -> None:
        self._open_registry = open_registry

    async def create_project(self, project: Project) -> Project:
        async with self._open_registry() as registry:
            return await registry.create_project(project)

    async def get_project(self, name: str) -> Project:
        async with self._open_registry() as registry:
            return await registry.get_project(name)

    async def create_environment(self, environment: Environment) -> Environment:
        async with self._open_registry() as registry:
            return await registry.create_environment(environment)

    async def get_environment(self, project: str, name: str) -> Environment:
        async with self._open_registry() as registry:
            return await registry.get_environment(project, name)

    async def list_environments(self, project: str) -> list[Environment]:
        async with self._open_registry() as registry:
            return await registry.list_environments(project)

    async def link_environment_to_project(
        self, project: Project, environment: Environment
    ) -> None:
        async with self._open_registry() as registry:
            await registry.link_environment_to_project(project, environment)

    async def list_linked_accounts(self, project: str) -> list[tuple[str, str]]:
        async with self._open_registry() as registry:
            return await registry.list_linked_accounts(project)

    async def create_application(self, application: Application) -> Application:
        async with self._open_registry() as registry:
            return await registry.create_application(application)

    async def get_application(self, project: str, name: str) -> Application:
        async with self._open_registry() as registry:
            return await registry.get_application(project, name)
