"""ECR image registry."""

from __future__ import annotations

import asyncio
import base64

import structlog
from botocore.exceptions import ClientError

from stackpilot.domain.models.stack import CredentialContext
from stackpilot.domain.ports.services import ImageRegistry, RepositoryNotFoundError
from stackpilot.infrastructure.aws.session import client_for


logger = structlog.get_logger(__name__)


class EcrImageRegistry(ImageRegistry):
    async def get_repository(self, name: str, context: CredentialContext) -> str:
        return await asyncio.to_thread(self._get_repository, name, context)

    async def get_auth(self, context: CredentialContext) -> tuple[str, str]:
        return await asyncio.to_thread(self._get_auth, context)

    @staticmethod
    def _get_repository(name: str, context: CredentialContext) -> str:
        try:
            response = client_for(context, "ecr").describe_repositories(repositoryNames=[name])
        except ClientError as e:
            if e.response["Error"]["Code"] == "RepositoryNotFoundException":
                raise RepositoryNotFoundError(name) from e
            raise
        repositories = response.get("repositories", [])
        if not repositories:
            raise RepositoryNotFoundError(name)
        uri = repositories[0]["repositoryUri"]
        logger.info("repository_resolved", repository=name, uri=uri)
        return uri

    @staticmethod
    def _get_auth(context: CredentialContext) -> tuple[str, str]:
        response = client_for(context, "ecr").get_authorization_token()
        token = response["authorizationData"][0]["authorizationToken"]
        username, _, password = base64.b64decode(token).decode("utf-8").partition(":")
        return username, password
