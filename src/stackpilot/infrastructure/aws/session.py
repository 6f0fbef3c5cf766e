"""boto3 credential contexts."""

from __future__ import annotations

import asyncio
from typing import Any

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound

from stackpilot.config import AwsSettings
from stackpilot.domain.models.stack import CredentialContext, CredentialSource
from stackpilot.domain.ports.services import CredentialProvider, CredentialResolutionError


logger = structlog.get_logger(__name__)


def client_for(context: CredentialContext, service: str) -> Any:
    """Build a boto3 client for ``service`` scoped to the context's session and region."""
    session = context.session or boto3.Session(region_name=context.region or None)
    return session.client(service, region_name=context.region or None)


def account_from_arn(arn: str) -> str:
    parts = arn.split(":")
    return parts[4] if len(parts) > 5 else ""


class Boto3CredentialProvider(CredentialProvider):
    """Resolves credential contexts from the default chain, profiles and STS roles."""

    def __init__(self, settings: AwsSettings) -> None:
        self._settings = settings

    async def default(self) -> CredentialContext:
        return await asyncio.to_thread(self._session_context, None, self._settings.default_profile)

    async def default_with_region(self, region: str) -> CredentialContext:
        return await asyncio.to_thread(self._session_context, region, self._settings.default_profile)

    async def from_profile(self, name: str) -> CredentialContext:
        return await asyncio.to_thread(self._session_context, None, name)

    async def from_role(self, role_arn: str, region: str) -> CredentialContext:
        return await asyncio.to_thread(self._assume_role, role_arn, region)

    def _session_context(self, region: str | None, profile: str) -> CredentialContext:
        try:
            session = boto3.Session(
                profile_name=profile or None,
                region_name=region or None,
            )
        except ProfileNotFound as e:
            raise CredentialResolutionError(f"profile {profile} is not configured") from e

        resolved_region = region or session.region_name or self._settings.default_region
        logger.debug("credential_context_resolved", profile=profile, region=resolved_region)
        return CredentialContext(
            source=CredentialSource.PROFILE if profile else CredentialSource.DEFAULT,
            region=resolved_region,
            profile=profile,
            session=session,
        )

    def _assume_role(self, role_arn: str, region: str) -> CredentialContext:
        base = boto3.Session(profile_name=self._settings.default_profile or None)
        try:
            response = base.client("sts").assume_role(
                RoleArn=role_arn,
                RoleSessionName=self._settings.role_session_name,
            )
        except (ClientError, BotoCoreError) as e:
            raise CredentialResolutionError(f"assume role {role_arn}: {e}") from e

        creds = response["Credentials"]
        session = boto3.Session(
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
            region_name=region,
        )
        logger.info("role_assumed", role_arn=role_arn, region=region)
        return CredentialContext(
            source=CredentialSource.ROLE,
            region=region,
            role_arn=role_arn,
            account_id=account_from_arn(role_arn),
            session=session,
        )
