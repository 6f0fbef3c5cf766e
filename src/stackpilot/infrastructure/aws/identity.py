"""STS caller identity."""

from __future__ import annotations

import asyncio

from botocore.exceptions import BotoCoreError, ClientError

from stackpilot.domain.models.project import Identity
from stackpilot.domain.models.stack import CredentialContext
from stackpilot.domain.ports.services import CredentialResolutionError, IdentityResolver
from stackpilot.infrastructure.aws.session import client_for


class StsIdentityResolver(IdentityResolver):
    async def get(self, context: CredentialContext) -> Identity:
        return await asyncio.to_thread(self._get, context)

    @staticmethod
    def _get(context: CredentialContext) -> Identity:
        try:
            response = client_for(context, "sts").get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise CredentialResolutionError(f"get caller identity for {context.label}: {e}") from e

        account = response["Account"]
        partition = response["Arn"].split(":")[1] if response.get("Arn") else "aws"
        return Identity(account=account, root_user_arn=f"arn:{partition}:iam::{account}:root")
