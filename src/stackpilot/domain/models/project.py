"""Project, environment and application registry models."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from stackpilot.domain.models.base import DomainEntity, ValueObject


class ApplicationType(str, Enum):
    """Infrastructure patterns an application can be deployed as."""

    LOAD_BALANCED_WEB_APP = "Load Balanced Web App"


class Project(DomainEntity):
    """Top-level grouping of environments and applications."""

    name: str = Field(..., min_length=1)
    account_id: str
    domain: str = ""

    @property
    def requires_dns_delegation(self) -> bool:
        """A project with a domain shares its hosted zone with environment accounts."""
        return self.domain != ""


class Environment(DomainEntity):
    """A named deployment target living in one account and region."""

    name: str = Field(..., min_length=1)
    project: str
    account_id: str
    region: str
    manager_role_arn: str = ""
    execution_role_arn: str = ""
    prod: bool = False

    @property
    def account_region(self) -> tuple[str, str]:
        return self.account_id, self.region


class Application(DomainEntity):
    """A deployable unit registered under a project."""

    name: str = Field(..., min_length=1)
    project: str
    type: ApplicationType = ApplicationType.LOAD_BALANCED_WEB_APP


class Identity(ValueObject):
    """Caller identity for a credential context."""

    account: str
    root_user_arn: str

    @classmethod
    def for_account(cls, account: str) -> Identity:
        return cls(account=account, root_user_arn=f"arn:aws:iam::{account}:root")
