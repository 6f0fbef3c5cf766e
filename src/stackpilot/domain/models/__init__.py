"""Domain models package."""

from stackpilot.domain.models.base import (
    AggregateRoot,
    DomainEntity,
    DomainEvent,
    generate_id,
    utc_now,
    ValueObject,
)
from stackpilot.domain.models.progress import (
    ENVIRONMENT_PHASES,
    PhaseRow,
    PhaseState,
    ProgressPhase,
)
from stackpilot.domain.models.project import (
    Application,
    ApplicationType,
    Environment,
    Identity,
    Project,
)
from stackpilot.domain.models.stack import (
    AppTemplateParams,
    ChangeMode,
    CreateEnvironmentInput,
    CredentialContext,
    CredentialSource,
    EventStream,
    ProvisioningEvent,
    StackChangeRequest,
    StreamResult,
)


__all__ = [
    "AggregateRoot",
    "AppTemplateParams",
    "Application",
    "ApplicationType",
    "ChangeMode",
    "CreateEnvironmentInput",
    "CredentialContext",
    "CredentialSource",
    "DomainEntity",
    "DomainEvent",
    "ENVIRONMENT_PHASES",
    "Environment",
    "EventStream",
    "Identity",
    "PhaseRow",
    "PhaseState",
    "ProgressPhase",
    "Project",
    "ProvisioningEvent",
    "StackChangeRequest",
    "StreamResult",
    "ValueObject",
    "generate_id",
    "utc_now",
]
