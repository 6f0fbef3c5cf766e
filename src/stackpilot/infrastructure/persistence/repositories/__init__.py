"""Repository implementations."""

from stackpilot.infrastructure.persistence.repositories.in_memory import (
    InMemoryProjectRegistry,
)
from stackpilot.infrastructure.persistence.repositories.registry_repo import (
    PostgresProjectRegistry,
    UnitOfWorkProjectRegistry,
)


__all__ = [
    "InMemoryProjectRegistry",
    "PostgresProjectRegistry",
    "UnitOfWorkProjectRegistry",
]
