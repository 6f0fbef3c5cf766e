"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class RuntimeEnvironment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class RegistryBackend(str, Enum):
    MEMORY = "memory"
    POSTGRES = "postgres"


class AwsSettings(BaseSettings):
    """AWS client configuration."""

    default_region: str = Field(default="us-west-2", alias="AWS_DEFAULT_REGION")
    default_profile: str = Field(default="", alias="AWS_PROFILE")
    role_session_name: str = Field(default="stackpilot", alias="AWS_ROLE_SESSION_NAME")
    event_poll_interval: float = Field(default=3.0, alias="AWS_EVENT_POLL_INTERVAL")
    change_set_wait_delay: int = Field(default=5, alias="AWS_CHANGE_SET_WAIT_DELAY")
    change_set_wait_attempts: int = Field(default=120, alias="AWS_CHANGE_SET_WAIT_ATTEMPTS")

    model_config = {"env_prefix": "AWS_", "extra": "ignore", "populate_by_name": True}


class DeploySettings(BaseSettings):
    """Workflow defaults."""

    public_load_balancer: bool = Field(default=True, alias="DEPLOY_PUBLIC_LOAD_BALANCER")
    task_count: int = Field(default=2, alias="DEPLOY_TASK_COUNT")
    registry_backend: RegistryBackend = Field(
        default=RegistryBackend.MEMORY, alias="DEPLOY_REGISTRY_BACKEND"
    )
    simulate: bool = Field(default=True, alias="DEPLOY_SIMULATE")

    model_config = {"env_prefix": "DEPLOY_", "extra": "ignore", "populate_by_name": True}


class DatabaseSettings(BaseSettings):
    """Registry database configuration."""

    host: str = Field(default="localhost", alias="DB_HOST")
    port: int = Field(default=5432, alias="DB_PORT")
    name: str = Field(default="stackpilot", alias="DB_NAME")
    user: str = Field(default="stackpilot", alias="DB_USER")
    password: str = Field(default="", alias="DB_PASSWORD")
    pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    @property
    def async_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    model_config = {"env_prefix": "DB_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    otlp_endpoint: str = Field(default="http://localhost:4317", alias="OTLP_ENDPOINT")
    service_name: str = Field(default="stackpilot", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: RuntimeEnvironment = Field(
        default=RuntimeEnvironment.DEVELOPMENT, alias="ENVIRONMENT"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")
    workers: int = Field(default=1, alias="WORKERS")

    aws: AwsSettings = Field(default_factory=AwsSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
