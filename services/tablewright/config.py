"""
Configuration management for the tablewright controller.

Non-secret configuration loaded from YAML file, overridable from environment variables.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_PATH = "/etc/tablewright/config.yaml"


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(CONFIG_PATH)
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- Worker Configuration Models ---


class WorkerResourceSpec(BaseModel):
    """CPU and memory specification for a worker pod."""

    cpu: str = Field(default="100m")
    memory: str = Field(default="128Mi")


class WorkerResources(BaseModel):
    """Resource requests and limits for a worker pod."""

    requests: WorkerResourceSpec = Field(default_factory=WorkerResourceSpec)
    limits: WorkerResourceSpec = Field(
        default_factory=lambda: WorkerResourceSpec(cpu="500m", memory="256Mi")
    )


class WorkerImageConfig(BaseModel):
    """Container image used for plan and apply worker pods."""

    repository: str = Field(default="ghcr.io/tablewright/tablewright-worker")
    tag: str = Field(default="")
    pull_policy: str = Field(default="IfNotPresent")

    @property
    def reference(self) -> str:
        if self.tag:
            return f"{self.repository}:{self.tag}"
        return self.repository


class WorkerConfig(BaseModel):
    """Pod template settings for dispatched worker jobs."""

    image: WorkerImageConfig = Field(default_factory=WorkerImageConfig)
    resources: WorkerResources = Field(default_factory=WorkerResources)
    service_account_name: str = Field(default="")
    specs_mount_path: str = Field(
        default="/specs",
        description="Where the config bundle is mounted inside the worker container",
    )
    uri_env_var: str = Field(
        default="TABLEWRIGHT_DATABASE_URI",
        description="Env var carrying the connection URI when it comes from a secret",
    )
    node_selector: dict[str, str] = Field(default_factory=dict)
    tolerations: list[dict] = Field(default_factory=list)


class HealthConfig(BaseModel):
    """Liveness/readiness probe server."""

    enabled: bool = Field(default=True)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8081)


# --- Main Settings ---


class Settings(BaseSettings):
    """Main controller settings."""

    model_config = SettingsConfigDict(
        env_prefix="TABLEWRIGHT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="tablewright-controller")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    # Reconciliation
    requeue_after_seconds: float = Field(
        default=10.0,
        description="Fixed delay before re-reconciling a table whose database is not ready",
    )
    status_update_attempts: int = Field(
        default=5,
        description="Attempts to write table status before giving up on conflicts",
    )
    max_concurrent_reconciles: int = Field(default=4)
    error_backoff_base_seconds: float = Field(default=1.0)
    error_backoff_max_seconds: float = Field(default=300.0)

    # Watches
    watch_namespace: str = Field(
        default="",
        description="Namespace to watch. Empty watches all namespaces.",
    )
    watch_timeout_seconds: int = Field(default=300)
    watch_read_timeout_seconds: float = Field(
        default=10.0,
        description="Socket read timeout on watch streams; bounds how long shutdown waits on an idle watch",
    )

    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
