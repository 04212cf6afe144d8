"""Fixture configuration using pydantic-settings.

Configuration hierarchy:
- DockerConfig: Container runtime settings
- VaultConfig: Vault server defaults (image, token, readiness)
- LoggingConfig: Logging behavior
- FixtureConfig: Main config aggregating all sub-configs

Environment variable prefix: VAULTFIXTURE_
Example: VAULTFIXTURE_VAULT_DEFAULT_IMAGE=hashicorp/vault:1.15
"""

import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DockerConfig(BaseSettings):
    """Docker runtime configuration."""

    model_config = SettingsConfigDict(env_prefix="VAULTFIXTURE_DOCKER_")

    # Connection
    host: str = Field(
        default_factory=lambda: os.getenv("DOCKER_HOST", "unix:///var/run/docker.sock"),
        description="Docker daemon socket or TCP address",
    )
    host_ip: str | None = Field(
        default=None,
        description="Host used to reach published ports (derived from host if unset)",
    )

    # Resource naming
    resource_prefix: str = Field(
        default="vaultfixture-",
        description="Prefix for container names",
    )

    # Timeouts
    api_timeout: float = Field(default=30.0, description="Docker API call timeout (seconds)")
    image_pull_timeout: float = Field(default=600.0, description="Image pull timeout (seconds)")
    exec_timeout: float = Field(default=60.0, description="Exec call timeout (seconds)")
    stop_timeout: int = Field(default=5, description="Seconds to wait before killing on stop")


class VaultConfig(BaseSettings):
    """Vault server defaults.

    The readiness marker is the last line the dev server prints once the
    root token and the secret/ KV mount exist.
    """

    model_config = SettingsConfigDict(env_prefix="VAULTFIXTURE_VAULT_")

    default_image: str = Field(
        default="hashicorp/vault:1.13.0",
        description="Default Vault image",
    )
    default_token: str = Field(default="root-token", description="Default root token")
    api_port: int = Field(default=8200, description="Vault API port inside the container")
    readiness_pattern: str = Field(
        default=r"Development mode should NOT be used in production installations!",
        description="Regex matched against each log line to detect readiness",
    )
    readiness_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for the readiness marker",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats:
    - text: Human-readable for local runs
    - json: Structured logging for CI log aggregation
    """

    model_config = SettingsConfigDict(env_prefix="VAULTFIXTURE_LOGGING_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="vaultfixture", description="Service identifier in logs")


class FixtureConfig(BaseSettings):
    """Main configuration aggregating all sub-configs.

    Sub-configs use their own prefixes (VAULTFIXTURE_DOCKER_, VAULTFIXTURE_VAULT_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="VAULTFIXTURE_",
        env_nested_delimiter="__",
    )

    docker: DockerConfig = Field(default_factory=DockerConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_config() -> FixtureConfig:
    """Get cached configuration singleton."""
    return FixtureConfig()
