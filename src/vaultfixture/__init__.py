"""Disposable HashiCorp Vault containers for tests."""

from vaultfixture.errors import (
    CleanupError,
    ConfigurationError,
    ErrorCode,
    InitCommandFailedError,
    ReadinessTimeoutError,
    RuntimeAdapterError,
    VaultFixtureError,
)
from vaultfixture.lifecycle import RunningInstance, VaultProvisioner, provision
from vaultfixture.options import (
    InstanceConfig,
    Option,
    build_config,
    with_env,
    with_image,
    with_init_command,
    with_readiness_pattern,
    with_readiness_timeout,
    with_token,
)
from vaultfixture.readiness import LogReadiness

__all__ = [
    # Lifecycle
    "provision",
    "VaultProvisioner",
    "RunningInstance",
    "LogReadiness",
    # Options
    "InstanceConfig",
    "Option",
    "build_config",
    "with_image",
    "with_token",
    "with_init_command",
    "with_env",
    "with_readiness_pattern",
    "with_readiness_timeout",
    # Errors
    "ErrorCode",
    "VaultFixtureError",
    "ConfigurationError",
    "RuntimeAdapterError",
    "ReadinessTimeoutError",
    "InitCommandFailedError",
    "CleanupError",
]
