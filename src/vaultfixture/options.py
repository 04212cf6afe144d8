"""Instance configuration and composable options.

Each option is a pure function from InstanceConfig to a new InstanceConfig.
Options are applied in call order by build_config():

    config = build_config(
        with_image("hashicorp/vault:1.13.0"),
        with_token("root-token"),
        with_init_command("secrets enable transit", "write -f transit/keys/my-key"),
        with_init_command("kv put secret/test1 foo1=bar1"),
    )

Only type constraints are enforced here. Semantic checks (empty image,
missing token) happen in the provisioner before a container is created.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import BaseModel, Field

from vaultfixture.config import VaultConfig, get_config


class InstanceConfig(BaseModel):
    """Immutable description of one Vault instance to provision."""

    image: str
    token: str
    init_commands: tuple[str, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    api_port: int = 8200
    readiness_pattern: str
    readiness_timeout: float
    readiness_occurrences: int = 1

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: VaultConfig | None = None) -> InstanceConfig:
        """Defaults from VAULTFIXTURE_VAULT_* settings."""
        settings = settings or get_config().vault
        return cls(
            image=settings.default_image,
            token=settings.default_token,
            api_port=settings.api_port,
            readiness_pattern=settings.readiness_pattern,
            readiness_timeout=settings.readiness_timeout,
        )

    def container_env(self) -> list[str]:
        """Environment for the container in KEY=VALUE form.

        The root token is seeded at boot so it is valid from the first
        request, and exported as VAULT_TOKEN for in-container CLI calls.
        """
        env = {
            "VAULT_ADDR": f"http://0.0.0.0:{self.api_port}",
            "VAULT_DEV_LISTEN_ADDRESS": f"0.0.0.0:{self.api_port}",
        }
        if self.token:
            env["VAULT_DEV_ROOT_TOKEN_ID"] = self.token
            env["VAULT_TOKEN"] = self.token
        env.update(self.env)
        return [f"{key}={value}" for key, value in env.items()]


Option = Callable[[InstanceConfig], InstanceConfig]


def with_image(image: str) -> Option:
    """Override the default Vault image."""

    def apply(config: InstanceConfig) -> InstanceConfig:
        return config.model_copy(update={"image": image})

    return apply


def with_token(token: str) -> Option:
    """Set the root token the dev server boots with."""

    def apply(config: InstanceConfig) -> InstanceConfig:
        return config.model_copy(update={"token": token})

    return apply


def with_init_command(*commands: str) -> Option:
    """Append vault sub-commands (without the leading "vault") to run after startup.

    May be used several times; commands accumulate in call order.
    """

    def apply(config: InstanceConfig) -> InstanceConfig:
        return config.model_copy(update={"init_commands": config.init_commands + tuple(commands)})

    return apply


def with_env(key: str, value: str) -> Option:
    """Add an environment variable to the container."""

    def apply(config: InstanceConfig) -> InstanceConfig:
        return config.model_copy(update={"env": {**config.env, key: value}})

    return apply


def with_readiness_pattern(pattern: str, occurrences: int = 1) -> Option:
    """Replace the log marker that signals the server is ready."""

    def apply(config: InstanceConfig) -> InstanceConfig:
        return config.model_copy(
            update={"readiness_pattern": pattern, "readiness_occurrences": occurrences}
        )

    return apply


def with_readiness_timeout(seconds: float) -> Option:
    """Bound the wait for the readiness marker."""

    def apply(config: InstanceConfig) -> InstanceConfig:
        return config.model_copy(update={"readiness_timeout": seconds})

    return apply


def build_config(*options: Option, base: InstanceConfig | None = None) -> InstanceConfig:
    """Fold options in order over base (settings defaults if omitted)."""
    config = base or InstanceConfig.from_settings()
    for option in options:
        config = option(config)
    return config
