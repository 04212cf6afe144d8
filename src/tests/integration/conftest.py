"""Integration test fixtures.

Require a reachable Docker daemon (DOCKER_HOST or the default socket).
Run with: pytest -m integration
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from vaultfixture import (
    RunningInstance,
    provision,
    with_image,
    with_init_command,
    with_token,
)
from vaultfixture.runtimes import DockerRuntime

VAULT_IMAGE = "hashicorp/vault:1.13.0"
TOKEN = "root-token"


@pytest.fixture(scope="module")
def vault_token() -> str:
    return TOKEN


@pytest_asyncio.fixture(loop_scope="module", scope="module")
async def vault(vault_token: str) -> AsyncGenerator[RunningInstance, None]:
    """Vault seeded with a transit key and secret/test1 foo1=bar1."""
    instance = await provision(
        with_image(VAULT_IMAGE),
        with_token(vault_token),
        with_init_command("secrets enable transit", "write -f transit/keys/my-key"),
        with_init_command("kv put secret/test1 foo1=bar1"),
    )
    yield instance
    await instance.terminate()


@pytest_asyncio.fixture
async def docker_runtime() -> AsyncGenerator[DockerRuntime, None]:
    runtime = DockerRuntime()
    yield runtime
    await runtime.close()
