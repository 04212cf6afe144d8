"""Fixtures for unit tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import READY_LINE, FakeRuntime

from vaultfixture.infra import ContainerAPI, ExecAPI, ImageAPI
from vaultfixture.options import InstanceConfig


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    """In-memory runtime for controller tests."""
    return FakeRuntime()


@pytest.fixture
def base_config() -> InstanceConfig:
    """InstanceConfig independent of environment settings."""
    return InstanceConfig(
        image="hashicorp/vault:1.13.0",
        token="root-token",
        readiness_pattern=READY_LINE,
        readiness_timeout=1.0,
    )


@pytest.fixture
def mock_container_api() -> AsyncMock:
    """Mock ContainerAPI for testing."""
    api = AsyncMock(spec=ContainerAPI)
    api.inspect = AsyncMock(return_value=None)
    api.create = AsyncMock(return_value="abc123")
    api.start = AsyncMock()
    api.stop = AsyncMock()
    api.remove = AsyncMock(return_value=True)
    return api


@pytest.fixture
def mock_exec_api() -> AsyncMock:
    """Mock ExecAPI for testing."""
    api = AsyncMock(spec=ExecAPI)
    api.run = AsyncMock(return_value=(0, b""))
    return api


@pytest.fixture
def mock_image_api() -> AsyncMock:
    """Mock ImageAPI for testing."""
    api = AsyncMock(spec=ImageAPI)
    api.ensure = AsyncMock()
    return api


@pytest.fixture
def mock_docker_config() -> MagicMock:
    """Mock DockerConfig for testing."""
    config = MagicMock()
    config.host = "unix:///var/run/docker.sock"
    config.host_ip = None
    config.resource_prefix = "vaultfixture-test-"
    config.api_timeout = 5.0
    config.exec_timeout = 10.0
    config.image_pull_timeout = 60.0
    config.stop_timeout = 1
    return config
