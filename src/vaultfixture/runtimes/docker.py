"""Docker implementation of ContainerRuntime."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import aclosing, contextmanager
from typing import TYPE_CHECKING

import httpx

from vaultfixture.errors import RuntimeAdapterError
from vaultfixture.infra import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    ExecAPI,
    HostConfig,
    ImageAPI,
    ImagePullError,
    docker_host_ip,
)
from vaultfixture.interfaces import ContainerHandle, ContainerRuntime, ExecResult, HostAddress
from vaultfixture.readiness import iter_lines

if TYPE_CHECKING:
    from vaultfixture.config import DockerConfig

logger = logging.getLogger(__name__)

# Unroutable bind addresses reported by Docker for published ports
_WILDCARD_HOSTS = ("", "0.0.0.0", "::")


def _error_message(resp: httpx.Response) -> str:
    """Docker error body ({"message": ...}) or the HTTP reason."""
    try:
        return resp.json().get("message") or resp.reason_phrase
    except (httpx.ResponseNotRead, ValueError):
        return resp.reason_phrase


@contextmanager
def _adapter_errors(stage: str, container: str | None = None) -> Iterator[None]:
    """Convert Docker client failures into RuntimeAdapterError."""
    try:
        yield
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        raise RuntimeAdapterError(
            f"Docker {stage} failed ({status}): {_error_message(e.response)}",
            stage=stage,
            container=container,
            status_code=status,
        ) from e
    except (httpx.HTTPError, ImagePullError) as e:
        raise RuntimeAdapterError(
            f"Docker {stage} failed: {e}",
            stage=stage,
            container=container,
        ) from e


class DockerRuntime(ContainerRuntime):
    """Container runtime backed by the Docker Engine API."""

    LABEL_MANAGED = "vaultfixture.managed"
    CAPABILITIES = ["IPC_LOCK"]

    def __init__(
        self,
        config: DockerConfig | None = None,
        client: DockerClient | None = None,
        containers: ContainerAPI | None = None,
        execs: ExecAPI | None = None,
        images: ImageAPI | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or DockerClient(config=config)
        self._config = config or self._client.config
        self._containers = containers or ContainerAPI(self._client)
        self._execs = execs or ExecAPI(self._client)
        self._images = images or ImageAPI(self._client)

    def _container_name(self) -> str:
        return f"{self._config.resource_prefix}{uuid.uuid4().hex[:8]}"

    async def create(self, image: str, env: list[str], ports: list[int]) -> ContainerHandle:
        name = self._container_name()
        exposed = {f"{port}/tcp": {} for port in ports}
        config = ContainerConfig(
            image=image,
            name=name,
            env=env,
            labels={self.LABEL_MANAGED: "true"},
            exposed_ports=exposed,
            host_config=HostConfig(
                cap_add=self.CAPABILITIES,
                # Empty HostPort = ephemeral host port
                port_bindings={key: [{"HostPort": ""}] for key in exposed},
            ),
        )
        with _adapter_errors("pull", name):
            await self._images.ensure(image)
        with _adapter_errors("create", name):
            container_id = await self._containers.create(config)
        return ContainerHandle(id=container_id, name=name)

    async def start(self, handle: ContainerHandle) -> None:
        with _adapter_errors("start", handle.name):
            await self._containers.start(handle.id)

    async def logs(self, handle: ContainerHandle) -> AsyncIterator[str]:
        with _adapter_errors("logs", handle.name):
            async with aclosing(iter_lines(self._containers.follow_logs(handle.id))) as lines:
                async for line in lines:
                    yield line

    async def exec(self, handle: ContainerHandle, cmd: list[str]) -> ExecResult:
        with _adapter_errors("exec", handle.name):
            exit_code, output = await self._execs.run(
                handle.id, cmd, timeout=self._config.exec_timeout
            )
        return ExecResult(exit_code=exit_code, output=output.decode("utf-8", errors="replace"))

    async def mapped_address(self, handle: ContainerHandle, port: int) -> HostAddress:
        with _adapter_errors("mapped_address", handle.name):
            data = await self._containers.inspect(handle.id)
        if data is None:
            raise RuntimeAdapterError(
                f"Container {handle.name} not found",
                stage="mapped_address",
                container=handle.name,
                status_code=404,
            )

        ports = data.get("NetworkSettings", {}).get("Ports") or {}
        bindings = ports.get(f"{port}/tcp") or []
        for binding in bindings:
            host_port = binding.get("HostPort")
            if not host_port:
                continue
            host_ip = binding.get("HostIp", "")
            host = self._config.host_ip or (
                docker_host_ip(self._client.host) if host_ip in _WILDCARD_HOSTS else host_ip
            )
            return HostAddress(host=host, port=int(host_port))

        raise RuntimeAdapterError(
            f"Port {port}/tcp of {handle.name} is not published",
            stage="mapped_address",
            container=handle.name,
        )

    async def terminate(self, handle: ContainerHandle) -> None:
        with _adapter_errors("terminate", handle.name):
            await self._containers.stop(handle.id, timeout=self._config.stop_timeout)
            await self._containers.remove(handle.id, force=True)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.close()
