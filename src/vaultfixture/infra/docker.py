"""Docker Engine API client with Pydantic models.

Provides async Docker API access for containers, execs and images.
Supports both Unix socket and TCP connections.

Configuration via DockerConfig (VAULTFIXTURE_DOCKER_ env prefix).
"""

import json
import logging
import struct
from collections.abc import AsyncIterator
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel

from vaultfixture.config import DockerConfig, get_config
from vaultfixture.logging_schema import LogEvent

logger = logging.getLogger(__name__)

# Multiplexed stream frame header: stream type (1 byte), padding (3), size (4, big endian)
_FRAME_HEADER = struct.Struct(">BxxxL")


class ImagePullError(Exception):
    """Raised when the daemon reports an error inside the pull progress stream."""

    pass


# =============================================================================
# Pydantic Models
# =============================================================================


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    cap_add: list[str] = []
    port_bindings: dict[str, list[dict[str, str]]] = {}

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {}
        if self.cap_add:
            result["CapAdd"] = self.cap_add
        if self.port_bindings:
            result["PortBindings"] = self.port_bindings
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    env: list[str] = []
    labels: dict[str, str] = {}
    exposed_ports: dict[str, dict] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        return result


class ExecConfig(BaseModel):
    """Docker exec configuration."""

    cmd: list[str]
    attach_stdout: bool = True
    attach_stderr: bool = True

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        return {
            "Cmd": self.cmd,
            "AttachStdout": self.attach_stdout,
            "AttachStderr": self.attach_stderr,
            "Tty": False,
        }


# =============================================================================
# Stream demultiplexing
# =============================================================================


class StreamDemuxer:
    """Incremental decoder for Docker's multiplexed stdout/stderr framing.

    Chunks may split frames at any byte; incomplete frames are buffered
    until the rest arrives.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> bytes:
        """Consume a raw chunk and return the payload of every complete frame."""
        self._buffer += chunk
        payload = bytearray()
        while len(self._buffer) >= _FRAME_HEADER.size:
            _, size = _FRAME_HEADER.unpack_from(self._buffer)
            end = _FRAME_HEADER.size + size
            if len(self._buffer) < end:
                break
            payload += self._buffer[_FRAME_HEADER.size : end]
            self._buffer = self._buffer[end:]
        return bytes(payload)

    @property
    def pending(self) -> int:
        return len(self._buffer)


def demux_stream(data: bytes) -> bytes:
    """Strip Docker stream headers from a complete multiplexed payload."""
    return StreamDemuxer().feed(data)


def docker_host_ip(docker_host: str) -> str:
    """Host name that reaches ports published by the given daemon.

    unix:// daemons publish on the local machine; tcp:// daemons publish
    on the daemon's own host.
    """
    if docker_host.startswith("unix://") or docker_host.startswith("npipe://"):
        return "localhost"
    hostname = urlsplit(docker_host.replace("tcp://", "http://")).hostname
    return hostname or "localhost"


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Async Docker API client.

    Supports Unix socket and TCP connections.
    Handles event loop changes (important for tests).
    """

    def __init__(
        self,
        docker_host: str | None = None,
        config: DockerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or get_config().docker
        self._host = docker_host or self._config.host
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def config(self) -> DockerConfig:
        return self._config

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        timeout = self._config.api_timeout
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                base_url="http://docker",
                timeout=timeout,
            )
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        base_url = self._host
        if base_url.startswith("tcp://"):
            base_url = base_url.replace("tcp://", "http://")
        return httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Recreates the client if the previous one was closed
        (e.g., due to event loop change in tests).
        """
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def inspect(self, name: str) -> dict | None:
        """Inspect a container.

        Args:
            name: Container name or ID

        Returns:
            Container info dict or None if not found
        """
        client = await self._docker.get()
        resp = await client.get(f"/containers/{name}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> str:
        """Create a container.

        Args:
            config: Container configuration

        Returns:
            Container ID
        """
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        resp.raise_for_status()
        container_id = resp.json()["Id"]
        logger.info(
            "Created container: %s",
            config.name,
            extra={
                "event": LogEvent.CONTAINER_CREATED,
                "container": config.name,
                "container_id": container_id,
                "image": config.image,
            },
        )
        return container_id

    async def start(self, name: str) -> None:
        """Start a container.

        Args:
            name: Container name or ID
        """
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/start")
        if resp.status_code not in (204, 304):  # 304 = already started
            resp.raise_for_status()
        logger.info(
            "Started container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_STARTED, "container": name},
        )

    async def stop(self, name: str, timeout: int = 10) -> None:
        """Stop a container.

        Args:
            name: Container name or ID
            timeout: Seconds to wait before killing
        """
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{name}/stop",
            params={"t": str(timeout)},
            timeout=timeout + self._docker.config.api_timeout,
        )
        if resp.status_code not in (204, 304, 404):  # 404 = not found, ok
            resp.raise_for_status()
        logger.info(
            "Stopped container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_STOPPED, "container": name},
        )

    async def remove(self, name: str, force: bool = True) -> bool:
        """Remove a container.

        Args:
            name: Container name or ID
            force: Force removal of running container

        Returns:
            False if the container was already gone
        """
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{name}", params={"force": "true" if force else "false", "v": "true"}
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", name)
            return False
        resp.raise_for_status()
        logger.info(
            "Removed container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_REMOVED, "container": name},
        )
        return True

    async def follow_logs(self, name: str) -> AsyncIterator[bytes]:
        """Stream container output from the start, following new output.

        Yields demultiplexed byte chunks until the container exits or the
        caller closes the generator.
        """
        client = await self._docker.get()
        demuxer = StreamDemuxer()
        async with client.stream(
            "GET",
            f"/containers/{name}/logs",
            params={"follow": "true", "stdout": "true", "stderr": "true"},
            timeout=httpx.Timeout(self._docker.config.api_timeout, read=None),
        ) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes():
                payload = demuxer.feed(chunk)
                if payload:
                    yield payload


# =============================================================================
# Exec API
# =============================================================================


class ExecAPI:
    """Docker Exec API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def create(self, container: str, config: ExecConfig) -> str:
        """Create an exec instance in a running container.

        Returns:
            Exec ID
        """
        client = await self._docker.get()
        resp = await client.post(f"/containers/{container}/exec", json=config.to_api())
        resp.raise_for_status()
        return resp.json()["Id"]

    async def start(self, exec_id: str, timeout: float | None = None) -> bytes:
        """Run an exec instance to completion and return its demuxed output."""
        client = await self._docker.get()
        resp = await client.post(
            f"/exec/{exec_id}/start",
            json={"Detach": False, "Tty": False},
            timeout=timeout if timeout is not None else self._docker.config.exec_timeout,
        )
        resp.raise_for_status()
        return demux_stream(resp.content)

    async def inspect(self, exec_id: str) -> dict:
        """Inspect an exec instance (ExitCode, Running)."""
        client = await self._docker.get()
        resp = await client.get(f"/exec/{exec_id}/json")
        resp.raise_for_status()
        return resp.json()

    async def run(self, container: str, cmd: list[str], timeout: float | None = None) -> tuple[int, bytes]:
        """Create, start and inspect an exec.

        Returns:
            (exit code, combined stdout/stderr)
        """
        exec_id = await self.create(container, ExecConfig(cmd=cmd))
        output = await self.start(exec_id, timeout=timeout)
        data = await self.inspect(exec_id)
        exit_code = data.get("ExitCode")
        return (exit_code if exit_code is not None else -1), output


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def exists(self, image_ref: str) -> bool:
        """Check if image exists locally.

        Args:
            image_ref: Image reference (e.g., "hashicorp/vault:1.13.0")
        """
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        return resp.status_code == 200

    async def pull(self, image_ref: str) -> None:
        """Pull image from registry.

        Note:
            Streaming endpoint. Docker returns chunked JSON progress and
            reports pull failures inside the stream with a 200 status.
        """
        client = await self._docker.get()

        # Parse image:tag (a ':' inside a registry host:port is not a tag)
        name, _, tag = image_ref.rpartition(":")
        if not name or "/" in tag:
            name, tag = image_ref, "latest"

        logger.info("Pulling image: %s:%s", name, tag)

        async with client.stream(
            "POST",
            "/images/create",
            params={"fromImage": name, "tag": tag},
            timeout=self._docker.config.image_pull_timeout,
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                progress = json.loads(line)
                if "error" in progress:
                    raise ImagePullError(f"Image pull failed for {image_ref}: {progress['error']}")

        logger.info(
            "Pulled image: %s:%s",
            name,
            tag,
            extra={"event": LogEvent.IMAGE_PULLED, "image": image_ref},
        )

    async def ensure(self, image_ref: str) -> None:
        """Ensure image exists locally, pull if not."""
        if not await self.exists(image_ref):
            await self.pull(image_ref)
