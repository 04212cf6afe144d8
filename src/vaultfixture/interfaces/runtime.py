"""Container runtime interface.

This is the only interface the lifecycle controller uses to interact with
the container engine. It covers exactly the capabilities provisioning
needs: create, start, follow logs, exec, resolve a published port and
terminate.

Implementations:
- DockerRuntime: Docker Engine API over unix socket or TCP
- FakeRuntime (tests): in-memory runtime for controller unit tests
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from pydantic import BaseModel


class ContainerHandle(BaseModel):
    """Reference to a created container."""

    id: str
    name: str

    model_config = {"frozen": True}


class ExecResult(BaseModel):
    """Result of a command run inside a container."""

    exit_code: int
    output: str

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class HostAddress(BaseModel):
    """Host-reachable address of a published container port."""

    host: str
    port: int

    model_config = {"frozen": True}

    @property
    def url(self) -> str:
        """HTTP base URL."""
        return f"http://{self.host}:{self.port}"


class ContainerRuntime(ABC):
    """Capability set consumed by the lifecycle controller."""

    @abstractmethod
    async def create(self, image: str, env: list[str], ports: list[int]) -> ContainerHandle:
        """Create (but do not start) a container.

        Args:
            image: Image reference
            env: Environment in KEY=VALUE form
            ports: Container ports to publish on ephemeral host ports

        Returns:
            Handle for the created container
        """
        ...

    @abstractmethod
    async def start(self, handle: ContainerHandle) -> None:
        """Start a created container."""
        ...

    @abstractmethod
    def logs(self, handle: ContainerHandle) -> AsyncIterator[str]:
        """Follow container output as text lines, from the first line on.

        The iterator ends when the container exits.
        """
        ...

    @abstractmethod
    async def exec(self, handle: ContainerHandle, cmd: list[str]) -> ExecResult:
        """Run a command inside the running container and wait for it."""
        ...

    @abstractmethod
    async def mapped_address(self, handle: ContainerHandle, port: int) -> HostAddress:
        """Resolve the host address a container port is published on."""
        ...

    @abstractmethod
    async def terminate(self, handle: ContainerHandle) -> None:
        """Stop and remove the container.

        A container that no longer exists is not an error.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close runtime and release client resources."""
        ...
