"""Container runtimes."""

from vaultfixture.runtimes.docker import DockerRuntime

__all__ = ["DockerRuntime"]
