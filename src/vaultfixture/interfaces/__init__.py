"""Core interfaces."""

from vaultfixture.interfaces.runtime import (
    ContainerHandle,
    ContainerRuntime,
    ExecResult,
    HostAddress,
)

__all__ = [
    "ContainerRuntime",
    "ContainerHandle",
    "ExecResult",
    "HostAddress",
]
