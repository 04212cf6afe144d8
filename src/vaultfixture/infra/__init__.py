"""Infrastructure layer."""

from vaultfixture.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    ExecAPI,
    ExecConfig,
    HostConfig,
    ImageAPI,
    ImagePullError,
    StreamDemuxer,
    demux_stream,
    docker_host_ip,
)

__all__ = [
    "ContainerAPI",
    "ContainerConfig",
    "DockerClient",
    "ExecAPI",
    "ExecConfig",
    "HostConfig",
    "ImageAPI",
    "ImagePullError",
    "StreamDemuxer",
    "demux_stream",
    "docker_host_ip",
]
