"""Vault instance lifecycle: provision, initialize, terminate.

Provisioning is a single ordered flow:

    create -> start -> wait for readiness marker -> init commands -> resolve address

Any failure once the container exists terminates it (best-effort) before
the original error is re-raised. Init commands run fail-fast in declared
order; effects of commands that already succeeded are not rolled back,
the whole container is discarded instead. Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import re

from vaultfixture.errors import (
    CleanupError,
    ConfigurationError,
    InitCommandFailedError,
    RuntimeAdapterError,
    VaultFixtureError,
)
from vaultfixture.interfaces import (
    ContainerHandle,
    ContainerRuntime,
    ExecResult,
    HostAddress,
)
from vaultfixture.logging_schema import LogEvent
from vaultfixture.options import InstanceConfig, Option, build_config
from vaultfixture.readiness import LogReadiness
from vaultfixture.runtimes import DockerRuntime

logger = logging.getLogger(__name__)


def init_command_argv(command: str) -> list[str]:
    """Shell invocation for a vault sub-command inside the container."""
    return ["/bin/sh", "-c", f"vault {command}"]


class RunningInstance:
    """A provisioned, initialized Vault container.

    Owns the container until terminate() is called. terminate() may be
    called any number of times, concurrently or not; only the first call
    releases the container.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        handle: ContainerHandle,
        address: HostAddress,
        token: str,
        close_runtime: bool = False,
    ) -> None:
        self._runtime = runtime
        self._handle = handle
        self._address = address
        self._token = token
        self._close_runtime = close_runtime
        self._terminated = False
        self._lock = asyncio.Lock()

    @property
    def handle(self) -> ContainerHandle:
        return self._handle

    @property
    def address(self) -> HostAddress:
        return self._address

    @property
    def http_host_address(self) -> str:
        """Base URL of the Vault HTTP API, e.g. http://localhost:49153."""
        return self._address.url

    @property
    def token(self) -> str:
        return self._token

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def exec(self, cmd: list[str]) -> ExecResult:
        """Run a command inside the container (e.g. the vault CLI)."""
        if self._terminated:
            raise RuntimeAdapterError(
                f"Container {self._handle.name} was terminated",
                stage="exec",
                container=self._handle.name,
            )
        return await self._runtime.exec(self._handle, cmd)

    async def terminate(self) -> None:
        """Stop and remove the container.

        Raises:
            CleanupError: The runtime failed to release the container.
                Later calls are no-ops either way.
        """
        async with self._lock:
            if self._terminated:
                logger.debug("Container already terminated: %s", self._handle.name)
                return
            self._terminated = True
            try:
                await self._runtime.terminate(self._handle)
            except Exception as e:
                logger.error(
                    "Failed to terminate container",
                    extra={
                        "event": LogEvent.CLEANUP_FAILED,
                        "container": self._handle.name,
                        "error": str(e),
                    },
                )
                raise CleanupError(self._handle.name, e) from e
            finally:
                if self._close_runtime:
                    await self._runtime.close()
            logger.info(
                "Terminated container",
                extra={"event": LogEvent.CLEANUP_COMPLETED, "container": self._handle.name},
            )

    async def __aenter__(self) -> RunningInstance:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.terminate()


class VaultProvisioner:
    """Provision Vault containers through a ContainerRuntime.

    Holds no per-instance state; provision() may run concurrently for
    independent configurations. A caller-supplied runtime is shared by
    every call and never closed here. Without one, each provision()
    opens its own DockerRuntime, owned by the call and then by the
    RunningInstance it returns.
    """

    def __init__(self, runtime: ContainerRuntime | None = None) -> None:
        self._runtime = runtime

    def validate(self, config: InstanceConfig) -> None:
        """Reject configurations that cannot work before any container exists."""
        if not config.image.strip():
            raise ConfigurationError("Image reference must not be empty", field="image")
        if config.init_commands and not config.token.strip():
            raise ConfigurationError(
                "A root token is required to run init commands", field="token"
            )
        for index, command in enumerate(config.init_commands):
            if not command.strip():
                raise ConfigurationError(f"Init command {index} is empty", field="init_commands")
        if not 0 < config.api_port < 65536:
            raise ConfigurationError(f"Invalid API port: {config.api_port}", field="api_port")
        if config.readiness_timeout <= 0:
            raise ConfigurationError("Readiness timeout must be positive", field="readiness_timeout")
        if config.readiness_occurrences < 1:
            raise ConfigurationError(
                "Readiness occurrences must be at least 1", field="readiness_occurrences"
            )
        try:
            re.compile(config.readiness_pattern)
        except re.error as e:
            raise ConfigurationError(
                f"Invalid readiness pattern: {e}", field="readiness_pattern"
            ) from e

    async def provision(self, config: InstanceConfig) -> RunningInstance:
        """Create, start, wait for and initialize a Vault container.

        Raises:
            ConfigurationError: Invalid config; no container was created.
            RuntimeAdapterError: A container runtime call failed.
            ReadinessTimeoutError: Readiness marker not seen in time.
            InitCommandFailedError: An init command exited non-zero.
        """
        self.validate(config)
        owns_runtime = self._runtime is None
        runtime = self._runtime or DockerRuntime()
        logger.info(
            "Provisioning Vault instance",
            extra={
                "event": LogEvent.PROVISION_STARTED,
                "image": config.image,
                "init_commands": len(config.init_commands),
            },
        )

        try:
            handle = await runtime.create(config.image, config.container_env(), [config.api_port])
        except BaseException:
            if owns_runtime:
                await runtime.close()
            raise

        try:
            await runtime.start(handle)
            await LogReadiness.from_config(config).wait(runtime.logs(handle))
            logger.info(
                "Vault instance ready",
                extra={"event": LogEvent.CONTAINER_READY, "container": handle.name},
            )
            await self._run_init_commands(runtime, handle, config.init_commands)
            address = await runtime.mapped_address(handle, config.api_port)
        except asyncio.CancelledError:
            logger.warning(
                "Provisioning cancelled",
                extra={"event": LogEvent.PROVISION_CANCELLED, "container": handle.name},
            )
            await self._cleanup(runtime, handle)
            if owns_runtime:
                await runtime.close()
            raise
        except Exception as e:
            logger.error(
                "Provisioning failed",
                extra={
                    "event": LogEvent.PROVISION_FAILED,
                    "container": handle.name,
                    "error": str(e),
                },
            )
            await self._cleanup(runtime, handle, e)
            if owns_runtime:
                await runtime.close()
            raise

        logger.info(
            "Provisioned Vault instance",
            extra={
                "event": LogEvent.PROVISION_COMPLETED,
                "container": handle.name,
                "address": address.url,
            },
        )
        return RunningInstance(runtime, handle, address, config.token, close_runtime=owns_runtime)

    async def _run_init_commands(
        self,
        runtime: ContainerRuntime,
        handle: ContainerHandle,
        commands: tuple[str, ...],
    ) -> None:
        for index, command in enumerate(commands):
            log_extra = {"container": handle.name, "index": index, "command": command}
            logger.info(
                "Running init command #%d (index %d): %s",
                index + 1,
                index,
                command,
                extra={"event": LogEvent.INIT_COMMAND_STARTED, **log_extra},
            )
            result = await runtime.exec(handle, init_command_argv(command))
            if not result.ok:
                logger.error(
                    "Init command #%d (index %d) failed with exit code %d",
                    index + 1,
                    index,
                    result.exit_code,
                    extra={
                        "event": LogEvent.INIT_COMMAND_FAILED,
                        "exit_code": result.exit_code,
                        "output": result.output,
                        **log_extra,
                    },
                )
                raise InitCommandFailedError(index, command, result.exit_code, result.output)
            logger.info(
                "Init command #%d completed",
                index + 1,
                extra={"event": LogEvent.INIT_COMMAND_COMPLETED, **log_extra},
            )

    async def _cleanup(
        self,
        runtime: ContainerRuntime,
        handle: ContainerHandle,
        error: BaseException | None = None,
    ) -> None:
        """Best-effort termination after a failed provision.

        A cleanup failure is logged and attached to the triggering error;
        it never replaces it.
        """
        logger.info(
            "Cleaning up container",
            extra={"event": LogEvent.CLEANUP_STARTED, "container": handle.name},
        )
        try:
            await runtime.terminate(handle)
        except Exception as e:
            cleanup_error = CleanupError(handle.name, e)
            logger.error(
                "Cleanup failed",
                extra={
                    "event": LogEvent.CLEANUP_FAILED,
                    "container": handle.name,
                    "error": str(e),
                },
            )
            if error is not None:
                error.add_note(str(cleanup_error))
                if isinstance(error, VaultFixtureError):
                    error.cleanup_error = cleanup_error
            return
        logger.info(
            "Cleaned up container",
            extra={"event": LogEvent.CLEANUP_COMPLETED, "container": handle.name},
        )


async def provision(
    *options: Option,
    runtime: ContainerRuntime | None = None,
    base: InstanceConfig | None = None,
) -> RunningInstance:
    """Provision a Vault instance from options.

    Usage:
        async with await provision(with_token("root-token")) as vault:
            ...
    """
    return await VaultProvisioner(runtime).provision(build_config(*options, base=base))
