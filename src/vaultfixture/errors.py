"""Error handling module for vaultfixture.

This module defines error codes, exception classes, and response models.
Every error names the provisioning stage it came from and carries enough
structured context to diagnose a failure without re-running it.

Error Response Format:
{
    "error": {
        "code": "INIT_COMMAND_FAILED",
        "message": "Init command 1 failed with exit code 2: write -f transit/keys/my-key",
        "stage": "init",
        "context": {"index": 1, ...}
    }
}

Usage:
    from vaultfixture.errors import InitCommandFailedError

    try:
        instance = await provision(with_init_command("secrets enable kv"))
    except InitCommandFailedError as e:
        print(e.index, e.output)
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    READINESS_TIMEOUT = "READINESS_TIMEOUT"
    INIT_COMMAND_FAILED = "INIT_COMMAND_FAILED"
    CLEANUP_FAILED = "CLEANUP_FAILED"


class ErrorDetail(BaseModel):
    """Error detail containing code, message and diagnostic context."""

    code: str
    message: str
    stage: str
    context: dict[str, Any] = {}


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class VaultFixtureError(Exception):
    """Base exception for vaultfixture.

    Attributes:
        code: The error code from ErrorCode enum.
        message: Human-readable error message.
        stage: Provisioning stage that failed (validate, create, init, ...).
        context: Structured diagnostic fields.
        cleanup_error: Set when best-effort cleanup after this error also failed.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        stage: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.stage = stage
        self.context = context or {}
        self.cleanup_error: CleanupError | None = None
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                stage=self.stage,
                context=self.context,
            )
        )


class ConfigurationError(VaultFixtureError):
    """Malformed InstanceConfig, detected before any container exists."""

    def __init__(self, message: str = "Invalid instance configuration", field: str | None = None) -> None:
        self.field = field
        super().__init__(
            ErrorCode.CONFIGURATION_ERROR,
            message,
            stage="validate",
            context={"field": field} if field else None,
        )


class RuntimeAdapterError(VaultFixtureError):
    """Container runtime operation failed (create, start, exec, terminate...)."""

    def __init__(
        self,
        message: str = "Container runtime operation failed",
        stage: str = "runtime",
        container: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.container = container
        self.status_code = status_code
        context: dict[str, Any] = {}
        if container:
            context["container"] = container
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(ErrorCode.RUNTIME_ERROR, message, stage=stage, context=context)


class ReadinessTimeoutError(VaultFixtureError):
    """Service did not log its readiness marker in time."""

    def __init__(
        self,
        pattern: str,
        timeout: float,
        recent_lines: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        self.pattern = pattern
        self.timeout = timeout
        self.recent_lines = recent_lines or []
        super().__init__(
            ErrorCode.READINESS_TIMEOUT,
            message or f"Readiness marker {pattern!r} not seen within {timeout}s",
            stage="readiness",
            context={
                "pattern": pattern,
                "timeout": timeout,
                "recent_lines": self.recent_lines,
            },
        )


class InitCommandFailedError(VaultFixtureError):
    """An init command exited non-zero; later commands were not run."""

    def __init__(self, index: int, command: str, exit_code: int, output: str) -> None:
        self.index = index
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            ErrorCode.INIT_COMMAND_FAILED,
            f"Init command #{index + 1} (index {index}) failed with exit code {exit_code}: "
            f"{command}",
            stage="init",
            context={
                "index": index,
                "command": command,
                "exit_code": exit_code,
                "output": output,
            },
        )


class CleanupError(VaultFixtureError):
    """Terminating the container failed."""

    def __init__(self, container: str, cause: BaseException) -> None:
        self.container = container
        self.cause = cause
        super().__init__(
            ErrorCode.CLEANUP_FAILED,
            f"Failed to terminate container {container}: {cause}",
            stage="terminate",
            context={"container": container, "cause": str(cause)},
        )
