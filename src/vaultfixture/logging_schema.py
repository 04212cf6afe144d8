"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for the fixture lifecycle.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.CONTAINER_STARTED, ...})
    """

    # Container events
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_READY = "container_ready"
    CONTAINER_STOPPED = "container_stopped"
    CONTAINER_REMOVED = "container_removed"

    # Image events
    IMAGE_PULLED = "image_pulled"

    # Init command events
    INIT_COMMAND_STARTED = "init_command_started"
    INIT_COMMAND_COMPLETED = "init_command_completed"
    INIT_COMMAND_FAILED = "init_command_failed"

    # Provision events
    PROVISION_STARTED = "provision_started"
    PROVISION_COMPLETED = "provision_completed"
    PROVISION_FAILED = "provision_failed"
    PROVISION_CANCELLED = "provision_cancelled"
    READINESS_TIMEOUT = "readiness_timeout"

    # Cleanup events
    CLEANUP_STARTED = "cleanup_started"
    CLEANUP_COMPLETED = "cleanup_completed"
    CLEANUP_FAILED = "cleanup_failed"
