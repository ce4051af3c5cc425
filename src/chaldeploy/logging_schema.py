"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.INSTANCE_CREATED, ...})
    """

    # Application lifecycle
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"
    CLUSTER_CONFIG_LOADED = "cluster_config_loaded"

    # Create
    INSTANCE_CREATED = "instance_created"
    INSTANCE_ALREADY_RUNNING = "instance_already_running"
    INSTANCE_CREATE_REJECTED = "instance_create_rejected"
    INSTANCE_CREATE_FAILED = "instance_create_failed"

    # Destroy
    INSTANCE_DESTROY_REQUESTED = "instance_destroy_requested"
    INSTANCE_DESTROYED = "instance_destroyed"
    INSTANCE_ALREADY_DESTROYING = "instance_already_destroying"
    INSTANCE_ALREADY_ABSENT = "instance_already_absent"
    INSTANCE_DESTROY_FAILED = "instance_destroy_failed"

    # Cluster calls
    CLUSTER_CALL_FAILED = "cluster_call_failed"
    CLUSTER_CALL_TIMEOUT = "cluster_call_timeout"

    # Error events
    UNHANDLED_EXCEPTION = "unhandled_exception"
    AGENT_ERROR = "agent_error"
