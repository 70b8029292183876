"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for the commander.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.PROCESS_SPAWNED, ...})
    """

    # Staging
    BINARY_STAGED = "binary_staged"
    STAGING_FAILED = "staging_failed"

    # Configuration
    CONFIG_WRITTEN = "config_written"

    # Database
    DATABASE_CREATED = "database_created"
    DATABASE_DROPPED = "database_dropped"
    DATABASE_DUMPED = "database_dumped"
    DATABASE_DISCONNECTED = "database_disconnected"
    DATABASE_INITIALIZED = "database_initialized"
    HISTORY_INITIALIZED = "history_initialized"

    # External commands
    COMMAND_FAILED = "command_failed"

    # Process
    PROCESS_SPAWNED = "process_spawned"
    PROCESS_EXITED = "process_exited"
    PROCESS_RUNNING = "process_running"
    SIGNAL_SENT = "signal_sent"
    CAPTURE_FINISHED = "capture_finished"
    CAPTURE_FAILED = "capture_failed"

    # Diagnostics
    DIAGNOSTICS_DUMPED = "diagnostics_dumped"
    DIAGNOSTICS_FAILED = "diagnostics_failed"

    # Cleanup events
    CLEANUP_STARTED = "cleanup_started"
    CLEANUP_COMPLETED = "cleanup_completed"
    CLEANUP_FAILED = "cleanup_failed"
