"""Instance lifecycle enums."""

from enum import StrEnum


class InstancePhase(StrEnum):
    """Instance controller phase, advanced strictly in declaration order."""

    UNCONFIGURED = "Unconfigured"
    CONFIGURED = "Configured"
    DATABASE_PROVISIONED = "DatabaseProvisioned"
    HISTORY_INITIALIZED = "HistoryInitialized"
    DATABASE_INITIALIZED = "DatabaseInitialized"
    LAUNCHED = "Launched"
    RUNNING = "Running"
    STOPPED = "Stopped"
    CLEANED = "Cleaned"


class SupervisorState(StrEnum):
    """Process supervisor state."""

    NOT_SPAWNED = "NotSpawned"
    SPAWNED = "Spawned"
    SIGNALED_INTERRUPT = "SignaledInterrupt"
    SIGNALED_KILL = "SignaledKill"
    SIGNALED_ABORT = "SignaledAbort"
    EXITED = "Exited"


# Phases in which a spawned process may still be alive
PROCESS_PHASES = frozenset({
    InstancePhase.LAUNCHED,
    InstancePhase.RUNNING,
})
