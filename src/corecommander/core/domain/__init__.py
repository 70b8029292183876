"""Domain enums for corecommander."""

from corecommander.core.domain.instance import (
    PROCESS_PHASES,
    InstancePhase,
    SupervisorState,
)

__all__ = [
    "InstancePhase",
    "SupervisorState",
    "PROCESS_PHASES",
]
