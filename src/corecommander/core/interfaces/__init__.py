"""Core interfaces for node instance control."""

from corecommander.core.interfaces.process import (
    CleanupReport,
    CleanupStep,
    NodeProcess,
)

__all__ = [
    "NodeProcess",
    "CleanupReport",
    "CleanupStep",
]
