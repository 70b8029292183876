"""Error handling module for corecommander.

This module defines error codes, exception classes, and the detail model used
to report failed teardown steps.

Usage:
    from corecommander.core.errors import ProvisioningError, StagingError

    # Raise with default message
    raise StagingError()

    # Raise with custom message
    raise ProvisioningError("Could not create db: node1")

Setup-phase errors propagate to the caller. Teardown-phase errors are caught per
step and reported as ErrorDetail entries instead.
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    STAGING_FAILED = "STAGING_FAILED"
    SHUTDOWN_FAILED = "SHUTDOWN_FAILED"
    INVALID_STATE = "INVALID_STATE"
    CONFIG_RENDER_FAILED = "CONFIG_RENDER_FAILED"
    TEARDOWN_FAILED = "TEARDOWN_FAILED"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class CommanderError(Exception):
    """Base exception for corecommander.

    All commander specific exceptions should inherit from this class.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
    """

    def __init__(self, code: ErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)

    def to_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail model."""
        return ErrorDetail(code=self.code.value, message=self.message)


class ProvisioningError(CommanderError):
    """An external provisioning command exited non-zero."""

    def __init__(self, message: str = "Provisioning command failed") -> None:
        super().__init__(ErrorCode.PROVISIONING_FAILED, message)


class StagingError(CommanderError):
    """The node executable could not be located or copied."""

    def __init__(self, message: str = "Could not stage node executable") -> None:
        super().__init__(ErrorCode.STAGING_FAILED, message)


class ShutdownError(CommanderError):
    """The process did not reach a clean exit status after a shutdown signal.

    shutdown() reports this as a False result; the exception type only
    describes the failed step in a cleanup report.
    """

    def __init__(self, message: str = "Process did not exit cleanly") -> None:
        super().__init__(ErrorCode.SHUTDOWN_FAILED, message)


class InvalidStateError(CommanderError):
    """Operation is not valid in the instance's current lifecycle phase."""

    def __init__(self, message: str = "Operation not valid in current phase") -> None:
        super().__init__(ErrorCode.INVALID_STATE, message)


class ConfigRenderError(CommanderError):
    """A field required by the node configuration is missing."""

    def __init__(self, message: str = "Could not render node configuration") -> None:
        super().__init__(ErrorCode.CONFIG_RENDER_FAILED, message)
