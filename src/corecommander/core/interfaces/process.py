"""Node process interface for instance lifecycle control."""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from corecommander.core.domain import InstancePhase
from corecommander.core.errors import ErrorDetail


class CleanupStep(BaseModel):
    """Outcome of one teardown sub-step."""

    name: str
    ok: bool
    skipped: bool = False
    best_effort: bool = False
    error: ErrorDetail | None = None


class CleanupReport(BaseModel):
    """Outcome of cleanup().

    Best-effort steps (diagnostic dumps) are recorded but never fail the report.
    """

    steps: list[CleanupStep] = []

    @property
    def success(self) -> bool:
        return all(step.ok for step in self.steps if not step.best_effort)

    @property
    def failed_steps(self) -> list[str]:
        return [step.name for step in self.steps if not step.ok]

    def step(self, name: str) -> CleanupStep | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None


class NodeProcess(ABC):
    """Interface for one node instance under test.

    Implementations: LocalProcess, DockerProcess (future)
    """

    @property
    @abstractmethod
    def phase(self) -> InstancePhase:
        """Current lifecycle phase."""
        ...

    @abstractmethod
    async def setup(self) -> None:
        """Stage, configure and provision everything the node needs to launch.

        Raises:
            StagingError: executable could not be staged
            ProvisioningError: a provisioning command exited non-zero
        """
        ...

    @abstractmethod
    async def launch(self) -> int:
        """Spawn the node process.

        Returns:
            Process identifier
        """
        ...

    @abstractmethod
    async def wait_for_running(self, timeout: float | None = None) -> bool:
        """Wait until the node reports as running.

        Returns:
            True if running before the timeout, False otherwise
        """
        ...

    @abstractmethod
    def is_running(self) -> bool:
        """Check if the node process is alive."""
        ...

    @abstractmethod
    async def shutdown(self, graceful: bool = True) -> bool:
        """Stop the node process.

        Returns:
            True if the process exited cleanly or was not running
        """
        ...

    @abstractmethod
    async def crash(self) -> None:
        """Terminate the node abruptly to simulate a crash."""
        ...

    @abstractmethod
    async def cleanup(self) -> CleanupReport:
        """Tear down the process and its resources, best effort per step."""
        ...
