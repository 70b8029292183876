"""Local node instance controller.

Takes one node from Unconfigured through Running to Cleaned, keeping the
generated config, the node database and the spawned process consistent:

- the database exists before --newdb runs and before the process is spawned
- the database is never dropped while the process is alive
- teardown steps are isolated so one failure does not block the others
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

from corecommander.config import CommanderConfig, get_config
from corecommander.core.commands import run_command
from corecommander.core.domain import PROCESS_PHASES, InstancePhase, SupervisorState
from corecommander.core.errors import (
    CommanderError,
    ErrorCode,
    ErrorDetail,
    InvalidStateError,
    ProvisioningError,
    ShutdownError,
)
from corecommander.core.interfaces import CleanupReport, CleanupStep, NodeProcess
from corecommander.core.models import NodeSpec, SpecialPeer
from corecommander.local.config_renderer import render_config
from corecommander.local.database import DatabaseHandle, DatabaseProvisioner
from corecommander.local.diagnostics import DiagnosticsClient
from corecommander.local.staging import locate_binary, stage_binary
from corecommander.local.supervisor import ProcessSupervisor
from corecommander.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_PHASE_ORDER = list(InstancePhase)


class LocalProcess(NodeProcess):
    """Node instance running as a child process on this host."""

    def __init__(
        self,
        spec: NodeSpec,
        *,
        binary: Path | str | None = None,
        working_dir: Path | None = None,
        config: CommanderConfig | None = None,
        database: DatabaseHandle | None = None,
        special_peers: Mapping[str, SpecialPeer] | None = None,
        diagnostics: DiagnosticsClient | None = None,
    ) -> None:
        self._spec = spec
        self._config = config or get_config()
        self._binary = binary
        self._special_peers = special_peers
        self.database = database

        node = self._config.node
        self._working_dir = (working_dir or node.work_root / spec.name).absolute()
        self._history_dir = self._working_dir.parent / node.history_dirname

        self._database_url = spec.database_url or self.default_database_url
        self._provisioner = DatabaseProvisioner(self._database_url, self._config.database)
        self._supervisor = ProcessSupervisor(
            executable=self.executable_path,
            working_dir=self._working_dir,
            stdout_path=self._working_dir / node.stdout_filename,
            stderr_path=self._working_dir / node.stderr_filename,
            stream_limit=node.stream_limit,
        )
        self._diagnostics = diagnostics or DiagnosticsClient(
            spec.http_port, self._working_dir, self._config.diagnostics
        )

        self._phase = InstancePhase.UNCONFIGURED
        self._staged = False
        self._database_created = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def spec(self) -> NodeSpec:
        return self._spec

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def phase(self) -> InstancePhase:
        # A process that exited on its own is reported as stopped
        if self._phase in PROCESS_PHASES and self._supervisor.state is SupervisorState.EXITED:
            return InstancePhase.STOPPED
        return self._phase

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def history_dir(self) -> Path:
        return self._history_dir

    @property
    def executable_path(self) -> Path:
        return self._working_dir / self._config.node.binary_name

    @property
    def config_path(self) -> Path:
        return self._working_dir / self._config.node.config_filename

    @property
    def stdout_path(self) -> Path:
        return self._working_dir / self._config.node.stdout_filename

    @property
    def stderr_path(self) -> Path:
        return self._working_dir / self._config.node.stderr_filename

    @property
    def default_database_url(self) -> str:
        return self._config.database.url_template.format(name=self._spec.name)

    @property
    def database_url(self) -> str:
        return self._database_url

    @property
    def database_name(self) -> str:
        return self._provisioner.name

    @property
    def dsn(self) -> str:
        return self._provisioner.dsn

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def pid(self) -> int | None:
        return self._supervisor.pid

    @property
    def exit_code(self) -> int | None:
        return self._supervisor.exit_code

    # =========================================================================
    # Phase bookkeeping
    # =========================================================================

    def _require_active(self) -> None:
        if self._phase is InstancePhase.CLEANED:
            raise InvalidStateError(f"Instance {self.name} has been cleaned up")

    def _require_phase(self, *allowed: InstancePhase) -> None:
        self._require_active()
        if self.phase not in allowed:
            expected = ", ".join(allowed)
            raise InvalidStateError(
                f"Instance {self.name} is {self.phase}, expected one of: {expected}"
            )

    def _advance(self, phase: InstancePhase) -> None:
        if _PHASE_ORDER.index(phase) > _PHASE_ORDER.index(self._phase):
            self._phase = phase

    # =========================================================================
    # Setup
    # =========================================================================

    async def stage(self) -> Path:
        """Locate the node executable and copy it into the working directory."""
        self._require_active()
        if not self._staged:
            source = await locate_binary(self._binary, self._config.node.binary_name)
            stage_binary(source, self._working_dir, self._config.node.binary_name)
            self._staged = True
        return self.executable_path

    def write_config(self) -> Path:
        """Render the node configuration into the working directory."""
        self._require_active()
        text = render_config(
            self._spec,
            dsn=self.dsn,
            history_dir=self._history_dir,
            special_peers=self._special_peers,
        )
        self.config_path.write_text(text, encoding="utf-8")
        logger.info(
            "Wrote node config",
            extra={"event": LogEvent.CONFIG_WRITTEN, "node": self.name, "path": str(self.config_path)},
        )
        return self.config_path

    async def create_database(self) -> None:
        self._require_active()
        await self._provisioner.create()
        self._database_created = True

    async def drop_database(self) -> None:
        self._require_active()
        if self._supervisor.is_running():
            raise ProvisioningError(f"Refusing to drop db {self.database_name}: node is running")
        await self._provisioner.drop()
        self._database_created = False

    async def _run_node(self, *args: str, failure: str) -> None:
        result = await run_command(self.executable_path, *args, cwd=self._working_dir)
        if not result.success:
            raise ProvisioningError(f"{failure} (exit code {result.exit_code})")

    async def initialize_history(self) -> None:
        """Create the history archive root and initialize this node's archive."""
        self._require_active()
        self._history_dir.mkdir(parents=True, exist_ok=True)
        await self._run_node("--newhist", self.name, failure="Could not initialize history")
        logger.info(
            "Initialized history archive",
            extra={"event": LogEvent.HISTORY_INITIALIZED, "node": self.name},
        )

    async def initialize_database(self) -> None:
        self._require_active()
        await self._run_node("--newdb", failure="Could not initialize db")
        logger.info(
            "Initialized node database",
            extra={"event": LogEvent.DATABASE_INITIALIZED, "node": self.name},
        )

    async def forcescp(self) -> None:
        self._require_active()
        await self._run_node("--forcescp", failure="Could not set --forcescp")

    async def setup(self) -> None:
        """Stage, write config, provision the database and initialize the node.

        Fails fast: the first failing step raises and later steps do not run.
        """
        self._require_phase(InstancePhase.UNCONFIGURED)

        await self.stage()
        self.write_config()
        self._advance(InstancePhase.CONFIGURED)

        if not self._spec.keep_database:
            await self.create_database()
        self._advance(InstancePhase.DATABASE_PROVISIONED)

        await self.initialize_history()
        self._advance(InstancePhase.HISTORY_INITIALIZED)

        await self.initialize_database()
        self._advance(InstancePhase.DATABASE_INITIALIZED)

    # =========================================================================
    # Process control
    # =========================================================================

    async def launch(self) -> int:
        """Spawn the node (after --forcescp when requested)."""
        self._require_phase(InstancePhase.DATABASE_INITIALIZED)

        if self._spec.forcescp:
            await self.forcescp()

        pid = await self._supervisor.spawn()
        self._advance(InstancePhase.LAUNCHED)
        return pid

    async def wait_for_running(self, timeout: float | None = None) -> bool:
        """Poll until the process is alive (and answering HTTP when configured).

        Returns:
            False if the process exited or the timeout elapsed first
        """
        self._require_active()
        node = self._config.node
        timeout = node.ready_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if self._phase not in PROCESS_PHASES or self.phase is InstancePhase.STOPPED:
                return False
            if self.is_running() and (
                not node.require_http_ready or await self._diagnostics.is_http_ready()
            ):
                self._advance(InstancePhase.RUNNING)
                logger.info(
                    "Node is running",
                    extra={"event": LogEvent.PROCESS_RUNNING, "node": self.name, "pid": self.pid},
                )
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(node.ready_poll_interval)

    def is_running(self) -> bool:
        return self._supervisor.is_running()

    async def shutdown(self, graceful: bool = True) -> bool:
        self._require_active()
        clean = await self._supervisor.shutdown(graceful)
        if self._phase in PROCESS_PHASES and not self._supervisor.is_running():
            self._phase = InstancePhase.STOPPED
        return clean

    async def crash(self) -> None:
        self._require_active()
        self._supervisor.crash()

    # =========================================================================
    # Diagnostics
    # =========================================================================

    async def dump_database(self) -> Path | None:
        return await self._provisioner.dump(self._working_dir)

    async def dump_diagnostics(self) -> dict[str, Path | None]:
        return await self._diagnostics.dump_all()

    # =========================================================================
    # Teardown
    # =========================================================================

    async def _step(
        self,
        report: CleanupReport,
        name: str,
        action: Callable[[], Awaitable[bool]],
        best_effort: bool = False,
    ) -> None:
        error: ErrorDetail | None = None
        try:
            ok = await action()
            if not ok:
                error = ErrorDetail(code=ErrorCode.TEARDOWN_FAILED.value, message=f"{name} failed")
        except CommanderError as e:
            ok, error = False, e.to_detail()
        except Exception as e:
            ok = False
            error = ErrorDetail(
                code=ErrorCode.TEARDOWN_FAILED.value, message=f"{type(e).__name__}: {e}"
            )

        if not ok:
            log = logger.warning if best_effort else logger.error
            log(
                "Cleanup step failed",
                extra={
                    "event": LogEvent.CLEANUP_FAILED,
                    "node": self.name,
                    "step": name,
                    "error": error.message if error else None,
                },
            )
        report.steps.append(CleanupStep(name=name, ok=ok, best_effort=best_effort, error=error))

    @staticmethod
    def _skip(report: CleanupReport, name: str, best_effort: bool = False) -> None:
        report.steps.append(CleanupStep(name=name, ok=True, skipped=True, best_effort=best_effort))

    async def cleanup(self, await_capture: bool = True) -> CleanupReport:
        """Tear down the instance.

        Order: disconnect database client, dump database, dump diagnostics,
        graceful shutdown, drop database (unless kept), drain output capture.
        Every step runs even if an earlier one failed.
        """
        self._require_active()
        logger.info(
            "Cleaning up node",
            extra={"event": LogEvent.CLEANUP_STARTED, "node": self.name, "phase": self.phase},
        )
        report = CleanupReport()

        if self.database is not None:
            database = self.database

            async def disconnect() -> bool:
                await database.disconnect()
                logger.info(
                    "Disconnected database client",
                    extra={"event": LogEvent.DATABASE_DISCONNECTED, "node": self.name},
                )
                return True

            await self._step(report, "disconnect_database", disconnect)
        else:
            self._skip(report, "disconnect_database")

        if self._database_created or self._spec.keep_database:

            async def dump_database() -> bool:
                return await self.dump_database() is not None

            await self._step(report, "dump_database", dump_database, best_effort=True)
        else:
            self._skip(report, "dump_database", best_effort=True)

        if self.is_running():

            async def dump_diagnostics() -> bool:
                dumps = await self.dump_diagnostics()
                return all(path is not None for path in dumps.values())

            await self._step(report, "dump_diagnostics", dump_diagnostics, best_effort=True)
        else:
            self._skip(report, "dump_diagnostics", best_effort=True)

        async def stop() -> bool:
            if not await self.shutdown(graceful=True):
                raise ShutdownError(
                    f"Node {self.name} did not exit cleanly (exit code {self.exit_code})"
                )
            return True

        await self._step(report, "shutdown", stop)

        if self._spec.keep_database or not self._database_created:
            self._skip(report, "drop_database")
        else:

            async def drop() -> bool:
                await self.drop_database()
                return True

            await self._step(report, "drop_database", drop)

        if await_capture and self.pid is not None:
            await self._step(
                report,
                "drain_output",
                lambda: self._supervisor.wait_for_capture(self._config.node.capture_drain_timeout),
            )
        else:
            self._skip(report, "drain_output")

        self._phase = InstancePhase.CLEANED
        logger.info(
            "Cleaned up node",
            extra={
                "event": LogEvent.CLEANUP_COMPLETED,
                "node": self.name,
                "success": report.success,
                "failed_steps": report.failed_steps,
            },
        )
        return report
