"""Unit tests for LocalProcess lifecycle control."""

import logging
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from corecommander.config import CommanderConfig
from corecommander.core.domain import InstancePhase
from corecommander.core.errors import ErrorCode, InvalidStateError, ProvisioningError, StagingError
from corecommander.core.interfaces import NodeProcess
from corecommander.core.models import NodeSpec
from corecommander.local import DiagnosticsClient, LocalProcess
from corecommander.local.supervisor import capture_stream
from corecommander.logging_schema import LogEvent


def _unreachable_diagnostics(process_dir: Path, config: CommanderConfig) -> DiagnosticsClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return DiagnosticsClient(
        11626, process_dir, config.diagnostics, transport=httpx.MockTransport(handler)
    )


def _invocations(process: LocalProcess) -> list[str]:
    log = process.working_dir / "invocations.log"
    return log.read_text().splitlines() if log.exists() else []


class TestLocalProcess:
    """Tests for LocalProcess."""

    @pytest.fixture
    def make_process(self, fake_node: Path, commander_config: CommanderConfig):
        def _make(spec: NodeSpec, **kwargs) -> LocalProcess:
            kwargs.setdefault("binary", fake_node)
            kwargs.setdefault("config", commander_config)
            working_dir = commander_config.node.work_root / spec.name
            kwargs.setdefault(
                "diagnostics", _unreachable_diagnostics(working_dir, commander_config)
            )
            return LocalProcess(spec, **kwargs)

        return _make

    @pytest.fixture
    async def process(self, make_process, node_spec: NodeSpec):
        process = make_process(node_spec)
        yield process
        if process.is_running():
            await process.supervisor.shutdown(graceful=False)

    async def test_implements_interface(self, process: LocalProcess) -> None:
        assert isinstance(process, NodeProcess)
        assert process.phase is InstancePhase.UNCONFIGURED

    def test_paths(self, process: LocalProcess, commander_config: CommanderConfig) -> None:
        root = commander_config.node.work_root.absolute()

        assert process.working_dir == root / "node1"
        assert process.history_dir == root / "history-archives"
        assert process.config_path == root / "node1" / "stellar-core.cfg"
        assert process.executable_path == root / "node1" / "stellar-core"

    def test_default_database_url(self, process: LocalProcess) -> None:
        assert process.database_url == "postgres://localhost/node1"
        assert process.database_name == "node1"
        assert process.dsn == "postgresql://dbname=node1 host=localhost"

    def test_caller_database_url(self, make_process, node_spec: NodeSpec) -> None:
        spec = node_spec.model_copy(update={"database_url": "postgres://db.local/custom"})
        process = make_process(spec)

        assert process.database_url == "postgres://db.local/custom"
        assert process.database_name == "custom"

    async def test_setup_runs_steps_in_order(self, process: LocalProcess, db_log: Path) -> None:
        await process.setup()

        assert process.phase is InstancePhase.DATABASE_INITIALIZED
        assert process.executable_path.exists()
        assert process.config_path.exists()
        assert process.history_dir.is_dir()
        assert db_log.read_text().splitlines() == ["createdb -h localhost node1"]
        assert _invocations(process) == ["--newhist node1", "--newdb"]

    async def test_setup_tolerates_existing_history_dir(self, process: LocalProcess) -> None:
        process.history_dir.mkdir(parents=True)

        await process.setup()

        assert process.phase is InstancePhase.DATABASE_INITIALIZED

    async def test_setup_keep_database_skips_create(
        self, make_process, node_spec: NodeSpec, db_log: Path
    ) -> None:
        process = make_process(node_spec.model_copy(update={"keep_database": True}))

        await process.setup()

        assert not db_log.exists()
        assert process.phase is InstancePhase.DATABASE_INITIALIZED

    async def test_setup_fails_fast_on_createdb(
        self, process: LocalProcess, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_DB_FAIL", "createdb")

        with pytest.raises(ProvisioningError, match="Could not create db"):
            await process.setup()

        assert process.phase is InstancePhase.CONFIGURED
        assert _invocations(process) == []

    async def test_setup_fails_fast_on_newhist(
        self, process: LocalProcess, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_NODE_FAIL", "--newhist")

        with pytest.raises(ProvisioningError, match="Could not initialize history"):
            await process.setup()

        assert process.phase is InstancePhase.DATABASE_PROVISIONED
        assert _invocations(process) == ["--newhist node1"]

    async def test_setup_fails_fast_on_newdb(
        self, process: LocalProcess, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_NODE_FAIL", "--newdb")

        with pytest.raises(ProvisioningError, match="Could not initialize db"):
            await process.setup()

        assert process.phase is InstancePhase.HISTORY_INITIALIZED

    async def test_setup_staging_failure(
        self, make_process, node_spec: NodeSpec, tmp_path: Path, db_log: Path
    ) -> None:
        process = make_process(node_spec, binary=tmp_path / "missing-binary")

        with pytest.raises(StagingError):
            await process.setup()

        assert process.phase is InstancePhase.UNCONFIGURED
        assert not process.config_path.exists()
        assert not db_log.exists()

    async def test_setup_twice_rejected(self, process: LocalProcess) -> None:
        await process.setup()

        with pytest.raises(InvalidStateError):
            await process.setup()

    async def test_launch_before_setup_rejected(self, process: LocalProcess) -> None:
        with pytest.raises(InvalidStateError):
            await process.launch()
        assert process.pid is None

    async def test_launch_and_run(self, process: LocalProcess, wait_for_text) -> None:
        await process.setup()

        pid = await process.launch()

        assert pid == process.pid
        assert process.is_running() is True
        assert await process.wait_for_running() is True
        assert process.phase is InstancePhase.RUNNING
        assert await wait_for_text(process.stdout_path, "ready")
        assert _invocations(process)[-1] == "<run>"

    async def test_forcescp_runs_before_launch(
        self, make_process, node_spec: NodeSpec
    ) -> None:
        process = make_process(node_spec.model_copy(update={"forcescp": True}))
        await process.setup()

        await process.launch()
        await process.wait_for_running()

        assert _invocations(process)[:3] == ["--newhist node1", "--newdb", "--forcescp"]
        await process.shutdown(graceful=False)

    async def test_forcescp_failure_prevents_launch(
        self, make_process, node_spec: NodeSpec, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        process = make_process(node_spec.model_copy(update={"forcescp": True}))
        await process.setup()
        monkeypatch.setenv("FAKE_NODE_FAIL", "--forcescp")

        with pytest.raises(ProvisioningError, match="--forcescp"):
            await process.launch()

        assert process.pid is None
        assert process.phase is InstancePhase.DATABASE_INITIALIZED

    async def test_wait_for_running_false_after_exit(
        self, process: LocalProcess, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_NODE_EXIT_AFTER_OUTPUT", "1")
        await process.setup()
        await process.launch()
        await process.supervisor.wait()

        assert process.is_running() is False
        assert process.phase is InstancePhase.STOPPED
        assert await process.wait_for_running(timeout=0.1) is False

    async def test_wait_for_running_requires_http_when_configured(
        self, make_process, node_spec: NodeSpec, commander_config: CommanderConfig
    ) -> None:
        config = commander_config.model_copy(
            update={
                "node": commander_config.node.model_copy(update={"require_http_ready": True})
            }
        )
        process = make_process(node_spec, config=config)
        await process.setup()
        await process.launch()

        assert await process.wait_for_running(timeout=0.2) is False
        assert process.phase is InstancePhase.LAUNCHED
        await process.shutdown(graceful=False)

    async def test_shutdown_marks_stopped(self, process: LocalProcess, wait_for_text) -> None:
        await process.setup()
        await process.launch()
        assert await wait_for_text(process.stdout_path, "ready")

        assert await process.shutdown(graceful=True) is True
        assert process.phase is InstancePhase.STOPPED
        assert process.exit_code == 0

    async def test_crash_then_not_running(self, process: LocalProcess, wait_for_text) -> None:
        await process.setup()
        await process.launch()
        assert await wait_for_text(process.stdout_path, "ready")

        await process.crash()
        exit_code = await process.supervisor.wait()

        assert exit_code != 0
        assert process.is_running() is False
        assert process.phase is InstancePhase.STOPPED

    async def test_drop_database_refused_while_running(
        self, process: LocalProcess, db_log: Path, wait_for_text
    ) -> None:
        await process.setup()
        await process.launch()
        assert await wait_for_text(process.stdout_path, "ready")

        with pytest.raises(ProvisioningError, match="node is running"):
            await process.drop_database()

        assert process.is_running() is True
        assert not any(line.startswith("dropdb") for line in db_log.read_text().splitlines())

        await process.shutdown(graceful=True)
        await process.drop_database()
        assert db_log.read_text().splitlines()[-1] == "dropdb -h localhost node1"


class TestLocalProcessCleanup:
    """Tests for LocalProcess.cleanup()."""

    @pytest.fixture
    def make_process(self, fake_node: Path, commander_config: CommanderConfig):
        def _make(spec: NodeSpec, **kwargs) -> LocalProcess:
            working_dir = commander_config.node.work_root / spec.name
            kwargs.setdefault(
                "diagnostics", _unreachable_diagnostics(working_dir, commander_config)
            )
            return LocalProcess(spec, binary=fake_node, config=commander_config, **kwargs)

        return _make

    async def _launched(self, process: LocalProcess, wait_for_text) -> LocalProcess:
        await process.setup()
        await process.launch()
        assert await wait_for_text(process.stdout_path, "ready")
        return process

    async def test_cleanup_order_and_success(
        self, make_process, node_spec: NodeSpec, db_log: Path, wait_for_text
    ) -> None:
        database = AsyncMock()
        process = await self._launched(make_process(node_spec, database=database), wait_for_text)

        report = await process.cleanup()

        assert report.success is True
        assert [s.name for s in report.steps] == [
            "disconnect_database",
            "dump_database",
            "dump_diagnostics",
            "shutdown",
            "drop_database",
            "drain_output",
        ]
        # diagnostics endpoint is unreachable: recorded, not fatal
        assert report.step("dump_diagnostics").ok is False
        assert report.step("dump_diagnostics").best_effort is True
        database.disconnect.assert_awaited_once()
        assert db_log.read_text().splitlines() == [
            "createdb -h localhost node1",
            "pg_dump -h localhost node1 --clean --no-owner --no-privileges",
            "dropdb -h localhost node1",
        ]
        assert process.phase is InstancePhase.CLEANED
        assert process.is_running() is False

    async def test_cleanup_logs_database_disconnect(
        self,
        make_process,
        node_spec: NodeSpec,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO, logger="corecommander")
        process = make_process(node_spec, database=AsyncMock())

        await process.cleanup()

        events = [getattr(record, "event", None) for record in caplog.records]
        assert LogEvent.DATABASE_DISCONNECTED in events
        assert events.index(LogEvent.CLEANUP_STARTED) < events.index(
            LogEvent.DATABASE_DISCONNECTED
        )

    @pytest.mark.skipif(not Path("/dev/full").exists(), reason="needs /dev/full")
    async def test_cleanup_reports_failed_output_capture(
        self,
        make_process,
        node_spec: NodeSpec,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("FAKE_NODE_EXIT_AFTER_OUTPUT", "1")

        async def capture_to_full_device(stream, out, label):
            out.close()
            return await capture_stream(stream, open("/dev/full", "wb"), label)

        monkeypatch.setattr(
            "corecommander.local.supervisor.capture_stream", capture_to_full_device
        )
        process = make_process(node_spec)
        await process.setup()
        await process.launch()
        assert await process.supervisor.wait() == 0

        report = await process.cleanup()

        assert report.success is False
        assert report.failed_steps == ["drain_output"]
        assert report.step("shutdown").ok is True

    async def test_cleanup_continues_after_disconnect_failure(
        self, make_process, node_spec: NodeSpec, db_log: Path, wait_for_text
    ) -> None:
        database = AsyncMock()
        database.disconnect.side_effect = RuntimeError("connection already closed")
        process = await self._launched(make_process(node_spec, database=database), wait_for_text)

        report = await process.cleanup()

        assert report.success is False
        assert report.failed_steps[0] == "disconnect_database"
        assert report.step("disconnect_database").error.code == ErrorCode.TEARDOWN_FAILED.value
        assert report.step("shutdown").ok is True
        assert report.step("drop_database").ok is True
        assert "dropdb -h localhost node1" in db_log.read_text()
        assert process.exit_code == 0

    async def test_cleanup_reports_unclean_shutdown(
        self,
        make_process,
        node_spec: NodeSpec,
        db_log: Path,
        wait_for_text,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("FAKE_NODE_EXIT", "4")
        process = await self._launched(make_process(node_spec), wait_for_text)

        report = await process.cleanup()

        assert report.success is False
        assert report.step("shutdown").error.code == ErrorCode.SHUTDOWN_FAILED.value
        # process is gone, so the database is still dropped
        assert report.step("drop_database").ok is True
        assert "dropdb -h localhost node1" in db_log.read_text()

    async def test_cleanup_drop_failure(
        self,
        make_process,
        node_spec: NodeSpec,
        wait_for_text,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        process = await self._launched(make_process(node_spec), wait_for_text)
        monkeypatch.setenv("FAKE_DB_FAIL", "dropdb")

        report = await process.cleanup()

        assert report.success is False
        assert report.failed_steps == ["dump_diagnostics", "drop_database"]
        assert report.step("drop_database").error.code == ErrorCode.PROVISIONING_FAILED.value

    async def test_cleanup_dump_failure_is_not_fatal(
        self,
        make_process,
        node_spec: NodeSpec,
        wait_for_text,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        process = await self._launched(make_process(node_spec), wait_for_text)
        monkeypatch.setenv("FAKE_DB_FAIL", "pg_dump")

        report = await process.cleanup()

        assert report.step("dump_database").ok is False
        assert report.success is True

    async def test_cleanup_keep_database(
        self, make_process, node_spec: NodeSpec, db_log: Path, wait_for_text
    ) -> None:
        spec = node_spec.model_copy(update={"keep_database": True})
        process = await self._launched(make_process(spec), wait_for_text)

        report = await process.cleanup()

        assert report.success is True
        assert report.step("drop_database").skipped is True
        assert "dropdb" not in db_log.read_text()

    async def test_cleanup_after_crash(
        self, make_process, node_spec: NodeSpec, db_log: Path, wait_for_text
    ) -> None:
        process = await self._launched(make_process(node_spec), wait_for_text)
        await process.crash()
        await process.supervisor.wait()

        report = await process.cleanup()

        # already exited: shutdown is a no-op success
        assert report.step("shutdown").ok is True
        assert report.step("dump_diagnostics").skipped is True
        assert "dropdb -h localhost node1" in db_log.read_text()

    async def test_cleanup_after_failed_setup_skips_drop(
        self,
        make_process,
        node_spec: NodeSpec,
        db_log: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("FAKE_DB_FAIL", "createdb")
        process = make_process(node_spec)
        with pytest.raises(ProvisioningError):
            await process.setup()

        report = await process.cleanup()

        assert report.success is True
        assert report.step("drop_database").skipped is True
        assert report.step("drain_output").skipped is True
        assert db_log.read_text().splitlines() == ["createdb -h localhost node1"]

    async def test_operations_invalid_after_cleanup(
        self, make_process, node_spec: NodeSpec
    ) -> None:
        process = make_process(node_spec)
        await process.cleanup()

        with pytest.raises(InvalidStateError):
            await process.setup()
        with pytest.raises(InvalidStateError):
            await process.launch()
        with pytest.raises(InvalidStateError):
            await process.shutdown()
        with pytest.raises(InvalidStateError):
            await process.cleanup()
