"""Shared fixtures: fake node executable and fake database tools.

The fakes are small scripts run by the current interpreter so the real
subprocess, signal and pipe paths are exercised without a node binary or a
PostgreSQL server.
"""

import asyncio
import stat
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest

from corecommander.config import CommanderConfig, DatabaseConfig, DiagnosticsConfig, NodeConfig
from corecommander.core.models import Identity, NodeSpec

# Behaviour is driven by environment variables so each test can use monkeypatch:
#   FAKE_NODE_FAIL             comma separated init flags that exit 1 (e.g. --newdb)
#   FAKE_NODE_LINES            number of stdout/stderr lines printed after start
#   FAKE_NODE_EXIT             exit code used when interrupted
#   FAKE_NODE_EXIT_AFTER_OUTPUT  exit 0 right after printing instead of idling
FAKE_NODE = '''#!{python}
import os
import signal
import sys
import time

args = sys.argv[1:]
with open(os.path.join(os.getcwd(), "invocations.log"), "a") as log:
    log.write(" ".join(args or ["<run>"]) + "\\n")

if args:
    failing = os.environ.get("FAKE_NODE_FAIL", "").split(",")
    sys.exit(1 if args[0] in failing else 0)


def stop(signum, frame):
    print("stopping", flush=True)
    sys.exit(int(os.environ.get("FAKE_NODE_EXIT", "0")))


signal.signal(signal.SIGINT, stop)
print("ready", flush=True)
for i in range(int(os.environ.get("FAKE_NODE_LINES", "5"))):
    print(f"out {{i}}", flush=True)
    print(f"err {{i}}", file=sys.stderr, flush=True)
if os.environ.get("FAKE_NODE_EXIT_AFTER_OUTPUT"):
    sys.exit(0)
while True:
    time.sleep(0.05)
'''

FAKE_DB_TOOL = '''#!{python}
import os
import sys

tool = os.path.basename(sys.argv[0])
with open({log!r}, "a") as log:
    log.write(" ".join([tool, *sys.argv[1:]]) + "\\n")
if tool in os.environ.get("FAKE_DB_FAIL", "").split(","):
    sys.exit(2)
if tool == "pg_dump":
    print("-- dump of " + sys.argv[-4])
'''


def _write_script(path: Path, text: str) -> Path:
    path.write_text(text)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_node(tmp_path: Path) -> Path:
    """Executable standing in for the node binary."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return _write_script(bin_dir / "stellar-core", FAKE_NODE.format(python=sys.executable))


@pytest.fixture
def db_log(tmp_path: Path) -> Path:
    """File every fake database tool invocation is appended to."""
    return tmp_path / "db-tools.log"


@pytest.fixture
def fake_db_tools(tmp_path: Path, db_log: Path) -> dict[str, Path]:
    """Fake createdb / dropdb / pg_dump executables."""
    tools_dir = tmp_path / "dbtools"
    tools_dir.mkdir()
    script = FAKE_DB_TOOL.format(python=sys.executable, log=str(db_log))
    return {
        tool: _write_script(tools_dir / tool, script)
        for tool in ("createdb", "dropdb", "pg_dump")
    }


@pytest.fixture
def commander_config(tmp_path: Path, fake_db_tools: dict[str, Path]) -> CommanderConfig:
    """Config pointing at the fake tools with short test timeouts."""
    return CommanderConfig(
        node=NodeConfig(
            work_root=tmp_path / "nodes",
            ready_poll_interval=0.01,
            ready_timeout=5.0,
            capture_drain_timeout=5.0,
        ),
        database=DatabaseConfig(
            createdb=str(fake_db_tools["createdb"]),
            dropdb=str(fake_db_tools["dropdb"]),
            pg_dump=str(fake_db_tools["pg_dump"]),
        ),
        diagnostics=DiagnosticsConfig(timeout=0.5),
    )


@pytest.fixture
def node_spec() -> NodeSpec:
    """Single node whose quorum is only itself, not validating."""
    return NodeSpec(
        name="node1",
        identity=Identity(seed="SDTESTSEEDNODE1"),
        peer_port=11625,
        http_port=11626,
        quorum=["node1"],
    )


@pytest.fixture
def wait_for_text() -> Callable[[Path, str], Awaitable[bool]]:
    """Poll a capture file until it contains `text`."""

    async def _wait(path: Path, text: str, timeout: float = 5.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if path.exists() and text in path.read_text():
                return True
            await asyncio.sleep(0.01)
        return False

    return _wait
