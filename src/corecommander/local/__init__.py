"""Local deployment target: node runs as a child process on this host."""

from corecommander.local.config_renderer import (
    ConfigDocument,
    ConfigSection,
    build_config,
    render_config,
)
from corecommander.local.database import (
    DatabaseHandle,
    DatabaseProvisioner,
    EngineDatabase,
    build_dsn,
    database_name,
    open_database,
)
from corecommander.local.diagnostics import DiagnosticsClient
from corecommander.local.process import LocalProcess
from corecommander.local.supervisor import ProcessSupervisor

__all__ = [
    "LocalProcess",
    "ProcessSupervisor",
    "DatabaseProvisioner",
    "DatabaseHandle",
    "EngineDatabase",
    "open_database",
    "database_name",
    "build_dsn",
    "DiagnosticsClient",
    "ConfigDocument",
    "ConfigSection",
    "build_config",
    "render_config",
]
