"""Commander configuration using pydantic-settings.

Configuration hierarchy:
- NodeConfig: Node executable, working directory and process settings
- DatabaseConfig: External database commands and URL defaults
- DiagnosticsConfig: Node HTTP endpoints dumped during cleanup
- LoggingConfig: Logging behavior
- CommanderConfig: Main config aggregating all sub-configs

Environment variable prefix: COMMANDER_
Example: COMMANDER_NODE_BINARY_NAME=stellar-core
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeConfig(BaseSettings):
    """Node executable and process configuration."""

    model_config = SettingsConfigDict(env_prefix="COMMANDER_NODE_")

    # Executable
    binary_name: str = Field(
        default="stellar-core",
        description="Executable name searched on PATH and staged into the working dir",
    )

    # Files inside the working directory
    config_filename: str = Field(default="stellar-core.cfg", description="Generated config file")
    stdout_filename: str = Field(default="stdout.txt", description="Captured standard output")
    stderr_filename: str = Field(default="stderr.txt", description="Captured standard error")
    history_dirname: str = Field(
        default="history-archives",
        description="Sibling directory of the working dir holding per-peer archives",
    )
    work_root: Path = Field(
        default=Path(".corecommander"),
        description="Parent of per-instance working directories",
    )

    # Output capture
    stream_limit: int = Field(
        default=1024 * 1024,
        description="Maximum length of a single captured output line (bytes)",
    )

    # Readiness
    ready_poll_interval: float = Field(default=0.1, description="Liveness poll interval (seconds)")
    ready_timeout: float = Field(default=30.0, description="Default wait_for_running timeout (seconds)")
    require_http_ready: bool = Field(
        default=False,
        description="Also require the node HTTP /info endpoint before reporting running",
    )
    capture_drain_timeout: float = Field(
        default=10.0,
        description="How long cleanup waits for output capture to drain (seconds)",
    )


class DatabaseConfig(BaseSettings):
    """Database provisioning configuration.

    The commands are invoked as external programs and judged by exit status only.
    """

    model_config = SettingsConfigDict(env_prefix="COMMANDER_DATABASE_")

    url_template: str = Field(
        default="postgres://localhost/{name}",
        description="Default database URL, formatted with the instance name",
    )
    createdb: str = Field(default="createdb", description="Create database command")
    dropdb: str = Field(default="dropdb", description="Drop database command")
    pg_dump: str = Field(default="pg_dump", description="Dump database command")
    dump_args: list[str] = Field(
        default=["--clean", "--no-owner", "--no-privileges"],
        description="Extra arguments passed to the dump command",
    )


class DiagnosticsConfig(BaseSettings):
    """Node HTTP diagnostics configuration."""

    model_config = SettingsConfigDict(env_prefix="COMMANDER_DIAGNOSTICS_")

    host: str = Field(default="127.0.0.1", description="Node HTTP host")
    timeout: float = Field(default=5.0, description="HTTP request timeout (seconds)")
    endpoints: list[str] = Field(
        default=["scp", "info", "metrics"],
        description="Endpoints dumped to the working directory during cleanup",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats:
    - text: Human-readable for local runs
    - json: Structured logging for CI log collection
    """

    model_config = SettingsConfigDict(env_prefix="COMMANDER_LOGGING_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="corecommander", description="Service identifier in logs")


class CommanderConfig(BaseSettings):
    """Main configuration aggregating all sub-configs.

    Environment variable prefix: COMMANDER_
    Sub-configs use their own prefixes (COMMANDER_NODE_, COMMANDER_DATABASE_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMANDER_",
        env_nested_delimiter="__",
    )

    node: NodeConfig = Field(default_factory=NodeConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_config() -> CommanderConfig:
    """Get cached commander configuration singleton."""
    return CommanderConfig()
