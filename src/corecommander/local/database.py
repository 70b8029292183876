"""Database provisioning for a local node.

Create/drop/dump are external commands judged by exit status only. The
database client handle is owned by the caller; the controller only disconnects
it before teardown.
"""

import logging
import random
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from corecommander.config import DatabaseConfig
from corecommander.core.commands import CommandResult, run_command
from corecommander.core.errors import ProvisioningError
from corecommander.logging_schema import LogEvent

logger = logging.getLogger(__name__)


def database_name(url: str) -> str:
    """Database name component of a connection URL."""
    name = make_url(url).database
    if not name:
        raise ProvisioningError(f"Database URL has no database name: {url}")
    return name


def build_dsn(url: str) -> str:
    """Connection string in the form the node expects.

    postgres://user:pw@host:5432/db -> postgresql://dbname=db host=host port=5432 user=user password=pw
    """
    parsed = make_url(url)
    parts = [f"dbname={database_name(url)}"]
    if parsed.host:
        parts.append(f"host={parsed.host}")
    if parsed.port:
        parts.append(f"port={parsed.port}")
    if parsed.username:
        parts.append(f"user={parsed.username}")
    if parsed.password:
        parts.append(f"password={parsed.password}")
    return "postgresql://" + " ".join(parts)


def _connection_args(parsed: URL) -> list[str]:
    args = []
    if parsed.host:
        args += ["-h", parsed.host]
    if parsed.port:
        args += ["-p", str(parsed.port)]
    if parsed.username:
        args += ["-U", parsed.username]
    return args


def _connection_env(parsed: URL) -> dict[str, str] | None:
    if parsed.password:
        return {"PGPASSWORD": str(parsed.password)}
    return None


@runtime_checkable
class DatabaseHandle(Protocol):
    """Client connection held by the test driver."""

    async def disconnect(self) -> None: ...


class EngineDatabase:
    """SQLAlchemy async engine bound to a node's database."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def disconnect(self) -> None:
        await self._engine.dispose()


def open_database(url: str) -> EngineDatabase:
    """Create an engine for the node database (no connection is made yet)."""
    async_url = make_url(url).set(drivername="postgresql+asyncpg")
    return EngineDatabase(create_async_engine(async_url, pool_pre_ping=True))


class DatabaseProvisioner:
    """Create, drop and dump one node's database."""

    def __init__(self, url: str, config: DatabaseConfig) -> None:
        self._url = url
        self._parsed = make_url(url)
        self._config = config
        self._name = database_name(url)

    @property
    def name(self) -> str:
        return self._name

    @property
    def url(self) -> str:
        return self._url

    @property
    def dsn(self) -> str:
        return build_dsn(self._url)

    async def _run(self, program: str, *args: str, capture_output: bool = False) -> CommandResult:
        return await run_command(
            program,
            *_connection_args(self._parsed),
            *args,
            capture_output=capture_output,
            env=_connection_env(self._parsed),
        )

    async def create(self) -> None:
        """Create the database.

        Raises:
            ProvisioningError: createdb exited non-zero
        """
        result = await self._run(self._config.createdb, self._name)
        if not result.success:
            raise ProvisioningError(f"Could not create db: {self._name}")
        logger.info(
            "Created database",
            extra={"event": LogEvent.DATABASE_CREATED, "database": self._name},
        )

    async def drop(self) -> None:
        """Drop the database.

        Raises:
            ProvisioningError: dropdb exited non-zero
        """
        result = await self._run(self._config.dropdb, self._name)
        if not result.success:
            raise ProvisioningError(f"Could not drop db: {self._name}")
        logger.info(
            "Dropped database",
            extra={"event": LogEvent.DATABASE_DROPPED, "database": self._name},
        )

    async def dump(self, directory: Path) -> Path | None:
        """Dump the database into `directory`. Best effort.

        Returns:
            Path of the written dump, or None if the dump failed
        """
        path = directory / f"database-{int(time.time())}-{random.randrange(100000)}.sql"
        logger.info(
            "Dumping database",
            extra={"event": LogEvent.DATABASE_DUMPED, "database": self._name, "path": str(path)},
        )

        result = await self._run(
            self._config.pg_dump, self._name, *self._config.dump_args, capture_output=True
        )
        if not result.success:
            logger.warning(
                "Database dump failed",
                extra={
                    "event": LogEvent.DATABASE_DUMPED,
                    "database": self._name,
                    "exit_code": result.exit_code,
                },
            )
            return None

        try:
            path.write_text(result.stdout)
        except OSError as e:
            logger.warning(
                "Could not write database dump",
                extra={"event": LogEvent.DATABASE_DUMPED, "path": str(path), "error": str(e)},
            )
            return None
        return path
