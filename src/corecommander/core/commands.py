"""External command invocation.

Every external program (createdb, dropdb, pg_dump, which, node init flags) is
run through run_command(), which returns an explicit CommandResult. Success is
judged solely by the exit status carried in that result.
"""

import asyncio
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel

from corecommander.logging_schema import LogEvent

logger = logging.getLogger(__name__)

# Shell convention for "command not found / not executable"
EXIT_NOT_EXECUTABLE = 127


class CommandResult(BaseModel):
    """Outcome of one external command invocation."""

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.args)


async def run_command(
    program: str | Path,
    *args: str,
    cwd: Path | None = None,
    capture_output: bool = False,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run an external command to completion.

    Args:
        program: Executable name or path
        *args: Command arguments
        cwd: Working directory for the command
        capture_output: Collect stdout into the result (otherwise discarded)
        env: Extra environment variables layered over the current environment

    Returns:
        CommandResult; a program that cannot be executed yields exit code 127.
    """
    argv = [str(program), *args]
    full_env = {**os.environ, **env} if env else None

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=full_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if capture_output else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.warning(
            "Command could not be executed",
            extra={
                "event": LogEvent.COMMAND_FAILED,
                "command": " ".join(argv),
                "error": str(e),
            },
        )
        return CommandResult(args=argv, exit_code=EXIT_NOT_EXECUTABLE, stderr=str(e))

    stdout, stderr = await proc.communicate()
    result = CommandResult(
        args=argv,
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )

    if not result.success:
        logger.warning(
            "Command exited with non-zero status",
            extra={
                "event": LogEvent.COMMAND_FAILED,
                "command": result.command_line,
                "exit_code": result.exit_code,
                "stderr": result.stderr[-2000:],
            },
        )
    return result
