"""Node executable staging."""

import logging
import shutil
from pathlib import Path

from corecommander.core.commands import run_command
from corecommander.core.errors import StagingError
from corecommander.logging_schema import LogEvent

logger = logging.getLogger(__name__)


async def locate_binary(explicit: Path | str | None, binary_name: str) -> Path:
    """Resolve the node executable.

    Uses the explicit path when given, otherwise searches PATH with `which`.

    Raises:
        StagingError: the executable could not be found
    """
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise StagingError(f"Node executable not found: {path}")
        return path

    result = await run_command("which", binary_name, capture_output=True)
    found = result.stdout.strip()
    if not result.success or not found:
        logger.error(
            "Could not find node executable",
            extra={"event": LogEvent.STAGING_FAILED, "binary": binary_name},
        )
        raise StagingError(
            f"Could not find a `{binary_name}` binary, please specify its path explicitly"
        )
    return Path(found)


def stage_binary(source: Path, working_dir: Path, binary_name: str) -> Path:
    """Copy the executable into the working directory, keeping its mode bits.

    Raises:
        StagingError: the working directory or copy could not be created
    """
    target = working_dir / binary_name
    try:
        working_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
    except OSError as e:
        logger.error(
            "Could not stage node executable",
            extra={
                "event": LogEvent.STAGING_FAILED,
                "source": str(source),
                "target": str(target),
                "error": str(e),
            },
        )
        raise StagingError(f"Could not copy {source} to {target}: {e}") from e

    logger.info(
        "Staged node executable",
        extra={"event": LogEvent.BINARY_STAGED, "source": str(source), "target": str(target)},
    )
    return target
