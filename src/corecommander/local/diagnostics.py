"""Diagnostic dumps from the node's HTTP interface.

Dumps are diagnostic, not load-bearing: every failure is logged and reported
as None, never raised.
"""

import logging
import time
from pathlib import Path

import httpx

from corecommander.config import DiagnosticsConfig
from corecommander.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class DiagnosticsClient:
    """Fetches node HTTP endpoints and writes them into the working directory."""

    def __init__(
        self,
        http_port: int,
        working_dir: Path,
        config: DiagnosticsConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = f"http://{config.host}:{http_port}"
        self._working_dir = working_dir
        self._config = config
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._config.timeout,
            transport=self._transport,
        )

    async def is_http_ready(self) -> bool:
        """Check whether the node answers on /info."""
        try:
            async with self._client() as client:
                response = await client.get("/info")
                return response.is_success
        except httpx.HTTPError:
            return False

    async def fetch(self, endpoint: str) -> Path | None:
        """Fetch one endpoint and write its body to `<endpoint>-<epoch>.json`."""
        path = self._working_dir / f"{endpoint}-{int(time.time())}.json"
        try:
            async with self._client() as client:
                response = await client.get(f"/{endpoint}")
                response.raise_for_status()
            path.write_bytes(response.content)
        except (httpx.HTTPError, OSError) as e:
            logger.warning(
                "Diagnostics dump failed",
                extra={
                    "event": LogEvent.DIAGNOSTICS_FAILED,
                    "endpoint": endpoint,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return None

        logger.info(
            "Dumped diagnostics",
            extra={"event": LogEvent.DIAGNOSTICS_DUMPED, "endpoint": endpoint, "path": str(path)},
        )
        return path

    async def dump_all(self) -> dict[str, Path | None]:
        """Dump every configured endpoint, in order."""
        return {endpoint: await self.fetch(endpoint) for endpoint in self._config.endpoints}
