import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

logger = logging.getLogger("shortener.events")

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

class LogSink:
    """
    Best-effort event log.

    Every record goes to the local logger. When a remote endpoint is
    configured the record is also POSTed in a background task; log()
    itself never waits on the network and never raises.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 5.0,
        stack: str = "backend",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.stack = stack
        self._client = client
        self._owns_client = client is None
        self._pending: set[asyncio.Task] = set()

    def log(self, level: str, package: str, message: str) -> None:
        level = level.lower()
        logger.log(LEVELS.get(level, logging.INFO), "[%s] %s", package, message)

        if not self.url:
            return

        record = {
            "stack": self.stack,
            "level": level,
            "package": package.lower(),
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            task = asyncio.get_running_loop().create_task(self._send(record))
        except RuntimeError:
            # No running loop (e.g. called from sync code): local record only
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, record: dict) -> None:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self.timeout)
            response = await self._client.post(self.url, json=record, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except Exception as e:
            # Logging failures must never reach the caller
            logger.debug(f"Log sink delivery failed: {e}")

    async def close(self) -> None:
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=self.timeout)
        # deliveries still running past the timeout are dropped
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
