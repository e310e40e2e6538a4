"""
Periodic SAPS reachability probe
"""
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from models import ServerStatus
from utils import config
from utils.helpers import Clock, utc_now
from utils.holidays import is_planned_downtime

logger = logging.getLogger(__name__)

ALLORIGINS_GET = "https://api.allorigins.win/get?url="
ALLORIGINS_RAW = "https://api.allorigins.win/raw?url="
CORSPROXY = "https://corsproxy.io/?"
CONNECTIVITY_TARGET = "https://httpbin.org/status/200"

# Anything shorter is an error stub, not the SAPS home page
MIN_PAGE_LENGTH = 50


async def probe_server_status(
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Clock = utc_now,
    timeout: float = None
) -> ServerStatus:
    """Check whether the SAPS site is reachable, trying several methods in turn"""
    now = clock()
    if is_planned_downtime(now):
        return ServerStatus(online=False, method="Planned Downtime", last_checked=now)

    timeout = timeout or config.PROBE_TIMEOUT_SECONDS
    async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
        # Method 1: AllOrigins JSON envelope
        try:
            response = await client.get(
                f"{ALLORIGINS_GET}{quote(config.SAPS_HOME_URL, safe='')}",
                headers={"Accept": "application/json"}
            )
            if response.is_success:
                data = response.json()
                contents = data.get("contents") or ""
                logger.debug(f"AllOrigins check: http_code={(data.get('status') or {}).get('http_code')}, length={len(contents)}")
                if (data.get("status") or {}).get("http_code") == 200 and len(contents) > MIN_PAGE_LENGTH:
                    return ServerStatus(online=True, method="AllOrigins", last_checked=now)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.info(f"AllOrigins method failed: {e}")

        # Method 2: a proxy returning raw HTML
        try:
            response = await client.get(f"{CORSPROXY}{config.SAPS_HOME_URL}", headers={"Accept": "text/html"})
            if response.is_success and len(response.text) > MIN_PAGE_LENGTH:
                return ServerStatus(online=True, method="CorsProxy", last_checked=now)
        except httpx.HTTPError as e:
            logger.info(f"CorsProxy method failed: {e}")

        # Method 3: can we reach the proxies at all?
        try:
            response = await client.get(f"{ALLORIGINS_RAW}{quote(CONNECTIVITY_TARGET, safe='')}")
            if response.is_success:
                # Proxies work but SAPS did not answer
                return ServerStatus(online=False, method="Connectivity (SAPS down)", last_checked=now)
        except httpx.HTTPError as e:
            logger.info(f"Basic connectivity test failed: {e}")

    return ServerStatus(online=False, method="All methods failed", last_checked=now)


class ServerStatusMonitor:
    """Polls SAPS reachability on a fixed interval until stopped"""

    def __init__(
        self,
        interval_seconds: int = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utc_now
    ):
        self.interval_seconds = interval_seconds or config.SERVER_STATUS_INTERVAL_SECONDS
        self.transport = transport
        self.clock = clock
        self.status = ServerStatus()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_now(self) -> ServerStatus:
        self.status = await probe_server_status(transport=self.transport, clock=self.clock)
        logger.info(f"Server status: online={self.status.online} ({self.status.method})")
        return self.status

    async def _poll_loop(self):
        while True:
            try:
                await self.check_now()
            except Exception as e:
                logger.error(f"Server status check error: {e}")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Server status monitor started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Cancel the polling task so no timer outlives its owner"""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Server status monitor stopped")
