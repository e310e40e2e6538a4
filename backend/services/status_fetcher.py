"""
SAPS firearm application status lookup.

The enquiry page has no CORS headers, so it is fetched through a list of
public proxies tried one after another. The first data row of the results
table is mapped onto a FirearmStatus and combined with the working-day count
since the application date.
"""
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx
from bs4 import BeautifulSoup

from models import FirearmApplication, FirearmStatus, StatusLookupResult, StatusOutcome, SLA_WORKING_DAYS
from utils import config
from utils.errors import (
    FetchNetworkError, FetchTimeoutError, NoMatchFoundError,
    PlannedDowntimeError, SchemaMismatchError, TrackerError
)
from utils.helpers import Clock, utc_now
from utils.holidays import is_planned_downtime, sast_today, working_days_between

logger = logging.getLogger(__name__)

# Results table column -> FirearmStatus field. Columns 2, 5 and 6 are not used.
STATUS_COLUMNS: Dict[str, int] = {
    "application_type": 0,
    "application_number": 1,
    "calibre": 3,
    "make": 4,
    "status": 7,
    "description": 8,
    "next_step": 9,
}
MIN_COLUMNS = 10

EMPTY_CELL_DEFAULTS = {
    "description": "No description available",
    "next_step": "No next step information",
}

USER_MESSAGES = {
    StatusOutcome.PLANNED_DOWNTIME: "SAPS performs planned maintenance between 00:00 and 00:30 SAST. Please try again after 00:30.",
    StatusOutcome.NO_MATCH: "No results found. Please verify your reference numbers are correct.",
    StatusOutcome.SCHEMA_MISMATCH: "The SAPS results page format may have changed. Status lookups are unavailable until the app is updated.",
    StatusOutcome.TIMEOUT: "Request timeout: SAPS website is taking too long to respond. Please try again.",
    StatusOutcome.NETWORK_ERROR: "Connection error: Unable to access SAPS website. Please try again later.",
}


class ProxyResponseError(Exception):
    """A proxy answered, but not with usable page content"""


class ProxyTransport:
    """A CORS proxy and the envelope it wraps the target page in"""

    def __init__(self, name: str, prefix: str, envelope: str = "raw", encode_target: bool = True):
        self.name = name
        self.prefix = prefix
        self.envelope = envelope
        self.encode_target = encode_target

    def build_url(self, target_url: str) -> str:
        target = quote(target_url, safe="") if self.encode_target else target_url
        return f"{self.prefix}{target}"

    @property
    def accept(self) -> str:
        return "application/json" if self.envelope == "json" else "text/html"

    def extract(self, response: httpx.Response) -> str:
        """Normalize the proxy response to the raw page HTML"""
        if self.envelope == "json":
            try:
                data = response.json()
            except ValueError as e:
                raise ProxyResponseError(f"{self.name} returned malformed JSON") from e
            if not isinstance(data, dict):
                raise ProxyResponseError(f"{self.name} returned an unexpected envelope")
            status_block = data.get("status") or {}
            if not isinstance(status_block, dict):
                raise ProxyResponseError(f"{self.name} returned an unexpected status block")
            status = status_block.get("http_code")
            if status is not None:
                try:
                    code = int(status)
                except (TypeError, ValueError) as e:
                    raise ProxyResponseError(f"{self.name} returned a non-numeric status {status!r}") from e
                if not 200 <= code < 300:
                    raise ProxyResponseError(f"{self.name} upstream returned HTTP {status}")
            html = data.get("contents") or ""
            if not isinstance(html, str):
                raise ProxyResponseError(f"{self.name} returned non-text contents")
        else:
            html = response.text
        if not html or not html.strip():
            raise ProxyResponseError(f"{self.name} returned an empty response")
        return html

    def __repr__(self):
        return f"ProxyTransport({self.name!r})"


DEFAULT_PROXIES: List[ProxyTransport] = [
    ProxyTransport("allorigins", "https://api.allorigins.win/get?url=", envelope="json"),
    ProxyTransport("corsproxy.io", "https://corsproxy.io/?"),
    ProxyTransport("cors-anywhere", "https://cors-anywhere.herokuapp.com/", encode_target=False),
    ProxyTransport("codetabs", "https://api.codetabs.com/v1/proxy?quest="),
]


def build_status_url(application: FirearmApplication, endpoint: str = None) -> str:
    """Enquiry URL with exactly the two parameters of the application's search method"""
    return f"{endpoint or config.STATUS_ENDPOINT}?{urlencode(application.query_params())}"


def parse_status_html(html: str) -> Dict[str, str]:
    """
    Extract the first result row from the enquiry page.

    Raises NoMatchFoundError when SAPS shows the search form (or an empty
    table) instead of a result, and SchemaMismatchError when the page no
    longer has the expected structure.
    """
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table", class_="table")

    if table is None:
        if soup.find("form") is not None:
            raise NoMatchFoundError("No results found. Please verify your reference numbers are correct.")
        raise SchemaMismatchError("No results table found on SAPS website. The page format may have changed.")

    rows = table.find_all("tr")
    header_cells = rows[0].find_all("th") if rows else []
    if header_cells and len(header_cells) < MIN_COLUMNS:
        raise SchemaMismatchError(
            f"Results table has {len(header_cells)} header columns, expected at least {MIN_COLUMNS}"
        )

    data_rows = [row for row in rows if row.find_all("td")]
    if not data_rows:
        raise NoMatchFoundError("No data rows found in results table. No matching applications found.")

    cells = [td.get_text(strip=True) for td in data_rows[0].find_all("td")]
    logger.debug(f"Extracted cell values: {cells}")
    if len(cells) < MIN_COLUMNS:
        raise SchemaMismatchError(f"Insufficient data columns found ({len(cells)}/{MIN_COLUMNS})")

    return {
        field: cells[index] or EMPTY_CELL_DEFAULTS.get(field, "Unknown")
        for field, index in STATUS_COLUMNS.items()
    }


def build_status(fields: Dict[str, str], date_applied: date, today: date) -> FirearmStatus:
    pending = working_days_between(date_applied, today)
    return FirearmStatus(
        **fields,
        working_days_pending=pending,
        is_overdue=pending > SLA_WORKING_DAYS
    )


class StatusFetcher:
    """Runs a status lookup through the proxy chain"""

    def __init__(
        self,
        proxies: Optional[List[ProxyTransport]] = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utc_now,
        endpoint: str = None
    ):
        self.proxies = proxies if proxies is not None else list(DEFAULT_PROXIES)
        self.timeout = timeout if timeout is not None else config.PROXY_TIMEOUT_SECONDS
        self.transport = transport
        self.clock = clock
        self.endpoint = endpoint or config.STATUS_ENDPOINT

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, follow_redirects=True)

    async def fetch_html(self, target_url: str) -> Tuple[str, str]:
        """Try each proxy in order. Returns (html, proxy name)."""
        last_error: Optional[Exception] = None
        attempted = []

        async with self._client() as client:
            for proxy in self.proxies:
                attempted.append(proxy.name)
                logger.info(f"Trying proxy: {proxy.name}")
                try:
                    response = await client.get(
                        proxy.build_url(target_url),
                        headers={"Accept": proxy.accept, "User-Agent": config.USER_AGENT},
                        timeout=self.timeout
                    )
                    if not response.is_success:
                        raise ProxyResponseError(f"{proxy.name} returned HTTP {response.status_code}")
                    html = proxy.extract(response)
                    logger.info(f"Successfully fetched via proxy: {proxy.name}")
                    return html, proxy.name
                except httpx.TimeoutException as e:
                    logger.warning(f"Proxy {proxy.name} timed out after {self.timeout}s")
                    last_error = e
                except (httpx.HTTPError, ProxyResponseError) as e:
                    logger.warning(f"Proxy {proxy.name} failed: {e}")
                    last_error = e

        message = f"All CORS proxies failed. Last error: {last_error}"
        if isinstance(last_error, httpx.TimeoutException):
            raise FetchTimeoutError(message, last_error=last_error, attempted=attempted)
        raise FetchNetworkError(message, last_error=last_error, attempted=attempted)

    async def fetch_status(self, application: FirearmApplication) -> Tuple[FirearmStatus, str]:
        """Full pipeline; raises the tracker error describing any failure"""
        now: datetime = self.clock()
        if is_planned_downtime(now):
            raise PlannedDowntimeError(USER_MESSAGES[StatusOutcome.PLANNED_DOWNTIME])

        url = build_status_url(application, self.endpoint)
        logger.info(f"Fetching status for application {application.id} ({application.search_method.value})")
        html, proxy_name = await self.fetch_html(url)
        fields = parse_status_html(html)
        status = build_status(fields, application.date_applied, sast_today(now))
        logger.info(
            f"Application {application.id}: {status.status}, "
            f"{status.working_days_pending} working days pending"
        )
        return status, proxy_name

    async def check_application_status(self, application: FirearmApplication) -> StatusLookupResult:
        """User-facing lookup: every failure becomes an outcome with a message"""
        try:
            status, proxy_name = await self.fetch_status(application)
            return StatusLookupResult(success=True, outcome=StatusOutcome.OK, status=status, proxy=proxy_name)
        except TrackerError as e:
            outcome = _outcome_for(e)
            logger.warning(f"Status lookup for {application.id} failed ({outcome.value}): {e}")
            return StatusLookupResult(
                success=False,
                outcome=outcome,
                error=USER_MESSAGES.get(outcome, e.message)
            )


def _outcome_for(error: TrackerError) -> StatusOutcome:
    if isinstance(error, PlannedDowntimeError):
        return StatusOutcome.PLANNED_DOWNTIME
    if isinstance(error, NoMatchFoundError):
        return StatusOutcome.NO_MATCH
    if isinstance(error, SchemaMismatchError):
        return StatusOutcome.SCHEMA_MISMATCH
    if isinstance(error, FetchTimeoutError):
        return StatusOutcome.TIMEOUT
    return StatusOutcome.NETWORK_ERROR
