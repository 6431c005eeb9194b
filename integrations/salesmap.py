"""
Salesmap Integration
=====================

Connects to the Salesmap CRM v2 API for:
- People change history
- Organization change history

Pages are chained by an opaque cursor until the API returns no next cursor.
Calls are throttled to the published quota (100 requests / 12s).

Setup:
1. Issue an API token in Salesmap -> Settings -> API
2. Pass it as a Bearer token to the dashboard, or set SALESMAP_API_TOKEN in
   .env for the batch fetcher
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp

from models.history_models import EntityKind
from scripts.lib.errors import UpstreamPageError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

SALESMAP_API_URL = os.getenv("SALESMAP_API_URL", "https://salesmap.kr")
SALESMAP_RATE_LIMIT = int(os.getenv("SALESMAP_RATE_LIMIT", "100"))
SALESMAP_RATE_WINDOW_MS = int(os.getenv("SALESMAP_RATE_WINDOW_MS", "12000"))
SALESMAP_REQUEST_TIMEOUT = float(os.getenv("SALESMAP_REQUEST_TIMEOUT", "30"))


class RateLimiter:
    """
    Fixed-window limiter: admits at most ``max_calls`` per ``window_ms``.

    A full window makes the caller sleep for the remainder of the window.
    Bursts of up to 2x ``max_calls`` across a window boundary are possible.

    Usage:
        limiter = RateLimiter()
        await limiter.allow()
    """

    def __init__(
        self,
        max_calls: int = SALESMAP_RATE_LIMIT,
        window_ms: int = SALESMAP_RATE_WINDOW_MS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_calls = max_calls
        self.window = window_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.window_start = clock()
        self.count = 0

    async def allow(self):
        """Wait until a call is admitted, then count it."""
        async with self._lock:
            now = self._clock()
            elapsed = now - self.window_start

            if elapsed >= self.window:
                self.count = 0
                self.window_start = now

            if self.count >= self.max_calls:
                wait = self.window - elapsed
                if wait > 0:
                    logger.debug("Rate limit reached, sleeping %.2fs", wait)
                    await self._sleep(wait)
                self.count = 0
                self.window_start = self._clock()

            self.count += 1


@dataclass
class CursorPage:
    """One page of history records plus the cursor of the next page."""
    records: List[dict] = field(default_factory=list)
    next_cursor: Optional[str] = None


class SalesmapIntegration:
    """Salesmap CRM history connector."""

    def __init__(
        self,
        base_url: str = SALESMAP_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = SALESMAP_REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    def history_url(self, kind: EntityKind) -> str:
        return f"{self.base_url}/api/v2/{kind.value}/history"

    def _headers(self, token: str) -> Dict[str, str]:
        """Build authorization headers."""
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _get_json(self, session: aiohttp.ClientSession, url: str,
                        token: str, params: dict) -> dict:
        async with session.get(url, headers=self._headers(token), params=params) as resp:
            if resp.status != 200:
                text = await resp.text(errors="replace")
                raise UpstreamPageError(
                    f"Salesmap returned {resp.status}: {text[:200]}",
                    url=url, status_code=resp.status,
                )
            try:
                return await resp.json(content_type=None)
            except ValueError as e:
                raise UpstreamPageError(f"Invalid JSON body: {e}", url=url)

    def _parse_page(self, kind: EntityKind, url: str, body) -> CursorPage:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise UpstreamPageError("Response has no 'data' object", url=url)

        records = data.get(kind.list_key)
        if not isinstance(records, list):
            raise UpstreamPageError(f"Response has no '{kind.list_key}' list", url=url)

        next_cursor = data.get("nextCursor")
        if not isinstance(next_cursor, str) or not next_cursor:
            next_cursor = None
        return CursorPage(records=records, next_cursor=next_cursor)

    async def fetch_page(self, kind: EntityKind, token: str,
                         cursor: Optional[str] = None) -> CursorPage:
        """
        Fetch one history page.

        Any failure is logged and turned into an empty page with no next
        cursor, so a multi-page collection keeps what it already has.
        """
        url = self.history_url(kind)
        params = {"cursor": cursor} if cursor else {}
        try:
            if self._session is not None:
                body = await self._get_json(self._session, url, token, params)
            else:
                timeout = aiohttp.ClientTimeout(total=self.timeout)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    body = await self._get_json(session, url, token, params)
            return self._parse_page(kind, url, body)
        except UpstreamPageError as e:
            logger.error("Salesmap %s history page failed: %s", kind.value, e)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("Salesmap API error (%s history): %s", kind.value, e)
        return CursorPage()

    async def collect_all(
        self,
        kind: EntityKind,
        token: str,
        start_cursor: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> List[dict]:
        """Follow cursors from ``start_cursor`` until exhausted and return every record."""
        limiter = limiter or RateLimiter()
        all_records: List[dict] = []
        cursor = start_cursor or None
        page = 0
        while True:
            page += 1
            await limiter.allow()
            result = await self.fetch_page(kind, token, cursor)
            all_records.extend(result.records)
            logger.debug(
                "Page %d: %d records (total: %d)", page, len(result.records), len(all_records),
            )
            if result.next_cursor is None:
                break
            cursor = result.next_cursor

        logger.info("Collected %d %s history records in %d pages",
                    len(all_records), kind.value, page)
        return all_records

    def get_status(self) -> Dict[str, object]:
        return {
            "name": "Salesmap",
            "base_url": self.base_url,
            "rate_limit": {"max_calls": SALESMAP_RATE_LIMIT, "window_ms": SALESMAP_RATE_WINDOW_MS},
            "features": [kind.value for kind in EntityKind],
        }
