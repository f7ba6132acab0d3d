"""
Proxy pool backed by the proxies table.

Free proxy lists are fetched when the pool runs low, stored with a 24h
expiry, and probed before use. A proxy that fails a single probe is
evicted. Acquisition never blocks the caller for long: if no validated
proxy is ready within the fallback timeout, the caller goes direct.
"""

import asyncio
import logging
import random
import re
import time
from typing import Callable, List, Optional

import httpx
from sqlalchemy.orm import Session

from api.repositories import ProxyRepository
from scrapers.utils.user_agents import get_random_user_agent

logger = logging.getLogger(__name__)

PROXY_PATTERN = re.compile(r'^\d{1,3}(\.\d{1,3}){3}:\d+$')

# Failures after which a proxy is deleted from the store
MAX_FAILURES = 1


def parse_proxy_list(text: str) -> List[str]:
    """Keep the well-formed ip:port lines of a newline-delimited list."""
    proxies = []
    for line in text.splitlines():
        line = line.strip()
        if line and PROXY_PATTERN.match(line):
            proxies.append(line)
    return proxies


class ProxyPool:
    """
    In-memory view of the valid proxies in the store.

    Args:
        session_factory: Callable returning a SQLAlchemy session
        sources: URLs of plain-text ip:port lists
        min_pool_size: Fetch new proxies when fewer valid ones are stored
        cache_ttl: Seconds before the in-memory list is re-read
        ttl_hours: Expiry given to fetched proxies
        probe_url: Endpoint used to check a proxy works
        probe_timeout: Seconds allowed for a probe
        enabled: When False, client() always returns a direct client
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sources: List[str],
        min_pool_size: int = 10,
        cache_ttl: float = 300,
        ttl_hours: int = 24,
        probe_url: str = 'https://api.ipify.org',
        probe_timeout: float = 5.0,
        fallback_timeout: float = 1.0,
        enabled: bool = True,
    ):
        self._session_factory = session_factory
        self.sources = sources
        self.min_pool_size = min_pool_size
        self.cache_ttl = cache_ttl
        self.ttl_hours = ttl_hours
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self.fallback_timeout = fallback_timeout
        self.enabled = enabled

        self._cache: List[str] = []
        self._last_refresh = 0.0
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def cached(self) -> List[str]:
        return list(self._cache)

    @property
    def is_stale(self) -> bool:
        return not self._cache or time.monotonic() - self._last_refresh > self.cache_ttl

    async def refresh(self) -> List[str]:
        """
        Re-read valid proxies, topping the store up from the sources first
        when it is below min_pool_size.

        Concurrent callers share one in-flight refresh.
        """
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh())
            self._refresh_task.add_done_callback(self._refresh_done)
        return await asyncio.shield(self._refresh_task)

    def _refresh_done(self, task: asyncio.Task):
        self._refresh_task = None
        if not task.cancelled() and task.exception():
            logger.error(f"Proxy refresh failed: {task.exception()}")

    async def _refresh(self) -> List[str]:
        with self._session_factory() as db:
            repo = ProxyRepository(db)
            expired = repo.delete_expired()
            if expired:
                logger.info(f"Removed {expired} expired proxies")
            valid = repo.list_valid()

        if len(valid) < self.min_pool_size:
            logger.info(
                f"Proxy store has {len(valid)} proxies, below minimum of {self.min_pool_size}, "
                f"fetching new proxies..."
            )
            await self.fetch_and_store()
            with self._session_factory() as db:
                valid = ProxyRepository(db).list_valid()

        self._cache = valid
        self._last_refresh = time.monotonic()
        logger.info(f"Proxy cache refreshed. {len(valid)} proxies cached.")
        return list(valid)

    async def fetch_and_store(self) -> int:
        """
        Fetch every source and store what they return.

        A failing source is logged and skipped.

        Returns:
            Number of distinct proxies stored
        """
        found = []
        for source in self.sources:
            try:
                proxies = await self._fetch_source(source)
            except Exception as e:
                logger.error(f"Failed fetching proxies from {source}: {e}")
                continue
            logger.debug(f"Fetched {len(proxies)} proxies from {source}")
            found.extend(proxies)

        unique = list(dict.fromkeys(found))
        if not unique:
            return 0

        with self._session_factory() as db:
            ProxyRepository(db).upsert_many(unique, ttl_hours=self.ttl_hours)
        logger.info(f"Stored {len(unique)} proxies")
        return len(unique)

    async def _fetch_source(self, source: str) -> List[str]:
        async with httpx.AsyncClient(timeout=10.0, headers={'User-Agent': get_random_user_agent()}) as client:
            response = await client.get(source)
            response.raise_for_status()
            return parse_proxy_list(response.text)

    async def _probe(self, address: str) -> bool:
        try:
            async with httpx.AsyncClient(proxy=f"http://{address}", timeout=self.probe_timeout) as client:
                response = await client.head(self.probe_url)
                response.raise_for_status()
        except Exception as e:
            logger.warning(f"Proxy validation failed: {address} - {e}")
            return False
        logger.debug(f"Proxy validated successfully: {address}")
        return True

    def _record_failure(self, address: str):
        """Count a failed probe and evict the proxy from store and cache."""
        with self._session_factory() as db:
            repo = ProxyRepository(db)
            failures = repo.increment_failures(address)
            if failures == 0 or failures >= MAX_FAILURES:
                repo.delete_by_address(address)
        self._cache = [cached for cached in self._cache if cached != address]

    async def _select_validated(self) -> Optional[str]:
        if self.is_stale:
            await self.refresh()

        while self._cache:
            address = random.choice(self._cache)
            if await self._probe(address):
                return address
            self._record_failure(address)

        logger.warning("No proxies available, falling back to direct request.")
        return None

    async def acquire(self, fallback_timeout: Optional[float] = None) -> Optional[str]:
        """
        Return a probed proxy address, or None to go direct.

        Selection keeps running in the background past the timeout so that
        probe results (and evictions) are still recorded.
        """
        timeout = self.fallback_timeout if fallback_timeout is None else fallback_timeout
        task = asyncio.ensure_future(self._select_validated())

        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Proxy resolution timed out after {timeout}s, falling back to direct request.")
            task.add_done_callback(_log_background_failure)
            return None
        except Exception as e:
            logger.warning(f"Proxy resolution failed, falling back to direct request: {e}")
            return None

    async def client(self, timeout: float = 5.0) -> httpx.AsyncClient:
        """An httpx client routed through a validated proxy when one is available."""
        proxy = await self.acquire() if self.enabled else None
        return httpx.AsyncClient(
            timeout=timeout,
            proxy=f"http://{proxy}" if proxy else None,
            headers={'User-Agent': get_random_user_agent()},
        )

    async def refresh_periodically(self):
        """Refresh every cache_ttl seconds until cancelled."""
        while True:
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Periodic proxy refresh failed: {e}")
            await asyncio.sleep(self.cache_ttl)


def _log_background_failure(task: asyncio.Task):
    if not task.cancelled() and task.exception():
        logger.warning(f"Background proxy selection failed: {task.exception()}")
