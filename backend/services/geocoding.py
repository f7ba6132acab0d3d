"""
Headquarters geocoding with a memory cache in front of the hq_locations table.

Resolution order:
1. In-memory map
2. hq_locations table (fills the memory map)
3. Nominatim, only for "A, B" style strings where the split is ambiguous
4. Comma-split heuristic

Whatever resolves is cached in memory and persisted insert-only.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from api.repositories import GeoCacheRepository
from scrapers.utils.normalizers import normalize_country, normalize_us_state
from scrapers.utils.retry import with_retry
from scrapers.utils.user_agents import get_random_user_agent

logger = logging.getLogger(__name__)

Location = Dict[str, Optional[str]]


def _post_process(city: Optional[str], state: Optional[str], country: Optional[str]) -> Location:
    country = normalize_country(country)
    if state:
        state = normalize_us_state(state, country)
    return {'city': city, 'state': state, 'country': country}


def parse_headquarters(headquarters: str) -> Location:
    """
    Split a headquarters string on commas.

    Examples:
        "United States" -> country only
        "Austin, United States" -> city, country
        "Austin, TX, USA" -> city, state ("Texas"), country ("United States")
    """
    parts = [part.strip() for part in headquarters.split(',') if part.strip()]

    city = state = country = None
    if len(parts) == 1:
        country = parts[0]
    elif len(parts) == 2:
        city, country = parts
    elif len(parts) >= 3:
        city, state, country = parts[:3]

    return _post_process(city, state, country)


class RateLimiter:
    """Enforces a minimum spacing between calls."""

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last_call = 0.0

    async def wait(self):
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait_time = self._last_call + self.min_interval - loop.time()
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self._last_call = loop.time()


class GeoResolver:
    """
    Resolves headquarters strings to {city, state, country}.

    Args:
        session_factory: Callable returning a SQLAlchemy session
        geocode_url: Nominatim search endpoint
        min_interval: Minimum seconds between remote calls
        max_attempts: Retry attempts per remote lookup
        timeout: Seconds per remote call
        app_name: Identifies the application in the User-Agent
        contact: Contact address sent in the User-Agent
        client_factory: Returns the httpx client to use (e.g. ProxyPool.client)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        geocode_url: str = 'https://nominatim.openstreetmap.org/search',
        min_interval: float = 1.0,
        max_attempts: int = 5,
        timeout: float = 2.0,
        app_name: str = 'Geo Location',
        contact: Optional[str] = None,
        client_factory=None,
    ):
        self._session_factory = session_factory
        self.geocode_url = geocode_url
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.app_name = app_name
        self.contact = contact
        self._client_factory = client_factory
        self._rate_limiter = RateLimiter(min_interval)
        self._cache: Dict[str, Location] = {}

    def warm_cache(self) -> int:
        """Load every stored resolution into memory. Returns the number loaded."""
        with self._session_factory() as db:
            for record in GeoCacheRepository(db).find_all():
                self._cache[record.headquarters] = record.to_dict()
        logger.info(f"Loaded {len(self._cache)} HQ records into memory cache")
        return len(self._cache)

    async def resolve(self, headquarters: str) -> Location:
        key = headquarters.strip()

        if key in self._cache:
            return self._cache[key]

        with self._session_factory() as db:
            stored = GeoCacheRepository(db).find_by_headquarters(key)
            if stored:
                self._cache[key] = stored.to_dict()
                return self._cache[key]

        location = None
        parts = [part for part in key.split(',') if part.strip()]
        if len(parts) == 2:
            location = await self._geocode(key)

        if location is None:
            location = parse_headquarters(key)

        self._remember(key, location)
        return location

    def _remember(self, key: str, location: Location):
        self._cache[key] = location
        try:
            with self._session_factory() as db:
                GeoCacheRepository(db).insert_if_absent(key, location)
        except Exception as e:
            logger.warning(f"Failed to persist location for '{key}': {e}")

    async def _geocode(self, query: str) -> Optional[Location]:
        def on_retry(attempt, error):
            logger.warning(f"Geocoding attempt {attempt} for '{query}' failed: {error}")

        try:
            location = await with_retry(
                lambda: self._fetch_remote(query),
                max_attempts=self.max_attempts,
                delay=1.0,
                backoff=True,
                on_retry=on_retry,
            )
        except Exception as e:
            logger.warning(f"Failed geocoding '{query}': {e}")
            return None

        if location is None:
            return None
        return _post_process(location.get('city'), location.get('state'), location.get('country'))

    async def _client(self) -> httpx.AsyncClient:
        if self._client_factory:
            return await self._client_factory(timeout=self.timeout)
        return httpx.AsyncClient(timeout=self.timeout)

    async def _fetch_remote(self, query: str) -> Optional[Location]:
        """One Nominatim lookup. None when there is no match."""
        await self._rate_limiter.wait()

        params = {'q': query, 'format': 'json', 'addressdetails': 1, 'limit': 1}
        headers = {
            'User-Agent': get_random_user_agent(self.app_name, self.contact),
            'Accept-Language': 'en',
        }
        async with await self._client() as client:
            response = await client.get(self.geocode_url, params=params, headers=headers)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, list) or not data:
            return None

        address = data[0].get('address') or {}
        return {
            'city': address.get('city') or address.get('town') or address.get('village') or address.get('hamlet'),
            'state': address.get('state'),
            'country': address.get('country'),
        }
