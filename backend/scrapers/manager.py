"""
Scraper Manager - runs a crawl end to end.

Owns the browser session and the services a crawl hands off to:
geocoding of headquarters, company persistence and the proxy pool.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Type
from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from api.config import Settings, settings as default_settings
from api.database import SessionLocal

from .base import BaseScraper, Colors, ScrapedCompany, ScrapeResult
from .config import SITES, get_site_config
from .crawlers.browser import BrowserSession
from .utils.normalizers import build_company_payload

# Import all implemented scrapers
from .sites.kkr import KKRScraper

logger = logging.getLogger(__name__)


# Registry of implemented scrapers
SCRAPER_REGISTRY: Dict[str, Type[BaseScraper]] = {
    'kkr': KKRScraper,
}


class ScraperManager:
    """
    Manages crawls and the resources they share.

    Usage:
        manager = ScraperManager(SessionLocal)
        await manager.start()

        result = await manager.scrape_site('kkr')
        companies = manager.company_service.get_companies()

        await manager.close()
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        app_settings: Optional[Settings] = None,
    ):
        """
        Args:
            session_factory: Callable returning a SQLAlchemy session
            app_settings: Settings to use (the global settings by default)
        """
        # Services import scrapers.utils, so they are imported here to avoid a cycle
        from services.companies import CompanyService
        from services.geocoding import GeoResolver
        from services.proxy_pool import ProxyPool

        self.settings = app_settings or default_settings
        self.results: Dict[str, ScrapeResult] = {}

        self.browser = BrowserSession(
            headless=self.settings.scraper_headless,
            timeout=self.settings.scraper_timeout,
        )
        self.proxy_pool = ProxyPool(
            session_factory,
            sources=self.settings.proxy_sources,
            min_pool_size=self.settings.proxy_min_pool_size,
            cache_ttl=self.settings.proxy_cache_ttl,
            ttl_hours=self.settings.proxy_ttl_hours,
            probe_url=self.settings.proxy_probe_url,
            probe_timeout=self.settings.proxy_probe_timeout,
            fallback_timeout=self.settings.proxy_fallback_timeout,
            enabled=self.settings.proxy_enabled,
        )
        self.geo_resolver = GeoResolver(
            session_factory,
            geocode_url=self.settings.geocode_url,
            min_interval=self.settings.geocode_min_interval,
            max_attempts=self.settings.geocode_max_attempts,
            timeout=self.settings.geocode_timeout,
            app_name=self.settings.geocode_app_name,
            contact=self.settings.geocode_contact,
            client_factory=self.proxy_pool.client if self.settings.proxy_enabled else None,
        )
        self.company_service = CompanyService(session_factory, batch_size=self.settings.persist_batch_size)
        self._proxy_refresh_task: Optional[asyncio.Task] = None

    async def start(self):
        """Warm the geocode cache and, when proxies are enabled, keep the pool topped up."""
        self.geo_resolver.warm_cache()
        if self.settings.proxy_enabled and self._proxy_refresh_task is None:
            self._proxy_refresh_task = asyncio.create_task(self.proxy_pool.refresh_periodically())

    async def close(self):
        if self._proxy_refresh_task is not None:
            self._proxy_refresh_task.cancel()
            try:
                await self._proxy_refresh_task
            except asyncio.CancelledError:
                pass
            self._proxy_refresh_task = None
        await self.browser.close_browser()

    def get_scraper(self, site_key: str) -> Optional[BaseScraper]:
        """
        Get a scraper instance for a site.

        Args:
            site_key: Site identifier (e.g., 'kkr')

        Returns:
            Scraper instance or None if not implemented
        """
        if site_key not in SCRAPER_REGISTRY:
            logger.warning(f"Scraper not implemented for site: {site_key}")
            return None

        scraper_class = SCRAPER_REGISTRY[site_key]
        return scraper_class(
            get_site_config(site_key),
            self.browser,
            max_retries=self.settings.scraper_max_retries,
            retry_delay=self.settings.scraper_retry_delay,
            timeout=self.settings.scraper_timeout,
        )

    async def scrape_site(self, site_key: str) -> ScrapeResult:
        """
        Crawl one site and persist what it finds.

        Args:
            site_key: Site identifier

        Returns:
            ScrapeResult with statistics

        Raises:
            ValueError: Unknown site
            Exception: Whatever aborted the crawl (navigation failures);
                the failure is recorded in self.results first
        """
        config = get_site_config(site_key)
        logger.info(f"Starting scrape for {config.name} ({site_key})")

        result = ScrapeResult(source=config.short_name, started_at=datetime.now(timezone.utc))

        scraper = self.get_scraper(site_key)
        if not scraper:
            result.completed_at = datetime.now(timezone.utc)
            result.errors = 1
            result.error_details.append({'error': f'Scraper not implemented for {site_key}'})
            self.results[site_key] = result
            return result

        try:
            companies = await scraper.scrape()
        except Exception as e:
            result.errors += 1
            result.error_details.append({'error': str(e)})
            result.completed_at = datetime.now(timezone.utc)
            self.results[site_key] = result
            logger.error(f"Scraper failed for {site_key}: {e}")
            raise
        finally:
            await self.browser.close_browser()

        result.total = len(companies)
        payloads = await self.build_payloads(companies, config.base_url, result)
        counts = await self.company_service.save_all(payloads)

        result.new += counts['new']
        result.updated += counts['updated']
        result.errors += counts['errors']
        result.completed_at = datetime.now(timezone.utc)
        self.results[site_key] = result

        duration = result.duration_seconds or 0
        logger.info(
            f"✅ Scrape complete in {duration:.1f}s: {Colors.green(f'{result.new} new')}, "
            f"{Colors.blue(f'{result.updated} updated')}, {Colors.red(f'{result.errors} errors')}"
        )
        return result

    async def build_payloads(
        self,
        companies: List[ScrapedCompany],
        base_url: str,
        result: Optional[ScrapeResult] = None,
    ) -> List[Dict]:
        """
        Geocode and transform scraped companies, one batch at a time.

        A company that fails to transform is logged, counted and left out.
        """
        batch_size = self.settings.persist_batch_size
        payloads = []

        for start in range(0, len(companies), batch_size):
            batch = companies[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(self._build_payload(company, base_url) for company in batch),
                return_exceptions=True,
            )
            for company, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"   {Colors.red('[ERR]')} Failed to transform {company.name}: {outcome}")
                    if result is not None:
                        result.errors += 1
                        result.error_details.append({'company': company.name, 'error': str(outcome)})
                else:
                    payloads.append(outcome)

        return payloads

    async def _build_payload(self, company: ScrapedCompany, base_url: str) -> Dict:
        location = await self.geo_resolver.resolve(company.headquarters) if company.headquarters else None
        return build_company_payload(company, base_url, location)

    def list_scrapers(self) -> List[Dict]:
        """
        List all configured sites and their implementation status.

        Returns:
            List of site info dictionaries
        """
        scrapers = []
        for key, config in SITES.items():
            scrapers.append({
                'key': key,
                'name': config.name,
                'short_name': config.short_name,
                'enabled': config.enabled,
                'implemented': key in SCRAPER_REGISTRY,
                'url': config.portfolio_url,
            })
        return scrapers

    def get_implemented_scrapers(self) -> List[str]:
        """Get list of implemented scraper keys."""
        return list(SCRAPER_REGISTRY.keys())

    def get_results_summary(self) -> Dict:
        """
        Get summary of all scrape results.

        Returns:
            Summary dictionary with totals
        """
        if not self.results:
            return {
                'total_sites': 0,
                'successful': 0,
                'failed': 0,
                'total_companies': 0,
                'new_companies': 0,
                'updated_companies': 0,
            }

        successful = sum(1 for r in self.results.values() if r.success)

        return {
            'total_sites': len(self.results),
            'successful': successful,
            'failed': len(self.results) - successful,
            'total_companies': sum(r.total for r in self.results.values()),
            'new_companies': sum(r.new for r in self.results.values()),
            'updated_companies': sum(r.updated for r in self.results.values()),
            'sites': {k: v.to_dict() for k, v in self.results.items()},
        }
