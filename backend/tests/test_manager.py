"""
Tests for the scraper manager.
"""

import asyncio

import pytest

from scrapers.base import ScrapedCompany, ScrapeResult
from scrapers.sites.kkr import KKRScraper


class TestScraperManager:
    """Test ScraperManager."""

    def test_get_scraper(self, manager):
        scraper = manager.get_scraper('kkr')

        assert isinstance(scraper, KKRScraper)
        assert scraper.session is manager.browser
        assert scraper.max_retries == 1
        assert manager.get_scraper('unknown') is None

    def test_list_scrapers(self, manager):
        scrapers = manager.list_scrapers()

        assert [s['key'] for s in scrapers] == ['kkr']
        assert manager.get_implemented_scrapers() == ['kkr']

    def test_build_payloads_isolates_failures(self, manager, monkeypatch):
        """Test a company whose geocoding fails is counted and left out."""
        async def resolve(headquarters):
            if headquarters == 'Broken':
                raise RuntimeError("geocoder exploded")
            return {'city': None, 'state': None, 'country': headquarters}

        monkeypatch.setattr(manager.geo_resolver, 'resolve', resolve)
        companies = [
            ScrapedCompany(name='Acme', headquarters='Germany'),
            ScrapedCompany(name='Beta', headquarters='Broken'),
            ScrapedCompany(name='Gamma'),
        ]
        result = ScrapeResult(source='KKR', started_at=None)

        payloads = asyncio.run(manager.build_payloads(companies, 'https://www.kkr.com', result))

        assert [p['general']['name'] for p in payloads] == ['Acme', 'Gamma']
        assert payloads[0]['location']['country'] == 'Germany'
        assert payloads[1]['location'] == {'headquarters': None}
        assert result.errors == 1
        assert result.error_details[0]['company'] == 'Beta'

    def test_failed_crawl_is_recorded_and_raised(self, manager, monkeypatch):
        class Broken:
            async def scrape(self):
                raise RuntimeError("navigation failed")

        monkeypatch.setattr(manager, 'get_scraper', lambda site_key: Broken())

        with pytest.raises(RuntimeError):
            asyncio.run(manager.scrape_site('kkr'))

        summary = manager.get_results_summary()
        assert summary['total_sites'] == 1
        assert summary['failed'] == 1

    def test_results_summary_empty(self, manager):
        assert manager.get_results_summary()['total_sites'] == 0

    def test_start_warms_geocode_cache(self, manager):
        """Test start() loads stored locations and leaves proxies alone when disabled."""
        asyncio.run(manager.start())

        assert manager._proxy_refresh_task is None
        asyncio.run(manager.close())
