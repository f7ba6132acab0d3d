"""
Browser-driven scraper system for investment portfolio sites.

This module provides:
- Playwright browser session management
- Declarative DOM extraction
- Per-site crawl strategies with passive JSON capture
- Deep merge / dedup of the records a crawl produces
"""

from .base import BaseScraper, SiteConfig, ScrapedCompany, ScrapeResult
from .config import SITES, get_site_config, get_enabled_sites
from .manager import ScraperManager

__all__ = [
    'BaseScraper',
    'SiteConfig',
    'ScrapedCompany',
    'ScrapeResult',
    'SITES',
    'get_site_config',
    'get_enabled_sites',
    'ScraperManager',
]
