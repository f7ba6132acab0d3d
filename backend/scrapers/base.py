"""
Base classes for the browser-driven portfolio scrapers.

This module defines the abstract base class and data structures
used by all site-specific scrapers.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio
import logging

from playwright.async_api import Page

from .crawlers.browser import BrowserSession
from .extraction import DataExtractor, ExtractionRule
from .utils.merge import dedupe_companies
from .utils.normalizers import normalize_url
from .utils.retry import with_retry

logger = logging.getLogger(__name__)

# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    # Colors
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def blue(text):
        return f"{Colors.BLUE}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


@dataclass
class SiteConfig:
    """Configuration for a portfolio source."""
    name: str                           # Full display name
    short_name: str                     # Identifier used in logs and results (e.g., 'KKR')
    base_url: str                       # Origin for relative URLs
    portfolio_path: str                 # Path of the portfolio listing page
    api_fragment: Optional[str] = None  # URL fragment of the listing's JSON endpoint
    enrichment_pattern: Optional[str] = None  # Regex for related links worth visiting
    rate_limit_seconds: float = 1.0     # Pause between filter passes
    selectors: Dict[str, str] = field(default_factory=dict)  # CSS selectors
    enabled: bool = True                # Whether to include in scrapes

    @property
    def portfolio_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.portfolio_path}"


@dataclass
class ScrapedCompany:
    """One company as seen during a crawl, before normalization for storage."""
    name: str
    logo: Optional[str] = None
    year_of_investment: Optional[str] = None
    headquarters: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    asset_class: Optional[str] = None
    region: Optional[str] = None
    url: Optional[str] = None
    related_link_one: Optional[str] = None
    related_link_two: Optional[str] = None
    related_links: List[str] = field(default_factory=list)

    # Filled in by related-link enrichment
    employee_count: Optional[str] = None
    executive_members: List[str] = field(default_factory=list)
    ownership_details: Optional[str] = None

    source: Optional[str] = None
    scraped_at: Optional[str] = None


@dataclass
class ScrapeResult:
    """Result of a scraping operation."""
    source: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    total: int = 0
    new: int = 0
    updated: int = 0
    errors: int = 0
    error_details: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.errors == 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict:
        return {
            'source': self.source,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'total': self.total,
            'new': self.new,
            'updated': self.updated,
            'errors': self.errors,
            'error_details': self.error_details[:10],  # Limit error details
            'success': self.success,
        }


class InterceptionBuffer:
    """
    Companies captured passively from the site's own JSON responses.

    Keyed by trimmed name. The first record seen for a name is kept and
    later ones are discarded, not merged. Writes happen from event
    callbacks on the crawl's event loop, so no locking is needed.
    """

    def __init__(self):
        self._companies: Dict[str, ScrapedCompany] = {}

    def add(self, company: ScrapedCompany) -> bool:
        """Store a company unless its name is already present. Returns True if stored."""
        key = (company.name or '').strip()
        if not key or key in self._companies:
            return False
        self._companies[key] = company
        return True

    def values(self) -> List[ScrapedCompany]:
        return list(self._companies.values())

    def clear(self):
        self._companies.clear()

    def __contains__(self, name: str) -> bool:
        return name.strip() in self._companies

    def __len__(self) -> int:
        return len(self._companies)


@dataclass
class PageContext:
    """Everything a strategy needs to act on one page."""
    page: Page
    session: BrowserSession
    extractor: DataExtractor


class BaseScraper(ABC):
    """
    Abstract base class for all portfolio scrapers.

    Subclasses must implement:
    - get_extraction_rules(): Rules for the per-company detail view
    - get_table_selectors(): Table, row, modal and close-button selectors
    - is_next_page_available(): Pagination check
    - scrape_portfolio_list(): Crawl the listing and return raw records

    Optional overrides:
    - enrich_companies(): Post-crawl enrichment of the deduplicated records
    """

    def __init__(
        self,
        config: SiteConfig,
        session: BrowserSession,
        extractor: Optional[DataExtractor] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
    ):
        """
        Initialize the scraper.

        Args:
            config: Site configuration
            session: Shared browser session
            extractor: Extraction engine (one bound to config.base_url by default)
            max_retries: Navigation attempts
            retry_delay: Base delay between navigation attempts in seconds
            timeout: Page timeout in seconds
        """
        self.config = config
        self.session = session
        self.extractor = extractor or DataExtractor(config.base_url)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.buffer = InterceptionBuffer()
        self.logger = logging.getLogger(f"scraper.{config.short_name}")

    @abstractmethod
    def get_extraction_rules(self) -> List[ExtractionRule]:
        """Rules applied to the detail view (modal) of one company."""
        pass

    @abstractmethod
    def get_table_selectors(self) -> Dict[str, str]:
        """
        Returns:
            Dict with 'table' and 'row', optionally 'popup' and 'close_button'
        """
        pass

    @abstractmethod
    async def is_next_page_available(self, context: PageContext) -> bool:
        pass

    @abstractmethod
    async def scrape_portfolio_list(self, context: PageContext) -> List[ScrapedCompany]:
        """
        Crawl every listing page (and filter) and return the raw records.

        Returns:
            List of ScrapedCompany, possibly with duplicates
        """
        pass

    async def enrich_companies(self, context: PageContext, companies: List[ScrapedCompany]) -> List[ScrapedCompany]:
        return companies

    async def initialize_page(self, timeout: Optional[float] = None) -> PageContext:
        """Open a page and attach diagnostic listeners."""
        page = await self.session.create_page(timeout=timeout or self.timeout)
        self._attach_diagnostics(page)
        self.logger.debug(f"Initialized page for {self.config.name}")
        return PageContext(page=page, session=self.session, extractor=self.extractor)

    def _attach_diagnostics(self, page: Page):
        def on_response(response):
            if response.status >= 400:
                self.logger.debug(f"Response status {response.status} for {response.url}")

        def on_page_error(error):
            self.logger.warning(f"Page error: {error}")

        def on_console(message):
            if message.type == 'error':
                self.logger.debug(f"Console error: {message.text}")

        page.on('response', on_response)
        page.on('pageerror', on_page_error)
        page.on('console', on_console)

    async def navigate(self, page: Page, url: str, wait_until: str = 'domcontentloaded', timeout: Optional[float] = None):
        """Navigate, logging and re-raising failures."""
        self.logger.debug(f"Navigating to: {url}")
        try:
            await page.goto(url, wait_until=wait_until, timeout=int((timeout or self.timeout) * 1000))
        except Exception as e:
            self.logger.error(f"Failed to navigate to {url}: {e}")
            raise
        self.logger.debug(f"Successfully navigated to: {url}")

    async def navigate_to_portfolio(self, context: PageContext, url: Optional[str] = None):
        """Open the listing page and wait for the network to settle, with retry."""
        url = url or self.config.portfolio_url

        def on_retry(attempt, error):
            self.logger.warning(f"Navigation attempt {attempt}/{self.max_retries} failed for {url}: {error}")

        await with_retry(
            lambda: self.navigate(context.page, url, wait_until='networkidle'),
            max_attempts=self.max_retries,
            delay=self.retry_delay,
            on_retry=on_retry,
        )

    async def extract_portfolio_table(self, context: PageContext) -> List[Dict[str, Optional[str]]]:
        selectors = self.get_table_selectors()
        return await context.extractor.extract_table(
            context.page,
            selectors['table'],
            row_selector=selectors['row'],
        )

    async def load_all_content(self, context: PageContext):
        await self.infinite_scroll(
            context.page,
            max_scrolls=20,
            scroll_delay=2.0,
            content_selector=self.get_table_selectors()['row'],
        )

    async def infinite_scroll(
        self,
        page: Page,
        max_scrolls: int = 10,
        scroll_delay: float = 1.0,
        content_selector: Optional[str] = None,
    ):
        """
        Scroll to the bottom until the document stops growing.

        Args:
            page: Page to scroll
            max_scrolls: Upper bound on scroll steps
            scroll_delay: Seconds to wait after each step
            content_selector: Selector to wait for (up to 5s) after each step
        """
        previous_height = 0
        for _ in range(max_scrolls):
            current_height = await page.evaluate('document.body.scrollHeight')
            if current_height == previous_height:
                break

            await page.evaluate('window.scrollTo(0, document.body.scrollHeight)')
            await asyncio.sleep(scroll_delay)

            if content_selector:
                try:
                    await page.wait_for_selector(content_selector, timeout=5000)
                except Exception:
                    self.logger.debug(f"Content selector {content_selector} not found after scroll")

            previous_height = current_height

    def normalize_url(self, url: Optional[str]) -> Optional[str]:
        return normalize_url(url, self.config.base_url)

    def normalize_company_data(self, data: Dict[str, Any]) -> Optional[ScrapedCompany]:
        """
        Build a ScrapedCompany from a partial dict of field values.

        Returns:
            None when the record has no name
        """
        name = (data.get('name') or '').strip()
        if not name:
            self.logger.debug("Skipping company data - missing required name field")
            return None

        def clean(key):
            value = data.get(key)
            if isinstance(value, str):
                return value.strip() or None
            return value

        related_links = [self.normalize_url(link) for link in data.get('related_links') or []]

        return ScrapedCompany(
            name=name,
            logo=self.normalize_url(data.get('logo')),
            year_of_investment=clean('year_of_investment'),
            headquarters=clean('headquarters'),
            description=clean('description'),
            industry=clean('industry'),
            asset_class=clean('asset_class'),
            region=clean('region'),
            url=self.normalize_url(data.get('url')),
            related_link_one=self.normalize_url(data.get('related_link_one')),
            related_link_two=self.normalize_url(data.get('related_link_two')),
            related_links=[link for link in related_links if link],
            source=self.config.name,
            scraped_at=datetime.now(timezone.utc).isoformat(),
        )

    async def scrape(self) -> List[ScrapedCompany]:
        """
        Main entry point - runs one full crawl.

        1. Open a page
        2. Crawl the listing (strategy specific)
        3. Merge listing records with passively captured ones, dedupe by name
        4. Enrich
        5. Close the page
        """
        self.logger.info(f"Starting scrape for {self.config.name}")
        self.buffer.clear()
        context = await self.initialize_page()

        try:
            records = await self.scrape_portfolio_list(context)
            captured = self.buffer.values()
            companies = dedupe_companies([*records, *captured])
            self.logger.info(
                f"Collected {len(records)} listing records and {len(captured)} captured records, "
                f"{Colors.bold(len(companies))} unique companies"
            )
            return await self.enrich_companies(context, companies)
        finally:
            await self.session.close_page(context.page)
