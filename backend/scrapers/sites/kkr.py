"""
Scraper for KKR's investment portfolio (kkr.com/invest/portfolio).

The listing is a JavaScript table with an asset-class filter, numbered
pagination and a detail flyout per row. While the page is open, the
site's own JSON search responses are captured as a second source of
records; both sources are reconciled by company name afterwards.

Related "shared success" case-study pages are then visited to mine
employee counts, executives and the acquisition story.
"""

import asyncio
import math
import random
import re
from typing import Any, Dict, List, Optional

from ..base import BaseScraper, Colors, PageContext, ScrapedCompany
from ..extraction import ExtractionRule
from ..utils.extractors import extract_text_blocks, mine_case_study
from ..utils.merge import merge_companies
from ..utils.retry import with_retry

# Table header label -> ScrapedCompany field
TABLE_HEADER_MAP = {
    'Portfolio Company': 'name',
    'Asset Class': 'asset_class',
    'Industry': 'industry',
    'Region': 'region',
}

# JSON search result key -> ScrapedCompany field
API_FIELD_MAP = {
    'name': 'name',
    'logo': 'logo',
    'yoi': 'year_of_investment',
    'hq': 'headquarters',
    'description': 'description',
    'industry': 'industry',
    'assetClass': 'asset_class',
    'region': 'region',
    'url': 'url',
    'relatedLinkOne': 'related_link_one',
    'relatedLinkTwo': 'related_link_two',
    'relatedLinks': 'related_links',
}


class KKRScraper(BaseScraper):
    """
    Scraper for the KKR portfolio.

    Flow:
    1. Open the portfolio page with the JSON response listener attached
    2. Read the asset-class filter options (none -> one unfiltered pass)
    3. Per filter: select it, then walk every page reading the table and
       each row's flyout
    4. Reconcile table, flyout and captured records by name
    5. Enrich from related case-study pages
    """

    # Budget for a filter/page change to show up in the table
    TABLE_CHANGE_TIMEOUT = 5.0
    TABLE_CHANGE_INTERVAL = 0.1

    def get_extraction_rules(self) -> List[ExtractionRule]:
        # Resolved inside the flyout element
        s = self.config.selectors
        return [
            ExtractionRule('name', s['modal_name'], transform='trim', required=True),
            ExtractionRule('logo', s['modal_logo'], attribute='src', transform='absolute_url'),
            ExtractionRule('description', s['modal_description'], transform='trim'),
            ExtractionRule('url', s['modal_website'], attribute='href', transform='absolute_url'),
            ExtractionRule('headquarters', s['modal_hq'], transform='trim'),
            ExtractionRule('asset_class', s['modal_asset_class'], transform='trim'),
            ExtractionRule('industry', s['modal_industry'], transform='trim'),
            ExtractionRule('region', s['modal_region'], transform='trim'),
            ExtractionRule('year_of_investment', s['modal_year'], transform='trim'),
            ExtractionRule('related_links', s['modal_related_links'], attribute='href', transform='trim', multiple=True),
        ]

    def get_table_selectors(self) -> Dict[str, str]:
        s = self.config.selectors
        return {
            'table': s['table'],
            'row': s['row'],
            'popup': s['popup'],
            'close_button': s['close_button'],
        }

    # ------------------------------------------------------------------
    # Passive capture
    # ------------------------------------------------------------------

    def attach_network_capture(self, context: PageContext):
        """Listen for the listing's JSON search responses for the page's lifetime."""
        fragment = self.config.api_fragment
        if not fragment:
            return

        async def on_response(response):
            if fragment not in response.url:
                return
            try:
                data = await response.json()
                added = self.capture_api_payload(data)
                self.logger.debug(f"Captured API response: {response.url} ({added} new companies)")
            except Exception as e:
                self.logger.warning(f"Failed to process API response from {response.url}: {e}")

        context.page.on('response', on_response)

    def capture_api_payload(self, data: Dict[str, Any]) -> int:
        """
        Add the companies of one search response to the buffer.

        Returns:
            Number of companies newly stored
        """
        added = 0
        if not isinstance(data, dict):
            self.logger.warning(f"Ignored API response of type {type(data).__name__}")
            return added

        results = data.get('results')
        for item in results if isinstance(results, list) else []:
            if not isinstance(item, dict):
                continue
            key = str(item.get('name') or '').strip()
            if not key:
                continue
            if key in self.buffer:
                self.logger.debug(f"Skipped already captured company: {key}")
                continue

            company = self.normalize_company_data(self.map_api_record(item))
            if company and self.buffer.add(company):
                added += 1
                self.logger.debug(f"Added intercepted company: {key}")
        return added

    @staticmethod
    def map_api_record(item: Dict[str, Any]) -> Dict[str, Any]:
        record = {}
        for key, field in API_FIELD_MAP.items():
            value = item.get(key)
            if value is None:
                continue
            # Numbers such as yoi arrive unquoted
            if isinstance(value, (int, float)) and field != 'related_links':
                value = str(value)
            record[field] = value
        links = record.get('related_links')
        if isinstance(links, str):
            record['related_links'] = [links]
        elif isinstance(links, list):
            record['related_links'] = [link for link in links if isinstance(link, str)]
        return record

    # ------------------------------------------------------------------
    # Listing crawl
    # ------------------------------------------------------------------

    async def scrape_portfolio_list(self, context: PageContext) -> List[ScrapedCompany]:
        self.attach_network_capture(context)
        await self.navigate_to_portfolio(context)

        asset_classes = await self.get_asset_classes(context)
        results: List[ScrapedCompany] = []

        if not asset_classes:
            self.logger.info("No asset classes found, scraping entire portfolio without filters")
            results.extend(await self.scrape_all_pages(context))
            return results

        self.logger.info(f"Found {len(asset_classes)} asset classes: {', '.join(asset_classes)}")

        for asset_class in asset_classes:
            self.logger.info(f"\n{Colors.cyan('❯❯❯')} Processing asset class: {Colors.bold(asset_class)}")
            try:
                if await self.select_asset_class(context, asset_class):
                    companies = await self.scrape_all_pages(context)
                    results.extend(companies)
                    self.logger.info(f"Scraped {len(companies)} companies for asset class: {asset_class}")
                else:
                    self.logger.warning(f"{Colors.yellow('[SKIP]')} Failed to select asset class: {asset_class}")
            except Exception as e:
                self.logger.error(f"{Colors.red('[ERR]')} Error processing asset class {asset_class}: {e}")

            await asyncio.sleep(self.config.rate_limit_seconds * random.uniform(1.0, 1.5))

        self.logger.info(f"Total listing records scraped: {len(results)}")
        return results

    async def get_asset_classes(self, context: PageContext) -> List[str]:
        rules = [
            ExtractionRule(
                'options',
                self.config.selectors['asset_class_options'],
                attribute='value',
                transform='trim',
                multiple=True,
            ),
        ]
        try:
            result = await context.extractor.extract(context.page, rules)
        except Exception as e:
            self.logger.error(f"Error getting asset classes: {e}")
            return []
        return result.get('options', [])

    async def select_asset_class(self, context: PageContext, asset_class: str) -> bool:
        previous = await self.get_table_snapshot(context)

        selected = await context.extractor.select_custom_option(
            context.page,
            self.config.selectors['custom_select'],
            asset_class,
        )
        if not selected:
            return False

        if not await self.wait_for_table_change(context, previous):
            self.logger.debug(f"Table did not change after selecting {asset_class}")
        return True

    async def scrape_all_pages(self, context: PageContext) -> List[ScrapedCompany]:
        companies: List[ScrapedCompany] = []
        page_number = 1

        await self.load_all_content(context)

        while True:
            self.logger.info(f"Scraping page {page_number}")
            try:
                page_companies = await self.scrape_current_page(context)
                companies.extend(page_companies)
                self.logger.info(f"Page {page_number}: found {len(page_companies)} companies")

                if not await self.go_to_next_page(context):
                    self.logger.info(f"No more pages available. Finished at page {page_number}")
                    break
                page_number += 1

                await context.page.evaluate("window.scrollTo({top: 0, behavior: 'smooth'})")
            except Exception as e:
                self.logger.error(f"Error scraping page {page_number}: {e}")
                break

        return companies

    async def scrape_current_page(self, context: PageContext) -> List[ScrapedCompany]:
        """Read the visible table, then open each row's flyout for the details."""
        companies: List[ScrapedCompany] = []

        rows = await self.extract_portfolio_table(context)
        for data in self.map_portfolio_table(rows):
            self._append_normalized(companies, data)

        row_selector = self.config.selectors['row_snapshot']
        row_count = len(await context.page.query_selector_all(row_selector))

        for index in range(row_count):
            try:
                data = await self.scrape_row_details(context, row_selector, index)
                if data:
                    self._append_normalized(companies, data)
            except Exception as e:
                self.logger.error(f"   {Colors.red('[ERR]')} Row {index + 1}: {e}")

        return companies

    async def scrape_row_details(self, context: PageContext, row_selector: str, index: int) -> Optional[Dict[str, Any]]:
        """
        Open one row's flyout, extract it, close it.

        Rows are re-queried each time because the table re-renders after
        the flyout closes.
        """
        page = context.page
        selectors = self.get_table_selectors()

        rows = await page.query_selector_all(row_selector)
        if index >= len(rows):
            return None
        row = rows[index]

        await row.scroll_into_view_if_needed()
        if not await context.extractor.click_element(row):
            return None

        try:
            await page.wait_for_selector(selectors['popup'], state='visible', timeout=5000)
            modal = await page.query_selector(self.config.selectors['modal'])
            if not modal:
                raise RuntimeError("Company flyout did not open")
            return await context.extractor.extract(modal, self.get_extraction_rules())
        finally:
            await context.extractor.click(page, selectors['close_button'])

    def map_portfolio_table(self, rows: List[Dict[str, Optional[str]]]) -> List[Dict[str, str]]:
        """Translate header-keyed table rows into ScrapedCompany field names."""
        mapped = []
        for row in rows:
            record = {}
            for header, field in TABLE_HEADER_MAP.items():
                value = (row.get(header) or '').strip()
                if value:
                    record[field] = value
            mapped.append(record)
        return mapped

    def _append_normalized(self, companies: List[ScrapedCompany], data: Dict[str, Any]):
        company = self.normalize_company_data(data)
        if company:
            companies.append(company)
        else:
            self.logger.warning(f"Skipping company entry due to missing required fields: {data}")

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def get_table_snapshot(self, context: PageContext) -> str:
        texts = []
        for row in await context.page.query_selector_all(self.config.selectors['row_snapshot']):
            texts.append(((await row.text_content()) or '').strip())
        return '|'.join(texts)

    async def wait_for_table_change(
        self,
        context: PageContext,
        previous_snapshot: str,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> bool:
        """Poll the table until its text differs from previous_snapshot."""
        timeout = self.TABLE_CHANGE_TIMEOUT if timeout is None else timeout
        interval = self.TABLE_CHANGE_INTERVAL if interval is None else interval
        loop = asyncio.get_running_loop()
        started = loop.time()

        async def check():
            if await self.get_table_snapshot(context) != previous_snapshot:
                return True
            if loop.time() - started >= timeout:
                raise TimeoutError("Timeout waiting for table to change")
            raise RuntimeError("Table not changed yet")

        try:
            await with_retry(
                check,
                max_attempts=max(1, math.ceil(timeout / interval)),
                delay=interval,
                backoff=False,
            )
            return True
        except Exception:
            return False

    async def _current_page_number(self, context: PageContext) -> Optional[int]:
        el = await context.page.query_selector(self.config.selectors['active_page'])
        if not el:
            return None
        try:
            return int(await el.get_attribute('data-page')) or None
        except (TypeError, ValueError):
            return None

    def _page_selector(self, number: int) -> str:
        return self.config.selectors['page_by_number'].format(page=number)

    async def is_next_page_available(self, context: PageContext) -> bool:
        current = await self._current_page_number(context)
        if not current:
            return False
        return await context.page.query_selector(self._page_selector(current + 1)) is not None

    async def go_to_next_page(self, context: PageContext) -> bool:
        """
        Advance to the next page.

        Returns:
            False when there is no next page, the click failed, or the
            table never changed after the click
        """
        previous = await self.get_table_snapshot(context)

        if not await self.is_next_page_available(context):
            return False

        current = await self._current_page_number(context)
        if not await context.extractor.click(context.page, self._page_selector(current + 1)):
            return False

        if not await self.wait_for_table_change(context, previous):
            self.logger.warning(f"Table did not change after moving to page {current + 1}, stopping pagination")
            return False
        return True

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def collect_related_links(self, company: ScrapedCompany) -> List[str]:
        """Absolute related links worth visiting, deduplicated in order."""
        links = []
        for link in [company.related_link_one, company.related_link_two, *company.related_links]:
            link = self.normalize_url(link)
            if not link or link in links:
                continue
            if self.config.enrichment_pattern and not re.search(self.config.enrichment_pattern, link, re.IGNORECASE):
                continue
            links.append(link)
        return links

    async def enrich_companies(self, context: PageContext, companies: List[ScrapedCompany]) -> List[ScrapedCompany]:
        if not self.config.enrichment_pattern:
            return companies

        enriched = []
        for company in companies:
            for link in self.collect_related_links(company):
                try:
                    found = await self.parse_case_study(context, link, company)
                except Exception as e:
                    self.logger.error(f"Failed to parse related link {link} for {company.name}: {e}")
                    continue
                if found:
                    company = merge_companies(company, ScrapedCompany(name=company.name, **found))
                    self.logger.debug(f"Enriched {company.name} from {link}: {', '.join(found)}")
            enriched.append(company)
        return enriched

    async def parse_case_study(self, context: PageContext, link: str, company: ScrapedCompany) -> Dict[str, Any]:
        text_selector = self.config.selectors['case_study_text']
        await self.navigate(context.page, link)

        try:
            await context.page.wait_for_selector(text_selector, timeout=5000)
        except Exception:
            self.logger.warning(f"No text container present on {link}")

        html = await context.page.content()
        blocks = extract_text_blocks(html, text_selector, limit=10)
        return mine_case_study(blocks, company.year_of_investment)
