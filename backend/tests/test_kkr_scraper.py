"""
Tests for the KKR portfolio scraper, driven through fake pages.
"""

import asyncio
from dataclasses import replace

import pytest

from fakes import FakeElement, FakePage, FakeSession
from scrapers.base import PageContext, ScrapedCompany
from scrapers.config import get_site_config
from scrapers.extraction import RequiredFieldMissing
from scrapers.sites.kkr import KKRScraper

CONFIG = replace(get_site_config('kkr'), rate_limit_seconds=0)
S = CONFIG.selectors

API_URL = (
    "https://www.kkr.com/content/kkr/sites/global/en/invest/portfolio/jcr:content/root/main-par/"
    "bioportfoliosearch.bioportfoliosearch.json?page=1"
)

CASE_STUDY_HTML = """
<div class="cmp-text">
  <p>In 2019, KKR acquired Acme to accelerate growth. Acme has over 2,500 employees.</p>
  <p>Jane Doe, CEO of Acme</p>
</div>
"""


class FakeResponse:
    def __init__(self, url, data=None, error=None):
        self.url = url
        self.status = 200
        self._data = data
        self._error = error

    async def json(self):
        if self._error:
            raise self._error
        return self._data


def make_scraper(page=None):
    session = FakeSession(page)
    scraper = KKRScraper(CONFIG, session)
    scraper.TABLE_CHANGE_TIMEOUT = 0.2
    scraper.TABLE_CHANGE_INTERVAL = 0.05
    return scraper


def make_context(scraper, page):
    return PageContext(page=page, session=scraper.session, extractor=scraper.extractor)


def company(name, **fields):
    return ScrapedCompany(name=name, source='KKR', **fields)


class TestPassiveCapture:
    """Test capture of the site's JSON search responses."""

    def test_first_seen_wins(self):
        """Test a later record for a captured name is discarded, not merged."""
        scraper = make_scraper()

        added = scraper.capture_api_payload({'results': [
            {'name': 'Acme', 'hq': 'Austin, TX, USA'},
            {'name': 'Acme ', 'hq': 'Paris, France', 'industry': 'Retail'},
            {'name': '', 'hq': 'Nowhere'},
        ]})

        assert added == 1
        assert len(scraper.buffer) == 1
        captured = scraper.buffer.values()[0]
        assert captured.headquarters == 'Austin, TX, USA'
        assert captured.industry is None

        assert scraper.capture_api_payload({'results': [{'name': 'Acme', 'hq': 'Berlin'}]}) == 0

    def test_map_api_record(self):
        """Test API keys map to record fields and a single related link becomes a list."""
        record = KKRScraper.map_api_record({
            'name': 'Acme',
            'yoi': '2019',
            'hq': 'Austin, TX, USA',
            'assetClass': 'Private Equity',
            'relatedLinkOne': '/approach/shared-success/acme',
            'relatedLinks': '/news/acme',
            'unrelated': 'ignored',
        })

        assert record == {
            'name': 'Acme',
            'year_of_investment': '2019',
            'headquarters': 'Austin, TX, USA',
            'asset_class': 'Private Equity',
            'related_link_one': '/approach/shared-success/acme',
            'related_links': ['/news/acme'],
        }

    def test_numeric_api_values_become_strings(self):
        scraper = make_scraper()

        assert scraper.capture_api_payload({'results': [{'name': 'Acme', 'yoi': 2019}]}) == 1
        assert KKRScraper.map_api_record({'name': 404, 'yoi': 2019}) == {'name': '404', 'year_of_investment': '2019'}
        assert scraper.buffer.values()[0].year_of_investment == '2019'

    def test_response_listener(self):
        """Test only matching responses are captured and malformed bodies are tolerated."""
        page = FakePage()
        scraper = make_scraper(page)
        context = make_context(scraper, page)
        scraper.attach_network_capture(context)
        listener = page.handlers['response'][-1]

        async def scenario():
            await listener(FakeResponse("https://www.kkr.com/other.json", {'results': [{'name': 'Other'}]}))
            await listener(FakeResponse(API_URL, error=ValueError("not json")))
            await listener(FakeResponse(API_URL, ['unexpected', 'list']))
            await listener(FakeResponse(API_URL, {'results': 'none'}))
            await listener(FakeResponse(API_URL, {'results': ['junk', {'name': 'Acme', 'url': 'acme.example.com'}]}))

        asyncio.run(scenario())

        assert 'Acme' in scraper.buffer
        assert 'Other' not in scraper.buffer
        assert scraper.buffer.values()[0].url == 'https://acme.example.com'


class TestListingPage:
    """Test table and flyout extraction on one listing page."""

    def test_map_portfolio_table(self):
        scraper = make_scraper()
        rows = [{'Portfolio Company': ' Acme ', 'Asset Class': 'Private Equity', 'Industry': None, 'Region': 'Americas'}]

        assert scraper.map_portfolio_table(rows) == [
            {'name': 'Acme', 'asset_class': 'Private Equity', 'region': 'Americas'},
        ]

    def flyout_page(self, modal_children):
        close_button = FakeElement()
        row = FakeElement(text='Acme Private Equity')
        page = FakePage(children={
            S['row_snapshot']: [row],
            S['popup']: [FakeElement()],
            S['modal']: [FakeElement(children=modal_children)],
            S['close_button']: [close_button],
        })
        return page, row, close_button

    def test_scrape_row_details(self):
        """Test a row's flyout is opened, read and closed."""
        page, row, close_button = self.flyout_page({
            S['modal_name']: [FakeElement(text=' Acme ')],
            S['modal_hq']: [FakeElement(text='Austin, TX, USA')],
            S['modal_website']: [FakeElement(attrs={'href': 'acme.example.com'})],
            S['modal_related_links']: [FakeElement(attrs={'href': '/approach/shared-success/acme'})],
        })
        scraper = make_scraper(page)

        data = asyncio.run(scraper.scrape_row_details(make_context(scraper, page), S['row_snapshot'], 0))

        assert data == {
            'name': 'Acme',
            'url': 'https://acme.example.com',
            'headquarters': 'Austin, TX, USA',
            'related_links': ['/approach/shared-success/acme'],
        }
        assert row.clicks == 1
        assert close_button.clicks == 1

    def test_flyout_without_name_still_closes(self):
        page, row, close_button = self.flyout_page({S['modal_hq']: [FakeElement(text='Austin')]})
        scraper = make_scraper(page)

        with pytest.raises(RequiredFieldMissing):
            asyncio.run(scraper.scrape_row_details(make_context(scraper, page), S['row_snapshot'], 0))

        assert close_button.clicks == 1

    def test_row_index_out_of_range(self):
        page, row, close_button = self.flyout_page({})
        scraper = make_scraper(page)

        assert asyncio.run(scraper.scrape_row_details(make_context(scraper, page), S['row_snapshot'], 3)) is None
        assert row.clicks == 0

    def test_scrape_current_page(self):
        """Test table rows and flyout details are both returned."""
        table_row = FakeElement(children={'td': [
            FakeElement(text='Acme'),
            FakeElement(text='Private Equity'),
            FakeElement(text='Technology'),
            FakeElement(text='Americas'),
        ]})
        page, row, close_button = self.flyout_page({
            S['modal_name']: [FakeElement(text='Acme')],
            S['modal_hq']: [FakeElement(text='Austin, TX, USA')],
        })
        page.children[f"{S['table']} thead th"] = [
            FakeElement(text=label) for label in ['Portfolio Company', 'Asset Class', 'Industry', 'Region']
        ]
        page.children[f"{S['table']} {S['row']}"] = [table_row]
        scraper = make_scraper(page)

        companies = asyncio.run(scraper.scrape_current_page(make_context(scraper, page)))

        assert [c.name for c in companies] == ['Acme', 'Acme']
        assert companies[0].industry == 'Technology'
        assert companies[0].asset_class == 'Private Equity'
        assert companies[1].headquarters == 'Austin, TX, USA'


class PageButton(FakeElement):
    """Pagination button that swaps the table rows when clicked."""

    def __init__(self, page, rows):
        super().__init__()
        self.page = page
        self.rows = rows

    async def click(self, delay=None):
        await super().click(delay)
        if self.rows is not None:
            self.page.children[S['row_snapshot']] = self.rows


class TestPagination:
    """Test page detection and transitions."""

    def paged(self, next_rows=None, has_next=True):
        page = FakePage(children={
            S['row_snapshot']: [FakeElement(text='Acme'), FakeElement(text='Beta')],
            S['active_page']: [FakeElement(attrs={'data-page': '1'})],
        })
        button = PageButton(page, next_rows)
        if has_next:
            page.children[S['page_by_number'].format(page=2)] = [button]
        return page, button

    def test_next_page_available(self):
        page, _ = self.paged()
        scraper = make_scraper(page)
        assert asyncio.run(scraper.is_next_page_available(make_context(scraper, page))) is True

    def test_last_page(self):
        page, _ = self.paged(has_next=False)
        scraper = make_scraper(page)
        assert asyncio.run(scraper.is_next_page_available(make_context(scraper, page))) is False

    def test_no_active_page(self):
        page = FakePage()
        scraper = make_scraper(page)
        assert asyncio.run(scraper.is_next_page_available(make_context(scraper, page))) is False

    def test_go_to_next_page(self):
        """Test a click that re-renders the table counts as a page change."""
        page, button = self.paged(next_rows=[FakeElement(text='Delta')])
        scraper = make_scraper(page)

        assert asyncio.run(scraper.go_to_next_page(make_context(scraper, page))) is True
        assert button.clicks == 1

    def test_unchanged_table_stops_pagination(self):
        """Test a click that leaves the table unchanged ends pagination."""
        page, button = self.paged(next_rows=None)
        scraper = make_scraper(page)

        assert asyncio.run(scraper.go_to_next_page(make_context(scraper, page))) is False
        assert button.clicks == 1

    def test_wait_for_table_change(self, monkeypatch):
        page = FakePage()
        scraper = make_scraper(page)
        snapshots = iter(['a', 'a', 'b'])

        async def snapshot(context):
            return next(snapshots)

        monkeypatch.setattr(scraper, 'get_table_snapshot', snapshot)

        assert asyncio.run(scraper.wait_for_table_change(make_context(scraper, page), 'a')) is True


class TestEnrichment:
    """Test related-link enrichment."""

    def test_collect_related_links(self):
        scraper = make_scraper()
        record = company(
            'Acme',
            related_link_one='https://www.kkr.com/approach/shared-success/acme',
            related_links=['https://acme.example.com/news', '/approach/shared-success/acme'],
        )

        assert scraper.collect_related_links(record) == ['https://www.kkr.com/approach/shared-success/acme']

    def test_enrich_companies(self):
        """Test case-study findings merge into the record."""
        page = FakePage(children={S['case_study_text']: [FakeElement()]}, html=CASE_STUDY_HTML)
        scraper = make_scraper(page)
        record = company(
            'Acme',
            year_of_investment='2019',
            related_link_one='https://www.kkr.com/approach/shared-success/acme',
            executive_members=['John Roe (CFO)'],
        )

        enriched = asyncio.run(scraper.enrich_companies(make_context(scraper, page), [record]))

        assert page.visited == ['https://www.kkr.com/approach/shared-success/acme']
        acme = enriched[0]
        assert acme.employee_count == '2500'
        assert acme.executive_members == ['John Roe (CFO)', 'Jane Doe (CEO)']
        assert acme.year_of_investment == '2019'
        assert acme.ownership_details == 'KKR acquired Acme to accelerate growth'

    def test_failed_case_study_keeps_record(self, monkeypatch):
        page = FakePage()
        scraper = make_scraper(page)
        record = company('Acme', related_link_one='/approach/shared-success/acme')

        async def broken(context, link, company):
            raise RuntimeError("navigation failed")

        monkeypatch.setattr(scraper, 'parse_case_study', broken)

        assert asyncio.run(scraper.enrich_companies(make_context(scraper, page), [record])) == [record]


class TestFullCrawl:
    """Test a whole crawl with the browser-facing steps replaced."""

    def test_two_pages_plus_captured_records(self, monkeypatch):
        """
        One asset class, a 3 + 2 row table and a captured response that
        repeats one company and adds another.
        """
        page = FakePage()
        scraper = make_scraper(page)
        listing_pages = [
            [company('Alpha', industry='Technology'), company('Beta'), company('Gamma')],
            [company('Delta'), company('Epsilon')],
        ]
        next_results = iter([True, False])

        async def navigate_to_portfolio(context, url=None):
            scraper.capture_api_payload({'results': [
                {'name': 'Alpha', 'hq': 'Austin, TX, USA'},
                {'name': 'Zeta', 'assetClass': 'Infrastructure'},
            ]})

        async def get_asset_classes(context):
            return ['Private Equity']

        async def select_asset_class(context, asset_class):
            return True

        async def load_all_content(context):
            pass

        async def scrape_current_page(context):
            return listing_pages.pop(0)

        async def go_to_next_page(context):
            return next(next_results)

        for name, replacement in [
            ('navigate_to_portfolio', navigate_to_portfolio),
            ('get_asset_classes', get_asset_classes),
            ('select_asset_class', select_asset_class),
            ('load_all_content', load_all_content),
            ('scrape_current_page', scrape_current_page),
            ('go_to_next_page', go_to_next_page),
        ]:
            monkeypatch.setattr(scraper, name, replacement)

        companies = asyncio.run(scraper.scrape())

        assert [c.name for c in companies] == ['Alpha', 'Beta', 'Gamma', 'Delta', 'Epsilon', 'Zeta']
        alpha = companies[0]
        assert alpha.industry == 'Technology'
        assert alpha.headquarters == 'Austin, TX, USA'
        assert companies[-1].asset_class == 'Infrastructure'
        assert scraper.session.closed_pages == [page]

    def test_no_asset_classes_crawls_unfiltered(self, monkeypatch):
        page = FakePage()
        scraper = make_scraper(page)
        selected = []

        async def navigate_to_portfolio(context, url=None):
            pass

        async def get_asset_classes(context):
            return []

        async def select_asset_class(context, asset_class):
            selected.append(asset_class)
            return True

        async def scrape_all_pages(context):
            return [company('Solo')]

        for name, replacement in [
            ('navigate_to_portfolio', navigate_to_portfolio),
            ('get_asset_classes', get_asset_classes),
            ('select_asset_class', select_asset_class),
            ('scrape_all_pages', scrape_all_pages),
        ]:
            monkeypatch.setattr(scraper, name, replacement)

        companies = asyncio.run(scraper.scrape())

        assert [c.name for c in companies] == ['Solo']
        assert selected == []

    def test_navigation_failure_closes_page(self, monkeypatch):
        page = FakePage()
        scraper = make_scraper(page)

        async def navigate_to_portfolio(context, url=None):
            raise RuntimeError("net::ERR_CONNECTION_RESET")

        monkeypatch.setattr(scraper, 'navigate_to_portfolio', navigate_to_portfolio)

        with pytest.raises(RuntimeError):
            asyncio.run(scraper.scrape())
        assert scraper.session.closed_pages == [page]
