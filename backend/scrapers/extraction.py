"""
Declarative DOM extraction on top of Playwright.

Fields are described as ExtractionRule objects (selector, attribute,
transform, multiple, required) and resolved against a scope, which is
either a Page or an ElementHandle (e.g. an open modal). Only the
query_selector / query_selector_all / text_content / get_attribute
subset of the Playwright API is used, so both kinds of scope behave the
same way.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from playwright.async_api import ElementHandle, Page

from .utils.normalizers import normalize_url, split_list, strip_html

logger = logging.getLogger(__name__)

Transform = Union[str, Callable[[str], Any]]


class ExtractionError(Exception):
    """Raised when a record cannot be extracted."""


class RequiredFieldMissing(ExtractionError):
    """A required rule resolved to nothing."""

    def __init__(self, field: str, selector: str):
        super().__init__(f"Required field '{field}' is missing or empty ({selector})")
        self.field = field
        self.selector = selector


@dataclass(frozen=True)
class ExtractionRule:
    """Describes how one field is read from the DOM."""
    field: str
    selector: str
    attribute: Optional[str] = None     # Read this attribute instead of text
    transform: Optional[Transform] = None  # Named transform or callable
    multiple: bool = False              # Collect every match as a list
    required: bool = False              # Abort the record when empty


# Named transforms keep rules plain data. absolute_url needs the site's base URL.
NAMED_TRANSFORMS: Dict[str, Callable[[str, str], Any]] = {
    'trim': lambda value, base_url: value.strip(),
    'absolute_url': lambda value, base_url: normalize_url(value, base_url),
    'comma_split': lambda value, base_url: split_list(value),
    'strip_html': lambda value, base_url: strip_html(value),
}

# Finds the hidden native <select>, sets it, fires change, then clicks the
# visible option div carrying the same label.
_SELECT_CUSTOM_OPTION_JS = """
(customSelect, value) => {
    const select = customSelect.querySelector('select');
    if (!select) return false;

    const option = Array.from(select.options).find((o) => o.value === value);
    if (!option) return false;

    select.value = value;
    select.dispatchEvent(new Event('change', { bubbles: true }));

    const divContainer = Array.from(customSelect.children).find(
        (c) => c !== select && c.querySelectorAll && c.querySelectorAll('div').length > 0,
    );
    if (!divContainer) return false;

    const label = (option.textContent || '').trim();
    const target = Array.from(divContainer.querySelectorAll('div')).find(
        (d) => (d.textContent || '').trim() === label,
    );
    if (!target) return false;

    target.click();
    return true;
}
"""

Scope = Union[Page, ElementHandle]


def _is_blank(value: Any) -> bool:
    return value is None or value == '' or value == []


def zip_table_rows(headers: List[str], rows: List[List[str]]) -> List[Dict[str, Optional[str]]]:
    """
    Map positional cell texts onto header labels.

    Header order drives the mapping. Missing or empty trailing cells
    become None.
    """
    records = []
    for cells in rows:
        record = {}
        for index, header in enumerate(headers):
            value = cells[index] if index < len(cells) else None
            record[header] = value or None
        records.append(record)
    return records


class DataExtractor:
    """
    Rule-driven reader and interaction helpers for a browser page.

    Args:
        base_url: Used by the absolute_url transform
    """

    def __init__(self, base_url: str = ''):
        self.base_url = base_url

    def apply_transform(self, transform: Optional[Transform], value: str) -> Any:
        if transform is None:
            return value
        if callable(transform):
            return transform(value)
        if transform not in NAMED_TRANSFORMS:
            raise ValueError(f"Unknown transform: {transform}")
        return NAMED_TRANSFORMS[transform](value, self.base_url)

    async def extract(self, scope: Scope, rules: List[ExtractionRule]) -> Dict[str, Any]:
        """
        Resolve every rule against the scope.

        Returns:
            Dict of field -> value; empty optional fields are left out

        Raises:
            RequiredFieldMissing: A required rule resolved to nothing
            ExtractionError: A required rule's transform failed
        """
        result: Dict[str, Any] = {}

        for rule in rules:
            if rule.multiple:
                if rule.attribute:
                    raw = await self.get_attributes(scope, rule.selector, rule.attribute)
                else:
                    raw = await self.get_texts(scope, rule.selector)
            else:
                if rule.attribute:
                    raw = await self.get_attribute(scope, rule.selector, rule.attribute)
                else:
                    raw = await self.get_text(scope, rule.selector)

            try:
                if raw is None:
                    value = None
                elif isinstance(raw, list):
                    value = [self.apply_transform(rule.transform, v) for v in raw]
                    value = [v for v in value if not _is_blank(v)]
                else:
                    value = self.apply_transform(rule.transform, raw)
            except Exception as e:
                if rule.required:
                    raise ExtractionError(f"Transform failed for required field '{rule.field}': {e}") from e
                logger.debug(f"Transform failed for field '{rule.field}': {e}")
                continue

            if _is_blank(value):
                if rule.required:
                    raise RequiredFieldMissing(rule.field, rule.selector)
                logger.debug(f"Optional field '{rule.field}' not found ({rule.selector})")
                continue

            result[rule.field] = value

        return result

    async def extract_table(
        self,
        scope: Scope,
        table_selector: str,
        row_selector: str = 'tbody tr',
        header_selector: str = 'thead th',
        cell_selector: str = 'td',
    ) -> List[Dict[str, Optional[str]]]:
        """
        Read a table into one dict per row keyed by header label.

        Args:
            scope: Page or element containing the table
            table_selector: CSS selector of the table
            row_selector: Row selector, relative to the table
            header_selector: Header cell selector, relative to the table
            cell_selector: Cell selector, relative to a row

        Returns:
            List of {header: cell text or None}
        """
        headers = await self.get_texts(scope, f"{table_selector} {header_selector}")
        if not headers:
            logger.warning(f"No table headers found for {table_selector}")
            return []

        rows = []
        for row in await scope.query_selector_all(f"{table_selector} {row_selector}"):
            cells = []
            for cell in await row.query_selector_all(cell_selector):
                cells.append(((await cell.text_content()) or '').strip())
            rows.append(cells)

        logger.debug(f"Table {table_selector}: {len(headers)} columns, {len(rows)} rows")
        return zip_table_rows(headers, rows)

    async def get_text(self, scope: Scope, selector: str) -> Optional[str]:
        try:
            el = await scope.query_selector(selector)
            if not el:
                return None
            return ((await el.text_content()) or '').strip() or None
        except Exception as e:
            logger.debug(f"get_text failed for {selector}: {e}")
            return None

    async def get_texts(self, scope: Scope, selector: str) -> List[str]:
        try:
            texts = []
            for el in await scope.query_selector_all(selector):
                text = ((await el.text_content()) or '').strip()
                if text:
                    texts.append(text)
            return texts
        except Exception as e:
            logger.debug(f"get_texts failed for {selector}: {e}")
            return []

    async def get_attribute(self, scope: Scope, selector: str, attribute: str) -> Optional[str]:
        try:
            el = await scope.query_selector(selector)
            if not el:
                return None
            return await el.get_attribute(attribute)
        except Exception as e:
            logger.debug(f"get_attribute failed for {selector}[{attribute}]: {e}")
            return None

    async def get_attributes(self, scope: Scope, selector: str, attribute: str) -> List[str]:
        try:
            values = []
            for el in await scope.query_selector_all(selector):
                value = await el.get_attribute(attribute)
                if value is not None:
                    values.append(value)
            return values
        except Exception as e:
            logger.debug(f"get_attributes failed for {selector}[{attribute}]: {e}")
            return []

    async def click(
        self,
        page: Page,
        selector: str,
        wait_for_navigation: bool = False,
        delay: Optional[float] = None,
        timeout: float = 5.0,
    ) -> bool:
        """
        Wait for an element to become visible and click it.

        Args:
            page: Page to act on
            selector: CSS selector of the element
            wait_for_navigation: Also wait for the navigation the click triggers
            delay: Seconds between mousedown and mouseup
            timeout: Seconds to wait for visibility

        Returns:
            True if the click happened
        """
        delay_ms = int(delay * 1000) if delay else None
        try:
            el = await page.wait_for_selector(selector, state='visible', timeout=int(timeout * 1000))
            if not el:
                return False

            if wait_for_navigation:
                async with page.expect_navigation(timeout=int(timeout * 1000)):
                    await el.click(delay=delay_ms)
            else:
                await el.click(delay=delay_ms)
            return True
        except Exception as e:
            logger.warning(f"Failed to click element {selector}: {e}")
            return False

    async def click_element(self, element: ElementHandle, delay: Optional[float] = None) -> bool:
        try:
            await element.click(delay=int(delay * 1000) if delay else None)
            return True
        except Exception as e:
            logger.warning(f"Failed to click element handle: {e}")
            return False

    async def select_custom_option(self, page: Page, container_selector: str, value: str) -> bool:
        """
        Pick a value in a styled dropdown whose visible options are decoupled
        from the hidden native <select>.

        Returns:
            True if both the native value and the visible option were set
        """
        try:
            selected = await page.eval_on_selector(container_selector, _SELECT_CUSTOM_OPTION_JS, value)
        except Exception as e:
            logger.warning(f"Error selecting '{value}' in {container_selector}: {e}")
            return False

        if not selected:
            logger.warning(f"Failed to select '{value}' in {container_selector}")
        return bool(selected)
