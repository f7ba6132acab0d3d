"""
Data extraction utilities for scrapers.

These functions mine company facts out of free text on portfolio
case-study pages using regex patterns. They are best effort by nature.
"""

import re
from typing import Dict, List, Optional, Tuple
from bs4 import BeautifulSoup


LEADERSHIP_ROLES = [
    'CEO',
    'Chairman',
    'President',
    'Deputy Executive Chairman',
    'Managing Director',
    'Executive Director',
    'Director',
    'COO',
    'CFO',
    'CTO',
    'Vice President',
    'Managing Partner',
    'Partner',
    'Chief Executive Officer',
    'Chief Operating Officer',
    'Chief Financial Officer',
    'Chief Technology Officer',
]

_ROLES_PATTERN = '|'.join(re.sub(r'\s+', r'\\s+', role) for role in LEADERSHIP_ROLES)
_NAME_PATTERN = r'[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+'

# "Jane Doe, CEO"
NAME_THEN_ROLE = re.compile(rf'({_NAME_PATTERN}),?\s*({_ROLES_PATTERN})')
# "CEO Jane Doe" / "KKR Partner Jane Doe"
ROLE_THEN_NAME = re.compile(rf'(?:[A-Z]{{2,4}}\s+)?({_ROLES_PATTERN})\s+({_NAME_PATTERN})')

EMPLOYEE_COUNT = re.compile(
    r'(?:over|more than|all of its)?\s*([\d,]+\+?)\s*(?:employees|employee-owners|colleagues)',
    re.IGNORECASE,
)

_MONTHS = 'January|February|March|April|May|June|July|August|September|October|November|December'
ACQUISITION = re.compile(
    rf'(?:In|After|Since|bought|acquired|joined).*?(?:in\s+)?((?:{_MONTHS})?\s*\d{{4}}),?\s+([\s\S]*?)(?=\.\s|$)',
    re.IGNORECASE,
)

TEXT_BLOCK_TAGS = 'p, h1, h2, h3, h4, h5, h6, span, div'


def extract_text_blocks(html: str, container_selector: str, limit: int = 10) -> List[str]:
    """
    Collect the non-empty text blocks inside a page's main text container.

    Args:
        html: Page HTML
        container_selector: CSS selector of the text container
        limit: Maximum number of blocks to keep

    Returns:
        Stripped text of each block element, in document order
    """
    soup = BeautifulSoup(html, 'html.parser')
    container = soup.select_one(container_selector)
    if not container:
        return []

    blocks = []
    for el in container.select(TEXT_BLOCK_TAGS):
        text = el.get_text().strip()
        if text:
            blocks.append(text)
    return blocks[:limit]


def extract_employee_count(text: str) -> Optional[str]:
    """
    Extract an employee head count.

    Examples:
        "with over 2,500 employees" -> "2500"
        "its 600+ employee-owners" -> "600+"
    """
    match = EMPLOYEE_COUNT.search(text)
    if match:
        return match.group(1).replace(',', '')
    return None


def extract_executives(text: str) -> List[str]:
    """
    Extract "Name (Role)" pairs in both name-first and role-first order.

    Exact duplicates are dropped, first occurrence wins.
    """
    executives = []

    for match in NAME_THEN_ROLE.finditer(text):
        entry = f"{match.group(1).strip()} ({match.group(2).strip()})"
        if entry not in executives:
            executives.append(entry)

    for match in ROLE_THEN_NAME.finditer(text):
        entry = f"{match.group(2).strip()} ({match.group(1).strip()})"
        if entry not in executives:
            executives.append(entry)

    return executives


def extract_acquisition(text: str, known_year: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """
    Find the acquisition date and the sentence that follows it.

    With one candidate it is used as-is. With several, the one whose date
    contains the already known investment year is picked. Otherwise
    nothing is selected.

    Returns:
        Tuple of (date text, narrative), both None when nothing was selected
    """
    candidates = list(ACQUISITION.finditer(text))

    selected = None
    if len(candidates) == 1:
        selected = candidates[0]
    elif len(candidates) > 1 and known_year:
        selected = next((m for m in candidates if known_year in m.group(1)), None)

    if not selected:
        return None, None
    return selected.group(1).strip(), (selected.group(2) or '').strip() or None


def mine_case_study(blocks: List[str], known_year: Optional[str] = None) -> Dict:
    """
    Run every text heuristic over a case-study page.

    Only non-empty findings are returned so the result can be merged
    straight into an existing record. The narrative falls back to the
    first text block when no acquisition sentence was selected.
    """
    full_text = ' '.join(blocks)
    first_block = blocks[0] if blocks else None

    found = {}

    employee_count = extract_employee_count(full_text)
    if employee_count:
        found['employee_count'] = employee_count

    executives = extract_executives(full_text)
    if executives:
        found['executive_members'] = executives

    year, narrative = extract_acquisition(full_text, known_year)
    if year:
        found['year_of_investment'] = year

    narrative = narrative or first_block
    if narrative:
        found['ownership_details'] = narrative

    return found
