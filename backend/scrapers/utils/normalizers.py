"""
Data normalization utilities for scrapers.

These functions standardize scraped data into consistent formats.
"""

import re
from typing import Dict, List, Optional


US_STATES = {
    'AL': 'Alabama', 'AK': 'Alaska', 'AZ': 'Arizona', 'AR': 'Arkansas',
    'CA': 'California', 'CO': 'Colorado', 'CT': 'Connecticut', 'DE': 'Delaware',
    'FL': 'Florida', 'GA': 'Georgia', 'HI': 'Hawaii', 'ID': 'Idaho',
    'IL': 'Illinois', 'IN': 'Indiana', 'IA': 'Iowa', 'KS': 'Kansas',
    'KY': 'Kentucky', 'LA': 'Louisiana', 'ME': 'Maine', 'MD': 'Maryland',
    'MA': 'Massachusetts', 'MI': 'Michigan', 'MN': 'Minnesota', 'MS': 'Mississippi',
    'MO': 'Missouri', 'MT': 'Montana', 'NE': 'Nebraska', 'NV': 'Nevada',
    'NH': 'New Hampshire', 'NJ': 'New Jersey', 'NM': 'New Mexico', 'NY': 'New York',
    'NC': 'North Carolina', 'ND': 'North Dakota', 'OH': 'Ohio', 'OK': 'Oklahoma',
    'OR': 'Oregon', 'PA': 'Pennsylvania', 'RI': 'Rhode Island', 'SC': 'South Carolina',
    'SD': 'South Dakota', 'TN': 'Tennessee', 'TX': 'Texas', 'UT': 'Utah',
    'VT': 'Vermont', 'VA': 'Virginia', 'WA': 'Washington', 'WV': 'West Virginia',
    'WI': 'Wisconsin', 'WY': 'Wyoming', 'DC': 'District of Columbia',
    'PR': 'Puerto Rico',
}

# Case-insensitive lookup: "texas", "tx", "Tx." -> "Texas"
_US_STATE_LOOKUP = {name.lower(): name for name in US_STATES.values()}
_US_STATE_LOOKUP.update({abbr.lower(): name for abbr, name in US_STATES.items()})

UNITED_STATES = 'United States'
_US_ALIASES = {'usa', 'us', 'u.s.', 'u.s.a.', 'united states', 'united states of america'}


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; blank strings become None."""
    if value is None:
        return None
    cleaned = ' '.join(str(value).split())
    return cleaned or None


def strip_html(value: Optional[str]) -> Optional[str]:
    """Drop tags from an HTML fragment (API descriptions carry <p> markup)."""
    if value is None:
        return None
    return clean_text(re.sub(r'<[^>]*>', ' ', value))


def normalize_url(url: Optional[str], base_url: str) -> Optional[str]:
    """
    Turn a scraped href into an absolute URL.

    Examples:
        https://a.com/x -> https://a.com/x
        //cdn.a.com/logo.png -> https://cdn.a.com/logo.png
        /invest/portfolio -> {base_url}/invest/portfolio
        www.company.com -> https://www.company.com
    """
    if not url:
        return None
    url = url.strip()
    if not url:
        return None
    if url.startswith('http'):
        return url
    if url.startswith('//'):
        return f"https:{url}"
    if url.startswith('/'):
        return f"{base_url.rstrip('/')}{url}"
    return f"https://{url}"


def split_list(value: Optional[str], pattern: str = r',') -> List[str]:
    """
    Split a delimited field into trimmed, non-empty parts.

    Examples:
        "Americas, Asia Pacific" -> ["Americas", "Asia Pacific"]
        "Americas And Europe" (pattern r',| And ') -> ["Americas", "Europe"]
    """
    if not value:
        return []
    return [part.strip() for part in re.split(pattern, value, flags=re.IGNORECASE) if part.strip()]


def normalize_country(country: Optional[str]) -> Optional[str]:
    """Map USA and its spellings to 'United States'; everything else passes through."""
    if not country:
        return country
    if country.strip().lower() in _US_ALIASES:
        return UNITED_STATES
    return country.strip()


def normalize_us_state(state: Optional[str], country: Optional[str]) -> Optional[str]:
    """
    Normalize a US state to its full name.

    Only applies when the country is the United States; unknown values and
    other countries' regions are returned unchanged.

    Examples:
        ("TX", "United States") -> "Texas"
        ("new york", "United States") -> "New York"
        ("Ontario", "Canada") -> "Ontario"
    """
    if not state:
        return state
    if normalize_country(country) != UNITED_STATES:
        return state
    key = state.strip().rstrip('.').lower()
    return _US_STATE_LOOKUP.get(key, state.strip())


def build_company_payload(record, base_url: str, location: Optional[Dict] = None) -> Dict:
    """
    Convert a scraped record into the nested company structure that is
    persisted and served by the API.

    Args:
        record: ScrapedCompany
        base_url: Site base URL for relative logo/link paths
        location: Resolved {city, state, country} for the headquarters

    Returns:
        Dict with general/location/industry/ownership sections
    """
    website_url = record.url.strip().rstrip('/') if record.url else None

    logo_url = None
    if record.logo:
        logo_url = record.logo.strip()
        if not logo_url.startswith('http'):
            logo_url = f"{base_url.rstrip('/')}/{logo_url.lstrip('/')}"

    relevant_links = []
    for link in [record.related_link_one, record.related_link_two, *(record.related_links or [])]:
        if not link:
            continue
        link = link.strip().rstrip('/')
        if not link.startswith('http'):
            link = f"{base_url.rstrip('/')}/{link.lstrip('/')}"
        if link not in relevant_links:
            relevant_links.append(link)

    return {
        'general': {
            'name': record.name,
            'description': strip_html(record.description),
            'website_url': website_url or None,
            'logo_url': logo_url,
            'relevant_links': relevant_links,
            'employee_count': record.employee_count,
            'executive_members': list(record.executive_members or []),
        },
        'location': {
            'headquarters': record.headquarters,
            **(location or {}),
        },
        'industry': {'industry_type': record.industry},
        'ownership': {
            'operating_region': split_list(record.region, r',| And '),
            'year_since_investment': record.year_of_investment,
            'asset_classes': split_list(record.asset_class),
            'investment_interest': record.ownership_details,
        },
    }
