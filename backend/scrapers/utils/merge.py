"""
Deep merge and name-based deduplication.

One merge rule serves both in-crawl reconciliation (table rows vs. modal
details vs. captured API payloads) and reconciliation of a fresh record
against the stored company:

- lists: order-preserving union, existing items first, duplicates dropped
- dicts: merged key by key, recursively
- scalars: the incoming value wins only when it is present
"""

import logging
from dataclasses import asdict
from typing import Any, Iterable, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from ..base import ScrapedCompany

logger = logging.getLogger(__name__)


def is_empty(value: Any) -> bool:
    """True for None and blank strings."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _union(existing: Iterable, incoming: Iterable) -> list:
    # Equality-based so unhashable items (dicts) are handled too
    merged = []
    for item in list(existing) + list(incoming):
        if item not in merged:
            merged.append(item)
    return merged


def deep_merge(existing: Any, incoming: Any) -> Any:
    """
    Merge incoming into existing and return the result.

    Neither argument is mutated.
    """
    if is_empty(incoming):
        return existing
    if existing is None:
        return incoming

    if isinstance(existing, list) and isinstance(incoming, list):
        return _union(existing, incoming)

    if isinstance(existing, dict) and isinstance(incoming, dict):
        merged = dict(existing)
        for key, value in incoming.items():
            merged[key] = deep_merge(merged.get(key), value)
        return merged

    return incoming


def merge_unique(existing: Optional[list], incoming: Optional[list]) -> Tuple[list, bool]:
    """
    Union two lists.

    Returns:
        Tuple of (merged list, whether anything new was added)
    """
    merged = _union(existing or [], incoming or [])
    return merged, len(merged) > len(existing or [])


def merge_companies(existing: 'ScrapedCompany', incoming: 'ScrapedCompany') -> 'ScrapedCompany':
    """Merge two scraped records of the same company into a new record."""
    merged = deep_merge(asdict(existing), asdict(incoming))
    return type(existing)(**merged)


def dedupe_companies(companies: Iterable['ScrapedCompany']) -> List['ScrapedCompany']:
    """
    Collapse records sharing a (trimmed) name.

    Records are folded left to right, so a conflicting scalar ends up with
    the last non-empty value seen while list fields accumulate across every
    duplicate. Records without a name are dropped.
    """
    by_name = {}

    for company in companies:
        key = (company.name or '').strip()
        if not key:
            logger.warning(f"Skipping company with no identifiable name: {company!r}")
            continue

        if key in by_name:
            by_name[key] = merge_companies(by_name[key], company)
            logger.debug(f"Merged duplicate company: {key}")
        else:
            by_name[key] = company

    return list(by_name.values())
