"""Shared utilities for scrapers."""

from .normalizers import (
    clean_text,
    strip_html,
    normalize_url,
    split_list,
    normalize_country,
    normalize_us_state,
    build_company_payload,
)
from .extractors import (
    extract_text_blocks,
    extract_employee_count,
    extract_executives,
    extract_acquisition,
    mine_case_study,
)
from .merge import deep_merge, merge_unique, merge_companies, dedupe_companies
from .retry import with_retry
from .user_agents import get_random_user_agent

__all__ = [
    'clean_text',
    'strip_html',
    'normalize_url',
    'split_list',
    'normalize_country',
    'normalize_us_state',
    'build_company_payload',
    'extract_text_blocks',
    'extract_employee_count',
    'extract_executives',
    'extract_acquisition',
    'mine_case_study',
    'deep_merge',
    'merge_unique',
    'merge_companies',
    'dedupe_companies',
    'with_retry',
    'get_random_user_agent',
]
