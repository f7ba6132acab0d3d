"""
Site configurations for portfolio sources.

Each site has a SiteConfig that defines:
- Base URL and portfolio listing path
- The JSON endpoint fragment used for passive capture
- Which related links are worth visiting for enrichment
- The CSS selectors the scraper depends on

Selectors are an external contract with the target site; when the site
changes its markup this is the only place that needs updating.
"""

from .base import SiteConfig


# ============================================================
# SITE CONFIGURATIONS
# ============================================================

SITES = {
    'kkr': SiteConfig(
        name='KKR',
        short_name='KKR',
        base_url='https://www.kkr.com',
        portfolio_path='/invest/portfolio',
        api_fragment='bioportfoliosearch.bioportfoliosearch.json',
        enrichment_pattern=r'/approach/shared-success',
        rate_limit_seconds=1.0,
        selectors={
            # Listing table
            'table': '.cmp-portfolio-filter__result--table-portfolio',
            'row': '.cmp-portfolio-filter__result--table-body tr.toggle-table-row-click',
            'row_snapshot': '.toggle-table-row-click',

            # Company detail flyout
            'modal': '#portfolio-flyout',
            'popup': '.modal-content-row',
            'close_button': '.cmp-portfolio-filter__close-btn',
            'modal_name': '.cmp-portfolio-filter__portfolio-title',
            'modal_logo': '.cmp-portfolio-filter__portfolio-header img',
            'modal_description': '.cmp-portfolio-filter__portfolio-description p',
            'modal_website': '.website-details .site-link',
            'modal_hq': '.hq-details .sub-desc',
            'modal_asset_class': '.asset-details .sub-desc',
            'modal_industry': '.industry-details .sub-desc',
            'modal_region': '.region-details .sub-desc',
            'modal_year': '.year-details .sub-desc',
            'modal_related_links': (
                '.cmp-portfolio-filter__additional-details--values '
                'a.site-link[href]:not([href*="undefined"])'
            ),

            # Pagination
            'active_page': '.cmp-portfolio-filter__page.active',
            'page_by_number': '.cmp-portfolio-filter__page[data-page="{page}"]',

            # Filters
            'custom_select': '.cmp-portfolio-filter__custom-select',
            'asset_class_options': '.cmp-portfolio-filter__item--selectassetclass option',

            # Related-link (case study) pages
            'case_study_text': '.cmp-text',
        },
        enabled=True,
    ),
}


def get_site_config(site_key: str) -> SiteConfig:
    """
    Get configuration for a site by its key.

    Args:
        site_key: Site identifier (e.g., 'kkr')

    Returns:
        SiteConfig for the site

    Raises:
        ValueError: If site_key is not found
    """
    if site_key not in SITES:
        valid_keys = ', '.join(sorted(SITES.keys()))
        raise ValueError(f"Unknown site: '{site_key}'. Valid sites: {valid_keys}")
    return SITES[site_key]


def get_enabled_sites() -> dict:
    """Get all enabled sites."""
    return {k: v for k, v in SITES.items() if v.enabled}


def get_site_summary() -> list:
    """Get a summary of all sites for display."""
    summary = []
    for key, config in SITES.items():
        summary.append({
            'key': key,
            'name': config.name,
            'short_name': config.short_name,
            'enabled': config.enabled,
            'url': config.portfolio_url,
        })
    return summary
