"""Per-site scraper implementations."""

from .kkr import KKRScraper

__all__ = ['KKRScraper']
