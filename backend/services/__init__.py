"""Long-lived services shared by the scrapers and the API."""

from .companies import CompanyService
from .geocoding import GeoResolver, parse_headquarters
from .proxy_pool import ProxyPool

__all__ = ['CompanyService', 'GeoResolver', 'parse_headquarters', 'ProxyPool']
