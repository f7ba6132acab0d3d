"""
Company persistence and the in-memory company list served by the API.
"""

import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from api.repositories import CompanyRepository
from scrapers.utils.merge import deep_merge

logger = logging.getLogger(__name__)


class CompanyService:
    """
    Saves normalized company payloads and caches the full company list.

    Each record is saved in its own session so that one failure never
    rolls back its siblings. Saves run on executor threads; the store
    work itself is serialized by a lock since SQLite takes one writer at
    a time and company ids come from a shared counter.
    """

    def __init__(self, session_factory: Callable[[], Session], batch_size: int = 10):
        self._session_factory = session_factory
        self.batch_size = batch_size
        self._cache: List[Dict] = []
        self._write_lock = threading.Lock()

    def get_companies(self, force_refresh: bool = False) -> List[Dict]:
        if not self._cache or force_refresh:
            logger.info("Loading companies from database...")
            with self._session_factory() as db:
                self._cache = [company.to_dict() for company in CompanyRepository(db).find_all()]
            logger.info(f"Loaded {len(self._cache)} companies")
        return self._cache

    def get_summary(self) -> Dict:
        companies = self.get_companies()
        with self._session_factory() as db:
            last_updated = CompanyRepository(db).get_last_updated()
        return {
            'total_companies': len(companies),
            'last_updated': last_updated,
        }

    def get_company(self, company_id: int) -> Optional[Dict]:
        with self._session_factory() as db:
            company = CompanyRepository(db).find_by_company_id(company_id)
            return company.to_dict() if company else None

    def delete_company(self, company_id: int) -> bool:
        with self._session_factory() as db:
            deleted = CompanyRepository(db).delete_by_company_id(company_id)
        if deleted:
            self.clear_cache()
        return deleted

    def clear_cache(self):
        self._cache = []
        logger.debug("Company cache cleared")

    def save_or_update(self, payload: Dict) -> bool:
        """
        Merge a payload into the stored company, or create it.

        The stored company is found by website URL, then by name.

        Returns:
            True if a new company was created
        """
        general = payload.get('general') or {}
        website_url = general.get('website_url')
        name = general.get('name')

        with self._write_lock, self._session_factory() as db:
            repo = CompanyRepository(db)

            existing = repo.find_by_website(website_url) if website_url else None
            if existing is None and name:
                existing = repo.find_by_name(name)

            if existing is None:
                repo.create(payload)
                return True

            stored = existing.to_dict()
            merged = {
                section: deep_merge(stored[section], payload.get(section) or {})
                for section in ('general', 'location', 'industry', 'ownership')
            }
            repo.update_by_company_id(existing.company_id, merged)
            return False

    async def _save_one(self, payload: Dict) -> Optional[bool]:
        try:
            return await asyncio.get_event_loop().run_in_executor(None, self.save_or_update, payload)
        except Exception as e:
            name = (payload.get('general') or {}).get('name') or 'Unknown'
            logger.warning(f"Failed to save company {name}: {e}")
            return None

    async def save_all(self, payloads: List[Dict]) -> Dict[str, int]:
        """
        Save payloads in batches; records within a batch are saved concurrently.

        Returns:
            Counts of 'new', 'updated' and 'errors'
        """
        counts = {'new': 0, 'updated': 0, 'errors': 0}

        for start in range(0, len(payloads), self.batch_size):
            batch = payloads[start:start + self.batch_size]
            outcomes = await asyncio.gather(*(self._save_one(payload) for payload in batch))
            for outcome in outcomes:
                if outcome is None:
                    counts['errors'] += 1
                elif outcome:
                    counts['new'] += 1
                else:
                    counts['updated'] += 1

        if payloads:
            self.clear_cache()
        return counts
