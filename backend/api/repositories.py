"""
Data access for companies, the geocode cache and the proxy pool.

Each repository wraps one SQLAlchemy session and commits its own writes.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from api.database import Company, Counter, HQLocation, Proxy


class CompanyRepository:
    COUNTER_NAME = 'company'

    def __init__(self, db: Session):
        self.db = db

    def find_by_name(self, name: str) -> Optional[Company]:
        return self.db.query(Company).filter(Company.name == name).first()

    def find_by_website(self, website_url: str) -> Optional[Company]:
        return self.db.query(Company).filter(Company.website_url == website_url).first()

    def find_by_company_id(self, company_id: int) -> Optional[Company]:
        return self.db.query(Company).filter(Company.company_id == company_id).first()

    def find_all(self) -> List[Company]:
        return self.db.query(Company).order_by(Company.company_id).all()

    def next_company_id(self) -> int:
        """Increment and return the company counter (flushed, not committed)."""
        counter = self.db.get(Counter, self.COUNTER_NAME)
        if counter is None:
            counter = Counter(name=self.COUNTER_NAME, seq=0)
            self.db.add(counter)
        counter.seq += 1
        self.db.flush()
        return counter.seq

    def create(self, payload: Dict) -> Company:
        company = Company(company_id=self.next_company_id())
        company.apply_payload(payload)
        self.db.add(company)
        self.db.commit()
        self.db.refresh(company)
        return company

    def update_by_company_id(self, company_id: int, payload: Dict) -> Optional[Company]:
        company = self.find_by_company_id(company_id)
        if company is None:
            return None
        company.apply_payload(payload)
        company.updated_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(company)
        return company

    def delete_by_company_id(self, company_id: int) -> bool:
        company = self.find_by_company_id(company_id)
        if company is None:
            return False
        self.db.delete(company)
        self.db.commit()
        return True

    def get_last_updated(self) -> Optional[datetime]:
        return self.db.query(func.max(Company.updated_at)).scalar()


class GeoCacheRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_headquarters(self, headquarters: str) -> Optional[HQLocation]:
        return self.db.query(HQLocation).filter(HQLocation.headquarters == headquarters).first()

    def find_all(self) -> List[HQLocation]:
        return self.db.query(HQLocation).all()

    def insert_if_absent(self, headquarters: str, location: Dict) -> bool:
        """Store a resolution unless one exists. Returns True if inserted."""
        if self.find_by_headquarters(headquarters):
            return False
        self.db.add(HQLocation(
            headquarters=headquarters,
            city=location.get('city'),
            state=location.get('state'),
            country=location.get('country'),
        ))
        self.db.commit()
        return True


class ProxyRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, address: str) -> Optional[Proxy]:
        return self.db.query(Proxy).filter(Proxy.address == address).first()

    def list_valid(self, now: Optional[datetime] = None) -> List[str]:
        """Addresses that have not expired and have never failed a probe."""
        now = now or datetime.now(timezone.utc)
        rows = (
            self.db.query(Proxy.address)
            .filter(Proxy.expires_at > now, Proxy.failure_count < 1)
            .all()
        )
        return [row.address for row in rows]

    def upsert_many(self, addresses: Iterable[str], ttl_hours: int = 24) -> int:
        """
        Insert new addresses and refresh the expiry of known ones.

        Returns:
            Number of addresses written
        """
        expires_at = datetime.now(timezone.utc) + timedelta(hours=ttl_hours)
        written = 0
        for address in dict.fromkeys(addresses):
            proxy = self.get(address)
            if proxy is None:
                self.db.add(Proxy(address=address, expires_at=expires_at, failure_count=0))
            else:
                proxy.expires_at = expires_at
            written += 1
        self.db.commit()
        return written

    def increment_failures(self, address: str) -> int:
        """Returns the new failure count (0 when the address is unknown)."""
        proxy = self.get(address)
        if proxy is None:
            return 0
        proxy.failure_count += 1
        self.db.commit()
        return proxy.failure_count

    def delete_by_address(self, address: str) -> bool:
        deleted = self.db.query(Proxy).filter(Proxy.address == address).delete(synchronize_session=False)
        self.db.commit()
        return deleted > 0

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        deleted = self.db.query(Proxy).filter(Proxy.expires_at <= now).delete(synchronize_session=False)
        self.db.commit()
        return deleted
