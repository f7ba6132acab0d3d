from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from datetime import datetime, timezone
from pathlib import Path


def utc_now():
    """Return current UTC time (timezone-aware). Replaces deprecated datetime.utcnow()."""
    return datetime.now(timezone.utc)

Base = declarative_base()


class Company(Base):
    """
    A portfolio company, flattened into columns.

    The nested general/location/industry/ownership shape the API serves is
    rebuilt by to_dict(); apply_payload() goes the other way.
    """
    __tablename__ = 'companies'

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, unique=True, nullable=False, index=True)  # Public id from the 'company' counter

    # General
    name = Column(String, nullable=False, index=True)
    description = Column(Text)
    website_url = Column(String, index=True)
    logo_url = Column(String)
    relevant_links = Column(JSON, default=list)
    employee_count = Column(String)
    executive_members = Column(JSON, default=list)

    # Location
    headquarters = Column(String)
    city = Column(String)
    state = Column(String)
    country = Column(String)

    # Industry
    industry_type = Column(String)

    # Ownership
    operating_region = Column(JSON, default=list)
    year_since_investment = Column(String)
    asset_classes = Column(JSON, default=list)
    investment_interest = Column(Text)

    # Metadata
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    SECTIONS = {
        'general': ['name', 'description', 'website_url', 'logo_url', 'relevant_links',
                    'employee_count', 'executive_members'],
        'location': ['headquarters', 'city', 'state', 'country'],
        'industry': ['industry_type'],
        'ownership': ['operating_region', 'year_since_investment', 'asset_classes', 'investment_interest'],
    }

    def to_dict(self) -> dict:
        data = {'company_id': self.company_id}
        for section, columns in self.SECTIONS.items():
            data[section] = {column: getattr(self, column) for column in columns}
        data['created_at'] = self.created_at
        data['updated_at'] = self.updated_at
        return data

    def apply_payload(self, payload: dict):
        """Copy every column present in a nested company payload onto this row."""
        for section, columns in self.SECTIONS.items():
            values = payload.get(section) or {}
            for column in columns:
                if column in values:
                    setattr(self, column, values[column])


class Counter(Base):
    """Named auto-increment sequence."""
    __tablename__ = 'counters'

    name = Column(String, primary_key=True)
    seq = Column(Integer, nullable=False, default=0)


class HQLocation(Base):
    """Resolved headquarters string -> city/state/country. Insert-only."""
    __tablename__ = 'hq_locations'

    id = Column(Integer, primary_key=True)
    headquarters = Column(String, unique=True, nullable=False, index=True)
    city = Column(String)
    state = Column(String)
    country = Column(String)
    created_at = Column(DateTime, default=utc_now)

    def to_dict(self) -> dict:
        return {'city': self.city, 'state': self.state, 'country': self.country}


class Proxy(Base):
    __tablename__ = 'proxies'

    id = Column(Integer, primary_key=True)
    address = Column(String, unique=True, nullable=False, index=True)  # ip:port
    expires_at = Column(DateTime, nullable=False, index=True)
    failure_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)


# Database setup - import settings for database URL
from api.config import settings

# Configure engine with connection pooling for better performance
engine = create_engine(
    settings.database_url,
    echo=False,
    pool_size=5,           # Number of connections to keep in pool
    max_overflow=10,       # Additional connections allowed beyond pool_size
    pool_pre_ping=True,    # Verify connections before use (handles stale connections)
    pool_recycle=3600,     # Recycle connections after 1 hour
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db():
    if settings.database_url.startswith('sqlite:///'):
        Path(settings.database_url.replace('sqlite:///', '', 1)).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)
