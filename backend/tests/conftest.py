"""
Pytest configuration and fixtures for Portfolio Harvester tests.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.config import Settings
from api.database import Base
from api.main import app, get_scraper_manager
from scrapers.manager import ScraperManager


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database (tables already created)."""
    return TestingSessionLocal


@pytest.fixture
def test_settings():
    """Settings with remote calls and waits switched off."""
    return Settings(
        proxy_enabled=False,
        geocode_min_interval=0.0,
        geocode_max_attempts=1,
        scraper_max_retries=1,
        scraper_retry_delay=0.0,
    )


@pytest.fixture
def manager(session_factory, test_settings):
    """A ScraperManager wired to the test database."""
    return ScraperManager(session_factory, app_settings=test_settings)


@pytest.fixture(scope="function")
def client(manager):
    """Create a test client with the scraper manager overridden."""
    app.dependency_overrides[get_scraper_manager] = lambda: manager

    # Use TestClient directly without context manager so the lifespan does not run
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_payload():
    """A normalized company payload as produced by build_company_payload."""
    return {
        'general': {
            'name': 'Acme Corp',
            'description': 'Industrial software.',
            'website_url': 'https://acme.example.com',
            'logo_url': 'https://www.kkr.com/content/acme.png',
            'relevant_links': ['https://www.kkr.com/approach/shared-success/acme'],
            'employee_count': None,
            'executive_members': [],
        },
        'location': {
            'headquarters': 'Austin, TX, USA',
            'city': 'Austin',
            'state': 'Texas',
            'country': 'United States',
        },
        'industry': {'industry_type': 'Technology'},
        'ownership': {
            'operating_region': ['Americas'],
            'year_since_investment': '2019',
            'asset_classes': ['Private Equity'],
            'investment_interest': None,
        },
    }
