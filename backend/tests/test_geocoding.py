"""
Tests for headquarters geocoding and the geocode cache.
"""

import asyncio

import pytest

from api.database import HQLocation
from api.repositories import GeoCacheRepository
from services.geocoding import GeoResolver, parse_headquarters


class TestParseHeadquarters:
    """Test the comma-split heuristic."""

    def test_country_only(self):
        assert parse_headquarters("Germany") == {'city': None, 'state': None, 'country': 'Germany'}

    def test_city_country(self):
        assert parse_headquarters("Paris, France") == {'city': 'Paris', 'state': None, 'country': 'France'}

    def test_city_state_country(self):
        """Test a US state abbreviation and country alias are expanded."""
        assert parse_headquarters("Austin, TX, USA") == {
            'city': 'Austin',
            'state': 'Texas',
            'country': 'United States',
        }

    def test_extra_parts_ignored(self):
        assert parse_headquarters("Soho, London, England, United Kingdom") == {
            'city': 'Soho',
            'state': 'London',
            'country': 'England',
        }


@pytest.fixture
def resolver(session_factory):
    return GeoResolver(session_factory, min_interval=0.0, max_attempts=1)


class TestGeoResolver:
    """Test GeoResolver resolution order and persistence."""

    def test_three_parts_use_heuristic(self, resolver, monkeypatch, db_session):
        """Test the remote service is not called for unambiguous strings."""
        async def fail_remote(query):
            raise AssertionError("remote geocoder should not be called")

        monkeypatch.setattr(resolver, '_fetch_remote', fail_remote)

        location = asyncio.run(resolver.resolve("Austin, TX, USA"))

        assert location == {'city': 'Austin', 'state': 'Texas', 'country': 'United States'}
        stored = GeoCacheRepository(db_session).find_by_headquarters("Austin, TX, USA")
        assert stored is not None
        assert stored.state == 'Texas'

    def test_two_parts_use_remote(self, resolver, monkeypatch):
        """Test an 'A, B' string goes to the remote geocoder."""
        calls = []

        async def fake_remote(query):
            calls.append(query)
            return {'city': 'Austin', 'state': 'TX', 'country': 'USA'}

        monkeypatch.setattr(resolver, '_fetch_remote', fake_remote)

        location = asyncio.run(resolver.resolve("Austin, United States"))

        assert calls == ["Austin, United States"]
        assert location == {'city': 'Austin', 'state': 'Texas', 'country': 'United States'}

    def test_remote_failure_falls_back_to_heuristic(self, resolver, monkeypatch):
        async def broken_remote(query):
            raise RuntimeError("service unavailable")

        monkeypatch.setattr(resolver, '_fetch_remote', broken_remote)

        location = asyncio.run(resolver.resolve("Paris, France"))

        assert location == {'city': 'Paris', 'state': None, 'country': 'France'}

    def test_remote_no_match_falls_back_to_heuristic(self, resolver, monkeypatch):
        async def empty_remote(query):
            return None

        monkeypatch.setattr(resolver, '_fetch_remote', empty_remote)

        assert asyncio.run(resolver.resolve("Paris, France"))['city'] == 'Paris'

    def test_memory_cache_hit(self, resolver, monkeypatch):
        """Test a second resolution of the same string does no remote call."""
        calls = []

        async def fake_remote(query):
            calls.append(query)
            return {'city': 'Lyon', 'state': None, 'country': 'France'}

        monkeypatch.setattr(resolver, '_fetch_remote', fake_remote)

        async def resolve_twice():
            first = await resolver.resolve("Lyon, France")
            second = await resolver.resolve("Lyon, France")
            return first, second

        first, second = asyncio.run(resolve_twice())

        assert first == second
        assert len(calls) == 1

    def test_stored_resolution_is_used(self, resolver, monkeypatch, db_session):
        """Test the store is consulted before the remote geocoder."""
        db_session.add(HQLocation(headquarters="Paris, France", city="Paris (stored)", country="France"))
        db_session.commit()

        async def fail_remote(query):
            raise AssertionError("remote geocoder should not be called")

        monkeypatch.setattr(resolver, '_fetch_remote', fail_remote)

        location = asyncio.run(resolver.resolve("Paris, France"))

        assert location['city'] == "Paris (stored)"

    def test_store_is_insert_only(self, db_session):
        """Test an existing resolution is never overwritten."""
        repo = GeoCacheRepository(db_session)

        assert repo.insert_if_absent("Paris, France", {'city': 'Paris', 'country': 'France'}) is True
        assert repo.insert_if_absent("Paris, France", {'city': 'Other', 'country': 'France'}) is False
        assert repo.find_by_headquarters("Paris, France").city == 'Paris'

    def test_warm_cache(self, resolver, db_session):
        db_session.add(HQLocation(headquarters="Tokyo, Japan", city="Tokyo", country="Japan"))
        db_session.commit()

        assert resolver.warm_cache() == 1
        location = asyncio.run(resolver.resolve("Tokyo, Japan"))
        assert location == {'city': 'Tokyo', 'state': None, 'country': 'Japan'}
