"""
Pytest configuration and fixtures for VisTrace tests.

Provides ready-made stores and options and a GeoLookup wired to an
httpx mock transport where only ip-api.com answers.
"""
import httpx
import pytest

from tests.fakes import IP_API_OK, FakeProviders
from vistrace.cache import LocationCache
from vistrace.enrichment.geo_lookup import GeoLookup
from vistrace.models import TraceOptions
from vistrace.store import TraceStore


@pytest.fixture
def options():
    return TraceOptions()


@pytest.fixture
def store():
    return TraceStore()


@pytest.fixture
def providers():
    """Providers where only ip-api.com answers"""
    return FakeProviders({"ip-api.com": IP_API_OK})


@pytest.fixture
def geo(providers):
    return GeoLookup(cache=LocationCache(), transport=httpx.MockTransport(providers))
