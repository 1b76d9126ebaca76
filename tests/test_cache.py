"""
Tests for the location cache.
"""
import pytest

from vistrace.cache import LocationCache
from vistrace.models import Location


def test_set_get_clear():
    cache = LocationCache()
    assert cache.get("8.8.8.8") is None

    cache.set("8.8.8.8", Location(country="United States"))
    assert cache.get("8.8.8.8").country == "United States"
    assert "8.8.8.8" in cache
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0
    assert not cache.has("8.8.8.8")


def test_refuses_none():
    with pytest.raises(ValueError):
        LocationCache().set("8.8.8.8", None)
