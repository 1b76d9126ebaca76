"""
In-memory location cache shared by all traces
"""

import threading
from typing import Optional

from .models import Location


class LocationCache:
    """
    Thread-safe address -> Location cache.

    Entries live for the lifetime of the instance; IP to location
    mappings are treated as static. Only successful lookups are
    stored, so a failed address is retried on its next lookup.
    Concurrent writers for the same address simply overwrite each other.
    """

    def __init__(self):
        self._data: dict[str, Location] = {}
        self._lock = threading.Lock()

    def get(self, ip: str) -> Optional[Location]:
        """Get cached location for IP, or None"""
        with self._lock:
            return self._data.get(ip)

    def set(self, ip: str, location: Location):
        """Store location for IP"""
        if location is None:
            raise ValueError("Refusing to cache an empty location")
        with self._lock:
            self._data[ip] = location

    def has(self, ip: str) -> bool:
        with self._lock:
            return ip in self._data

    def clear(self):
        """Clear all cache entries"""
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, ip: str) -> bool:
        return self.has(ip)
