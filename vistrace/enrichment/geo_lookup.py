"""
Geographic IP lookup with provider fallback (ipstack -> ipinfo.io -> ip-api.com)
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..cache import LocationCache
from ..models import NO_RESPONSE, Location
from .ip_classifier import IPClassifier


logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A provider answered, but not with a usable result"""


def _section(data: dict, key: str) -> dict:
    """Nested object of a provider answer; absent counts as empty"""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProviderError(f"malformed response: '{key}' is not an object")
    return value


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, '') else None
    except (TypeError, ValueError):
        return None


class GeoLookup:
    """
    Geographic IP lookup across ordered providers.

    Provider order:
    1. ipstack (only when an API key is configured)
    2. ipinfo.io (keyless, token optional)
    3. ip-api.com (keyless, 45 requests/minute)

    The first provider returning a well-formed result wins and the
    result is cached. Failures are logged and never raised; a failed
    lookup is not cached so a later call can succeed.
    """

    IPSTACK_URL = "http://api.ipstack.com/{ip}"
    IPINFO_URL = "https://ipinfo.io/{ip}/json"
    IPAPI_URL = "http://ip-api.com/json/{ip}"
    IPAPI_FIELDS = "status,message,country,city,isp,lat,lon,timezone"

    def __init__(self, api_key: Optional[str] = None,
                 ipinfo_token: Optional[str] = None,
                 timeout: float = 5.0,
                 cache: Optional[LocationCache] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.ipinfo_token = ipinfo_token
        self.timeout = timeout
        self.cache = cache if cache is not None else LocationCache()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def providers(self) -> list[tuple[str, Callable[[str], Awaitable[Location]]]]:
        """Providers in priority order"""
        providers = []
        if self.api_key:
            providers.append(("ipstack", self._from_ipstack))
        providers.append(("ipinfo", self._from_ipinfo))
        providers.append(("ip-api", self._from_ip_api))
        return providers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        client = await self._get_client()
        response = await client.get(url, params=params)
        if response.status_code != 200:
            raise ProviderError(f"HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"malformed response: {e}")
        if not isinstance(data, dict):
            raise ProviderError("malformed response: expected a JSON object")
        return data

    async def _from_ipstack(self, ip: str) -> Location:
        data = await self._get_json(self.IPSTACK_URL.format(ip=ip),
                                    params={'access_key': self.api_key})
        if data.get('error') or data.get('success') is False:
            raise ProviderError(f"provider error: {data.get('error')}")

        connection = _section(data, 'connection')
        time_zone = _section(data, 'time_zone')
        return Location(
            country=data.get('country_name'),
            city=data.get('city'),
            isp=connection.get('isp'),
            latitude=_to_float(data.get('latitude')),
            longitude=_to_float(data.get('longitude')),
            timezone=time_zone.get('id'),
        )

    async def _from_ipinfo(self, ip: str) -> Location:
        params = {'token': self.ipinfo_token} if self.ipinfo_token else None
        data = await self._get_json(self.IPINFO_URL.format(ip=ip), params=params)
        if data.get('error') or data.get('bogon'):
            raise ProviderError(f"provider error: {data.get('error') or 'bogon address'}")

        latitude = longitude = None
        loc = data.get('loc')
        if loc is not None and not isinstance(loc, str):
            raise ProviderError("malformed response: 'loc' is not a string")
        if loc and ',' in loc:
            lat_str, lon_str = loc.split(',', 1)
            latitude, longitude = _to_float(lat_str), _to_float(lon_str)

        return Location(
            country=data.get('country'),
            city=data.get('city'),
            isp=data.get('org'),
            latitude=latitude,
            longitude=longitude,
            timezone=data.get('timezone'),
        )

    async def _from_ip_api(self, ip: str) -> Location:
        data = await self._get_json(self.IPAPI_URL.format(ip=ip),
                                    params={'fields': self.IPAPI_FIELDS})
        if data.get('status') != 'success':
            raise ProviderError(f"provider error: {data.get('message', 'status fail')}")

        return Location(
            country=data.get('country'),
            city=data.get('city'),
            isp=data.get('isp'),
            latitude=_to_float(data.get('lat')),
            longitude=_to_float(data.get('lon')),
            timezone=data.get('timezone'),
        )

    async def resolve(self, ip: Optional[str]) -> Optional[Location]:
        """
        Resolve an address to a Location.

        Non-public addresses (private, loopback, link-local, ...) and the
        no-response sentinel are skipped without any network call.

        Args:
            ip: IP address

        Returns:
            Location or None
        """
        if not ip or ip == NO_RESPONSE:
            return None

        if not IPClassifier.should_enrich(ip):
            return None

        cached = self.cache.get(ip)
        if cached is not None:
            return cached

        for name, provider in self.providers:
            try:
                location = await asyncio.wait_for(provider(ip), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Geolocation provider %s timed out for %s", name, ip)
                continue
            except ProviderError as e:
                logger.warning("Geolocation provider %s failed for %s: %s", name, ip, e)
                continue
            except httpx.HTTPError as e:
                logger.warning("Geolocation provider %s request failed for %s: %s", name, ip, e)
                continue
            except (TypeError, AttributeError, ValueError) as e:
                logger.warning("Geolocation provider %s sent an unexpected answer for %s: %s",
                               name, ip, e)
                continue

            if location.is_empty:
                logger.warning("Geolocation provider %s returned no data for %s", name, ip)
                continue

            self.cache.set(ip, location)
            return location

        logger.warning("No geolocation provider could resolve %s", ip)
        return None

    async def resolve_many(self, ips: list[str]) -> dict[str, Optional[Location]]:
        """
        Resolve multiple IPs in parallel.

        Args:
            ips: List of IP addresses

        Returns:
            Dict mapping IP -> Location (or None)
        """
        unique_ips = list(dict.fromkeys(ip for ip in ips if ip))
        if not unique_ips:
            return {}

        results = await asyncio.gather(*(self.resolve(ip) for ip in unique_ips))
        return dict(zip(unique_ips, results))

    async def close(self):
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
