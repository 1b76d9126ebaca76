"""
PTR (reverse DNS) resolver
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import dns.exception
import dns.resolver
import dns.reversename

from ..models import NO_RESPONSE


logger = logging.getLogger(__name__)


class PTRResolver:
    """
    Async PTR record resolver.

    Performs reverse DNS lookups for hops reported without a name
    (numeric traceroute output). Uses a thread pool so slow lookups
    never block the event loop.
    """

    def __init__(self, timeout: float = 2.0, max_workers: int = 10):
        self.timeout = timeout
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._resolver = dns.resolver.Resolver()
        self._resolver.timeout = timeout
        self._resolver.lifetime = timeout

    def _resolve_sync(self, ip: str) -> Optional[str]:
        """Synchronous PTR lookup"""
        try:
            name = dns.reversename.from_address(ip)
            answers = self._resolver.resolve(name, 'PTR')
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer,
                dns.resolver.NoNameservers, dns.exception.Timeout):
            return None
        except dns.exception.DNSException as e:
            logger.debug("PTR lookup for %s failed: %s", ip, e)
            return None

        for rdata in answers:
            return str(rdata.target).rstrip('.')
        return None

    async def resolve(self, ip: Optional[str]) -> Optional[str]:
        """
        Async PTR lookup for single IP.

        Args:
            ip: IP address to resolve

        Returns:
            Hostname or None if not found
        """
        if not ip or ip == NO_RESPONSE:
            return None

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._resolve_sync, ip),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return None
        except ValueError:
            # not an address dnspython can reverse
            return None

    def close(self):
        """Shutdown thread pool"""
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
