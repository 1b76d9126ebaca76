"""
Address classification for hop enrichment
"""

import ipaddress
from enum import Enum
from typing import Callable, Optional, Union


Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class IPType(Enum):
    """IP address classification types"""
    PRIVATE = "private"
    CGNAT = "cgnat"
    LOOPBACK = "loopback"
    LINKLOCAL = "linklocal"
    MULTICAST = "multicast"
    RESERVED = "reserved"
    PUBLIC = "public"
    UNKNOWN = "unknown"


_CGNAT = ipaddress.IPv4Network('100.64.0.0/10')

# First match wins; CGNAT sits before PRIVATE because newer Pythons
# also flag 100.64/10 as private.
_CHECKS: list[tuple[IPType, Callable[[Address], bool]]] = [
    (IPType.LOOPBACK, lambda a: a.is_loopback),
    (IPType.LINKLOCAL, lambda a: a.is_link_local),
    (IPType.MULTICAST, lambda a: a.is_multicast),
    (IPType.CGNAT, lambda a: a.version == 4 and a in _CGNAT),
    (IPType.PRIVATE, lambda a: a.is_private),
    (IPType.RESERVED, lambda a: a.is_reserved or a.is_unspecified),
    (IPType.PUBLIC, lambda a: a.is_global),
]


class IPClassifier:
    """
    Sorts hop addresses (IPv4 or IPv6) into routing categories.

    private covers RFC1918, ULA fc00::/7 and everything else the
    ipaddress module flags as private; documentation ranges such as
    203.0.113.0/24 and 2001:db8::/32 land there too. Only public
    addresses get a geolocation lookup.
    """

    @classmethod
    def classify(cls, ip: Optional[str]) -> IPType:
        if not ip:
            return IPType.UNKNOWN
        try:
            addr = ipaddress.ip_address(ip.strip())
        except ValueError:
            return IPType.UNKNOWN

        for ip_type, check in _CHECKS:
            if check(addr):
                return ip_type
        return IPType.UNKNOWN

    @classmethod
    def is_public(cls, ip: Optional[str]) -> bool:
        return cls.classify(ip) is IPType.PUBLIC

    @classmethod
    def should_enrich(cls, ip: Optional[str]) -> bool:
        """Whether a hop at this address is worth a geolocation lookup"""
        return cls.is_public(ip)

    @classmethod
    def get_tag(cls, ip: Optional[str]) -> Optional[str]:
        """Short label for non-public addresses, None for public or unparseable"""
        ip_type = cls.classify(ip)
        if ip_type in (IPType.PUBLIC, IPType.UNKNOWN):
            return None
        return ip_type.value
