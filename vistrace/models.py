"""
Data models for VisTrace
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Union


NO_RESPONSE = "*"
UNKNOWN_RTT = -1.0

PACKET_TYPES = ('icmp', 'udp', 'tcp')


class TraceStatus(str, Enum):
    """Lifecycle status of a trace"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not TraceStatus.RUNNING


class ProbeKind(str, Enum):
    """Discriminant for probe variants"""
    ICMP = "icmp"
    ECHO = "echo"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class TraceOptions:
    """Options used to start a trace"""
    max_hops: int = 30
    packet_size: int = 64
    timeout_ms: int = 5000
    queries: int = 3
    use_ipv6: bool = False
    dont_fragment: bool = True
    packet_type: str = 'icmp'
    numeric: bool = False

    # camelCase wire name -> field name
    WIRE_NAMES: ClassVar[dict[str, str]] = {
        'maxHops': 'max_hops',
        'packetSize': 'packet_size',
        'timeoutMs': 'timeout_ms',
        'timeout': 'timeout_ms',
        'queries': 'queries',
        'useIPv6': 'use_ipv6',
        'dontFragment': 'dont_fragment',
        'packetType': 'packet_type',
        'numeric': 'numeric',
    }

    INT_FIELDS: ClassVar[tuple[str, ...]] = ('max_hops', 'packet_size', 'timeout_ms', 'queries')

    def __post_init__(self):
        # wire dicts may carry numbers as strings ("30")
        for name in self.INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            try:
                setattr(self, name, int(value))
            except (TypeError, ValueError):
                raise ValueError(f"{name} must be an integer, got {value!r}") from None

        self.packet_type = str(self.packet_type).lower()
        if self.packet_type not in PACKET_TYPES:
            raise ValueError(
                f"Unknown packet type '{self.packet_type}'. "
                f"Supported: {', '.join(PACKET_TYPES)}"
            )
        if not 1 <= self.max_hops <= 255:
            raise ValueError(f"max_hops must be between 1 and 255, got {self.max_hops}")
        if not 1 <= self.queries <= 10:
            raise ValueError(f"queries must be between 1 and 10, got {self.queries}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if not 28 <= self.packet_size <= 65000:
            raise ValueError(f"packet_size must be between 28 and 65000, got {self.packet_size}")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> 'TraceOptions':
        """
        Build options from a camelCase (or snake_case) mapping.

        Missing keys take their defaults; unknown keys are ignored.
        """
        kwargs = {}
        for key, value in (data or {}).items():
            name = cls.WIRE_NAMES.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return {
            'maxHops': self.max_hops,
            'packetSize': self.packet_size,
            'timeoutMs': self.timeout_ms,
            'queries': self.queries,
            'useIPv6': self.use_ipv6,
            'dontFragment': self.dont_fragment,
            'packetType': self.packet_type,
            'numeric': self.numeric,
        }


@dataclass(frozen=True)
class Probe:
    """One echo/response cycle within a hop"""
    sequence: int
    rtt_ms: float = UNKNOWN_RTT
    sent_at: datetime = field(default_factory=datetime.now)
    ttl: int = 0
    packet_size: int = 0
    dont_fragment: bool = False

    kind: ClassVar[ProbeKind]

    @property
    def answered(self) -> bool:
        return self.rtt_ms >= 0

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'sequenceNumber': self.sequence,
            'responseTime': self.rtt_ms,
            'timestamp': _iso(self.sent_at),
            'ttl': self.ttl,
            'packetSize': self.packet_size,
            'flags': ['DF'] if self.dont_fragment else [],
        }


@dataclass(frozen=True)
class IcmpProbe(Probe):
    """Probe answered by an ICMP error (time exceeded, unreachable)"""
    icmp_type: int = 11
    icmp_code: int = 0
    payload: str = ''

    kind: ClassVar[ProbeKind] = ProbeKind.ICMP

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(type=self.icmp_type, code=self.icmp_code, payload=self.payload)
        return data


@dataclass(frozen=True)
class EchoProbe(Probe):
    """Probe answered by an echo reply from the destination"""
    echo_id: int = 0
    echo_sequence: int = 0
    data: str = ''

    kind: ClassVar[ProbeKind] = ProbeKind.ECHO

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(echoId=self.echo_id, echoSequence=self.echo_sequence, data=self.data)
        return data


AnyProbe = Union[IcmpProbe, EchoProbe]


@dataclass
class Location:
    """Approximate geographic/ISP origin of an address"""
    country: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return all(
            value in (None, '')
            for value in (self.country, self.city, self.isp,
                          self.latitude, self.longitude, self.timezone)
        )

    def to_dict(self) -> dict:
        return {
            'country': self.country,
            'city': self.city,
            'isp': self.isp,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'timezone': self.timezone,
        }


@dataclass
class Hop:
    """One point on the discovered path with its probes and statistics"""
    hop_number: int
    address: str = NO_RESPONSE
    hostname: Optional[str] = None
    probes: list[AnyProbe] = field(default_factory=list)
    avg_ms: float = UNKNOWN_RTT
    min_ms: float = UNKNOWN_RTT
    max_ms: float = UNKNOWN_RTT
    loss_percent: float = 100.0
    location: Optional[Location] = None

    @property
    def responded(self) -> bool:
        return self.address != NO_RESPONSE

    @property
    def answered_count(self) -> int:
        return sum(1 for p in self.probes if p.answered)

    def to_dict(self) -> dict:
        return {
            'hopNumber': self.hop_number,
            'ipAddress': self.address,
            'hostname': self.hostname,
            'packets': [p.to_dict() for p in self.probes],
            'averageTime': self.avg_ms,
            'minTime': self.min_ms,
            'maxTime': self.max_ms,
            'packetLoss': self.loss_percent,
            'location': self.location.to_dict() if self.location else None,
        }


@dataclass
class Trace:
    """One path-discovery run toward a destination"""
    id: str
    destination: str
    options: TraceOptions = field(default_factory=TraceOptions)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    hops: list[Hop] = field(default_factory=list)
    status: TraceStatus = TraceStatus.RUNNING
    total_packets: int = 0
    successful_packets: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def hop(self, hop_number: int) -> Optional[Hop]:
        for hop in self.hops:
            if hop.hop_number == hop_number:
                return hop
        return None

    def snapshot(self) -> 'Trace':
        """Independent deep copy safe to hand to consumers"""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'destination': self.destination,
            'startTime': _iso(self.started_at),
            'endTime': _iso(self.completed_at),
            'hops': [hop.to_dict() for hop in self.hops],
            'status': self.status.value,
            'totalPackets': self.total_packets,
            'successfulPackets': self.successful_packets,
            'maxHops': self.options.max_hops,
            'packetSize': self.options.packet_size,
            'timeout': self.options.timeout_ms,
            'queries': self.options.queries,
            'packetType': self.options.packet_type,
            'useIPv6': self.options.use_ipv6,
            'dontFragment': self.options.dont_fragment,
        }
