"""
Traceroute output parser

Turns one line of traceroute/traceroute6/tracert output into a Hop.
Each supported line shape is a pure matcher (text in, match or None out),
tried in priority order.
"""

import logging
import re
from datetime import datetime
from typing import Callable, NamedTuple, Optional

from ..models import (
    NO_RESPONSE, UNKNOWN_RTT, AnyProbe, EchoProbe, Hop, IcmpProbe, TraceOptions,
)


logger = logging.getLogger(__name__)


BANNER_MARKERS = (
    'traceroute to',
    'traceroute6 to',
    'TRACEROUTE',
    'Tracing route to',
    'over a maximum of',
    'Trace complete',
)

# Echo identifier as the kernel's ping would pick it; traceroute does not print it
ECHO_ID = 0

ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACHABLE = 3
ICMP_PORT_UNREACHABLE = 3
ICMP_TIME_EXCEEDED = 11

_ADDR = r'(?:\d{1,3}(?:\.\d{1,3}){3}|[0-9A-Fa-f]*:[0-9A-Fa-f:.]+)'

TIMEOUT_RE = re.compile(r'^\s*(\d+)\s+\*\s*\*\s*\*\s*(?:Request timed out\.?)?\s*$')
NAMED_RE = re.compile(r'^\s*(\d+)\s+(?:\*\s+)*(\S+)\s*\(([^)]+)\)\s+(.+)$')
ADDRESS_RE = re.compile(r'^\s*(\d+)\s+(?:\*\s+)*(' + _ADDR + r')\s+(.+)$')
TRAILING_RE = re.compile(
    r'^\s*(\d+)\s+(.+?)\s+(?:(\S+)\s+\[(' + _ADDR + r')\]|(' + _ADDR + r'|\*+))\s*$'
)
TIMING_RE = re.compile(r'(\d+(?:\.\d+)?)\s*ms')
BANNER_ADDRESS_RE = re.compile(r'[\(\[](' + _ADDR + r')[\)\]]')


class ShapeMatch(NamedTuple):
    """Fields extracted from one recognized hop line"""
    line_hop: int
    address: str
    hostname: Optional[str]
    timings: list[float]


def _timings(text: str) -> list[float]:
    return [float(value) for value in TIMING_RE.findall(text)]


def match_timeout(line: str) -> Optional[ShapeMatch]:
    """' 7  * * *' (or tracert's '* * * Request timed out.')"""
    m = TIMEOUT_RE.match(line)
    if not m:
        return None
    return ShapeMatch(int(m.group(1)), NO_RESPONSE, None, [])


def match_named(line: str) -> Optional[ShapeMatch]:
    """' 1  router.local (192.168.1.1)  1.234 ms  1.345 ms  1.456 ms'"""
    m = NAMED_RE.match(line)
    if not m:
        return None
    address = m.group(3).strip()
    # traceroute repeats the address in place of a name it could not resolve
    hostname = m.group(2) if m.group(2) != address else None
    return ShapeMatch(int(m.group(1)), address, hostname, _timings(m.group(4)))


def match_address(line: str) -> Optional[ShapeMatch]:
    """' 1  192.168.1.1  1.234 ms  1.345 ms  1.456 ms'"""
    m = ADDRESS_RE.match(line)
    if not m:
        return None
    return ShapeMatch(int(m.group(1)), m.group(2), None, _timings(m.group(3)))


def match_trailing(line: str) -> Optional[ShapeMatch]:
    """' 1    <1 ms    <1 ms    <1 ms  192.168.1.1' (tracert layout)"""
    m = TRAILING_RE.match(line)
    if not m:
        return None
    if m.group(4):
        hostname, address = m.group(3), m.group(4)
    else:
        hostname, address = None, m.group(5)
    if address.startswith('*'):
        address = NO_RESPONSE
    return ShapeMatch(int(m.group(1)), address, hostname, _timings(m.group(2)))


SHAPES: list[Callable[[str], Optional[ShapeMatch]]] = [
    match_timeout,
    match_named,
    match_address,
    match_trailing,
]


def is_banner(line: str) -> bool:
    """Header/footer text printed by the probe tools"""
    return any(marker in line for marker in BANNER_MARKERS)


def banner_address(line: str) -> Optional[str]:
    """Destination address announced in a banner, e.g. 'traceroute to x (1.2.3.4)'"""
    m = BANNER_ADDRESS_RE.search(line)
    return m.group(1) if m else None


def loss_percent(queries: int, returned: int) -> float:
    """(queries - returned) / queries * 100, clamped to [0, 100]"""
    if queries <= 0:
        return 100.0
    loss = (queries - returned) / queries * 100
    return max(0.0, min(100.0, loss))


def compute_stats(hop: Hop, queries: int) -> Hop:
    """Fill avg/min/max (answered probes only) and loss on hop"""
    rtts = [p.rtt_ms for p in hop.probes if p.answered]
    if rtts:
        hop.avg_ms = sum(rtts) / len(rtts)
        hop.min_ms = min(rtts)
        hop.max_ms = max(rtts)
    else:
        hop.avg_ms = hop.min_ms = hop.max_ms = UNKNOWN_RTT

    if not hop.responded:
        hop.loss_percent = 100.0
    else:
        hop.loss_percent = loss_percent(queries, len(rtts))
    return hop


def build_probes(timings: list[float], hop_number: int, options: TraceOptions,
                 reached: bool = False) -> list[AnyProbe]:
    """One probe per timing, sequence numbers 1..k"""
    now = datetime.now()
    probes: list[AnyProbe] = []
    for index, rtt in enumerate(timings, start=1):
        common = dict(
            sequence=index,
            rtt_ms=rtt,
            sent_at=now,
            ttl=hop_number,
            packet_size=options.packet_size,
            dont_fragment=options.dont_fragment,
        )
        if reached and options.packet_type == 'icmp':
            probes.append(EchoProbe(echo_id=ECHO_ID, echo_sequence=index, **common))
        elif reached and options.packet_type == 'udp':
            probes.append(IcmpProbe(icmp_type=ICMP_DEST_UNREACHABLE,
                                    icmp_code=ICMP_PORT_UNREACHABLE, **common))
        else:
            probes.append(IcmpProbe(icmp_type=ICMP_TIME_EXCEEDED, icmp_code=0, **common))
    return probes


def parse_hop_line(line: str, hop_number: int, options: Optional[TraceOptions] = None,
                   destination_address: Optional[str] = None) -> Optional[Hop]:
    """
    Parse one line of probe output.

    Args:
        line: Raw output line
        hop_number: Hop number currently expected by the caller
        options: Trace options (queries, packet size, variant)
        destination_address: Address announced in the banner, if known

    Returns:
        Hop, or None when the line matches no known shape
    """
    if not line or not line.strip():
        return None

    options = options or TraceOptions()

    for shape in SHAPES:
        match = shape(line)
        if match is None:
            continue

        if match.line_hop != hop_number:
            logger.debug("Line reports hop %d while hop %d was expected",
                         match.line_hop, hop_number)

        if match.address == NO_RESPONSE:
            return Hop(hop_number=hop_number)

        reached = destination_address is not None and match.address == destination_address
        hop = Hop(
            hop_number=hop_number,
            address=match.address,
            hostname=match.hostname,
            probes=build_probes(match.timings, hop_number, options, reached),
        )
        return compute_stats(hop, options.queries)

    return None
