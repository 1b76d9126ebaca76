"""
Probe process invocation
"""

import math
import sys
from typing import Optional

from ..models import TraceOptions


def build_command(destination: str, options: TraceOptions,
                  platform: Optional[str] = None,
                  traceroute_bin: str = 'traceroute',
                  traceroute6_bin: str = 'traceroute6',
                  tracert_bin: str = 'tracert') -> list[str]:
    """
    Build the argv for the platform traceroute tool.

    Args:
        destination: Hostname or literal address
        options: Trace options
        platform: sys.platform value (defaults to the running platform)

    Returns:
        Argument list suitable for create_subprocess_exec
    """
    if not destination or not destination.strip():
        raise ValueError("Destination must not be empty")

    platform = platform or sys.platform

    if platform == 'win32':
        args = [tracert_bin, '-h', str(options.max_hops), '-w', str(options.timeout_ms)]
        if options.numeric:
            args.append('-d')
        args.append('-6' if options.use_ipv6 else '-4')
        args.append(destination)
        return args

    args = [
        '-m', str(options.max_hops),
        '-q', str(options.queries),
        '-w', str(math.ceil(options.timeout_ms / 1000)),
    ]
    if options.numeric:
        args.append('-n')

    # traceroute6 has its own binary and no protocol switches
    if options.use_ipv6:
        return [traceroute6_bin, *args, destination, str(options.packet_size)]

    if platform.startswith('linux'):
        if options.packet_type == 'icmp':
            args.append('-I')
        elif options.packet_type == 'tcp':
            args.append('-T')
        # udp is the default method

        if options.dont_fragment:
            args.append('-F')

    return [traceroute_bin, *args, destination, str(options.packet_size)]
