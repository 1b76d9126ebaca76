"""
Probe process handling for VisTrace
"""

from .command import build_command
from .parser import parse_hop_line, is_banner
from .runner import ProbeRunner, read_lines

__all__ = ['build_command', 'parse_hop_line', 'is_banner', 'ProbeRunner', 'read_lines']
