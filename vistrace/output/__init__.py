"""
Output modules for VisTrace
"""

from .console import ConsoleOutput
from .json_export import JsonExporter, export_json

__all__ = ['ConsoleOutput', 'JsonExporter', 'export_json']
