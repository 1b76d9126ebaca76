"""
Enrichment modules for VisTrace
"""

from .ip_classifier import IPClassifier, IPType
from .ptr_resolver import PTRResolver
from .geo_lookup import GeoLookup

__all__ = ['IPClassifier', 'IPType', 'PTRResolver', 'GeoLookup']
