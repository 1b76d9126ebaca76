"""
VisTrace - Visual Traceroute Discovery

Runs the platform traceroute, parses its output hop by hop, enriches
public hops with geolocation and streams trace snapshots to subscribers.
"""

__version__ = "1.0.0"
__author__ = "VisTrace"
